import logging

from fastapi import Request

from app.api.schemas.auth import UnifiedPrincipal
from app.core.errors import ChatError, ErrorKind
from app.core.settings import Settings
from app.dependency_injection import get_container
from app.services.contracts import AuthServiceProtocol

logger = logging.getLogger(__name__)


async def get_optional_auth_context(request: Request) -> UnifiedPrincipal | None:
    container = get_container(request)
    auth_service = container.resolve(AuthServiceProtocol)

    auth_header = request.headers.get("authorization")
    bearer_token: str | None = None
    if auth_header and auth_header.lower().startswith("bearer "):
        bearer_token = auth_header.split(" ", 1)[1]

    principal = auth_service.principal_from_bearer(bearer_token)
    if principal is not None:
        logger.debug("authenticated via bearer token", extra={"user_id": principal.user_id})
        return principal

    settings = container.resolve(Settings)
    principal = auth_service.principal_from_session(request.cookies.get(settings.auth_cookie_name))
    if principal is not None:
        logger.debug("authenticated via session cookie", extra={"user_id": principal.user_id})
    return principal


async def get_required_auth_context(request: Request) -> UnifiedPrincipal:
    principal = await get_optional_auth_context(request)
    if principal is None:
        raise ChatError(ErrorKind.UNAUTHORIZED, "chat")
    return principal

import logging

import jwt

from app.api.schemas.auth import UnifiedPrincipal
from app.core.settings import Settings

logger = logging.getLogger(__name__)


class JwtTokenValidator:
    """Validates tokens issued by the external auth provider with a shared secret."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def decode(self, token: str) -> UnifiedPrincipal:
        payload = jwt.decode(
            token,
            self._settings.auth_jwt_secret,
            algorithms=[self._settings.auth_jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
        return UnifiedPrincipal(
            user_id=str(payload["sub"]),
            email=str(payload.get("email", "")),
            display_name=str(payload.get("name", "")),
        )


class AuthService:
    """Resolves the caller from a bearer header or the session cookie; both carry the same JWT."""

    def __init__(self, settings: Settings) -> None:
        self._token_validator = JwtTokenValidator(settings)

    def principal_from_bearer(self, bearer_token: str | None) -> UnifiedPrincipal | None:
        return self._decode(bearer_token, source="bearer")

    def principal_from_session(self, session_token: str | None) -> UnifiedPrincipal | None:
        return self._decode(session_token, source="session")

    def _decode(self, token: str | None, *, source: str) -> UnifiedPrincipal | None:
        if not token:
            return None
        try:
            return self._token_validator.decode(token)
        except jwt.PyJWTError:
            logger.info("token validation failed", extra={"token_source": source})
            return None

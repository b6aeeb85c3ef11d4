import asyncio
from collections.abc import AsyncIterator
import logging
import uuid

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse

from app.api.dependencies.auth import get_optional_auth_context, get_required_auth_context
from app.api.schemas.auth import UnifiedPrincipal
from app.api.schemas.chat import DeletedChatResponse, PatchAttachmentsRequest, PostChatRequest
from app.core.errors import ChatError, ErrorKind
from app.core.settings import Settings
from app.dependency_injection import get_container
from app.services.chat_stream import STREAM_MEDIA_TYPE, ChatStreamEvent, encode_stream_event
from app.services.contracts import ChatServiceProtocol

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat", tags=["chat"])

SIMULATE_TIMEOUT_HEADER = "x-simulate-timeout"


async def _encode_frames(
    events: AsyncIterator[ChatStreamEvent],
    *,
    timeout_seconds: float,
    log_context: dict[str, str],
) -> AsyncIterator[str]:
    """Deliver frames until the stream ends or the response deadline passes.

    Hitting the deadline only ends this response; the run keeps going in the
    background and stays resumable.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_seconds
    iterator = aiter(events)
    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            logger.warning("chat response deadline reached", extra=log_context)
            return
        try:
            event = await asyncio.wait_for(anext(iterator), timeout=remaining)
        except StopAsyncIteration:
            return
        except TimeoutError:
            logger.warning("chat response deadline reached", extra=log_context)
            return
        yield encode_stream_event(event)


@router.post(
    "",
    summary="Start an assistant turn and stream its events",
    description="Persists the user message, starts a generation run, and streams its events as newline-delimited JSON.",
)
async def start_chat(
    payload: PostChatRequest,
    request: Request,
    auth_context: UnifiedPrincipal = Depends(get_required_auth_context),
) -> StreamingResponse:
    container = get_container(request)
    settings = container.resolve(Settings)
    chat_service = container.resolve(ChatServiceProtocol)
    simulate_timeout = (
        settings.chat_simulate_timeout_enabled and request.headers.get(SIMULATE_TIMEOUT_HEADER) == "1"
    )

    logger.info(
        "chat request",
        extra={"chat_id": str(payload.id), "user_id": auth_context.user_id, "variant": payload.selected_chat_model},
    )
    events = await chat_service.start_generation(
        principal=auth_context,
        payload=payload,
        simulate_timeout=simulate_timeout,
    )
    return StreamingResponse(
        _encode_frames(
            events,
            timeout_seconds=settings.request_timeout_for(payload.selected_chat_model),
            log_context={"chat_id": str(payload.id)},
        ),
        media_type=STREAM_MEDIA_TYPE,
    )


@router.get(
    "",
    summary="Resume the chat's latest stream",
    description="Reattaches to a live run, replays a just-finished assistant message, or returns an empty stream.",
    response_model=None,
)
async def resume_chat(
    request: Request,
    chat_id: str | None = Query(None, alias="chatId"),
    offset: int = Query(0, ge=0, description="Number of already received frames to skip"),
    auth_context: UnifiedPrincipal | None = Depends(get_optional_auth_context),
) -> Response:
    container = get_container(request)
    settings = container.resolve(Settings)
    chat_service = container.resolve(ChatServiceProtocol)

    # Without resumability there is nothing to look up, so skip validation and auth.
    if not chat_service.resumable:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    if not chat_id:
        raise ChatError(ErrorKind.BAD_REQUEST, "api")
    try:
        chat_id = str(uuid.UUID(chat_id))
    except ValueError as exc:
        raise ChatError(ErrorKind.BAD_REQUEST, "api") from exc
    if auth_context is None:
        raise ChatError(ErrorKind.UNAUTHORIZED, "chat")

    events = await chat_service.resume(principal=auth_context, chat_id=chat_id, offset=offset)
    if events is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return StreamingResponse(
        _encode_frames(
            events,
            timeout_seconds=settings.chat_reasoning_request_timeout_seconds,
            log_context={"chat_id": chat_id},
        ),
        media_type=STREAM_MEDIA_TYPE,
    )


@router.patch("", status_code=status.HTTP_204_NO_CONTENT, summary="Replace the chat's attachment metadata")
async def update_attachments(
    payload: PatchAttachmentsRequest,
    request: Request,
    auth_context: UnifiedPrincipal = Depends(get_required_auth_context),
) -> Response:
    chat_service = get_container(request).resolve(ChatServiceProtocol)
    await chat_service.update_attachments(
        principal=auth_context,
        chat_id=str(payload.chat_id),
        attachments=payload.attachments,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("", summary="Delete an owned chat")
async def delete_chat(
    request: Request,
    chat_id: uuid.UUID = Query(..., alias="id"),
    auth_context: UnifiedPrincipal = Depends(get_required_auth_context),
) -> JSONResponse:
    chat_service = get_container(request).resolve(ChatServiceProtocol)
    deleted = await chat_service.delete_chat(principal=auth_context, chat_id=str(chat_id))
    body = DeletedChatResponse(
        id=deleted.id,
        user_id=deleted.user_id,
        title=deleted.title,
        visibility=deleted.visibility,
        created_at=deleted.created_at,
    )
    return JSONResponse(content=body.model_dump(mode="json", by_alias=True))

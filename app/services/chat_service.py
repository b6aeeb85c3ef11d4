from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Coroutine, Sequence
from datetime import UTC, datetime
import logging
from typing import Any
import uuid

from app.agents.driver import GenerationDriver, GenerationRequest
from app.agents.engine import ChatEngine
from app.agents.prompts import build_system_prompt
from app.agents.title_generator import fallback_title
from app.agents.tools.registry import ToolRegistry
from app.api.schemas.auth import UnifiedPrincipal
from app.api.schemas.chat import Attachment, ChatMessage, ChatRecord, PostChatRequest, TextPart
from app.core.errors import ChatError, ErrorKind
from app.core.settings import Settings
from app.services.chat_stream import ChatStreamEvent
from app.services.contracts import ChatRepositoryProtocol, StreamRegistryProtocol, TitleGeneratorProtocol
from app.services.stream_emitter import StreamEmitter

logger = logging.getLogger(__name__)


async def _empty_stream() -> AsyncIterator[ChatStreamEvent]:
    return
    yield  # pragma: no cover


async def _single_event_stream(event: ChatStreamEvent) -> AsyncIterator[ChatStreamEvent]:
    yield event


class ChatService:
    """Chat session coordinator: authorization, persistence ordering, and run lifecycle."""

    def __init__(
        self,
        settings: Settings,
        chat_repository: ChatRepositoryProtocol,
        stream_registry: StreamRegistryProtocol,
        engine: ChatEngine,
        title_generator: TitleGeneratorProtocol,
        tool_registry: ToolRegistry,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._chat_repository = chat_repository
        self._stream_registry = stream_registry
        self._engine = engine
        self._title_generator = title_generator
        self._tool_registry = tool_registry
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._background_tasks: set[asyncio.Task[Any]] = set()

    @property
    def resumable(self) -> bool:
        return self._stream_registry.enabled

    async def start_generation(
        self,
        *,
        principal: UnifiedPrincipal,
        payload: PostChatRequest,
        simulate_timeout: bool = False,
    ) -> AsyncIterator[ChatStreamEvent]:
        if simulate_timeout:
            raise ChatError(ErrorKind.GATEWAY_TIMEOUT, "chat")

        chat_id = str(payload.id)
        chat = await self._chat_repository.get_chat(chat_id)
        if chat is None:
            await self._chat_repository.save_chat(
                chat_id=chat_id,
                user_id=principal.user_id,
                title=fallback_title(payload.message.content),
                visibility=payload.selected_visibility_type,
            )
            self._spawn(self._write_generated_title(chat_id, payload.message.content), name=f"chat-title-{chat_id}")
        elif chat.user_id != principal.user_id:
            raise ChatError(ErrorKind.FORBIDDEN, "chat")

        user_message = ChatMessage(
            id=str(payload.message.id),
            chat_id=chat_id,
            role="user",
            parts=[TextPart(text=part.text) for part in payload.message.parts],
            attachments=payload.message.experimental_attachments or [],
            created_at=self._clock(),
        )
        previous_messages = await self._chat_repository.get_messages(chat_id)
        history = [message for message in previous_messages if message.id != user_message.id]
        history.append(user_message)
        await self._chat_repository.save_messages([user_message])

        run_id = str(uuid.uuid4())
        await self._chat_repository.create_stream_id(stream_id=run_id, chat_id=chat_id)
        emitter = await self._stream_registry.register(run_id, lambda: StreamEmitter(run_id))

        tools = self._tool_registry.active_tools()
        request = GenerationRequest(
            chat_id=chat_id,
            selected_chat_model=payload.selected_chat_model,
            system_prompt=build_system_prompt(payload.selected_chat_model, tools),
            history=history,
            tools=tools,
            chat_attachments=chat.attachments if chat is not None else [],
        )
        driver = GenerationDriver(
            engine=self._engine,
            chat_repository=self._chat_repository,
            emitter=emitter,
            max_steps=self._settings.generation_max_steps,
        )
        # The run outlives the HTTP response; disconnects only stop delivery.
        self._spawn(driver.run(request), name=f"chat-run-{run_id}")
        logger.info(
            "generation run started",
            extra={"chat_id": chat_id, "run_id": run_id, "user_id": principal.user_id, "history_length": len(history)},
        )
        return emitter.subscribe()

    async def resume(
        self,
        *,
        principal: UnifiedPrincipal,
        chat_id: str,
        offset: int = 0,
    ) -> AsyncIterator[ChatStreamEvent] | None:
        if not self._stream_registry.enabled:
            return None

        resume_requested_at = self._clock()
        chat = await self._chat_repository.get_chat(chat_id)
        if chat is None:
            raise ChatError(ErrorKind.NOT_FOUND, "chat")
        if chat.visibility == "private" and chat.user_id != principal.user_id:
            raise ChatError(ErrorKind.FORBIDDEN, "chat")

        stream_ids = await self._chat_repository.get_stream_ids(chat_id)
        if not stream_ids:
            raise ChatError(ErrorKind.NOT_FOUND, "stream")

        run_id = stream_ids[-1]
        live = await self._stream_registry.attach(run_id, offset)
        if live is not None:
            logger.debug("resuming live run", extra={"chat_id": chat_id, "run_id": run_id, "offset": offset})
            return live

        messages = await self._chat_repository.get_messages(chat_id)
        most_recent = messages[-1] if messages else None
        if most_recent is None or most_recent.role != "assistant":
            return _empty_stream()
        age_seconds = int((resume_requested_at - most_recent.created_at).total_seconds())
        if age_seconds > self._settings.resume_replay_window_seconds:
            return _empty_stream()

        logger.debug("replaying recent assistant message", extra={"chat_id": chat_id, "message_id": most_recent.id})
        return _single_event_stream(
            {"type": "append-message", "message": most_recent.model_dump_json(by_alias=True)}
        )

    async def update_attachments(
        self,
        *,
        principal: UnifiedPrincipal,
        chat_id: str,
        attachments: Sequence[Attachment],
    ) -> None:
        await self._require_owned_chat(principal, chat_id)
        await self._chat_repository.update_chat_attachments(chat_id, attachments)

    async def delete_chat(self, *, principal: UnifiedPrincipal, chat_id: str) -> ChatRecord:
        await self._require_owned_chat(principal, chat_id)
        deleted = await self._chat_repository.delete_chat(chat_id)
        if deleted is None:
            raise ChatError(ErrorKind.NOT_FOUND, "chat")
        logger.info("chat deleted", extra={"chat_id": chat_id, "user_id": principal.user_id})
        return deleted

    async def shutdown(self) -> None:
        """Wait for in-flight runs so every open stream reaches a terminal frame."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    async def _require_owned_chat(self, principal: UnifiedPrincipal, chat_id: str) -> ChatRecord:
        chat = await self._chat_repository.get_chat(chat_id)
        if chat is None:
            raise ChatError(ErrorKind.NOT_FOUND, "chat")
        if chat.user_id != principal.user_id:
            raise ChatError(ErrorKind.FORBIDDEN, "chat")
        return chat

    async def _write_generated_title(self, chat_id: str, message: str) -> None:
        try:
            title = await self._title_generator.generate_title(message)
            await self._chat_repository.update_chat_title(chat_id, title)
        except Exception:
            logger.exception("chat title generation failed", extra={"chat_id": chat_id})

    def _spawn(self, coroutine: Coroutine[Any, Any, Any], *, name: str) -> None:
        task = asyncio.create_task(coroutine, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

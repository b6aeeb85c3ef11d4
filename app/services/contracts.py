from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Sequence
from typing import Protocol

import asyncpg

from app.api.schemas.auth import UnifiedPrincipal
from app.api.schemas.chat import Attachment, ChatMessage, ChatRecord, PostChatRequest, VisibilityType
from app.services.chat_stream import ChatStreamEvent
from app.services.stream_emitter import StreamEmitter


class DatabaseServiceProtocol(Protocol):
    """Abstraction for async SQL execution against the chat Postgres store."""

    async def connect(self) -> None:
        """Initialize underlying DB resources before request handling begins."""

    async def disconnect(self) -> None:
        """Release open DB resources during application shutdown."""

    async def fetchrow(self, query: str, *args: object) -> asyncpg.Record | None:
        """Execute a query and return a single row, or ``None`` when no row matches."""

    async def fetch(self, query: str, *args: object) -> Sequence[asyncpg.Record]:
        """Execute a query and return all matching rows."""

    async def execute(self, query: str, *args: object) -> str:
        """Execute a write statement and return the backend status string."""


class ChatRepositoryProtocol(Protocol):
    """Persistence contract for chats, messages, and per-chat run ids."""

    async def get_chat(self, chat_id: str) -> ChatRecord | None:
        """Load one chat, or ``None`` when it doesn't exist."""

    async def save_chat(self, *, chat_id: str, user_id: str, title: str, visibility: VisibilityType) -> None:
        """Create a chat owned by ``user_id``; an existing id is left untouched."""

    async def update_chat_title(self, chat_id: str, title: str) -> None:
        """Replace the chat title."""

    async def update_chat_attachments(self, chat_id: str, attachments: Sequence[Attachment]) -> None:
        """Replace the chat's attachment metadata (last write wins)."""

    async def delete_chat(self, chat_id: str) -> ChatRecord | None:
        """Delete a chat with its messages and run ids, returning the deleted chat."""

    async def get_messages(self, chat_id: str) -> list[ChatMessage]:
        """Return the chat's messages in insertion order."""

    async def save_messages(self, messages: Sequence[ChatMessage]) -> None:
        """Persist messages; the first writer of a message id wins."""

    async def create_stream_id(self, *, stream_id: str, chat_id: str) -> None:
        """Append a run id to the chat's run list."""

    async def get_stream_ids(self, chat_id: str) -> list[str]:
        """Return the chat's run ids, oldest first."""


class StreamRegistryProtocol(Protocol):
    """Run-id keyed registry that lets later requests attach to a live generation stream."""

    @property
    def enabled(self) -> bool:
        """Whether resumability is backed by shared infrastructure."""

    async def register(self, run_id: str, stream_factory: Callable[[], StreamEmitter]) -> StreamEmitter:
        """Build the run's stream and make it attachable under ``run_id``."""

    async def attach(self, run_id: str, offset: int = 0) -> AsyncIterator[ChatStreamEvent] | None:
        """Return the live stream from ``offset``, or ``None`` when the run isn't open."""

    async def close(self) -> None:
        """Release network resources during shutdown."""


class BlobStoreProtocol(Protocol):
    """Storage for tool-generated artifacts that clients download by URL."""

    async def put(self, filename: str, data: bytes, content_type: str) -> str:
        """Store ``data`` and return its public download URL."""


class TitleGeneratorProtocol(Protocol):
    """Summarizes a chat's first user message into a short title."""

    async def generate_title(self, message: str) -> str:
        """Return a title of at most 80 characters."""


class AuthServiceProtocol(Protocol):
    """Token validation for principals issued by the external auth provider."""

    def principal_from_bearer(self, bearer_token: str | None) -> UnifiedPrincipal | None:
        """Validate and decode a bearer access token into a principal."""

    def principal_from_session(self, session_token: str | None) -> UnifiedPrincipal | None:
        """Validate and decode the session cookie token into a principal."""


class ChatServiceProtocol(Protocol):
    """Chat session coordination used by the HTTP endpoints."""

    @property
    def resumable(self) -> bool:
        """Whether GET requests can reattach to runs at all."""

    async def start_generation(
        self,
        *,
        principal: UnifiedPrincipal,
        payload: PostChatRequest,
        simulate_timeout: bool = False,
    ) -> AsyncIterator[ChatStreamEvent]:
        """Persist the user turn, start a generation run, and return its live event stream."""

    async def resume(
        self,
        *,
        principal: UnifiedPrincipal,
        chat_id: str,
        offset: int = 0,
    ) -> AsyncIterator[ChatStreamEvent] | None:
        """Reattach to the chat's latest run; ``None`` means resumability is disabled."""

    async def update_attachments(
        self,
        *,
        principal: UnifiedPrincipal,
        chat_id: str,
        attachments: Sequence[Attachment],
    ) -> None:
        """Replace the chat's attachment metadata."""

    async def delete_chat(self, *, principal: UnifiedPrincipal, chat_id: str) -> ChatRecord:
        """Delete an owned chat and return the deleted record."""

    async def shutdown(self) -> None:
        """Wait for in-flight background work before the process exits."""

"""Shared test utilities and fixtures for chat backend tests."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from types import SimpleNamespace

from langchain_core.messages import AIMessage
import pytest
import punq

from app.agents.engine import ReasoningDelta, StepResult, TextDelta, TokenUsage
from app.agents.tools.question_bank import QuestionBank, load_question_bank
from app.api.schemas.auth import UnifiedPrincipal
from app.api.schemas.chat import Attachment, ChatMessage, ChatRecord, TextPart
from app.core.settings import Settings

REPO_ROOT = Path(__file__).resolve().parents[1]
QUESTION_BANK_PATH = REPO_ROOT / "config" / "question-bank.yaml"

OWNER = UnifiedPrincipal(user_id="user-1", email="owner@example.com", display_name="Owner")
STRANGER = UnifiedPrincipal(user_id="user-2", email="stranger@example.com", display_name="Stranger")

PDF_ATTACHMENT = Attachment(
    url="https://blob.example.com/reports/annual-report.pdf",
    name="annual-report.pdf",
    contentType="application/pdf",
)


class FakeDatabaseService:
    """Shared fake DB service used at the external DB boundary in unit tests."""

    def __init__(self, rows: dict[str, object] | None = None) -> None:
        self.rows = rows or {}
        self.fetchrow_calls: list[tuple[str, tuple]] = []
        self.fetch_calls: list[tuple[str, tuple]] = []
        self.execute_calls: list[tuple[str, tuple]] = []
        self.connected = False

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def fetchrow(self, query: str, *args):
        self.fetchrow_calls.append((query, args))
        return self.rows.get("fetchrow")

    async def fetch(self, query: str, *args):
        self.fetch_calls.append((query, args))
        return self.rows.get("fetch", [])

    async def execute(self, query: str, *args):
        self.execute_calls.append((query, args))
        return "INSERT 0 1"


class FakeChatRepository:
    """In-memory chat store with the same first-writer-wins semantics as Postgres."""

    def __init__(self) -> None:
        self.chats: dict[str, ChatRecord] = {}
        self.messages: dict[str, list[ChatMessage]] = {}
        self.stream_ids: dict[str, list[str]] = {}
        self.saved_batches: list[list[ChatMessage]] = []
        self.fail_on_role: str | None = None

    def add_chat(
        self,
        chat_id: str,
        *,
        user_id: str = OWNER.user_id,
        visibility: str = "private",
        attachments: Sequence[Attachment] = (),
    ) -> ChatRecord:
        chat = ChatRecord(
            id=chat_id,
            user_id=user_id,
            title="Existing chat",
            visibility=visibility,
            created_at=datetime.now(tz=UTC),
            attachments=list(attachments),
        )
        self.chats[chat_id] = chat
        return chat

    async def get_chat(self, chat_id: str) -> ChatRecord | None:
        return self.chats.get(chat_id)

    async def save_chat(self, *, chat_id: str, user_id: str, title: str, visibility: str) -> None:
        self.chats.setdefault(
            chat_id,
            ChatRecord(id=chat_id, user_id=user_id, title=title, visibility=visibility, created_at=datetime.now(tz=UTC)),
        )

    async def update_chat_title(self, chat_id: str, title: str) -> None:
        self.chats[chat_id] = self.chats[chat_id].model_copy(update={"title": title})

    async def update_chat_attachments(self, chat_id: str, attachments: Sequence[Attachment]) -> None:
        self.chats[chat_id] = self.chats[chat_id].model_copy(update={"attachments": list(attachments)})

    async def delete_chat(self, chat_id: str) -> ChatRecord | None:
        self.messages.pop(chat_id, None)
        self.stream_ids.pop(chat_id, None)
        return self.chats.pop(chat_id, None)

    async def get_messages(self, chat_id: str) -> list[ChatMessage]:
        return list(self.messages.get(chat_id, []))

    async def save_messages(self, messages: Sequence[ChatMessage]) -> None:
        if self.fail_on_role and any(message.role == self.fail_on_role for message in messages):
            raise ConnectionError("database unavailable")
        self.saved_batches.append(list(messages))
        for message in messages:
            stored = self.messages.setdefault(message.chat_id, [])
            if all(existing.id != message.id for existing in stored):
                stored.append(message)

    async def create_stream_id(self, *, stream_id: str, chat_id: str) -> None:
        self.stream_ids.setdefault(chat_id, []).append(stream_id)

    async def get_stream_ids(self, chat_id: str) -> list[str]:
        return list(self.stream_ids.get(chat_id, []))


class FakeEngine:
    """Scripted engine: each ``stream_step`` call replays the next scripted step."""

    def __init__(self, steps: Sequence[Sequence[object]] | None = None, *, repeat_last: bool = False) -> None:
        self._steps = [list(step) for step in (steps or [])]
        self._repeat_last = repeat_last
        self.calls: list[dict[str, object]] = []

    async def stream_step(self, *, selected_chat_model, system_prompt, messages, tools):
        self.calls.append(
            {
                "selected_chat_model": selected_chat_model,
                "system_prompt": system_prompt,
                "messages": list(messages),
                "tools": [tool.name for tool in tools],
            }
        )
        if not self._steps:
            raise RuntimeError("no scripted engine step left")
        step = self._steps[0] if self._repeat_last and len(self._steps) == 1 else self._steps.pop(0)
        for item in step:
            if isinstance(item, Exception):
                raise item
            await asyncio.sleep(0)
            yield item


class FakeBlobStore:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.objects: dict[str, tuple[bytes, str]] = {}

    async def put(self, filename: str, data: bytes, content_type: str) -> str:
        if self.fail:
            raise RuntimeError("blob store offline")
        self.objects[filename] = (data, content_type)
        return f"https://blob.example.com/{filename}"


class FakeTitleGenerator:
    def __init__(self, title: str = "Generated title", *, fail: bool = False) -> None:
        self.title = title
        self.fail = fail
        self.messages: list[str] = []

    async def generate_title(self, message: str) -> str:
        self.messages.append(message)
        if self.fail:
            raise RuntimeError("title model offline")
        return self.title


class FakeRedis:
    """Minimal async Redis double covering the string and stream commands the registry uses."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.streams: dict[str, list[tuple[str, dict[str, str]]]] = {}
        self.expirations: dict[str, int] = {}
        self.fail_xadd = False
        self.closed = False

    async def ping(self) -> bool:
        return True

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        if ex is not None:
            self.expirations[key] = ex
        return True

    async def get(self, key: str):
        return self.values.get(key)

    async def xadd(self, key: str, fields: dict[str, str]) -> str:
        if self.fail_xadd:
            raise ConnectionError("redis down")
        entries = self.streams.setdefault(key, [])
        entry_id = f"{len(entries) + 1}-0"
        entries.append((entry_id, dict(fields)))
        return entry_id

    async def xread(self, streams: dict[str, str], count: int | None = None, block: int | None = None):
        for _attempt in range(2):
            response = []
            for key, last_id in streams.items():
                last_sequence = int(last_id.split("-")[0])
                entries = [entry for entry in self.streams.get(key, []) if int(entry[0].split("-")[0]) > last_sequence]
                if entries:
                    response.append((key, entries[:count] if count else entries))
            if response:
                return response
            if block is None:
                break
            await asyncio.sleep(min(block, 20) / 1000)
        return []

    async def expire(self, key: str, seconds: int) -> bool:
        self.expirations[key] = seconds
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            removed += int(self.values.pop(key, None) is not None)
            removed += int(self.streams.pop(key, None) is not None)
        return removed

    async def aclose(self) -> None:
        self.closed = True


def text_step(text: str, *, finish_reason: str = "stop", prompt_tokens: int = 10, completion_tokens: int = 5) -> list[object]:
    """Engine script for one step that streams ``text`` word by word."""

    words = text.split(" ")
    deltas: list[object] = [TextDelta(word if index == 0 else f" {word}") for index, word in enumerate(words)]
    deltas.append(
        StepResult(
            message=AIMessage(content=text),
            finish_reason=finish_reason,
            usage=TokenUsage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
        )
    )
    return deltas


def tool_step(
    name: str,
    args: dict,
    *,
    call_id: str = "call-1",
    text: str = "",
    reasoning: str = "",
) -> list[object]:
    """Engine script for one step that ends by requesting a single tool call."""

    deltas: list[object] = []
    if reasoning:
        deltas.append(ReasoningDelta(reasoning))
    if text:
        deltas.append(TextDelta(text))
    deltas.append(
        StepResult(
            message=AIMessage(content=text, tool_calls=[{"name": name, "args": args, "id": call_id}]),
            finish_reason="tool-calls",
            usage=TokenUsage(prompt_tokens=20, completion_tokens=8),
        )
    )
    return deltas


def user_message(
    chat_id: str,
    text: str = "What does this company do?",
    *,
    message_id: str = "msg-user-1",
    attachments: Sequence[Attachment] = (),
    created_at: datetime | None = None,
) -> ChatMessage:
    return ChatMessage(
        id=message_id,
        chat_id=chat_id,
        role="user",
        parts=[TextPart(text=text)],
        attachments=list(attachments),
        created_at=created_at or datetime.now(tz=UTC),
    )


def assistant_message(chat_id: str, text: str, *, message_id: str, created_at: datetime) -> ChatMessage:
    return ChatMessage(
        id=message_id,
        chat_id=chat_id,
        role="assistant",
        parts=[TextPart(text=text)],
        created_at=created_at,
    )


@pytest.fixture
def fake_database_service() -> FakeDatabaseService:
    return FakeDatabaseService()


@pytest.fixture
def fake_chat_repository() -> FakeChatRepository:
    return FakeChatRepository()


@pytest.fixture
def fake_blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def question_bank() -> QuestionBank:
    return load_question_bank(str(QUESTION_BANK_PATH))


@pytest.fixture
def test_settings() -> Settings:
    return Settings(QUESTION_BANK_FILE=str(QUESTION_BANK_PATH), RESUMABLE_STREAM_BACKEND="memory")


def build_test_request(container: punq.Container, *, headers: dict[str, str] | None = None, cookies: dict[str, str] | None = None):
    """Build a request-shaped object using a real punq container in app state."""

    return SimpleNamespace(
        app=SimpleNamespace(state=SimpleNamespace(container=container)),
        headers=headers or {},
        cookies=cookies or {},
    )


def build_test_container(bindings: dict[object, object]) -> punq.Container:
    """Create a punq container and bind protocol/service keys to test doubles."""

    container = punq.Container()
    for key, value in bindings.items():
        container.register(key, instance=value)
    return container

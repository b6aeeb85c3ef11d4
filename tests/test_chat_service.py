"""Coordinator tests: ownership rules, persistence ordering, run lifecycle, and resume."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
import json
import uuid

import pytest

from app.agents.tools.registry import ToolRegistry, default_tools
from app.api.schemas.chat import ChatMessage, PostChatRequest
from app.core.errors import ChatError
from app.core.settings import Settings
from app.services.chat_service import ChatService
from app.services.stream_emitter import StreamEmitter
from app.services.stream_registry import DisabledStreamRegistry, InMemoryStreamRegistry
from tests.conftest import (
    OWNER,
    PDF_ATTACHMENT,
    STRANGER,
    FakeEngine,
    FakeTitleGenerator,
    assistant_message,
    text_step,
    user_message,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _payload(chat_id: str, text: str = "Summarize the attached report", **overrides) -> PostChatRequest:
    body = {
        "id": chat_id,
        "message": {
            "id": str(uuid.uuid4()),
            "createdAt": NOW.isoformat(),
            "role": "user",
            "content": text,
            "parts": [{"type": "text", "text": text}],
            "experimental_attachments": [PDF_ATTACHMENT.model_dump(mode="json", by_alias=True)],
        },
        "selectedChatModel": "chat-model",
        "selectedVisibilityType": "private",
    }
    body.update(overrides)
    return PostChatRequest.model_validate(body)


def _service(
    repository,
    question_bank,
    blob_store,
    *,
    engine=None,
    registry=None,
    title_generator=None,
    clock=lambda: NOW,
) -> ChatService:
    return ChatService(
        settings=Settings(),
        chat_repository=repository,
        stream_registry=registry if registry is not None else InMemoryStreamRegistry(),
        engine=engine or FakeEngine([text_step("The report covers Acme.")]),
        title_generator=title_generator or FakeTitleGenerator(),
        tool_registry=ToolRegistry(default_tools(blob_store, question_bank), ["generateQuestions"]),
        clock=clock,
    )


@pytest.mark.asyncio
async def test_start_generation_creates_chat_and_persists_user_message_first(
    fake_chat_repository,
    question_bank,
    fake_blob_store,
) -> None:
    chat_id = str(uuid.uuid4())
    title_generator = FakeTitleGenerator("Acme report summary")
    service = _service(fake_chat_repository, question_bank, fake_blob_store, title_generator=title_generator)

    events = await service.start_generation(principal=OWNER, payload=_payload(chat_id))
    frames = [event async for event in events]
    await service.shutdown()

    assert frames[0] == {"type": "thinking-start", "content": "Scanning your document..."}
    assert frames[-1]["type"] == "completion-meta"
    assert fake_chat_repository.chats[chat_id].user_id == OWNER.user_id
    assert fake_chat_repository.chats[chat_id].title == "Acme report summary"
    assert [batch[0].role for batch in fake_chat_repository.saved_batches] == ["user", "assistant"]
    assert len(fake_chat_repository.stream_ids[chat_id]) == 1


@pytest.mark.asyncio
async def test_start_generation_keeps_placeholder_title_when_title_model_fails(
    fake_chat_repository,
    question_bank,
    fake_blob_store,
) -> None:
    chat_id = str(uuid.uuid4())
    service = _service(
        fake_chat_repository,
        question_bank,
        fake_blob_store,
        title_generator=FakeTitleGenerator(fail=True),
    )

    events = await service.start_generation(principal=OWNER, payload=_payload(chat_id, "Summarize Acme"))
    _ = [event async for event in events]
    await service.shutdown()

    assert fake_chat_repository.chats[chat_id].title == "Summarize Acme"


@pytest.mark.asyncio
async def test_start_generation_rejects_non_owner_before_side_effects(
    fake_chat_repository,
    question_bank,
    fake_blob_store,
) -> None:
    chat_id = str(uuid.uuid4())
    fake_chat_repository.add_chat(chat_id, visibility="public")
    service = _service(fake_chat_repository, question_bank, fake_blob_store)

    with pytest.raises(ChatError) as exc_info:
        await service.start_generation(principal=STRANGER, payload=_payload(chat_id))

    assert exc_info.value.code == "forbidden:chat"
    assert exc_info.value.status_code == 403
    assert fake_chat_repository.saved_batches == []
    assert chat_id not in fake_chat_repository.stream_ids


@pytest.mark.asyncio
async def test_start_generation_simulated_timeout_is_gateway_timeout(
    fake_chat_repository,
    question_bank,
    fake_blob_store,
) -> None:
    service = _service(fake_chat_repository, question_bank, fake_blob_store)

    with pytest.raises(ChatError) as exc_info:
        await service.start_generation(principal=OWNER, payload=_payload(str(uuid.uuid4())), simulate_timeout=True)

    assert exc_info.value.code == "timeout:chat"
    assert exc_info.value.status_code == 504


@pytest.mark.asyncio
async def test_start_generation_sends_history_and_active_tools_to_engine(
    fake_chat_repository,
    question_bank,
    fake_blob_store,
) -> None:
    chat_id = str(uuid.uuid4())
    fake_chat_repository.add_chat(chat_id)
    await fake_chat_repository.save_messages(
        [
            user_message(chat_id, "Earlier question", message_id="m1", created_at=NOW - timedelta(minutes=5)),
            assistant_message(chat_id, "Earlier answer", message_id="m2", created_at=NOW - timedelta(minutes=4)),
        ]
    )
    engine = FakeEngine([text_step("Follow-up answer.")])
    service = _service(fake_chat_repository, question_bank, fake_blob_store, engine=engine)

    events = await service.start_generation(principal=OWNER, payload=_payload(chat_id, "Follow-up"))
    frames = [event async for event in events]
    await service.shutdown()

    assert frames[0]["content"] == "Getting relevant information from your document..."
    assert len(engine.calls[0]["messages"]) == 3
    assert engine.calls[0]["tools"] == ["generateQuestions"]
    assert "generateQuestions" in engine.calls[0]["system_prompt"]


@pytest.mark.asyncio
async def test_resume_returns_none_when_resumability_disabled(fake_chat_repository, question_bank, fake_blob_store) -> None:
    service = _service(fake_chat_repository, question_bank, fake_blob_store, registry=DisabledStreamRegistry())

    assert await service.resume(principal=OWNER, chat_id="missing") is None


@pytest.mark.asyncio
async def test_resume_ownership_and_lookup_errors(fake_chat_repository, question_bank, fake_blob_store) -> None:
    service = _service(fake_chat_repository, question_bank, fake_blob_store)
    fake_chat_repository.add_chat("private-chat", visibility="private")
    fake_chat_repository.add_chat("public-chat", visibility="public")

    with pytest.raises(ChatError) as missing:
        await service.resume(principal=OWNER, chat_id="missing")
    with pytest.raises(ChatError) as forbidden:
        await service.resume(principal=STRANGER, chat_id="private-chat")
    with pytest.raises(ChatError) as no_stream:
        await service.resume(principal=STRANGER, chat_id="public-chat")

    assert missing.value.code == "not_found:chat"
    assert forbidden.value.code == "forbidden:chat"
    assert no_stream.value.code == "not_found:stream"


@pytest.mark.asyncio
async def test_resume_attaches_to_live_run(fake_chat_repository, question_bank, fake_blob_store) -> None:
    registry = InMemoryStreamRegistry()
    service = _service(fake_chat_repository, question_bank, fake_blob_store, registry=registry)
    chat_id = "chat-live"
    fake_chat_repository.add_chat(chat_id)
    await fake_chat_repository.create_stream_id(stream_id="run-live", chat_id=chat_id)
    emitter = await registry.register("run-live", lambda: StreamEmitter("run-live"))
    emitter.emit({"type": "thinking-start", "content": "Analyzing your request..."})
    emitter.emit({"type": "text-delta", "content": "Hello"})

    live = await service.resume(principal=OWNER, chat_id=chat_id, offset=1)
    emitter.close()

    assert live is not None
    assert [event async for event in live] == [{"type": "text-delta", "content": "Hello"}]


@pytest.mark.parametrize(("age_seconds", "replayed"), [(14, True), (15, True), (16, False)])
@pytest.mark.asyncio
async def test_resume_replays_recent_assistant_message_within_window(
    fake_chat_repository,
    question_bank,
    fake_blob_store,
    age_seconds: int,
    replayed: bool,
) -> None:
    service = _service(fake_chat_repository, question_bank, fake_blob_store)
    chat_id = "chat-done"
    fake_chat_repository.add_chat(chat_id)
    await fake_chat_repository.create_stream_id(stream_id="run-done", chat_id=chat_id)
    message = assistant_message(chat_id, "Finished answer", message_id="m-a", created_at=NOW - timedelta(seconds=age_seconds))
    await fake_chat_repository.save_messages([user_message(chat_id, created_at=NOW - timedelta(minutes=1)), message])

    events = await service.resume(principal=OWNER, chat_id=chat_id)
    frames = [event async for event in events]

    if replayed:
        assert len(frames) == 1
        assert frames[0]["type"] == "append-message"
        replay = ChatMessage.model_validate(json.loads(frames[0]["message"]))
        assert replay.id == "m-a"
        assert replay.parts[0].text == "Finished answer"
    else:
        assert frames == []


@pytest.mark.asyncio
async def test_resume_is_empty_when_latest_message_is_from_user(fake_chat_repository, question_bank, fake_blob_store) -> None:
    service = _service(fake_chat_repository, question_bank, fake_blob_store)
    fake_chat_repository.add_chat("chat-1")
    await fake_chat_repository.create_stream_id(stream_id="run-1", chat_id="chat-1")
    await fake_chat_repository.save_messages([user_message("chat-1", created_at=NOW)])

    events = await service.resume(principal=OWNER, chat_id="chat-1")

    assert [event async for event in events] == []


@pytest.mark.asyncio
async def test_sequential_resumes_of_an_old_completed_run_are_both_empty(
    fake_chat_repository,
    question_bank,
    fake_blob_store,
) -> None:
    service = _service(fake_chat_repository, question_bank, fake_blob_store)
    fake_chat_repository.add_chat("chat-1")
    await fake_chat_repository.create_stream_id(stream_id="run-1", chat_id="chat-1")
    await fake_chat_repository.save_messages(
        [assistant_message("chat-1", "Old answer", message_id="m-a", created_at=NOW - timedelta(minutes=10))]
    )

    first = [event async for event in await service.resume(principal=OWNER, chat_id="chat-1")]
    second = [event async for event in await service.resume(principal=OWNER, chat_id="chat-1")]

    assert first == second == []


@pytest.mark.asyncio
async def test_update_attachments_and_delete_are_owner_only(fake_chat_repository, question_bank, fake_blob_store) -> None:
    service = _service(fake_chat_repository, question_bank, fake_blob_store)
    fake_chat_repository.add_chat("chat-1", visibility="public")

    with pytest.raises(ChatError) as patch_forbidden:
        await service.update_attachments(principal=STRANGER, chat_id="chat-1", attachments=[PDF_ATTACHMENT])
    with pytest.raises(ChatError) as delete_forbidden:
        await service.delete_chat(principal=STRANGER, chat_id="chat-1")
    with pytest.raises(ChatError) as delete_missing:
        await service.delete_chat(principal=OWNER, chat_id="missing")

    assert patch_forbidden.value.code == "forbidden:chat"
    assert delete_forbidden.value.code == "forbidden:chat"
    assert delete_missing.value.code == "not_found:chat"

    await service.update_attachments(principal=OWNER, chat_id="chat-1", attachments=[PDF_ATTACHMENT])
    assert fake_chat_repository.chats["chat-1"].attachments == [PDF_ATTACHMENT]

    deleted = await service.delete_chat(principal=OWNER, chat_id="chat-1")
    assert deleted.id == "chat-1"
    assert "chat-1" not in fake_chat_repository.chats

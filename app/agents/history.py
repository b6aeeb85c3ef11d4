"""Conversion of persisted chat messages into LangChain messages for the engine."""

from __future__ import annotations

from collections.abc import Sequence
import json
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage

from app.api.schemas.chat import Attachment, ChatMessage, TextPart, ToolInvocationPart


def _attachment_block(attachment: Attachment) -> dict[str, Any]:
    return {
        "type": "file",
        "source_type": "url",
        "url": str(attachment.url),
        "mime_type": attachment.content_type,
        "filename": attachment.name,
    }


def tool_result_content(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


def _user_message(message: ChatMessage) -> HumanMessage:
    text = "".join(part.text for part in message.parts if isinstance(part, TextPart))
    if not message.attachments:
        return HumanMessage(content=text, id=message.id)
    content: list[str | dict[str, Any]] = [{"type": "text", "text": text}]
    content.extend(_attachment_block(attachment) for attachment in message.attachments)
    return HumanMessage(content=content, id=message.id)


def _assistant_messages(message: ChatMessage) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    text_buffer: list[str] = []
    pending_calls: list[dict[str, Any]] = []
    pending_results: list[ToolMessage] = []

    def flush() -> None:
        if not text_buffer and not pending_calls:
            return
        converted.append(AIMessage(content="".join(text_buffer), tool_calls=list(pending_calls)))
        converted.extend(pending_results)
        text_buffer.clear()
        pending_calls.clear()
        pending_results.clear()

    for part in message.parts:
        if isinstance(part, TextPart):
            if pending_calls:
                flush()
            text_buffer.append(part.text)
        elif isinstance(part, ToolInvocationPart):
            invocation = part.tool_invocation
            # Calls without a result never completed and can't be replayed.
            if invocation.state != "result":
                continue
            pending_calls.append({"name": invocation.tool_name, "args": invocation.args, "id": invocation.tool_call_id})
            pending_results.append(
                ToolMessage(
                    content=tool_result_content(invocation.result),
                    tool_call_id=invocation.tool_call_id,
                    name=invocation.tool_name,
                )
            )
    flush()
    return converted


def to_langchain_messages(messages: Sequence[ChatMessage]) -> list[BaseMessage]:
    """Convert history in order; reasoning parts are not replayed to the model."""
    converted: list[BaseMessage] = []
    for message in messages:
        if message.role == "user":
            converted.append(_user_message(message))
        else:
            converted.extend(_assistant_messages(message))
    return converted


def latest_user_message(messages: Sequence[ChatMessage]) -> ChatMessage | None:
    return next((message for message in reversed(messages) if message.role == "user"), None)

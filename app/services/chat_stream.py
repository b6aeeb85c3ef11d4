from __future__ import annotations

import json
import logging
from typing import Any, Literal, NotRequired, TypedDict, get_args

logger = logging.getLogger(__name__)


class ThinkingStartEvent(TypedDict):
    type: Literal["thinking-start"]
    content: str


class ThinkingUpdateEvent(TypedDict):
    type: Literal["thinking-update"]
    content: str
    stepType: NotRequired[str]
    toolName: NotRequired[str]


class ThinkingEndEvent(TypedDict):
    type: Literal["thinking-end"]
    content: str


class ToolProgressEvent(TypedDict):
    type: Literal["tool-progress"]
    content: str
    toolName: str
    progress: int


class GeneratedQuestion(TypedDict):
    question: str
    category: str
    reasoning: NotRequired[str]


class QuestionGeneratedEvent(TypedDict):
    type: Literal["question-generated"]
    content: str | GeneratedQuestion
    questionIndex: int
    questionType: Literal["custom", "template"]


class CompletionMetaEvent(TypedDict):
    type: Literal["completion-meta"]
    content: str


class ErrorEventData(TypedDict):
    message: str


class ErrorEvent(TypedDict):
    type: Literal["error"]
    data: ErrorEventData


class AppendMessageEvent(TypedDict):
    type: Literal["append-message"]
    message: str


class InfoEvent(TypedDict):
    type: Literal["id", "title", "clear", "finish", "questions-meta"]
    content: str


class TextDeltaEvent(TypedDict):
    type: Literal["text-delta", "reasoning-delta"]
    content: str


class ToolCallEvent(TypedDict):
    type: Literal["tool-call"]
    toolCallId: str
    toolName: str
    args: dict[str, Any]


class ToolResultEvent(TypedDict):
    type: Literal["tool-result"]
    toolCallId: str
    toolName: str
    result: Any


ChatStreamEventType = Literal[
    "thinking-start",
    "thinking-update",
    "thinking-end",
    "tool-progress",
    "question-generated",
    "completion-meta",
    "error",
    "append-message",
    "id",
    "title",
    "clear",
    "finish",
    "questions-meta",
    "text-delta",
    "reasoning-delta",
    "tool-call",
    "tool-result",
]

ChatStreamEvent = (
    ThinkingStartEvent
    | ThinkingUpdateEvent
    | ThinkingEndEvent
    | ToolProgressEvent
    | QuestionGeneratedEvent
    | CompletionMetaEvent
    | ErrorEvent
    | AppendMessageEvent
    | InfoEvent
    | TextDeltaEvent
    | ToolCallEvent
    | ToolResultEvent
)

EVENT_TYPES: frozenset[str] = frozenset(get_args(ChatStreamEventType))
TERMINAL_EVENT_TYPES: frozenset[str] = frozenset({"completion-meta", "error"})

STREAM_MEDIA_TYPE = "application/x-ndjson"


def encode_stream_event(event: ChatStreamEvent) -> str:
    """Serialize one event as a newline-delimited JSON frame."""
    return f"{json.dumps(event, separators=(',', ':'), default=str)}\n"


def decode_stream_event(frame: str) -> ChatStreamEvent | None:
    """Parse one frame; unknown or malformed frames yield ``None`` so readers can skip them."""
    line = frame.strip()
    if not line:
        return None
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("dropping malformed stream frame", extra={"frame_length": len(line)})
        return None
    if not isinstance(payload, dict) or payload.get("type") not in EVENT_TYPES:
        return None
    return payload  # type: ignore[return-value]


def error_event(message: str) -> ErrorEvent:
    return {"type": "error", "data": {"message": message}}


def is_terminal_event(event: ChatStreamEvent) -> bool:
    return event["type"] in TERMINAL_EVENT_TYPES

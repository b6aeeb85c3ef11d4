from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Literal, Protocol

from pydantic import BaseModel

from app.services.chat_stream import GeneratedQuestion
from app.services.stream_emitter import StreamEmitter

logger = logging.getLogger(__name__)

InfoKind = Literal["id", "title", "clear", "finish", "questions-meta"]


@dataclass(frozen=True)
class ToolFeedback:
    """User-facing status copy shown around one tool call."""

    starting: str
    executing: str
    completed: str


DEFAULT_TOOL_FEEDBACK = ToolFeedback(
    starting="Initializing tool...",
    executing="Processing with tool...",
    completed="Tool execution complete",
)


class ChatTool(Protocol):
    """Capability the model can invoke during a generation run."""

    name: str
    description: str
    args_schema: type[BaseModel]
    feedback: ToolFeedback

    async def invoke(self, args: dict[str, Any], sink: ToolEventSink) -> Any:
        """Run the tool, reporting progress through ``sink``, and return its structured result."""


class QuestionCounter:
    """Run-scoped source of ``questionIndex`` values shared by every sink of one run."""

    def __init__(self) -> None:
        self._next = 0

    def take(self) -> int:
        index = self._next
        self._next += 1
        return index


class ToolEventSink:
    """Per-call event channel handed to a tool.

    Progress is clamped to 0-100 and never goes backwards. Question indices
    come from the run's shared counter, so they stay contiguous from 0
    across every tool call of the run.
    """

    def __init__(
        self,
        emitter: StreamEmitter,
        *,
        tool_name: str,
        tool_call_id: str,
        question_counter: QuestionCounter | None = None,
    ) -> None:
        self._emitter = emitter
        self.tool_name = tool_name
        self.tool_call_id = tool_call_id
        self._questions = question_counter or QuestionCounter()
        self._progress: int | None = None
        self._question_count = 0

    @property
    def question_count(self) -> int:
        """Questions emitted through this sink, not the run total."""
        return self._question_count

    def info(self, kind: InfoKind, content: str = "") -> None:
        self._emitter.emit({"type": kind, "content": content})

    def progress(self, value: int, content: str) -> None:
        bounded = min(100, max(0, int(value)))
        if self._progress is not None and bounded < self._progress:
            logger.debug(
                "holding tool progress at previous value",
                extra={"tool_name": self.tool_name, "requested": bounded, "current": self._progress},
            )
            bounded = self._progress
        self._progress = bounded
        self._emitter.emit(
            {"type": "tool-progress", "content": content, "toolName": self.tool_name, "progress": bounded}
        )

    def question(
        self,
        content: str | GeneratedQuestion,
        question_type: Literal["custom", "template"],
    ) -> int:
        index = self._questions.take()
        self._question_count += 1
        self._emitter.emit(
            {
                "type": "question-generated",
                "content": content,
                "questionIndex": index,
                "questionType": question_type,
            }
        )
        return index

    def complete(self, content: str) -> None:
        """Report 100% if the tool emitted progress without finishing it."""
        if self._progress is not None and self._progress < 100:
            self.progress(100, content)

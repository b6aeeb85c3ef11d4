"""Generation driver: runs one assistant turn and narrates it onto a stream emitter.

One driver instance drives exactly one run. It walks the engine through at
most ``max_steps`` steps, executes requested tools in between, persists the
resulting assistant message once, and always leaves the emitter closed with
exactly one terminal frame (``completion-meta`` or ``error``).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
import json
import logging
from typing import Any
import uuid

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage

from app.agents.engine import ChatEngine, ReasoningDelta, StepResult, TextDelta, TokenUsage
from app.agents.history import latest_user_message, to_langchain_messages, tool_result_content
from app.agents.tools.contracts import DEFAULT_TOOL_FEEDBACK, ChatTool, QuestionCounter, ToolEventSink
from app.api.schemas.chat import (
    Attachment,
    ChatMessage,
    MessagePart,
    ReasoningPart,
    TextPart,
    ToolInvocation,
    ToolInvocationPart,
)
from app.core.errors import ChatError, ErrorKind, InvalidStateTransition, NoAssistantMessage
from app.services.contracts import ChatRepositoryProtocol
from app.services.stream_emitter import StreamEmitter

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = "Failed to save conversation"
GENERIC_FAILURE_MESSAGE = "Oops, an error occurred while processing your request!"
ANALYSIS_COMPLETE = "Analysis complete"


class GenerationState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    FINISHING = "finishing"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[GenerationState, frozenset[GenerationState]] = {
    GenerationState.IDLE: frozenset({GenerationState.RUNNING, GenerationState.FAILED}),
    GenerationState.RUNNING: frozenset(
        {GenerationState.TOOL_CALL, GenerationState.FINISHING, GenerationState.FAILED}
    ),
    GenerationState.TOOL_CALL: frozenset({GenerationState.TOOL_RESULT, GenerationState.FAILED}),
    GenerationState.TOOL_RESULT: frozenset(
        {
            GenerationState.TOOL_CALL,
            GenerationState.RUNNING,
            GenerationState.FINISHING,
            GenerationState.FAILED,
        }
    ),
    GenerationState.FINISHING: frozenset({GenerationState.COMPLETED, GenerationState.FAILED}),
    GenerationState.COMPLETED: frozenset(),
    GenerationState.FAILED: frozenset(),
}


@dataclass(frozen=True)
class GenerationRequest:
    chat_id: str
    selected_chat_model: str
    system_prompt: str
    history: Sequence[ChatMessage]
    tools: Sequence[ChatTool] = ()
    chat_attachments: Sequence[Attachment] = ()


@dataclass(frozen=True)
class GenerationOutcome:
    state: GenerationState
    assistant_message: ChatMessage | None
    finish_reason: str | None
    usage: TokenUsage
    step_count: int
    error: ChatError | None = None


@dataclass
class _StepRecord:
    message: AIMessage
    finish_reason: str
    reasoning: str = ""
    text: str = ""
    invocations: list[ToolInvocation] = field(default_factory=list)


def thinking_start_copy(history: Sequence[ChatMessage], chat_attachments: Sequence[Attachment] = ()) -> str:
    latest = latest_user_message(history)
    has_document = bool(latest is not None and latest.attachments) or bool(chat_attachments)
    if not has_document:
        return "Analyzing your request..."
    if len(history) > 1:
        return "Getting relevant information from your document..."
    return "Scanning your document..."


class GenerationDriver:
    def __init__(
        self,
        *,
        engine: ChatEngine,
        chat_repository: ChatRepositoryProtocol,
        emitter: StreamEmitter,
        max_steps: int = 5,
        clock: Callable[[], datetime] | None = None,
        message_id_factory: Callable[[], str] | None = None,
    ) -> None:
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self._engine = engine
        self._chat_repository = chat_repository
        self._emitter = emitter
        self._max_steps = max_steps
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._message_id_factory = message_id_factory or (lambda: str(uuid.uuid4()))
        self._state = GenerationState.IDLE
        self._steps: list[_StepRecord] = []
        self._usage = TokenUsage()
        self._finish_reason: str | None = None
        self._persisted = False
        self._questions = QuestionCounter()

    @property
    def state(self) -> GenerationState:
        return self._state

    @property
    def step_count(self) -> int:
        return len(self._steps)

    async def run(self, request: GenerationRequest) -> GenerationOutcome:
        log_context = {"run_id": self._emitter.run_id, "chat_id": request.chat_id}
        if self._state is not GenerationState.IDLE:
            raise InvalidStateTransition(f"driver already used (state={self._state.value})")

        try:
            self._transition(GenerationState.RUNNING)
            self._emitter.emit(
                {"type": "thinking-start", "content": thinking_start_copy(request.history, request.chat_attachments)}
            )
            await self._run_steps(request)
            self._transition(GenerationState.FINISHING)
            self._emitter.emit({"type": "thinking-end", "content": ANALYSIS_COMPLETE})
            assistant_message = self._assemble_assistant_message(request)
        except NoAssistantMessage:
            logger.error("generation produced no assistant message", extra=log_context)
            return self._fail(ErrorKind.PERSISTENCE_FAILURE, SAVE_FAILED_MESSAGE)
        except asyncio.CancelledError:
            logger.warning("generation run cancelled", extra=log_context)
            self._fail(ErrorKind.UPSTREAM_FAILURE, GENERIC_FAILURE_MESSAGE)
            raise
        except Exception:
            logger.exception("generation run failed", extra=log_context)
            return self._fail(ErrorKind.UPSTREAM_FAILURE, GENERIC_FAILURE_MESSAGE)

        try:
            await self._persist(assistant_message)
        except Exception:
            logger.exception("failed to persist assistant message", extra=log_context)
            return self._fail(ErrorKind.PERSISTENCE_FAILURE, SAVE_FAILED_MESSAGE)

        self._transition(GenerationState.COMPLETED)
        self._emitter.emit(
            {
                "type": "completion-meta",
                "content": json.dumps(
                    {
                        "usage": self._usage.to_payload(),
                        "finishReason": self._finish_reason,
                        "stepCount": self.step_count,
                    }
                ),
            }
        )
        self._emitter.close()
        logger.info(
            "generation run completed",
            extra={**log_context, "step_count": self.step_count, "finish_reason": self._finish_reason},
        )
        return self._outcome(assistant_message)

    async def _run_steps(self, request: GenerationRequest) -> None:
        messages: list[BaseMessage] = to_langchain_messages(request.history)
        tools_by_name = {tool.name: tool for tool in request.tools}

        while len(self._steps) < self._max_steps:
            if self._state is GenerationState.TOOL_RESULT:
                self._transition(GenerationState.RUNNING)
            step = await self._stream_step(request, messages)
            self._steps.append(step)
            messages.append(step.message)

            for call in step.message.tool_calls:
                invocation = await self._call_tool(call, tools_by_name)
                step.invocations.append(invocation)
                messages.append(
                    ToolMessage(
                        content=tool_result_content(invocation.result),
                        tool_call_id=invocation.tool_call_id,
                        name=invocation.tool_name,
                    )
                )

            self._emit_step_finished(step)
            if not step.message.tool_calls:
                return

        logger.info(
            "step budget exhausted",
            extra={"run_id": self._emitter.run_id, "max_steps": self._max_steps},
        )

    async def _stream_step(self, request: GenerationRequest, messages: Sequence[BaseMessage]) -> _StepRecord:
        reasoning: list[str] = []
        text: list[str] = []
        result: StepResult | None = None

        async for delta in self._engine.stream_step(
            selected_chat_model=request.selected_chat_model,
            system_prompt=request.system_prompt,
            messages=messages,
            tools=request.tools,
        ):
            if isinstance(delta, TextDelta):
                text.append(delta.text)
                self._emitter.emit({"type": "text-delta", "content": delta.text})
            elif isinstance(delta, ReasoningDelta):
                reasoning.append(delta.text)
                self._emitter.emit({"type": "reasoning-delta", "content": delta.text})
            elif isinstance(delta, StepResult):
                result = delta

        if result is None:
            raise RuntimeError("engine step ended without a step result")

        self._usage = self._usage + result.usage
        self._finish_reason = result.finish_reason
        return _StepRecord(
            message=result.message,
            finish_reason=result.finish_reason,
            reasoning="".join(reasoning),
            text="".join(text),
        )

    async def _call_tool(self, call: dict[str, Any], tools_by_name: dict[str, ChatTool]) -> ToolInvocation:
        self._transition(GenerationState.TOOL_CALL)
        tool_name = str(call["name"])
        tool_call_id = str(call.get("id") or f"call_{uuid.uuid4().hex}")
        args = dict(call.get("args") or {})
        tool = tools_by_name.get(tool_name)
        feedback = tool.feedback if tool is not None else DEFAULT_TOOL_FEEDBACK

        self._emitter.emit(
            {"type": "thinking-update", "content": feedback.starting, "stepType": "tool-call", "toolName": tool_name}
        )
        self._emitter.emit({"type": "tool-call", "toolCallId": tool_call_id, "toolName": tool_name, "args": args})
        if tool is None:
            raise LookupError(f"model requested unknown tool {tool_name!r}")

        sink = ToolEventSink(
            self._emitter, tool_name=tool_name, tool_call_id=tool_call_id, question_counter=self._questions
        )
        result = await tool.invoke(args, sink)
        sink.complete(feedback.completed)

        self._transition(GenerationState.TOOL_RESULT)
        self._emitter.emit({"type": "tool-result", "toolCallId": tool_call_id, "toolName": tool_name, "result": result})
        self._emitter.emit(
            {"type": "thinking-update", "content": feedback.completed, "stepType": "tool-result", "toolName": tool_name}
        )
        return ToolInvocation(state="result", tool_call_id=tool_call_id, tool_name=tool_name, args=args, result=result)

    def _emit_step_finished(self, step: _StepRecord) -> None:
        if step.finish_reason == "stop":
            self._emitter.emit({"type": "thinking-update", "content": "Finalizing response...", "stepType": "completion"})
        elif step.finish_reason == "tool-calls":
            self._emitter.emit(
                {"type": "thinking-update", "content": "Processing tool results...", "stepType": "processing"}
            )
        elif step.text:
            self._emitter.emit({"type": "thinking-update", "content": "Generating response...", "stepType": "generate"})

    def _assemble_assistant_message(self, request: GenerationRequest) -> ChatMessage:
        parts: list[MessagePart] = []
        for step in self._steps:
            if step.reasoning:
                parts.append(ReasoningPart(reasoning=step.reasoning))
            if step.text:
                parts.append(TextPart(text=step.text))
            parts.extend(ToolInvocationPart(tool_invocation=invocation) for invocation in step.invocations)
        if not parts:
            raise NoAssistantMessage(f"run {self._emitter.run_id} produced no assistant output")
        return ChatMessage(
            id=self._message_id_factory(),
            chat_id=request.chat_id,
            role="assistant",
            parts=parts,
            attachments=[],
            created_at=self._clock(),
        )

    async def _persist(self, message: ChatMessage) -> None:
        if self._persisted:
            return
        self._persisted = True
        await self._chat_repository.save_messages([message])

    def _fail(self, kind: ErrorKind, message: str) -> GenerationOutcome:
        error = ChatError(kind, "stream", message)
        if self._state not in {GenerationState.COMPLETED, GenerationState.FAILED}:
            self._transition(GenerationState.FAILED)
        if not self._emitter.closed:
            self._emitter.close(error_message=None if self._emitter.terminal_event else error.message)
        logger.info("generation run ended with %s", error.code, extra={"run_id": self._emitter.run_id})
        return self._outcome(None, error)

    def _transition(self, target: GenerationState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise InvalidStateTransition(f"{self._state.value} -> {target.value}")
        logger.debug(
            "generation state transition",
            extra={"run_id": self._emitter.run_id, "from_state": self._state.value, "to_state": target.value},
        )
        self._state = target

    def _outcome(self, assistant_message: ChatMessage | None, error: ChatError | None = None) -> GenerationOutcome:
        return GenerationOutcome(
            state=self._state,
            assistant_message=assistant_message,
            finish_reason=self._finish_reason,
            usage=self._usage,
            step_count=self.step_count,
            error=error,
        )

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, SystemMessage, message_chunk_to_message

if TYPE_CHECKING:
    from app.agents.tools.contracts import ChatTool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )

    def to_payload(self) -> dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True)
class StepResult:
    """Final record of one engine step: the produced assistant message and its stats."""

    message: AIMessage
    finish_reason: str
    usage: TokenUsage


EngineDelta = TextDelta | ReasoningDelta | StepResult


class ChatEngine(Protocol):
    """Contract for the language-model engine driven one step at a time."""

    def stream_step(
        self,
        *,
        selected_chat_model: str,
        system_prompt: str,
        messages: Sequence[BaseMessage],
        tools: Sequence[ChatTool],
    ) -> AsyncIterator[EngineDelta]:
        """Stream text/reasoning deltas for one step, ending with exactly one ``StepResult``."""


def normalize_finish_reason(raw: Any, *, has_tool_calls: bool) -> str:
    if not raw:
        return "tool-calls" if has_tool_calls else "stop"
    reason = str(raw).lower()
    if reason in {"tool_calls", "function_call", "tool_use"}:
        return "tool-calls"
    if reason in {"end_turn", "stop_sequence"}:
        return "stop"
    return reason.replace("_", "-")


def tool_schema(tool: ChatTool) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.args_schema.model_json_schema(),
        },
    }


class LangChainChatEngine:
    """Engine adapter over LangChain chat models, keyed by chat model variant."""

    def __init__(self, models: Mapping[str, BaseChatModel], default_variant: str = "chat-model") -> None:
        if default_variant not in models:
            raise ValueError(f"no chat model configured for default variant {default_variant!r}")
        self._models = dict(models)
        self._default_variant = default_variant

    async def stream_step(
        self,
        *,
        selected_chat_model: str,
        system_prompt: str,
        messages: Sequence[BaseMessage],
        tools: Sequence[ChatTool],
    ) -> AsyncIterator[EngineDelta]:
        runnable = self._bind_tools(self._models.get(selected_chat_model, self._models[self._default_variant]), tools)
        logger.debug(
            "streaming engine step",
            extra={"variant": selected_chat_model, "history_length": len(messages), "tools_count": len(tools)},
        )

        aggregate: AIMessageChunk | None = None
        async for chunk in runnable.astream([SystemMessage(content=system_prompt), *messages]):
            if not isinstance(chunk, AIMessageChunk):
                chunk = AIMessageChunk(content=getattr(chunk, "content", str(chunk)))
            aggregate = chunk if aggregate is None else aggregate + chunk
            for kind, text in _extract_chunk_parts(chunk):
                yield ReasoningDelta(text) if kind == "reasoning" else TextDelta(text)

        message = message_chunk_to_message(aggregate) if aggregate is not None else AIMessage(content="")
        if not isinstance(message, AIMessage):
            message = AIMessage(content=message.content)
        usage_metadata = message.usage_metadata or {}
        yield StepResult(
            message=message,
            finish_reason=normalize_finish_reason(
                message.response_metadata.get("finish_reason") or message.response_metadata.get("stop_reason"),
                has_tool_calls=bool(message.tool_calls),
            ),
            usage=TokenUsage(
                prompt_tokens=int(usage_metadata.get("input_tokens", 0)),
                completion_tokens=int(usage_metadata.get("output_tokens", 0)),
            ),
        )

    def _bind_tools(self, model: BaseChatModel, tools: Sequence[ChatTool]) -> Any:
        if not tools:
            return model
        try:
            return model.bind_tools([tool_schema(tool) for tool in tools])
        except NotImplementedError:
            logger.warning("chat model does not support tool calling; tools disabled", extra={"model": type(model).__name__})
            return model


def _extract_chunk_parts(chunk: AIMessageChunk) -> list[tuple[str, str]]:
    content = chunk.content
    if isinstance(content, str):
        return [("text", content)] if content else []

    parsed: list[tuple[str, str]] = []
    for item in content:
        if isinstance(item, str):
            if item:
                parsed.append(("text", item))
            continue
        if not isinstance(item, dict):
            continue
        item_type = item.get("type")
        if item_type == "text" and item.get("text"):
            parsed.append(("text", str(item["text"])))
        elif item_type in {"reasoning", "thinking"}:
            text = item.get("reasoning") or item.get("thinking") or item.get("text")
            if not text and isinstance(item.get("summary"), list):
                text = "".join(str(part.get("text", "")) for part in item["summary"] if isinstance(part, dict))
            if text:
                parsed.append(("reasoning", str(text)))
    return parsed

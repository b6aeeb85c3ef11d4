from __future__ import annotations

from collections.abc import Sequence
import logging

from app.agents.tools.contracts import ChatTool
from app.agents.tools.memo import CreateMemoTool, DueDiligenceQuestionsTool
from app.agents.tools.question_bank import QuestionBank, load_question_bank
from app.agents.tools.questions import GenerateQuestionsTool
from app.agents.tools.swot import CreateSwotTool
from app.core.settings import Settings
from app.services.contracts import BlobStoreProtocol

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Every known tool, plus the subset the model is offered on each run."""

    def __init__(self, tools: Sequence[ChatTool], active_names: Sequence[str]) -> None:
        self._tools = {tool.name: tool for tool in tools}
        unknown = [name for name in active_names if name not in self._tools]
        if unknown:
            logger.warning("ignoring unknown active tools", extra={"tool_names": unknown})
        self._active_names = [name for name in active_names if name in self._tools]

    @property
    def active_names(self) -> list[str]:
        return list(self._active_names)

    def get(self, name: str) -> ChatTool | None:
        return self._tools.get(name)

    def active_tools(self) -> list[ChatTool]:
        return [self._tools[name] for name in self._active_names]


def default_tools(blob_store: BlobStoreProtocol, bank: QuestionBank) -> list[ChatTool]:
    return [
        CreateSwotTool(blob_store),
        CreateMemoTool(blob_store, bank),
        GenerateQuestionsTool(bank),
        DueDiligenceQuestionsTool(bank),
    ]


def build_tool_registry(settings: Settings, blob_store: BlobStoreProtocol) -> ToolRegistry:
    bank = load_question_bank(settings.question_bank_file)
    registry = ToolRegistry(default_tools(blob_store, bank), settings.active_tool_names)
    logger.info("chat tools configured", extra={"active_tools": registry.active_names})
    return registry

from __future__ import annotations

import logging

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from app.agents.prompts import MAX_TITLE_LENGTH, title_prompt

logger = logging.getLogger(__name__)


def fallback_title(message: str) -> str:
    """Placeholder title derived from the user's first message."""
    compact = " ".join(message.split())
    if len(compact) <= MAX_TITLE_LENGTH:
        return compact or "New chat"
    return f"{compact[: MAX_TITLE_LENGTH - 1].rstrip()}…"


class LangChainTitleGenerator:
    def __init__(self, model: BaseChatModel) -> None:
        self._model = model

    async def generate_title(self, message: str) -> str:
        response = await self._model.ainvoke([SystemMessage(content=title_prompt()), HumanMessage(content=message)])
        content = response.content if isinstance(response.content, str) else str(response.content)
        title = content.strip().strip("\"'").replace(":", " ")
        if not title:
            logger.debug("title model returned empty output; using fallback title")
            return fallback_title(message)
        return fallback_title(title)

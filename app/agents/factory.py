from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_openai import ChatOpenAI

from app.agents.engine import LangChainChatEngine
from app.agents.title_generator import LangChainTitleGenerator
from app.core.settings import Settings

logger = logging.getLogger(__name__)

_MOCK_MESSAGE_DELIMITER = "\n\n--- message ---\n\n"
_REASONING_VARIANT = "chat-model-reasoning"
_CHAT_MODEL_VARIANTS = ("chat-model", _REASONING_VARIANT)


def _load_mock_messages(messages_file: str) -> list[str]:
    path = Path(messages_file)
    raw_content = path.read_text(encoding="utf-8")
    messages = [chunk.strip() for chunk in raw_content.split(_MOCK_MESSAGE_DELIMITER) if chunk.strip()]
    if not messages:
        raise ValueError(
            f"No mock messages found in {path}. Use delimiter {_MOCK_MESSAGE_DELIMITER!r} between messages."
        )
    return messages


def _build_provider_model(
    settings: Settings,
    model_name: str,
    *,
    streaming: bool = True,
    use_temperature: bool = True,
) -> BaseChatModel:
    options: dict[str, Any] = {}
    # Reasoning models reject any temperature other than their default.
    if use_temperature:
        options["temperature"] = settings.chat_model_temperature
    return ChatOpenAI(
        model=model_name,
        base_url=settings.chat_model_provider_base_url,
        api_key=settings.chat_model_provider_api_key,
        streaming=streaming,
        **options,
    )


def build_chat_engine(settings: Settings) -> LangChainChatEngine:
    """Create the chat engine with real or fake model backends per model variant."""

    if settings.chat_engine_use_mock:
        fake_responses = _load_mock_messages(settings.chat_engine_mock_messages_file)
        logger.info("using FakeListChatModel chat engine", extra={"responses_count": len(fake_responses)})
        model = FakeListChatModel(responses=fake_responses)
        return LangChainChatEngine({variant: model for variant in _CHAT_MODEL_VARIANTS})

    models: dict[str, BaseChatModel] = {}
    for variant in _CHAT_MODEL_VARIANTS:
        upstream_model = settings.upstream_model_for(variant)
        logger.info("using model-provider chat model", extra={"variant": variant, "model_alias": upstream_model})
        models[variant] = _build_provider_model(
            settings, upstream_model, use_temperature=variant != _REASONING_VARIANT
        )
    return LangChainChatEngine(models)


def build_title_generator(settings: Settings) -> LangChainTitleGenerator:
    if settings.chat_engine_use_mock:
        return LangChainTitleGenerator(FakeListChatModel(responses=["Due diligence chat"]))
    return LangChainTitleGenerator(_build_provider_model(settings, settings.title_model, streaming=False))

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Any
import uuid

from pydantic import BaseModel, Field, StringConstraints, create_model

from app.agents.tools.contracts import ToolEventSink, ToolFeedback
from app.agents.tools.documents import (
    DOCX_CONTENT_TYPE,
    artifact_filename,
    format_due_diligence_request,
    render_memo_document,
)
from app.agents.tools.question_bank import QuestionBank
from app.services.contracts import BlobStoreProtocol

logger = logging.getLogger(__name__)


def build_category_args_schema(
    model_name: str,
    bank: QuestionBank,
    *,
    questions_per_category: int,
    max_chars: int | None = None,
    with_title: bool = False,
) -> type[BaseModel]:
    """Build an args model with one fixed-length question list per configured category."""
    question_type: Any = (
        Annotated[str, StringConstraints(strip_whitespace=True, max_length=max_chars)] if max_chars else str
    )
    fields: dict[str, Any] = {}
    if with_title:
        fields["title"] = (str, Field(..., min_length=1))
    for category in bank.categories:
        fields[category.key] = (
            list[question_type],
            Field(
                ...,
                min_length=questions_per_category,
                max_length=questions_per_category,
                description=f"{questions_per_category} Questions related to {category.label}",
            ),
        )
    return create_model(model_name, **fields)


def _sections(bank: QuestionBank, parsed: BaseModel) -> list[tuple[str, list[str]]]:
    return [(category.label, list(getattr(parsed, category.key))) for category in bank.categories]


class DueDiligenceQuestionsTool:
    """Formats model-written questions into the initial due-diligence request shown in chat."""

    name = "dueDiligenceQuestions"
    description = (
        "Use this tool when the user asks to write an initial due-diligence request to get the desired "
        "output format. ONLY output this in your final answer, do not add any closing remarks."
    )
    feedback = ToolFeedback(
        starting="Preparing due diligence request...",
        executing="Formatting due diligence questions...",
        completed="Due diligence request ready",
    )

    def __init__(self, bank: QuestionBank) -> None:
        self._bank = bank
        self.args_schema = build_category_args_schema(
            "DueDiligenceQuestionsArgs",
            bank,
            questions_per_category=bank.count_for(self.name),
            max_chars=bank.question_max_chars,
        )

    async def invoke(self, args: dict[str, Any], sink: ToolEventSink) -> str:
        del sink
        parsed = self.args_schema.model_validate(args)
        return format_due_diligence_request(_sections(self._bank, parsed))


class CreateMemoTool:
    name = "createMemo"
    description = "Use this tool when the user asks to export due diligence questions as a downloadable document."
    feedback = ToolFeedback(
        starting="Preparing due diligence memo...",
        executing="Writing due diligence memo...",
        completed="Due diligence memo complete",
    )

    def __init__(self, blob_store: BlobStoreProtocol, bank: QuestionBank) -> None:
        self._blob_store = blob_store
        self._bank = bank
        self.args_schema = build_category_args_schema(
            "CreateMemoArgs",
            bank,
            questions_per_category=bank.count_for(self.name, default=4),
            with_title=True,
        )

    async def invoke(self, args: dict[str, Any], sink: ToolEventSink) -> dict[str, Any]:
        parsed = self.args_schema.model_validate(args)
        title = parsed.title
        artifact_id = str(uuid.uuid4())
        sink.info("id", artifact_id)
        sink.info("title", title)
        sink.info("clear")
        sink.progress(20, self.feedback.executing)

        document = await asyncio.to_thread(render_memo_document, title, _sections(self._bank, parsed))
        sink.progress(60, "Uploading due diligence memo...")
        url = await self._blob_store.put(
            artifact_filename(title, artifact_id, "memo", "docx"), document, DOCX_CONTENT_TYPE
        )
        sink.progress(100, "Due diligence memo uploaded")
        sink.info("finish")
        logger.info("created memo artifact", extra={"artifact_id": artifact_id, "tool_call_id": sink.tool_call_id})
        return {"id": artifact_id, "title": title, "url": url, "kind": "memo"}

from __future__ import annotations

import json
import logging
from typing import Any
import uuid

from pydantic import BaseModel, Field, create_model

from app.agents.tools.contracts import ToolEventSink, ToolFeedback
from app.agents.tools.question_bank import QuestionBank

logger = logging.getLogger(__name__)


class GenerateQuestionsTool:
    """Streams the template question bank followed by the model's company-specific questions."""

    name = "generateQuestions"
    description = (
        "Use this tool when the user asks for some due diligence questions. "
        "Only use the questions in the output for your response."
    )
    feedback = ToolFeedback(
        starting="Preparing due diligence questions...",
        executing="Generating relevant questions for your analysis...",
        completed="Questions generated successfully",
    )

    def __init__(self, bank: QuestionBank) -> None:
        self._bank = bank
        count = bank.custom_question_count
        self.args_schema: type[BaseModel] = create_model(
            "GenerateQuestionsArgs",
            title=(str, Field(..., min_length=1)),
            generatedQuestions=(
                list[str],
                Field(..., min_length=count, max_length=count, description=f"{count} Questions related to the company"),
            ),
        )

    async def invoke(self, args: dict[str, Any], sink: ToolEventSink) -> dict[str, Any]:
        parsed = self.args_schema.model_validate(args)
        templates = self._bank.template_questions
        generated: list[str] = list(parsed.generatedQuestions)
        total = len(templates) + len(generated)

        sink.info("id", str(uuid.uuid4()))
        sink.info("title", parsed.title)
        sink.info("clear")
        sink.info(
            "questions-meta",
            json.dumps({"total": total, "templateCount": len(templates), "customCount": len(generated)}),
        )

        for template in templates:
            sink.question({"question": template.question, "category": template.category}, "template")
            sink.progress(_percent(sink.question_count, total), self.feedback.executing)
        for question in generated:
            sink.question(question, "custom")
            sink.progress(_percent(sink.question_count, total), self.feedback.executing)

        sink.info("finish")
        logger.debug("streamed due diligence questions", extra={"tool_call_id": sink.tool_call_id, "total": total})
        return {
            "questionsFromTemplate": [template.question for template in templates],
            "generatedQuestions": generated,
        }


def _percent(done: int, total: int) -> int:
    if total <= 0:
        return 100
    return done * 100 // total

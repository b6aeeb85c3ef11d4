from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Any
import uuid

from pydantic import BaseModel, Field

from app.agents.tools.contracts import ToolEventSink, ToolFeedback
from app.agents.tools.documents import PPTX_CONTENT_TYPE, artifact_filename, render_swot_document
from app.services.contracts import BlobStoreProtocol

logger = logging.getLogger(__name__)

SwotItem = Annotated[str, Field(max_length=70, description="Summarize in maximum 70 characters")]


class CreateSwotArgs(BaseModel):
    title: str = Field(..., min_length=1)
    strengths: list[SwotItem] = Field(..., min_length=3, max_length=3, description="A list of 3 strengths you identified")
    weaknesses: list[SwotItem] = Field(..., min_length=3, max_length=3, description="A list of 3 weaknesses you identified")
    opportunities: list[SwotItem] = Field(
        ...,
        min_length=3,
        max_length=3,
        description="A list of 3 opportunities you identified",
    )
    threats: list[SwotItem] = Field(..., min_length=3, max_length=3, description="A list of 3 threats you identified")


class CreateSwotTool:
    name = "createSwot"
    description = "Use this tool when the user asks to create a SWOT analysis as a downloadable document."
    args_schema = CreateSwotArgs
    feedback = ToolFeedback(
        starting="Preparing SWOT analysis...",
        executing="Analyzing strengths, weaknesses, opportunities, and threats...",
        completed="SWOT analysis complete",
    )

    def __init__(self, blob_store: BlobStoreProtocol) -> None:
        self._blob_store = blob_store

    async def invoke(self, args: dict[str, Any], sink: ToolEventSink) -> dict[str, Any]:
        parsed = CreateSwotArgs.model_validate(args)
        artifact_id = str(uuid.uuid4())
        sink.info("id", artifact_id)
        sink.info("title", parsed.title)
        sink.info("clear")
        sink.progress(10, self.feedback.executing)

        document = await asyncio.to_thread(
            render_swot_document,
            parsed.title,
            strengths=parsed.strengths,
            weaknesses=parsed.weaknesses,
            opportunities=parsed.opportunities,
            threats=parsed.threats,
        )
        sink.progress(50, "Uploading SWOT deck...")

        url = await self._blob_store.put(
            artifact_filename(parsed.title, artifact_id, "swot", "pptx"),
            document,
            PPTX_CONTENT_TYPE,
        )
        sink.progress(100, "SWOT deck uploaded")
        sink.info("finish")
        logger.info("created swot artifact", extra={"artifact_id": artifact_id, "tool_call_id": sink.tool_call_id})
        return {"id": artifact_id, "title": parsed.title, "url": url, "kind": "swot"}

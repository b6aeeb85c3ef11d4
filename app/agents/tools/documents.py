"""Office documents produced by chat tools: a one-slide SWOT deck and a question memo."""

from __future__ import annotations

from collections.abc import Sequence
import io
import re
from string import ascii_uppercase

from docx import Document
from pptx import Presentation
from pptx.dml.color import RGBColor
from pptx.enum.shapes import MSO_SHAPE
from pptx.enum.text import MSO_ANCHOR, PP_ALIGN
from pptx.util import Inches, Pt

PPTX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

_WHITESPACE = re.compile(r"\s+")
_SLUG_UNSAFE = re.compile(r"[^a-z0-9]+")

# 16:9 slide, in inches.
_SLIDE_WIDTH = 10.0
_SLIDE_HEIGHT = 5.625
_BANNER_HEIGHT = 0.8
_QUADRANT_WIDTH = 4.5
_QUADRANT_HEADER_HEIGHT = 0.4
_QUADRANT_BODY_HEIGHT = 1.8
_BLANK_LAYOUT = 6


def clean_text(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()


def artifact_filename(title: str, artifact_id: str, kind: str, extension: str) -> str:
    slug = _SLUG_UNSAFE.sub("-", title.lower()).strip("-")[:60] or kind
    return f"{kind}-{slug}-{artifact_id}.{extension.lstrip('.')}"


def _numbered(items: Sequence[str]) -> list[str]:
    return [f"{index}. {clean_text(item)}" for index, item in enumerate(items, start=1)]


def format_due_diligence_request(sections: Sequence[tuple[str, Sequence[str]]]) -> str:
    """Render lettered sections of numbered questions as the initial request text."""
    lines = ["## Initial due-diligence request", ""]
    for letter, (label, questions) in zip(ascii_uppercase, sections):
        lines.append(f"### {letter}. {label}")
        lines.extend(_numbered(questions))
        lines.append("")
    return "\n".join(lines).rstrip()


def render_memo_document(title: str, sections: Sequence[tuple[str, Sequence[str]]]) -> bytes:
    """Word memo: one level-2 heading per category followed by its numbered questions."""
    document = Document()
    document.core_properties.title = clean_text(title)
    document.add_heading(clean_text(title), level=1)
    for label, questions in sections:
        document.add_heading(label, level=2)
        for question in questions:
            document.add_paragraph(clean_text(question), style="List Number")

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def render_swot_document(
    title: str,
    *,
    strengths: Sequence[str],
    weaknesses: Sequence[str],
    opportunities: Sequence[str],
    threats: Sequence[str],
) -> bytes:
    """Single-slide deck: a title banner over a two-by-two grid of quadrants."""
    presentation = Presentation()
    presentation.slide_width = Inches(_SLIDE_WIDTH)
    presentation.slide_height = Inches(_SLIDE_HEIGHT)
    presentation.core_properties.title = clean_text(title)
    slide = presentation.slides.add_slide(presentation.slide_layouts[_BLANK_LAYOUT])

    _add_box(slide, 0, 0, _SLIDE_WIDTH, _BANNER_HEIGHT, fill="B0C4DE", line="B0C4DE")
    _add_text(slide, [clean_text(title)], 0.4, 0.2, 7.0, 0.4, size=18, bold=True, color="000000")

    quadrants = (
        ("Strengths", strengths, 0.4, 0.9),
        ("Weaknesses", weaknesses, 5.1, 0.9),
        ("Opportunities", opportunities, 0.4, 3.3),
        ("Threats", threats, 5.1, 3.3),
    )
    for label, items, left, top in quadrants:
        _add_box(slide, left, top, _QUADRANT_WIDTH, _QUADRANT_HEADER_HEIGHT, fill="000000", line="000000")
        _add_text(
            slide,
            [label],
            left + 0.1,
            top + 0.05,
            _QUADRANT_WIDTH - 0.2,
            _QUADRANT_HEADER_HEIGHT - 0.1,
            size=14,
            bold=True,
            color="FFFFFF",
            align=PP_ALIGN.CENTER,
            anchor=MSO_ANCHOR.MIDDLE,
        )
        body_top = top + _QUADRANT_HEADER_HEIGHT
        _add_box(slide, left, body_top, _QUADRANT_WIDTH, _QUADRANT_BODY_HEIGHT, fill="FFFFFF", line="000000")
        _add_text(
            slide,
            [f"• {clean_text(item)}" for item in items],
            left + 0.15,
            body_top + 0.15,
            _QUADRANT_WIDTH - 0.3,
            _QUADRANT_BODY_HEIGHT - 0.3,
            size=12,
            color="000000",
        )

    buffer = io.BytesIO()
    presentation.save(buffer)
    return buffer.getvalue()


def _add_box(slide, left: float, top: float, width: float, height: float, *, fill: str, line: str) -> None:
    shape = slide.shapes.add_shape(MSO_SHAPE.RECTANGLE, Inches(left), Inches(top), Inches(width), Inches(height))
    shape.fill.solid()
    shape.fill.fore_color.rgb = RGBColor.from_string(fill)
    shape.line.color.rgb = RGBColor.from_string(line)


def _add_text(
    slide,
    lines: Sequence[str],
    left: float,
    top: float,
    width: float,
    height: float,
    *,
    size: int,
    color: str,
    bold: bool = False,
    align: PP_ALIGN = PP_ALIGN.LEFT,
    anchor: MSO_ANCHOR = MSO_ANCHOR.TOP,
) -> None:
    frame = slide.shapes.add_textbox(Inches(left), Inches(top), Inches(width), Inches(height)).text_frame
    frame.word_wrap = True
    frame.vertical_anchor = anchor
    for index, text in enumerate(lines):
        paragraph = frame.paragraphs[0] if index == 0 else frame.add_paragraph()
        paragraph.alignment = align
        run = paragraph.add_run()
        run.text = text
        run.font.size = Pt(size)
        run.font.bold = bold
        run.font.color.rgb = RGBColor.from_string(color)

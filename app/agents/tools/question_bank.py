from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


@dataclass(frozen=True)
class QuestionCategory:
    key: str
    label: str


@dataclass(frozen=True)
class TemplateQuestion:
    question: str
    category: str


@dataclass(frozen=True)
class QuestionBank:
    categories: tuple[QuestionCategory, ...]
    questions_per_category: dict[str, int]
    question_max_chars: int
    custom_question_count: int
    template_questions: tuple[TemplateQuestion, ...]

    def count_for(self, tool_name: str, default: int = 3) -> int:
        return self.questions_per_category.get(tool_name, default)


def _positive_int(value: object, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{field} must be a positive integer")
    return value


def load_question_bank(config_path: str) -> QuestionBank:
    parsed = yaml.safe_load(Path(config_path).read_text(encoding="utf-8"))
    if not isinstance(parsed, dict) or "categories" not in parsed:
        raise ValueError("question bank must contain a categories list")

    raw_categories = parsed["categories"]
    if not isinstance(raw_categories, list) or not raw_categories:
        raise ValueError("categories must be a non-empty list")

    categories: list[QuestionCategory] = []
    for payload in raw_categories:
        if not isinstance(payload, dict):
            raise ValueError("each category must be a map")
        key = str(payload.get("key", "")).strip()
        label = str(payload.get("label", "")).strip()
        if not key or not label:
            raise ValueError(f"category {payload!r} missing required key/label")
        categories.append(QuestionCategory(key=key, label=label))
    if len({category.key for category in categories}) != len(categories):
        raise ValueError("category keys must be unique")

    raw_counts = parsed.get("questions_per_category", {}) or {}
    if not isinstance(raw_counts, dict):
        raise ValueError("questions_per_category must be a map")
    counts = {
        str(tool_name): _positive_int(count, f"questions_per_category.{tool_name}")
        for tool_name, count in raw_counts.items()
    }

    templates: list[TemplateQuestion] = []
    for payload in parsed.get("template_questions", []) or []:
        if not isinstance(payload, dict) or not str(payload.get("question", "")).strip():
            raise ValueError("each template question needs a question text")
        templates.append(
            TemplateQuestion(
                question=str(payload["question"]).strip(),
                category=str(payload.get("category", "General")).strip(),
            )
        )

    return QuestionBank(
        categories=tuple(categories),
        questions_per_category=counts,
        question_max_chars=_positive_int(parsed.get("question_max_chars", 80), "question_max_chars"),
        custom_question_count=_positive_int(parsed.get("custom_question_count", 3), "custom_question_count"),
        template_questions=tuple(templates),
    )

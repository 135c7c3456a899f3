"""
Question candidates returned by the AI collaborator.

The exact field set belongs to the CRUD layer that persists questions; only
``content`` and ``type`` are interpreted here. Unknown fields are kept and
passed through to the question store untouched.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QuestionType(str, Enum):
    SINGLE_CHOICE   = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE      = "true_false"
    FILL_BLANK      = "fill_blank"
    MATCHING        = "matching"
    ESSAY           = "essay"


class QuestionCandidate(BaseModel):
    model_config = ConfigDict(extra="allow")

    content:     str = Field("", description="Question stem")
    type:        str = Field("", description="Question type as reported by the model")
    options:     list[Any] | None = None
    answer:      Any = None
    explanation: str | None = None

    @field_validator("content", "type", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)

    @property
    def is_valid(self) -> bool:
        return bool(self.content.strip()) and bool(self.type.strip())

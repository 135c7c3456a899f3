"""
Question reconciliation: validate, normalise type, de-duplicate.

Overlapping chunks (and overlapping tall-image slices) mean the same question
is routinely returned by two neighbouring AI calls, often with one copy
truncated. Two candidates of the same type are duplicates when their
whitespace-free content is equal, or when one contains the other and both are
longer than ``_MIN_CONTAINMENT_CHARS``. The longer copy wins and keeps the
earlier position.
"""

from __future__ import annotations

import logging
import re

from examforge.schemas.questions import QuestionCandidate, QuestionType

logger = logging.getLogger(__name__)

_MIN_CONTAINMENT_CHARS = 10
_WHITESPACE_RE = re.compile(r"\s+")

_TYPE_ALIASES: dict[str, QuestionType] = {
    "single_choice":   QuestionType.SINGLE_CHOICE,
    "single":          QuestionType.SINGLE_CHOICE,
    "choice":          QuestionType.SINGLE_CHOICE,
    "单选":            QuestionType.SINGLE_CHOICE,
    "单选题":          QuestionType.SINGLE_CHOICE,
    "选择题":          QuestionType.SINGLE_CHOICE,
    "multiple_choice": QuestionType.MULTIPLE_CHOICE,
    "multiple":        QuestionType.MULTIPLE_CHOICE,
    "multi_choice":    QuestionType.MULTIPLE_CHOICE,
    "多选":            QuestionType.MULTIPLE_CHOICE,
    "多选题":          QuestionType.MULTIPLE_CHOICE,
    "true_false":      QuestionType.TRUE_FALSE,
    "truefalse":       QuestionType.TRUE_FALSE,
    "judge":           QuestionType.TRUE_FALSE,
    "判断":            QuestionType.TRUE_FALSE,
    "判断题":          QuestionType.TRUE_FALSE,
    "fill_blank":      QuestionType.FILL_BLANK,
    "fill_in_blank":   QuestionType.FILL_BLANK,
    "blank":           QuestionType.FILL_BLANK,
    "填空":            QuestionType.FILL_BLANK,
    "填空题":          QuestionType.FILL_BLANK,
    "matching":        QuestionType.MATCHING,
    "match":           QuestionType.MATCHING,
    "连线":            QuestionType.MATCHING,
    "连线题":          QuestionType.MATCHING,
    "匹配题":          QuestionType.MATCHING,
    "essay":           QuestionType.ESSAY,
    "short_answer":    QuestionType.ESSAY,
    "问答":            QuestionType.ESSAY,
    "问答题":          QuestionType.ESSAY,
    "简答题":          QuestionType.ESSAY,
    "解答题":          QuestionType.ESSAY,
}


def map_question_type(raw: str) -> QuestionType:
    """Map a model-reported type onto QuestionType; unknown → SINGLE_CHOICE."""
    key = (raw or "").strip().lower().replace("-", "_").replace(" ", "_")
    return _TYPE_ALIASES.get(key, QuestionType.SINGLE_CHOICE)


def _squash(content: str) -> str:
    return _WHITESPACE_RE.sub("", content)


def _is_duplicate(a: str, b: str) -> bool:
    if a == b:
        return True
    if len(a) > _MIN_CONTAINMENT_CHARS and len(b) > _MIN_CONTAINMENT_CHARS:
        return a in b or b in a
    return False


def merge_and_dedupe(candidates: list[QuestionCandidate]) -> list[QuestionCandidate]:
    """
    Drop candidates without content or type, normalise ``type`` to a
    QuestionType value, and collapse duplicates (see module docstring).
    """
    merged: list[QuestionCandidate] = []
    keys: list[tuple[str, str]] = []
    dropped = 0

    for candidate in candidates:
        if not candidate.is_valid:
            dropped += 1
            continue

        normalised = candidate.model_copy(
            update={"type": map_question_type(candidate.type).value}
        )
        key = (normalised.type, _squash(normalised.content))

        for position, (kept_type, kept_content) in enumerate(keys):
            if kept_type == key[0] and _is_duplicate(kept_content, key[1]):
                if len(key[1]) > len(kept_content):
                    merged[position] = normalised
                    keys[position] = key
                break
        else:
            merged.append(normalised)
            keys.append(key)

    logger.info(
        "Reconcile | in=%d out=%d dropped_invalid=%d",
        len(candidates), len(merged), dropped,
    )
    return merged

"""Default prompts for question extraction. A caller-supplied prompt replaces the instruction part."""

from __future__ import annotations

SYSTEM_PROMPT = (
    "You extract exam questions from documents. "
    "Reply with JSON only: an array of objects, each with the keys "
    '"content" (question stem), "type" (single_choice, multiple_choice, '
    "true_false, fill_blank, matching or essay), \"options\" (list of "
    'strings, or null), "answer" and "explanation". '
    "Copy the question text faithfully. Do not invent questions. "
    "If there are no questions, reply with []."
)

VISION_INSTRUCTION = (
    "Extract every complete question visible on this page image. "
    "Skip a question that is cut off at the top or bottom edge."
)

TEXT_INSTRUCTION = (
    "Extract every complete question from the following text "
    "(part {part} of {total}). Skip a question whose beginning or end is missing."
)

CONTEXT_PREFIX = (
    "The previous part ended mid-question. "
    "Context from just before this part:\n{context}\n\n"
)

"""
Question Extraction Gateway: one AI call per unit of work

  ┌─────────────────────────────────────────────────────┐
  │  extract_from_image() / extract_from_text()         │
  │       │                                             │
  │       ▼                                             │
  │  build messages  ← SystemMessage + HumanMessage     │
  │       │            (image as base64 image_url part) │
  │       ▼                                             │
  │  ModelRouter.build_llm(credential, vision)          │
  │       │                                             │
  │       ▼                                             │
  │  llm.ainvoke(messages)                              │
  │       │                                             │
  │       ▼                                             │
  │  parse_question_payload() → [QuestionCandidate]     │
  └─────────────────────────────────────────────────────┘

Timeouts and retries are the orchestrator's concern; every failure here,
transport or parsing, is raised as UnitExtractionFailed (or the provider's own
exception) and absorbed per unit upstream.
"""

from __future__ import annotations

import base64
import json
import logging
import re
import time
from typing import Any

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import ValidationError

from examforge.core.errors import UnitExtractionFailed
from examforge.llm import prompts
from examforge.llm.credentials import AICredential
from examforge.llm.router import ModelRouter
from examforge.schemas.questions import QuestionCandidate

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------

def _message_text(content: Any) -> str:
    """LangChain content may be a string or a list of typed parts."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return str(content or "")


def _loads_lenient(text: str) -> Any:
    """json.loads, falling back to the outermost [...] or {...} span."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    for opener, closer in (("[", "]"), ("{", "}")):
        start, end = text.find(opener), text.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                continue
    raise UnitExtractionFailed("AI reply is not valid JSON")


def parse_question_payload(content: Any) -> list[QuestionCandidate]:
    """
    Accepts a JSON array, an object with a ``questions`` array, or either
    inside a Markdown code fence. Non-object items are skipped.

    Raises:
        UnitExtractionFailed: reply is empty, not JSON, or has no question list.
    """
    text = _message_text(content).strip()
    if not text:
        raise UnitExtractionFailed("AI reply is empty")

    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    data = _loads_lenient(text)
    if isinstance(data, dict):
        data = data.get("questions")
    if not isinstance(data, list):
        raise UnitExtractionFailed("AI reply has no question list")

    questions: list[QuestionCandidate] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        try:
            questions.append(QuestionCandidate.model_validate(item))
        except ValidationError as exc:
            logger.debug("QuestionExtractionGateway | skipped malformed item: %s", exc)
    return questions


# ---------------------------------------------------------------------------
# QuestionExtractionGateway
# ---------------------------------------------------------------------------

class QuestionExtractionGateway:
    """
    Provider-agnostic question extraction. Stateless; safe for concurrent use.
    """

    def __init__(self, router: ModelRouter | None = None) -> None:
        self._router = router or ModelRouter()

    async def extract_from_image(
        self,
        image:      bytes,
        credential: AICredential,
        prompt:     str | None = None,
        mime_type:  str = "image/png",
    ) -> list[QuestionCandidate]:
        encoded = base64.b64encode(image).decode("ascii")
        messages = [
            SystemMessage(content=prompts.SYSTEM_PROMPT),
            HumanMessage(content=[
                {"type": "text", "text": prompt or prompts.VISION_INSTRUCTION},
                {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
            ]),
        ]
        return await self._invoke(messages, credential, vision=True)

    async def extract_from_text(
        self,
        text:       str,
        credential: AICredential,
        part:       int = 1,
        total:      int = 1,
        prompt:     str | None = None,
        context:    str | None = None,
    ) -> list[QuestionCandidate]:
        instruction = prompt or prompts.TEXT_INSTRUCTION.format(part=part, total=total)
        body = text
        if context:
            body = prompts.CONTEXT_PREFIX.format(context=context) + text
        messages = [
            SystemMessage(content=prompts.SYSTEM_PROMPT),
            HumanMessage(content=f"{instruction}\n\n{body}"),
        ]
        return await self._invoke(messages, credential, vision=False)

    async def _invoke(
        self,
        messages:   list[BaseMessage],
        credential: AICredential,
        vision:     bool,
    ) -> list[QuestionCandidate]:
        llm = self._router.build_llm(credential, vision=vision)

        t0 = time.perf_counter()
        reply = await llm.ainvoke(messages)
        latency = (time.perf_counter() - t0) * 1000

        questions = parse_question_payload(reply.content)
        logger.info(
            "QuestionExtractionGateway | provider=%s vision=%s questions=%d latency_ms=%.1f",
            credential.provider.value, vision, len(questions), latency,
        )
        return questions

"""
Question store collaborator.

The CRUD layer owns question persistence. This subsystem only hands it the
reconciled candidates of one job and gets back the created identifiers.

  HttpQuestionStore      POST {base_url}/questions/batch  → {"ids": [...]}
  InMemoryQuestionStore  process-local, used when no URL is configured
"""

from __future__ import annotations

import logging
import uuid
from typing import Protocol

import httpx

from examforge.core.config import settings
from examforge.schemas.questions import QuestionCandidate

logger = logging.getLogger(__name__)


class QuestionStore(Protocol):
    async def save(self, questions: list[QuestionCandidate], *, job_id: str) -> list[str]:
        ...


class HttpQuestionStore:
    def __init__(
        self,
        base_url: str,
        token:    str = "",
        timeout:  float | None = None,
        client:   httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token    = token
        self._timeout  = timeout if timeout is not None else settings.question_store_timeout_seconds
        self._client   = client

    async def save(self, questions: list[QuestionCandidate], *, job_id: str) -> list[str]:
        if not questions:
            return []

        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        payload = {
            "job_id": job_id,
            "questions": [q.model_dump(mode="json") for q in questions],
        }
        url = f"{self._base_url}/questions/batch"

        if self._client is not None:
            response = await self._client.post(url, json=payload, headers=headers, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        response.raise_for_status()

        ids = [str(i) for i in response.json().get("ids", [])]
        logger.info(
            "HttpQuestionStore | saved job_id=%s sent=%d created=%d",
            job_id, len(questions), len(ids),
        )
        return ids


class InMemoryQuestionStore:
    def __init__(self) -> None:
        self.saved: dict[str, QuestionCandidate] = {}
        self.by_job: dict[str, list[str]] = {}

    async def save(self, questions: list[QuestionCandidate], *, job_id: str) -> list[str]:
        ids = []
        for question in questions:
            qid = uuid.uuid4().hex
            self.saved[qid] = question
            ids.append(qid)
        self.by_job.setdefault(job_id, []).extend(ids)
        return ids


def build_question_store() -> QuestionStore:
    if settings.question_store_url:
        return HttpQuestionStore(settings.question_store_url, settings.question_store_token)
    logger.warning("QUESTION_STORE_URL is not set: extracted questions are kept in memory only")
    return InMemoryQuestionStore()

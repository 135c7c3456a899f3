"""
FastAPI dependencies: the shared job store, orchestrator and credential store,
plus the per-request trace ID.

The three services live on ``app.state`` and are created by ``create_app``.
Tests swap them through ``app.dependency_overrides``.
"""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import Depends, Request

from examforge.llm.credentials import CredentialStore
from examforge.services.jobs import JobStore
from examforge.services.orchestrator import ExtractionOrchestrator


def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


def get_orchestrator(request: Request) -> ExtractionOrchestrator:
    return request.app.state.orchestrator


def get_credential_store(request: Request) -> CredentialStore:
    return request.app.state.credentials


def get_request_id(request: Request) -> str:
    """
    Trace ID for this request. The middleware assigns it once so handlers,
    error bodies and the X-Request-ID response header all agree.
    """
    request_id = getattr(request.state, "request_id", None)
    if request_id is None:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
    return request_id


Jobs         = Annotated[JobStore, Depends(get_job_store)]
Orchestrator = Annotated[ExtractionOrchestrator, Depends(get_orchestrator)]
Credentials  = Annotated[CredentialStore, Depends(get_credential_store)]
RequestID    = Annotated[str, Depends(get_request_id)]

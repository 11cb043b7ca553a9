"""Service wiring and FastAPI dependencies."""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import sessionmaker

from app.auth import CurrentUser, IdentityProvider, JWTIdentityProvider
from app.config import settings
from app.db.database import SessionLocal
from app.exceptions import AuthenticationException
from app.services.attempt_service import AttemptService
from app.services.embedding_service import EmbeddingService
from app.services.exam_writer import ExamWriter
from app.services.generation_service import GenerationService
from app.services.job_service import JobService
from app.services.llm_client import LLMClient
from app.services.orchestrator import GenerationOrchestrator
from app.services.retrieval_service import RetrievalService
from app.services.scoring_service import ScoringService
from app.services.usage_service import UsageService

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


def get_session_factory() -> sessionmaker:
    return SessionLocal


# Services are process-wide singletons; the job service in particular holds
# the in-memory subscriber registry shared by the orchestrator and the API.


@lru_cache
def get_job_service() -> JobService:
    return JobService(get_session_factory())


@lru_cache
def get_exam_writer() -> ExamWriter:
    return ExamWriter(get_session_factory())


@lru_cache
def get_usage_service() -> UsageService:
    return UsageService(get_session_factory())


@lru_cache
def get_attempt_service() -> AttemptService:
    return AttemptService(get_session_factory())


@lru_cache
def get_scoring_service() -> ScoringService:
    return ScoringService(
        get_session_factory(),
        LLMClient(model=settings.grading_model, temperature=0.0),
    )


@lru_cache
def get_orchestrator() -> GenerationOrchestrator:
    logger.info("Initializing generation orchestrator")
    return GenerationOrchestrator(
        job_service=get_job_service(),
        retrieval_service=RetrievalService(EmbeddingService()),
        generation_service=GenerationService(LLMClient(model=settings.generation_model)),
        exam_writer=get_exam_writer(),
        usage_gate=get_usage_service(),
    )


@lru_cache
def get_identity_provider() -> IdentityProvider:
    return JWTIdentityProvider()


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
) -> CurrentUser:
    """Resolve the caller from the ``Authorization: Bearer`` header (401 otherwise)."""
    if credentials is None:
        raise AuthenticationException("Missing bearer token")
    return identity_provider.get_current_user(credentials.credentials)


def get_stream_user(
    access_token: Optional[str] = Query(
        None, description="Access token for clients that cannot set headers (EventSource)"
    ),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
) -> CurrentUser:
    """Like get_current_user, but also accepts the token as a query parameter."""
    token = credentials.credentials if credentials is not None else access_token
    if not token:
        raise AuthenticationException("Missing bearer token")
    return identity_provider.get_current_user(token)

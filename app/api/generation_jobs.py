"""Exam generation job API endpoints."""

import asyncio
import logging

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse

from app.auth import CurrentUser
from app.dependencies import get_current_user, get_orchestrator, get_stream_user
from app.exceptions import NotFoundException
from app.models.generation_models import (
    GenerateExamRequest,
    GenerateExamResponse,
    JobListResponse,
    JobSnapshot,
)
from app.rate_limit import GENERATION_RATE_LIMIT, limiter
from app.services.orchestrator import GenerationOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/generation-jobs", tags=["generation"])

# Seconds between keep-alive comments on an idle event stream
KEEPALIVE_INTERVAL = 15.0


@router.post(
    "", response_model=GenerateExamResponse, status_code=status.HTTP_202_ACCEPTED
)
@limiter.limit(GENERATION_RATE_LIMIT)
async def start_generation_job(
    request: Request,
    body: GenerateExamRequest,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """
    Start generating an exam in the background.

    Args:
        request: FastAPI Request object (used by the rate limiter)
        body: Subject, topics, question count, difficulty and language
        user: Authenticated caller
        orchestrator: Generation orchestrator

    Returns:
        The new job's ID and status; poll or stream the job for progress

    Raises:
        ValidationException: 400 if the question count is out of bounds
        UsageLimitException: 402 if the user's plan does not allow it
    """
    job_id = orchestrator.start_generation(
        user_id=user.id,
        subject=body.subject,
        topics=body.topics,
        question_count=body.question_count,
        difficulty=body.difficulty,
        language=body.language,
    )
    return GenerateExamResponse(
        job_id=job_id, status="pending", message="Exam generation started"
    )


@router.get("", response_model=JobListResponse, status_code=status.HTTP_200_OK)
async def list_generation_jobs(
    limit: int = Query(10, ge=1, le=50, description="Maximum number of jobs to return"),
    user: CurrentUser = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """List the caller's most recent generation jobs."""
    jobs = orchestrator.list_jobs(user.id, limit=limit)
    return JobListResponse(jobs=jobs, total=len(jobs))


@router.get("/{job_id}", response_model=JobSnapshot, status_code=status.HTTP_200_OK)
async def get_generation_job(
    job_id: str,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """
    Get the current state of a generation job.

    Raises:
        NotFoundException: 404 if the job does not exist or belongs to someone else
    """
    return _get_owned_job(orchestrator, job_id, user)


@router.get("/{job_id}/events")
async def stream_generation_job(
    job_id: str,
    request: Request,
    user: CurrentUser = Depends(get_stream_user),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """
    Stream job snapshots as Server-Sent Events until the job is terminal.

    The current state is sent first, followed by every committed change.
    """
    _get_owned_job(orchestrator, job_id, user)

    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[JobSnapshot]" = asyncio.Queue()

    def on_update(snapshot: JobSnapshot) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, snapshot)

    # Subscribe before reading the current state so no change is missed
    unsubscribe = orchestrator.subscribe_job(job_id, on_update)

    async def event_stream():
        try:
            last = orchestrator.get_job(job_id)
            yield _format_event(last)
            while not last.is_terminal:
                if await request.is_disconnected():
                    logger.info(f"Event stream for job {job_id} closed by client")
                    break
                try:
                    snapshot = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_INTERVAL)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                if snapshot.progress < last.progress:
                    continue
                yield _format_event(snapshot)
                last = snapshot
        finally:
            unsubscribe()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def _get_owned_job(
    orchestrator: GenerationOrchestrator, job_id: str, user: CurrentUser
) -> JobSnapshot:
    job = orchestrator.get_job(job_id)
    if job.user_id != user.id:
        raise NotFoundException(f"Job with ID '{job_id}' not found")
    return job


def _format_event(snapshot: JobSnapshot) -> str:
    return f"event: job\ndata: {snapshot.model_dump_json()}\n\n"

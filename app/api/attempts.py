"""Exam attempt API endpoints: answering, submitting and scoring."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.auth import CurrentUser
from app.dependencies import get_attempt_service, get_current_user, get_scoring_service
from app.models.attempt_models import (
    AnswerResult,
    AttemptResponse,
    SaveAnswerRequest,
    ScoreResult,
    SubmitAttemptRequest,
)
from app.services.attempt_service import AttemptService
from app.services.scoring_service import ScoringService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/attempts", tags=["attempts"])


@router.get("/{attempt_id}", response_model=AttemptResponse, status_code=status.HTTP_200_OK)
async def get_attempt(
    attempt_id: str,
    user: CurrentUser = Depends(get_current_user),
    attempt_service: AttemptService = Depends(get_attempt_service),
):
    """Get an attempt with its per-question results."""
    return AttemptResponse.model_validate(attempt_service.get_attempt(attempt_id, user.id))


@router.put(
    "/{attempt_id}/answers/{question_id}",
    response_model=AnswerResult,
    status_code=status.HTTP_200_OK,
)
async def save_answer(
    attempt_id: str,
    question_id: str,
    body: SaveAnswerRequest,
    user: CurrentUser = Depends(get_current_user),
    attempt_service: AttemptService = Depends(get_attempt_service),
):
    """
    Save the answer to one question of an in-progress attempt.

    Raises:
        NotFoundException: 404 if the attempt or question does not exist
        ValidationException: 400 if the attempt was already submitted
    """
    answer = attempt_service.save_answer(attempt_id, question_id, body.answer, user_id=user.id)
    return AnswerResult.model_validate(answer)


# Scoring may call the grading model, so these run in the threadpool


@router.post(
    "/{attempt_id}/submit", response_model=ScoreResult, status_code=status.HTTP_200_OK
)
def submit_attempt(
    attempt_id: str,
    body: Optional[SubmitAttemptRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    attempt_service: AttemptService = Depends(get_attempt_service),
    scoring_service: ScoringService = Depends(get_scoring_service),
):
    """
    Submit an attempt and score it.

    Raises:
        ValidationException: 400 if the attempt was already submitted
        ScoringIncompleteException: 409 if some answers could not be graded;
            the attempt stays submitted and can be re-scored
    """
    time_spent = body.time_spent_seconds if body else None
    attempt_service.submit_attempt(attempt_id, time_spent_seconds=time_spent, user_id=user.id)
    return scoring_service.score_attempt(attempt_id)


@router.post(
    "/{attempt_id}/score", response_model=ScoreResult, status_code=status.HTTP_200_OK
)
def score_attempt(
    attempt_id: str,
    force: bool = Query(False, description="Re-grade short answers that already have a grade"),
    user: CurrentUser = Depends(get_current_user),
    attempt_service: AttemptService = Depends(get_attempt_service),
    scoring_service: ScoringService = Depends(get_scoring_service),
):
    """
    Score (or re-score) a submitted attempt.

    Re-scoring an unchanged attempt yields the same result.
    """
    attempt_service.get_attempt(attempt_id, user.id)
    return scoring_service.score_attempt(attempt_id, force=force)

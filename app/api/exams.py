"""Exam API endpoints."""

import logging

from fastapi import APIRouter, Depends, status

from app.auth import CurrentUser
from app.dependencies import get_attempt_service, get_current_user, get_exam_writer
from app.exceptions import NotFoundException
from app.models.attempt_models import AttemptResponse
from app.models.exam_models import ExamResponse
from app.services.attempt_service import AttemptService
from app.services.exam_writer import ExamWriter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/exams", tags=["exams"])


@router.get("/{exam_id}", response_model=ExamResponse, status_code=status.HTTP_200_OK)
async def get_exam(
    exam_id: str,
    user: CurrentUser = Depends(get_current_user),
    exam_writer: ExamWriter = Depends(get_exam_writer),
    attempt_service: AttemptService = Depends(get_attempt_service),
):
    """
    Get a ready exam with its questions in order.

    Correct answers and explanations are only included once the caller has a
    scored attempt on the exam.

    Args:
        exam_id: Exam ID
        user: Authenticated caller
        exam_writer: Exam store
        attempt_service: Attempt store

    Returns:
        Exam with questions

    Raises:
        NotFoundException: 404 if the exam does not exist, is not ready,
            or belongs to someone else
    """
    exam = exam_writer.get_exam(exam_id)
    if exam.user_id != user.id or exam.status != "ready":
        raise NotFoundException(f"Exam with ID '{exam_id}' not found")

    response = ExamResponse.model_validate(exam)
    if not attempt_service.has_scored_attempt(exam_id, user.id):
        for question in response.questions:
            question.correct_answer = None
            question.explanation = None
    return response


@router.post(
    "/{exam_id}/attempts",
    response_model=AttemptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_attempt(
    exam_id: str,
    user: CurrentUser = Depends(get_current_user),
    attempt_service: AttemptService = Depends(get_attempt_service),
):
    """
    Start a new attempt at an exam.

    Raises:
        NotFoundException: 404 if the exam does not exist
        ValidationException: 400 if the exam is not ready
    """
    attempt = attempt_service.start_attempt(exam_id, user.id)
    return AttemptResponse.model_validate(attempt_service.get_attempt(attempt.id, user.id))

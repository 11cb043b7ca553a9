"""Pydantic models for exam attempts and scoring."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class SaveAnswerRequest(BaseModel):
    """Request model for saving one answer."""

    answer: Optional[str] = Field(
        None, description="Answer text; null or blank marks the question skipped"
    )


class SubmitAttemptRequest(BaseModel):
    """Request model for submitting an attempt."""

    time_spent_seconds: Optional[int] = Field(None, ge=0)


class RubricGrade(BaseModel):
    """Short-answer grade returned by the grading model."""

    score: float = Field(..., ge=0.0, le=1.0)
    feedback: Optional[str] = None


class ScoreResult(BaseModel):
    """Aggregate outcome of scoring an attempt."""

    attempt_id: str
    score: float = Field(..., ge=0.0, le=100.0, description="Percentage score")
    correct_answers: int
    wrong_answers: int
    skipped_answers: int
    total_questions: int


class AnswerResult(BaseModel):
    """Per-question view of a submitted answer."""

    question_id: str
    user_answer: Optional[str] = None
    is_correct: Optional[bool] = None
    points_earned: Optional[float] = None
    ai_feedback: Optional[str] = None
    grading_error: Optional[str] = None

    model_config = {"from_attributes": True}


class AttemptResponse(BaseModel):
    """Model for attempt response."""

    id: str
    exam_id: str
    user_id: str
    attempt_number: int
    status: str
    score: Optional[float] = None
    correct_answers: int = 0
    wrong_answers: int = 0
    skipped_answers: int = 0
    time_spent_seconds: Optional[int] = None
    started_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    scored_at: Optional[datetime] = None
    answers: List[AnswerResult] = Field(default_factory=list)

    model_config = {"from_attributes": True}

"""Pydantic models for exams and their questions."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class QuestionResponse(BaseModel):
    """Model for question response."""

    id: str
    question_number: int
    question_type: str
    question_text: str
    options: Optional[List[str]] = None
    correct_answer: Optional[str] = Field(
        None, description="Hidden until the caller has a scored attempt"
    )
    explanation: Optional[str] = None
    difficulty: Optional[str] = None

    model_config = {"from_attributes": True}


class ExamResponse(BaseModel):
    """Model for exam response with its questions."""

    id: str
    title: str
    description: Optional[str] = None
    difficulty: str
    total_questions: int
    topics: List[str] = Field(default_factory=list)
    language: str
    status: str
    created_at: Optional[datetime] = None
    questions: List[QuestionResponse] = Field(default_factory=list)

    model_config = {
        "from_attributes": True,
        "json_schema_extra": {
            "example": {
                "id": "exam_1a2b3c4d5e6f",
                "title": "Physics - Mechanics",
                "description": "Exam with 10 questions",
                "difficulty": "medium",
                "total_questions": 10,
                "topics": ["Mechanics"],
                "language": "en",
                "status": "ready",
                "questions": [],
            }
        },
    }

"""Pydantic models for exam generation."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Difficulty = Literal["easy", "medium", "hard"]
Language = Literal["ar", "en"]
QuestionType = Literal["multiple_choice", "short_answer", "true_false"]
JobStatus = Literal[
    "pending", "searching", "generating", "completing", "completed", "failed"
]

MULTIPLE_CHOICE_OPTION_COUNT = 4


def normalize_answer(value: Optional[str]) -> str:
    """Trim and case-fold an answer for comparison."""
    return (value or "").strip().casefold()


class GenerateExamRequest(BaseModel):
    """Request model for starting an exam generation job."""

    subject: str = Field(..., min_length=1, description="Subject name")
    topics: List[str] = Field(
        default_factory=list,
        description="Topics to cover; empty means the whole subject",
    )
    question_count: int = Field(
        default=10, ge=1, le=100, description="Number of questions requested"
    )
    difficulty: Difficulty = Field(default="medium", description="Difficulty level")
    language: Language = Field(default="ar", description="Exam language")

    @field_validator("subject")
    @classmethod
    def strip_subject(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("subject cannot be blank")
        return value

    @field_validator("topics")
    @classmethod
    def clean_topics(cls, value: List[str]) -> List[str]:
        # Keep order, drop blanks and duplicates
        seen = set()
        cleaned = []
        for topic in value:
            topic = topic.strip()
            if topic and topic not in seen:
                seen.add(topic)
                cleaned.append(topic)
        return cleaned

    model_config = {
        "json_schema_extra": {
            "example": {
                "subject": "Physics",
                "topics": ["Mechanics"],
                "question_count": 10,
                "difficulty": "medium",
                "language": "en",
            }
        }
    }


class SynthesizedQuestion(BaseModel):
    """One question as emitted by the generative model, after validation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    question_number: Optional[int] = Field(None, alias="questionNumber")
    question_type: QuestionType = Field(..., alias="questionType")
    question_text: str = Field(..., min_length=1, alias="questionText")
    options: Optional[List[str]] = None
    correct_answer: str = Field(..., min_length=1, alias="correctAnswer")
    explanation: Optional[str] = None
    difficulty: Optional[Difficulty] = None

    @field_validator("question_text", "explanation", mode="before")
    @classmethod
    def strip_text(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("correct_answer", mode="before")
    @classmethod
    def coerce_answer(cls, value):
        # JSON booleans are a legitimate spelling of a true/false answer
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, str):
            return value.strip()
        return value

    @model_validator(mode="after")
    def check_type_shape(self):
        """Enforce option and answer rules per question type."""
        if self.question_type == "multiple_choice":
            options = [option.strip() for option in (self.options or [])]
            if len(options) != MULTIPLE_CHOICE_OPTION_COUNT:
                raise ValueError(
                    f"multiple_choice needs exactly {MULTIPLE_CHOICE_OPTION_COUNT} "
                    f"options, got {len(options)}"
                )
            if any(not option for option in options):
                raise ValueError("multiple_choice options cannot be blank")
            normalized = [normalize_answer(option) for option in options]
            if len(set(normalized)) != len(normalized):
                raise ValueError("multiple_choice options must be distinct")
            matches = [
                option
                for option in options
                if normalize_answer(option) == normalize_answer(self.correct_answer)
            ]
            if len(matches) != 1:
                raise ValueError("correct answer must match exactly one option")
            self.options = options
            self.correct_answer = matches[0]
        elif self.question_type == "true_false":
            answer = normalize_answer(self.correct_answer)
            if answer not in ("true", "false"):
                raise ValueError("true_false correct answer must be 'true' or 'false'")
            self.correct_answer = answer
            self.options = None
        else:
            self.options = None
        return self


class SynthesisPayload(BaseModel):
    """Top-level structured payload expected from the generative model."""

    model_config = ConfigDict(extra="ignore")

    questions: List[SynthesizedQuestion] = Field(..., min_length=1)


class JobSnapshot(BaseModel):
    """Detached, read-only view of a generation job."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    user_id: str
    subject: str
    topics: List[str]
    question_count: int
    difficulty: str
    language: str
    status: JobStatus
    current_stage: Optional[str] = None
    progress: int
    exam_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")


class GenerateExamResponse(BaseModel):
    """Response model for a started generation job."""

    job_id: str
    status: JobStatus
    message: str


class JobListResponse(BaseModel):
    """Response model for a user's recent jobs."""

    jobs: List[JobSnapshot]
    total: int

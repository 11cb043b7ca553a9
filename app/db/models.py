"""SQLAlchemy database models for generation jobs, exams and attempts."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.db.database import Base


class GenerationJob(Base):
    """Model for tracking one run of the exam generation pipeline."""

    __tablename__ = "generation_jobs"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)

    # Request
    subject = Column(String, nullable=False)
    topics = Column(JSON, nullable=False, default=list)
    question_count = Column(Integer, nullable=False)
    difficulty = Column(String, nullable=False)  # easy, medium, hard
    language = Column(String, nullable=False, default="ar")

    # Status tracking
    status = Column(String, nullable=False, default="pending", index=True)
    # pending, searching, generating, completing, completed, failed
    current_stage = Column(Text, nullable=True)
    progress = Column(Integer, nullable=False, default=0)  # 0-100

    # Outcome
    exam_id = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<GenerationJob(id={self.id}, status={self.status}, progress={self.progress}%)>"


class Exam(Base):
    """Exam produced by a successful generation job."""

    __tablename__ = "exams"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    generation_job_id = Column(String, nullable=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    source_type = Column(String, nullable=False, default="curated")
    difficulty = Column(String, nullable=False)
    total_questions = Column(Integer, nullable=False, default=0)
    topics = Column(JSON, nullable=False, default=list)
    language = Column(String, nullable=False, default="ar")
    status = Column(String, nullable=False, default="draft", index=True)  # draft, ready
    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    questions = relationship(
        "Question",
        back_populates="exam",
        cascade="all, delete-orphan",
        order_by="Question.question_number",
    )

    def __repr__(self):
        return f"<Exam(id={self.id}, status={self.status}, questions={self.total_questions})>"


class Question(Base):
    """Question belonging to an exam."""

    __tablename__ = "questions"
    __table_args__ = (
        UniqueConstraint("exam_id", "question_number", name="uq_questions_exam_number"),
    )

    id = Column(String, primary_key=True, index=True)
    exam_id = Column(
        String, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_number = Column(Integer, nullable=False)
    question_type = Column(String, nullable=False)  # multiple_choice, short_answer, true_false
    question_text = Column(Text, nullable=False)
    options = Column(JSON, nullable=True)  # Only for multiple_choice
    correct_answer = Column(Text, nullable=False)
    explanation = Column(Text, nullable=True)
    difficulty = Column(String, nullable=True)

    exam = relationship("Exam", back_populates="questions")

    def __repr__(self):
        return f"<Question(id={self.id}, exam_id={self.exam_id}, number={self.question_number})>"


class Attempt(Base):
    """One user's attempt at an exam."""

    __tablename__ = "attempts"
    __table_args__ = (
        UniqueConstraint(
            "exam_id", "user_id", "attempt_number", name="uq_attempts_exam_user_number"
        ),
    )

    id = Column(String, primary_key=True, index=True)
    exam_id = Column(
        String, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String, nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False, default=1)
    status = Column(String, nullable=False, default="in_progress")
    # in_progress, submitted, scored

    # Results
    score = Column(Float, nullable=True)  # percentage
    correct_answers = Column(Integer, nullable=False, default=0)
    wrong_answers = Column(Integer, nullable=False, default=0)
    skipped_answers = Column(Integer, nullable=False, default=0)
    time_spent_seconds = Column(Integer, nullable=True)

    # Timestamps
    started_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    scored_at = Column(DateTime(timezone=True), nullable=True)

    answers = relationship(
        "SubmittedAnswer", back_populates="attempt", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Attempt(id={self.id}, status={self.status}, score={self.score})>"


class SubmittedAnswer(Base):
    """A user's answer to one question within an attempt."""

    __tablename__ = "answers_submitted"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answers_attempt_question"),
    )

    id = Column(String, primary_key=True, index=True)
    attempt_id = Column(
        String, ForeignKey("attempts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_id = Column(
        String, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False
    )
    user_answer = Column(Text, nullable=True)  # None means skipped

    # Grading
    is_correct = Column(Boolean, nullable=True)
    points_earned = Column(Float, nullable=True)  # 0.0-1.0
    ai_feedback = Column(Text, nullable=True)
    graded_answer = Column(Text, nullable=True)  # answer text the stored grade applies to
    grading_error = Column(Text, nullable=True)
    scored_at = Column(DateTime(timezone=True), nullable=True)

    attempt = relationship("Attempt", back_populates="answers")

    def __repr__(self):
        return f"<SubmittedAnswer(attempt_id={self.attempt_id}, question_id={self.question_id})>"


class UsageRecord(Base):
    """Per-user usage counters for one billing cycle."""

    __tablename__ = "usage_tracking"
    __table_args__ = (
        UniqueConstraint("user_id", "billing_cycle", name="uq_usage_user_cycle"),
    )

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    billing_cycle = Column(String, nullable=False)  # YYYY-MM
    tier = Column(String, nullable=False, default="free")  # free, pro
    exams_generated = Column(Integer, nullable=False, default=0)
    questions_created = Column(Integer, nullable=False, default=0)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self):
        return f"<UsageRecord(user_id={self.user_id}, cycle={self.billing_cycle})>"

"""Service for taking exams: attempts and their answers."""

import logging
import uuid
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload, sessionmaker

from app.db.models import Attempt, Exam, Question, SubmittedAnswer
from app.exceptions import NotFoundException, UpstreamCallException, ValidationException
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class AttemptService:
    """Service for starting, answering and submitting exam attempts."""

    def __init__(self, session_factory: sessionmaker):
        """
        Initialize attempt service.

        Args:
            session_factory: Factory producing database sessions
        """
        self.session_factory = session_factory

    def start_attempt(self, exam_id: str, user_id: str) -> Attempt:
        """
        Start a new attempt with one empty answer row per question.

        Args:
            exam_id: Exam ID
            user_id: User taking the exam

        Returns:
            Created attempt

        Raises:
            NotFoundException: If the exam does not exist
            ValidationException: If the exam is not ready
        """
        try:
            with self.session_factory() as db:
                exam = db.get(Exam, exam_id)
                if exam is None or exam.user_id != user_id:
                    raise NotFoundException(f"Exam with ID '{exam_id}' not found")
                if exam.status != "ready":
                    raise ValidationException(
                        f"Exam {exam_id} is not ready", details={"status": exam.status}
                    )

                previous = (
                    db.query(func.max(Attempt.attempt_number))
                    .filter(Attempt.exam_id == exam_id, Attempt.user_id == user_id)
                    .scalar()
                )
                attempt = Attempt(
                    id=f"attempt_{uuid.uuid4().hex[:12]}",
                    exam_id=exam_id,
                    user_id=user_id,
                    attempt_number=(previous or 0) + 1,
                    status="in_progress",
                    started_at=utcnow(),
                )
                db.add(attempt)

                question_ids = (
                    db.query(Question.id)
                    .filter(Question.exam_id == exam_id)
                    .order_by(Question.question_number)
                    .all()
                )
                for (question_id,) in question_ids:
                    db.add(
                        SubmittedAnswer(
                            id=f"ans_{uuid.uuid4().hex[:12]}",
                            attempt_id=attempt.id,
                            question_id=question_id,
                        )
                    )
                db.commit()
                db.refresh(attempt)
        except IntegrityError as e:
            raise ValidationException(
                "Another attempt was started at the same time; please retry"
            ) from e
        except SQLAlchemyError as e:
            raise UpstreamCallException(f"Failed to start attempt: {str(e)}") from e

        logger.info(
            f"User {user_id} started attempt #{attempt.attempt_number} on exam {exam_id}"
        )
        return attempt

    def save_answer(
        self, attempt_id: str, question_id: str, answer: Optional[str], user_id: Optional[str] = None
    ) -> SubmittedAnswer:
        """
        Save or replace the answer to one question.

        Args:
            attempt_id: Attempt ID
            question_id: Question ID (must belong to the attempt's exam)
            answer: Answer text; None or blank marks it skipped
            user_id: If given, the attempt must belong to this user

        Returns:
            Stored answer

        Raises:
            NotFoundException: If the attempt or question does not exist
            ValidationException: If the attempt is no longer in progress
        """
        try:
            with self.session_factory() as db:
                attempt = self._get_owned(db, attempt_id, user_id)
                if attempt.status != "in_progress":
                    raise ValidationException(
                        f"Attempt {attempt_id} is already {attempt.status}",
                        details={"status": attempt.status},
                    )

                question = db.get(Question, question_id)
                if question is None or question.exam_id != attempt.exam_id:
                    raise NotFoundException(
                        f"Question with ID '{question_id}' not found in this exam"
                    )

                row = (
                    db.query(SubmittedAnswer)
                    .filter(
                        SubmittedAnswer.attempt_id == attempt_id,
                        SubmittedAnswer.question_id == question_id,
                    )
                    .first()
                )
                if row is None:
                    row = SubmittedAnswer(
                        id=f"ans_{uuid.uuid4().hex[:12]}",
                        attempt_id=attempt_id,
                        question_id=question_id,
                    )
                    db.add(row)
                row.user_answer = answer if answer and answer.strip() else None
                db.commit()
                db.refresh(row)
                return row
        except SQLAlchemyError as e:
            raise UpstreamCallException(f"Failed to save answer: {str(e)}") from e

    def submit_attempt(
        self,
        attempt_id: str,
        time_spent_seconds: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> Attempt:
        """
        Close an attempt for answering so it can be scored.

        Raises:
            NotFoundException: If the attempt does not exist
            ValidationException: If it was already submitted
        """
        try:
            with self.session_factory() as db:
                attempt = self._get_owned(db, attempt_id, user_id)
                if attempt.status != "in_progress":
                    raise ValidationException(
                        f"Attempt {attempt_id} is already {attempt.status}",
                        details={"status": attempt.status},
                    )
                attempt.status = "submitted"
                attempt.submitted_at = utcnow()
                attempt.time_spent_seconds = time_spent_seconds
                db.commit()
                db.refresh(attempt)
        except SQLAlchemyError as e:
            raise UpstreamCallException(f"Failed to submit attempt: {str(e)}") from e

        logger.info(f"Attempt {attempt_id} submitted")
        return attempt

    def get_attempt(self, attempt_id: str, user_id: Optional[str] = None) -> Attempt:
        """Get an attempt with its answers (NotFoundException if missing)."""
        try:
            with self.session_factory() as db:
                return self._get_owned(db, attempt_id, user_id, load_answers=True)
        except SQLAlchemyError as e:
            raise UpstreamCallException(f"Failed to load attempt: {str(e)}") from e

    def has_scored_attempt(self, exam_id: str, user_id: str) -> bool:
        """Whether the user has at least one scored attempt on the exam."""
        try:
            with self.session_factory() as db:
                return (
                    db.query(Attempt.id)
                    .filter(
                        Attempt.exam_id == exam_id,
                        Attempt.user_id == user_id,
                        Attempt.status == "scored",
                    )
                    .first()
                    is not None
                )
        except SQLAlchemyError as e:
            raise UpstreamCallException(f"Failed to load attempts: {str(e)}") from e

    def _get_owned(self, db, attempt_id: str, user_id: Optional[str], load_answers: bool = False):
        query = db.query(Attempt).filter(Attempt.id == attempt_id)
        if load_answers:
            query = query.options(selectinload(Attempt.answers))
        attempt = query.first()
        # Other users' attempts are reported as missing
        if attempt is None or (user_id is not None and attempt.user_id != user_id):
            raise NotFoundException(f"Attempt with ID '{attempt_id}' not found")
        return attempt

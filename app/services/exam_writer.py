"""Transactional persistence of generated exams and their questions."""

import logging
import uuid
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload, sessionmaker

from app.db.models import Exam, Question
from app.exceptions import (
    ConsistencyException,
    NotFoundException,
    UpstreamCallException,
    ValidationException,
)
from app.messages import get_message
from app.models.generation_models import SynthesizedQuestion

logger = logging.getLogger(__name__)


class ExamWriter:
    """Writes an exam and all of its questions as one unit."""

    def __init__(self, session_factory: sessionmaker):
        """
        Initialize exam writer.

        Args:
            session_factory: Factory producing database sessions
        """
        self.session_factory = session_factory

    def write_exam(
        self,
        user_id: str,
        subject: str,
        topics: List[str],
        difficulty: str,
        language: str,
        questions: List[SynthesizedQuestion],
        job_id: Optional[str] = None,
    ) -> Exam:
        """
        Create one ready exam with its questions numbered 1..N.

        The exam is inserted as draft, its questions are flushed and counted,
        and only then is it marked ready and committed. Any failure rolls the
        whole transaction back, so no partial exam becomes visible.

        Args:
            user_id: Owner of the exam
            subject: Subject name
            topics: Topics covered
            difficulty: Difficulty level
            language: Exam language
            questions: Validated questions in order
            job_id: Generation job that produced the exam

        Returns:
            The committed exam

        Raises:
            ValidationException: If there are no questions
            ConsistencyException: If the persisted question set does not match
            UpstreamCallException: If the database write fails
        """
        if not questions:
            raise ValidationException("Cannot write an exam without questions")

        exam_id = f"exam_{uuid.uuid4().hex[:12]}"
        topic_label = ", ".join(topics) if topics else get_message("exam.title_general", language)
        exam = Exam(
            id=exam_id,
            user_id=user_id,
            generation_job_id=job_id,
            title=f"{subject} - {topic_label}",
            description=get_message("exam.description", language, count=len(questions)),
            source_type="curated",
            difficulty=difficulty,
            total_questions=len(questions),
            topics=list(topics),
            language=language,
            status="draft",
        )

        db = self.session_factory()
        try:
            db.add(exam)
            db.flush()

            for number, question in enumerate(questions, start=1):
                db.add(
                    Question(
                        id=f"q_{uuid.uuid4().hex[:12]}",
                        exam_id=exam_id,
                        question_number=number,
                        question_type=question.question_type,
                        question_text=question.question_text,
                        options=question.options,
                        correct_answer=question.correct_answer,
                        explanation=question.explanation,
                        difficulty=question.difficulty or difficulty,
                    )
                )
            db.flush()

            numbers = sorted(
                number
                for (number,) in db.query(Question.question_number).filter(
                    Question.exam_id == exam_id
                )
            )
            if numbers != list(range(1, len(questions) + 1)):
                raise ConsistencyException(
                    f"Exam {exam_id} persisted {len(numbers)} of {len(questions)} questions",
                    details={"exam_id": exam_id, "question_numbers": numbers},
                )

            exam.status = "ready"
            db.commit()
            db.refresh(exam)
        except SQLAlchemyError as e:
            db.rollback()
            raise UpstreamCallException(f"Failed to save exam: {str(e)}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(f"Created exam {exam_id} with {len(questions)} questions for user {user_id}")
        return exam

    def retract_exam(self, exam_id: str) -> None:
        """
        Mark an exam not ready, e.g. when its job could not be completed.

        Args:
            exam_id: Exam ID
        """
        try:
            with self.session_factory() as db:
                exam = db.get(Exam, exam_id)
                if exam is None:
                    raise NotFoundException(f"Exam with ID '{exam_id}' not found")
                exam.status = "draft"
                db.commit()
        except SQLAlchemyError as e:
            raise UpstreamCallException(f"Failed to retract exam {exam_id}: {str(e)}") from e
        logger.warning(f"Exam {exam_id} retracted to draft")

    def get_exam(self, exam_id: str) -> Exam:
        """
        Get an exam with its questions loaded in question order.

        Args:
            exam_id: Exam ID

        Returns:
            Exam with questions

        Raises:
            NotFoundException: If the exam does not exist
        """
        try:
            with self.session_factory() as db:
                exam = (
                    db.query(Exam)
                    .options(selectinload(Exam.questions))
                    .filter(Exam.id == exam_id)
                    .first()
                )
        except SQLAlchemyError as e:
            raise UpstreamCallException(f"Failed to load exam {exam_id}: {str(e)}") from e

        if exam is None:
            raise NotFoundException(f"Exam with ID '{exam_id}' not found")
        return exam

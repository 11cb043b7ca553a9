"""Scoring of submitted exam attempts."""

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.config import settings
from app.db.models import Attempt, Exam, Question, SubmittedAnswer
from app.exceptions import (
    ConsistencyException,
    ExamGeneratorException,
    NotFoundException,
    ScoringIncompleteException,
    UpstreamCallException,
    ValidationException,
)
from app.models.attempt_models import RubricGrade, ScoreResult
from app.models.generation_models import normalize_answer
from app.services.llm_client import LLMClient
from app.utils.json_extraction import extract_json_object
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

SCORABLE_STATUSES = ("submitted", "scored")

_RUBRIC_PROMPT_EN = """Evaluate this answer:

Question: {question}
Correct Answer: {correct_answer}
Student's Answer: {answer}

Rate the answer from 0-1 (0 = completely wrong, 1 = completely correct).
Provide brief feedback (one sentence).

Respond in JSON format only:
{{
  "score": 0.0-1.0,
  "feedback": "brief explanation"
}}"""

_RUBRIC_PROMPT_AR = """قم بتقييم هذه الإجابة العربية:

السؤال: {question}
الإجابة الصحيحة: {correct_answer}
إجابة الطالب: {answer}

قيّم الإجابة من 0-1 (0 = خطأ تماماً، 1 = صحيحة تماماً).
قدم شرحاً موجزاً بالعربية (جملة واحدة).

أجب بصيغة JSON فقط:
{{
  "score": 0.0-1.0,
  "feedback": "شرح قصير بالعربية"
}}"""


@dataclass
class _QuestionView:
    id: str
    question_type: str
    question_text: str
    correct_answer: str
    explanation: Optional[str]


@dataclass
class _AnswerGrade:
    question_id: str
    user_answer: Optional[str]
    is_correct: Optional[bool]
    points_earned: Optional[float]
    ai_feedback: Optional[str]
    graded_answer: Optional[str] = None
    grading_error: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return not (self.user_answer or "").strip()


class ScoringService:
    """
    Grades every question of an attempt and writes the aggregate score.

    Closed-form questions are compared after trimming and case folding.
    Short answers are graded by the model against a 0-1 rubric. Grading runs
    without an open database session, so no store transaction spans a model
    call.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        llm_client: LLMClient,
        pass_threshold: Optional[float] = None,
        max_attempts: Optional[int] = None,
        max_tokens: Optional[int] = None,
    ):
        """
        Initialize scoring service.

        Args:
            session_factory: Factory producing database sessions
            llm_client: Model client used for short-answer grading
            pass_threshold: Minimum short-answer points counted as correct
            max_attempts: Model calls allowed per short answer
            max_tokens: Maximum tokens for a grading response
        """
        self.session_factory = session_factory
        self.llm_client = llm_client
        self.pass_threshold = (
            pass_threshold if pass_threshold is not None else settings.short_answer_pass_threshold
        )
        self.max_attempts = max_attempts or settings.grading_max_attempts
        self.max_tokens = max_tokens or settings.grading_max_tokens

    def score_attempt(self, attempt_id: str, force: bool = False) -> ScoreResult:
        """
        Grade an attempt and persist per-question results and the aggregate.

        Safe to call repeatedly: answers are upserted per question and the
        aggregate is overwritten. A short answer that already has a grade for
        the same answer text keeps it unless ``force`` is set.

        Args:
            attempt_id: Attempt ID
            force: Re-grade short answers even if a stored grade applies

        Returns:
            Aggregate score result

        Raises:
            NotFoundException: If the attempt does not exist
            ValidationException: If the attempt has not been submitted
            ScoringIncompleteException: If some short answers could not be
                graded; the aggregate is not written and a later call retries
                only those answers
        """
        language, questions, stored = self._load(attempt_id)

        grades: List[_AnswerGrade] = []
        for question in questions:
            previous = stored.get(question.id)
            user_answer = previous.user_answer if previous is not None else None
            grades.append(self._grade(question, user_answer, previous, language, force))

        failed = [grade.question_id for grade in grades if grade.grading_error]
        result = self._save(attempt_id, grades, complete=not failed)

        if failed:
            logger.warning(
                f"Attempt {attempt_id}: {len(failed)} of {len(questions)} answers could not be graded"
            )
            raise ScoringIncompleteException(
                f"{len(failed)} answer(s) could not be graded; retry scoring later",
                failed_question_ids=failed,
                details={"attempt_id": attempt_id},
            )

        logger.info(
            f"Scored attempt {attempt_id}: {result.score}% "
            f"({result.correct_answers}/{result.total_questions} correct)"
        )
        return result

    def _load(
        self, attempt_id: str
    ) -> Tuple[str, List[_QuestionView], Dict[str, SubmittedAnswer]]:
        with self.session_factory() as db:
            attempt = db.get(Attempt, attempt_id)
            if attempt is None:
                raise NotFoundException(f"Attempt with ID '{attempt_id}' not found")
            if attempt.status not in SCORABLE_STATUSES:
                raise ValidationException(
                    f"Attempt {attempt_id} must be submitted before scoring",
                    details={"status": attempt.status},
                )

            exam = db.get(Exam, attempt.exam_id)
            if exam is None:
                raise NotFoundException(f"Exam with ID '{attempt.exam_id}' not found")

            questions = [
                _QuestionView(
                    id=q.id,
                    question_type=q.question_type,
                    question_text=q.question_text,
                    correct_answer=q.correct_answer,
                    explanation=q.explanation,
                )
                for q in db.query(Question)
                .filter(Question.exam_id == exam.id)
                .order_by(Question.question_number)
                .all()
            ]
            if not questions:
                raise ConsistencyException(f"Exam {exam.id} has no questions")

            stored = {
                answer.question_id: answer
                for answer in db.query(SubmittedAnswer)
                .filter(SubmittedAnswer.attempt_id == attempt_id)
                .all()
            }
            return exam.language, questions, stored

    def _grade(
        self,
        question: _QuestionView,
        user_answer: Optional[str],
        previous: Optional[SubmittedAnswer],
        language: str,
        force: bool,
    ) -> _AnswerGrade:
        if not (user_answer or "").strip():
            return _AnswerGrade(
                question_id=question.id,
                user_answer=user_answer,
                is_correct=False,
                points_earned=0.0,
                ai_feedback=question.explanation,
            )

        if question.question_type in ("multiple_choice", "true_false"):
            is_correct = normalize_answer(user_answer) == normalize_answer(question.correct_answer)
            return _AnswerGrade(
                question_id=question.id,
                user_answer=user_answer,
                is_correct=is_correct,
                points_earned=1.0 if is_correct else 0.0,
                ai_feedback=question.explanation,
                graded_answer=user_answer,
            )

        if (
            not force
            and previous is not None
            and previous.graded_answer == user_answer
            and previous.points_earned is not None
            and not previous.grading_error
        ):
            return _AnswerGrade(
                question_id=question.id,
                user_answer=user_answer,
                is_correct=previous.points_earned >= self.pass_threshold,
                points_earned=previous.points_earned,
                ai_feedback=previous.ai_feedback,
                graded_answer=user_answer,
            )

        try:
            rubric = self._grade_short_answer(question, user_answer, language)
        except ExamGeneratorException as e:
            return _AnswerGrade(
                question_id=question.id,
                user_answer=user_answer,
                is_correct=None,
                points_earned=None,
                ai_feedback=None,
                grading_error=e.message,
            )

        return _AnswerGrade(
            question_id=question.id,
            user_answer=user_answer,
            is_correct=rubric.score >= self.pass_threshold,
            points_earned=rubric.score,
            ai_feedback=rubric.feedback or question.explanation,
            graded_answer=user_answer,
        )

    def _grade_short_answer(
        self, question: _QuestionView, user_answer: str, language: str
    ) -> RubricGrade:
        """
        Grade one short answer with the model, retrying bad responses.

        Args:
            question: Question being answered
            user_answer: Student's answer text
            language: Exam language for the rubric prompt and feedback

        Returns:
            Parsed rubric grade

        Raises:
            UpstreamCallException: If the last model call failed
            ValidationException: If the last response had no valid grade
        """
        template = _RUBRIC_PROMPT_AR if language == "ar" else _RUBRIC_PROMPT_EN
        prompt = template.format(
            question=question.question_text,
            correct_answer=question.correct_answer,
            answer=user_answer,
        )

        last_error: Optional[ExamGeneratorException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                response_text = self.llm_client.complete(prompt, max_tokens=self.max_tokens)
                payload = extract_json_object(response_text, required_key="score")
                try:
                    return RubricGrade.model_validate(payload)
                except ValidationError as e:
                    raise ValidationException(
                        "Grading response failed validation",
                        details={"raw_response": response_text[:4000]},
                    ) from e
            except ExamGeneratorException as e:
                last_error = e
                logger.warning(
                    f"Grading question {question.id} failed "
                    f"(try {attempt}/{self.max_attempts}): {e.message}"
                )

        raise last_error

    def _save(self, attempt_id: str, grades: List[_AnswerGrade], complete: bool) -> ScoreResult:
        total = len(grades)
        correct = sum(1 for grade in grades if grade.is_correct)
        skipped = sum(1 for grade in grades if grade.skipped)
        wrong = sum(
            1 for grade in grades if not grade.skipped and grade.is_correct is False
        )
        points = sum(grade.points_earned or 0.0 for grade in grades)
        score = round(100.0 * points / total, 2)
        now = utcnow()

        try:
            with self.session_factory() as db:
                attempt = db.get(Attempt, attempt_id)
                if attempt is None:
                    raise NotFoundException(f"Attempt with ID '{attempt_id}' not found")

                rows = {
                    row.question_id: row
                    for row in db.query(SubmittedAnswer)
                    .filter(SubmittedAnswer.attempt_id == attempt_id)
                    .all()
                }
                for grade in grades:
                    row = rows.get(grade.question_id)
                    if row is None:
                        row = SubmittedAnswer(
                            id=f"ans_{uuid.uuid4().hex[:12]}",
                            attempt_id=attempt_id,
                            question_id=grade.question_id,
                        )
                        db.add(row)
                    row.user_answer = grade.user_answer
                    row.is_correct = grade.is_correct
                    row.points_earned = grade.points_earned
                    row.ai_feedback = grade.ai_feedback
                    row.graded_answer = grade.graded_answer
                    row.grading_error = grade.grading_error
                    row.scored_at = now if grade.grading_error is None else None

                if complete:
                    attempt.status = "scored"
                    attempt.score = score
                    attempt.correct_answers = correct
                    attempt.wrong_answers = wrong
                    attempt.skipped_answers = skipped
                    attempt.scored_at = now
                else:
                    # A partial aggregate is never exposed
                    attempt.status = "submitted"
                    attempt.score = None
                    attempt.scored_at = None

                db.commit()
        except SQLAlchemyError as e:
            raise UpstreamCallException(
                f"Failed to save scores for attempt {attempt_id}: {str(e)}"
            ) from e

        return ScoreResult(
            attempt_id=attempt_id,
            score=score,
            correct_answers=correct,
            wrong_answers=wrong,
            skipped_answers=skipped,
            total_questions=total,
        )

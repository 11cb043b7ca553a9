"""Tests for attempt scoring."""
from unittest.mock import MagicMock

import pytest

from app.db.models import Attempt, Exam, SubmittedAnswer
from app.exceptions import (
    NotFoundException,
    ScoringIncompleteException,
    UpstreamCallException,
    ValidationException,
)
from app.models.generation_models import SynthesizedQuestion
from app.services.attempt_service import AttemptService
from app.services.exam_writer import ExamWriter
from app.services.llm_client import LLMClient
from app.services.scoring_service import ScoringService

OPTIONS = ["Gravity", "Friction", "Magnetism", "Tension"]


def _mc(text, answer="Gravity"):
    return SynthesizedQuestion(
        question_type="multiple_choice",
        question_text=text,
        options=OPTIONS,
        correct_answer=answer,
        explanation=f"{answer} is correct.",
    )


@pytest.fixture
def mock_llm_client():
    client = MagicMock(spec=LLMClient)
    client.complete.return_value = '{"score": 0.8, "feedback": "Mostly right."}'
    return client


@pytest.fixture
def scoring_service(session_factory, mock_llm_client):
    return ScoringService(session_factory, mock_llm_client, pass_threshold=0.7, max_attempts=2)


@pytest.fixture
def attempt_service(session_factory):
    return AttemptService(session_factory)


@pytest.fixture
def exam(session_factory):
    """Exam with three multiple choice, one short answer and one true/false question."""
    questions = [
        _mc("Q1"),
        _mc("Q2", answer="Friction"),
        _mc("Q3", answer="Tension"),
        SynthesizedQuestion(
            question_type="short_answer",
            question_text="State Newton's second law.",
            correct_answer="Force equals mass times acceleration",
        ),
        SynthesizedQuestion(
            question_type="true_false",
            question_text="Momentum is conserved in a closed system.",
            correct_answer="true",
        ),
    ]
    return ExamWriter(session_factory).write_exam(
        "user_1", "Physics", ["Mechanics"], "medium", "en", questions
    )


@pytest.fixture
def submit(attempt_service, exam, session_factory):
    """Start an attempt, save the given answers by question number, and submit it."""

    def run(answers):
        attempt = attempt_service.start_attempt(exam.id, "user_1")
        with session_factory() as db:
            ids = {q.question_number: q.id for q in db.get(Exam, exam.id).questions}
        for number, answer in answers.items():
            attempt_service.save_answer(attempt.id, ids[number], answer)
        attempt_service.submit_attempt(attempt.id, time_spent_seconds=300)
        return attempt.id

    return run


def test_mixed_attempt_score(scoring_service, submit, mock_llm_client, session_factory):
    """3 correct MC, a 0.8 short answer and a skipped question score 76.0 with 4 correct."""
    attempt_id = submit(
        {
            1: "Gravity",
            2: "Friction",
            3: "Tension",
            4: "F = m a, force is mass times acceleration",
        }
    )

    result = scoring_service.score_attempt(attempt_id)

    assert result.score == pytest.approx(76.0)
    assert result.correct_answers == 4
    assert result.wrong_answers == 0
    assert result.skipped_answers == 1
    assert result.total_questions == 5
    assert mock_llm_client.complete.call_count == 1

    with session_factory() as db:
        attempt = db.get(Attempt, attempt_id)
        assert attempt.status == "scored"
        assert attempt.score == pytest.approx(76.0)
        assert attempt.correct_answers == 4
        answers = db.query(SubmittedAnswer).filter_by(attempt_id=attempt_id).all()
        assert len(answers) == 5
        short = next(a for a in answers if a.ai_feedback == "Mostly right.")
        assert short.points_earned == pytest.approx(0.8)
        assert short.is_correct is True
        skipped = next(a for a in answers if a.user_answer is None)
        assert skipped.is_correct is False
        assert skipped.points_earned == 0.0


def test_rescoring_is_idempotent(scoring_service, submit, mock_llm_client, session_factory):
    """Re-scoring an unchanged attempt gives the same result without new model calls."""
    attempt_id = submit({1: "Gravity", 2: "Gravity", 4: "mass times acceleration", 5: "true"})

    first = scoring_service.score_attempt(attempt_id)
    mock_llm_client.complete.return_value = '{"score": 0.1, "feedback": "Different."}'
    second = scoring_service.score_attempt(attempt_id)

    assert second == first
    assert mock_llm_client.complete.call_count == 1
    with session_factory() as db:
        assert db.query(SubmittedAnswer).filter_by(attempt_id=attempt_id).count() == 5


def test_force_regrades_short_answers(scoring_service, submit, mock_llm_client):
    """force=True asks the model again."""
    attempt_id = submit({4: "mass times acceleration"})
    scoring_service.score_attempt(attempt_id)
    mock_llm_client.complete.return_value = '{"score": 0.3, "feedback": "Incomplete."}'

    result = scoring_service.score_attempt(attempt_id, force=True)

    assert mock_llm_client.complete.call_count == 2
    assert result.correct_answers == 0
    assert result.score == pytest.approx(6.0)


@pytest.mark.parametrize("answer", ["gravity", "  GRAVITY  ", "Gravity\n"])
def test_closed_form_matching_ignores_case_and_whitespace(scoring_service, submit, answer):
    """Multiple choice answers match after trimming and case folding."""
    attempt_id = submit({1: answer, 5: "  True "})

    result = scoring_service.score_attempt(attempt_id)

    assert result.correct_answers == 2
    assert result.wrong_answers == 0


def test_wrong_answers_counted(scoring_service, submit):
    """Answered but incorrect questions count as wrong, not skipped."""
    attempt_id = submit({1: "Friction", 2: "Magnetism", 5: "false"})

    result = scoring_service.score_attempt(attempt_id)

    assert result.correct_answers == 0
    assert result.wrong_answers == 3
    assert result.skipped_answers == 2
    assert result.score == 0.0


def test_unparseable_grade_is_retried(scoring_service, submit, mock_llm_client):
    """A bad grading response is retried before giving up."""
    mock_llm_client.complete.side_effect = [
        "I think it is pretty good!",
        '{"score": 0.9, "feedback": "Good."}',
    ]
    attempt_id = submit({4: "mass times acceleration"})

    result = scoring_service.score_attempt(attempt_id)

    assert mock_llm_client.complete.call_count == 2
    assert result.correct_answers == 1


def test_grading_failure_blocks_aggregate(
    scoring_service, submit, mock_llm_client, session_factory
):
    """When a short answer cannot be graded, the attempt stays submitted."""
    mock_llm_client.complete.side_effect = UpstreamCallException("Model call timed out")
    attempt_id = submit({1: "Gravity", 4: "mass times acceleration"})

    with pytest.raises(ScoringIncompleteException) as exc_info:
        scoring_service.score_attempt(attempt_id)

    assert len(exc_info.value.failed_question_ids) == 1
    assert mock_llm_client.complete.call_count == 2
    with session_factory() as db:
        attempt = db.get(Attempt, attempt_id)
        assert attempt.status == "submitted"
        assert attempt.score is None
        failed = (
            db.query(SubmittedAnswer)
            .filter_by(attempt_id=attempt_id, question_id=exc_info.value.failed_question_ids[0])
            .one()
        )
        assert failed.grading_error == "Model call timed out"
        assert failed.is_correct is None
        # The rest of the attempt was still graded
        graded = db.query(SubmittedAnswer).filter_by(attempt_id=attempt_id, is_correct=True).count()
        assert graded == 1


def test_rescore_after_failure_only_retries_missing(scoring_service, submit, mock_llm_client):
    """A later scoring run completes the attempt once the model recovers."""
    mock_llm_client.complete.side_effect = UpstreamCallException("Model call timed out")
    attempt_id = submit({1: "Gravity", 4: "mass times acceleration"})
    with pytest.raises(ScoringIncompleteException):
        scoring_service.score_attempt(attempt_id)

    mock_llm_client.complete.side_effect = None
    mock_llm_client.complete.return_value = '{"score": 1.0, "feedback": "Correct."}'
    result = scoring_service.score_attempt(attempt_id)

    assert result.correct_answers == 2
    assert result.score == pytest.approx(40.0)


def test_out_of_range_grade_is_rejected(scoring_service, submit, mock_llm_client):
    """Model scores outside 0..1 are grading errors, not clamped."""
    mock_llm_client.complete.return_value = '{"score": 8, "feedback": "Great"}'
    attempt_id = submit({4: "mass times acceleration"})

    with pytest.raises(ScoringIncompleteException):
        scoring_service.score_attempt(attempt_id)


def test_arabic_rubric_prompt(session_factory, mock_llm_client, attempt_service):
    """Arabic exams are graded with the Arabic rubric."""
    exam = ExamWriter(session_factory).write_exam(
        "user_1",
        "فيزياء",
        [],
        "easy",
        "ar",
        [
            SynthesizedQuestion(
                question_type="short_answer",
                question_text="ما هو قانون نيوتن الثاني؟",
                correct_answer="القوة تساوي الكتلة في التسارع",
            )
        ],
    )
    attempt = attempt_service.start_attempt(exam.id, "user_1")
    question_id = attempt_service.get_attempt(attempt.id).answers[0].question_id
    attempt_service.save_answer(attempt.id, question_id, "القوة = الكتلة × التسارع")
    attempt_service.submit_attempt(attempt.id)

    ScoringService(session_factory, mock_llm_client).score_attempt(attempt.id)

    prompt = mock_llm_client.complete.call_args.args[0]
    assert "قم بتقييم هذه الإجابة العربية" in prompt
    assert "القوة = الكتلة × التسارع" in prompt


def test_in_progress_attempt_cannot_be_scored(scoring_service, attempt_service, exam):
    """Scoring requires a submitted attempt."""
    attempt = attempt_service.start_attempt(exam.id, "user_1")

    with pytest.raises(ValidationException):
        scoring_service.score_attempt(attempt.id)


def test_missing_attempt(scoring_service):
    """Unknown attempt IDs raise NotFoundException."""
    with pytest.raises(NotFoundException):
        scoring_service.score_attempt("attempt_missing")

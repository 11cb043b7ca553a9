"""Unit tests for exam persistence."""
from unittest.mock import patch

import pytest

from app.db.models import Exam, Question
from app.exceptions import (
    ConsistencyException,
    NotFoundException,
    UpstreamCallException,
    ValidationException,
)
from app.services.exam_writer import ExamWriter


@pytest.fixture
def exam_writer(session_factory):
    """Create an exam writer instance."""
    return ExamWriter(session_factory)


def test_write_exam_numbers_questions(exam_writer, synthesized_questions):
    """Questions are stored 1..N in the given order and the exam is ready."""
    questions = synthesized_questions(4)

    exam = exam_writer.write_exam(
        user_id="user_1",
        subject="Physics",
        topics=["Mechanics", "Energy"],
        difficulty="medium",
        language="en",
        questions=questions,
        job_id="job_1",
    )

    assert exam.status == "ready"
    assert exam.total_questions == 4
    assert exam.title == "Physics - Mechanics, Energy"
    assert exam.generation_job_id == "job_1"

    loaded = exam_writer.get_exam(exam.id)
    assert [q.question_number for q in loaded.questions] == [1, 2, 3, 4]
    assert [q.question_text for q in loaded.questions] == [q.question_text for q in questions]
    assert loaded.questions[0].options == ["Gravity", "Friction", "Magnetism", "Tension"]
    assert loaded.questions[1].options is None


def test_general_title_localized(exam_writer, synthesized_questions):
    """Subject-only exams get a localized general title."""
    exam = exam_writer.write_exam("user_1", "فيزياء", [], "easy", "ar", synthesized_questions(1))
    assert exam.title == "فيزياء - عام"


def test_empty_question_list_is_rejected(exam_writer, session_factory):
    """An exam without questions is never written."""
    with pytest.raises(ValidationException):
        exam_writer.write_exam("user_1", "Physics", [], "easy", "en", [])

    with session_factory() as db:
        assert db.query(Exam).count() == 0


def test_count_mismatch_rolls_back(exam_writer, session_factory, synthesized_questions):
    """A failed verification leaves neither the exam nor its questions."""
    with patch("app.services.exam_writer.sorted", return_value=[1], create=True):
        with pytest.raises(ConsistencyException):
            exam_writer.write_exam("user_1", "Physics", [], "easy", "en", synthesized_questions(3))

    with session_factory() as db:
        assert db.query(Exam).count() == 0
        assert db.query(Question).count() == 0


def test_database_error_rolls_back(exam_writer, session_factory, synthesized_questions):
    """Store errors surface as UpstreamCallException with nothing persisted."""
    questions = synthesized_questions(2)
    # Two questions sharing an ID violate the primary key on flush
    with patch("app.services.exam_writer.uuid.uuid4") as fake_uuid:
        fake_uuid.return_value.hex = "a" * 32
        with pytest.raises(UpstreamCallException):
            exam_writer.write_exam("user_1", "Physics", [], "easy", "en", questions)

    with session_factory() as db:
        assert db.query(Exam).count() == 0


def test_retract_exam(exam_writer, synthesized_questions):
    """Retracted exams go back to draft."""
    exam = exam_writer.write_exam("user_1", "Physics", [], "easy", "en", synthesized_questions(1))

    exam_writer.retract_exam(exam.id)

    assert exam_writer.get_exam(exam.id).status == "draft"


def test_get_missing_exam(exam_writer):
    """Unknown exam IDs raise NotFoundException."""
    with pytest.raises(NotFoundException):
        exam_writer.get_exam("exam_missing")

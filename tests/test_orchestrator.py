"""Tests for the generation job orchestrator."""
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from app.db.models import Exam
from app.exceptions import (
    UpstreamCallException,
    UsageLimitException,
    ValidationException,
)
from app.services.exam_writer import ExamWriter
from app.services.generation_service import GenerationService
from app.services.job_service import JobService
from app.services.llm_client import LLMClient
from app.services.orchestrator import GenerationOrchestrator
from app.services.retrieval_service import RetrievalService
from app.services.usage_service import UsageService


@pytest.fixture
def job_service(session_factory):
    return JobService(session_factory)


@pytest.fixture
def exam_writer(session_factory):
    return ExamWriter(session_factory)


@pytest.fixture
def mock_retrieval(sample_chunks):
    retrieval = MagicMock(spec=RetrievalService)
    retrieval.retrieve.return_value = sample_chunks
    return retrieval


@pytest.fixture
def mock_llm_client():
    return MagicMock(spec=LLMClient)


@pytest.fixture
def usage_gate():
    gate = MagicMock(spec=UsageService)
    gate.can_generate_exam.return_value = True
    return gate


@pytest.fixture
def orchestrator(job_service, exam_writer, mock_retrieval, mock_llm_client, usage_gate):
    """Orchestrator with real store and writer, fake retrieval and model."""
    orchestrator = GenerationOrchestrator(
        job_service=job_service,
        retrieval_service=mock_retrieval,
        generation_service=GenerationService(mock_llm_client),
        exam_writer=exam_writer,
        usage_gate=usage_gate,
        max_workers=2,
    )
    yield orchestrator
    orchestrator.shutdown()


def _start(orchestrator, language="en", question_count=10, topics=("Mechanics",)):
    return orchestrator.start_generation(
        user_id="user_1",
        subject="Physics",
        topics=list(topics),
        question_count=question_count,
        difficulty="medium",
        language=language,
    )


def test_no_content_fails_without_exam(orchestrator, mock_retrieval, session_factory):
    """Zero retrieved chunks ends the job failed with a message and no exam."""
    mock_retrieval.retrieve.return_value = []

    job_id = _start(orchestrator)
    job = orchestrator.wait(job_id, timeout=5)

    assert job.status == "failed"
    assert job.error_message == "No content found for selected topics"
    assert job.exam_id is None
    assert job.progress == 10
    with session_factory() as db:
        assert db.query(Exam).count() == 0


def test_no_content_message_is_localized(orchestrator, mock_retrieval):
    """Arabic jobs fail with an Arabic message."""
    mock_retrieval.retrieve.return_value = []

    job = orchestrator.wait(_start(orchestrator, language="ar"), timeout=5)

    assert job.error_message == "لم يتم العثور على محتوى للموضوعات المحددة"


def test_under_delivery_completes_with_fewer_questions(
    orchestrator, mock_llm_client, question_payload, exam_writer
):
    """Eight valid questions for a request of ten still completes the job."""
    mock_llm_client.complete.return_value = question_payload(8)

    job = orchestrator.wait(_start(orchestrator, question_count=10), timeout=5)

    assert job.status == "completed"
    assert job.progress == 100
    exam = exam_writer.get_exam(job.exam_id)
    assert exam.total_questions == 8
    assert len(exam.questions) == 8
    assert exam.status == "ready"


def test_progress_sequence_observed_by_subscriber(
    job_service, exam_writer, mock_retrieval, mock_llm_client, question_payload
):
    """A subscriber sees every stage in order with non-decreasing progress."""
    mock_llm_client.complete.return_value = question_payload(5)
    orchestrator = GenerationOrchestrator(
        job_service, mock_retrieval, GenerationService(mock_llm_client), exam_writer
    )
    job = job_service.create_job("user_1", "Physics", ["Mechanics"], 5, "medium", "en")
    received = []
    orchestrator.subscribe_job(job.id, received.append)

    final = orchestrator.run_job(job.id)
    orchestrator.shutdown()

    assert [s.status for s in received] == ["searching", "generating", "completing", "completed"]
    assert [s.progress for s in received] == [10, 40, 70, 100]
    assert final.exam_id is not None


def test_retrieval_limit(orchestrator, mock_retrieval, mock_llm_client, question_payload):
    """Retrieval asks for three chunks per question, capped at 30."""
    mock_llm_client.complete.return_value = question_payload(5)

    orchestrator.wait(_start(orchestrator, question_count=5), timeout=5)
    assert mock_retrieval.retrieve.call_args.kwargs["limit"] == 15

    orchestrator.wait(_start(orchestrator, question_count=20), timeout=5)
    assert mock_retrieval.retrieve.call_args.kwargs["limit"] == 30


def test_generation_failure(orchestrator, mock_llm_client):
    """Model errors fail the job at the generating stage."""
    mock_llm_client.complete.side_effect = UpstreamCallException(
        "Model call timed out after 60.0s", details={"reason": "timeout"}
    )

    job = orchestrator.wait(_start(orchestrator), timeout=5)

    assert job.status == "failed"
    assert job.progress == 40
    assert job.error_message.startswith("Failed to generate questions:")
    assert "timed out" in job.error_message


def test_invalid_payload_fails_job(orchestrator, mock_llm_client):
    """Unparseable model output fails the job."""
    mock_llm_client.complete.return_value = "I'd rather not."

    job = orchestrator.wait(_start(orchestrator), timeout=5)

    assert job.status == "failed"
    assert job.exam_id is None


def test_persistence_failure(orchestrator, mock_llm_client, question_payload, exam_writer):
    """Writer errors fail the job at the completing stage."""
    mock_llm_client.complete.return_value = question_payload(5)

    with patch.object(
        exam_writer, "write_exam", side_effect=UpstreamCallException("disk I/O error")
    ):
        job = orchestrator.wait(_start(orchestrator, question_count=5), timeout=5)

    assert job.status == "failed"
    assert job.progress == 70
    assert job.error_message == "Failed to save the exam: disk I/O error"


def test_unexpected_error_gets_generic_message(orchestrator, mock_retrieval):
    """Unknown exceptions are reported with a generic localized message."""
    mock_retrieval.retrieve.side_effect = RuntimeError("segfault in vector index")

    job = orchestrator.wait(_start(orchestrator), timeout=5)

    assert job.status == "failed"
    assert job.error_message == "Failed to generate exam. Please try again."


def test_exam_retracted_when_job_cannot_complete(
    orchestrator, job_service, mock_llm_client, question_payload, session_factory
):
    """If completion fails after the exam was written, the exam is not left ready."""
    mock_llm_client.complete.return_value = question_payload(5)

    with patch.object(
        job_service, "complete", side_effect=UpstreamCallException("database is locked")
    ):
        job = orchestrator.wait(_start(orchestrator, question_count=5), timeout=5)

    assert job.status == "failed"
    with session_factory() as db:
        assert [exam.status for exam in db.query(Exam).all()] == ["draft"]


def test_usage_recorded_after_completion(orchestrator, usage_gate, mock_llm_client, question_payload):
    """Completed jobs count against the plan with the delivered question count."""
    mock_llm_client.complete.return_value = question_payload(8)

    orchestrator.wait(_start(orchestrator, question_count=10), timeout=5)

    usage_gate.record_exam.assert_called_once_with("user_1", 8)


def test_usage_recording_failure_does_not_fail_job(
    orchestrator, usage_gate, mock_llm_client, question_payload
):
    """Usage bookkeeping errors are logged only."""
    mock_llm_client.complete.return_value = question_payload(5)
    usage_gate.record_exam.side_effect = UpstreamCallException("usage table locked")

    job = orchestrator.wait(_start(orchestrator, question_count=5), timeout=5)

    assert job.status == "completed"


def test_usage_limit_blocks_before_job_creation(orchestrator, usage_gate, job_service):
    """Requests over the plan limit never create a job."""
    usage_gate.can_generate_exam.return_value = False

    with pytest.raises(UsageLimitException):
        _start(orchestrator)

    assert job_service.list_user_jobs("user_1") == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"question_count": 3},
        {"question_count": 51},
        {"subject": "   "},
        {"difficulty": "extreme"},
        {"language": "fr"},
    ],
)
def test_invalid_requests_are_rejected(orchestrator, job_service, overrides):
    """Malformed requests raise ValidationException and create nothing."""
    request = {
        "user_id": "user_1",
        "subject": "Physics",
        "topics": ["Mechanics"],
        "question_count": 10,
        "difficulty": "medium",
        "language": "en",
    }
    request.update(overrides)

    with pytest.raises(ValidationException):
        orchestrator.start_generation(**request)

    assert job_service.list_user_jobs("user_1") == []


def test_get_and_list_jobs(orchestrator, mock_retrieval):
    """Started jobs are readable by ID and listed for their user."""
    mock_retrieval.retrieve.return_value = []
    job_id = _start(orchestrator)
    orchestrator.wait(job_id, timeout=5)

    assert orchestrator.get_job(job_id).id == job_id
    assert [job.id for job in orchestrator.list_jobs("user_1")] == [job_id]


def test_reconcile_fails_abandoned_jobs(orchestrator, job_service):
    """Jobs left mid-stage by a previous process are failed on reconciliation."""
    abandoned = job_service.create_job("user_1", "Physics", [], 5, "medium", "ar")
    job_service.advance(abandoned.id, "generating", "g", 40)

    count = orchestrator.reconcile_stale_jobs(max_age=timedelta(microseconds=1))

    job = job_service.get_job(abandoned.id)
    assert count == 1
    assert job.status == "failed"
    assert job.progress == 40
    assert job.error_message == "تمت مقاطعة عملية الإنشاء. يرجى المحاولة مرة أخرى."


def test_reconcile_fails_recently_orphaned_jobs(orchestrator, job_service):
    """On restart, jobs no worker is driving are failed regardless of age."""
    orphaned = job_service.create_job("user_1", "Physics", [], 5, "medium", "en")
    job_service.advance(orphaned.id, "generating", "g", 40)

    count = orchestrator.reconcile_stale_jobs()

    job = job_service.get_job(orphaned.id)
    assert count == 1
    assert job.status == "failed"
    assert job.error_message == "Generation was interrupted. Please try again."


def test_reconcile_skips_jobs_driven_by_this_process(orchestrator, job_service):
    """Jobs with a live worker are left alone."""
    job = job_service.create_job("user_1", "Physics", [], 5, "medium", "en")
    running = MagicMock()
    orchestrator._futures[job.id] = running

    assert orchestrator.reconcile_stale_jobs() == 0
    assert job_service.get_job(job.id).status == "pending"


def test_search_failure_message_is_localized(orchestrator, mock_retrieval):
    """Content store errors are reported in the job's language."""
    mock_retrieval.retrieve.side_effect = UpstreamCallException(
        "Content lookup failed: connection refused"
    )

    job = orchestrator.wait(_start(orchestrator, language="ar"), timeout=5)

    assert job.status == "failed"
    assert job.progress == 10
    assert job.error_message == "فشل البحث عن المحتوى: Content lookup failed: connection refused"

"""Background orchestration of exam generation jobs."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from app.config import settings
from app.exceptions import (
    EmptyResultException,
    ExamGeneratorException,
    GenerationException,
    JobStateException,
    UsageLimitException,
    ValidationException,
)
from app.messages import get_message
from app.models.generation_models import GenerateExamRequest, JobSnapshot
from app.services.exam_writer import ExamWriter
from app.services.generation_service import GenerationService
from app.services.job_service import JobService
from app.services.retrieval_service import RetrievalService
from app.services.usage_service import UsageGate
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

# Progress reported on entering each stage
STAGE_PROGRESS = {"searching": 10, "generating": 40, "completing": 70, "completed": 100}


class GenerationOrchestrator:
    """
    Runs generation jobs through retrieval, synthesis and persistence.

    Each job is one task on a thread pool. Its stages run sequentially inside
    that task and every stage change goes through the job store, which is
    the only thing observers see.
    """

    def __init__(
        self,
        job_service: JobService,
        retrieval_service: RetrievalService,
        generation_service: GenerationService,
        exam_writer: ExamWriter,
        usage_gate: Optional[UsageGate] = None,
        max_workers: Optional[int] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            job_service: Job state store
            retrieval_service: Content retriever
            generation_service: Question synthesizer
            exam_writer: Exam persistence writer
            usage_gate: Plan limit check; None disables limits
            max_workers: Worker threads for jobs (defaults to settings)
        """
        self.job_service = job_service
        self.retrieval_service = retrieval_service
        self.generation_service = generation_service
        self.exam_writer = exam_writer
        self.usage_gate = usage_gate
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.generation_workers,
            thread_name_prefix="exam-generation",
        )
        self._futures: Dict[str, Future] = {}
        self._futures_lock = threading.Lock()

    def start_generation(
        self,
        user_id: str,
        subject: str,
        topics: List[str],
        question_count: int,
        difficulty: str = "medium",
        language: str = "ar",
    ) -> str:
        """
        Validate a request, create its job and schedule it.

        Returns as soon as the job row exists; the pipeline runs in the
        background.

        Args:
            user_id: Requesting user
            subject: Subject name
            topics: Topics to cover (empty for the whole subject)
            question_count: Number of questions requested
            difficulty: easy, medium or hard
            language: ar or en

        Returns:
            The new job ID

        Raises:
            ValidationException: If the request is malformed
            UsageLimitException: If the user's plan does not allow it
        """
        request = self.validate_request(subject, topics, question_count, difficulty, language)

        if self.usage_gate is not None and not self.usage_gate.can_generate_exam(
            user_id, request.question_count
        ):
            raise UsageLimitException(
                "Generation limit reached for your plan",
                details={"user_id": user_id, "question_count": request.question_count},
            )

        # Job creation and tracking are atomic with respect to reconcile_stale_jobs
        with self._futures_lock:
            job = self.job_service.create_job(
                user_id=user_id,
                subject=request.subject,
                topics=request.topics,
                question_count=request.question_count,
                difficulty=request.difficulty,
                language=request.language,
                stage=get_message("stage.pending", request.language),
            )
            future = self.executor.submit(self.run_job, job.id)
            self._futures[job.id] = future
        future.add_done_callback(lambda _: self._forget(job.id))

        return job.id

    @staticmethod
    def validate_request(
        subject: str,
        topics: List[str],
        question_count: int,
        difficulty: str,
        language: str,
    ) -> GenerateExamRequest:
        """
        Normalize a generation request and apply the configured count bounds.

        Raises:
            ValidationException: If any field is invalid
        """
        try:
            request = GenerateExamRequest(
                subject=subject,
                topics=list(topics or []),
                question_count=question_count,
                difficulty=difficulty,
                language=language,
            )
        except ValidationError as e:
            raise ValidationException(
                "Invalid generation request",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

        if not settings.min_question_count <= request.question_count <= settings.max_question_count:
            raise ValidationException(
                f"question_count must be between {settings.min_question_count} "
                f"and {settings.max_question_count}",
                details={"question_count": request.question_count},
            )
        return request

    def run_job(self, job_id: str) -> Optional[JobSnapshot]:
        """
        Drive one job from pending to a terminal state.

        Every exception is converted into a single failure of the job; nothing
        propagates out of the worker.

        Args:
            job_id: Job ID

        Returns:
            Final job snapshot, or None if the job could not be updated
        """
        try:
            job = self.job_service.get_job(job_id)
        except ExamGeneratorException as e:
            logger.error(f"Cannot run job {job_id}: {e.message}")
            return None

        language = job.language
        stage = job.status
        exam_id: Optional[str] = None

        try:
            stage = "searching"
            self._advance(job, stage)
            chunks = self.retrieval_service.retrieve(
                subject=job.subject,
                topics=job.topics,
                language=language,
                limit=settings.retrieval_limit(job.question_count),
            )
            if not chunks:
                raise EmptyResultException(
                    get_message("error.no_content", language),
                    details={"subject": job.subject, "topics": job.topics},
                )

            stage = "generating"
            self._advance(job, stage)
            questions = self.generation_service.synthesize(
                chunks=chunks,
                subject=job.subject,
                topics=job.topics,
                question_count=job.question_count,
                difficulty=job.difficulty,
                language=language,
            )

            stage = "completing"
            self._advance(job, stage)
            exam = self.exam_writer.write_exam(
                user_id=job.user_id,
                subject=job.subject,
                topics=job.topics,
                difficulty=job.difficulty,
                language=language,
                questions=questions,
                job_id=job_id,
            )
            exam_id = exam.id

            stage = "completed"
            snapshot = self.job_service.complete(
                job_id, exam_id, stage=get_message("stage.completed", language)
            )
        except Exception as e:
            return self._fail(job, stage, e, exam_id)

        self._record_usage(job.user_id, len(questions))
        return snapshot

    def get_job(self, job_id: str) -> JobSnapshot:
        """Current state of a job (NotFoundException if missing)."""
        return self.job_service.get_job(job_id)

    def list_jobs(self, user_id: str, limit: int = 10) -> List[JobSnapshot]:
        """A user's most recent jobs, newest first."""
        return self.job_service.list_user_jobs(user_id, limit=limit)

    def subscribe_job(
        self, job_id: str, on_update: Callable[[JobSnapshot], None]
    ) -> Callable[[], None]:
        """
        Receive every subsequent state change of a job.

        Args:
            job_id: Job ID
            on_update: Called with each committed JobSnapshot

        Returns:
            Function that ends the subscription

        Raises:
            NotFoundException: If the job does not exist
        """
        self.job_service.get_job(job_id)
        return self.job_service.subscribe(job_id, on_update)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> JobSnapshot:
        """
        Block until a scheduled job has finished running.

        Args:
            job_id: Job ID
            timeout: Seconds to wait; None waits indefinitely

        Returns:
            Job snapshot after the run

        Raises:
            concurrent.futures.TimeoutError: If the job is still running
        """
        with self._futures_lock:
            future = self._futures.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.job_service.get_job(job_id)

    def reconcile_stale_jobs(self, max_age: Optional[timedelta] = None) -> int:
        """
        Fail non-terminal jobs that no worker in this process is driving.

        Jobs left mid-stage by a previous process would otherwise never reach
        a terminal state. Called on startup, when every such job is orphaned.

        Args:
            max_age: Only fail jobs not updated for this long; None fails
                every untracked non-terminal job

        Returns:
            Number of jobs failed
        """
        cutoff = utcnow() - max_age if max_age is not None else utcnow()
        stale = self.job_service.list_stale_jobs(cutoff)

        failed = 0
        for job in stale:
            with self._futures_lock:
                if job.id in self._futures:
                    continue
            try:
                self.job_service.fail(
                    job.id,
                    get_message("error.interrupted", job.language),
                    stage=get_message("stage.failed", job.language),
                )
                failed += 1
            except JobStateException:
                # Finished between the query and the update
                continue

        if failed:
            logger.warning(f"Reconciled {failed} interrupted generation job(s)")
        return failed

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting jobs and optionally wait for running ones."""
        self.executor.shutdown(wait=wait)

    def _advance(self, job: JobSnapshot, status: str) -> None:
        self.job_service.advance(
            job.id,
            status,
            get_message(f"stage.{status}", job.language),
            STAGE_PROGRESS[status],
        )

    def _fail(
        self,
        job: JobSnapshot,
        stage: str,
        error: Exception,
        exam_id: Optional[str],
    ) -> Optional[JobSnapshot]:
        language = job.language

        if isinstance(error, EmptyResultException):
            message = error.message
        elif isinstance(error, GenerationException) or (
            isinstance(error, ExamGeneratorException) and stage == "generating"
        ):
            message = get_message("error.generation", language, detail=error.message)
        elif isinstance(error, ExamGeneratorException) and stage == "searching":
            message = get_message("error.search", language, detail=error.message)
        elif isinstance(error, ExamGeneratorException) and stage in ("completing", "completed"):
            message = get_message("error.persistence", language, detail=error.message)
        elif isinstance(error, ExamGeneratorException):
            message = get_message("error.unexpected", language)
        else:
            logger.exception(f"Unexpected error in job {job.id} during {stage}")
            message = get_message("error.unexpected", language)

        logger.error(f"Job {job.id} failed during {stage}: {error}")

        if exam_id is not None:
            try:
                self.exam_writer.retract_exam(exam_id)
            except ExamGeneratorException as e:
                logger.error(f"Could not retract exam {exam_id} of job {job.id}: {e.message}")

        try:
            return self.job_service.fail(
                job.id, message, stage=get_message("stage.failed", language)
            )
        except ExamGeneratorException as e:
            logger.error(f"Could not mark job {job.id} failed: {e.message}")
            return None

    def _record_usage(self, user_id: str, question_count: int) -> None:
        if self.usage_gate is None:
            return
        try:
            self.usage_gate.record_exam(user_id, question_count)
        except Exception:
            logger.exception(f"Failed to record usage for user {user_id}")

    def _forget(self, job_id: str) -> None:
        with self._futures_lock:
            self._futures.pop(job_id, None)

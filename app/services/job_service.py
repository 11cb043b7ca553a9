"""Service for managing exam generation jobs (the job state store)."""

import itertools
import logging
import threading
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.db.models import GenerationJob
from app.exceptions import JobStateException, NotFoundException, UpstreamCallException
from app.models.generation_models import JobSnapshot
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

# Forward order of the non-terminal stages
STAGE_ORDER = {"pending": 0, "searching": 1, "generating": 2, "completing": 3}
TERMINAL_STATUSES = frozenset({"completed", "failed"})

JobCallback = Callable[[JobSnapshot], None]


class JobService:
    """
    Durable record of generation jobs with change notification.

    Every write commits before returning and subscribers are notified after
    the commit, in write order. Terminal states are sticky: any further write
    raises JobStateException.
    """

    def __init__(self, session_factory: sessionmaker):
        """
        Initialize job service.

        Args:
            session_factory: Factory producing database sessions
        """
        self.session_factory = session_factory
        self._write_lock = threading.RLock()
        self._subscribers: Dict[str, Dict[int, JobCallback]] = defaultdict(dict)
        self._tokens = itertools.count()

    def create_job(
        self,
        user_id: str,
        subject: str,
        topics: List[str],
        question_count: int,
        difficulty: str,
        language: str,
        stage: Optional[str] = None,
    ) -> JobSnapshot:
        """
        Create a new pending generation job.

        Args:
            user_id: Owner of the job
            subject: Subject name
            topics: Ordered topic list
            question_count: Number of questions requested
            difficulty: easy, medium or hard
            language: ar or en
            stage: Initial stage description

        Returns:
            Snapshot of the created job
        """
        job_id = f"job_{uuid.uuid4().hex[:12]}"
        now = utcnow()
        job = GenerationJob(
            id=job_id,
            user_id=user_id,
            subject=subject,
            topics=list(topics),
            question_count=question_count,
            difficulty=difficulty,
            language=language,
            status="pending",
            current_stage=stage,
            progress=0,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.session_factory() as db:
                db.add(job)
                db.commit()
                db.refresh(job)
                snapshot = JobSnapshot.model_validate(job)
        except SQLAlchemyError as e:
            raise UpstreamCallException(
                f"Failed to create generation job: {str(e)}"
            ) from e

        logger.info(
            f"Created job {job_id} for user {user_id}: {subject} "
            f"({question_count} questions, {difficulty}, {language})"
        )
        return snapshot

    def get_job(self, job_id: str) -> JobSnapshot:
        """
        Get job by ID.

        Args:
            job_id: Job ID

        Returns:
            Job snapshot

        Raises:
            NotFoundException: If the job does not exist
        """
        try:
            with self.session_factory() as db:
                job = db.get(GenerationJob, job_id)
                if job is None:
                    raise NotFoundException(f"Job with ID '{job_id}' not found")
                return JobSnapshot.model_validate(job)
        except SQLAlchemyError as e:
            raise UpstreamCallException(f"Failed to load job {job_id}: {str(e)}") from e

    def list_user_jobs(self, user_id: str, limit: int = 10) -> List[JobSnapshot]:
        """
        List a user's most recent jobs, newest first.

        Args:
            user_id: Owner ID
            limit: Maximum number of jobs

        Returns:
            List of job snapshots
        """
        try:
            with self.session_factory() as db:
                jobs = (
                    db.query(GenerationJob)
                    .filter(GenerationJob.user_id == user_id)
                    .order_by(GenerationJob.created_at.desc())
                    .limit(limit)
                    .all()
                )
                return [JobSnapshot.model_validate(job) for job in jobs]
        except SQLAlchemyError as e:
            raise UpstreamCallException(f"Failed to list jobs: {str(e)}") from e

    def list_stale_jobs(self, older_than: datetime) -> List[JobSnapshot]:
        """
        List non-terminal jobs last updated at or before ``older_than``.

        Args:
            older_than: Naive UTC cutoff

        Returns:
            List of job snapshots
        """
        try:
            with self.session_factory() as db:
                jobs = (
                    db.query(GenerationJob)
                    .filter(GenerationJob.status.notin_(TERMINAL_STATUSES))
                    .filter(GenerationJob.updated_at <= older_than)
                    .all()
                )
                return [JobSnapshot.model_validate(job) for job in jobs]
        except SQLAlchemyError as e:
            raise UpstreamCallException(f"Failed to list stale jobs: {str(e)}") from e

    def advance(self, job_id: str, status: str, stage: str, progress: int) -> JobSnapshot:
        """
        Move a job forward to a non-terminal stage.

        Args:
            job_id: Job ID
            status: searching, generating or completing
            stage: Human-readable stage description
            progress: Progress percent (never lower than the current value)

        Returns:
            Updated job snapshot

        Raises:
            JobStateException: On terminal jobs, backward moves or lower progress
        """

        def apply(job: GenerationJob) -> None:
            if status not in STAGE_ORDER or status == "pending":
                raise JobStateException(f"Cannot advance job {job_id} to '{status}'")
            if STAGE_ORDER[status] < STAGE_ORDER[job.status]:
                raise JobStateException(
                    f"Job {job_id} cannot move back from '{job.status}' to '{status}'"
                )
            if not 0 <= progress <= 100 or progress < job.progress:
                raise JobStateException(
                    f"Job {job_id} progress cannot go from {job.progress} to {progress}"
                )
            job.status = status
            job.current_stage = stage
            job.progress = progress

        snapshot = self._write(job_id, apply)
        logger.info(f"Job {job_id} -> {status} ({progress}%)")
        return snapshot

    def complete(self, job_id: str, exam_id: str, stage: Optional[str] = None) -> JobSnapshot:
        """
        Mark a job completed with the exam it produced.

        Args:
            job_id: Job ID
            exam_id: ID of the committed exam
            stage: Final stage description

        Returns:
            Updated job snapshot

        Raises:
            JobStateException: If the job is not in the completing stage
        """

        def apply(job: GenerationJob) -> None:
            if not exam_id:
                raise JobStateException(f"Job {job_id} cannot complete without an exam")
            if job.status != "completing":
                raise JobStateException(
                    f"Job {job_id} cannot complete from status '{job.status}'"
                )
            job.status = "completed"
            job.current_stage = stage
            job.progress = 100
            job.exam_id = exam_id
            job.completed_at = utcnow()

        snapshot = self._write(job_id, apply)
        logger.info(f"Job {job_id} completed with exam {exam_id}")
        return snapshot

    def fail(self, job_id: str, error_message: str, stage: Optional[str] = None) -> JobSnapshot:
        """
        Mark a job failed. Progress is left where it was.

        Args:
            job_id: Job ID
            error_message: Non-empty, user-facing failure message
            stage: Final stage description

        Returns:
            Updated job snapshot

        Raises:
            JobStateException: If the job is already terminal or the message is empty
        """

        def apply(job: GenerationJob) -> None:
            if not error_message or not error_message.strip():
                raise JobStateException(f"Job {job_id} cannot fail without a message")
            job.status = "failed"
            job.current_stage = stage
            job.error_message = error_message.strip()
            job.completed_at = utcnow()

        snapshot = self._write(job_id, apply)
        logger.warning(f"Job {job_id} failed: {error_message}")
        return snapshot

    def subscribe(self, job_id: str, callback: JobCallback) -> Callable[[], None]:
        """
        Register a callback receiving the job snapshot after every write.

        Subscriptions for a job are dropped once it reaches a terminal state.

        Args:
            job_id: Job ID
            callback: Called with the updated JobSnapshot

        Returns:
            Function that removes the subscription
        """
        token = next(self._tokens)
        with self._write_lock:
            self._subscribers[job_id][token] = callback

        def unsubscribe() -> None:
            with self._write_lock:
                subscribers = self._subscribers.get(job_id)
                if subscribers is not None:
                    subscribers.pop(token, None)
                    if not subscribers:
                        self._subscribers.pop(job_id, None)

        return unsubscribe

    def subscriber_count(self, job_id: str) -> int:
        """Number of active subscriptions for a job."""
        with self._write_lock:
            return len(self._subscribers.get(job_id, {}))

    def _write(self, job_id: str, apply: Callable[[GenerationJob], None]) -> JobSnapshot:
        with self._write_lock:
            try:
                with self.session_factory() as db:
                    job = db.get(GenerationJob, job_id)
                    if job is None:
                        raise NotFoundException(f"Job with ID '{job_id}' not found")
                    if job.status in TERMINAL_STATUSES:
                        raise JobStateException(
                            f"Job {job_id} is already {job.status}",
                            details={"job_id": job_id, "status": job.status},
                        )
                    apply(job)
                    job.updated_at = utcnow()
                    db.commit()
                    snapshot = JobSnapshot.model_validate(job)
            except SQLAlchemyError as e:
                raise UpstreamCallException(
                    f"Failed to update job {job_id}: {str(e)}"
                ) from e

            self._notify(snapshot)
            return snapshot

    def _notify(self, snapshot: JobSnapshot) -> None:
        callbacks = list(self._subscribers.get(snapshot.id, {}).values())
        for callback in callbacks:
            try:
                callback(snapshot)
            except Exception:
                logger.exception(f"Subscriber callback failed for job {snapshot.id}")
        if snapshot.is_terminal:
            self._subscribers.pop(snapshot.id, None)

"""Plan usage limits for exam generation."""

import logging
import uuid
from typing import Dict, Optional, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.db.models import UsageRecord
from app.exceptions import UpstreamCallException, ValidationException
from app.utils.time_utils import billing_cycle, utcnow

logger = logging.getLogger(__name__)

TIER_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {"exams_per_month": 5, "questions_per_exam": 10},
    "pro": {"exams_per_month": 50, "questions_per_exam": 50},
}
DEFAULT_TIER = "free"


class UsageGate(Protocol):
    """Decides whether a user may start another generation."""

    def can_generate_exam(self, user_id: str, question_count: int) -> bool: ...

    def record_exam(self, user_id: str, question_count: int) -> None: ...


class UsageService:
    """Per-cycle usage counters with tier limits, stored in ``usage_tracking``."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def can_generate_exam(self, user_id: str, question_count: int) -> bool:
        """
        Check the current cycle's counters against the user's tier.

        Args:
            user_id: User ID
            question_count: Questions requested for the new exam

        Returns:
            True if the exam fits within the plan
        """
        try:
            with self.session_factory() as db:
                record = self._current_record(db, user_id)
                tier = self._resolve_tier(db, user_id, record)
                exams_generated = record.exams_generated if record else 0
        except SQLAlchemyError as e:
            raise UpstreamCallException(f"Failed to read usage: {str(e)}") from e

        limits = TIER_LIMITS.get(tier, TIER_LIMITS[DEFAULT_TIER])
        if exams_generated >= limits["exams_per_month"]:
            logger.info(
                f"User {user_id} reached {limits['exams_per_month']} exams this cycle ({tier})"
            )
            return False
        if question_count > limits["questions_per_exam"]:
            logger.info(
                f"User {user_id} requested {question_count} questions, "
                f"{tier} plan allows {limits['questions_per_exam']}"
            )
            return False
        return True

    def record_exam(self, user_id: str, question_count: int) -> None:
        """
        Count one generated exam and its questions in the current cycle.

        Args:
            user_id: User ID
            question_count: Questions in the generated exam
        """
        try:
            with self.session_factory() as db:
                record = self._get_or_create(db, user_id)
                record.exams_generated += 1
                record.questions_created += question_count
                record.updated_at = utcnow()
                db.commit()
        except SQLAlchemyError as e:
            raise UpstreamCallException(f"Failed to record usage: {str(e)}") from e

        logger.info(f"Recorded exam with {question_count} questions for user {user_id}")

    def set_tier(self, user_id: str, tier: str) -> None:
        """Set the plan applied to the user's current cycle."""
        if tier not in TIER_LIMITS:
            raise ValidationException(f"Unknown tier '{tier}'")
        try:
            with self.session_factory() as db:
                record = self._get_or_create(db, user_id)
                record.tier = tier
                record.updated_at = utcnow()
                db.commit()
        except SQLAlchemyError as e:
            raise UpstreamCallException(f"Failed to update tier: {str(e)}") from e

    def get_usage(self, user_id: str) -> Dict[str, object]:
        """Current cycle's counters and limits for a user."""
        try:
            with self.session_factory() as db:
                record = self._current_record(db, user_id)
                tier = self._resolve_tier(db, user_id, record)
        except SQLAlchemyError as e:
            raise UpstreamCallException(f"Failed to read usage: {str(e)}") from e

        return {
            "billing_cycle": billing_cycle(utcnow()),
            "tier": tier,
            "exams_generated": record.exams_generated if record else 0,
            "questions_created": record.questions_created if record else 0,
            "limits": dict(TIER_LIMITS[tier]),
        }

    def _current_record(self, db: Session, user_id: str) -> Optional[UsageRecord]:
        return (
            db.query(UsageRecord)
            .filter(
                UsageRecord.user_id == user_id,
                UsageRecord.billing_cycle == billing_cycle(utcnow()),
            )
            .first()
        )

    def _resolve_tier(
        self, db: Session, user_id: str, record: Optional[UsageRecord]
    ) -> str:
        """Tier of the current cycle, else of the most recent cycle, else the default."""
        if record is not None:
            return record.tier
        previous = (
            db.query(UsageRecord)
            .filter(UsageRecord.user_id == user_id)
            .order_by(UsageRecord.billing_cycle.desc())
            .first()
        )
        return previous.tier if previous else DEFAULT_TIER

    def _get_or_create(self, db: Session, user_id: str) -> UsageRecord:
        record = self._current_record(db, user_id)
        if record is not None:
            return record

        # Carry the plan over from the most recent cycle
        tier = self._resolve_tier(db, user_id, None)
        record = UsageRecord(
            id=f"usage_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            billing_cycle=billing_cycle(utcnow()),
            tier=tier,
            exams_generated=0,
            questions_created=0,
            updated_at=utcnow(),
        )
        db.add(record)
        try:
            db.flush()
        except IntegrityError:
            # Another writer created this cycle's row first
            db.rollback()
            record = self._current_record(db, user_id)
        return record

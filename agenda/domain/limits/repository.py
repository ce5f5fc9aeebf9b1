"""Limits repository - Violation records and monthly usage counters"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import ResourceUsage, ResourceViolation

logger = logging.getLogger(__name__)


class ViolationRepository:
    @staticmethod
    def create(db: Session, violation: dict) -> ResourceViolation:
        record = ResourceViolation(
            actor_id=str(violation["actor_id"]),
            type=violation["type"],
            severity=violation.get("severity", "high"),
            message=violation.get("message"),
            action=violation.get("action", "throttle"),
            details=violation.get("metadata"),
            resolved=False,
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def list_violations(db: Session, resolved: Optional[bool] = None, limit: int = 100) -> list[ResourceViolation]:
        query = db.query(ResourceViolation)
        if resolved is not None:
            query = query.filter(ResourceViolation.resolved.is_(resolved))
        return query.order_by(ResourceViolation.id.desc()).limit(limit).all()

    @staticmethod
    def resolve(db: Session, violation_id: int) -> Optional[ResourceViolation]:
        record = db.get(ResourceViolation, violation_id)
        if record:
            record.resolved = True
            db.commit()
            db.refresh(record)
        return record


class UsageRepository:
    @staticmethod
    def get_amount(db: Session, professional_id: int, resource_type: str, period_start: datetime) -> int:
        row = (
            db.query(ResourceUsage)
            .filter(
                ResourceUsage.professional_id == professional_id,
                ResourceUsage.resource_type == resource_type,
                ResourceUsage.period_start == period_start,
            )
            .first()
        )
        return row.amount if row else 0

    @staticmethod
    def increment(
        db: Session, professional_id: int, resource_type: str, period_start: datetime, amount: int
    ) -> None:
        filters = (
            ResourceUsage.professional_id == professional_id,
            ResourceUsage.resource_type == resource_type,
            ResourceUsage.period_start == period_start,
        )
        updated = (
            db.query(ResourceUsage)
            .filter(*filters)
            .update({ResourceUsage.amount: ResourceUsage.amount + amount}, synchronize_session=False)
        )
        if not updated:
            db.add(
                ResourceUsage(
                    professional_id=professional_id,
                    resource_type=resource_type,
                    period_start=period_start,
                    amount=amount,
                )
            )
        try:
            db.commit()
        except IntegrityError:
            # Another writer created the period row first
            db.rollback()
            db.query(ResourceUsage).filter(*filters).update(
                {ResourceUsage.amount: ResourceUsage.amount + amount}, synchronize_session=False
            )
            db.commit()


class DatabaseViolationSink:
    """Persists violation records; failures are logged and never raised"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def __call__(self, violation: dict) -> None:
        db = self.session_factory()
        try:
            ViolationRepository.create(db, violation)
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to record resource violation for {violation.get('actor_id')}: {e}")
        finally:
            db.close()

"""
Plan limits and monthly usage accounting per professional.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .domain.limits.repository import UsageRepository
from .domain.scheduling.time_windows import utcnow
from .errors import InvalidArgumentError, ResourceExhaustedError
from .models import Professional

logger = logging.getLogger(__name__)

UNLIMITED = -1

# Monthly limits per plan tier (-1 means unlimited)
PLAN_LIMITS = {
    "trial": {"apiCalls": 1000, "storage": 100, "bandwidth": 1},
    "professional": {"apiCalls": 10000, "storage": 1000, "bandwidth": 10},
    "enterprise": {"apiCalls": UNLIMITED, "storage": UNLIMITED, "bandwidth": UNLIMITED},
}
DEFAULT_PLAN = "trial"

RESOURCE_TYPES = frozenset(PLAN_LIMITS[DEFAULT_PLAN])


def get_plan_limits(plan: Optional[str]) -> dict:
    """Limits for a plan tier; unknown or missing plans get the trial limits"""
    return PLAN_LIMITS.get((plan or DEFAULT_PLAN).lower(), PLAN_LIMITS[DEFAULT_PLAN])


def get_plan_limit(plan: Optional[str], resource_type: str) -> int:
    if resource_type not in RESOURCE_TYPES:
        raise InvalidArgumentError(f"Unknown resource type: {resource_type}")
    return get_plan_limits(plan)[resource_type]


def current_period_start(now: datetime) -> datetime:
    """Usage is counted per calendar month (UTC)"""
    return datetime(now.year, now.month, 1)


def get_current_usage(db: Session, professional_id: int, resource_type: str, now: datetime) -> int:
    return UsageRepository.get_amount(db, professional_id, resource_type, current_period_start(now))


def record_usage(
    db: Session,
    professional_id: int,
    resource_type: str,
    amount: int = 1,
    now: Optional[datetime] = None,
) -> None:
    """Increment the professional's usage counter for the current month"""
    if resource_type not in RESOURCE_TYPES:
        raise InvalidArgumentError(f"Unknown resource type: {resource_type}")
    UsageRepository.increment(
        db, professional_id, resource_type, current_period_start(now or utcnow()), amount
    )


def check_plan_limits(
    db: Session,
    professional_id: int,
    resource_type: str,
    usage_provider: Callable[[Session, int, str, datetime], int] = get_current_usage,
    violation_sink: Optional[Callable[[dict], None]] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Reject with ResourceExhaustedError when the professional's plan quota for
    `resource_type` is used up.

    Any failure while working out the plan or the usage lets the request
    through: an internal error must not block legitimate traffic.
    """
    now = now or utcnow()
    try:
        professional = db.get(Professional, professional_id)
        plan = professional.plan if professional else DEFAULT_PLAN
        limit = get_plan_limit(plan, resource_type)
        if limit == UNLIMITED:
            return
        usage = usage_provider(db, professional_id, resource_type, now)
    except Exception as e:
        logger.error(f"❌ Plan limit check failed for professional {professional_id}, allowing: {e}")
        return

    if usage < limit:
        return

    logger.warning(
        f"🚫 Plan limit reached for professional {professional_id}: {resource_type} {usage}/{limit}"
    )
    if violation_sink:
        try:
            violation_sink(
                {
                    "actor_id": str(professional_id),
                    "type": "planLimit",
                    "severity": "medium",
                    "message": f"Plan limit exceeded for {resource_type}",
                    "action": "block",
                    "metadata": {
                        "resourceType": resource_type,
                        "currentUsage": usage,
                        "limit": limit,
                        "plan": plan,
                    },
                }
            )
        except Exception as e:
            logger.error(f"❌ Failed to record plan limit violation: {e}")
    raise ResourceExhaustedError(
        f"Plan limit exceeded for {resource_type}",
        details={"resourceType": resource_type, "currentUsage": usage, "limit": limit},
    )


def get_usage_stats(db: Session, professional: Professional, now: Optional[datetime] = None) -> dict:
    """Current month's usage against the plan for every resource type"""
    now = now or utcnow()
    limits = get_plan_limits(professional.plan)
    resources = {}
    for resource_type, limit in limits.items():
        used = get_current_usage(db, professional.id, resource_type, now)
        resources[resource_type] = {
            "used": used,
            "limit": None if limit == UNLIMITED else limit,
            "unlimited": limit == UNLIMITED,
            "remaining": None if limit == UNLIMITED else max(0, limit - used),
        }
    return {
        "plan": (professional.plan or DEFAULT_PLAN).lower(),
        "period_start": current_period_start(now),
        "resources": resources,
    }


def expire_trials(db: Session, now: Optional[datetime] = None) -> dict:
    """Mark ended trials as expired and report the ones ending within a day"""
    now = now or utcnow()
    ended = (
        db.query(Professional)
        .filter(
            Professional.subscription_status == "trialing",
            Professional.trial_ends_at.isnot(None),
            Professional.trial_ends_at <= now,
        )
        .all()
    )
    for professional in ended:
        professional.subscription_status = "expired"
        logger.info(f"⏰ Trial expired for professional {professional.id}")
    db.commit()

    ending_soon = (
        db.query(Professional)
        .filter(
            Professional.subscription_status == "trialing",
            Professional.trial_ends_at > now,
            Professional.trial_ends_at <= now + timedelta(days=1),
        )
        .count()
    )
    if ending_soon:
        logger.info(f"⚠️ {ending_soon} trials end within the next 24 hours")
    return {"expired": len(ended), "ending_soon": ending_soon}

"""Limits router - limiter statistics, violation records and plan usage"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ...database import get_db
from ...errors import NotFoundError
from ...models import Professional
from ...plan_limits import get_usage_stats
from ...rate_limiter import create_rate_limiter
from .repository import ViolationRepository
from .schemas import LimiterStats, ViolationResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Limits"])

rate_limit_admin = create_rate_limiter("admin", "admin")


@router.get("/rate-limits/stats", response_model=dict[str, LimiterStats])
async def get_rate_limit_stats(request: Request, _: None = Depends(rate_limit_admin)):
    """Key and active-window counts for every limiter instance"""
    limiters = getattr(request.app.state, "rate_limiters", None) or {}
    return {name: limiter.get_stats() for name, limiter in limiters.items()}


@router.get("/violations", response_model=list[ViolationResponse])
async def list_violations(
    resolved: Optional[bool] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_admin),
):
    return ViolationRepository.list_violations(db, resolved=resolved, limit=limit)


@router.post("/violations/{violation_id}/resolve", response_model=ViolationResponse)
async def resolve_violation(
    violation_id: int,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_admin),
):
    violation = ViolationRepository.resolve(db, violation_id)
    if not violation:
        raise NotFoundError("Violation not found")
    logger.info(f"✅ Violation {violation_id} marked resolved")
    return violation


@router.get("/professionals/{professional_id}/usage")
async def get_professional_usage(
    professional_id: int,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_admin),
):
    """Current month's usage against the professional's plan"""
    professional = db.get(Professional, professional_id)
    if not professional:
        raise NotFoundError(f"Professional {professional_id} not found")
    return get_usage_stats(db, professional)

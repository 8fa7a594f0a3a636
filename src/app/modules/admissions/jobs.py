"""
Admissions Background Jobs

Scheduled housekeeping:
1. Reap pending submissions past their OTP expiry (every 5 minutes).
   Redis expires keys itself; the reaper covers the in-memory store.
2. Mark edit requests expired once their edit window has lapsed (hourly).

Jobs are idempotent, open their own database sessions, and keep going when
a single item fails.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings
from app.core.database import async_session_maker
from app.core.scheduler import register_job
from app.modules.admissions import repository
from app.modules.admissions.pending_store import get_pending_store

logger = logging.getLogger(__name__)

JOB_ID_REAP_PENDING = "admissions_reap_pending_submissions"
JOB_ID_EXPIRE_EDIT_REQUESTS = "admissions_expire_edit_requests"


async def reap_pending_submissions() -> dict[str, Any]:
    """
    Delete pending submissions whose OTPs have expired.

    Returns:
        Dict with total_removed
    """
    store = await get_pending_store()
    removed = await store.reap_expired()
    if removed:
        logger.info(f"Reaped {removed} expired pending submission(s)")
    return {"total_removed": removed}


def _parse_created_at(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        created_at = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    return created_at


async def expire_edit_requests() -> dict[str, Any]:
    """
    Mark edit requests older than the edit window as expired.

    Returns:
        Dict with:
        - total_processed: Admissions marked expired
        - total_errors: Admissions that could not be updated
        - expired: List of admission ids marked expired
    """
    now = datetime.now(UTC)
    cutoff = now - timedelta(hours=settings.edit_grant_ttl_hours)
    results: dict[str, Any] = {
        "total_processed": 0,
        "total_errors": 0,
        "expired": [],
    }

    async with async_session_maker() as db:
        candidates = await repository.get_open_edit_requests(db)

    stale = [
        admission
        for admission in candidates
        if (created_at := _parse_created_at((admission.edit_request or {}).get("created_at")))
        and created_at < cutoff
    ]

    for admission in stale:
        try:
            async with async_session_maker() as db:
                if await repository.mark_edit_request_expired(db, admission.id, now):
                    results["total_processed"] += 1
                    results["expired"].append(str(admission.id))
        except Exception as e:
            logger.error(f"Failed to expire edit request for admission {admission.id}: {e}")
            results["total_errors"] += 1

    if results["total_processed"]:
        logger.info(f"Expired {results['total_processed']} edit request(s)")
    return results


def register_admission_jobs() -> None:
    """Register admissions jobs with the scheduler."""
    register_job(JOB_ID_REAP_PENDING, reap_pending_submissions, IntervalTrigger(minutes=5))
    register_job(JOB_ID_EXPIRE_EDIT_REQUESTS, expire_edit_requests, IntervalTrigger(hours=1))

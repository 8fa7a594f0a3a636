"""
Admissions Repository

Database operations for admission records. Business rules live in the
service, review and edit-window modules; this module only reads and writes,
enforcing the status state machine on every status change.

JSON groups are always replaced with new dict/list objects so SQLAlchemy
detects the change.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Admission, AdmissionStatus, EditRequestStatus

FORM_GROUPS = ("personal", "course", "education", "ids", "center", "uploads", "signatures")


def build_admission(admission_id: UUID, payload: dict[str, Any]) -> Admission:
    """Create an unsaved Admission from a normalized intake payload."""
    return Admission(
        id=admission_id,
        status=AdmissionStatus.PENDING,
        counselor_key=payload.get("counselor_key") or "c1",
        plan_type=payload.get("plan_type") or "job",
        personal=dict(payload.get("personal") or {}),
        course=dict(payload.get("course") or {}),
        education=list(payload.get("education") or []),
        ids=dict(payload.get("ids") or {}),
        center=dict(payload.get("center") or {}),
        uploads=dict(payload.get("uploads") or {}),
        signatures=dict(payload.get("signatures") or {}),
        tc=dict(payload.get("tc") or {}),
        fees=None,
        edit_request=None,
    )


async def create(db: AsyncSession, admission: Admission) -> Admission:
    """Persist a new admission."""
    db.add(admission)
    await db.commit()
    await db.refresh(admission)
    return admission


async def get_by_id(db: AsyncSession, id: UUID) -> Admission | None:
    """Get admission by ID."""
    return await db.get(Admission, id)


async def get_for_update(db: AsyncSession, id: UUID) -> Admission | None:
    """Get admission by ID with a row lock held until commit."""
    result = await db.execute(select(Admission).where(Admission.id == id).with_for_update())
    return result.scalar_one_or_none()


# Valid status transitions
# Re-approval is allowed; rejection is terminal
VALID_STATUS_TRANSITIONS: dict[AdmissionStatus, set[AdmissionStatus]] = {
    AdmissionStatus.PENDING: {
        AdmissionStatus.PENDING,  # Edited after a correction request
        AdmissionStatus.APPROVED,
        AdmissionStatus.REJECTED,
    },
    AdmissionStatus.APPROVED: {
        AdmissionStatus.APPROVED,  # Re-approval regenerates and resends
    },
    AdmissionStatus.REJECTED: set(),
}


class InvalidStatusTransitionError(ValueError):
    """Raised when an invalid status transition is attempted."""

    def __init__(self, current_status: AdmissionStatus, new_status: AdmissionStatus):
        self.current_status = current_status
        self.new_status = new_status
        valid_transitions = VALID_STATUS_TRANSITIONS.get(current_status, set())
        super().__init__(
            f"Invalid status transition: {current_status.value} -> {new_status.value}. "
            f"Valid transitions: {sorted(s.value for s in valid_transitions)}"
        )


def check_transition(admission: Admission, new_status: AdmissionStatus) -> None:
    """
    Raises:
        InvalidStatusTransitionError: If the state machine forbids the change
    """
    current_status = AdmissionStatus(admission.status)
    if new_status not in VALID_STATUS_TRANSITIONS.get(current_status, set()):
        raise InvalidStatusTransitionError(current_status, new_status)


async def set_pdf_refs(
    db: AsyncSession,
    admission: Admission,
    student_pdf_url: str | None,
    counselor_pdf_url: str | None,
) -> Admission:
    """Point the record at freshly generated pending PDFs."""
    if student_pdf_url:
        admission.pending_student_pdf_url = student_pdf_url
    if counselor_pdf_url:
        admission.pending_counselor_pdf_url = counselor_pdf_url

    await db.commit()
    await db.refresh(admission)
    return admission


async def set_edit_request(
    db: AsyncSession,
    admission: Admission,
    edit_request: dict[str, Any],
) -> Admission:
    admission.edit_request = dict(edit_request)

    await db.commit()
    await db.refresh(admission)
    return admission


async def apply_edit(
    db: AsyncSession,
    admission: Admission,
    changes: dict[str, Any],
    resolved_at: datetime,
) -> Admission:
    """
    Write merged section values, return the record to pending and mark the
    edit request completed. Any earlier submission to admin is withdrawn so
    the counselor has to review the edited record and resubmit fees.

    Args:
        changes: Section name -> complete new value for that section

    Raises:
        InvalidStatusTransitionError: If the record can no longer be edited
    """
    check_transition(admission, AdmissionStatus.PENDING)

    for group, value in changes.items():
        if group not in FORM_GROUPS:
            continue
        setattr(admission, group, list(value) if isinstance(value, list) else dict(value))

    if "course" in changes:
        admission.plan_type = "training" if (admission.course or {}).get("training_only") else "job"

    admission.status = AdmissionStatus.PENDING
    admission.counselor_submitted_to_admin_at = None
    admission.counselor_submitted_by = None
    edit_request = dict(admission.edit_request or {})
    edit_request["status"] = EditRequestStatus.COMPLETED.value
    edit_request["resolved_at"] = resolved_at.isoformat()
    admission.edit_request = edit_request

    await db.commit()
    await db.refresh(admission)
    return admission


async def record_fee_submission(
    db: AsyncSession,
    admission: Admission,
    fees: dict[str, Any],
    submitted_at: datetime,
    submitted_by: str | None = None,
) -> Admission:
    """Store counselor-submitted fees. Status stays pending."""
    admission.fees = {**(admission.fees or {}), **fees}
    admission.counselor_submitted_to_admin_at = submitted_at
    admission.counselor_submitted_by = submitted_by

    await db.commit()
    await db.refresh(admission)
    return admission


async def mark_approved(
    db: AsyncSession,
    admission: Admission,
    approved_pdf_url: str,
    approved_at: datetime,
    approved_by: str | None = None,
    fees: dict[str, Any] | None = None,
) -> Admission:
    """
    Raises:
        InvalidStatusTransitionError: If the record was rejected
    """
    check_transition(admission, AdmissionStatus.APPROVED)

    admission.status = AdmissionStatus.APPROVED
    admission.approved_pdf_url = approved_pdf_url
    admission.admin_approved_at = approved_at
    admission.admin_approved_by = approved_by
    if fees is not None:
        admission.fees = dict(fees)

    await db.commit()
    await db.refresh(admission)
    return admission


async def get_open_edit_requests(db: AsyncSession) -> list[Admission]:
    """Pending admissions whose last correction request is still awaiting the student."""
    result = await db.execute(
        select(Admission).where(
            Admission.status == AdmissionStatus.PENDING,
            Admission.edit_request["status"].as_string() == EditRequestStatus.PENDING.value,
        )
    )
    return list(result.scalars().all())


async def mark_edit_request_expired(db: AsyncSession, id: UUID, expired_at: datetime) -> bool:
    """Mark a pending edit request as expired. Returns False if nothing changed."""
    admission = await get_for_update(db, id)
    if admission is None:
        return False

    edit_request = dict(admission.edit_request or {})
    if edit_request.get("status") != EditRequestStatus.PENDING.value:
        return False

    edit_request["status"] = EditRequestStatus.EXPIRED.value
    edit_request["resolved_at"] = expired_at.isoformat()
    admission.edit_request = edit_request

    await db.commit()
    return True

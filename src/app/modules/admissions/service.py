"""
Admissions Service Layer

Entry points used by the routers. Orchestrates intake, OTP verification,
edit windows and review decisions.

This module implements:
1. Intake Flow:
   - Parse and validate the draft (required fields, terms, signatures, photo)
   - Upload photo / PAN / Aadhaar and both signatures to storage
   - Normalize the draft (trimmed strings, T&C snapshot, plan type,
     counselor routing) and open a pending submission with two OTPs

2. Verification Flow:
   - Mobile OTP, then email OTP
   - The email OTP finalizes the submission exactly once

3. Edit Flow:
   - Edit-data prefill and apply-edit, both authorized by the edit grant

4. Review Flow:
   - Correction requests, submit to admin and approval

Every operation that mutates an existing admission runs under the
per-admission lock; a lock timeout surfaces as AdmissionBusyError.
"""

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.locks import LockNotAcquiredError, admission_lock
from app.modules.admissions import repository, review
from app.modules.admissions.edit_window import get_edit_window_manager
from app.modules.admissions.exceptions import (
    AdmissionBusyError,
    AdmissionNotFoundError,
    ValidationFailedError,
)
from app.modules.admissions.finalizer import finalize_submission
from app.modules.admissions.helpers import counselor_key_from_center, normalize_counselor_key
from app.modules.admissions.models import Admission
from app.modules.admissions.pending_store import get_pending_store
from app.modules.admissions.schemas import (
    AdmissionDraftPayload,
    EditDataResponse,
    EditGrant,
    InitResponse,
    ReviewView,
    UploadedDocument,
    VerifyRequest,
    VerifyResponse,
)
from app.modules.admissions.uploads import (
    data_url,
    is_image_data_url,
    store_signature,
    store_upload,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _locked(admission_id: UUID) -> AsyncIterator[None]:
    try:
        async with admission_lock(admission_id):
            yield
    except LockNotAcquiredError as e:
        logger.warning(f"Admission {admission_id} is locked by another request")
        raise AdmissionBusyError() from e


# ============================================
# Intake
# ============================================


def parse_draft(payload_json: str) -> AdmissionDraftPayload:
    """
    Raises:
        ValidationFailedError: If the payload is not valid JSON for the form
    """
    try:
        return AdmissionDraftPayload.model_validate_json(payload_json or "{}")
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationFailedError(
            f"Invalid form data{f' at {location}' if location else ''}: {first.get('msg', 'invalid')}"
        ) from e


def validate_draft(
    draft: AdmissionDraftPayload,
    photo: UploadedDocument | None,
    student_sign_data_url: str | None,
    parent_sign_data_url: str | None,
) -> None:
    """
    Check every field the admission cannot be created without.

    Raises:
        ValidationFailedError: Naming the first missing requirement
    """
    if not draft.personal.full_name:
        raise ValidationFailedError("Full name is required")
    if not draft.personal.student_mobile:
        raise ValidationFailedError("Student mobile number is required")
    if not draft.personal.email:
        raise ValidationFailedError("Email is required")
    if not (draft.course.name or draft.course.training_only_course):
        raise ValidationFailedError("Course is required")
    if draft.terms_accepted is not True:
        raise ValidationFailedError("Terms & Conditions must be accepted")

    first_row = draft.education[0] if draft.education else None
    if first_row is None or not first_row.qualification or not first_row.school:
        raise ValidationFailedError("10th / SSC education details are required")

    if photo is None or not photo.content:
        raise ValidationFailedError("Photo is required")
    if not is_image_data_url(student_sign_data_url):
        raise ValidationFailedError("Student signature is required")
    if not is_image_data_url(parent_sign_data_url):
        raise ValidationFailedError("Parent / Guardian signature is required")


def resolve_counselor_key(draft: AdmissionDraftPayload, hint: str | None) -> str:
    explicit = hint or draft.counselor_key or draft.meta.get("counselor_key")
    if explicit:
        return normalize_counselor_key(explicit)
    return counselor_key_from_center(draft.center.place_of_admission) or "c1"


async def build_intake_payload(
    draft: AdmissionDraftPayload,
    photo: UploadedDocument,
    pan: UploadedDocument | None,
    aadhaar: UploadedDocument | None,
    student_sign_data_url: str,
    parent_sign_data_url: str,
    counselor_hint: str | None = None,
) -> dict[str, Any]:
    """Upload the files and assemble the normalized payload stored until verification."""
    uploads: dict[str, Any] = {
        "photo_url": await store_upload("photo", photo),
        "photo_data_url": data_url(photo),
    }
    for name, document in (("pan", pan), ("aadhaar", aadhaar)):
        if document is not None and document.content:
            uploads[f"{name}_url"] = await store_upload(name, document)
            uploads[f"{name}_data_url"] = data_url(document)

    signatures = {role: info.model_dump() for role, info in draft.signatures.items()}
    student_name = draft.signatures.get("student")
    parent_name = draft.signatures.get("parent")
    signatures["student"] = {
        "full_name": (student_name.full_name if student_name else "") or draft.personal.full_name,
        "sign_url": await store_signature("student", student_sign_data_url),
        "sign_data_url": student_sign_data_url,
    }
    signatures["parent"] = {
        "full_name": (parent_name.full_name if parent_name else "") or draft.personal.guardian_name,
        "sign_url": await store_signature("parent", parent_sign_data_url),
        "sign_data_url": parent_sign_data_url,
    }

    training_only = draft.course.training_only
    return {
        "personal": draft.personal.model_dump(),
        "course": draft.course.model_dump(),
        "education": [row.model_dump() for row in draft.education],
        "ids": draft.ids.model_dump(),
        "center": draft.center.model_dump(),
        "uploads": uploads,
        "signatures": signatures,
        "tc": {
            "accepted": True,
            "version": draft.tc_version or settings.tc_default_version,
            "text": draft.tc_text,
            "type": "training-only" if training_only else "job-guarantee",
        },
        "plan_type": "training" if training_only else "job",
        "counselor_key": resolve_counselor_key(draft, counselor_hint),
    }


async def init_admission(
    payload_json: str,
    photo: UploadedDocument | None,
    pan: UploadedDocument | None,
    aadhaar: UploadedDocument | None,
    student_sign_data_url: str | None,
    parent_sign_data_url: str | None,
    counselor_hint: str | None = None,
) -> InitResponse:
    """
    Validate a submitted form and send the two OTPs.

    Raises:
        ValidationFailedError: If required data is missing
        UploadFailedError: If a file could not be stored
    """
    draft = parse_draft(payload_json)
    validate_draft(draft, photo, student_sign_data_url, parent_sign_data_url)

    payload = await build_intake_payload(
        draft,
        photo,
        pan,
        aadhaar,
        student_sign_data_url,
        parent_sign_data_url,
        counselor_hint,
    )

    store = await get_pending_store()
    entry = await store.create(
        payload,
        mobile=draft.personal.student_mobile,
        email=draft.personal.email,
        student_name=draft.personal.full_name,
    )
    logger.info(f"Admission intake received for course {payload['course'].get('name')!r}: {entry.id}")

    return InitResponse(
        pending_id=entry.id,
        message="OTP sent to your mobile and email. Verify your mobile number first.",
    )


async def verify_submission(db: AsyncSession, data: VerifyRequest) -> VerifyResponse:
    """Verify one OTP channel; the email channel finalizes the submission."""
    store = await get_pending_store()

    async def _finalize(entry):
        return await finalize_submission(db, entry)

    return await store.verify(data.pending_id, data.otp, data.channel, finalize=_finalize)


# ============================================
# Edit windows
# ============================================


async def get_edit_data(db: AsyncSession, admission_id: UUID) -> EditDataResponse:
    edit_windows = await get_edit_window_manager()
    return await edit_windows.fetch_for_edit(db, admission_id)


async def apply_edit(db: AsyncSession, admission_id: UUID, updated: dict[str, Any]) -> Admission:
    edit_windows = await get_edit_window_manager()
    async with _locked(admission_id):
        return await edit_windows.apply_edit(db, admission_id, updated)


# ============================================
# Review
# ============================================


async def get_admission(db: AsyncSession, admission_id: UUID) -> Admission:
    admission = await repository.get_by_id(db, admission_id)
    if admission is None:
        raise AdmissionNotFoundError(admission_id)
    return admission


async def get_review_view(db: AsyncSession, admission_id: UUID) -> ReviewView:
    return review.build_review_view(await get_admission(db, admission_id))


async def request_edit(db: AsyncSession, admission_id: UUID, form: Mapping[str, Any]) -> EditGrant:
    decision = review.parse_review_form(form)
    edit_windows = await get_edit_window_manager()
    async with _locked(admission_id):
        return await review.request_edit(db, admission_id, decision, edit_windows)


async def request_edit_to_counselor(
    db: AsyncSession, admission_id: UUID, form: Mapping[str, Any]
) -> Admission:
    decision = review.parse_review_form(form)
    async with _locked(admission_id):
        return await review.request_edit_to_counselor(db, admission_id, decision)


async def submit_to_admin(
    db: AsyncSession,
    admission_id: UUID,
    fee_amount: Any,
    fee_mode: Any,
    submitted_by: str | None = None,
) -> Admission:
    async with _locked(admission_id):
        return await review.submit_to_admin(db, admission_id, fee_amount, fee_mode, submitted_by)


async def approve(
    db: AsyncSession,
    admission_id: UUID,
    fee_amount: Any = None,
    fee_mode: Any = None,
    approved_by: str | None = None,
) -> Admission:
    async with _locked(admission_id):
        return await review.approve(db, admission_id, fee_amount, fee_mode, approved_by)

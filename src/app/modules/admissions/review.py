"""
Review Workflow

Counselor and admin decisions on an admission.

1. Correction requests:
   - The review form marks fields "ok" or "fix" and ticks sections
   - request_edit() opens a student edit window and emails the edit link
   - request_edit_to_counselor() sends the admin's flags back to the
     counselor without opening a student window

2. Submit to admin:
   - The counselor records the registration fee and payment mode
   - The admins receive the fee summary and a fresh PDF

3. Approval:
   - Only after the counselor has submitted fees
   - Renders the approved PDF first; the record is untouched if that fails
   - Updates the sheet row and emails the student

Callers hold the admission lock around every function here that mutates.
"""

import logging
import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core import sheets
from app.core.config import settings
from app.core.email import (
    EmailAttachment,
    send_admin_approval_request,
    send_admission_approved,
    send_counselor_edit_requested_by_admin,
    send_edit_required,
)
from app.core.pdf import PdfVariant
from app.modules.admissions import repository
from app.modules.admissions.artifacts import PDF_CONTENT_TYPE, render_and_store, render_pdf
from app.modules.admissions.edit_window import EditWindowManager
from app.modules.admissions.exceptions import (
    AdmissionNotFoundError,
    FeeSubmissionRequiredError,
    InvalidAdmissionStateError,
    InvalidFeeError,
    InvalidPaymentModeError,
    ValidationFailedError,
)
from app.modules.admissions.helpers import (
    admin_review_url,
    admission_to_document,
    counselor_emails,
    edit_link,
    review_url,
)
from app.modules.admissions.models import (
    Admission,
    AdmissionStatus,
    EditRequestStatus,
    PaymentMode,
)
from app.modules.admissions.repository import InvalidStatusTransitionError
from app.modules.admissions.schemas import (
    EditGrant,
    ReviewDecision,
    ReviewField,
    ReviewSection,
    ReviewView,
)
from app.modules.admissions.sections import (
    Section,
    field_spec,
    parse_section,
    section_for_key,
    validate_field_keys,
)

logger = logging.getLogger(__name__)

FIX = "fix"

_EDUCATION_COLUMNS = (
    ("q", "qualification", "Qualification"),
    ("s", "school", "School / College"),
    ("y", "year", "Year"),
    ("p", "percentage", "Percentage"),
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _getlist(form: Mapping[str, Any], key: str) -> list[Any]:
    if hasattr(form, "getlist"):
        return list(form.getlist(key))
    value = form.get(key)
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def parse_review_form(form: Mapping[str, Any]) -> ReviewDecision:
    """
    Parse a review form into a decision.

    `sections` may be repeated or comma separated. Every key whose value is
    "fix" is a field flag and also flags its section.

    Raises:
        ValidationFailedError: If a section name is unknown
        InvalidFieldKeyError: If a flagged key is not a known field key
    """
    sections: list[Section] = []
    for value in _getlist(form, "sections"):
        for part in str(value).split(","):
            if not part.strip():
                continue
            section = parse_section(part)
            if section is None:
                raise ValidationFailedError(f"Unknown section: {part.strip()}")
            if section not in sections:
                sections.append(section)

    flagged = [
        key
        for key, value in form.items()
        if key not in ("sections", "notes") and str(value).strip().lower() == FIX
    ]
    fields = validate_field_keys(flagged)

    for key in fields:
        section = section_for_key(key)
        if section is not None and section not in sections:
            sections.append(section)

    notes = str(form.get("notes") or "").strip()
    return ReviewDecision(sections=sections, fields=fields, notes=notes)


def parse_fee_amount(value: Any) -> float:
    """
    Raises:
        InvalidFeeError: If the amount is not a finite number >= 0
    """
    try:
        amount = float(str(value).strip())
    except (TypeError, ValueError) as e:
        raise InvalidFeeError() from e
    if not math.isfinite(amount) or amount < 0:
        raise InvalidFeeError()
    return amount


def parse_payment_mode(value: Any) -> PaymentMode:
    """
    Raises:
        InvalidPaymentModeError: If the mode is not cash or online
    """
    try:
        return PaymentMode(str(value or "").strip().lower())
    except ValueError as e:
        raise InvalidPaymentModeError() from e


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def has_fee_submission(admission: Admission) -> bool:
    fees = admission.fees or {}
    return (
        fees.get("amount") is not None
        and bool(fees.get("payment_mode"))
        and admission.counselor_submitted_to_admin_at is not None
    )


async def _get_locked(db: AsyncSession, admission_id: UUID) -> Admission:
    admission = await repository.get_for_update(db, admission_id)
    if admission is None:
        raise AdmissionNotFoundError(admission_id)
    return admission


def _require_pending(admission: Admission, action: str) -> None:
    if AdmissionStatus(admission.status) != AdmissionStatus.PENDING:
        raise InvalidAdmissionStateError(
            f"Cannot {action}: admission is {AdmissionStatus(admission.status).value}"
        )


def _flag_labels(decision: ReviewDecision) -> list[str]:
    labels = []
    for key in decision.fields:
        spec = field_spec(key)
        labels.append(spec.label if spec else key)
    flagged_sections = {section_for_key(key) for key in decision.fields}
    for section in decision.sections:
        if section not in flagged_sections:
            labels.append(f"{section.spec.label} (entire section)")
    return labels


async def request_edit(
    db: AsyncSession,
    admission_id: UUID,
    decision: ReviewDecision,
    edit_windows: EditWindowManager,
) -> EditGrant:
    """
    Open a student edit window for the flagged sections and fields.

    Raises:
        AdmissionNotFoundError: If the admission does not exist
        InvalidAdmissionStateError: If the admission is not pending
        ValidationFailedError: If no section was selected
    """
    admission = await _get_locked(db, admission_id)
    _require_pending(admission, "request an edit")

    if not decision.sections:
        raise ValidationFailedError("Select at least one section or field to edit")

    sections = [section.value for section in decision.sections]
    grant = await edit_windows.grant(db, admission, sections, decision.fields, decision.notes)

    if admission.student_email:
        await send_edit_required(
            to_email=admission.student_email,
            student_name=admission.student_name,
            edit_link=edit_link(admission, grant.sections, grant.fields),
            notes=decision.notes,
            expires_in_hours=edit_windows.ttl_hours,
        )
    else:
        logger.warning(f"Admission {admission.id} has no student email - edit link not sent")

    return grant


async def request_edit_to_counselor(
    db: AsyncSession,
    admission_id: UUID,
    decision: ReviewDecision,
) -> Admission:
    """
    Send the admin's flags back to the counselor. No student window is opened.

    Raises:
        AdmissionNotFoundError: If the admission does not exist
        InvalidAdmissionStateError: If the admission is not pending
        ValidationFailedError: If nothing was flagged and no notes were given
    """
    admission = await _get_locked(db, admission_id)
    _require_pending(admission, "request changes")

    if not decision.sections and not decision.notes:
        raise ValidationFailedError("Flag at least one field or add notes for the counselor")

    admission = await repository.set_edit_request(
        db,
        admission,
        {
            "sections": [section.value for section in decision.sections],
            "fields": decision.fields,
            "notes": decision.notes,
            "status": EditRequestStatus.ADMIN_REQUESTED.value,
            "created_at": _utcnow().isoformat(),
            "resolved_at": None,
        },
    )
    logger.info(f"Admin requested counselor changes on admission {admission.id}")

    recipients = counselor_emails(admission.counselor_key)
    if recipients:
        await send_counselor_edit_requested_by_admin(
            to_emails=recipients,
            student_name=admission.student_name,
            course_name=admission.course_name,
            flagged=_flag_labels(decision),
            notes=decision.notes,
            review_url=review_url(admission.id),
        )
    else:
        logger.warning(f"No counselor emails configured for {admission.counselor_key}")

    return admission


async def submit_to_admin(
    db: AsyncSession,
    admission_id: UUID,
    fee_amount: Any,
    fee_mode: Any,
    submitted_by: str | None = None,
) -> Admission:
    """
    Record the counselor's fee submission and ask the admins to approve.

    Raises:
        InvalidFeeError: If the amount is invalid
        InvalidPaymentModeError: If the mode is not cash or online
        AdmissionNotFoundError: If the admission does not exist
        InvalidAdmissionStateError: If the admission is not pending
    """
    amount = parse_fee_amount(fee_amount)
    mode = parse_payment_mode(fee_mode)

    admission = await _get_locked(db, admission_id)
    _require_pending(admission, "submit to admin")

    admission = await repository.record_fee_submission(
        db,
        admission,
        {"amount": amount, "payment_mode": mode.value},
        submitted_at=_utcnow(),
        submitted_by=(submitted_by or "").strip() or None,
    )
    logger.info(f"Admission {admission.id} submitted to admin: fee={amount:g} mode={mode.value}")

    document = admission_to_document(admission)
    try:
        await sheets.update_admission_row(document)
    except Exception as e:
        logger.error(f"Sheet row update failed for admission {admission.id}: {e}")

    attachment = None
    try:
        content = await render_pdf(document, PdfVariant.COUNSELOR)
        attachment = EmailAttachment(
            filename="admission-counselor.pdf",
            content=content,
            content_type=PDF_CONTENT_TYPE,
        )
    except Exception as e:
        logger.error(f"Could not render admin PDF for admission {admission.id}, sending link only: {e}")

    recipients = settings.admin_emails_list
    if recipients:
        await send_admin_approval_request(
            to_emails=recipients,
            student_name=admission.student_name,
            course_name=admission.course_name,
            center=admission.center_name,
            fee_amount=amount,
            fee_mode=mode.value,
            review_url=admin_review_url(admission.id),
            pdf_url=admission.current_pdf_url,
            attachment=attachment,
        )
    else:
        logger.warning("ADMIN_EMAILS not configured - approval request not sent")

    return admission


async def approve(
    db: AsyncSession,
    admission_id: UUID,
    fee_amount: Any = None,
    fee_mode: Any = None,
    approved_by: str | None = None,
) -> Admission:
    """
    Approve an admission, optionally overriding the submitted fee.

    Raises:
        AdmissionNotFoundError: If the admission does not exist
        InvalidAdmissionStateError: If the admission was rejected
        FeeSubmissionRequiredError: If fees were never submitted to admin
        InvalidFeeError / InvalidPaymentModeError: If an override is invalid
        ArtifactGenerationFailedError: If the approved PDF cannot be produced
    """
    admission = await _get_locked(db, admission_id)
    try:
        repository.check_transition(admission, AdmissionStatus.APPROVED)
    except InvalidStatusTransitionError as e:
        raise InvalidAdmissionStateError(str(e)) from e

    if not has_fee_submission(admission):
        raise FeeSubmissionRequiredError()

    fees = dict(admission.fees or {})
    if not _is_blank(fee_amount):
        fees["amount"] = parse_fee_amount(fee_amount)
    if not _is_blank(fee_mode):
        fees["payment_mode"] = parse_payment_mode(fee_mode).value

    approved_at = _utcnow()
    document = admission_to_document(admission)
    document["status"] = AdmissionStatus.APPROVED.value
    document["fees"] = fees
    document["workflow"]["admin_approved_at"] = approved_at.isoformat()

    rendered = await render_and_store(admission.id, document, PdfVariant.APPROVED)

    admission = await repository.mark_approved(
        db,
        admission,
        approved_pdf_url=rendered.url,
        approved_at=approved_at,
        approved_by=(approved_by or "").strip() or None,
        fees=fees,
    )
    logger.info(f"Admission {admission.id} approved")

    try:
        await sheets.update_admission_row(admission_to_document(admission))
        await sheets.set_admission_status(
            admission.counselor_key,
            str(admission.id),
            AdmissionStatus.APPROVED.value,
            approved_pdf_url=rendered.url,
        )
    except Exception as e:
        logger.error(f"Sheet status update failed for admission {admission.id}: {e}")

    if admission.student_email:
        await send_admission_approved(
            to_email=admission.student_email,
            student_name=admission.student_name,
            course_name=admission.course_name,
            pdf_url=rendered.url,
            attachment=EmailAttachment(
                filename=rendered.filename,
                content=rendered.content,
                content_type=PDF_CONTENT_TYPE,
            ),
        )

    return admission


def _display(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value)


def _section_fields(admission: Admission, section: Section, flagged: set[str]) -> list[ReviewField]:
    if section is Section.EDUCATION:
        fields = []
        for row_index, row in enumerate(admission.education or []):
            for code, attribute, label in _EDUCATION_COLUMNS:
                key = f"ed_{code}_{row_index}"
                fields.append(
                    ReviewField(
                        key=key,
                        label=f"{label} (row {row_index + 1})",
                        value=_display((row or {}).get(attribute)),
                        flagged=key in flagged,
                    )
                )
        return fields

    values = getattr(admission, section.value) or {}
    fields = []
    for spec in section.spec.fields:
        parts = []
        for attribute in spec.attributes:
            value = values.get(attribute)
            if section is Section.SIGNATURES and isinstance(value, dict):
                value = value.get("full_name")
            if attribute.endswith("_data_url"):
                continue
            if value not in (None, ""):
                parts.append(_display(value))
        fields.append(
            ReviewField(
                key=spec.key,
                label=spec.label,
                value=" ".join(parts),
                flagged=spec.key in flagged,
            )
        )
    return fields


def build_review_view(admission: Admission) -> ReviewView:
    """Project an admission into what the review pages display."""
    edit_request = admission.edit_request or {}
    flagged_fields = list(edit_request.get("fields") or [])
    flagged_sections = set(edit_request.get("sections") or [])
    flagged = set(flagged_fields)

    sections = [
        ReviewSection(
            section=section,
            label=section.spec.label,
            field_level=section.supports_field_level,
            flagged=section.value in flagged_sections,
            fields=_section_fields(admission, section, flagged),
        )
        for section in Section
    ]

    return ReviewView(
        admission_id=admission.id,
        status=AdmissionStatus(admission.status).value,
        counselor_key=admission.counselor_key,
        student_name=admission.student_name,
        course_name=admission.course_name,
        center=admission.center_name,
        pdf_url=admission.current_pdf_url,
        photo_url=(admission.uploads or {}).get("photo_url"),
        sections=sections,
        flagged_fields=flagged_fields,
        notes=edit_request.get("notes") or "",
        edit_status=edit_request.get("status") or "",
        fees=dict(admission.fees or {}),
        submitted_to_admin_at=admission.counselor_submitted_to_admin_at,
        approved_at=admission.admin_approved_at,
    )

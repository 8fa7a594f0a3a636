"""
Edit Windows

A counselor's correction request grants the student a single-use window to
change specific sections and fields. The grant lives in the key-value store
with a TTL; its existence is the only authorization for the edit-data and
apply-edit endpoints.

Merge rules for apply_edit:
- Sections not in the grant are ignored
- education is replaced as a whole list
- Field-level sections with flagged fields only take the attributes of
  those fields; otherwise a granted section is shallow-merged
- Every merged section is re-validated against its form schema and
  required values (name, email, mobile, photo, both signatures) cannot
  be blanked out
- A replaced signature image is uploaded again before the record is written
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.email import send_counselor_review_request
from app.core.kv import KeyValueStore, get_kv_store
from app.modules.admissions import repository
from app.modules.admissions.artifacts import regenerate
from app.modules.admissions.exceptions import (
    AdmissionNotFoundError,
    InvalidAdmissionStateError,
    NoActiveGrantError,
    ValidationFailedError,
)
from app.modules.admissions.helpers import admission_to_document, counselor_emails, review_url
from app.modules.admissions.models import Admission, AdmissionStatus, EditRequestStatus
from app.modules.admissions.repository import InvalidStatusTransitionError
from app.modules.admissions.schemas import (
    CenterInfo,
    CourseInfo,
    EditDataResponse,
    EditGrant,
    EducationRow,
    IdsInfo,
    PersonalInfo,
    SignatureInfo,
    UploadsInfo,
)
from app.modules.admissions.sections import Section, editable_attributes, parse_section
from app.modules.admissions.uploads import is_image_data_url, store_signature

logger = logging.getLogger(__name__)

EDIT_GRANT_PREFIX = "edit_grant:"
SIGNATURE_ROLES = ("student", "parent")

_SECTION_MODELS: dict[Section, type[BaseModel]] = {
    Section.PERSONAL: PersonalInfo,
    Section.COURSE: CourseInfo,
    Section.IDS: IdsInfo,
    Section.CENTER: CenterInfo,
    Section.UPLOADS: UploadsInfo,
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _key(admission_id: UUID | str) -> str:
    return f"{EDIT_GRANT_PREFIX}{admission_id}"


def _invalid(section: Section, error: ValidationError) -> ValidationFailedError:
    first = error.errors()[0] if error.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    return ValidationFailedError(
        f"Invalid {section.spec.label}{f' at {location}' if location else ''}: "
        f"{first.get('msg', 'invalid')}"
    )


def _merge_education(incoming: Any) -> list[dict[str, Any]]:
    if not isinstance(incoming, list):
        raise ValidationFailedError("Education must be a list of rows")
    try:
        return [EducationRow.model_validate(row).model_dump() for row in incoming]
    except ValidationError as e:
        raise _invalid(Section.EDUCATION, e) from e


def _merge_attributes(
    section: Section,
    current: dict[str, Any],
    incoming: dict[str, Any],
    allowed: set[str] | None,
) -> dict[str, Any]:
    model = _SECTION_MODELS[section]
    merged = dict(current)
    for attribute, value in incoming.items():
        if attribute not in model.model_fields:
            continue
        if allowed is not None and attribute not in allowed:
            continue
        merged[attribute] = value

    try:
        validated = model.model_validate({k: v for k, v in merged.items() if k in model.model_fields})
    except ValidationError as e:
        raise _invalid(section, e) from e
    return {**merged, **validated.model_dump()}


def _merge_signatures(
    current: dict[str, Any],
    incoming: dict[str, Any],
    allowed: set[str] | None,
) -> dict[str, Any]:
    """
    A replaced signature image loses its stored `sign_url`; apply_edit
    uploads the new image before the record is written.
    """
    merged = {role: dict(value) for role, value in current.items() if isinstance(value, dict)}
    for role, value in incoming.items():
        if role not in SIGNATURE_ROLES:
            continue
        if allowed is not None and role not in allowed:
            continue
        try:
            edit = SignatureInfo.model_validate(value)
        except ValidationError as e:
            raise _invalid(Section.SIGNATURES, e) from e

        signature = dict(merged.get(role) or {})
        if "full_name" in edit.model_fields_set:
            signature["full_name"] = edit.full_name
        if "sign_data_url" in edit.model_fields_set and edit.sign_data_url != signature.get("sign_data_url"):
            signature["sign_data_url"] = edit.sign_data_url
            signature.pop("sign_url", None)
        merged[role] = signature
    return merged


def check_required_values(changes: dict[str, Any]) -> None:
    """
    Reject edits that blank out a value the admission cannot exist without.

    Raises:
        ValidationFailedError: Naming the first missing requirement
    """
    personal = changes.get(Section.PERSONAL.value)
    if personal is not None:
        if not personal.get("full_name"):
            raise ValidationFailedError("Full name is required")
        if not personal.get("student_mobile"):
            raise ValidationFailedError("Student mobile number is required")
        if not personal.get("email"):
            raise ValidationFailedError("Email is required")

    course = changes.get(Section.COURSE.value)
    if course is not None and not (course.get("name") or course.get("training_only_course")):
        raise ValidationFailedError("Course is required")

    education = changes.get(Section.EDUCATION.value)
    if education is not None:
        first_row = education[0] if education else {}
        if not first_row.get("qualification") or not first_row.get("school"):
            raise ValidationFailedError("10th / SSC education details are required")

    uploads = changes.get(Section.UPLOADS.value)
    if uploads is not None:
        if not (uploads.get("photo_url") or uploads.get("photo_data_url")):
            raise ValidationFailedError("Photo is required")
        photo_data_url = uploads.get("photo_data_url")
        if photo_data_url and not is_image_data_url(photo_data_url):
            raise ValidationFailedError("Photo must be an image")

    signatures = changes.get(Section.SIGNATURES.value)
    if signatures is not None:
        for role, label in (("student", "Student"), ("parent", "Parent / Guardian")):
            signature = signatures.get(role) or {}
            if not signature.get("full_name") or not is_image_data_url(signature.get("sign_data_url")):
                raise ValidationFailedError(f"{label} signature is required")


def merge_permitted_changes(
    admission: Admission,
    grant: EditGrant,
    updated: dict[str, Any],
) -> dict[str, Any]:
    """
    Compute the new value of every granted section present in `updated`.

    Each section is validated against its form schema after merging, and
    required values cannot be removed.

    Returns:
        Section name -> complete new section value

    Raises:
        ValidationFailedError: If a section is malformed or loses a required value
    """
    changes: dict[str, Any] = {}

    for name in grant.sections:
        section = parse_section(name)
        if section is None or section.value not in updated:
            continue
        incoming = updated[section.value]

        if section is Section.EDUCATION:
            changes[section.value] = _merge_education(incoming)
            continue

        if not isinstance(incoming, dict):
            raise ValidationFailedError(f"{section.spec.label} must be an object")

        allowed = editable_attributes(section, grant.fields)
        current = getattr(admission, section.value) or {}
        if section is Section.SIGNATURES:
            changes[section.value] = _merge_signatures(current, incoming, allowed)
        else:
            changes[section.value] = _merge_attributes(section, current, incoming, allowed)

    check_required_values(changes)
    return changes


async def store_replaced_signatures(changes: dict[str, Any]) -> None:
    """Upload signature images replaced by merge_permitted_changes."""
    signatures = changes.get(Section.SIGNATURES.value) or {}
    for role in SIGNATURE_ROLES:
        signature = signatures.get(role)
        if signature is not None and "sign_url" not in signature:
            signature["sign_url"] = await store_signature(role, signature["sign_data_url"])


class EditWindowManager:
    """Issues, reads and consumes edit grants."""

    def __init__(self, kv: KeyValueStore, ttl_hours: int = 72):
        self.kv = kv
        self.ttl = timedelta(hours=ttl_hours)

    @property
    def ttl_hours(self) -> int:
        return int(self.ttl.total_seconds() // 3600)

    async def get_grant(self, admission_id: UUID | str) -> EditGrant | None:
        raw = await self.kv.get(_key(admission_id))
        if raw is None:
            return None
        return EditGrant.model_validate_json(raw)

    async def _store(self, grant: EditGrant) -> None:
        ttl_seconds = int((grant.expires_at - _utcnow()).total_seconds())
        await self.kv.set(_key(grant.admission_id), grant.model_dump_json(), max(1, ttl_seconds))

    async def grant(
        self,
        db: AsyncSession,
        admission: Admission,
        sections: list[str],
        fields: list[str],
        notes: str = "",
    ) -> EditGrant:
        """Open (or replace) the edit window and record the request on the admission."""
        now = _utcnow()
        grant = EditGrant(
            admission_id=admission.id,
            sections=sections,
            fields=fields,
            notes=notes,
            created_at=now,
            expires_at=now + self.ttl,
        )
        await self._store(grant)

        await repository.set_edit_request(
            db,
            admission,
            {
                "sections": sections,
                "fields": fields,
                "notes": notes,
                "status": EditRequestStatus.PENDING.value,
                "created_at": now.isoformat(),
                "resolved_at": None,
            },
        )
        logger.info(
            f"Edit window granted for admission {admission.id}: sections={sections} fields={fields}"
        )
        return grant

    async def fetch_for_edit(self, db: AsyncSession, admission_id: UUID) -> EditDataResponse:
        """
        Raises:
            NoActiveGrantError: If there is no live grant
            AdmissionNotFoundError: If the admission does not exist
        """
        grant = await self.get_grant(admission_id)
        if grant is None:
            raise NoActiveGrantError()

        admission = await repository.get_by_id(db, admission_id)
        if admission is None:
            raise AdmissionNotFoundError(admission_id)

        return EditDataResponse(
            admission=admission_to_document(admission),
            allowed_sections=grant.sections,
            allowed_fields=grant.fields,
        )

    async def apply_edit(
        self,
        db: AsyncSession,
        admission_id: UUID,
        updated: dict[str, Any],
    ) -> Admission:
        """
        Consume the grant and apply the permitted changes.

        The grant is restored if the edit is rejected or cannot be persisted. PDF and
        sheet regeneration and the counselor notification are best-effort.

        Raises:
            NoActiveGrantError: If there is no live grant (including replays)
            AdmissionNotFoundError: If the admission does not exist
            InvalidAdmissionStateError: If the admission can no longer be edited
            ValidationFailedError: If the edit is malformed or removes a required value
            UploadFailedError: If a replaced signature cannot be stored
        """
        raw = await self.kv.pop(_key(admission_id))
        if raw is None:
            raise NoActiveGrantError()
        grant = EditGrant.model_validate_json(raw)

        try:
            admission = await repository.get_for_update(db, admission_id)
            if admission is None:
                raise AdmissionNotFoundError(admission_id)
            repository.check_transition(admission, AdmissionStatus.PENDING)
            changes = merge_permitted_changes(admission, grant, updated)
            await store_replaced_signatures(changes)
            admission = await repository.apply_edit(db, admission, changes, _utcnow())
        except Exception as e:
            await db.rollback()
            if grant.expires_at > _utcnow():
                await self._store(grant)
            if isinstance(e, InvalidStatusTransitionError):
                raise InvalidAdmissionStateError(str(e)) from e
            raise

        logger.info(f"Edit applied to admission {admission_id}: sections={sorted(changes)}")

        await regenerate(db, admission)

        recipients = counselor_emails(admission.counselor_key)
        if recipients:
            await send_counselor_review_request(
                to_emails=recipients,
                student_name=admission.student_name,
                course_name=admission.course_name,
                center=admission.center_name,
                review_url=review_url(admission.id),
                pdf_url=admission.current_pdf_url,
                edited=True,
            )
        else:
            logger.warning(f"No counselor emails configured for {admission.counselor_key}")

        return admission


async def get_edit_window_manager() -> EditWindowManager:
    kv = await get_kv_store()
    return EditWindowManager(kv, ttl_hours=settings.edit_grant_ttl_hours)

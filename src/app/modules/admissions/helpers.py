"""
Helper functions for admissions.

Counselor routing, link building and the flat document projection shared by
the PDF renderer, the sheets mirror and the edit-data endpoint.
"""

import json
from datetime import datetime
from typing import Any
from urllib.parse import quote
from uuid import UUID

from app.core.config import settings
from app.modules.admissions.models import Admission, AdmissionStatus

COUNSELOR_KEYS = ("c1", "c2")

_CENTER_COUNSELORS = {
    "vashi": "c1",
    "bandra": "c2",
}


def normalize_counselor_key(value: Any) -> str:
    """Map any accepted spelling ("c2", "counselor2", "sheet2", "2") to c1/c2."""
    raw = str(value or "").strip().lower()
    if raw in ("c2", "counselor2", "sheet2", "2"):
        return "c2"
    return "c1"


def counselor_key_from_center(place: str | None) -> str | None:
    """Derive the counselor key from the admission center, if it is a known one."""
    if not place:
        return None
    return _CENTER_COUNSELORS.get(place.strip().lower())


def counselor_emails(counselor_key: str | None) -> list[str]:
    if normalize_counselor_key(counselor_key) == "c2":
        return settings.counselor_2_emails_list
    return settings.counselor_1_emails_list


def to_bool(value: Any, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def review_url(admission_id: UUID | str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/api/v1/admissions/{admission_id}/review"


def admin_review_url(admission_id: UUID | str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/api/v1/admissions/{admission_id}/admin-review"


def edit_link(admission: Admission, sections: list[str], fields: list[str]) -> str:
    """
    Student-facing edit link. The sections/fields parameters only drive the
    form's highlighting; the server authorizes edits from the stored grant.
    """
    sections_param = quote(json.dumps(sections, separators=(",", ":")))
    fields_param = quote(json.dumps(fields, separators=(",", ":")))
    return (
        f"{settings.app_base_url.rstrip('/')}/admission-form"
        f"?edit=1&id={admission.id}&c={admission.counselor_key}"
        f"&sections={sections_param}&fields={fields_param}"
    )


def admission_to_document(admission: Admission) -> dict[str, Any]:
    """Flatten an admission into the nested dict consumed by PDF and sheets."""
    status = AdmissionStatus(admission.status).value if admission.status else "pending"
    return {
        "id": str(admission.id),
        "status": status,
        "counselor_key": admission.counselor_key,
        "plan_type": admission.plan_type,
        "personal": dict(admission.personal or {}),
        "course": dict(admission.course or {}),
        "education": list(admission.education or []),
        "ids": dict(admission.ids or {}),
        "center": dict(admission.center or {}),
        "uploads": dict(admission.uploads or {}),
        "signatures": dict(admission.signatures or {}),
        "tc": dict(admission.tc or {}),
        "fees": dict(admission.fees or {}),
        "edit_request": dict(admission.edit_request or {}),
        "pdf": {
            "student_url": admission.pending_student_pdf_url,
            "counselor_url": admission.pending_counselor_pdf_url,
            "approved_url": admission.approved_pdf_url,
        },
        "pdf_url": admission.current_pdf_url,
        "workflow": {
            "counselor_submitted_to_admin_at": _iso(admission.counselor_submitted_to_admin_at),
            "counselor_submitted_by": admission.counselor_submitted_by,
            "admin_approved_at": _iso(admission.admin_approved_at),
            "admin_approved_by": admission.admin_approved_by,
        },
        "created_at": _iso(admission.created_at),
    }

"""
Admissions Schemas

Pydantic schemas for the intake draft, OTP verification, edit windows and
review projections. PendingSubmission and EditGrant are also the JSON
documents stored in the key-value store.
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.modules.admissions.sections import Section, is_field_editable

# Form groups


class PersonalInfo(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    salutation: str = ""
    full_name: str = ""
    guardian_name: str = ""
    address: str = ""
    parent_mobile: str = ""
    student_mobile: str = ""
    whatsapp_mobile: str = ""
    email: EmailStr | None = None

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class CourseInfo(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = ""
    enrolled: bool = True
    reference: str = ""
    training_only: bool = False
    training_only_course: str = ""

    @field_validator("enrolled", "training_only", mode="before")
    @classmethod
    def coerce_flag(cls, value: Any) -> Any:
        # Multipart clients send "true"/"false"/"1"/"0"
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "on")
        return value


class EducationRow(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, coerce_numbers_to_str=True)

    qualification: str = ""
    school: str = ""
    year: str = ""
    percentage: str = ""


class IdsInfo(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    pan: str = ""
    aadhaar_or_driving: str = ""


class CenterInfo(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    place_of_admission: str = ""
    mode: str = ""


class UploadsInfo(BaseModel):
    """Stored upload URLs; image uploads also keep a data URL for PDF rendering."""

    model_config = ConfigDict(str_strip_whitespace=True)

    photo_url: str | None = None
    photo_data_url: str | None = None
    pan_url: str | None = None
    pan_data_url: str | None = None
    aadhaar_url: str | None = None
    aadhaar_data_url: str | None = None


class SignatureInfo(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = ""
    sign_url: str | None = None
    sign_data_url: str | None = None


class AdmissionDraftPayload(BaseModel):
    """JSON `payload` part of the multipart intake request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    personal: PersonalInfo = Field(default_factory=PersonalInfo)
    course: CourseInfo = Field(default_factory=CourseInfo)
    education: list[EducationRow] = Field(default_factory=list)
    ids: IdsInfo = Field(default_factory=IdsInfo)
    center: CenterInfo = Field(default_factory=CenterInfo)
    signatures: dict[str, SignatureInfo] = Field(default_factory=dict)

    terms_accepted: bool = False
    tc_version: str | None = None
    tc_text: str = ""

    counselor_key: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


@dataclass
class UploadedDocument:
    """An uploaded file already read into memory."""

    filename: str
    content_type: str
    content: bytes


class InitResponse(BaseModel):
    pending_id: str
    message: str


# OTP verification


class OtpChannel(str, enum.Enum):
    MOBILE = "mobile"
    EMAIL = "email"


class PendingStatus(str, enum.Enum):
    PENDING = "pending"
    FINALIZING = "finalizing"
    FINALIZED = "finalized"


class PendingSubmission(BaseModel):
    """
    A verified-in-progress submission held until both OTPs pass.

    After finalization payload and OTP hashes are cleared and only the
    admission id and PDF URL remain.
    """

    id: str
    payload: dict[str, Any] | None = None
    mobile: str
    email: str
    mobile_otp_hash: str | None = None
    email_otp_hash: str | None = None
    mobile_verified: bool = False
    email_verified: bool = False
    attempts: int = 0
    status: PendingStatus = PendingStatus.PENDING
    created_at: datetime
    expires_at: datetime
    final_admission_id: UUID | None = None
    primary_pdf_url: str | None = None


class VerifyRequest(BaseModel):
    pending_id: str = Field(..., min_length=1)
    otp: str = Field(..., min_length=1, max_length=12)
    channel: OtpChannel


class VerifyResponse(BaseModel):
    step: str
    next: str | None = None
    id: UUID | None = None
    pdf_url: str | None = None


class FinalizedSubmission(BaseModel):
    admission_id: UUID
    primary_pdf_url: str


# Edit windows


class EditGrant(BaseModel):
    """Single-use permission to change the listed sections and fields."""

    admission_id: UUID
    sections: list[str]
    fields: list[str] = Field(default_factory=list)
    notes: str = ""
    created_at: datetime
    expires_at: datetime

    def is_field_editable(self, section: Section | str, key: str) -> bool:
        return is_field_editable(self.sections, self.fields, section, key)


class EditDataResponse(BaseModel):
    admission: dict[str, Any]
    allowed_sections: list[str]
    allowed_fields: list[str]


class ApplyEditRequest(BaseModel):
    updated: dict[str, Any] = Field(default_factory=dict)


class ApplyEditResponse(BaseModel):
    success: bool
    id: UUID
    message: str


# Review


class ReviewDecision(BaseModel):
    """Parsed counselor/admin correction form."""

    sections: list[Section] = Field(default_factory=list)
    fields: list[str] = Field(default_factory=list)
    notes: str = ""


class ReviewField(BaseModel):
    key: str
    label: str
    value: str = ""
    flagged: bool = False


class ReviewSection(BaseModel):
    section: Section
    label: str
    field_level: bool
    flagged: bool = False
    fields: list[ReviewField] = Field(default_factory=list)


class ReviewView(BaseModel):
    """Everything the review pages render, independent of HTML."""

    admission_id: UUID
    status: str
    counselor_key: str
    student_name: str
    course_name: str
    center: str
    pdf_url: str | None = None
    photo_url: str | None = None
    sections: list[ReviewSection] = Field(default_factory=list)
    flagged_fields: list[str] = Field(default_factory=list)
    notes: str = ""
    edit_status: str = ""
    fees: dict[str, Any] = Field(default_factory=dict)
    submitted_to_admin_at: datetime | None = None
    approved_at: datetime | None = None

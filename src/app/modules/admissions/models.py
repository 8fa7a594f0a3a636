"""
Admission Models

Durable admission records. Form groups (personal, course, education, ...)
are stored as JSON documents; fields the workflow queries or gates on
(status, counselor routing, PDF references, workflow timestamps) are
real columns.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, Index, String, func
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class AdmissionStatus(str, enum.Enum):
    """Status of an admission record."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class EditRequestStatus(str, enum.Enum):
    """State of the most recent correction request on a record."""

    NONE = ""
    PENDING = "pending"
    COMPLETED = "completed"
    ADMIN_REQUESTED = "admin-requested"
    EXPIRED = "expired"


class PaymentMode(str, enum.Enum):
    CASH = "cash"
    ONLINE = "online"


class Admission(Base):
    """
    Admission record created once a submission passes mobile and email OTP.

    Never hard-deleted. tc holds an immutable snapshot of the terms text the
    student accepted.
    """

    __tablename__ = "admissions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    status: Mapped[AdmissionStatus] = mapped_column(
        Enum(
            AdmissionStatus,
            name="admission_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=AdmissionStatus.PENDING,
    )

    # Routing
    counselor_key: Mapped[str] = mapped_column(String(8), nullable=False, default="c1")
    plan_type: Mapped[str] = mapped_column(String(16), nullable=False, default="job")

    # Form groups
    personal: Mapped[dict] = mapped_column(JSON, nullable=False)
    course: Mapped[dict] = mapped_column(JSON, nullable=False)
    education: Mapped[list] = mapped_column(JSON, nullable=False)
    ids: Mapped[dict] = mapped_column(JSON, nullable=False)
    center: Mapped[dict] = mapped_column(JSON, nullable=False)
    uploads: Mapped[dict] = mapped_column(JSON, nullable=False)
    signatures: Mapped[dict] = mapped_column(JSON, nullable=False)
    tc: Mapped[dict] = mapped_column(JSON, nullable=False)
    fees: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)

    # Last correction request: {sections, fields, notes, status, created_at, resolved_at}
    edit_request: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)

    # Generated artifacts
    pending_student_pdf_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    pending_counselor_pdf_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    approved_pdf_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Workflow
    counselor_submitted_to_admin_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    counselor_submitted_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    admin_approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    admin_approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_admissions_status", "status"),
        Index("ix_admissions_counselor_key", "counselor_key"),
    )

    @property
    def current_pdf_url(self) -> str | None:
        """The artifact a viewer should be shown for the current status."""
        if self.status == AdmissionStatus.APPROVED and self.approved_pdf_url:
            return self.approved_pdf_url
        return self.pending_student_pdf_url or self.pending_counselor_pdf_url

    @property
    def student_name(self) -> str:
        return (self.personal or {}).get("full_name") or "Student"

    @property
    def student_email(self) -> str | None:
        return (self.personal or {}).get("email")

    @property
    def course_name(self) -> str:
        course = self.course or {}
        return course.get("name") or course.get("training_only_course") or "Admissions"

    @property
    def center_name(self) -> str:
        return (self.center or {}).get("place_of_admission") or "-"

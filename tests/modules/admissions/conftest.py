"""
Fixtures for admissions tests.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from app.core.kv import MemoryKeyValueStore
from app.modules.admissions.edit_window import EditWindowManager
from app.modules.admissions.models import Admission, AdmissionStatus
from app.modules.admissions.otp import OtpCodec
from app.modules.admissions.pending_store import PendingSubmissionStore
from app.modules.admissions.schemas import FinalizedSubmission

SIGNATURE_DATA_URL = "data:image/png;base64,iVBORw0KGgo="


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.refresh = AsyncMock()
    db.rollback = AsyncMock()
    db.get = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def memory_kv():
    """Process-local key-value store."""
    return MemoryKeyValueStore()


@pytest.fixture
def codec():
    return OtpCodec(secret="test-secret", length=6)


@pytest.fixture
def otp_senders():
    """Patch SMS and email OTP dispatch; yields (sms_mock, email_mock)."""
    with (
        patch(
            "app.modules.admissions.pending_store.send_otp_sms",
            new_callable=AsyncMock,
            return_value=True,
        ) as sms,
        patch(
            "app.modules.admissions.pending_store.send_otp_email",
            new_callable=AsyncMock,
            return_value=True,
        ) as mail,
    ):
        yield sms, mail


@pytest.fixture
def pending_store(memory_kv, codec, otp_senders):
    return PendingSubmissionStore(memory_kv, codec, ttl_minutes=15, max_attempts=5)


@pytest.fixture
def edit_windows(memory_kv):
    return EditWindowManager(memory_kv, ttl_hours=72)


@pytest.fixture
def finalized():
    """A successful finalization result."""
    return FinalizedSubmission(
        admission_id=uuid4(),
        primary_pdf_url="http://localhost:8000/files/admissions/pdf/student.pdf",
    )


@pytest.fixture
def sample_payload():
    """Normalized intake payload as stored in a pending submission."""
    return {
        "personal": {
            "salutation": "Mr",
            "full_name": "Ravi Kumar",
            "guardian_name": "Suresh Kumar",
            "address": "12 MG Road, Vashi",
            "parent_mobile": "9820000001",
            "student_mobile": "9820000002",
            "whatsapp_mobile": "9820000002",
            "email": "ravi@example.com",
        },
        "course": {
            "name": "Full Stack Development",
            "enrolled": True,
            "reference": "",
            "training_only": False,
            "training_only_course": "",
        },
        "education": [
            {"qualification": "10th / SSC", "school": "City School", "year": "2018", "percentage": "82"},
        ],
        "ids": {"pan": "ABCDE1234F", "aadhaar_or_driving": "1234 5678 9012"},
        "center": {"place_of_admission": "Vashi", "mode": "Offline"},
        "uploads": {
            "photo_url": "http://localhost:8000/files/admissions/photos/p.jpg",
            "photo_data_url": None,
        },
        "signatures": {
            "student": {"full_name": "Ravi Kumar", "sign_url": None, "sign_data_url": SIGNATURE_DATA_URL},
            "parent": {"full_name": "Suresh Kumar", "sign_url": None, "sign_data_url": SIGNATURE_DATA_URL},
        },
        "tc": {"accepted": True, "version": "2025-10-16", "text": "Terms", "type": "job-guarantee"},
        "plan_type": "job",
        "counselor_key": "c1",
    }


@pytest.fixture
def sample_admission(sample_payload):
    """A pending admission record."""
    return Admission(
        id=uuid4(),
        status=AdmissionStatus.PENDING,
        counselor_key="c1",
        plan_type="job",
        personal=dict(sample_payload["personal"]),
        course=dict(sample_payload["course"]),
        education=list(sample_payload["education"]),
        ids=dict(sample_payload["ids"]),
        center=dict(sample_payload["center"]),
        uploads=dict(sample_payload["uploads"]),
        signatures=dict(sample_payload["signatures"]),
        tc=dict(sample_payload["tc"]),
        fees=None,
        edit_request=None,
        pending_student_pdf_url="http://localhost:8000/files/admissions/pdf/a-student.pdf",
        pending_counselor_pdf_url="http://localhost:8000/files/admissions/pdf/a-counselor.pdf",
        approved_pdf_url=None,
        counselor_submitted_to_admin_at=None,
        admin_approved_at=None,
        created_at=datetime.now(UTC),
    )


@pytest.fixture
def submitted_admission(sample_admission):
    """A pending admission whose fees were submitted to admin."""
    sample_admission.fees = {"amount": 5000.0, "payment_mode": "cash"}
    sample_admission.counselor_submitted_to_admin_at = datetime.now(UTC)
    return sample_admission

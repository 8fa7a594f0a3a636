"""
Unit tests for edit windows.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from app.modules.admissions.edit_window import _utcnow, merge_permitted_changes
from app.modules.admissions.exceptions import (
    AdmissionNotFoundError,
    InvalidAdmissionStateError,
    NoActiveGrantError,
    UploadFailedError,
    ValidationFailedError,
)
from app.modules.admissions.models import AdmissionStatus, EditRequestStatus
from app.modules.admissions.review import has_fee_submission
from app.modules.admissions.schemas import EditGrant

NEW_SIGNATURE = "data:image/png;base64,R0lGODlhAQABAAAAACw="


def _grant(admission, sections, fields=None):
    now = _utcnow()
    return EditGrant(
        admission_id=admission.id,
        sections=sections,
        fields=fields or [],
        created_at=now,
        expires_at=now + timedelta(hours=72),
    )


class TestMergePermittedChanges:
    """Tests for merging student edits into a record."""

    def test_flagged_field_only(self, sample_admission):
        """Only the attributes of flagged fields are taken from the update."""
        grant = _grant(sample_admission, ["personal"], ["pf_email"])

        changes = merge_permitted_changes(
            sample_admission,
            grant,
            {"personal": {"email": "new@example.com", "full_name": "Someone Else"}},
        )

        assert changes["personal"]["email"] == "new@example.com"
        assert changes["personal"]["full_name"] == "Ravi Kumar"

    def test_whole_section_when_no_flags(self, sample_admission):
        grant = _grant(sample_admission, ["personal"])

        changes = merge_permitted_changes(
            sample_admission,
            grant,
            {"personal": {"address": "  5 Palm Beach Road  ", "full_name": "Ravi K"}},
        )

        assert changes["personal"]["address"] == "5 Palm Beach Road"
        assert changes["personal"]["full_name"] == "Ravi K"
        assert changes["personal"]["email"] == "ravi@example.com"

    def test_ungranted_sections_are_ignored(self, sample_admission):
        grant = _grant(sample_admission, ["personal"], ["pf_email"])

        changes = merge_permitted_changes(
            sample_admission,
            grant,
            {"course": {"name": "Hacked"}, "ids": {"pan": "X"}},
        )

        assert changes == {}

    def test_education_is_replaced(self, sample_admission):
        grant = _grant(sample_admission, ["education"], ["ed_q_0"])

        changes = merge_permitted_changes(
            sample_admission,
            grant,
            {"education": [{"qualification": "12th / HSC", "school": "JC", "year": 2020, "percentage": 75}]},
        )

        assert changes["education"] == [
            {"qualification": "12th / HSC", "school": "JC", "year": "2020", "percentage": "75"}
        ]

    def test_empty_signature_edit_keeps_existing_signature(self, sample_admission):
        original = dict(sample_admission.signatures["parent"])
        grant = _grant(sample_admission, ["signatures"], ["sg_parent"])

        changes = merge_permitted_changes(sample_admission, grant, {"signatures": {"parent": {}}})

        assert changes["signatures"]["parent"] == original

    def test_signature_cannot_be_blanked(self, sample_admission):
        grant = _grant(sample_admission, ["signatures"], ["sg_parent"])

        with pytest.raises(ValidationFailedError) as exc_info:
            merge_permitted_changes(
                sample_admission,
                grant,
                {"signatures": {"parent": {"full_name": "", "sign_data_url": ""}}},
            )

        assert "Parent" in exc_info.value.message

    def test_malformed_signature_is_rejected(self, sample_admission):
        grant = _grant(sample_admission, ["signatures"], ["sg_student"])

        with pytest.raises(ValidationFailedError):
            merge_permitted_changes(sample_admission, grant, {"signatures": {"student": "x"}})

    def test_signature_must_be_an_image(self, sample_admission):
        grant = _grant(sample_admission, ["signatures"], ["sg_student"])

        with pytest.raises(ValidationFailedError):
            merge_permitted_changes(
                sample_admission,
                grant,
                {"signatures": {"student": {"sign_data_url": "javascript:alert(1)"}}},
            )

    def test_replaced_signature_drops_stored_url(self, sample_admission):
        sample_admission.signatures["student"]["sign_url"] = "http://files/old-student.png"
        grant = _grant(sample_admission, ["signatures"], ["sg_student"])

        changes = merge_permitted_changes(
            sample_admission,
            grant,
            {"signatures": {"student": {"sign_data_url": NEW_SIGNATURE}, "parent": {"full_name": "X"}}},
        )

        student = changes["signatures"]["student"]
        assert student["sign_data_url"] == NEW_SIGNATURE
        assert "sign_url" not in student
        assert student["full_name"] == "Ravi Kumar"
        assert changes["signatures"]["parent"]["full_name"] == "Suresh Kumar"

    def test_required_personal_values_cannot_be_removed(self, sample_admission):
        grant = _grant(sample_admission, ["personal"])

        for update in ({"email": ""}, {"full_name": "  "}, {"student_mobile": ""}):
            with pytest.raises(ValidationFailedError):
                merge_permitted_changes(sample_admission, grant, {"personal": update})

    def test_invalid_email_is_rejected(self, sample_admission):
        grant = _grant(sample_admission, ["personal"], ["pf_email"])

        with pytest.raises(ValidationFailedError):
            merge_permitted_changes(sample_admission, grant, {"personal": {"email": "not-an-email"}})

    def test_photo_cannot_be_removed(self, sample_admission):
        grant = _grant(sample_admission, ["uploads"], ["up_photo"])

        with pytest.raises(ValidationFailedError):
            merge_permitted_changes(
                sample_admission, grant, {"uploads": {"photo_url": "", "photo_data_url": None}}
            )

    def test_section_must_be_an_object(self, sample_admission):
        grant = _grant(sample_admission, ["personal", "education"])

        with pytest.raises(ValidationFailedError):
            merge_permitted_changes(sample_admission, grant, {"personal": "Ravi"})
        with pytest.raises(ValidationFailedError):
            merge_permitted_changes(sample_admission, grant, {"education": {"qualification": "x"}})

    def test_unknown_attributes_are_dropped(self, sample_admission):
        grant = _grant(sample_admission, ["center"])

        changes = merge_permitted_changes(
            sample_admission, grant, {"center": {"mode": "Online", "is_admin": True}}
        )

        assert changes["center"] == {"place_of_admission": "Vashi", "mode": "Online"}


class TestGrant:
    """Tests for opening an edit window."""

    @pytest.mark.asyncio
    async def test_grant_is_stored_and_recorded(self, edit_windows, mock_db, sample_admission):
        grant = await edit_windows.grant(
            mock_db, sample_admission, ["personal", "uploads"], ["up_photo"], "Photo is blurred"
        )

        stored = await edit_windows.get_grant(sample_admission.id)
        assert stored == grant
        assert grant.expires_at - grant.created_at == timedelta(hours=72)
        assert sample_admission.edit_request["status"] == EditRequestStatus.PENDING.value
        assert sample_admission.edit_request["notes"] == "Photo is blurred"
        mock_db.commit.assert_called_once()


class TestFetchForEdit:
    """Tests for loading data for the edit form."""

    @pytest.mark.asyncio
    async def test_without_grant(self, edit_windows, mock_db, sample_admission):
        with pytest.raises(NoActiveGrantError):
            await edit_windows.fetch_for_edit(mock_db, sample_admission.id)

    @pytest.mark.asyncio
    async def test_with_grant(self, edit_windows, mock_db, sample_admission):
        await edit_windows.grant(mock_db, sample_admission, ["personal"], ["pf_email"])
        mock_db.get.return_value = sample_admission

        result = await edit_windows.fetch_for_edit(mock_db, sample_admission.id)

        assert result.allowed_sections == ["personal"]
        assert result.allowed_fields == ["pf_email"]
        assert result.admission["id"] == str(sample_admission.id)

    @pytest.mark.asyncio
    async def test_missing_admission(self, edit_windows, mock_db, sample_admission):
        await edit_windows.grant(mock_db, sample_admission, ["personal"], [])
        mock_db.get.return_value = None

        with pytest.raises(AdmissionNotFoundError):
            await edit_windows.fetch_for_edit(mock_db, sample_admission.id)


class TestApplyEdit:
    """Tests for consuming an edit window."""

    @pytest.mark.asyncio
    async def test_applies_flagged_field_and_consumes_grant(self, edit_windows, mock_db, sample_admission):
        """Only the flagged email changes and a replay finds no grant."""
        await edit_windows.grant(mock_db, sample_admission, ["personal"], ["pf_email"])
        updated = {"personal": {"email": "new@example.com", "full_name": "Someone Else"}}

        with (
            patch(
                "app.modules.admissions.repository.get_for_update",
                new_callable=AsyncMock,
                return_value=sample_admission,
            ),
            patch("app.modules.admissions.edit_window.regenerate", new_callable=AsyncMock) as mock_regen,
            patch(
                "app.modules.admissions.edit_window.counselor_emails",
                return_value=["counselor@example.com"],
            ),
            patch(
                "app.modules.admissions.edit_window.send_counselor_review_request",
                new_callable=AsyncMock,
            ) as mock_email,
        ):
            result = await edit_windows.apply_edit(mock_db, sample_admission.id, updated)

            assert result.personal["email"] == "new@example.com"
            assert result.personal["full_name"] == "Ravi Kumar"
            assert result.status == AdmissionStatus.PENDING
            assert result.edit_request["status"] == EditRequestStatus.COMPLETED.value
            mock_regen.assert_called_once()
            mock_email.assert_called_once()
            assert mock_email.call_args.kwargs["edited"] is True

            with pytest.raises(NoActiveGrantError):
                await edit_windows.apply_edit(mock_db, sample_admission.id, updated)

    @pytest.mark.asyncio
    async def test_without_grant(self, edit_windows, mock_db, sample_admission):
        with pytest.raises(NoActiveGrantError):
            await edit_windows.apply_edit(mock_db, sample_admission.id, {"personal": {}})

    @pytest.mark.asyncio
    async def test_grant_restored_when_admission_missing(self, edit_windows, mock_db, sample_admission):
        await edit_windows.grant(mock_db, sample_admission, ["personal"], [])

        with patch(
            "app.modules.admissions.repository.get_for_update",
            new_callable=AsyncMock,
            return_value=None,
        ):
            with pytest.raises(AdmissionNotFoundError):
                await edit_windows.apply_edit(mock_db, sample_admission.id, {"personal": {}})

        mock_db.rollback.assert_called_once()
        assert await edit_windows.get_grant(sample_admission.id) is not None

    @pytest.mark.asyncio
    async def test_rejected_admission_cannot_be_edited(self, edit_windows, mock_db, sample_admission):
        await edit_windows.grant(mock_db, sample_admission, ["personal"], [])
        sample_admission.status = AdmissionStatus.REJECTED

        with patch(
            "app.modules.admissions.repository.get_for_update",
            new_callable=AsyncMock,
            return_value=sample_admission,
        ):
            with pytest.raises(InvalidAdmissionStateError):
                await edit_windows.apply_edit(
                    mock_db, sample_admission.id, {"personal": {"email": "x@example.com"}}
                )

        assert sample_admission.personal["email"] == "ravi@example.com"

    @pytest.mark.asyncio
    async def test_malformed_signature_keeps_record_and_grant(self, edit_windows, mock_db, sample_admission):
        """A rejected edit leaves the signature renderable and the window open."""
        await edit_windows.grant(mock_db, sample_admission, ["signatures"], ["sg_student"])
        original = dict(sample_admission.signatures["student"])

        with patch(
            "app.modules.admissions.repository.get_for_update",
            new_callable=AsyncMock,
            return_value=sample_admission,
        ):
            with pytest.raises(ValidationFailedError):
                await edit_windows.apply_edit(
                    mock_db, sample_admission.id, {"signatures": {"student": "x"}}
                )

        assert sample_admission.signatures["student"] == original
        mock_db.rollback.assert_called_once()
        assert mock_db.commit.call_count == 1
        assert await edit_windows.get_grant(sample_admission.id) is not None

    @pytest.mark.asyncio
    async def test_replaced_signature_is_uploaded(self, edit_windows, mock_db, sample_admission):
        await edit_windows.grant(mock_db, sample_admission, ["signatures"], ["sg_parent"])

        with (
            patch(
                "app.modules.admissions.repository.get_for_update",
                new_callable=AsyncMock,
                return_value=sample_admission,
            ),
            patch(
                "app.modules.admissions.edit_window.store_signature",
                new_callable=AsyncMock,
                return_value="http://files/admissions/signatures/new-parent.png",
            ) as mock_store,
            patch("app.modules.admissions.edit_window.regenerate", new_callable=AsyncMock),
            patch("app.modules.admissions.edit_window.counselor_emails", return_value=[]),
        ):
            result = await edit_windows.apply_edit(
                mock_db,
                sample_admission.id,
                {"signatures": {"parent": {"full_name": "Sunita Kumar", "sign_data_url": NEW_SIGNATURE}}},
            )

        mock_store.assert_called_once_with("parent", NEW_SIGNATURE)
        parent = result.signatures["parent"]
        assert parent["full_name"] == "Sunita Kumar"
        assert parent["sign_data_url"] == NEW_SIGNATURE
        assert parent["sign_url"] == "http://files/admissions/signatures/new-parent.png"
        assert result.signatures["student"]["full_name"] == "Ravi Kumar"

    @pytest.mark.asyncio
    async def test_signature_upload_failure_restores_grant(self, edit_windows, mock_db, sample_admission):
        await edit_windows.grant(mock_db, sample_admission, ["signatures"], ["sg_parent"])

        with (
            patch(
                "app.modules.admissions.repository.get_for_update",
                new_callable=AsyncMock,
                return_value=sample_admission,
            ),
            patch(
                "app.modules.admissions.edit_window.store_signature",
                new_callable=AsyncMock,
                side_effect=UploadFailedError("parent signature"),
            ),
        ):
            with pytest.raises(UploadFailedError):
                await edit_windows.apply_edit(
                    mock_db,
                    sample_admission.id,
                    {"signatures": {"parent": {"sign_data_url": NEW_SIGNATURE}}},
                )

        assert await edit_windows.get_grant(sample_admission.id) is not None

    @pytest.mark.asyncio
    async def test_edit_withdraws_submission_to_admin(self, edit_windows, mock_db, submitted_admission):
        """Edited data must be resubmitted by the counselor before it can be approved."""
        await edit_windows.grant(mock_db, submitted_admission, ["personal"], ["pf_email"])
        assert has_fee_submission(submitted_admission) is True

        with (
            patch(
                "app.modules.admissions.repository.get_for_update",
                new_callable=AsyncMock,
                return_value=submitted_admission,
            ),
            patch("app.modules.admissions.edit_window.regenerate", new_callable=AsyncMock),
            patch("app.modules.admissions.edit_window.counselor_emails", return_value=[]),
        ):
            result = await edit_windows.apply_edit(
                mock_db, submitted_admission.id, {"personal": {"email": "new@example.com"}}
            )

        assert result.counselor_submitted_to_admin_at is None
        assert result.fees == {"amount": 5000.0, "payment_mode": "cash"}
        assert has_fee_submission(result) is False

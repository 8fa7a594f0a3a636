"""
Unit tests for form sections, field keys and editability.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from app.modules.admissions.exceptions import InvalidFieldKeyError
from app.modules.admissions.schemas import EditGrant
from app.modules.admissions.sections import (
    Section,
    editable_attributes,
    is_field_editable,
    parse_section,
    section_for_key,
    validate_field_keys,
)


def _grant(sections, fields):
    now = datetime.now(UTC)
    return EditGrant(
        admission_id=uuid4(),
        sections=sections,
        fields=fields,
        created_at=now,
        expires_at=now + timedelta(hours=72),
    )


class TestSectionTaxonomy:
    """Tests for section capability flags and key lookup."""

    def test_field_level_sections(self):
        assert Section.PERSONAL.supports_field_level
        assert Section.UPLOADS.supports_field_level
        assert Section.SIGNATURES.supports_field_level

    def test_section_only_sections(self):
        for section in (Section.COURSE, Section.EDUCATION, Section.IDS, Section.CENTER):
            assert not section.supports_field_level

    def test_prefixes(self):
        assert Section.PERSONAL.spec.prefix == "pf_"
        assert Section.UPLOADS.spec.prefix == "up_"
        assert Section.EDUCATION.spec.prefix == "ed_"

    def test_section_for_known_keys(self):
        assert section_for_key("pf_email") is Section.PERSONAL
        assert section_for_key("up_photo") is Section.UPLOADS
        assert section_for_key("sg_parent") is Section.SIGNATURES
        assert section_for_key("cr_name") is Section.COURSE
        assert section_for_key("id_pan") is Section.IDS
        assert section_for_key("ct_place") is Section.CENTER

    def test_education_keys_carry_column_and_row(self):
        assert section_for_key("ed_q_0") is Section.EDUCATION
        assert section_for_key("ed_p_12") is Section.EDUCATION
        assert section_for_key("ed_x_0") is None
        assert section_for_key("ed_q") is None

    def test_unknown_key(self):
        assert section_for_key("pf_nickname") is None
        assert section_for_key("") is None

    def test_parse_section(self):
        assert parse_section(" Personal ") is Section.PERSONAL
        assert parse_section("nope") is None


class TestValidateFieldKeys:
    """Tests for boundary validation of field keys."""

    def test_deduplicates_in_order(self):
        assert validate_field_keys(["pf_email", "up_photo", "pf_email"]) == ["pf_email", "up_photo"]

    def test_rejects_unknown_keys(self):
        with pytest.raises(InvalidFieldKeyError) as exc_info:
            validate_field_keys(["pf_email", "pf_nickname", "zz_1"])

        assert exc_info.value.error_code == "INVALID_FIELD_KEY"
        assert exc_info.value.status_code == 400
        assert exc_info.value.keys == ["pf_nickname", "zz_1"]


class TestIsFieldEditable:
    """Tests for the edit-window editability rule."""

    def test_partially_open_uploads_and_closed_course(self):
        """Only the flagged upload is editable; an ungranted section is closed."""
        grant = _grant(["personal", "uploads"], ["up_photo"])

        assert grant.is_field_editable("uploads", "up_photo") is True
        assert grant.is_field_editable("uploads", "up_pan") is False
        assert grant.is_field_editable("course", "cr_name") is False

    def test_fully_open_when_section_has_no_flagged_fields(self):
        """Personal is granted without any pf_ flags, so every personal field is open."""
        grant = _grant(["personal", "uploads"], ["up_photo"])

        assert grant.is_field_editable(Section.PERSONAL, "pf_email") is True
        assert grant.is_field_editable(Section.PERSONAL, "pf_address") is True

    def test_section_only_section_is_fully_open(self):
        """Flags inside a section-only section never narrow it."""
        grant = _grant(["course"], ["cr_name"])

        assert grant.is_field_editable("course", "cr_reference") is True
        assert grant.is_field_editable("course", "cr_plan_type") is True

    def test_key_from_another_section_is_not_editable(self):
        assert is_field_editable(["personal"], [], "personal", "up_photo") is False

    def test_education_rows(self):
        assert is_field_editable(["education"], ["ed_q_0"], "education", "ed_s_1") is True


class TestEditableAttributes:
    """Tests for mapping flagged keys to section attributes."""

    def test_partial_section_maps_flagged_keys(self):
        assert editable_attributes(Section.PERSONAL, ["pf_email"]) == {"email"}
        assert editable_attributes(Section.UPLOADS, ["up_photo"]) == {"photo_url", "photo_data_url"}

    def test_whole_section_when_nothing_flagged(self):
        assert editable_attributes(Section.PERSONAL, ["up_photo"]) is None

    def test_section_only_is_always_whole(self):
        assert editable_attributes(Section.COURSE, ["cr_name"]) is None

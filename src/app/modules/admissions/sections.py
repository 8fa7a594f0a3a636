"""
Form Sections and Correction Field Keys

Every correctable part of the admission form belongs to a Section. Sections
either support field-level correction (the counselor flags individual
fields and only those become editable) or are section-only (flagging the
section opens all of it).

Field keys are namespaced by a section prefix, e.g. "pf_email" or
"up_photo". Education keys carry a column and row: "ed_<q|s|y|p>_<row>".
"""

import enum
import re
from collections.abc import Iterable
from dataclasses import dataclass

from app.modules.admissions.exceptions import InvalidFieldKeyError


@dataclass(frozen=True)
class FieldSpec:
    """A correctable field and the section attributes it controls."""

    key: str
    label: str
    attributes: tuple[str, ...]


@dataclass(frozen=True)
class SectionSpec:
    label: str
    prefix: str
    field_level: bool
    fields: tuple[FieldSpec, ...]
    is_list: bool = False


class Section(str, enum.Enum):
    PERSONAL = "personal"
    COURSE = "course"
    EDUCATION = "education"
    IDS = "ids"
    CENTER = "center"
    UPLOADS = "uploads"
    SIGNATURES = "signatures"

    @property
    def spec(self) -> SectionSpec:
        return SECTION_SPECS[self]

    @property
    def supports_field_level(self) -> bool:
        return self.spec.field_level


SECTION_SPECS: dict[Section, SectionSpec] = {
    Section.PERSONAL: SectionSpec(
        label="Personal Details",
        prefix="pf_",
        field_level=True,
        fields=(
            FieldSpec("pf_full_name", "Full name", ("salutation", "full_name")),
            FieldSpec("pf_guardian", "Father / Guardian name", ("guardian_name",)),
            FieldSpec("pf_address", "Address", ("address",)),
            FieldSpec("pf_parent_mobile", "Parent mobile", ("parent_mobile",)),
            FieldSpec("pf_student_mobile", "Student mobile", ("student_mobile",)),
            FieldSpec("pf_whatsapp", "WhatsApp number", ("whatsapp_mobile",)),
            FieldSpec("pf_email", "Email", ("email",)),
        ),
    ),
    Section.UPLOADS: SectionSpec(
        label="Uploads",
        prefix="up_",
        field_level=True,
        fields=(
            FieldSpec("up_photo", "Photo", ("photo_url", "photo_data_url")),
            FieldSpec("up_pan", "PAN document", ("pan_url", "pan_data_url")),
            FieldSpec("up_aadhaar", "Aadhaar / Driving licence", ("aadhaar_url", "aadhaar_data_url")),
        ),
    ),
    Section.SIGNATURES: SectionSpec(
        label="Signatures",
        prefix="sg_",
        field_level=True,
        fields=(
            FieldSpec("sg_student", "Student signature", ("student",)),
            FieldSpec("sg_parent", "Parent / Guardian signature", ("parent",)),
        ),
    ),
    Section.COURSE: SectionSpec(
        label="Course",
        prefix="cr_",
        field_level=False,
        fields=(
            FieldSpec("cr_name", "Course name", ("name", "training_only_course")),
            FieldSpec("cr_reference", "Reference", ("reference",)),
            FieldSpec("cr_plan_type", "Plan type", ("training_only",)),
        ),
    ),
    Section.EDUCATION: SectionSpec(
        label="Education",
        prefix="ed_",
        field_level=False,
        fields=(),
        is_list=True,
    ),
    Section.IDS: SectionSpec(
        label="ID Numbers",
        prefix="id_",
        field_level=False,
        fields=(
            FieldSpec("id_pan", "PAN number", ("pan",)),
            FieldSpec("id_aadhaar", "Aadhaar / Driving licence number", ("aadhaar_or_driving",)),
        ),
    ),
    Section.CENTER: SectionSpec(
        label="Center",
        prefix="ct_",
        field_level=False,
        fields=(
            FieldSpec("ct_place", "Place of admission", ("place_of_admission",)),
            FieldSpec("ct_mode", "Mode", ("mode",)),
        ),
    ),
}

_EDUCATION_KEY = re.compile(r"^ed_[qsyp]_\d+$")

_FIELDS_BY_KEY: dict[str, tuple[Section, FieldSpec]] = {
    field.key: (section, field) for section, spec in SECTION_SPECS.items() for field in spec.fields
}


def parse_section(value: str) -> Section | None:
    try:
        return Section(value.strip().lower())
    except ValueError:
        return None


def section_for_key(key: str) -> Section | None:
    """Return the section a field key belongs to, or None if it is unknown."""
    if key in _FIELDS_BY_KEY:
        return _FIELDS_BY_KEY[key][0]
    if _EDUCATION_KEY.match(key):
        return Section.EDUCATION
    return None


def field_spec(key: str) -> FieldSpec | None:
    entry = _FIELDS_BY_KEY.get(key)
    return entry[1] if entry else None


def validate_field_keys(keys: Iterable[str]) -> list[str]:
    """
    De-duplicate field keys, keeping order, and reject unknown ones.

    Raises:
        InvalidFieldKeyError: If any key does not belong to a section
    """
    seen: list[str] = []
    unknown: list[str] = []
    for key in keys:
        if key in seen:
            continue
        if section_for_key(key) is None:
            unknown.append(key)
            continue
        seen.append(key)
    if unknown:
        raise InvalidFieldKeyError(unknown)
    return seen


def flagged_fields_in(section: Section, fields: Iterable[str]) -> list[str]:
    """Field keys from `fields` that belong to `section`."""
    return [key for key in fields if section_for_key(key) is section]


def is_field_editable(
    allowed_sections: Iterable[str],
    allowed_fields: Iterable[str],
    section: Section | str,
    key: str,
) -> bool:
    """
    Decide whether one form field is editable under a grant.

    A granted section with no flagged fields of its own is fully open.
    A granted field-level section with flagged fields is partially open:
    only the flagged keys are editable. Section-only sections are always
    fully open once granted.
    """
    section = Section(section)
    if section.value not in set(allowed_sections):
        return False
    if section_for_key(key) is not section:
        return False
    if not section.supports_field_level:
        return True

    flagged = flagged_fields_in(section, allowed_fields)
    return not flagged or key in flagged


def editable_attributes(section: Section, allowed_fields: Iterable[str]) -> set[str] | None:
    """
    Attributes of a granted section that may be changed.

    Returns None when the whole section is open.
    """
    if not section.supports_field_level:
        return None
    flagged = flagged_fields_in(section, allowed_fields)
    if not flagged:
        return None

    attributes: set[str] = set()
    for key in flagged:
        spec = field_spec(key)
        if spec is not None:
            attributes.update(spec.attributes)
    return attributes

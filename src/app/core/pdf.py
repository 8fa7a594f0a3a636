"""
Admission PDF Rendering

Builds the admission record PDF with reportlab. The same layout is used for
the student copy, the counselor copy and the approved copy; only the banner
and the counselor-only sections differ.
"""

import base64
import binascii
import enum
import logging
from io import BytesIO
from typing import Any
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.lib.utils import ImageReader
from reportlab.platypus import (
    Image,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

logger = logging.getLogger(__name__)


class PdfVariant(str, enum.Enum):
    """Rendered copies of an admission record."""

    STUDENT = "student"
    COUNSELOR = "counselor"
    APPROVED = "approved"


_BANNERS = {
    PdfVariant.STUDENT: ("ADMISSION SUBMITTED - PENDING APPROVAL", colors.HexColor("#b45309")),
    PdfVariant.COUNSELOR: ("PENDING COUNSELOR REVIEW", colors.HexColor("#b45309")),
    PdfVariant.APPROVED: ("ADMISSION APPROVED", colors.HexColor("#15803d")),
}

_EDUCATION_LABELS = ["10th / SSC", "12th / HSC", "Diploma", "Graduation"]


def _text(value: Any) -> str:
    if value is None or value == "":
        return "-"
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return escape(str(value))


def _data_url_image(data_url: str | None, max_width: float, max_height: float) -> Image | None:
    """Decode a data:image/... URL into a scaled flowable, or None."""
    if not data_url or not data_url.startswith("data:image") or "," not in data_url:
        return None
    try:
        raw = base64.b64decode(data_url.split(",", 1)[1])
        width, height = ImageReader(BytesIO(raw)).getSize()
    except (binascii.Error, ValueError, OSError) as e:
        logger.warning(f"Skipping unreadable embedded image: {e}")
        return None

    scale = min(max_width / width, max_height / height, 1.0)
    return Image(BytesIO(raw), width=width * scale, height=height * scale)


def _kv_table(rows: list[tuple[str, Any]]) -> Table:
    body = ParagraphStyle("cell", fontSize=9, leading=11)
    data = [[Paragraph(f"<b>{label}</b>", body), Paragraph(_text(value), body)] for label, value in rows]
    table = Table(data, colWidths=[5 * cm, 12 * cm])
    table.setStyle(
        TableStyle(
            [
                ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#d1d5db")),
                ("BACKGROUND", (0, 0), (0, -1), colors.HexColor("#f3f4f6")),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ]
        )
    )
    return table


def _education_table(rows: list[dict[str, Any]]) -> Table:
    body = ParagraphStyle("cell", fontSize=9, leading=11)
    header = ["Level", "Qualification", "School / College", "Year", "%"]
    data = [[Paragraph(f"<b>{h}</b>", body) for h in header]]
    for index, row in enumerate(rows):
        label = _EDUCATION_LABELS[index] if index < len(_EDUCATION_LABELS) else f"Row {index + 1}"
        data.append(
            [
                Paragraph(label, body),
                Paragraph(_text(row.get("qualification")), body),
                Paragraph(_text(row.get("school")), body),
                Paragraph(_text(row.get("year")), body),
                Paragraph(_text(row.get("percentage")), body),
            ]
        )
    table = Table(data, colWidths=[2.8 * cm, 3.5 * cm, 6.2 * cm, 2 * cm, 2.5 * cm])
    table.setStyle(
        TableStyle(
            [
                ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#d1d5db")),
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f3f4f6")),
            ]
        )
    )
    return table


def build_admission_pdf(document: dict[str, Any], variant: PdfVariant) -> bytes:
    """
    Render an admission document to PDF bytes.

    Args:
        document: Nested admission data (personal, course, education, ids,
            center, uploads, signatures, tc, fees, ...)
        variant: Which copy to render

    Returns:
        The PDF file content
    """
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=2 * cm,
        rightMargin=2 * cm,
        topMargin=1.5 * cm,
        bottomMargin=1.5 * cm,
        title="Admission Form",
    )
    styles = getSampleStyleSheet()
    heading = styles["Heading2"]
    small = ParagraphStyle("small", parent=styles["Normal"], fontSize=8, leading=10)

    banner_text, banner_color = _BANNERS[variant]
    banner = ParagraphStyle(
        "banner", parent=styles["Title"], fontSize=13, textColor=banner_color, spaceAfter=6
    )

    personal = document.get("personal") or {}
    course = document.get("course") or {}
    ids = document.get("ids") or {}
    center = document.get("center") or {}
    uploads = document.get("uploads") or {}
    signatures = document.get("signatures") or {}
    tc = document.get("tc") or {}
    fees = document.get("fees") or {}

    content: list[Any] = [
        Paragraph("Admission Form", styles["Title"]),
        Paragraph(banner_text, banner),
    ]
    if document.get("id"):
        content.append(Paragraph(f"Admission ID: {_text(document['id'])}", small))
    content.append(Spacer(1, 0.4 * cm))

    photo = _data_url_image(uploads.get("photo_data_url"), 3.5 * cm, 4.5 * cm)
    if photo is not None:
        content.extend([photo, Spacer(1, 0.3 * cm)])

    content.append(Paragraph("Personal Details", heading))
    content.append(
        _kv_table(
            [
                ("Name", " ".join(filter(None, [personal.get("salutation"), personal.get("full_name")]))),
                ("Father / Guardian", personal.get("guardian_name")),
                ("Address", personal.get("address")),
                ("Parent Mobile", personal.get("parent_mobile")),
                ("Student Mobile", personal.get("student_mobile")),
                ("WhatsApp", personal.get("whatsapp_mobile")),
                ("Email", personal.get("email")),
            ]
        )
    )

    content.append(Paragraph("Course", heading))
    content.append(
        _kv_table(
            [
                ("Course", course.get("name") or course.get("training_only_course")),
                ("Plan", "Training only" if course.get("training_only") else "Job guarantee"),
                ("Reference", course.get("reference")),
                ("Center", center.get("place_of_admission")),
                ("Mode", center.get("mode")),
            ]
        )
    )

    education = document.get("education") or []
    if education:
        content.append(Paragraph("Education", heading))
        content.append(_education_table(education))

    content.append(Paragraph("Identity Documents", heading))
    content.append(
        _kv_table(
            [
                ("PAN", ids.get("pan")),
                ("Aadhaar / Driving Licence", ids.get("aadhaar_or_driving")),
                ("PAN document", "Attached" if uploads.get("pan_url") else None),
                ("Aadhaar document", "Attached" if uploads.get("aadhaar_url") else None),
            ]
        )
    )

    if variant is not PdfVariant.STUDENT and fees:
        content.append(Paragraph("Fees", heading))
        content.append(
            _kv_table(
                [
                    ("Registration fee", fees.get("amount")),
                    ("Payment mode", fees.get("payment_mode")),
                    ("Total fees", fees.get("total_fees")),
                    ("Pending fees", fees.get("pending_fees")),
                ]
            )
        )

    if tc.get("text"):
        content.append(Paragraph(f"Terms &amp; Conditions (version {_text(tc.get('version'))})", heading))
        for line in str(tc["text"]).splitlines():
            if line.strip():
                content.append(Paragraph(escape(line), small))

    content.append(Paragraph("Signatures", heading))
    sign_row = []
    for role, label in (("student", "Student"), ("parent", "Parent / Guardian")):
        sign = signatures.get(role) or {}
        image = _data_url_image(sign.get("sign_data_url"), 6 * cm, 2.5 * cm)
        cell: list[Any] = [image] if image is not None else [Paragraph("(not signed)", small)]
        cell.append(Paragraph(f"{label}: {_text(sign.get('full_name'))}", small))
        sign_row.append(cell)
    content.append(Table([sign_row], colWidths=[8.5 * cm, 8.5 * cm]))

    doc.build(content)
    return buffer.getvalue()

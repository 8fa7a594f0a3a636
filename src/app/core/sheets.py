"""
Google Sheets Bookkeeping Mirror

Mirrors admission records into per-counselor spreadsheets, one worksheet per
course, newest row first. The database is the source of truth: rows are only
ever appended or overwritten in full from a record snapshot, never patched.
Rows are found by admission id across all of a counselor's worksheets, so a
course change moves the row to the new course's worksheet.

All gspread calls are blocking and run in a worker thread. When no service
account is configured the mirror is disabled and calls are logged.
"""

import asyncio
import logging
import re
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any
from zoneinfo import ZoneInfo

import gspread
from gspread.utils import rowcol_to_a1

from app.core.config import settings

logger = logging.getLogger(__name__)

IST = ZoneInfo("Asia/Kolkata")
DEFAULT_WORKSHEET = "Admissions"

SHEET_HEADERS = [
    "Timestamp (IST)",
    "Status",
    "Center",
    "CounselorKey",
    "Full Name",
    "Father/Guardian",
    "Address",
    "Parent Mobile",
    "Student Mobile",
    "WhatsApp Mobile",
    "Email",
    "Course",
    "Reference",
    "10th - Qualification",
    "10th - School/College",
    "10th - Year",
    "10th - %",
    "12th - Qualification",
    "12th - School/College",
    "12th - Year",
    "12th - %",
    "Diploma - Qualification",
    "Diploma - School/College",
    "Diploma - Year",
    "Diploma - %",
    "Graduation - Qualification",
    "Graduation - School/College",
    "Graduation - Year",
    "Graduation - %",
    "Photo URL",
    "PAN Number",
    "PAN File URL",
    "Aadhaar/Driving Number",
    "Aadhaar/Driving File URL",
    "Mode",
    "Student Sign Name",
    "Parent Sign Name",
    "Plan Type",
    "T&C Type",
    "T&C Accepted",
    "PDF URL",
    "AdmissionID",
    "Approved At",
    "Approved PDF",
    "Fee Amount",
    "Fee Mode",
    "Total Fees",
    "Pending Fees",
    "Instalment 1 Date",
    "Instalment 1 Amount",
    "Instalment 2 Date",
    "Instalment 2 Amount",
    "Instalment 3 Date",
    "Instalment 3 Amount",
    "EMI",
    "Cheque",
]

ADMISSION_ID_COLUMN = SHEET_HEADERS.index("AdmissionID") + 1
STATUS_COLUMN = SHEET_HEADERS.index("Status") + 1
APPROVED_AT_COLUMN = SHEET_HEADERS.index("Approved At") + 1
APPROVED_PDF_COLUMN = SHEET_HEADERS.index("Approved PDF") + 1


def is_enabled() -> bool:
    return bool(settings.google_service_account_file)


def spreadsheet_id_for(counselor_key: str | None) -> str:
    if counselor_key == "c2":
        return settings.sheets_counselor_2_id
    return settings.sheets_counselor_1_id


def worksheet_title(course_name: str | None) -> str:
    """Sheet titles cannot contain []:*?/\\ and are limited to 100 chars."""
    title = re.sub(r"[\[\]:*?/\\]", " ", course_name or "").strip()
    return title[:100] or DEFAULT_WORKSHEET


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value)


def _education(rows: list[dict[str, Any]], index: int) -> list[str]:
    row = rows[index] if index < len(rows) else {}
    return [_cell(row.get(key)) for key in ("qualification", "school", "year", "percentage")]


def _format_date(value: Any) -> str:
    if not value:
        return ""
    if isinstance(value, datetime):
        return value.astimezone(IST).strftime("%d/%m/%Y")
    try:
        return datetime.fromisoformat(str(value)).strftime("%d/%m/%Y")
    except ValueError:
        return str(value)


def build_row(document: dict[str, Any]) -> list[str]:
    """
    Flatten an admission document into one row matching SHEET_HEADERS.

    Args:
        document: Nested admission data including "id", "status",
            "counselor_key" and "pdf_url" (the current artifact)
    """
    personal = document.get("personal") or {}
    course = document.get("course") or {}
    center = document.get("center") or {}
    ids = document.get("ids") or {}
    uploads = document.get("uploads") or {}
    signatures = document.get("signatures") or {}
    tc = document.get("tc") or {}
    fees = document.get("fees") or {}
    workflow = document.get("workflow") or {}
    education = document.get("education") or []
    dates = fees.get("instalment_dates") or []
    amounts = fees.get("instalment_amounts") or []

    instalments: list[str] = []
    for i in range(3):
        instalments.append(_format_date(dates[i] if i < len(dates) else None))
        instalments.append(_cell(amounts[i] if i < len(amounts) else None))

    plan_type = document.get("plan_type") or "job"

    return [
        datetime.now(UTC).astimezone(IST).strftime("%d/%m/%Y, %H:%M:%S"),
        _cell(document.get("status") or "pending").capitalize(),
        _cell(center.get("place_of_admission")),
        _cell(document.get("counselor_key")),
        _cell(personal.get("full_name")),
        _cell(personal.get("guardian_name")),
        _cell(personal.get("address")),
        _cell(personal.get("parent_mobile")),
        _cell(personal.get("student_mobile")),
        _cell(personal.get("whatsapp_mobile")),
        _cell(personal.get("email")),
        _cell(course.get("name") or course.get("training_only_course")),
        _cell(course.get("reference")),
        *_education(education, 0),
        *_education(education, 1),
        *_education(education, 2),
        *_education(education, 3),
        _cell(uploads.get("photo_url")),
        _cell(ids.get("pan")),
        _cell(uploads.get("pan_url")),
        _cell(ids.get("aadhaar_or_driving")),
        _cell(uploads.get("aadhaar_url")),
        _cell(center.get("mode")),
        _cell((signatures.get("student") or {}).get("full_name")),
        _cell((signatures.get("parent") or {}).get("full_name")),
        plan_type,
        _cell(tc.get("type")),
        "Yes" if tc.get("accepted") else "No",
        _cell(document.get("pdf_url")),
        _cell(document.get("id")),
        _cell(workflow.get("admin_approved_at")),
        _cell((document.get("pdf") or {}).get("approved_url")),
        _cell(fees.get("amount")),
        _cell(fees.get("payment_mode")),
        _cell(fees.get("total_fees")),
        _cell(fees.get("pending_fees")),
        *instalments,
        "Yes" if fees.get("is_emi") else "No",
        "Yes" if fees.get("is_cheque") else "No",
    ]


@lru_cache(maxsize=1)
def _get_client(service_account_file: str) -> gspread.Client:
    return gspread.service_account(filename=service_account_file)


def _spreadsheet(counselor_key: str | None) -> gspread.Spreadsheet | None:
    spreadsheet_id = spreadsheet_id_for(counselor_key)
    if not spreadsheet_id:
        logger.warning(f"No spreadsheet configured for counselor key {counselor_key!r}")
        return None
    return _get_client(settings.google_service_account_file).open_by_key(spreadsheet_id)


def _course_worksheet(spreadsheet: gspread.Spreadsheet, course_name: str | None) -> gspread.Worksheet:
    title = worksheet_title(course_name)
    try:
        worksheet = spreadsheet.worksheet(title)
    except gspread.WorksheetNotFound:
        worksheet = spreadsheet.add_worksheet(title=title, rows=1000, cols=len(SHEET_HEADERS))

    if worksheet.row_values(1) != SHEET_HEADERS:
        worksheet.update(
            range_name=f"A1:{rowcol_to_a1(1, len(SHEET_HEADERS))}",
            values=[SHEET_HEADERS],
        )
    return worksheet


def _locate_row(
    spreadsheet: gspread.Spreadsheet,
    admission_id: str,
) -> tuple[gspread.Worksheet, int] | None:
    """Find the admission's row in any course worksheet of the spreadsheet."""
    for worksheet in spreadsheet.worksheets():
        cell = worksheet.find(admission_id, in_column=ADMISSION_ID_COLUMN)
        if cell:
            return worksheet, cell.row
    return None


def _course_name(document: dict[str, Any]) -> str | None:
    return (document.get("course") or {}).get("name")


def _append_sync(document: dict[str, Any]) -> None:
    spreadsheet = _spreadsheet(document.get("counselor_key"))
    if spreadsheet is None:
        return
    worksheet = _course_worksheet(spreadsheet, _course_name(document))
    # Newest first: insert directly under the header row
    worksheet.insert_row(build_row(document), index=2, value_input_option="USER_ENTERED")


def _update_sync(document: dict[str, Any]) -> None:
    spreadsheet = _spreadsheet(document.get("counselor_key"))
    if spreadsheet is None:
        return

    admission_id = str(document.get("id"))
    row = build_row(document)
    target = _course_worksheet(spreadsheet, _course_name(document))
    located = _locate_row(spreadsheet, admission_id)

    if located is not None and located[0].id == target.id:
        row_number = located[1]
        target.update(
            range_name=f"A{row_number}:{rowcol_to_a1(row_number, len(row))}",
            values=[row],
            value_input_option="USER_ENTERED",
        )
        return

    if located is None:
        logger.info(f"No sheet row for admission {admission_id}, appending instead")
    else:
        # Course changed: the row moves to the new course's worksheet
        previous, row_number = located
        logger.info(
            f"Moving sheet row for admission {admission_id} from {previous.title!r} to {target.title!r}"
        )
        previous.delete_rows(row_number)
    target.insert_row(row, index=2, value_input_option="USER_ENTERED")


def _set_status_sync(
    counselor_key: str | None,
    admission_id: str,
    status: str,
    approved_pdf_url: str | None,
) -> None:
    spreadsheet = _spreadsheet(counselor_key)
    if spreadsheet is None:
        return

    located = _locate_row(spreadsheet, admission_id)
    if located is None:
        logger.warning(f"No sheet row for admission {admission_id}, status not mirrored")
        return

    worksheet, row_number = located
    worksheet.update_cell(row_number, STATUS_COLUMN, status.capitalize())
    if approved_pdf_url:
        worksheet.update_cell(
            row_number,
            APPROVED_AT_COLUMN,
            datetime.now(UTC).astimezone(IST).strftime("%d/%m/%Y, %H:%M:%S"),
        )
        worksheet.update_cell(row_number, APPROVED_PDF_COLUMN, approved_pdf_url)


async def append_admission_row(document: dict[str, Any]) -> None:
    """Insert a new row for a freshly created admission."""
    if not is_enabled():
        logger.info(f"Sheets mirror disabled - skipping append for {document.get('id')}")
        return
    await asyncio.to_thread(_append_sync, document)


async def update_admission_row(document: dict[str, Any]) -> None:
    """Overwrite the admission's whole row (appends it if missing)."""
    if not is_enabled():
        logger.info(f"Sheets mirror disabled - skipping update for {document.get('id')}")
        return
    await asyncio.to_thread(_update_sync, document)


async def set_admission_status(
    counselor_key: str | None,
    admission_id: str,
    status: str,
    approved_pdf_url: str | None = None,
) -> None:
    """Flip the status cell (and approval columns) of an existing row."""
    if not is_enabled():
        logger.info(f"Sheets mirror disabled - skipping status for {admission_id}")
        return
    await asyncio.to_thread(
        _set_status_sync, counselor_key, admission_id, status, approved_pdf_url
    )

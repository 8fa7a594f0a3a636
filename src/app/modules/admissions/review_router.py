"""
Admissions Review Router

Server-rendered pages and form posts for counselors and admins. Links to
these pages are sent by email.

Endpoints:
- GET /admissions/{id}/review - Counselor review page
- GET /admissions/{id}/admin-review - Admin review page
- POST /admissions/{id}/request-edit - Counselor asks the student for corrections
- POST /admissions/{id}/request-edit-to-counselor - Admin sends flags to the counselor
- POST /admissions/{id}/submit-to-admin - Counselor submits fees to admin
- POST /admissions/{id}/approve - Admin approves
- GET /admissions/{id}/approve - Always 403 (approval must be a form post)

Errors are rendered as HTML pages with the matching status code.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.modules.admissions import service, views
from app.modules.admissions.exceptions import AdmissionServiceError

logger = logging.getLogger(__name__)

review_router = APIRouter()


def _error_page(e: AdmissionServiceError) -> HTMLResponse:
    return HTMLResponse(
        views.render_message("Request failed", e.message, success=False),
        status_code=e.status_code,
    )


def _unexpected_page() -> HTMLResponse:
    return HTMLResponse(
        views.render_message(
            "Request failed",
            "An unexpected error occurred. Please try again later.",
            success=False,
        ),
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


@review_router.get("/{admission_id}/review", response_class=HTMLResponse)
async def counselor_review_page(
    admission_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> HTMLResponse:
    try:
        view = await service.get_review_view(db, admission_id)
    except AdmissionServiceError as e:
        return _error_page(e)
    return HTMLResponse(views.render_counselor_review(view))


@review_router.get("/{admission_id}/admin-review", response_class=HTMLResponse)
async def admin_review_page(
    admission_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> HTMLResponse:
    try:
        view = await service.get_review_view(db, admission_id)
    except AdmissionServiceError as e:
        return _error_page(e)
    return HTMLResponse(views.render_admin_review(view))


@review_router.post("/{admission_id}/request-edit", response_class=HTMLResponse)
async def request_edit(
    admission_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> HTMLResponse:
    form = await request.form()
    try:
        grant = await service.request_edit(db, admission_id, form)
    except AdmissionServiceError as e:
        logger.warning(f"Edit request rejected for {admission_id}: {e.error_code}")
        return _error_page(e)
    except Exception as e:
        logger.exception(f"Unexpected error requesting edit on {admission_id}: {e}")
        return _unexpected_page()

    opened = ", ".join(grant.sections)
    return HTMLResponse(
        views.render_message(
            "Edit request sent",
            f"The student has been emailed a link to edit: {opened}.",
        )
    )


@review_router.post("/{admission_id}/request-edit-to-counselor", response_class=HTMLResponse)
async def request_edit_to_counselor(
    admission_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> HTMLResponse:
    form = await request.form()
    try:
        await service.request_edit_to_counselor(db, admission_id, form)
    except AdmissionServiceError as e:
        logger.warning(f"Counselor edit request rejected for {admission_id}: {e.error_code}")
        return _error_page(e)
    except Exception as e:
        logger.exception(f"Unexpected error requesting counselor edit on {admission_id}: {e}")
        return _unexpected_page()

    return HTMLResponse(
        views.render_message("Changes requested", "The counselor has been notified.")
    )


@review_router.post("/{admission_id}/submit-to-admin", response_class=HTMLResponse)
async def submit_to_admin(
    admission_id: UUID,
    fee_amount: str = Form(""),
    fee_mode: str = Form(""),
    submitted_by: str | None = Form(None),
    db: AsyncSession = Depends(get_db),
) -> HTMLResponse:
    try:
        admission = await service.submit_to_admin(db, admission_id, fee_amount, fee_mode, submitted_by)
    except AdmissionServiceError as e:
        logger.warning(f"Submit to admin rejected for {admission_id}: {e.error_code}")
        return _error_page(e)
    except Exception as e:
        logger.exception(f"Unexpected error submitting {admission_id} to admin: {e}")
        return _unexpected_page()

    return HTMLResponse(
        views.render_message(
            "Submitted to admin",
            f"{admission.student_name}'s admission has been sent to the admins for approval.",
        )
    )


@review_router.post("/{admission_id}/approve", response_class=HTMLResponse)
async def approve(
    admission_id: UUID,
    fee_amount: str | None = Form(None),
    fee_mode: str | None = Form(None),
    approved_by: str | None = Form(None),
    db: AsyncSession = Depends(get_db),
) -> HTMLResponse:
    try:
        admission = await service.approve(db, admission_id, fee_amount, fee_mode, approved_by)
    except AdmissionServiceError as e:
        logger.warning(f"Approval rejected for {admission_id}: {e.error_code}")
        return _error_page(e)
    except Exception as e:
        logger.exception(f"Unexpected error approving {admission_id}: {e}")
        return _unexpected_page()

    return HTMLResponse(
        views.render_message(
            "Admission approved",
            f"{admission.student_name}'s admission is approved and the PDF has been emailed.",
        )
    )


@review_router.get("/{admission_id}/approve", response_class=HTMLResponse)
async def approve_via_get(admission_id: UUID) -> HTMLResponse:
    return HTMLResponse(
        views.render_message(
            "Not allowed",
            "Approval is only allowed from the admin review page.",
            success=False,
        ),
        status_code=status.HTTP_403_FORBIDDEN,
    )

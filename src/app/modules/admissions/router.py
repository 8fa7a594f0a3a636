"""
Admissions Router

Public JSON endpoints for the student-facing admission form.
No account is required; submissions are authorized by OTP and edits by
the single-use edit grant.

Endpoints:
- POST /admissions/init - Submit the form (multipart), sends mobile + email OTPs
- POST /admissions/verify - Verify an OTP channel (mobile first, then email)
- GET /admissions/{id}/edit-data - Prefill data for an open edit window
- POST /admissions/{id}/apply-edit - Apply the student's corrections

Security:
- Rate limiting on init (per client IP) and verify (per pending submission)
- OTPs stored as keyed hashes, compared in constant time
- Edit authorization comes only from the stored grant; the sections/fields
  query parameters of the edit link are display hints
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.rate_limit import client_ip, enforce_rate_limit
from app.modules.admissions import service
from app.modules.admissions.exceptions import AdmissionServiceError
from app.modules.admissions.schemas import (
    ApplyEditRequest,
    ApplyEditResponse,
    EditDataResponse,
    InitResponse,
    UploadedDocument,
    VerifyRequest,
    VerifyResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def to_http_exception(e: AdmissionServiceError) -> HTTPException:
    return HTTPException(
        status_code=e.status_code,
        detail={
            "error": e.error_code,
            "message": e.message,
        },
    )


def internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


async def _read_upload(upload: UploadFile | None) -> UploadedDocument | None:
    if upload is None:
        return None
    content = await upload.read()
    if not content:
        return None
    return UploadedDocument(
        filename=upload.filename or "upload",
        content_type=upload.content_type or "application/octet-stream",
        content=content,
    )


@router.post(
    "/init",
    response_model=InitResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit admission form",
    description="""
    Submit the admission form and start OTP verification.

    The form is sent as multipart data:
    - **payload**: JSON with personal, course, education, ids, center,
      signatures (names), terms_accepted, tc_version, tc_text
    - **photo** (required), **pan**, **aadhaar**: file uploads
    - **student_sign_data_url**, **parent_sign_data_url**: signature images
      as data URLs (both required)

    A 6-digit code is sent to the student's mobile and another to their
    email. Both expire after 15 minutes.
    """,
)
async def init_admission(
    request: Request,
    payload: str = Form(""),
    photo: UploadFile | None = File(None),
    pan: UploadFile | None = File(None),
    aadhaar: UploadFile | None = File(None),
    student_sign_data_url: str | None = Form(None),
    parent_sign_data_url: str | None = Form(None),
    c: str | None = Query(None, description="Counselor key (c1/c2)"),
) -> InitResponse:
    """
    Raises:
        HTTPException 400: Missing required data
        HTTPException 429: Too many submissions from this client
        HTTPException 502: An upload could not be stored
    """
    await enforce_rate_limit(
        f"rl:admissions:init:{client_ip(request)}",
        settings.init_rate_limit,
        settings.rate_limit_window_seconds,
    )

    try:
        return await service.init_admission(
            payload_json=payload,
            photo=await _read_upload(photo),
            pan=await _read_upload(pan),
            aadhaar=await _read_upload(aadhaar),
            student_sign_data_url=student_sign_data_url,
            parent_sign_data_url=parent_sign_data_url,
            counselor_hint=c,
        )
    except AdmissionServiceError as e:
        logger.warning(f"Admission init rejected: {e.error_code} - {e.message}")
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error during admission init: {e}")
        raise internal_error() from e


@router.post(
    "/verify",
    response_model=VerifyResponse,
    response_model_exclude_none=True,
    summary="Verify OTP",
    description="""
    Verify one OTP channel.

    The mobile code must be verified first. A correct email code creates the
    admission and returns its id and PDF link. Repeating a completed
    verification returns the same result.
    """,
)
async def verify_otp(
    data: VerifyRequest,
    db: AsyncSession = Depends(get_db),
) -> VerifyResponse:
    """
    Raises:
        HTTPException 400: Wrong or expired code, or email before mobile
        HTTPException 404: Unknown pending submission
        HTTPException 409: Finalization already in progress
        HTTPException 429: Too many attempts
        HTTPException 500: The admission PDF could not be generated
    """
    await enforce_rate_limit(
        f"rl:admissions:verify:{data.pending_id}",
        settings.verify_rate_limit,
        settings.rate_limit_window_seconds,
    )

    try:
        response = await service.verify_submission(db, data)
        logger.info(f"OTP verify {data.channel.value} for {data.pending_id}: {response.step}")
        return response
    except AdmissionServiceError as e:
        logger.warning(f"OTP verify failed for {data.pending_id}: {e.error_code}")
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error verifying {data.pending_id}: {e}")
        raise internal_error() from e


@router.get(
    "/{admission_id}/edit-data",
    response_model=EditDataResponse,
    summary="Get data for an edit window",
)
async def get_edit_data(
    admission_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> EditDataResponse:
    """
    Raises:
        HTTPException 400: No active edit window (EDIT_LINK_EXPIRED)
        HTTPException 404: Admission not found
    """
    try:
        return await service.get_edit_data(db, admission_id)
    except AdmissionServiceError as e:
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error loading edit data for {admission_id}: {e}")
        raise internal_error() from e


@router.post(
    "/{admission_id}/apply-edit",
    response_model=ApplyEditResponse,
    summary="Apply student corrections",
)
async def apply_edit(
    admission_id: UUID,
    data: ApplyEditRequest,
    db: AsyncSession = Depends(get_db),
) -> ApplyEditResponse:
    """
    Raises:
        HTTPException 400: No active edit window (EDIT_LINK_EXPIRED)
        HTTPException 404: Admission not found
        HTTPException 409: Admission busy or no longer editable
    """
    try:
        admission = await service.apply_edit(db, admission_id, data.updated)
    except AdmissionServiceError as e:
        logger.warning(f"Apply edit rejected for {admission_id}: {e.error_code}")
        raise to_http_exception(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error applying edit to {admission_id}: {e}")
        raise internal_error() from e

    return ApplyEditResponse(
        success=True,
        id=admission.id,
        message="Your changes have been submitted for review.",
    )

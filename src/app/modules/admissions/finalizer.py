"""
Submission Finalizer

Turns a fully verified pending submission into a durable admission.

Steps:
1. Render and store the student and counselor PDFs (mandatory)
2. Persist the admission with status pending (mandatory)
3. Append the sheet row (best-effort)
4. Email the student a confirmation (best-effort)
5. Email the routed counselor a review request with the PDF (best-effort)

Nothing is persisted if step 1 fails, so the pending submission can be
retried. The pending store guarantees this runs once per submission.
"""

import logging
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from app.core import sheets
from app.core.email import EmailAttachment, send_admission_received, send_counselor_review_request
from app.modules.admissions import repository
from app.modules.admissions.artifacts import PDF_CONTENT_TYPE, render_pending_pair
from app.modules.admissions.exceptions import PendingSubmissionNotFoundError
from app.modules.admissions.helpers import admission_to_document, counselor_emails, review_url
from app.modules.admissions.schemas import FinalizedSubmission, PendingSubmission

logger = logging.getLogger(__name__)


async def finalize_submission(db: AsyncSession, entry: PendingSubmission) -> FinalizedSubmission:
    """
    Create the admission for a verified submission.

    Raises:
        ArtifactGenerationFailedError: If the PDFs could not be produced
        PendingSubmissionNotFoundError: If the entry no longer holds a draft
    """
    if not entry.payload:
        raise PendingSubmissionNotFoundError()

    admission = repository.build_admission(uuid4(), entry.payload)
    student_pdf, counselor_pdf = await render_pending_pair(admission.id, admission_to_document(admission))

    admission.pending_student_pdf_url = student_pdf.url
    admission.pending_counselor_pdf_url = counselor_pdf.url
    admission = await repository.create(db, admission)
    logger.info(f"Admission {admission.id} created from pending submission {entry.id}")

    document = admission_to_document(admission)

    try:
        await sheets.append_admission_row(document)
    except Exception as e:
        logger.error(f"Sheet append failed for admission {admission.id}: {e}")

    if admission.student_email:
        await send_admission_received(
            to_email=admission.student_email,
            student_name=admission.student_name,
            course_name=admission.course_name,
            pdf_url=student_pdf.url,
        )

    recipients = counselor_emails(admission.counselor_key)
    if recipients:
        await send_counselor_review_request(
            to_emails=recipients,
            student_name=admission.student_name,
            course_name=admission.course_name,
            center=admission.center_name,
            review_url=review_url(admission.id),
            pdf_url=counselor_pdf.url,
            attachment=EmailAttachment(
                filename=counselor_pdf.filename,
                content=counselor_pdf.content,
                content_type=PDF_CONTENT_TYPE,
            ),
        )
    else:
        logger.warning(f"No counselor emails configured for {admission.counselor_key}")

    return FinalizedSubmission(admission_id=admission.id, primary_pdf_url=student_pdf.url)

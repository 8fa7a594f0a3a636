"""
Email Service using Resend

Transactional mail for the admission workflow: OTP codes, submission
confirmations, counselor review requests, edit requests and approvals.

Every sender returns a bool and never raises; callers treat mail as
best-effort and log failures.
"""

import asyncio
import logging
from dataclasses import dataclass
from html import escape

import resend

from app.core.config import settings

logger = logging.getLogger(__name__)

resend.api_key = settings.resend_api_key

_STYLE = """
    body { font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }
    .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
    .header { color: #1e3a8a; margin-bottom: 24px; }
    .button { display: inline-block; background-color: #2563eb; color: white; padding: 12px 24px; text-decoration: none; border-radius: 8px; margin: 20px 0; font-weight: 600; }
    .otp { font-size: 28px; letter-spacing: 6px; font-weight: 700; background: #f3f4f6; padding: 12px 20px; border-radius: 8px; display: inline-block; }
    .summary-box { background-color: #f9fafb; border: 1px solid #e5e7eb; padding: 16px; border-radius: 8px; margin: 16px 0; }
    .summary-box ul { margin: 8px 0 0 0; padding-left: 20px; }
    .warning { background-color: #fef3c7; border: 1px solid #f59e0b; padding: 16px; border-radius: 8px; margin: 16px 0; }
    .footer { margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }
"""


@dataclass
class EmailAttachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


def _page(title: str, body: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head><style>{_STYLE}</style></head>
    <body>
        <div class="container">
            <h1 class="header">{title}</h1>
            {body}
            <div class="footer">
                <p>This is an automated message from the Admissions Office.</p>
            </div>
        </div>
    </body>
    </html>
    """


async def send_email(
    to: str | list[str],
    subject: str,
    html_content: str,
    attachments: list[EmailAttachment] | None = None,
) -> bool:
    """
    Send an email using Resend.

    Args:
        to: Recipient address or list of addresses
        subject: Email subject line
        html_content: HTML body
        attachments: Optional file attachments

    Returns:
        True if the email was sent (or logged when no API key is configured)
    """
    recipients = [to] if isinstance(to, str) else [r for r in to if r]
    if not recipients:
        logger.warning(f"No recipients for email '{subject}' - not sent")
        return False

    if not resend.api_key:
        logger.warning("RESEND_API_KEY not set - logging email instead of sending")
        logger.info(f"EMAIL TO: {', '.join(recipients)} | SUBJECT: {subject}")
        return True

    try:
        params: resend.Emails.SendParams = {
            "from": settings.email_from,
            "to": recipients,
            "subject": subject,
            "html": html_content,
        }
        if attachments:
            params["attachments"] = [
                {"filename": a.filename, "content": list(a.content), "content_type": a.content_type}
                for a in attachments
            ]

        # Resend's client is synchronous
        email = await asyncio.to_thread(resend.Emails.send, params)
        logger.info(f"Email '{subject}' sent to {', '.join(recipients)}, id: {email['id']}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email '{subject}' to {', '.join(recipients)}: {e}")
        return False


async def send_otp_email(to_email: str, student_name: str, otp: str, ttl_minutes: int) -> bool:
    """Send the email-channel OTP."""
    body = f"""
        <p>Hello {escape(student_name)},</p>
        <p>Use this code to verify the email address on your admission form:</p>
        <p class="otp">{escape(otp)}</p>
        <p><strong>The code expires in {ttl_minutes} minutes.</strong></p>
        <p>You will be asked for it after your mobile number has been verified.</p>
    """
    return await send_email(
        to=to_email,
        subject="Your admission verification code",
        html_content=_page("Verify Your Email", body),
    )


async def send_admission_received(
    to_email: str,
    student_name: str,
    course_name: str,
    pdf_url: str,
) -> bool:
    """Confirm a finalized submission to the student."""
    body = f"""
        <p>Hello {escape(student_name)},</p>
        <p>Your admission form for <strong>{escape(course_name)}</strong> has been submitted and is pending approval.</p>
        <p>A counselor will review it shortly. You can download a copy of your form below.</p>
        <a href="{escape(pdf_url)}" class="button">Download Admission Form</a>
    """
    return await send_email(
        to=to_email,
        subject="Admission submitted - pending approval",
        html_content=_page("Admission Received", body),
    )


async def send_counselor_review_request(
    to_emails: list[str],
    student_name: str,
    course_name: str,
    center: str,
    review_url: str,
    pdf_url: str | None,
    attachment: EmailAttachment | None = None,
    edited: bool = False,
) -> bool:
    """Ask the routed counselor to review a new (or edited) admission."""
    intro = (
        "has updated the admission form after your edit request."
        if edited
        else "has submitted a new admission form."
    )
    pdf_link = f'<p>PDF: <a href="{escape(pdf_url)}">Open PDF</a></p>' if pdf_url else ""
    body = f"""
        <p><strong>{escape(student_name)}</strong> {intro}</p>
        <div class="summary-box">
            <ul>
                <li><strong>Course:</strong> {escape(course_name)}</li>
                <li><strong>Center:</strong> {escape(center)}</li>
            </ul>
        </div>
        <a href="{escape(review_url)}" class="button">Review Admission</a>
        {pdf_link}
    """
    title = "Edited Admission Submitted" if edited else "New Admission for Review"
    return await send_email(
        to=to_emails,
        subject=f"{title}: {student_name} ({course_name})",
        html_content=_page(title, body),
        attachments=[attachment] if attachment else None,
    )


async def send_edit_required(
    to_email: str,
    student_name: str,
    edit_link: str,
    notes: str,
    expires_in_hours: int,
) -> bool:
    """Send the student a single-use link to correct flagged fields."""
    notes_block = (
        f'<div class="summary-box"><p><strong>Notes from your counselor:</strong></p>'
        f"<p>{escape(notes)}</p></div>"
        if notes
        else ""
    )
    body = f"""
        <p>Hello {escape(student_name)},</p>
        <p>Your admission form needs some corrections. Only the highlighted fields will be editable.</p>
        {notes_block}
        <a href="{escape(edit_link)}" class="button">Edit Your Form</a>
        <div class="warning">
            <strong>This link can be used once and expires in {expires_in_hours} hours.</strong>
        </div>
    """
    return await send_email(
        to=to_email,
        subject="Admission - edit required",
        html_content=_page("Edit Required", body),
    )


async def send_admin_approval_request(
    to_emails: list[str],
    student_name: str,
    course_name: str,
    center: str,
    fee_amount: float,
    fee_mode: str,
    review_url: str,
    pdf_url: str | None,
    attachment: EmailAttachment | None = None,
) -> bool:
    """Hand an admission to the admins for approval."""
    pdf_link = f'<p>PDF: <a href="{escape(pdf_url)}">Open PDF</a></p>' if pdf_url else ""
    body = f"""
        <div class="summary-box">
            <ul>
                <li><strong>Student:</strong> {escape(student_name)}</li>
                <li><strong>Course:</strong> {escape(course_name)}</li>
                <li><strong>Center:</strong> {escape(center)}</li>
                <li><strong>Fees:</strong> &#8377;{fee_amount:g} &nbsp; <strong>Mode:</strong> {escape(fee_mode)}</li>
            </ul>
        </div>
        <a href="{escape(review_url)}" class="button">Review &amp; Approve</a>
        {pdf_link}
    """
    return await send_email(
        to=to_emails,
        subject=f"Pending Admission for Approval: {student_name}",
        html_content=_page("Admin Approval Required", body),
        attachments=[attachment] if attachment else None,
    )


async def send_admission_approved(
    to_email: str,
    student_name: str,
    course_name: str,
    pdf_url: str,
    attachment: EmailAttachment | None = None,
) -> bool:
    """Send the approved admission PDF to the student."""
    body = f"""
        <p>Hello {escape(student_name)},</p>
        <p>Congratulations! Your admission for <strong>{escape(course_name)}</strong> has been approved.</p>
        <a href="{escape(pdf_url)}" class="button">Download Approved Form</a>
    """
    return await send_email(
        to=to_email,
        subject="Your admission has been approved",
        html_content=_page("Admission Approved", body),
        attachments=[attachment] if attachment else None,
    )


async def send_counselor_edit_requested_by_admin(
    to_emails: list[str],
    student_name: str,
    course_name: str,
    flagged: list[str],
    notes: str,
    review_url: str,
) -> bool:
    """Send an admission back to its counselor with the admin's flags."""
    items = "".join(f"<li>{escape(item)}</li>" for item in flagged) or "<li>See notes</li>"
    notes_block = f"<p><strong>Notes:</strong> {escape(notes)}</p>" if notes else ""
    body = f"""
        <p>An admin has requested changes to the admission of <strong>{escape(student_name)}</strong> ({escape(course_name)}).</p>
        <div class="summary-box">
            <p><strong>Flagged:</strong></p>
            <ul>{items}</ul>
        </div>
        {notes_block}
        <a href="{escape(review_url)}" class="button">Open Review Page</a>
    """
    return await send_email(
        to=to_emails,
        subject=f"Changes requested by admin: {student_name}",
        html_content=_page("Admin Requested Changes", body),
    )

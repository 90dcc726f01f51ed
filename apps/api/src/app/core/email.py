"""
Email Service using Resend

Sends applicant e-mails for permit review decisions. Delivery failures are
reported to the caller as False and never raised.
"""

import asyncio
import logging
from datetime import datetime
from html import escape

import resend

from app.core.config import settings

logger = logging.getLogger(__name__)

if settings.resend_api_key:
    resend.api_key = settings.resend_api_key.get_secret_value()

_STYLE = """
    body { font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }
    .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
    .header { color: #14532d; margin-bottom: 24px; }
    .box { background-color: #f3f4f6; border-radius: 8px; padding: 16px; margin: 16px 0; }
    .footer { margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }
"""


def _render(title: str, body: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head><style>{_STYLE}</style></head>
    <body>
        <div class="container">
            <h1 class="header">{title}</h1>
            {body}
            <div class="footer">
                <p>KRG e-Visit System</p>
            </div>
        </div>
    </body>
    </html>
    """


async def send_email(
    to_email: str,
    subject: str,
    html_content: str,
) -> bool:
    """
    Send an email using Resend.

    Args:
        to_email: Recipient email address
        subject: Email subject line
        html_content: HTML content of the email

    Returns:
        True if email was sent successfully
    """
    if not resend.api_key:
        logger.warning("RESEND_API_KEY not set - logging email instead of sending")
        logger.info(f"EMAIL TO: {to_email} | SUBJECT: {subject}")
        return True

    try:
        params: resend.Emails.SendParams = {
            "from": settings.email_from,
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }

        # Resend's client is synchronous
        email = await asyncio.to_thread(resend.Emails.send, params)
        logger.info(f"Email sent successfully to {to_email}, id: {email['id']}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False


async def send_permit_approved(
    to_email: str,
    applicant_name: str,
    reference_number: str,
    visit_start: datetime,
    visit_end: datetime,
    permit_expiry: datetime,
    credential: str | None = None,
) -> bool:
    """
    Send the approval e-mail carrying the applicant's digital permit.

    The credential goes only to the applicant's own address; public tracking
    never returns it.
    """
    safe_name = escape(applicant_name)
    safe_reference = escape(reference_number)
    track_url = f"{settings.frontend_url}/en/track"
    credential_html = (
        f'<div class="box"><p><strong>Permit Code:</strong></p>'
        f'<p style="word-break: break-all; font-family: monospace;">'
        f"{escape(credential)}</p></div>"
        if credential
        else ""
    )

    body = f"""
        <p>Dear {safe_name},</p>
        <p>Your e-Visit application has been approved.</p>
        <div class="box">
            <p><strong>Reference Number:</strong> {safe_reference}</p>
            <p><strong>Visit Period:</strong> {visit_start:%Y-%m-%d} - {visit_end:%Y-%m-%d}</p>
            <p><strong>Permit Valid Until:</strong> {permit_expiry:%Y-%m-%d}</p>
        </div>
        {credential_html}
        <p>Keep this e-mail. The checkpoint scans your permit code when you enter and when
           you leave. You can follow your application status at
           <a href="{track_url}">{track_url}</a>.</p>
    """
    return await send_email(
        to_email=to_email,
        subject="KRG e-Visit Application Approved",
        html_content=_render("Application Approved", body),
    )


async def send_permit_rejected(
    to_email: str,
    applicant_name: str,
    reference_number: str,
    reason: str | None,
) -> bool:
    """Send the rejection e-mail."""
    safe_name = escape(applicant_name)
    safe_reference = escape(reference_number)
    reason_html = (
        f'<div class="box"><p><strong>Reason:</strong> {escape(reason)}</p></div>' if reason else ""
    )

    body = f"""
        <p>Dear {safe_name},</p>
        <p>We regret to inform you that your e-Visit application has been rejected.</p>
        <p><strong>Reference Number:</strong> {safe_reference}</p>
        {reason_html}
        <p>You may submit a new application with corrected information.</p>
    """
    return await send_email(
        to_email=to_email,
        subject="KRG e-Visit Application Rejected",
        html_content=_render("Application Rejected", body),
    )


async def send_documents_requested(
    to_email: str,
    applicant_name: str,
    reference_number: str,
    notes: str | None,
) -> bool:
    """Ask the applicant to upload additional documents."""
    safe_name = escape(applicant_name)
    safe_reference = escape(reference_number)
    notes_html = f'<div class="box"><p>{escape(notes)}</p></div>' if notes else ""
    track_url = f"{settings.frontend_url}/en/track"

    body = f"""
        <p>Dear {safe_name},</p>
        <p>Your e-Visit application requires additional documentation before it can be processed.</p>
        <p><strong>Reference Number:</strong> {safe_reference}</p>
        {notes_html}
        <p>Please upload the requested documents at <a href="{track_url}">{track_url}</a>.</p>
    """
    return await send_email(
        to_email=to_email,
        subject="KRG e-Visit: Additional Documents Required",
        html_content=_render("Additional Documents Required", body),
    )

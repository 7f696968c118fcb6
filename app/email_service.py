"""
Email Service using Resend
Staff notification emails built from MJML templates
"""

import asyncio
import logging
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import APP_URL, EMAIL_FROM_ADDRESS, RESEND_API_KEY, STUDIO_NAME
from .domain.sto.schemas import BookingRecord, StatusChange
from .domain.sto.status import status_label
from .email_templates import new_booking_template, status_change_template

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailNotConfiguredError(Exception):
    pass


def is_configured() -> bool:
    return bool(RESEND_API_KEY)


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # mjml_to_html returns a dict with 'html' and 'errors' keys
        if result.get("errors"):
            logger.warning(f"MJML compilation warnings: {result['errors']}")
        return result["html"]
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise ValueError(f"Failed to compile MJML template: {e}") from e


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email via Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise EmailNotConfiguredError("Email service not configured")

    html_content = compile_mjml_to_html(mjml_content)
    recipients = [to] if isinstance(to, str) else to

    email_data = {
        "from": from_address or EMAIL_FROM_ADDRESS,
        "to": recipients,
        "subject": subject,
        "html": html_content,
    }

    logger.info(f"📧 Sending email via Resend to: {recipients}")
    # The Resend SDK is blocking; keep it off the event loop
    response = await asyncio.to_thread(resend.Emails.send, email_data)
    logger.info(f"✅ Email sent successfully via Resend: {response}")
    return response


# ============================================
# STO booking notifications
# ============================================


async def send_new_booking_email(to: str, booking: BookingRecord) -> dict:
    mjml_content = new_booking_template(
        applicant_name=booking.applicant_name,
        facility_name=booking.facility_name,
        rental_date=booking.rental_date,
        time_slots=booking.time_slots,
        status_label=status_label(booking.status),
        organization=booking.organization,
        dashboard_url=f"{APP_URL}/bookings",
    )
    return await send_email(
        to=to,
        subject=f"[{STUDIO_NAME}] New booking: {booking.applicant_name} ({booking.rental_date})",
        mjml_content=mjml_content,
    )


async def send_status_change_email(to: str, change: StatusChange) -> dict:
    previous_label = status_label(change.previous_status)
    new_label = status_label(change.new_status)
    mjml_content = status_change_template(
        applicant_name=change.applicant_name,
        facility_name=change.facility_name,
        rental_date=change.rental_date,
        time_slots=change.time_slots,
        previous_label=previous_label,
        new_label=new_label,
        dashboard_url=f"{APP_URL}/bookings",
    )
    return await send_email(
        to=to,
        subject=f"[{STUDIO_NAME}] Booking {new_label}: {change.applicant_name} ({previous_label} -> {new_label})",
        mjml_content=mjml_content,
    )

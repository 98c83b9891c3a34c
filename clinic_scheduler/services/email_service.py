import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from clinic_scheduler.core.config import settings
from clinic_scheduler.models.booking import Booking
from clinic_scheduler.services.notifications import NotificationKind

logger = logging.getLogger(__name__)

_HEADLINES = {
    NotificationKind.CREATED: ("Booking Received", "your appointment is being held while we confirm payment."),
    NotificationKind.CANCELLED: ("Booking Cancelled", "your appointment has been cancelled."),
    NotificationKind.RESCHEDULED: ("Booking Rescheduled", "your appointment has a new time."),
    NotificationKind.REMINDER_DUE: ("Appointment Reminder", "this is a reminder of your upcoming appointment."),
}


def _send_email_sync(to_email: str, subject: str, html_body: str) -> None:
    """Send email via SMTP (blocking). Raises on delivery failure."""
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{settings.from_name} <{settings.from_email}>"
    msg["To"] = to_email
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.from_email, [to_email], msg.as_string())
    logger.info("Email sent to %s", to_email)


def _html_escape(s: str) -> str:
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def manage_booking_url(booking: Booking) -> str:
    return f"{settings.frontend_url.rstrip('/')}/bookings/{booking.confirmation_token}"


def build_booking_email_html(kind: NotificationKind, booking: Booking) -> str:
    headline, lead = _HEADLINES[kind]
    start = booking.appointment_datetime
    date_str = start.strftime("%A, %B %d, %Y")
    time_str = f"{start.strftime('%I:%M %p')} ({booking.duration_minutes}-minute {booking.modality.value.replace('_', ' ').lower()} session)"
    name = _html_escape(booking.first_name or "there")
    manage_section = ""
    if kind != NotificationKind.CANCELLED:
        manage_section = f"""
        <p style="margin:0 0 8px 0;font-size:14px;color:#374151;">Need to change something?
          <a href="{manage_booking_url(booking)}">Manage your booking</a>. Cancellations made at least
          {settings.cancellation_notice_hours} hours ahead are fully refunded.</p>
        """
    return f"""
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{headline}</title>
</head>
<body style="margin:0;padding:0;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;background-color:#f3f4f6;">
  <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="max-width:560px;margin:40px auto;background:#ffffff;border-radius:12px;">
    <tr>
      <td style="padding:32px;">
        <h1 style="margin:0 0 8px 0;font-size:22px;font-weight:600;color:#111827;">{headline}</h1>
        <p style="margin:0 0 24px 0;font-size:15px;color:#6b7280;">Hi {name}, {lead}</p>
        <p style="margin:0;font-size:16px;font-weight:600;color:#111827;">{date_str}</p>
        <p style="margin:0 0 24px 0;font-size:16px;color:#111827;">{time_str}</p>
        {manage_section}
      </td>
    </tr>
    <tr>
      <td style="padding:24px 32px;background:#f9fafb;border-top:1px solid #e5e7eb;font-size:13px;color:#6b7280;">
        <strong style="color:#111827;">{settings.site_name}</strong><br>
        {settings.contact_email} {settings.contact_phone}<br>
        {settings.contact_address}
      </td>
    </tr>
  </table>
</body>
</html>
"""


def send_booking_email(kind: NotificationKind, booking: Booking) -> None:
    subject = f"{settings.site_name} – {_HEADLINES[kind][0]}"
    _send_email_sync(booking.email, subject, build_booking_email_html(kind, booking))


class EmailNotificationSink:
    """Guest e-mail for booking events; SMTP runs in a worker thread."""

    async def notify(self, kind: NotificationKind, booking: Booking) -> None:
        if not settings.email_enabled:
            logger.debug("Email disabled (SMTP not configured), skipping %s for booking %s", kind.value, booking.id)
            return
        await asyncio.to_thread(send_booking_email, kind, booking)

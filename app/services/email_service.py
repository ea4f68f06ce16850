"""Email notification service using SendGrid."""

import base64
import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Attachment, Disposition, FileContent, FileName, FileType, Mail

from app.core.config import settings
from app.models.appointment import Appointment
from app.services.calendar import KIND_LABELS, build_ics

logger = logging.getLogger(__name__)


class EmailService:
    """Fire-and-forget email sender. Failures are logged, never raised."""

    def __init__(self):
        self.api_key = settings.SENDGRID_API_KEY
        self.from_email = settings.SENDGRID_FROM_EMAIL
        self.from_name = settings.SENDGRID_FROM_NAME

        if not self.api_key:
            logger.warning("SENDGRID_API_KEY not configured. Emails will not be sent.")
            self.enabled = False
        else:
            self.client = SendGridAPIClient(self.api_key)
            self.enabled = True
            logger.info("Email service initialized successfully")

    async def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        plain_body: Optional[str] = None,
        ics: Optional[str] = None,
    ) -> bool:
        """
        Send an email.

        Args:
            to: Recipient email address
            subject: Email subject
            html_body: HTML body content
            plain_body: Plain text body (optional)
            ics: iCalendar text to attach as invite.ics (optional)

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.enabled:
            logger.info("Email service disabled. Would have sent to %s: %s", to, subject)
            return False

        try:
            message = Mail(
                from_email=(self.from_email, self.from_name),
                to_emails=to,
                subject=subject,
                html_content=html_body,
            )

            if plain_body:
                message.plain_text_content = plain_body

            if ics:
                message.attachment = Attachment(
                    FileContent(base64.b64encode(ics.encode("utf-8")).decode("ascii")),
                    FileName("invite.ics"),
                    FileType("text/calendar"),
                    Disposition("attachment"),
                )

            response = self.client.send(message)

            if 200 <= response.status_code < 300:
                logger.info("Email sent successfully to %s: %s", to, subject)
                return True
            logger.error("Failed to send email to %s: %s %s", to, response.status_code, response.body)
            return False

        except Exception as e:
            logger.error("Error sending email to %s: %s", to, e)
            return False

    async def send_booking_confirmation(
        self,
        appointment: Appointment,
        customer_email: str,
        customer_name: Optional[str],
        barber_name: Optional[str],
    ) -> bool:
        """Confirmation with the appointment attached as a calendar invite."""
        when = appointment.start_at.strftime("%A, %B %d, %Y at %H:%M UTC")
        service = KIND_LABELS.get(appointment.kind, "Haircut")
        barber = barber_name or "your barber"
        name = customer_name or "there"
        price = "Free" if appointment.price_cents == 0 else f"${appointment.price_cents / 100:.2f}"

        subject = f"Your LaFade appointment on {appointment.start_at.strftime('%b %d')}"

        html_body = f"""
        <html>
            <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
                <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                    <h2 style="color: #111;">You're booked</h2>

                    <p>Hi {name},</p>

                    <p>Your appointment with {barber} is on the books.</p>

                    <div style="background-color: #f5f5f5; padding: 15px; border-radius: 5px; margin: 20px 0;">
                        <p><strong>When:</strong> {when}</p>
                        <p><strong>Service:</strong> {service}</p>
                        <p><strong>Price:</strong> {price}</p>
                    </div>

                    <p style="color: #666; font-size: 14px; margin-top: 40px;">
                        Need to move it? Reschedule from your bookings page.
                    </p>
                </div>
            </body>
        </html>
        """

        plain_body = f"""
        You're booked

        Hi {name},

        Your appointment with {barber} is on the books.

        When: {when}
        Service: {service}
        Price: {price}
        """

        return await self.send_email(
            customer_email,
            subject,
            html_body,
            plain_body,
            ics=build_ics(appointment, barber_name),
        )


# Global instance
email_service = EmailService()

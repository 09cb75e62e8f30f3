"""
Resend email service adapter.

Without a Resend API key (local development) messages are logged instead
of sent.  Delivery failures are logged and reported as ``False``; callers
never fail a request because an email could not be sent.
"""

import logging
from html import escape
from typing import Optional

import resend

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)


class ResendEmailService:
    """Transactional email using the Resend API."""

    def __init__(self):
        if settings.resend_api_key:
            resend.api_key = settings.resend_api_key
        self._from_email = settings.resend_from_email
        self._frontend_url = settings.frontend_url
        self._brand = settings.app_name.replace(" API", "")

    @property
    def is_configured(self) -> bool:
        return bool(settings.resend_api_key)

    async def _send(self, to_email: str, subject: str, html: str, dev_note: str = "") -> bool:
        if not settings.resend_api_key:
            logger.info("[DEV] Email to %s: %s %s", to_email, subject, dev_note)
            return True

        try:
            resend.Emails.send({
                "from": self._from_email,
                "to": to_email,
                "subject": subject,
                "html": html,
            })
            return True
        except Exception as e:
            logger.error("Failed to send '%s' email to %s: %s", subject, to_email, e)
            return False

    def _layout(
        self,
        heading: str,
        body: str,
        button: Optional[tuple[str, str]] = None,
        footer: Optional[str] = None,
    ) -> str:
        """Wrap message content in the shared email template."""
        button_html = ""
        if button:
            label, url = button
            button_html = f"""
                <div style="text-align: center; margin: 32px 0;">
                    <a href="{url}" style="display: inline-block; background: #2F5D62; color: white; text-decoration: none; padding: 14px 32px; border-radius: 12px; font-weight: 500;">
                        {label}
                    </a>
                </div>"""
        footer_html = ""
        if footer:
            footer_html = f"""
                <hr style="border: none; border-top: 1px solid #F1F3F5; margin: 32px 0;">
                <p style="color: #8B8BA7; font-size: 12px; text-align: center;">{footer}</p>"""

        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <meta name="viewport" content="width=device-width, initial-scale=1.0">
        </head>
        <body style="font-family: Georgia, 'Times New Roman', serif; background-color: #F7F3EE; padding: 40px 20px;">
            <div style="max-width: 560px; margin: 0 auto; background: white; border-radius: 16px; padding: 40px;">
                <h1 style="color: #2F5D62; font-size: 24px; text-align: center; margin: 0 0 32px;">{self._brand}</h1>
                <h2 style="color: #1A1A2E; font-size: 20px; margin-bottom: 16px;">{heading}</h2>
                <div style="color: #4A4A68; line-height: 1.6;">{body}</div>{button_html}{footer_html}
            </div>
        </body>
        </html>
        """

    # ── Account emails ───────────────────────────────────────────────────────

    async def send_verification_email(
        self,
        to_email: str,
        user_name: str,
        verification_token: str,
    ) -> bool:
        """
        Send the email address verification link.

        Args:
            to_email: Recipient email address
            user_name: User's name for personalization
            verification_token: JWT verification token

        Returns:
            True if sent (or logged in development), False otherwise
        """
        url = f"{self._frontend_url}/verify-email?token={verification_token}"
        html = self._layout(
            "Verify your email address",
            f"Hi {escape(user_name)},<br><br>Thanks for joining {self._brand}! "
            "Please confirm your email address to activate your account.",
            button=("Verify Email Address", url),
            footer="This link will expire in 24 hours.",
        )
        return await self._send(to_email, f"Verify your {self._brand} account", html, url)

    async def send_password_reset_email(
        self,
        to_email: str,
        user_name: str,
        reset_token: str,
    ) -> bool:
        url = f"{self._frontend_url}/reset-password?token={reset_token}"
        html = self._layout(
            "Reset your password",
            f"Hi {escape(user_name)},<br><br>We received a request to reset your password. "
            "If you didn't make it, you can ignore this email.",
            button=("Reset Password", url),
            footer="This link will expire in 1 hour.",
        )
        return await self._send(to_email, f"Reset your {self._brand} password", html, url)

    async def send_welcome_email(self, to_email: str, user_name: str) -> bool:
        html = self._layout(
            f"Welcome to {self._brand}",
            f"Hi {escape(user_name)},<br><br>Your account is verified. "
            "Browse the bookstore, join a course or save a seat at an upcoming event.",
            button=("Explore the Store", f"{self._frontend_url}/books"),
        )
        return await self._send(to_email, f"Welcome to {self._brand}!", html)

    # ── Commerce emails ──────────────────────────────────────────────────────

    async def send_order_confirmation_email(
        self,
        to_email: str,
        user_name: str,
        order_number: str,
        book_title: str,
        amount: float,
        currency: str,
    ) -> bool:
        """Receipt sent once a book order has been paid."""
        html = self._layout(
            "Thank you for your order",
            f"Hi {escape(user_name)},<br><br>We've received payment for order "
            f"<strong>{escape(order_number)}</strong>.<br><br>"
            f"{escape(book_title)}: {currency} {amount:,.2f}",
            button=("View Order", f"{self._frontend_url}/dashboard/orders"),
        )
        return await self._send(to_email, f"Order confirmed: {order_number}", html)

    async def send_enrollment_email(self, to_email: str, user_name: str, course_title: str) -> bool:
        html = self._layout(
            "You're enrolled!",
            f"Hi {escape(user_name)},<br><br>You now have access to "
            f"<strong>{escape(course_title)}</strong>. Start learning whenever you're ready.",
            button=("Go to Course", f"{self._frontend_url}/dashboard/courses"),
        )
        return await self._send(to_email, f"Welcome to {course_title}", html)

    async def send_course_completion_email(
        self,
        to_email: str,
        user_name: str,
        course_title: str,
    ) -> bool:
        html = self._layout(
            "Congratulations!",
            f"Hi {escape(user_name)},<br><br>You've completed "
            f"<strong>{escape(course_title)}</strong>. Well done!",
        )
        return await self._send(to_email, f"You completed {course_title}", html)

    async def send_event_registration_email(
        self,
        to_email: str,
        user_name: str,
        event_title: str,
        start_date: str,
        location: Optional[str],
        payment_pending: bool = False,
    ) -> bool:
        """Seat confirmation, or a reminder to pay when the ticket is not yet paid."""
        where = escape(location) if location else "Online"
        note = (
            "Your seat is reserved and will be confirmed once payment completes."
            if payment_pending
            else "Your seat is confirmed."
        )
        html = self._layout(
            "Event registration",
            f"Hi {escape(user_name)},<br><br>You're registered for "
            f"<strong>{escape(event_title)}</strong>.<br>When: {escape(start_date)}<br>"
            f"Where: {where}<br><br>{note}",
            button=("View Event", f"{self._frontend_url}/dashboard/events"),
        )
        return await self._send(to_email, f"Registration: {event_title}", html)

    async def send_submission_review_email(
        self,
        to_email: str,
        user_name: str,
        submission_title: str,
        status: str,
        notes: Optional[str] = None,
    ) -> bool:
        """Tell an author their manuscript moved to a new review state."""
        label = status.replace("_", " ")
        body = (
            f"Hi {escape(user_name)},<br><br>Your submission "
            f"<strong>{escape(submission_title)}</strong> is now <strong>{escape(label)}</strong>."
        )
        if notes:
            body += f"<br><br>{escape(notes)}"
        html = self._layout(
            "Submission update",
            body,
            button=("View Submissions", f"{self._frontend_url}/publishing/submissions"),
        )
        return await self._send(to_email, f"Your submission is {label}", html)

    async def send_newsletter_welcome_email(self, to_email: str, name: Optional[str] = None) -> bool:
        greeting = f"Hi {escape(name)}," if name else "Hi there,"
        html = self._layout(
            "Thanks for subscribing",
            f"{greeting}<br><br>You'll receive new releases, events and articles "
            f"from {self._brand} in your inbox.",
            footer=(
                f'<a href="{self._frontend_url}/newsletter/unsubscribe?email={escape(to_email)}" '
                'style="color: #8B8BA7;">Unsubscribe</a>'
            ),
        )
        return await self._send(to_email, f"Welcome to the {self._brand} newsletter", html)


# Singleton instance
email_service = ResendEmailService()

import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from core.config import settings

logger = logging.getLogger(__name__)

BUTTON_STYLE = (
    "background-color: #4F46E5; color: white; padding: 12px 28px; text-decoration: none; "
    "border-radius: 6px; font-weight: bold; display: inline-block;"
)


def _layout(heading: str, body: str, link: str, button_label: str, footer: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
        <h2>{heading}</h2>
        {body}
        <p style="text-align: center; margin: 20px 0;">
            <a href="{link}" style="{BUTTON_STYLE}">{button_label}</a>
        </p>
        <p>If the button doesn’t work, copy and paste this link into your browser:</p>
        <p style="word-break: break-all; color: #555;">{link}</p>
        <p><small>{footer}</small></p>
        <hr style="border:none; border-top:1px solid #eee; margin: 24px 0;">
        <p>Best regards,<br><strong>The Nudge Team</strong></p>
    </div>
    """


class EmailService:
    """
    Transactional email for Nudge via SendGrid.

    Every send method is synchronous so it can be handed to FastAPI
    ``BackgroundTasks``. Without SendGrid credentials the message is only
    logged, which is what local development and the test suite rely on.
    """

    def __init__(self, api_key: Optional[str] = None, sender_email: Optional[str] = None):
        self.sendgrid_api_key = api_key
        self.sender_email = sender_email

        self.enabled = bool(self.sendgrid_api_key and self.sender_email)
        if not self.enabled:
            logger.warning("📧 Email service not configured. Missing SENDGRID_API_KEY or MAIL_FROM.")
        else:
            logger.info("📧 Email service configured and ready. Sender: %s", self.sender_email)

    def _send(self, to_email: str, subject: str, html_content: str, link: str) -> bool:
        if not self.enabled:
            # Development fallback (no SendGrid setup)
            logger.info("📨 [Mock Email] To: %s | Subject: %s", to_email, subject)
            logger.info("Link: %s", link)
            return True

        try:
            message = Mail(
                from_email=self.sender_email,
                to_emails=to_email,
                subject=subject,
                html_content=html_content,
            )
            sg = SendGridAPIClient(self.sendgrid_api_key)
            response = sg.send(message)
            logger.info("✅ Email '%s' sent to %s. Status: %s", subject, to_email, response.status_code)
            return True
        except Exception as e:
            logger.exception("❌ Failed to send email to %s: %s", to_email, e)
            return False

    # ============================================================
    # ✅ Project invitation
    # ============================================================
    def send_project_invitation_email(
        self,
        to_email: str,
        invitation_link: str,
        role: str,
        project_name: str,
        invited_by: str = "A teammate",
    ) -> bool:
        subject = f"🎉 You're invited to join {project_name} on Nudge"
        body = f"""
        <p><strong>{invited_by}</strong> has invited you to join the project
        <strong>{project_name}</strong> on <b>Nudge</b> as <strong>{role.title()}</strong>.</p>
        <p>Click below to accept your invitation:</p>
        """
        html = _layout(
            "👋 Hello!", body, invitation_link, "✅ Accept Invitation",
            f"This invitation will expire in {settings.INVITATION_EXPIRE_HOURS} hours.",
        )
        return self._send(to_email, subject, html, invitation_link)

    # ============================================================
    # ✅ Password reset
    # ============================================================
    def send_password_reset_email(self, to_email: str, reset_link: str) -> bool:
        subject = "Reset your Nudge password"
        body = "<p>We received a request to reset your password. Click below to choose a new one:</p>"
        html = _layout(
            "🔑 Password reset", body, reset_link, "Reset Password",
            f"This link expires in {settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes. "
            "If you did not ask for it, you can ignore this email.",
        )
        return self._send(to_email, subject, html, reset_link)

    # ============================================================
    # ✅ Account deletion confirmation
    # ============================================================
    def send_delete_account_email(self, to_email: str, confirm_link: str) -> bool:
        subject = "Confirm your Nudge account deletion"
        body = (
            "<p>You asked to delete your Nudge account. This removes every project you own "
            "together with its tasks and files.</p><p>Click below to confirm:</p>"
        )
        html = _layout(
            "⚠️ Delete account", body, confirm_link, "Delete My Account",
            f"This link expires in {settings.DELETE_ACCOUNT_EXPIRE_MINUTES} minutes.",
        )
        return self._send(to_email, subject, html, confirm_link)


# ============================================================
# ✅ Global instance for app-wide import
# ============================================================
email_service = EmailService(settings.SENDGRID_API_KEY, settings.MAIL_FROM)

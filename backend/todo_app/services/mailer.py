"""Outbound email over SMTP."""
import logging
import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from todo_app.config import Settings

logger = logging.getLogger(__name__)


class Mailer:
    """Sends HTML mail with a plain-text fallback; skips sending when SMTP is unset."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, to_email: str, subject: str, html_content: str) -> bool:
        smtp_host = self.settings.smtp_host
        if not smtp_host:
            logger.info("SMTP not configured, skipping email %r", subject)
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.settings.smtp_from_email
        msg["To"] = to_email

        # Plain text fallback
        plain_text = html_content.replace("<br>", "\n").replace("</p>", "\n\n")
        plain_text = re.sub(r"<[^>]+>", "", plain_text)

        msg.attach(MIMEText(plain_text, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            with smtplib.SMTP(smtp_host, self.settings.smtp_port) as server:
                server.starttls()
                if self.settings.smtp_user and self.settings.smtp_password:
                    server.login(self.settings.smtp_user, self.settings.smtp_password)
                server.send_message(msg)
            return True
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send email %r", subject)
            return False

    def send_verification(self, to_email: str, token: str) -> bool:
        html = f"""
        <p>Welcome to {self.settings.app_name}.</p>
        <p>Use this code to verify your email address:</p>
        <p><strong>{token}</strong></p>
        <p>The code expires in {self.settings.email_verification_expire_hours} hours.</p>
        """
        return self.send(to_email, f"Verify your {self.settings.app_name} email", html)

    def send_password_reset(self, to_email: str, token: str) -> bool:
        html = f"""
        <p>A password reset was requested for your {self.settings.app_name} account.</p>
        <p>Use this code to choose a new password:</p>
        <p><strong>{token}</strong></p>
        <p>The code expires in {self.settings.password_reset_expire_minutes} minutes.
        If you did not ask for this, you can ignore this email.</p>
        """
        return self.send(to_email, f"Reset your {self.settings.app_name} password", html)

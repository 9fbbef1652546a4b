from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import resend
from markupsafe import escape

from marketplace.config import Config
from marketplace.observability import increment_counter


class Mailer:
    """Transactional email through Resend. Sending is best-effort."""

    def __init__(self, api_key: Optional[str] = None, sender: Optional[str] = None) -> None:
        self.api_key = (Config.RESEND_API_KEY if api_key is None else api_key).strip()
        self.sender = sender or Config.MAIL_SENDER
        self.logger = logging.getLogger(__name__)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def send(self, recipient: str, subject: str, html: str, text: Optional[str] = None) -> bool:
        if not self.enabled:
            self.logger.info("Email delivery disabled; skipping message", extra={"subject": subject})
            return False
        if not recipient:
            return False

        payload: Dict[str, Any] = {
            "from": self.sender,
            "to": [recipient],
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text

        previous_api_key = getattr(resend, "api_key", None)
        resend.api_key = self.api_key
        try:
            response = resend.Emails.send(payload)
        except Exception as exc:  # resend raises its own error types plus transport errors
            self.logger.warning(
                "Email delivery failed", extra={"subject": subject, "error": exc.__class__.__name__}
            )
            increment_counter("emails_failed_total")
            return False
        finally:
            resend.api_key = previous_api_key

        if not isinstance(response, dict) or not response.get("id"):
            self.logger.warning("Email provider returned no message id", extra={"subject": subject})
            increment_counter("emails_failed_total")
            return False

        increment_counter("emails_sent_total")
        return True

    def send_verification(self, recipient: str, name: str, link: str) -> bool:
        html = (
            f"<p>Hi {escape(name)},</p>"
            f"<p>Welcome to {Config.APP_NAME}! Confirm your email address to finish setting up your account.</p>"
            f'<p><a href="{escape(link)}">Verify my email</a></p>'
            f"<p>This link expires in {Config.VERIFICATION_TOKEN_TTL_HOURS} hours.</p>"
        )
        text = f"Verify your {Config.APP_NAME} account: {link}"
        return self.send(recipient, f"Verify your {Config.APP_NAME} account", html, text)

    def send_password_reset(self, recipient: str, name: str, link: str) -> bool:
        html = (
            f"<p>Hi {escape(name)},</p>"
            "<p>We received a request to reset your password.</p>"
            f'<p><a href="{escape(link)}">Choose a new password</a></p>'
            f"<p>This link expires in {Config.RESET_TOKEN_TTL_MINUTES} minutes. "
            "If you did not ask for a reset you can ignore this email.</p>"
        )
        text = f"Reset your {Config.APP_NAME} password: {link}"
        return self.send(recipient, f"Reset your {Config.APP_NAME} password", html, text)

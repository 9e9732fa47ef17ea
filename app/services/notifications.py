"""Notification service: OTP emails over Mailgun (preferred) or SendGrid."""
import logging

import httpx
from python_http_client.exceptions import HTTPError as SendGridHTTPError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from app.config import Settings
from app.models.otp_code import OtpPurpose
from app.services.exceptions import SendFailedError

log = logging.getLogger("uvicorn.error")

MAILGUN_US_BASE = "https://api.mailgun.net"
MAILGUN_EU_BASE = "https://api.eu.mailgun.net"

_SUBJECTS = {
    OtpPurpose.login: "Your login OTP",
    OtpPurpose.reset: "Your password reset OTP",
}


class EmailSender:
    """Delivers OTP emails. Built once per app and shared across requests."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def mailgun_configured(self) -> bool:
        return bool(self.settings.mailgun_api_key and self.settings.mailgun_domain)

    @property
    def configured(self) -> bool:
        return self.mailgun_configured or bool(self.settings.sendgrid_api_key)

    def send_email(self, to_email: str, subject: str, html_content: str, text_content: str | None = None) -> bool:
        """Send email via Mailgun (preferred) or SendGrid. Returns True if the provider accepted it."""
        if self.mailgun_configured:
            log.info("[Email] Calling Mailgun API: to=%s subject=%s domain=%s", to_email, subject, self.settings.mailgun_domain)
            return self._send_email_mailgun(to_email, subject, html_content, text_content=text_content)
        if self.settings.sendgrid_api_key:
            return self._send_email_sendgrid(to_email, subject, html_content, text_content=text_content)
        log.warning(
            "[Email] NOT SENT: to=%s subject=%s. Email service not configured; set MAILGUN_API_KEY and "
            "MAILGUN_DOMAIN (or SENDGRID_API_KEY) in .env and restart the server.",
            to_email,
            subject,
        )
        return False

    def _send_email_mailgun(self, to_email: str, subject: str, html_content: str, text_content: str | None = None) -> bool:
        settings = self.settings
        base = (settings.mailgun_base_url or MAILGUN_US_BASE).strip().rstrip("/")
        domain = (settings.mailgun_domain or "").strip().lower()
        from_addr = (settings.mailgun_from_email or "").strip()
        from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
        if domain and from_domain != domain:
            from_addr = f"noreply@{domain}"
            log.info("[Mailgun] Using from=%s (must match domain %s for delivery)", from_addr, domain)
        data = {
            "from": f"{settings.mailgun_from_name} <{from_addr}>",
            "to": to_email,
            "subject": subject,
            "text": text_content or "",
            "html": html_content or "",
        }
        try:
            with httpx.Client(timeout=10.0) as client:
                r = client.post(f"{base}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data)
                if 200 <= r.status_code < 300:
                    log.info("[Mailgun] API success: to=%s status=%s", to_email, r.status_code)
                    return True
                if r.status_code == 401 and base == MAILGUN_US_BASE:
                    log.info("[Mailgun] 401 with US endpoint. Retrying with EU endpoint...")
                    r2 = client.post(
                        f"{MAILGUN_EU_BASE}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data
                    )
                    if 200 <= r2.status_code < 300:
                        log.info("[Mailgun] API success (EU): to=%s", to_email)
                        return True
                    log.warning("[Mailgun] EU request failed: status=%s body=%s", r2.status_code, r2.text[:500])
                    return False
                log.warning("[Mailgun] API failed: status=%s to=%s body=%s", r.status_code, to_email, r.text[:500])
                return False
        except httpx.HTTPError as e:
            log.warning("[Mailgun] Exception: to=%s error=%s: %s", to_email, type(e).__name__, e)
            return False

    def _send_email_sendgrid(self, to_email: str, subject: str, html_content: str, text_content: str | None = None) -> bool:
        settings = self.settings
        message = Mail(
            from_email=(settings.sendgrid_from_email, settings.sendgrid_from_name),
            to_emails=to_email,
            subject=subject,
            html_content=html_content,
            plain_text_content=text_content or "",
        )
        try:
            SendGridAPIClient(settings.sendgrid_api_key).send(message)
        except (SendGridHTTPError, OSError) as e:
            log.warning("[SendGrid] Exception: to=%s error=%s: %s", to_email, type(e).__name__, e)
            return False
        return True

    def send_otp_email(self, to_email: str, code: str, purpose: OtpPurpose, ttl_minutes: int = 5) -> None:
        """Deliver an OTP. Raises SendFailedError when no provider accepted the message."""
        subject = _SUBJECTS.get(purpose, "Verify your email")
        text_content = f"Your OTP is {code}. It expires in {ttl_minutes} minutes."
        html_content = f"""
    <p>Hello,</p>
    <p>Your OTP is: <strong style="font-size:1.2em;letter-spacing:0.2em;">{code}</strong></p>
    <p>It expires in {ttl_minutes} minutes. If you did not request this, you can ignore this email.</p>
    <p>- ApnaBook</p>
    """
        if not self.send_email(to_email, subject, html_content, text_content=text_content):
            raise SendFailedError()

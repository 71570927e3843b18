from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Literal, Optional

from epic_notes.core.config import Settings

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailResult:
    status: Literal["success", "error"]
    error: Optional[str] = None


class EmailSender:
    """SMTP-Versand. Ohne MAIL_SERVER wird nur geloggt (Entwicklung)."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, *, to: str, subject: str, body: str) -> EmailResult:
        s = self.settings
        if not s.MAIL_SERVER:
            log.info("[MAIL-MOCK] To: %s | Subject: %s\n%s", to, subject, body)
            return EmailResult(status="success")

        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = formataddr((s.MAIL_FROM_NAME, s.MAIL_FROM))
        msg["To"] = to

        try:
            with smtplib.SMTP(s.MAIL_SERVER, s.MAIL_PORT, timeout=15) as server:
                if s.MAIL_USE_TLS:
                    server.starttls()
                if s.MAIL_USERNAME and s.MAIL_PASSWORD:
                    server.login(s.MAIL_USERNAME, s.MAIL_PASSWORD)
                server.sendmail(s.MAIL_FROM, [to], msg.as_string())
        except (smtplib.SMTPException, OSError) as ex:
            log.error("Email send failed for %s (%s): %s", to, subject, ex)
            return EmailResult(status="error", error="Unable to send email. Please try again later.")

        log.info("[MAIL] Gesendet an %s: %s", to, subject)
        return EmailResult(status="success")

"""
Out-of-band delivery of password reset links.

SmtpResetMailer is used when SMTP_HOST is configured, wrapped in a
BackgroundResetMailer so the request never waits on the mail server.
LogResetMailer is the development stand-in: it only writes the raw token to
the log when told to (development environments), otherwise it records that a
reset was requested.
"""
from __future__ import annotations

import logging
import smtplib
import ssl
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from email.mime.text import MIMEText
from urllib.parse import urlencode

logger = logging.getLogger(__name__)


def redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def build_reset_link(base_url: str, raw_token: str) -> str:
    sep = "&" if "?" in base_url else "?"
    return f"{base_url}{sep}{urlencode({'token': raw_token})}"


class ResetMailer(ABC):
    """Delivers a reset link to the account owner."""

    def __init__(self, reset_url: str):
        self.reset_url = reset_url

    @abstractmethod
    def send_password_reset(self, to_email: str, raw_token: str) -> None:
        ...


class LogResetMailer(ResetMailer):

    def __init__(self, reset_url: str, reveal_token: bool = False):
        super().__init__(reset_url)
        self.reveal_token = reveal_token

    def send_password_reset(self, to_email: str, raw_token: str) -> None:
        if self.reveal_token:
            logger.info(
                "Password reset requested for %s (dev delivery): %s",
                redact_email(to_email), build_reset_link(self.reset_url, raw_token),
            )
        else:
            logger.info("Password reset requested for %s; no mail transport configured",
                        redact_email(to_email))


class SmtpResetMailer(ResetMailer):

    def __init__(self, reset_url: str, host: str, port: int = 587,
                 user: str | None = None, password: str | None = None,
                 from_email: str | None = None, use_tls: bool = True):
        super().__init__(reset_url)
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email or user
        self.use_tls = use_tls

    def _message(self, to_email: str, raw_token: str) -> MIMEText:
        link = build_reset_link(self.reset_url, raw_token)
        body = (
            "We received a request to reset your password.\n\n"
            f"Open this link to choose a new password:\n{link}\n\n"
            "If you did not ask for this, you can ignore this email."
        )
        msg = MIMEText(body, "plain")
        msg["Subject"] = "Reset your password"
        msg["From"] = self.from_email
        msg["To"] = to_email
        return msg

    def send_password_reset(self, to_email: str, raw_token: str) -> None:
        """Raises smtplib.SMTPException / OSError on delivery failure."""
        msg = self._message(to_email, raw_token)
        context = ssl.create_default_context()
        if self.use_tls:
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                server.starttls(context=context)
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.from_email, [to_email], msg.as_string())
        else:
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=30) as server:
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.from_email, [to_email], msg.as_string())
        logger.info("Password reset email sent to %s", redact_email(to_email))


class BackgroundResetMailer(ResetMailer):
    """
    Hands delivery to a small worker pool and returns at once, so a known
    address answers as fast as an unknown one. Failures are only logged.
    """

    def __init__(self, transport: ResetMailer, max_workers: int = 2):
        super().__init__(transport.reset_url)
        self.transport = transport
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="reset-mail")

    def send_password_reset(self, to_email: str, raw_token: str) -> None:
        future = self._executor.submit(self.transport.send_password_reset, to_email, raw_token)
        recipient = redact_email(to_email)
        future.add_done_callback(lambda done: self._log_failure(recipient, done))

    @staticmethod
    def _log_failure(recipient: str, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Password reset email to %s failed", recipient, exc_info=exc)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

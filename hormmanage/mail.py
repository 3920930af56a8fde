"""Sending notification e-mail over SMTP."""

from __future__ import annotations

import smtplib
from collections.abc import Iterable

from hormmanage.message import ErrorCode, ServiceError

SMTP_HOST = "smtp.qq.com"
SMTP_PORT = 587
SMTP_TIMEOUT = 30.0


def _to_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def join_emails(emails: Iterable[str]) -> str:
    """Join addresses with ``;`` as used in the To and CC headers."""
    return ";".join(emails)


def build_message(
    sender: str,
    user: str,
    to: list[str],
    cc: list[str] | None,
    mail_type: str,
    subject: str | bytes,
    body: str | bytes,
) -> bytes:
    """Build the raw mail: headers, subject, content type line, blank line, body."""
    parts = [f"To:{join_emails(to)}\r\nFrom:{user}<{sender}>\r\n".encode("utf-8")]
    if cc:
        parts.append(f"CC:{join_emails(cc)}\r\n".encode("utf-8"))
    parts.append(b"Subject:")
    parts.append(_to_bytes(subject))
    parts.append(f"\r\n{mail_type}\r\n\r\n".encode("utf-8"))
    parts.append(_to_bytes(body))
    return b"".join(parts)


def send_mail(
    sender: str,
    user: str,
    password: str,
    to: list[str],
    cc: list[str] | None,
    mail_type: str,
    subject: str | bytes,
    body: str | bytes,
) -> None:
    """Send a mail from ``sender`` to ``to``; raises ServiceError on failure."""
    raw = build_message(sender, user, to, cc, mail_type, subject, body)
    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=SMTP_TIMEOUT) as smtp:
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                smtp.starttls()
                smtp.ehlo()
            smtp.login(sender, password)
            smtp.sendmail(sender, list(to), raw)
    except (smtplib.SMTPException, OSError) as exc:
        raise ServiceError(ErrorCode.WEB_EMAIL_SEND_FAILED, f"send email error: {exc}") from exc
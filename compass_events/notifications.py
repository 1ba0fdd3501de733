"""notifications.py — Email notifications over SES.

Delivery is at-most-once and best-effort. `dispatch` is what services call:
it never raises, so a failed email cannot undo the committed mutation that
triggered it. Failures are logged with the [NOTIFY] tag.
"""
from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Union

from botocore.exceptions import BotoCoreError, ClientError

__all__ = [
    "EmailDispatcher",
    "EmailMessage",
    "account_deleted_email",
    "registration_cancelled_email",
    "registration_confirmed_email",
    "verification_email",
]

logger = logging.getLogger(__name__)

_CHARSET = "UTF-8"


@dataclass(frozen=True)
class EmailMessage:
    subject: str
    html_body: str
    text_body: Optional[str] = None


class EmailDispatcher:
    """Sends mail through an SES client. Without a client or sender address, sending is skipped."""

    def __init__(self, ses_client: Any = None, mail_from: str = "") -> None:
        self._ses = ses_client
        self._mail_from = mail_from
        if not self.configured:
            logger.warning("SES client or sender address not configured; email sending will be skipped")

    @property
    def configured(self) -> bool:
        return self._ses is not None and bool(self._mail_from)

    def send_email(
        self,
        to: Union[str, Sequence[str]],
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> Optional[str]:
        """Send one message. Returns the SES MessageId, or None when skipped. SES errors propagate."""
        recipients = [to] if isinstance(to, str) else list(to)
        if not self.configured:
            logger.warning("Skipping email to %s with subject %r: SES not configured", recipients, subject)
            return None

        body: Dict[str, Any] = {"Html": {"Charset": _CHARSET, "Data": html_body}}
        if text_body:
            body["Text"] = {"Charset": _CHARSET, "Data": text_body}

        resp = self._ses.send_email(
            Source=self._mail_from,
            Destination={"ToAddresses": recipients},
            Message={
                "Subject": {"Charset": _CHARSET, "Data": subject},
                "Body": body,
            },
        )
        message_id = resp.get("MessageId")
        logger.info("Email sent to %s. Message ID: %s", recipients, message_id)
        return message_id

    def dispatch(self, to: Union[str, Sequence[str]], message: EmailMessage) -> bool:
        """Fire-and-forget send. Returns True only if SES accepted the message."""
        try:
            return self.send_email(to, message.subject, message.html_body, message.text_body) is not None
        except (ClientError, BotoCoreError) as exc:
            logger.error("[NOTIFY] Failed to send %r to %s: %s", message.subject, to, exc)
        except Exception as exc:
            logger.error("[NOTIFY] Unexpected error sending %r to %s: %s", message.subject, to, exc)
        return False


# ---------------------------------------------------------------------------
# Message builders
# ---------------------------------------------------------------------------


def _generic(subject: str, message: str) -> EmailMessage:
    html_body = f"<h1>{html.escape(subject)}</h1>\n<p>{html.escape(message)}</p>"
    return EmailMessage(subject=subject, html_body=html_body, text_body=message)


def verification_email(name: str, verification_link: str) -> EmailMessage:
    html_body = (
        f"<h1>Hello {html.escape(name)},</h1>\n"
        "<p>Thank you for registering. Please click the link below to verify your email address:</p>\n"
        f'<a href="{html.escape(verification_link, quote=True)}">Verify Email</a>\n'
        "<p>If you did not request this, please ignore this email.</p>"
    )
    text_body = f"Hello {name}, verify your email address: {verification_link}"
    return EmailMessage(subject="Verify Your Email Address", html_body=html_body, text_body=text_body)


def account_deleted_email(name: str) -> EmailMessage:
    return _generic(
        "Your Account Has Been Deleted",
        f"Hello {name}, your account has been successfully deleted. "
        "If you did not request this, please contact us.",
    )


def registration_confirmed_email(name: str, event_name: str, event_date: str) -> EmailMessage:
    return _generic(
        "Registration Confirmed",
        f"Hello {name}, you are registered for {event_name} on {event_date}.",
    )


def registration_cancelled_email(name: str, event_name: str) -> EmailMessage:
    return _generic(
        "Registration Cancelled",
        f"Hello {name}, your registration for {event_name} has been cancelled.",
    )

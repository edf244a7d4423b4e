# service/emailer.py
from __future__ import annotations

import logging
import os
import smtplib
import ssl
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formatdate, make_msgid

LOG = logging.getLogger(__name__)

# ---- Errors -----------------------------------------------------------------


class EmailSendError(RuntimeError):
    """Raised when an email cannot be delivered."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


# ---- Env / Settings ----------------------------------------------------------


@dataclass(frozen=True)
class SmtpSettings:
    """
    SMTP relay settings, from env:

      SMTP_HOST / SMTP_PORT          default 127.0.0.1:587
      SMTP_USERNAME / SMTP_PASSWORD
      SMTP_FROM / SMTP_FROM_NAME     From defaults to the username
      SMTP_USE_SSL = "true"          implicit TLS; disables STARTTLS
      SMTP_STARTTLS = true|false|auto (default auto: off only on 25/2525)
    """

    host: str = "127.0.0.1"
    port: int = 587
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    from_addr: str = ""
    from_name: str = ""
    use_ssl: bool = False
    starttls: str = "auto"

    @classmethod
    def from_env(cls) -> SmtpSettings:
        username = os.getenv("SMTP_USERNAME") or None
        use_ssl = os.getenv("SMTP_USE_SSL", "false").strip().lower() == "true"
        return cls(
            host=os.getenv("SMTP_HOST") or "127.0.0.1",
            port=int(os.getenv("SMTP_PORT") or 587),
            username=username,
            password=os.getenv("SMTP_PASSWORD") or None,
            from_addr=(os.getenv("SMTP_FROM") or username or "").strip(),
            from_name=(os.getenv("SMTP_FROM_NAME") or "").strip(),
            use_ssl=use_ssl,
            starttls="false" if use_ssl else os.getenv("SMTP_STARTTLS", "auto").strip().lower(),
        )

    def wants_starttls(self) -> bool:
        if self.starttls in ("true", "false"):
            return self.starttls == "true"
        return self.port not in (25, 2525)


# ---- Helpers ----------------------------------------------------------------


def _as_list(values: Iterable[str] | str | None) -> list[str]:
    if not values:
        return []
    if isinstance(values, str):
        values = values.split(",")
    return [v for v in (s.strip() for s in values) if v]


def build_message(
    *,
    subject: str,
    html: str,
    to: list[str],
    cc: list[str],
    from_addr: str,
    from_name: str | None = None,
) -> EmailMessage:
    if not subject or not subject.strip():
        raise EmailSendError("Missing subject.")
    if not html or not html.strip():
        raise EmailSendError("Missing HTML body.")

    msg = EmailMessage()
    msg["From"] = f"{from_name} <{from_addr}>" if from_name else from_addr
    if to:
        msg["To"] = ", ".join(to)
    if cc:
        msg["Cc"] = ", ".join(cc)
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()

    msg.set_content("This message requires an HTML-capable client.")
    msg.add_alternative(html, subtype="html", charset="utf-8")
    return msg


def _connect(settings: SmtpSettings) -> smtplib.SMTP:
    context = ssl.create_default_context()
    if settings.use_ssl:
        server: smtplib.SMTP = smtplib.SMTP_SSL(settings.host, settings.port, context=context, timeout=30)
    else:
        server = smtplib.SMTP(settings.host, settings.port, timeout=30)
    server.ehlo()
    if not settings.use_ssl and settings.wants_starttls():
        server.starttls(context=context)
        server.ehlo()
    if settings.username and settings.password:
        server.login(settings.username, settings.password)
    return server


def _send_via_smtp(msg: EmailMessage, *, rcpt_to: list[str], settings: SmtpSettings) -> None:
    try:
        with _connect(settings) as server:
            # explicit rcpt_to keeps Bcc out of the headers
            server.send_message(msg, to_addrs=rcpt_to)
    except smtplib.SMTPResponseException as e:
        raise EmailSendError(f"SMTP {e.smtp_code}: {e.smtp_error!r}", transient=400 <= e.smtp_code < 500) from e
    except (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError, OSError) as e:
        raise EmailSendError(f"SMTP connection failed: {e}", transient=True) from e
    except smtplib.SMTPException as e:
        raise EmailSendError(f"SMTP send failed: {e}") from e


# ---- Public API --------------------------------------------------------------


def send_html(
    *,
    subject: str,
    html: str,
    to: Iterable[str] | str,
    cc: Iterable[str] | None = None,
    bcc: Iterable[str] | None = None,
    retries: int = 3,
) -> str:
    """
    Send an HTML email.

    Transient failures (4xx replies, dropped connections) are retried with
    exponential backoff (1s, 2s, 4s, ...).

    Returns:
        message_id (str): RFC-822 Message-ID generated by the sender.

    Raises:
        EmailSendError on any failure (connection/auth/SMTP/validation/etc).
    """
    settings = SmtpSettings.from_env()
    if not settings.from_addr:
        raise EmailSendError("No from address resolved. Set SMTP_FROM or SMTP_USERNAME.")

    to_l, cc_l, bcc_l = _as_list(to), _as_list(cc), _as_list(bcc)
    rcpt_to = [*to_l, *cc_l, *bcc_l]
    if not rcpt_to:
        raise EmailSendError("No recipients (to/cc/bcc).")

    msg = build_message(
        subject=subject,
        html=html,
        to=to_l,
        cc=cc_l,
        from_addr=settings.from_addr,
        from_name=settings.from_name,
    )

    for attempt in range(retries + 1):
        try:
            _send_via_smtp(msg, rcpt_to=rcpt_to, settings=settings)
            return str(msg["Message-ID"])
        except EmailSendError as e:  # noqa: PERF203
            if not e.transient or attempt == retries:
                raise
            LOG.warning("Transient SMTP failure (attempt %d/%d): %s", attempt + 1, retries + 1, e)
            time.sleep(2**attempt)
    raise EmailSendError("Permanent send failure after retries")


def ping() -> bool:
    """
    Lightweight health check against the SMTP relay.
    Returns True if connect (and login, when configured) succeeds.
    """
    settings = SmtpSettings.from_env()
    try:
        with _connect(settings):
            return True
    except (smtplib.SMTPException, OSError) as e:
        raise EmailSendError(f"SMTP health check failed: {e}") from e

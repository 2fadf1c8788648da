"""Email transport over SMTP.

This module provides a thin wrapper around Python's smtplib with support
for TLS/SSL, authentication, send-rate limiting and proper connection
lifecycle management. Every successful hand-off returns the Message-ID
generated for the message, which the ledger stores as the provider id.
"""

import re
import smtplib
import ssl
import threading
import time
import uuid
from abc import ABC, abstractmethod
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Callable, List, Optional

from mailroom.config.environment import EnvironmentConfig
from mailroom.config.models import TransportConfig
from mailroom.logging import get_logger
from mailroom.utils.text import html_to_text, sanitize_for_log

from .models import TransportError

logger = get_logger(__name__, component="transport")

SPAM_TRIGGERS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"free",
        r"urgent",
        r"act now",
        r"limited time",
        r"click here",
        r"guarantee",
        r"no obligation",
        r"winner",
        r"congratulations",
        r"earn money",
    )
]

MAX_SUBJECT_LENGTH = 50


class EmailTransport(ABC):
    """Accepts one message and hands it to a delivery provider."""

    @abstractmethod
    def deliver(self, to: str, subject: str, html: Optional[str], text: Optional[str]) -> str:
        """Send one message.

        Returns:
            Provider message id

        Raises:
            TransportError: If the provider rejected the message or was unreachable
        """


class RateLimiter:
    """Enforces a minimum interval between consecutive transport calls.

    Thread-safe: concurrent callers queue up behind the lock and each waits
    until its slot. Only the bookkeeping runs under the lock, the network
    call does not.
    """

    def __init__(
        self,
        min_interval_seconds: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot = 0.0

    def wait(self) -> float:
        """Block until the next send slot is available.

        Returns:
            Seconds waited (0.0 if no wait was needed)
        """
        with self._lock:
            now = self._clock()
            wait_for = max(0.0, self._next_slot - now)
            self._next_slot = max(now, self._next_slot) + self.min_interval_seconds

        if wait_for > 0:
            self._sleep(wait_for)
        return wait_for


def check_deliverability(subject: str, html: Optional[str] = None) -> List[str]:
    """Inspect content for common deliverability problems.

    Warnings are logged and returned; they never block a send.

    Args:
        subject: Message subject
        html: HTML body, if any

    Returns:
        List of warning strings (empty if the content looks fine)
    """
    warnings = []

    if len(subject) > MAX_SUBJECT_LENGTH:
        warnings.append(f"Subject line is too long (>{MAX_SUBJECT_LENGTH} chars)")

    if any(trigger.search(subject) for trigger in SPAM_TRIGGERS):
        warnings.append("Subject contains potential spam trigger words")

    if subject.upper() == subject and len(subject) > 5:
        warnings.append("Subject is all caps")

    if html and any(trigger.search(html) for trigger in SPAM_TRIGGERS):
        warnings.append("Email content contains potential spam trigger words")

    if warnings:
        logger.warning(
            f"Email deliverability warnings: {'; '.join(warnings)}",
            extra={"event": "transport.deliverability.warning", "warnings": warnings},
        )

    return warnings


def build_sender_address(env_config: EnvironmentConfig) -> str:
    """Build the 'From' address for outgoing emails.

    Args:
        env_config: Environment configuration with sender settings

    Returns:
        Formatted sender address (e.g., "RideShare Tahoe <noreply@example.com>")
    """
    return f"{env_config.smtp_sender_name} <{env_config.email_from}>"


class SMTPTransport(EmailTransport):
    """Delivers messages through an SMTP relay.

    Port 465 uses implicit TLS; any other port connects in plain text and
    upgrades with STARTTLS when ``use_tls`` is set. Credentials are used only
    when both user and password are configured.
    """

    def __init__(
        self,
        env_config: EnvironmentConfig,
        transport_config: Optional[TransportConfig] = None,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """Initialize SMTP transport with optional factory injection.

        Args:
            env_config: SMTP host, credentials and sender identity
            transport_config: TLS, timeout and rate-limit settings
            smtp_factory: Factory for SMTP instances (for mocking)
            smtp_ssl_factory: Factory for SMTP_SSL instances (for mocking)
            rate_limiter: Shared limiter (built from transport_config if None)
        """
        self.env_config = env_config
        self.transport_config = transport_config or TransportConfig()
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL
        self.rate_limiter = rate_limiter or RateLimiter(
            self.transport_config.min_interval_ms / 1000.0
        )
        self.sender = build_sender_address(env_config)

    def build_message(
        self, to: str, subject: str, html: Optional[str], text: Optional[str]
    ) -> EmailMessage:
        """Build a multipart message with a plain text part and an HTML alternative.

        Raises:
            TransportError: If neither body is present
        """
        if not text and html:
            text = html_to_text(html)
        if not text and not html:
            raise TransportError("Either text or html content must be provided to send an email")

        domain = self.env_config.email_from.rsplit("@", 1)[-1]

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = to
        message["Message-ID"] = make_msgid(domain=domain)
        message["X-Entity-Ref-ID"] = uuid.uuid4().hex
        message["List-Unsubscribe"] = f"<mailto:{self.env_config.support_email}?subject=Unsubscribe>"

        message.set_content(text)
        if html:
            message.add_alternative(html, subtype="html")

        return message

    def deliver(self, to: str, subject: str, html: Optional[str], text: Optional[str]) -> str:
        """Send one message via SMTP.

        Handles connection, TLS/SSL upgrade, authentication, and ensures
        proper cleanup on both success and failure.

        Args:
            to: Recipient address
            subject: Subject line
            html: HTML body
            text: Plain text body

        Returns:
            The Message-ID header of the delivered message

        Raises:
            TransportError: If message delivery fails
        """
        check_deliverability(subject, html)
        message = self.build_message(to, subject, html, text)

        self.rate_limiter.wait()

        host = self.env_config.smtp_host
        port = self.env_config.smtp_port
        timeout = self.transport_config.timeout_seconds

        smtp = None
        try:
            if port == 465:
                logger.debug(f"Connecting to {host}:{port} with implicit TLS")
                context = ssl.create_default_context()
                smtp = self.smtp_ssl_factory(host, port, timeout=timeout, context=context)
            else:
                logger.debug(f"Connecting to {host}:{port}")
                smtp = self.smtp_factory(host, port, timeout=timeout)

                if self.transport_config.use_tls:
                    logger.debug("Upgrading connection with STARTTLS")
                    context = ssl.create_default_context()
                    smtp.starttls(context=context)

            if self.env_config.smtp_user and self.env_config.smtp_pass:
                logger.debug(f"Authenticating as {self.env_config.smtp_user}")
                smtp.login(self.env_config.smtp_user, self.env_config.smtp_pass)

            smtp.send_message(message)
            logger.debug(
                f"Message sent to {sanitize_for_log(to)}",
                extra={"event": "transport.smtp.sent", "message_id": message["Message-ID"]},
            )
            return message["Message-ID"]

        except smtplib.SMTPException as e:
            error_msg = f"SMTP error during message delivery: {e}"
            logger.error(error_msg, extra={"event": "transport.smtp.error"})
            raise TransportError(error_msg) from e
        except OSError as e:
            error_msg = f"Network error during SMTP connection: {e}"
            logger.error(error_msg, extra={"event": "transport.smtp.error"})
            raise TransportError(error_msg) from e
        except Exception as e:
            error_msg = f"Unexpected error during SMTP delivery: {e}"
            logger.error(error_msg, extra={"event": "transport.smtp.error"})
            raise TransportError(error_msg) from e
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except Exception as e:
                    logger.warning(f"Error closing SMTP connection: {e}")

"""Rate-limited bulk announcement fan-out with per-recipient retry.

Recipients are split into ordered batches. Every recipient in a batch is
sent concurrently on a thread pool; batches run strictly one after another
with a configurable pause between them. Each recipient gets a bounded
number of transport attempts with linear backoff.
"""

import math
import re
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, ContextManager, List, Optional, Sequence, Union

from pydantic import ValidationError as ModelValidationError
from sqlalchemy.orm import Session

from mailroom.config.models import BulkConfig
from mailroom.domain.models import Recipient
from mailroom.logging import get_logger
from mailroom.logging.context import log_context
from mailroom.notifications.models import NotFoundError, ValidationError
from mailroom.notifications.transport import EmailTransport
from mailroom.persistence import RecipientRepository, get_session
from mailroom.utils.text import interpolate, sanitize_for_log

from .models import BulkContent, BulkResult, RecipientOutcome

logger = get_logger(__name__, component="bulk")

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 100
MIN_DELAY_MS = 0
MAX_DELAY_MS = 10000

_LEADING_INT = re.compile(r"^[+-]?\d+")


def coerce_int(value: Any) -> Optional[int]:
    """Coerce a number or numeric string to an int, flooring fractions.

    Strings are trimmed; if the whole string is not a finite number, a
    leading integer prefix is accepted ("12ms" gives 12).

    Returns:
        The integer, or None if the value is empty or cannot be parsed
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return math.floor(value) if math.isfinite(value) else None
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            number = float(stripped)
        except ValueError:
            match = _LEADING_INT.match(stripped)
            return int(match.group(0)) if match else None
        return math.floor(number) if math.isfinite(number) else None
    return None


def validate_batch_size(value: Any, default: int = 50) -> int:
    """Return a batch size in [1, 100].

    An omitted or blank value falls back to ``default``.

    Raises:
        ValidationError: If the value is out of range or not a number
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    batch_size = coerce_int(value)
    if batch_size is None or not MIN_BATCH_SIZE <= batch_size <= MAX_BATCH_SIZE:
        raise ValidationError(f"Batch size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}")
    return batch_size


def validate_delay_ms(value: Any, default: int = 1000) -> int:
    """Return an inter-batch delay in [0, 10000] milliseconds.

    Raises:
        ValidationError: If the value is out of range or not a number
    """
    if value is None:
        return default
    delay_ms = coerce_int(value)
    if delay_ms is None or not MIN_DELAY_MS <= delay_ms <= MAX_DELAY_MS:
        raise ValidationError(
            f"Delay must be between {MIN_DELAY_MS} and {MAX_DELAY_MS} milliseconds"
        )
    return delay_ms


def to_recipient(value: Union[Recipient, dict]) -> Recipient:
    """Return ``value`` as a Recipient.

    Raises:
        ValidationError: If a dict recipient is missing fields or has a blank email
    """
    if isinstance(value, Recipient):
        return value
    try:
        return Recipient.model_validate(value)
    except ModelValidationError as e:
        raise ValidationError(f"Invalid recipient: {e.errors()[0]['msg']}") from e


class BulkDispatcher:
    """Sends one announcement to many recipients."""

    def __init__(
        self,
        transport: EmailTransport,
        config: Optional[BulkConfig] = None,
        session_factory: Callable[[], ContextManager[Session]] = get_session,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the dispatcher.

        Args:
            transport: Transport used for every attempt
            config: Batch defaults and retry policy
            session_factory: Context manager producing store sessions
            sleep: Sleep function (injected in tests)
        """
        self.transport = transport
        self.config = config or BulkConfig()
        self.session_factory = session_factory
        self.sleep = sleep

    def dispatch(
        self,
        content: BulkContent,
        recipients: Sequence[Union[Recipient, dict]],
        batch_size: Any = None,
        delay_ms: Any = None,
    ) -> BulkResult:
        """Send ``content`` to every recipient in paced, concurrent batches.

        Args:
            content: Subject and bodies with optional placeholders
            recipients: Recipients (or dicts with id, email, first_name, last_name)
            batch_size: Recipients per batch, 1 to 100 (numeric strings accepted)
            delay_ms: Pause between batches, 0 to 10000 ms (numeric strings accepted)

        Returns:
            BulkResult where successful + failed == total_users

        Raises:
            ValidationError: If content, pacing parameters or a recipient are invalid
            NotFoundError: If there are no recipients
        """
        safe_delay_ms = validate_delay_ms(delay_ms, self.config.default_delay_ms)

        if not content.subject or not content.subject.strip() or not content.html:
            raise ValidationError("Subject and HTML content are required")

        safe_batch_size = validate_batch_size(batch_size, self.config.default_batch_size)

        resolved = [to_recipient(r) for r in recipients]
        if not resolved:
            raise NotFoundError("No users with email addresses found")

        batch_count = math.ceil(len(resolved) / safe_batch_size)
        logger.info(
            f"Dispatching bulk email to {len(resolved)} recipients in {batch_count} batches",
            extra={
                "event": "bulk.dispatch.started",
                "total_users": len(resolved),
                "batch_size": safe_batch_size,
                "delay_ms": safe_delay_ms,
            },
        )

        result = BulkResult(total_users=len(resolved))
        for index, start in enumerate(range(0, len(resolved), safe_batch_size), start=1):
            batch = resolved[start:start + safe_batch_size]
            result.batches.append(len(batch))

            with log_context(batch=index):
                logger.info(
                    f"Processing batch {index}/{batch_count}",
                    extra={"event": "bulk.batch.started", "batch_size": len(batch)},
                )
                for outcome in self._run_batch(content, batch):
                    result.record(outcome)

            if start + safe_batch_size < len(resolved):
                self.sleep(safe_delay_ms / 1000.0)

        logger.info(
            f"Bulk email completed: {result.successful} successful, {result.failed} failed",
            extra={
                "event": "bulk.dispatch.completed",
                "successful": result.successful,
                "failed": result.failed,
            },
        )
        return result

    def dispatch_to_all(
        self,
        content: BulkContent,
        batch_size: Any = None,
        delay_ms: Any = None,
    ) -> BulkResult:
        """Send ``content`` to every addressable, non-banned user.

        Raises:
            ValidationError: If content or pacing parameters are invalid
            NotFoundError: If no user has an address
            PersistenceError: If recipients cannot be loaded
        """
        with self.session_factory() as session:
            recipients = RecipientRepository(session).list_addressable(exclude_banned=True)
        logger.info(
            f"Found {len(recipients)} users to email",
            extra={"event": "bulk.recipients.loaded", "total_users": len(recipients)},
        )
        return self.dispatch(content, recipients, batch_size=batch_size, delay_ms=delay_ms)

    def _run_batch(self, content: BulkContent, batch: List[Recipient]) -> List[RecipientOutcome]:
        with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="bulk") as executor:
            return list(executor.map(lambda recipient: self._deliver(content, recipient), batch))

    def _deliver(self, content: BulkContent, recipient: Recipient) -> RecipientOutcome:
        """Deliver to one recipient with bounded retries."""
        fields = recipient.template_fields()
        html = interpolate(content.html, fields)
        text = interpolate(content.text, fields) if content.text else None
        safe_email = sanitize_for_log(recipient.email)

        max_attempts = self.config.max_attempts
        last_error = None
        for attempt in range(1, max_attempts + 1):
            try:
                message_id = self.transport.deliver(recipient.email, content.subject, html, text)
                return RecipientOutcome(
                    email=recipient.email, success=True, attempts=attempt, message_id=message_id
                )
            except Exception as e:
                last_error = str(e) or type(e).__name__
                logger.warning(
                    f"Attempt {attempt} failed for {safe_email}: {last_error}",
                    extra={"event": "bulk.recipient.attempt_failed", "attempt": attempt},
                )
                if attempt < max_attempts:
                    self.sleep(self.config.retry_base_delay_ms * attempt / 1000.0)

        logger.error(
            f"All retries failed for {safe_email}: {last_error}",
            extra={"event": "bulk.recipient.failed", "attempts": max_attempts},
        )
        return RecipientOutcome(
            email=recipient.email, success=False, attempts=max_attempts, error=last_error
        )

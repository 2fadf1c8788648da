"""Send pipeline: the single choke point for every individual notification.

Coordinates the flow for one notification:
1. Validate the recipient address
2. Idempotency gate for single-shot types (via the ledger)
3. Resolve content (explicit or templated) and backfill missing bodies
4. Record a queued event
5. Hand off to the transport
6. Record the outcome
"""

from typing import Any, Dict, Optional

from email_validator import EmailNotValidError, validate_email

from mailroom.domain.models import EventStatus, NotificationEvent, NotificationType
from mailroom.logging import get_logger
from mailroom.logging.context import log_context
from mailroom.persistence import DataIntegrityError
from mailroom.utils.text import html_to_text, sanitize_for_log, text_to_html

from .ledger import EventLedger
from .models import (
    ContentResolutionError,
    DeliveryError,
    RenderedContent,
    ValidationError,
)
from .templates import TemplateResolver
from .transport import EmailTransport

logger = get_logger(__name__, component="notification")


def prepare_content(
    subject: Optional[str], html: Optional[str] = None, text: Optional[str] = None
) -> RenderedContent:
    """Validate resolved content and fill in whichever body is missing.

    Raises:
        ContentResolutionError: If the subject or both bodies are missing
    """
    subject = (subject or "").strip()
    if not subject:
        raise ContentResolutionError("Email subject is required")
    if not html and not text:
        raise ContentResolutionError("Either html or text content is required")

    if not text:
        text = html_to_text(html)
    if not html:
        html = text_to_html(text)

    return RenderedContent(subject=subject, html=html, text=text)


def normalize_address(address: str) -> str:
    """Validate and normalize a recipient address.

    Raises:
        ValidationError: If the address is not a syntactically valid email
    """
    try:
        return validate_email((address or "").strip(), check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid recipient address '{sanitize_for_log(address)}': {e}") from e


class SendPipeline:
    """Sends one notification with ledger bookkeeping around the transport call."""

    def __init__(
        self,
        ledger: EventLedger,
        template_resolver: TemplateResolver,
        transport: EmailTransport,
    ):
        self.ledger = ledger
        self.template_resolver = template_resolver
        self.transport = transport

    def send(
        self,
        user_id: str,
        recipient_address: str,
        notification_type: NotificationType,
        subject: Optional[str] = None,
        html: Optional[str] = None,
        text: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> NotificationEvent:
        """Send one notification.

        For single-shot types an existing queued or sent event is returned
        unchanged and nothing is delivered.

        Args:
            user_id: Owner of the notification
            recipient_address: Delivery address
            notification_type: Notification category
            subject: Explicit subject (templated when omitted)
            html: Explicit HTML body
            text: Explicit plain text body
            payload: Template variables, stored on the event

        Returns:
            The sent event, or the pre-existing event for an idempotent skip

        Raises:
            ValidationError: If the recipient address is invalid
            ContentResolutionError: If no usable subject and body could be produced
            PersistenceError: If the queued event could not be recorded
            DeliveryError: If the transport failed (the event is already marked failed)
        """
        notification_type = NotificationType(notification_type)
        payload = payload or {}

        with log_context(user_id=user_id, notification_type=notification_type.value):
            address = normalize_address(recipient_address)

            existing = self.ledger.find_active_event(user_id, notification_type)
            if existing is not None:
                logger.info(
                    f"Skipping {notification_type.value} for user {user_id}: already {existing.status.value}",
                    extra={"event": "notification.duplicate", "event_id": existing.id},
                )
                return existing

            content = self._resolve_content(notification_type, subject, html, text, payload)

            try:
                event = self.ledger.create(
                    user_id=user_id,
                    notification_type=notification_type,
                    recipient_address=address,
                    subject=content.subject,
                    payload=payload,
                )
            except DataIntegrityError:
                winner = self.ledger.find_active_event(user_id, notification_type)
                if winner is None:
                    raise
                logger.info(
                    f"Concurrent {notification_type.value} send for user {user_id} already recorded",
                    extra={"event": "notification.duplicate", "event_id": winner.id},
                )
                return winner

            with log_context(event_id=event.id):
                try:
                    message_id = self.transport.deliver(address, content.subject, content.html, content.text)
                except Exception as e:
                    self.ledger.mark_failed(event.id, str(e))
                    logger.error(
                        f"Delivery of {notification_type.value} to user {user_id} failed: {e}",
                        extra={"event": "notification.send.failure"},
                    )
                    failed_event = event.model_copy(update={"status": EventStatus.FAILED, "error": str(e)})
                    raise DeliveryError(
                        f"Failed to deliver {notification_type.value} to user {user_id}: {e}",
                        event=failed_event,
                    ) from e

                self.ledger.mark_sent(event.id, message_id)
                logger.info(
                    f"Sent {notification_type.value} to user {user_id}",
                    extra={"event": "notification.send.success", "message_id": message_id},
                )
                return event.model_copy(
                    update={"status": EventStatus.SENT, "external_message_id": message_id}
                )

    def _resolve_content(
        self,
        notification_type: NotificationType,
        subject: Optional[str],
        html: Optional[str],
        text: Optional[str],
        payload: Dict[str, Any],
    ) -> RenderedContent:
        if html or text:
            return prepare_content(subject, html, text)

        rendered = self.template_resolver.resolve(notification_type, payload)
        return prepare_content(subject or rendered.subject, rendered.html, rendered.text)

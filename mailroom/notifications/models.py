"""Data models and exceptions for the notification pipeline.

This module defines the error taxonomy shared by every component and the
resolved-content type passed between the template resolver, the send
pipeline and the transport.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from mailroom.domain.models import NotificationEvent


class NotificationError(Exception):
    """Base exception for notification-related errors."""

    pass


class ValidationError(NotificationError):
    """Raised for bad caller input; no side effects have happened yet."""

    pass


class NotFoundError(NotificationError):
    """Raised when a recipient, scheduled row or ledger row does not exist."""

    pass


class ContentResolutionError(NotificationError):
    """Raised when no template exists for a type or the resolved content is incomplete."""

    pass


class TransportError(NotificationError):
    """Raised by a transport client when a message could not be handed off."""

    pass


class DeliveryError(NotificationError):
    """Raised by the send pipeline after a transport failure was recorded in the ledger.

    Attributes:
        event: The ledger event, already marked failed (None if the ledger
            could not be read back)
    """

    def __init__(self, message: str, event: Optional["NotificationEvent"] = None):
        super().__init__(message)
        self.event = event


@dataclass
class RenderedContent:
    """Subject and bodies for one message.

    Attributes:
        subject: Single-line subject
        html: HTML body (may be None before backfilling)
        text: Plain text body (may be None before backfilling)
    """

    subject: str
    html: Optional[str] = None
    text: Optional[str] = None

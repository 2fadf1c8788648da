"""Notification delivery core.

This package provides the per-notification pipeline:
- EventLedger: durable record of every attempt, idempotency gate
- TemplateResolver: Jinja2 subject/HTML/text rendering per notification type
- SMTPTransport: SMTP hand-off with rate limiting and deliverability checks
- SendPipeline: the single choke point that ties them together
"""

from .ledger import EventLedger
from .models import (
    ContentResolutionError,
    DeliveryError,
    NotFoundError,
    NotificationError,
    RenderedContent,
    TransportError,
    ValidationError,
)
from .pipeline import SendPipeline, normalize_address, prepare_content
from .templates import TemplateResolver
from .transport import (
    EmailTransport,
    RateLimiter,
    SMTPTransport,
    build_sender_address,
    check_deliverability,
)

__all__ = [
    # Components
    "EventLedger",
    "SendPipeline",
    "TemplateResolver",
    "EmailTransport",
    "SMTPTransport",
    "RateLimiter",
    # Helpers
    "build_sender_address",
    "check_deliverability",
    "normalize_address",
    "prepare_content",
    # Models
    "RenderedContent",
    # Exceptions
    "NotificationError",
    "ValidationError",
    "NotFoundError",
    "ContentResolutionError",
    "TransportError",
    "DeliveryError",
]

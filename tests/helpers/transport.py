"""In-memory transport for exercising the delivery pipeline without SMTP."""

import threading
import time
from typing import Callable, Dict, List, Optional, Set

from mailroom.notifications.models import TransportError
from mailroom.notifications.transport import EmailTransport


class RecordingTransport(EmailTransport):
    """Records every delivery attempt and fails on demand.

    Args:
        fail_addresses: Addresses whose every attempt fails
        fail_times: Number of initial attempts (across all addresses) that fail
        delay: Seconds to block inside each call (used to widen race windows)
        error: Exception type raised on a failed attempt
    """

    def __init__(
        self,
        fail_addresses: Optional[Set[str]] = None,
        fail_times: int = 0,
        delay: float = 0.0,
        error: Callable[[str], Exception] = TransportError,
    ):
        self.fail_addresses = set(fail_addresses or ())
        self.fail_times = fail_times
        self.delay = delay
        self.error = error
        self.calls: List[Dict[str, Optional[str]]] = []
        self._lock = threading.Lock()

    def deliver(self, to: str, subject: str, html: Optional[str], text: Optional[str]) -> str:
        with self._lock:
            self.calls.append({"to": to, "subject": subject, "html": html, "text": text})
            attempt = len(self.calls)
            fail_now = to in self.fail_addresses or attempt <= self.fail_times

        if self.delay:
            time.sleep(self.delay)

        if fail_now:
            raise self.error(f"Simulated failure for {to}")
        return f"<msg-{attempt}@test>"

    def calls_to(self, address: str) -> List[Dict[str, Optional[str]]]:
        with self._lock:
            return [call for call in self.calls if call["to"] == address]

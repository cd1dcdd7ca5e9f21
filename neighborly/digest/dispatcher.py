"""
Sequential, rate-limited fan-out of one rendered digest.

The email provider allows DISPATCH_RATE_LIMIT_PER_SECOND requests per second.
Sends are strictly sequential with at least 1/rate plus a safety margin
between consecutive sends. The pause is measured from the previous send made
through the same Dispatcher, under a lock, so communities dispatched from the
scheduler thread pool still share one ceiling. A failed send is recorded and the loop
moves on; individual sends are never retried.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from neighborly.config import DISPATCH_RATE_LIMIT_PER_SECOND, DISPATCH_SAFETY_MARGIN_SECONDS
from neighborly.contracts.collaborators import EmailSender
from neighborly.contracts.models import (
    DispatchResult,
    DispatchStatus,
    DispatchSummary,
    Recipient,
    RenderedMessage,
)
from neighborly.observability.logging import get_logger
from neighborly.observability.structured import EventType, RunLogger
from neighborly.observability.telemetry import counter, time_block

logger = get_logger(__name__)


class Dispatcher:
    def __init__(
        self,
        sender: EmailSender,
        rate_limit_per_second: float = DISPATCH_RATE_LIMIT_PER_SECOND,
        safety_margin_seconds: float = DISPATCH_SAFETY_MARGIN_SECONDS,
        sleep_fn: Callable[[float], None] = time.sleep,
        clock_fn: Callable[[], float] = time.monotonic,
    ):
        if rate_limit_per_second <= 0:
            raise ValueError("rate_limit_per_second must be positive")
        self.sender = sender
        self.interval = 1.0 / rate_limit_per_second + safety_margin_seconds
        self.sleep_fn = sleep_fn
        self.clock_fn = clock_fn
        self._lock = threading.Lock()
        self._last_send: float | None = None

    def _send_one(self, recipient: Recipient, message: RenderedMessage) -> DispatchResult:
        try:
            message_id = self.sender.send(recipient, message)
        except Exception as e:
            return DispatchResult(
                recipient=recipient.email,
                status=DispatchStatus.FAILED,
                reason=str(e) or type(e).__name__,
            )
        if not message_id:
            return DispatchResult(
                recipient=recipient.email, status=DispatchStatus.FAILED, reason="no confirmation id"
            )
        return DispatchResult(
            recipient=recipient.email, status=DispatchStatus.SENT, message_id=str(message_id)
        )

    def _paced_send(self, recipient: Recipient, message: RenderedMessage) -> DispatchResult:
        with self._lock:
            if self._last_send is not None:
                remaining = self.interval - (self.clock_fn() - self._last_send)
                if remaining > 0:
                    self.sleep_fn(remaining)
            try:
                return self._send_one(recipient, message)
            finally:
                self._last_send = self.clock_fn()

    def dispatch(
        self,
        message: RenderedMessage,
        recipients: list[Recipient],
        run_log: RunLogger,
    ) -> DispatchSummary:
        """
        Send the message to every recipient in order.

        Returns:
            DispatchSummary with one DispatchResult per recipient

        Side Effects:
            - Calls the email sender once per recipient
            - Sleeps between consecutive sends
        """
        summary = DispatchSummary()
        run_log.log_event(EventType.DISPATCH_START, recipients=len(recipients))

        with time_block("digest.dispatch.latency"):
            for recipient in recipients:
                result = self._paced_send(recipient, message)
                summary.results.append(result)

                if result.status == DispatchStatus.SENT:
                    summary.sent += 1
                    counter("digest.dispatch.sent")
                    run_log.log_event(
                        EventType.SEND_OK, recipient=recipient.email, message_id=result.message_id
                    )
                else:
                    summary.failed += 1
                    counter("digest.dispatch.failed")
                    logger.error("Digest send to %s failed: %s", recipient.email, result.reason)
                    run_log.log_event(
                        EventType.SEND_ERROR, recipient=recipient.email, reason=result.reason
                    )

        run_log.log_event(EventType.DISPATCH_DONE, sent=summary.sent, failed=summary.failed)
        return summary

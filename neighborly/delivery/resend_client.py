"""
Resend email sender.

POSTs one message per recipient to the Resend HTTP API and returns the
provider message id. Errors are raised as DeliveryError; the dispatcher
records them per recipient.
"""

from __future__ import annotations

from typing import Any

import requests

from neighborly.config import RESEND_TIMEOUT_SECONDS
from neighborly.contracts.models import Recipient, RenderedMessage
from neighborly.digest.errors import DeliveryError
from neighborly.infrastructure.settings import DIGEST_FROM_EMAIL, RESEND_API_KEY, RESEND_API_URL
from neighborly.observability.logging import get_logger

logger = get_logger(__name__)


class ResendEmailSender:
    """EmailSender backed by the Resend API."""

    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        api_url: str | None = None,
        timeout: float = RESEND_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key if api_key is not None else RESEND_API_KEY
        self.from_email = from_email or DIGEST_FROM_EMAIL
        self.api_url = api_url or RESEND_API_URL
        self.timeout = timeout
        self.session = session or requests.Session()

        if not self.api_key:
            logger.warning("RESEND_API_KEY not set; every digest send will fail")

    def build_payload(self, recipient: Recipient, message: RenderedMessage) -> dict[str, Any]:
        return {
            "from": self.from_email,
            "to": [recipient.email],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }

    def send(self, recipient: Recipient, message: RenderedMessage) -> str | None:
        """
        Send one message.

        Returns:
            Provider message id, or None if the response carried none

        Raises:
            DeliveryError: On missing credentials, transport errors or non-2xx responses
        """
        if not self.api_key:
            raise DeliveryError("RESEND_API_KEY not configured")

        try:
            response = self.session.post(
                self.api_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=self.build_payload(recipient, message),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else "unknown"
            body = e.response.text[:200] if e.response is not None else ""
            raise DeliveryError(f"Resend rejected message (HTTP {status}): {body}") from e
        except (requests.RequestException, ValueError) as e:
            raise DeliveryError(f"Resend request failed: {e}") from e

        message_id = data.get("id") if isinstance(data, dict) else None
        logger.debug("Resend accepted message id=%s", message_id)
        return message_id

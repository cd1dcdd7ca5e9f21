"""Tests for the Resend email sender"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from neighborly.contracts.models import Recipient, RenderedMessage
from neighborly.delivery.resend_client import ResendEmailSender
from neighborly.digest.errors import DeliveryError

MESSAGE = RenderedMessage(subject="Your Maple Heights weekly summary", html="<p>hi</p>", text="hi")
RECIPIENT = Recipient(email="ana@example.com", name="Ana")


def make_sender(
    response=None, error=None, api_key="re_test"
) -> tuple[ResendEmailSender, MagicMock]:
    session = MagicMock(spec=requests.Session)
    if error is not None:
        session.post.side_effect = error
    else:
        session.post.return_value = response
    sender = ResendEmailSender(
        api_key=api_key,
        from_email="Maple Heights <weekly@example.com>",
        api_url="https://api.resend.test/emails",
        session=session,
    )
    return sender, session


def ok_response(payload) -> MagicMock:
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = payload
    return response


def test_send_posts_payload_and_returns_id():
    sender, session = make_sender(ok_response({"id": "email_123"}))

    assert sender.send(RECIPIENT, MESSAGE) == "email_123"

    _, kwargs = session.post.call_args
    assert session.post.call_args.args[0] == "https://api.resend.test/emails"
    assert kwargs["headers"]["Authorization"] == "Bearer re_test"
    assert kwargs["json"] == {
        "from": "Maple Heights <weekly@example.com>",
        "to": ["ana@example.com"],
        "subject": "Your Maple Heights weekly summary",
        "html": "<p>hi</p>",
        "text": "hi",
    }


def test_response_without_id_returns_none():
    sender, _ = make_sender(ok_response({}))
    assert sender.send(RECIPIENT, MESSAGE) is None


def test_missing_api_key_raises_without_calling_api():
    sender, session = make_sender(ok_response({"id": "x"}), api_key="")
    with pytest.raises(DeliveryError):
        sender.send(RECIPIENT, MESSAGE)
    session.post.assert_not_called()


def test_http_error_raises_delivery_error():
    error_response = MagicMock()
    error_response.status_code = 422
    error_response.text = '{"message": "invalid to"}'
    response = MagicMock()
    response.raise_for_status.side_effect = requests.HTTPError(response=error_response)
    sender, _ = make_sender(response)

    with pytest.raises(DeliveryError, match="HTTP 422"):
        sender.send(RECIPIENT, MESSAGE)


def test_transport_error_raises_delivery_error():
    sender, _ = make_sender(error=requests.ConnectionError("connection reset"))
    with pytest.raises(DeliveryError, match="connection reset"):
        sender.send(RECIPIENT, MESSAGE)

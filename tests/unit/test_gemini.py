"""Tests for the Gemini synthesis adapter (no network; the model is faked)"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from google.api_core import exceptions as gexc
from tenacity import wait_none

from neighborly.config import LLM_TIMEOUT_SECONDS
from neighborly.llm.gemini import (
    GENERATIVEAI,
    GeminiSynthesisService,
    translate_api_error,
)


class ScriptedModel:
    """Stands in for GenerativeModel; pops one outcome per call"""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []
        self.extra = []

    def generate_content(self, prompt, generation_config=None, **kwargs):
        self.calls.append((prompt, generation_config))
        self.extra.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(text=outcome)


def make_service(outcomes, **kwargs):
    model = ScriptedModel(outcomes)
    return GeminiSynthesisService(model=model, wait=wait_none(), **kwargs), model


def test_returns_reply_text_with_json_mime_type():
    service, model = make_service(['{"thisWeek": "hi"}'])

    assert service.synthesize("prompt") == '{"thisWeek": "hi"}'
    prompt, config = model.calls[0]
    assert prompt == "prompt"
    assert config["response_mime_type"] == "application/json"


def test_plain_text_mode_omits_mime_type():
    service, model = make_service(["ok"], json_output=False)
    service.synthesize("prompt")
    assert "response_mime_type" not in model.calls[0][1]


def test_generativeai_backend_gets_request_timeout():
    service, model = make_service(["{}"], backend=GENERATIVEAI)
    service.synthesize("prompt")
    assert model.extra[0] == {"request_options": {"timeout": LLM_TIMEOUT_SECONDS}}


def test_vertex_backend_uses_sdk_deadline():
    service, model = make_service(["{}"])
    service.synthesize("prompt")
    assert model.extra[0] == {}


def test_transient_errors_are_retried():
    service, model = make_service(
        [gexc.ServiceUnavailable("down"), gexc.DeadlineExceeded("slow"), "{}"], max_attempts=3
    )
    assert service.synthesize("prompt") == "{}"
    assert len(model.calls) == 3


def test_gives_up_after_max_attempts():
    service, model = make_service([gexc.ResourceExhausted("429")] * 2, max_attempts=2)
    with pytest.raises(OSError, match="rate limited"):
        service.synthesize("prompt")
    assert len(model.calls) == 2


def test_non_transient_error_is_not_retried():
    service, model = make_service([ValueError("bad request")], max_attempts=3)
    with pytest.raises(ValueError):
        service.synthesize("prompt")
    assert len(model.calls) == 1


@pytest.mark.parametrize(
    "error,expected",
    [
        (gexc.DeadlineExceeded("x"), TimeoutError),
        (gexc.ServiceUnavailable("x"), ConnectionError),
        (gexc.InternalServerError("x"), ConnectionError),
        (gexc.ResourceExhausted("x"), OSError),
    ],
)
def test_translate_api_error(error, expected):
    assert isinstance(translate_api_error(error), expected)


def test_translate_leaves_other_errors_alone():
    error = KeyError("x")
    assert translate_api_error(error) is error

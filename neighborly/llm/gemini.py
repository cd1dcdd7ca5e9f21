"""
Gemini adapter for the digest synthesizer.

Backends, tried in order:
  1. Vertex AI SDK (production) - GOOGLE_CLOUD_PROJECT + service account
  2. google-generativeai (local dev) - GOOGLE_API_KEY

Transient Google API errors are mapped onto TimeoutError / ConnectionError /
OSError and retried with exponential backoff (tenacity). The synthesizer only
ever sees the final reply or the final exception, and falls back on the latter.
"""

from __future__ import annotations

import os
from typing import Any

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from neighborly.config import LLM_MAX_RETRIES, LLM_TIMEOUT_SECONDS
from neighborly.infrastructure.settings import (
    GEMINI_LOCATION,
    GEMINI_MAX_TOKENS,
    GEMINI_MODEL,
    GEMINI_TEMPERATURE,
    GOOGLE_CLOUD_PROJECT,
)
from neighborly.observability.logging import get_logger
from neighborly.observability.telemetry import counter

logger = get_logger(__name__)

SYSTEM_INSTRUCTION = (
    "You write the weekly email digest for a neighborhood community. "
    "Be warm and concrete, never invent people, groups or events that are not "
    "in the data you are given, and reply with JSON only."
)

RETRYABLE = (TimeoutError, ConnectionError, OSError)

VERTEX_AI = "vertexai"
GENERATIVEAI = "generativeai"


class GeminiInitializationError(RuntimeError):
    """Raised when no Gemini backend can be initialized."""


def create_model(
    model_name: str = GEMINI_MODEL, system_instruction: str | None = None
) -> tuple[Any, str]:
    """
    Build a GenerativeModel from whichever SDK is configured.

    Returns:
        (model, backend) where backend is VERTEX_AI or GENERATIVEAI

    Raises:
        GeminiInitializationError: no SDK installed or no credentials set
    """
    project = GOOGLE_CLOUD_PROJECT or os.getenv("GOOGLE_CLOUD_PROJECT")
    if project:
        try:
            import vertexai
            from vertexai.generative_models import GenerativeModel
        except ImportError:
            logger.info("Vertex AI SDK not installed, trying google-generativeai")
        else:
            vertexai.init(project=project, location=GEMINI_LOCATION or "us-central1")
            logger.info("Gemini via Vertex AI: project=%s model=%s", project, model_name)
            return GenerativeModel(model_name, system_instruction=system_instruction), VERTEX_AI

    api_key = os.getenv("GOOGLE_API_KEY")
    if not api_key:
        raise GeminiInitializationError("Neither GOOGLE_CLOUD_PROJECT nor GOOGLE_API_KEY is set")

    try:
        import google.generativeai as genai
    except ImportError as e:
        raise GeminiInitializationError(
            "No Gemini SDK available. Install google-cloud-aiplatform or google-generativeai."
        ) from e

    genai.configure(api_key=api_key)
    logger.info("Gemini via google-generativeai: model=%s", model_name)
    model = genai.GenerativeModel(model_name, system_instruction=system_instruction)
    return model, GENERATIVEAI


def translate_api_error(error: Exception) -> Exception:
    """
    Map a google.api_core error onto a retryable builtin, or return it as is.

    DeadlineExceeded -> TimeoutError, ServiceUnavailable and
    InternalServerError -> ConnectionError, ResourceExhausted (429) -> OSError.
    """
    from google.api_core import exceptions as gexc

    if isinstance(error, gexc.DeadlineExceeded):
        counter("digest.llm.timeout")
        return TimeoutError(f"Gemini call timed out after {LLM_TIMEOUT_SECONDS}s: {error}")
    if isinstance(error, gexc.ResourceExhausted):
        counter("digest.llm.rate_limited")
        return OSError(f"Gemini rate limited: {error}")
    if isinstance(error, (gexc.ServiceUnavailable, gexc.InternalServerError)):
        counter("digest.llm.unavailable")
        return ConnectionError(f"Gemini unavailable: {error}")
    return error


class GeminiSynthesisService:
    """
    TextSynthesisService backed by Gemini.

    The model is created on first use so that wiring the service (for
    example in the CLI) does not require credentials until a digest is
    actually synthesized.
    """

    def __init__(
        self,
        model: Any = None,
        backend: str = VERTEX_AI,
        json_output: bool = True,
        max_attempts: int = LLM_MAX_RETRIES,
        wait: wait_base | None = None,
    ):
        self._model = model
        self.backend = backend
        self.json_output = json_output
        self._retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait or wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(RETRYABLE),
            reraise=True,
        )

    @property
    def model(self) -> Any:
        if self._model is None:
            self._model, self.backend = create_model(system_instruction=SYSTEM_INSTRUCTION)
        return self._model

    def generation_config(self) -> dict[str, Any]:
        config: dict[str, Any] = {
            "temperature": GEMINI_TEMPERATURE,
            "max_output_tokens": GEMINI_MAX_TOKENS,
        }
        if self.json_output:
            config["response_mime_type"] = "application/json"
        return config

    def request_kwargs(self) -> dict[str, Any]:
        """
        Extra generate_content arguments for the active backend.

        google-generativeai takes a per-request timeout; the Vertex AI SDK
        applies its own client deadline.
        """
        if self.backend == GENERATIVEAI:
            return {"request_options": {"timeout": LLM_TIMEOUT_SECONDS}}
        return {}

    def _generate(self, prompt: str) -> str:
        model = self.model
        try:
            response = model.generate_content(
                prompt, generation_config=self.generation_config(), **self.request_kwargs()
            )
        except Exception as e:
            translated = translate_api_error(e)
            if translated is e:
                raise
            logger.warning("Gemini call failed, may retry: %s", translated)
            raise translated from e
        return response.text

    def synthesize(self, prompt: str) -> str:
        logger.info("Calling %s for digest synthesis (%d chars)", GEMINI_MODEL, len(prompt))
        counter("digest.llm.calls")
        return self._retrying(self._generate, prompt)

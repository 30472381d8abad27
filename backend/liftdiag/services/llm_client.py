"""
Generation Client
Single entry point for the diagnostic text-generation call.

Models are tried in priority order (configured primary, then fallbacks):
  model unavailable  -> next model
  quota exhausted    -> abort (every model shares the credential)
  anything else      -> abort
Attempts are sequential; parallel retries would spend the same quota twice.
"""
import json
import logging
from dataclasses import dataclass
from typing import Optional

import litellm

from liftdiag import config
from liftdiag.errors import (
    ConfigurationError,
    GenerationError,
    MalformedResponseError,
    ModelUnavailableError,
    QuotaExhaustedError,
)

logger = logging.getLogger("liftdiag-llm")

# Suppress litellm banner / debug output
litellm.suppress_debug_info = True

SUCCESS = "success"
NEXT_MODEL = "next_model"
FATAL = "fatal"


@dataclass
class Attempt:
    model: str
    outcome: str
    content: Optional[str] = None
    error: Optional[Exception] = None


def is_model_unavailable(exc: Exception) -> bool:
    code = getattr(exc, "code", None)
    message = str(exc).lower()
    return (
        isinstance(exc, litellm.NotFoundError)
        or code == "model_not_found"
        or "model_not_found" in message
        or "does not exist" in message
    )


def is_quota_exhausted(exc: Exception) -> bool:
    code = getattr(exc, "code", None)
    status = getattr(exc, "status_code", None)
    return (
        isinstance(exc, litellm.RateLimitError)
        or code == "insufficient_quota"
        or "insufficient_quota" in str(exc).lower()
        or status == 429
    )


def classify_failure(model: str, exc: Exception) -> Attempt:
    if is_model_unavailable(exc):
        return Attempt(model, NEXT_MODEL, error=ModelUnavailableError(f"Model {model} not available: {exc}"))
    if is_quota_exhausted(exc):
        return Attempt(model, FATAL, error=QuotaExhaustedError(
            "Text-generation quota exceeded. Check the billing plan of the configured API key."
        ))
    return Attempt(model, FATAL, error=GenerationError(f"Generation failed with model {model}: {exc}"))


def response_preview(text: str, limit: int = config.RESPONSE_PREVIEW_CHARS) -> str:
    return (text or "")[:limit]


class GenerationClient:
    def __init__(
        self,
        models: Optional[list] = None,
        api_key: Optional[str] = None,
        max_tokens: int = config.LLM_MAX_TOKENS,
    ):
        self.models = models if models is not None else config.model_priority_list()
        self.api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self.max_tokens = max_tokens

    async def _try_model(self, model: str, request) -> Attempt:
        try:
            response = await litellm.acompletion(
                model=model,
                messages=request.messages(),
                temperature=request.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
                api_key=self.api_key,
            )
        except Exception as e:
            return classify_failure(model, e)

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            return Attempt(model, FATAL, error=GenerationError(f"Empty completion from model {model}"))
        return Attempt(model, SUCCESS, content=content)

    async def generate(self, request) -> str:
        """Raw completion text from the first model that answers."""
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set")
        if not self.models:
            raise ConfigurationError("No generation models configured")

        last_error: Optional[Exception] = None
        for model in self.models:
            logger.info(f"Attempting generation with model {model}")
            attempt = await self._try_model(model, request)
            if attempt.outcome == SUCCESS:
                logger.info(f"Generated analysis with model {model} ({len(attempt.content)} chars)")
                return attempt.content
            if attempt.outcome == NEXT_MODEL:
                logger.warning(f"Model {model} not available, trying next model")
                last_error = attempt.error
                continue
            logger.error(f"Generation aborted on model {model}: {attempt.error}")
            raise attempt.error

        raise GenerationError(
            f"Failed to generate analysis with any available model. Last error: {last_error}"
        )

    async def generate_json(self, request) -> dict:
        content = await self.generate(request)
        try:
            parsed = json.loads(content)
        except ValueError as e:
            preview = response_preview(content)
            logger.error(f"Completion is not valid JSON ({e}); first {len(preview)} chars: {preview}")
            raise MalformedResponseError(f"Failed to parse generated analysis as JSON: {e}", preview=preview)
        if not isinstance(parsed, dict):
            preview = response_preview(content)
            raise MalformedResponseError("Generated analysis is not a JSON object", preview=preview)
        return parsed

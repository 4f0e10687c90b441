"""Content generation gateway.

Wraps the LLM behind a single ``generate`` call. Callers get a
GenerationResult back in every case; network errors, timeouts and
unparsable output are reported as typed failures instead of exceptions.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol

import openai

from .models import FixErrorCode

logger = logging.getLogger(__name__)


class GenerationMode(str, Enum):
    TEXT = "text"  # free-form content
    JSON = "json"  # persona + structured JSON expected


@dataclass
class GenerationRequest:
    """A single prompt sent to the gateway."""
    prompt: str
    mode: GenerationMode = GenerationMode.TEXT
    persona: Optional[str] = None
    max_tokens: int = 1000
    temperature: float = 0.4


@dataclass
class GenerationResult:
    """Result of a gateway call."""
    success: bool
    content: Optional[str] = None
    data: Optional[Any] = None  # parsed JSON in JSON mode
    error: Optional[FixErrorCode] = None
    message: str = ""

    @classmethod
    def failure(cls, error: FixErrorCode, message: str) -> "GenerationResult":
        return cls(success=False, error=error, message=message)


class ContentGateway(Protocol):
    def generate(self, request: GenerationRequest) -> GenerationResult:
        ...


def extract_json(text: str) -> Any:
    """Decode JSON from a model response, tolerating markdown code fences.

    Raises:
        ValueError: if no JSON document can be decoded
    """
    fenced = re.search(r"```(?:json)?\s*(.*?)\s*```", text, re.DOTALL)
    payload = fenced.group(1) if fenced else text.strip()
    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to decode JSON: {e}") from e


class OpenAIGateway:
    """ContentGateway backed by the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        client: Optional[openai.OpenAI] = None,
    ):
        """Initialize the gateway.

        Args:
            api_key: OpenAI API key; without one every call fails with no_credential
            model: Chat model used for all requests
            timeout: Per-request timeout in seconds
            client: Preconfigured client (mainly for tests)
        """
        self.model = model
        self.timeout = timeout
        self.client = client
        if self.client is None and api_key:
            self.client = openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    @classmethod
    def from_settings(cls, settings) -> "OpenAIGateway":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.llm_model,
            timeout=settings.gateway_timeout_seconds,
        )

    def generate(self, request: GenerationRequest) -> GenerationResult:
        if self.client is None:
            return GenerationResult.failure(
                FixErrorCode.NO_CREDENTIAL, "OpenAI API key not configured"
            )

        messages = []
        if request.persona:
            messages.append({"role": "system", "content": request.persona})
        messages.append({"role": "user", "content": request.prompt})

        kwargs: dict[str, Any] = {}
        if request.mode == GenerationMode.JSON:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                timeout=self.timeout,
                **kwargs,
            )
        except openai.APITimeoutError as e:
            logger.warning(f"Gateway request timed out after {self.timeout}s: {e}")
            return GenerationResult.failure(FixErrorCode.TIMEOUT, str(e))
        except openai.AuthenticationError as e:
            logger.error(f"Gateway rejected credentials: {e}")
            return GenerationResult.failure(FixErrorCode.NO_CREDENTIAL, str(e))
        except openai.OpenAIError as e:
            logger.error(f"Gateway request failed: {e}")
            return GenerationResult.failure(FixErrorCode.UPSTREAM_ERROR, str(e))

        if not response.choices:
            return GenerationResult.failure(FixErrorCode.MALFORMED_OUTPUT, "Empty response")

        text = (response.choices[0].message.content or "").strip()
        if not text:
            return GenerationResult.failure(FixErrorCode.MALFORMED_OUTPUT, "Empty completion")

        if request.mode == GenerationMode.JSON:
            try:
                data = extract_json(text)
            except ValueError as e:
                logger.error(f"Gateway returned unparsable JSON: {e}")
                return GenerationResult.failure(FixErrorCode.MALFORMED_OUTPUT, str(e))
            return GenerationResult(success=True, content=text, data=data)

        return GenerationResult(success=True, content=text)

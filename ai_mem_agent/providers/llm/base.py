"""Abstractions for LLM providers."""
from __future__ import annotations

import json
import random
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests
from pydantic import BaseModel, ValidationError

from ai_mem_agent.core.utils.cancellation import AbortSignal, CancellationError
from ai_mem_agent.core.utils.constants import (
    DEFAULT_MAX_CONTEXT_MESSAGES,
    DEFAULT_MAX_ESTIMATED_TOKENS,
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TEMPERATURE,
    HIGH_TOKEN_USAGE_THRESHOLD,
)
from ai_mem_agent.core.utils.logger import get_logger, mask_url, redact

LOGGER = get_logger(__name__)

WIRE_FORMAT_AUTO = "auto"
WIRE_FORMAT_OPENAI = "openai"
WIRE_FORMAT_ANTHROPIC = "anthropic"
WIRE_FORMATS = (WIRE_FORMAT_AUTO, WIRE_FORMAT_OPENAI, WIRE_FORMAT_ANTHROPIC)

ABORT_POLL_INTERVAL = 0.1


@dataclass(frozen=True)
class Message:
    """One conversation turn."""

    role: str
    content: str


@dataclass(frozen=True)
class ProviderConfig:
    """Immutable provider settings resolved once per orchestration attempt."""

    name: str
    endpoint: str
    credential: str = field(repr=False)
    model: str
    wire_format: str = WIRE_FORMAT_AUTO
    max_context_messages: int = DEFAULT_MAX_CONTEXT_MESSAGES
    max_estimated_tokens: int = DEFAULT_MAX_ESTIMATED_TOKENS
    pin_first_turn: bool = False
    temperature: float = DEFAULT_TEMPERATURE
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_retries: int = 1


@dataclass(frozen=True)
class ProviderResult:
    """Normalized outcome of one provider call. ``text`` may be empty."""

    text: str
    tokens_used: int = 0
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 1
    initial_delay: float = 0.5
    max_delay: float = 5.0
    backoff_multiplier: float = 2.0
    jitter_ratio: float = 0.1
    retryable_status_codes: set[int] = field(default_factory=lambda: {429, 500, 502, 503, 504})


class LLMError(RuntimeError):
    """Raised when an LLM provider encounters an error."""


class ConfigurationError(LLMError):
    """Raised when required provider configuration is missing or invalid.

    Fixing it needs operator action, so it is never retried and never fails over.
    """


class LLMTransportError(LLMError):
    """Raised when the HTTP exchange with the provider fails."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMRateLimitError(LLMTransportError):
    """Raised when the provider reports a rate limit condition."""


class LLMTimeoutError(LLMTransportError):
    """Raised when a request times out before the provider responds."""


class LLMConnectionError(LLMTransportError):
    """Raised when the client is unable to reach the provider."""


class LLMResponseError(LLMTransportError):
    """Raised when the provider returns a malformed or error response."""


class LLMRetryExhaustedError(LLMTransportError):
    """Raised when retry attempts are exhausted without success."""


class ProviderBodyError(LLMError):
    """Raised when a 2xx response carries an ``error`` object."""

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class ProviderAdapter(Protocol):
    """Protocol for adapters the orchestrator can drive."""

    config: ProviderConfig

    @property
    def provider_name(self) -> str:
        ...

    def complete(
        self,
        messages: Sequence[Message],
        *,
        abort: AbortSignal | None = None,
    ) -> ProviderResult:
        """Send an already bounded conversation and return the normalized reply."""
        ...


class HTTPProviderAdapter(ABC):
    """Common HTTP/JSON functionality shared by the wire-format adapters."""

    wire_format: str = ""
    _response_model: type[BaseModel]

    def __init__(
        self,
        config: ProviderConfig,
        *,
        endpoint: str,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self.config = config
        self.endpoint = endpoint
        self.timeout = config.timeout
        self.retry_config = retry_config or RetryConfig(max_retries=max(1, config.max_retries))
        self._executor: ThreadPoolExecutor | None = None

    @property
    def provider_name(self) -> str:
        return self.config.name

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    @abstractmethod
    def _build_headers(self) -> Dict[str, str]:
        """Return the provider-specific auth and content headers."""

    @abstractmethod
    def _prepare_payload(self, messages: Sequence[Message]) -> Dict[str, Any]:
        """Return the provider-specific request payload."""

    @abstractmethod
    def _to_result(self, response: BaseModel) -> ProviderResult:
        """Convert a validated response body into a :class:`ProviderResult`."""

    def _redact(self, text: str) -> str:
        return redact(text, [self.config.credential])

    def _error_from_status(self, status_code: int, response_text: str) -> LLMTransportError:
        message = self._redact(
            f"{self.provider_name} API error {status_code}: {response_text}"
        )
        if status_code == 429:
            return LLMRateLimitError(message, status_code=status_code)
        if status_code in {408, 504}:
            return LLMTimeoutError(message, status_code=status_code)
        if status_code in {502, 503}:
            return LLMConnectionError(message, status_code=status_code)
        return LLMResponseError(message, status_code=status_code)

    def _calculate_delay(self, attempt: int) -> float:
        base_delay = min(
            self.retry_config.max_delay,
            self.retry_config.initial_delay * (self.retry_config.backoff_multiplier ** (attempt - 1)),
        )
        if base_delay <= 0:
            return 0.0
        jitter_ratio = max(0.0, self.retry_config.jitter_ratio)
        if jitter_ratio == 0:
            return base_delay
        jitter_span = base_delay * jitter_ratio
        lower = max(0.0, base_delay - jitter_span)
        upper = base_delay + jitter_span
        return random.uniform(lower, upper)

    def _wrap_transport_error(self, exc: Exception) -> LLMTransportError:
        if isinstance(exc, requests.Timeout):
            return LLMTimeoutError(self._redact(f"{self.provider_name} request timed out: {exc}"))
        return LLMConnectionError(self._redact(f"{self.provider_name} connection failed: {exc}"))

    def _decode_json(self, response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise LLMResponseError(
                f"Invalid JSON response from {self.provider_name} API",
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise LLMResponseError(
                f"Unexpected {self.provider_name} response structure: expected a JSON object",
                status_code=response.status_code,
            )
        return data

    def _send(self, headers: Dict[str, str], body: str, abort: AbortSignal | None) -> requests.Response:
        """Issue the POST, waiting on ``abort`` so cancellation is prompt."""
        if abort is None:
            return requests.post(self.endpoint, headers=headers, data=body, timeout=self.timeout)

        abort.raise_if_aborted()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix=f"{self.provider_name}-http"
            )
        future: Future = self._executor.submit(
            requests.post, self.endpoint, headers=headers, data=body, timeout=self.timeout
        )
        while True:
            try:
                return future.result(timeout=ABORT_POLL_INTERVAL)
            except TimeoutError:
                if abort.aborted:
                    # The in-flight request finishes in the background and is discarded.
                    future.cancel()
                    raise CancellationError(abort.reason or "aborted") from None

    def _post(self, payload: Dict[str, Any], abort: AbortSignal | None = None) -> Dict[str, Any]:
        headers = self._build_headers()
        body = json.dumps(payload)
        last_error: LLMTransportError | None = None

        for attempt in range(1, self.retry_config.max_retries + 1):
            try:
                response = self._send(headers, body, abort)

                if response.status_code in self.retry_config.retryable_status_codes:
                    error = self._error_from_status(response.status_code, response.text)
                    last_error = error
                    if attempt == self.retry_config.max_retries:
                        if attempt == 1:
                            raise error
                        raise LLMRetryExhaustedError(
                            f"{self.provider_name} request exhausted retries: {error}",
                            status_code=error.status_code,
                        ) from error
                    time.sleep(self._calculate_delay(attempt))
                    continue

                if response.status_code >= 400:
                    raise self._error_from_status(response.status_code, response.text)

                return self._decode_json(response)

            except (requests.Timeout, requests.ConnectionError) as exc:
                last_error = self._wrap_transport_error(exc)
                if attempt == self.retry_config.max_retries:
                    raise last_error from None
                time.sleep(self._calculate_delay(attempt))
            except requests.RequestException as exc:
                raise LLMResponseError(
                    self._redact(f"{self.provider_name} request failed: {exc}")
                ) from None

        raise LLMRetryExhaustedError(
            f"{self.provider_name} request failed after {self.retry_config.max_retries} attempts: {last_error}",
            status_code=getattr(last_error, "status_code", None),
        )

    # ------------------------------------------------------------------
    # High level API
    # ------------------------------------------------------------------

    def complete(
        self,
        messages: Sequence[Message],
        *,
        abort: AbortSignal | None = None,
    ) -> ProviderResult:
        payload = self._prepare_payload(messages)
        LOGGER.debug(
            "Querying %s (%s, %s format): %s turns, %s chars",
            self.provider_name,
            self.config.model,
            self.wire_format,
            len(messages),
            sum(len(message.content) for message in messages),
        )
        data = self._post(payload, abort)
        self._raise_for_body_error(data)
        try:
            parsed = self._response_model.model_validate(data)
        except ValidationError as exc:
            raise LLMResponseError(
                f"Unexpected {self.provider_name} response structure: {exc.error_count()} invalid field(s)"
            ) from exc

        result = self._to_result(parsed)
        self._log_usage(result, len(messages))
        if not result.text:
            LOGGER.error(
                "Empty response from %s (%s)", self.provider_name, mask_url(self.endpoint)
            )
        return result

    @abstractmethod
    def _raise_for_body_error(self, data: Dict[str, Any]) -> None:
        """Raise :class:`ProviderBodyError` when a 2xx body carries an ``error`` object."""

    def _log_usage(self, result: ProviderResult, turns: int) -> None:
        LOGGER.info(
            "%s API usage: model=%s input=%s output=%s total=%s turns=%s",
            self.provider_name,
            self.config.model,
            result.input_tokens,
            result.output_tokens,
            result.tokens_used,
            turns,
        )
        if result.tokens_used > HIGH_TOKEN_USAGE_THRESHOLD:
            LOGGER.warning(
                "High token usage detected (%s tokens) - consider reducing context",
                result.tokens_used,
            )

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None


__all__ = [
    "ConfigurationError",
    "HTTPProviderAdapter",
    "LLMConnectionError",
    "LLMError",
    "LLMRateLimitError",
    "LLMResponseError",
    "LLMRetryExhaustedError",
    "LLMTimeoutError",
    "LLMTransportError",
    "Message",
    "ProviderAdapter",
    "ProviderBodyError",
    "ProviderConfig",
    "ProviderResult",
    "RetryConfig",
    "WIRE_FORMATS",
    "WIRE_FORMAT_ANTHROPIC",
    "WIRE_FORMAT_AUTO",
    "WIRE_FORMAT_OPENAI",
]

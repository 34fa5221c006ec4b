"""
Shared client for OpenAI-compatible ``/audio/transcriptions`` services.

Sends the WAV as a multipart upload with a bearer token, classifies every
failure into a ProviderError subclass and applies the provider's
RetryPolicy.
"""

import logging
import time
from typing import Callable, Mapping, Optional, Tuple, Type, TypeVar
from urllib.parse import urlparse

import requests

from . import Provider, ProviderRequirements, RetryPolicy
from ..errors import (
    AuthError,
    ClientError,
    ConfigurationError,
    EmptyResultError,
    NetworkError,
    ProviderError,
    ProviderTimeoutError,
    ServerError,
)
from ..types import ProviderConfig, TranscriptionResult

logger = logging.getLogger(__name__)

N = TypeVar("N", int, float)

# Longest slice of an error response body kept in messages
MAX_ERROR_BODY = 300


def _parse_number(env: Mapping[str, str], key: str, kind: Type[N], default: N) -> N:
    """Read a numeric env var, falling back to default when unset."""
    raw = env.get(key, "")
    if raw is None or not str(raw).strip():
        return default
    try:
        return kind(str(raw).strip())
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from None


class OpenAICompatibleProvider(Provider):
    """
    Base for providers that accept ``file`` + ``model`` multipart uploads.

    Subclasses set the class attributes below; the request, error
    classification and retry loop are shared.
    """

    name = "openai_compatible"
    display_name = "OpenAI-compatible"
    env_prefix = ""
    default_endpoint = ""
    default_model = ""
    default_language: Optional[str] = None
    default_timeout = 120.0
    default_max_retries = 3
    retry_policy = RetryPolicy()
    documentation = ""
    optional_settings: Tuple[str, ...] = ("API_URL", "MODEL", "TIMEOUT", "MAX_RETRIES")
    response_text_keys: Tuple[str, ...] = ("text",)

    def __init__(
        self,
        config: ProviderConfig,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.endpoint = config.endpoint or self.default_endpoint
        self.model = config.model or self.default_model
        self.language = config.language or self.default_language
        self._http = session if session is not None else requests.Session()
        self._sleep = sleep

    @classmethod
    def requirements(cls) -> ProviderRequirements:
        return ProviderRequirements(
            name=cls.name,
            display_name=cls.display_name,
            required_keys=[f"{cls.env_prefix}_API_KEY"],
            optional_keys=[f"{cls.env_prefix}_{suffix}" for suffix in cls.optional_settings],
            documentation=cls.documentation,
            retry_policy=cls.retry_policy,
        )

    @classmethod
    def config_from_env(cls, env: Mapping[str, str]) -> ProviderConfig:
        prefix = cls.env_prefix
        credential = (env.get(f"{prefix}_API_KEY") or "").strip()
        if not credential:
            req = cls.requirements()
            raise ConfigurationError(
                f"Invalid configuration for {cls.display_name} provider. "
                f"Required keys: {', '.join(req.required_keys)}. "
                f"Optional keys: {', '.join(req.optional_keys)}"
            )

        timeout = _parse_number(env, f"{prefix}_TIMEOUT", float, cls.default_timeout)
        max_retries = _parse_number(env, f"{prefix}_MAX_RETRIES", int, cls.default_max_retries)
        if timeout <= 0:
            raise ConfigurationError(f"{prefix}_TIMEOUT must be positive, got {timeout}")
        if max_retries < 1:
            raise ConfigurationError(f"{prefix}_MAX_RETRIES must be at least 1, got {max_retries}")

        endpoint = (env.get(f"{prefix}_API_URL") or "").strip() or None
        if endpoint is not None:
            parsed = urlparse(endpoint)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                req = cls.requirements()
                raise ConfigurationError(
                    f"{prefix}_API_URL must be an http(s) URL, got {endpoint!r}. "
                    f"Required keys: {', '.join(req.required_keys)}. "
                    f"Optional keys: {', '.join(req.optional_keys)}"
                )

        language = None
        if "LANGUAGE" in cls.optional_settings:
            language = (env.get(f"{prefix}_LANGUAGE") or "").strip() or None

        return ProviderConfig(
            provider_name=cls.name,
            credential=credential,
            endpoint=endpoint,
            model=(env.get(f"{prefix}_MODEL") or "").strip() or None,
            timeout=timeout,
            max_retries=max_retries,
            language=language,
        )

    def transcribe(self, audio: bytes) -> TranscriptionResult:
        """
        Transcribe WAV audio, retrying transient failures.

        Args:
            audio: WAV-encoded audio bytes

        Returns:
            TranscriptionResult with trimmed, non-empty text

        Raises:
            ProviderError: The kind observed on the final attempt
        """
        if not audio:
            raise ValueError("Audio is required and cannot be empty")

        start = time.time()
        max_retries = max(1, self.config.max_retries)
        logger.info("[%s] Transcribing %d bytes of audio...", self.name, len(audio))

        attempt = 0
        while True:
            attempt += 1
            try:
                text = self._request(audio)
            except ProviderError as e:
                e.attempts = attempt
                if attempt < max_retries and self._should_retry(e):
                    delay = attempt * self.retry_policy.base_delay
                    logger.warning(
                        "[%s] %s error (attempt %d/%d), retrying in %.1fs: %s",
                        self.name, e.kind, attempt, max_retries, delay, e,
                    )
                    self._sleep(delay)
                    continue
                self._log_failure(e, attempt, max_retries)
                raise

            elapsed_ms = int((time.time() - start) * 1000)
            logger.info(
                "[%s] Transcribed in %.2fs (attempt %d): \"%s\"",
                self.name, elapsed_ms / 1000, attempt, text,
            )
            return TranscriptionResult(
                text=text,
                provider=self.name,
                elapsed_ms=elapsed_ms,
                attempts=attempt,
            )

    def _should_retry(self, error: ProviderError) -> bool:
        if isinstance(error, NetworkError):
            return True
        if isinstance(error, ServerError):
            return self.retry_policy.retry_server_errors
        return False

    def _log_failure(self, error: ProviderError, attempt: int, max_retries: int) -> None:
        if isinstance(error, ProviderTimeoutError):
            logger.error(
                "[%s] Timeout after %.0fs - server may be overloaded",
                self.name, self.config.timeout,
            )
        elif error.status is not None:
            logger.error("[%s] API error %s: %s", self.name, error.status, error)
        else:
            logger.error(
                "[%s] %s error after %d/%d attempts: %s",
                self.name, error.kind, attempt, max_retries, error,
            )

    def _request(self, audio: bytes) -> str:
        """Send one request and return trimmed text, or raise a ProviderError."""
        files = {"file": ("audio.wav", audio, "audio/wav")}
        data = {"model": self.model}
        if self.language:
            data["language"] = self.language

        try:
            response = self._http.post(
                self.endpoint,
                headers={"Authorization": f"Bearer {self.config.credential}"},
                files=files,
                data=data,
                timeout=self.config.timeout,
            )
        except requests.exceptions.ConnectTimeout as e:
            # No connection was made, same as any other network failure
            raise NetworkError(f"Connection timed out: {e}", provider=self.name) from e
        except requests.exceptions.Timeout as e:
            raise ProviderTimeoutError(f"Request timed out: {e}", provider=self.name) from e
        except (
            requests.exceptions.InvalidURL,
            requests.exceptions.MissingSchema,
            requests.exceptions.InvalidSchema,
            requests.exceptions.InvalidHeader,
        ) as e:
            # Malformed URL or header
            raise ClientError(f"Invalid request: {e}", provider=self.name) from e
        except requests.exceptions.RequestException as e:
            # SSLError, ConnectionError, ChunkedEncodingError, ...
            raise NetworkError(f"Network error - no response received: {e}", provider=self.name) from e

        status = response.status_code
        if status >= 400:
            body = (response.text or "")[:MAX_ERROR_BODY]
            message = f"{status} {response.reason or ''}: {body}".strip()
            if status >= 500:
                raise ServerError(message, provider=self.name, status=status)
            if status in (401, 403):
                raise AuthError(message, provider=self.name, status=status)
            raise ClientError(message, provider=self.name, status=status)

        try:
            payload = response.json()
        except ValueError as e:
            raise ServerError(
                f"Response was not JSON: {(response.text or '')[:MAX_ERROR_BODY]}",
                provider=self.name,
                status=status,
            ) from e

        text = ""
        if isinstance(payload, dict):
            for key in self.response_text_keys:
                value = payload.get(key)
                if isinstance(value, str) and value.strip():
                    text = value
                    break

        if not text.strip():
            raise EmptyResultError("Empty transcription result", provider=self.name, status=status)
        return text.strip()

    def close(self) -> None:
        self._http.close()

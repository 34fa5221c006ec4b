"""
Transcription providers and the registry that selects one.

Each provider is a remote speech-to-text service behind the same
``transcribe(audio) -> TranscriptionResult`` interface. Providers are
looked up by name in PROVIDERS; when no name is configured, the provider
whose credential is present in the environment is chosen.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Type

from ..errors import ConfigurationError
from ..types import ProviderConfig, TranscriptionResult


@dataclass(frozen=True)
class RetryPolicy:
    """
    How a provider retries a failed request.

    Network/TLS failures are always retried. Timeouts never are.
    Server errors (5xx) are retried only when retry_server_errors is set.
    The delay before attempt N+1 is N * base_delay seconds.
    """
    base_delay: float = 1.0
    retry_server_errors: bool = False


@dataclass(frozen=True)
class ProviderRequirements:
    """Environment keys and documentation for one provider."""
    name: str
    display_name: str
    required_keys: List[str]
    optional_keys: List[str] = field(default_factory=list)
    documentation: str = ""
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    def describe(self) -> str:
        """Human-readable block used in error messages and --list-providers."""
        lines = [
            f"{self.display_name} ({self.name})",
            f"  Required: {', '.join(self.required_keys)}",
        ]
        if self.optional_keys:
            lines.append(f"  Optional: {', '.join(self.optional_keys)}")
        for doc_line in self.documentation.splitlines():
            lines.append(f"  {doc_line}")
        return "\n".join(lines)


class Provider(ABC):
    """
    Base class for transcription providers.

    Subclasses must implement:
    - transcribe(): Send audio and return the text
    - requirements(): Describe environment keys and retry policy
    - config_from_env(): Build a ProviderConfig from an environment mapping
    """

    name: str = "base"

    @abstractmethod
    def transcribe(self, audio: bytes) -> TranscriptionResult:
        """
        Transcribe audio to text.

        Args:
            audio: WAV-encoded audio

        Returns:
            TranscriptionResult with non-empty, trimmed text

        Raises:
            ProviderError: A subclass naming the last failure kind observed
        """

    @classmethod
    @abstractmethod
    def requirements(cls) -> ProviderRequirements:
        """Describe this provider's configuration keys and retry policy."""

    @classmethod
    @abstractmethod
    def config_from_env(cls, env: Mapping[str, str]) -> ProviderConfig:
        """Build and validate a ProviderConfig from environment variables."""

    def close(self) -> None:
        """Release HTTP resources."""


from .nexara import NexaraProvider  # noqa: E402
from .palatine import PalatineProvider  # noqa: E402


PROVIDERS: Dict[str, Type[Provider]] = {
    NexaraProvider.name: NexaraProvider,
    PalatineProvider.name: PalatineProvider,
}

SELECTOR_KEYS = ("TRANSCRIPTION_PROVIDER", "PROVIDER")


def available_providers() -> List[str]:
    """Names of all registered providers."""
    return list(PROVIDERS)


def all_requirements() -> List[ProviderRequirements]:
    """Requirements for every registered provider, in registry order."""
    return [cls.requirements() for cls in PROVIDERS.values()]


def describe_all() -> str:
    """Listing of every provider and its keys, for error messages."""
    return "\n".join(req.describe() for req in all_requirements())


def register(name: str, provider_cls: Type[Provider]) -> None:
    """Add a provider class to the registry under a case-insensitive name."""
    if not name or not isinstance(name, str):
        raise ValueError("Provider name must be a non-empty string")
    if not (isinstance(provider_cls, type) and issubclass(provider_cls, Provider)):
        raise TypeError(f"{provider_cls!r} is not a Provider subclass")
    PROVIDERS[name.strip().lower()] = provider_cls


def _lookup(name: str) -> Type[Provider]:
    provider_cls = PROVIDERS.get(name.strip().lower())
    if provider_cls is None:
        raise ConfigurationError(
            f'Unknown transcription provider: "{name}". '
            f"Available providers: {', '.join(available_providers())}\n\n"
            f"{describe_all()}"
        )
    return provider_cls


def create_provider(name: str, env: Mapping[str, str]) -> Provider:
    """
    Build a provider by name, reading its settings from env.

    Raises:
        ConfigurationError: Unknown name or invalid settings
    """
    if not name or not name.strip():
        raise ConfigurationError("Provider name is required")
    provider_cls = _lookup(name)
    config = provider_cls.config_from_env(env)
    return provider_cls(config)


def select_provider(
    env: Mapping[str, str],
    explicit: Optional[str] = None,
) -> Provider:
    """
    Choose and build the provider for this invocation.

    An explicit name (argument, then TRANSCRIPTION_PROVIDER or PROVIDER)
    wins. Otherwise exactly one provider must have its credential set.

    Raises:
        ConfigurationError: No provider, or more than one, can be selected
    """
    name = explicit
    if not name:
        for key in SELECTOR_KEYS:
            if env.get(key, "").strip():
                name = env[key]
                break

    if name:
        return create_provider(name, env)

    candidates = [
        provider_name
        for provider_name, provider_cls in PROVIDERS.items()
        if all(env.get(key, "").strip() for key in provider_cls.requirements().required_keys)
    ]

    if len(candidates) == 1:
        return create_provider(candidates[0], env)

    if not candidates:
        reason = "No transcription provider configured."
    else:
        reason = (
            f"Several providers are configured ({', '.join(candidates)}); "
            f"set TRANSCRIPTION_PROVIDER to choose one."
        )
    raise ConfigurationError(
        f"{reason} Set TRANSCRIPTION_PROVIDER or provide exactly one API key. "
        f"Available providers: {', '.join(available_providers())}\n\n"
        f"{describe_all()}"
    )

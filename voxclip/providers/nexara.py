"""
Nexara API provider for cloud transcription.
"""

from . import RetryPolicy
from .openai_compat import OpenAICompatibleProvider


class NexaraProvider(OpenAICompatibleProvider):
    """
    Cloud transcription using the Nexara API (default provider).

    Retries dropped connections and TLS errors (common behind VPNs) with a
    short linear backoff. Server errors are not retried.
    """

    name = "nexara"
    display_name = "Nexara"
    env_prefix = "NEXARA"
    default_endpoint = "https://api.nexara.ru/api/v1/audio/transcriptions"
    default_model = "nexara-1"
    default_timeout = 120.0
    default_max_retries = 10
    retry_policy = RetryPolicy(base_delay=1.0, retry_server_errors=False)
    documentation = (
        "Get an API key from https://nexara.ru/\n"
        "Models: nexara-1 (default), whisper-1 (legacy)"
    )

"""
Palatine Speech API provider for cloud transcription.
"""

from . import RetryPolicy
from .openai_compat import OpenAICompatibleProvider


class PalatineProvider(OpenAICompatibleProvider):
    """
    Cloud transcription using Palatine Speech (Russian-first, 57 languages).

    Slower to answer than Nexara, so the default timeout is longer.
    Server errors are retried along with network errors.
    """

    name = "palatine"
    display_name = "Palatine"
    env_prefix = "PALATINE"
    default_endpoint = "https://api.palatine.ru/api/v1/audio/transcriptions"
    default_model = "palatine_audio"
    default_language = "ru"
    default_timeout = 180.0
    default_max_retries = 3
    retry_policy = RetryPolicy(base_delay=2.0, retry_server_errors=True)
    optional_settings = ("API_URL", "MODEL", "LANGUAGE", "TIMEOUT", "MAX_RETRIES")
    response_text_keys = ("text", "transcription")
    documentation = (
        "Get an API key from https://speech.palatine.ru/\n"
        "Language defaults to ru; set PALATINE_LANGUAGE for others"
    )

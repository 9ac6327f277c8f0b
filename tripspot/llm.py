"""OpenAI-compatible chat client construction.

Both the extractor and the advisory generator talk to the same
OpenAI-compatible endpoint. The key, optional base URL and model name
come from the persisted settings, so a client is built per call rather
than once at import time.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from openai import OpenAI

from tripspot.config import LLM_TIMEOUT_SEC
from tripspot.errors import ConfigurationError
from tripspot.models import DEFAULT_LLM_MODEL, Settings


def get_client(settings: Settings) -> OpenAI:
    """Return a chat client for ``settings`` or raise ``ConfigurationError``."""
    if not settings.llm_api_key:
        raise ConfigurationError("LLM API key is not configured")
    options = {
        "api_key": settings.llm_api_key,
        "timeout": LLM_TIMEOUT_SEC,
        "max_retries": 0,
    }
    # custom base URL for self-hosted or third-party compatible models
    if settings.llm_base_url:
        options["base_url"] = settings.llm_base_url
    return OpenAI(**options)


@contextmanager
def client_session(settings: Settings, client: Optional[OpenAI] = None) -> Iterator[OpenAI]:
    """Yield ``client`` as is, or a fresh client that is closed afterwards."""
    if client is not None:
        yield client
        return
    owned = get_client(settings)
    try:
        yield owned
    finally:
        owned.close()


def model_name(settings: Settings) -> str:
    return settings.llm_model or DEFAULT_LLM_MODEL

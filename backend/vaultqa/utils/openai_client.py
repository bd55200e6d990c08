"""
Lazy-initialized OpenAI clients, one per API key.

Clients are created on first use so importing the service never requires a
key to be configured.
"""

import os
import threading
from typing import Dict, Optional

import httpx
from openai import OpenAI

_clients: Dict[str, OpenAI] = {}
_lock = threading.Lock()

# Timeout configuration: 30s total request, 10s connect
DEFAULT_TIMEOUT = httpx.Timeout(float(os.getenv("DEEP_REPAIR_TIMEOUT", "30")), connect=10.0)


def get_openai_client(api_key: Optional[str] = None) -> OpenAI:
    """
    Get a lazily-initialized OpenAI client for an API key.

    Args:
        api_key: Key to authenticate with. Falls back to OPENAI_API_KEY.

    Returns:
        OpenAI: The cached client for that key

    Raises:
        ValueError: If no key is given and OPENAI_API_KEY is not set
    """
    key = api_key or os.getenv("OPENAI_API_KEY")
    if not key:
        raise ValueError(
            "OPENAI_API_KEY environment variable is not set. "
            "Please set it before using deep repair."
        )

    with _lock:
        if key not in _clients:
            _clients[key] = OpenAI(api_key=key, timeout=DEFAULT_TIMEOUT)
        return _clients[key]


def reset_client() -> None:
    """
    Drop cached clients (useful for testing or when keys rotate).
    """
    with _lock:
        _clients.clear()

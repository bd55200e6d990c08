"""
Round-robin pool of generative-service API keys.

Deep repair bursts are spread across every configured key to stay under
per-key rate limits. The cursor belongs to the pool instance, so separate
pools (tests, parallel batches) never share rotation state.
"""

import os
import logging
import threading
from typing import Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)

MAX_NUMBERED_KEYS = 14


class CredentialPool:
    """Thread-safe round-robin cursor over API keys."""

    def __init__(self, keys: Iterable[str]):
        self._keys: List[str] = []
        for key in keys:
            key = (key or "").strip()
            if key and key not in self._keys:
                self._keys.append(key)
        if not self._keys:
            raise ValueError(
                "No API keys configured. Set OPENAI_API_KEYS, OPENAI_API_KEY_1..N "
                "or OPENAI_API_KEY before using deep repair."
            )
        self._cursor = 0
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CredentialPool":
        """
        Build a pool from the environment.

        Precedence: OPENAI_API_KEYS (comma separated), then numbered
        OPENAI_API_KEY_1..OPENAI_API_KEY_14, then the single OPENAI_API_KEY.
        """
        env = os.environ if environ is None else environ

        listed = env.get("OPENAI_API_KEYS", "")
        keys = [k for k in listed.split(",") if k.strip()]
        if not keys:
            keys = [env[f"OPENAI_API_KEY_{i}"] for i in range(1, MAX_NUMBERED_KEYS + 1) if env.get(f"OPENAI_API_KEY_{i}")]
        if not keys and env.get("OPENAI_API_KEY"):
            keys = [env["OPENAI_API_KEY"]]

        pool = cls(keys)
        logger.info(f"Credential pool loaded with {len(pool)} key(s)")
        return pool

    def next_key(self) -> str:
        with self._lock:
            key = self._keys[self._cursor]
            self._cursor = (self._cursor + 1) % len(self._keys)
        return key

    def __len__(self) -> int:
        return len(self._keys)

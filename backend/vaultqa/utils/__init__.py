"""
Vault QA Utilities Package

Contains:
- openai_client: Lazy-initialized OpenAI clients, one per API key
"""

from vaultqa.utils.openai_client import get_openai_client, reset_client

__all__ = ["get_openai_client", "reset_client"]

"""
Mock infrastructure for Vault QA testing.
Provides deterministic mocks for OpenAI.
"""

from .openai_mocks import (
    MOCK_REPAIRED_ITEM,
    MockOpenAIClient,
    MockChatCompletion,
    mock_openai_completion,
    fenced,
)

__all__ = [
    "MOCK_REPAIRED_ITEM",
    "MockOpenAIClient",
    "MockChatCompletion",
    "mock_openai_completion",
    "fenced",
]

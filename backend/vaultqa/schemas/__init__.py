"""
Vault QA Schemas Package

Pydantic models for item documents returned by the generative service.
"""

from vaultqa.schemas.item import (
    # Components
    Option,
    Blank,
    Scoring,
    Pedagogy,
    QuestionTrap,
    Mnemonic,
    AnswerBreakdown,
    Rationale,

    # Main schema
    ItemDocument,
)

__all__ = [
    "Option",
    "Blank",
    "Scoring",
    "Pedagogy",
    "QuestionTrap",
    "Mnemonic",
    "AnswerBreakdown",
    "Rationale",
    "ItemDocument",
]

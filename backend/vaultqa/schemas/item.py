"""
Item Document Schemas for Vault QA

Pydantic models describing a structured exam item. The QA engine itself
reads plain dicts; these models gate documents that come back from the
generative service before they are accepted as repairs.

Unknown fields are kept (extra="allow") because every item type carries its
own type-specific fields.
"""

from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field, field_validator

from vaultqa.services.item_model import parse_item_type, resolve_type_alias


# =============================================================================
# COMPONENT SCHEMAS
# =============================================================================

class Option(BaseModel):
    id: str
    text: str = ""
    isCorrect: Optional[bool] = None

    class Config:
        extra = "allow"


class Blank(BaseModel):
    id: str
    correctOption: str
    options: Optional[List[str]] = None

    class Config:
        extra = "allow"


class Scoring(BaseModel):
    method: str
    maxPoints: Union[int, float]

    class Config:
        extra = "allow"


class Pedagogy(BaseModel):
    bloomLevel: Optional[str] = None
    cjmmStep: Optional[str] = None
    nclexCategory: Optional[str] = None
    difficulty: Optional[Union[int, str]] = None
    topicTags: List[str] = Field(default_factory=list)

    class Config:
        extra = "allow"


class QuestionTrap(BaseModel):
    trap: str
    howToOvercome: str


class Mnemonic(BaseModel):
    title: str
    expansion: str


class AnswerBreakdown(BaseModel):
    label: str
    content: str
    isCorrect: Optional[bool] = None


class Rationale(BaseModel):
    correct: str
    incorrect: str = ""
    reviewUnits: List[Any] = Field(default_factory=list)
    answerBreakdown: Optional[List[AnswerBreakdown]] = None
    clinicalPearls: Optional[List[str]] = None
    questionTrap: Optional[QuestionTrap] = None
    mnemonic: Optional[Mnemonic] = None

    class Config:
        extra = "allow"


# =============================================================================
# ITEM DOCUMENT
# =============================================================================

class ItemDocument(BaseModel):
    """
    A complete exam item. Validates identity and common fields; type-specific
    shape is left to the QA evaluators, which report on it precisely.
    """
    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    stem: str = Field(..., min_length=1)
    itemContext: Optional[Dict[str, Any]] = None
    pedagogy: Optional[Pedagogy] = None
    rationale: Optional[Rationale] = None
    scoring: Optional[Scoring] = None
    options: Optional[List[Union[Option, str]]] = None
    blanks: Optional[List[Blank]] = None

    @field_validator("type")
    @classmethod
    def validate_known_type(cls, v):
        """Accept canonical discriminators and the aliases the repairer resolves."""
        if parse_item_type(v) is None and resolve_type_alias(v) is None:
            raise ValueError(f"Unknown item type: {v}")
        return v

    class Config:
        extra = "allow"
        json_schema_extra = {
            "example": {
                "id": "mc-hf-0001",
                "type": "multipleChoice",
                "stem": "The nurse is caring for a client with heart failure who reports sudden dyspnea. Which action should the nurse take first?",
                "options": [
                    {"id": "a", "text": "Place the client in high Fowler's position"},
                    {"id": "b", "text": "Obtain a 12-lead ECG"},
                    {"id": "c", "text": "Administer furosemide as prescribed"},
                    {"id": "d", "text": "Notify the health care provider"},
                ],
                "correctOptionId": "a",
                "scoring": {"method": "dichotomous", "maxPoints": 1},
                "pedagogy": {
                    "bloomLevel": "apply",
                    "cjmmStep": "takeAction",
                    "nclexCategory": "Physiological Adaptation",
                    "difficulty": 3,
                    "topicTags": ["Heart Failure"],
                },
            }
        }

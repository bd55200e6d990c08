"""
Item Document Model for the Vault QA engine

Defines the closed vocabulary the QA engine works against:
- ItemType discriminators and the structural family each belongs to
- Scoring rules per type (allowed methods, expected maxPoints)
- Pedagogy enumerations and the alias tables used to canonicalise them
- Diagnostic / report dataclasses shared by evaluators, scanner and repairers
- Small accessors for reading loosely-shaped item documents

Items themselves stay plain JSON dicts. They arrive from generators and the
cloud store in every shape imaginable, and the engine must be able to report
on a broken document instead of refusing to load it.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple


# =============================================================================
# ITEM TYPES
# =============================================================================

class ItemType(str, Enum):
    """Known item-type discriminators."""
    MULTIPLE_CHOICE = "multipleChoice"
    SELECT_ALL = "selectAll"
    SELECT_N = "selectN"
    HIGHLIGHT = "highlight"
    ORDERED_RESPONSE = "orderedResponse"
    MATRIX_MATCH = "matrixMatch"
    CLOZE_DROPDOWN = "clozeDropdown"
    DRAG_AND_DROP_CLOZE = "dragAndDropCloze"
    BOWTIE = "bowtie"
    TREND = "trend"
    PRIORITY_ACTION = "priorityAction"
    HOTSPOT = "hotspot"
    GRAPHIC = "graphic"
    AUDIO_VIDEO = "audioVideo"
    CHART_EXHIBIT = "chartExhibit"


class ItemFamily(Enum):
    """Structural families; every evaluator that inspects shape dispatches on these."""
    SINGLE_ANSWER = "single_answer"
    MULTI_SELECT = "multi_select"
    ORDERED = "ordered"
    HIGHLIGHT = "highlight"
    MATRIX = "matrix"
    CLOZE = "cloze"
    BOWTIE = "bowtie"
    HOTSPOT = "hotspot"


ITEM_FAMILIES: Dict[ItemType, ItemFamily] = {
    ItemType.MULTIPLE_CHOICE: ItemFamily.SINGLE_ANSWER,
    ItemType.PRIORITY_ACTION: ItemFamily.SINGLE_ANSWER,
    ItemType.TREND: ItemFamily.SINGLE_ANSWER,
    ItemType.GRAPHIC: ItemFamily.SINGLE_ANSWER,
    ItemType.AUDIO_VIDEO: ItemFamily.SINGLE_ANSWER,
    ItemType.CHART_EXHIBIT: ItemFamily.SINGLE_ANSWER,
    ItemType.SELECT_ALL: ItemFamily.MULTI_SELECT,
    ItemType.SELECT_N: ItemFamily.MULTI_SELECT,
    ItemType.ORDERED_RESPONSE: ItemFamily.ORDERED,
    ItemType.HIGHLIGHT: ItemFamily.HIGHLIGHT,
    ItemType.MATRIX_MATCH: ItemFamily.MATRIX,
    ItemType.CLOZE_DROPDOWN: ItemFamily.CLOZE,
    ItemType.DRAG_AND_DROP_CLOZE: ItemFamily.CLOZE,
    ItemType.BOWTIE: ItemFamily.BOWTIE,
    ItemType.HOTSPOT: ItemFamily.HOTSPOT,
}

# Aliases seen in generator output (snake_case, lowercase, dashed)
TYPE_ALIASES: Dict[str, ItemType] = {
    "multiple_choice": ItemType.MULTIPLE_CHOICE,
    "multiplechoice": ItemType.MULTIPLE_CHOICE,
    "select_all": ItemType.SELECT_ALL,
    "selectall": ItemType.SELECT_ALL,
    "sata": ItemType.SELECT_ALL,
    "select_n": ItemType.SELECT_N,
    "selectn": ItemType.SELECT_N,
    "ordered_response": ItemType.ORDERED_RESPONSE,
    "orderedresponse": ItemType.ORDERED_RESPONSE,
    "matrix_match": ItemType.MATRIX_MATCH,
    "matrixmatch": ItemType.MATRIX_MATCH,
    "cloze_dropdown": ItemType.CLOZE_DROPDOWN,
    "clozedropdown": ItemType.CLOZE_DROPDOWN,
    "drag_and_drop_cloze": ItemType.DRAG_AND_DROP_CLOZE,
    "draganddropcloze": ItemType.DRAG_AND_DROP_CLOZE,
    "drag_drop_cloze": ItemType.DRAG_AND_DROP_CLOZE,
    "priority_action": ItemType.PRIORITY_ACTION,
    "priorityaction": ItemType.PRIORITY_ACTION,
    "chart_exhibit": ItemType.CHART_EXHIBIT,
    "chartexhibit": ItemType.CHART_EXHIBIT,
    "audio_video": ItemType.AUDIO_VIDEO,
    "audiovideo": ItemType.AUDIO_VIDEO,
    "bow_tie": ItemType.BOWTIE,
    "hot_spot": ItemType.HOTSPOT,
}


def parse_item_type(value: Any) -> Optional[ItemType]:
    """Return the ItemType for an exact discriminator, or None."""
    if not isinstance(value, str):
        return None
    try:
        return ItemType(value)
    except ValueError:
        return None


def resolve_type_alias(value: Any) -> Optional[ItemType]:
    """Resolve a non-canonical type string (e.g. 'multiple-choice') to an ItemType."""
    if not isinstance(value, str):
        return None
    key = value.strip().lower().replace("-", "_").replace(" ", "_")
    if key in TYPE_ALIASES:
        return TYPE_ALIASES[key]
    for item_type in ItemType:
        if item_type.value.lower() == key.replace("_", ""):
            return item_type
    return None


# =============================================================================
# SCORING RULES
# =============================================================================

class ScoringMethod(str, Enum):
    DICHOTOMOUS = "dichotomous"
    POLYTOMOUS = "polytomous"
    LINKAGE = "linkage"


VALID_SCORING_METHODS = {m.value for m in ScoringMethod}

# Legacy method names rewritten by the repairer
SCORING_METHOD_ALIASES = {
    "linkedDyadTriad": ScoringMethod.POLYTOMOUS.value,
    "plus-minus": ScoringMethod.POLYTOMOUS.value,
    "0/1": ScoringMethod.DICHOTOMOUS.value,
}

# type -> (allowed methods, default method)
SCORING_RULES: Dict[ItemType, Tuple[Tuple[str, ...], str]] = {
    ItemType.MULTIPLE_CHOICE: (("dichotomous",), "dichotomous"),
    ItemType.PRIORITY_ACTION: (("dichotomous",), "dichotomous"),
    ItemType.TREND: (("dichotomous",), "dichotomous"),
    ItemType.GRAPHIC: (("dichotomous",), "dichotomous"),
    ItemType.AUDIO_VIDEO: (("dichotomous",), "dichotomous"),
    ItemType.CHART_EXHIBIT: (("dichotomous",), "dichotomous"),
    ItemType.ORDERED_RESPONSE: (("dichotomous",), "dichotomous"),
    ItemType.SELECT_ALL: (("polytomous",), "polytomous"),
    ItemType.SELECT_N: (("polytomous",), "polytomous"),
    ItemType.HIGHLIGHT: (("polytomous",), "polytomous"),
    ItemType.MATRIX_MATCH: (("polytomous",), "polytomous"),
    ItemType.CLOZE_DROPDOWN: (("polytomous", "linkage"), "polytomous"),
    ItemType.DRAG_AND_DROP_CLOZE: (("polytomous", "linkage"), "polytomous"),
    ItemType.BOWTIE: (("polytomous", "linkage"), "polytomous"),
    ItemType.HOTSPOT: (("polytomous",), "polytomous"),
}


def expected_max_points(item: Dict[str, Any]) -> Optional[int]:
    """
    maxPoints implied by an item's correctness structure.

    Returns None when the structure needed to derive it is absent (that is a
    type-structure defect, not a scoring one) or when the method does not
    pin maxPoints (linkage cloze).
    """
    item_type = parse_item_type(item.get("type"))
    if item_type is None:
        return None

    scoring = item.get("scoring") if isinstance(item.get("scoring"), dict) else {}
    method = scoring.get("method")
    family = ITEM_FAMILIES[item_type]

    if family in (ItemFamily.SINGLE_ANSWER, ItemFamily.ORDERED) or method == "dichotomous":
        return 1
    if family == ItemFamily.MULTI_SELECT:
        return _count(item.get("correctOptionIds"))
    if family == ItemFamily.HIGHLIGHT:
        return _count(item.get("correctSpanIndices"))
    if family == ItemFamily.MATRIX:
        return _count(item.get("rows"))
    if family == ItemFamily.CLOZE:
        if method == "linkage":
            return None
        return _count(item.get("blanks"))
    if family == ItemFamily.BOWTIE:
        actions = _count(item.get("correctActionIds"))
        parameters = _count(item.get("correctParameterIds"))
        if actions is None or parameters is None:
            return None
        return actions + parameters + 1
    if family == ItemFamily.HOTSPOT:
        return _count(item.get("correctHotspotIds"))
    return None


def _count(value: Any) -> Optional[int]:
    if isinstance(value, list) and value:
        return len(value)
    return None


# =============================================================================
# PEDAGOGY VOCABULARY
# =============================================================================

BLOOM_LEVELS = ("remember", "understand", "apply", "analyze", "evaluate", "create")

CJMM_STEPS = (
    "recognizeCues",
    "analyzeCues",
    "prioritizeHypotheses",
    "generateSolutions",
    "takeAction",
    "evaluateOutcomes",
)

NCLEX_CATEGORIES = (
    "Management of Care",
    "Safety and Infection Prevention and Control",
    "Health Promotion and Maintenance",
    "Psychosocial Integrity",
    "Basic Care and Comfort",
    "Pharmacological and Parenteral Therapies",
    "Reduction of Risk Potential",
    "Physiological Adaptation",
)

BLOOM_ALIASES = {
    "remembering": "remember",
    "understanding": "understand",
    "applying": "apply",
    "application": "apply",
    "analyzing": "analyze",
    "analysis": "analyze",
    "evaluating": "evaluate",
    "evaluation": "evaluate",
    "creating": "create",
}

DIFFICULTY_WORDS = {
    "easy": 1,
    "low": 1,
    "moderate": 3,
    "medium": 3,
    "hard": 4,
    "high": 4,
    "expert": 5,
}

PEDAGOGY_DEFAULTS = {
    "bloomLevel": "apply",
    "cjmmStep": "analyzeCues",
    "nclexCategory": "Physiological Adaptation",
    "difficulty": 3,
    "topicTags": ["General"],
}


def canonical_bloom(value: Any) -> Optional[str]:
    """Canonical Bloom level for a value or a known alias ('Applying' -> 'apply')."""
    if not isinstance(value, str):
        return None
    lowered = value.strip().lower()
    if lowered in BLOOM_LEVELS:
        return lowered
    return BLOOM_ALIASES.get(lowered)


def canonical_cjmm(value: Any) -> Optional[str]:
    """Canonical CJMM step for 'takeAction', 'Take Action' or 'take_action'."""
    if not isinstance(value, str):
        return None
    squashed = value.strip().lower().replace(" ", "").replace("_", "").replace("-", "")
    for step in CJMM_STEPS:
        if step.lower() == squashed:
            return step
    return None


def canonical_category(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    lowered = value.strip().lower()
    for category in NCLEX_CATEGORIES:
        if category.lower() == lowered:
            return category
    return None


def canonical_difficulty(value: Any) -> Optional[int]:
    """Difficulty as an int 1-5; accepts numeric strings and difficulty words."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and float(value).is_integer() and 1 <= value <= 5:
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit() and 1 <= int(stripped) <= 5:
            return int(stripped)
        return DIFFICULTY_WORDS.get(stripped.lower())
    return None


# =============================================================================
# REPORT TYPES
# =============================================================================

class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class Dimension(str, Enum):
    """Quality dimensions, in report order."""
    COMPLETENESS = "completeness"
    TYPE_STRUCTURE = "typeStructure"
    SCORING_ACCURACY = "scoringAccuracy"
    PEDAGOGY = "pedagogy"
    RATIONALE_QUALITY = "rationaleQuality"
    OPTION_LOGIC = "optionLogic"
    DATA_REFERENCES = "dataReferences"
    ERROR_DETECTION = "errorDetection"
    ISOLATION_SAFETY = "isolationSafety"
    SBAR_SPECIFICITY = "sbarSpecificity"
    EHR_SYNC = "ehrSync"
    STUDY_COMPANION = "studyCompanion"


class Verdict(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


@dataclass(frozen=True)
class Diagnostic:
    """A single reported defect"""
    dimension: Dimension
    severity: Severity
    code: str
    message: str
    field: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimension": self.dimension.value,
            "severity": self.severity.value,
            "code": self.code,
            "message": self.message,
            "field": self.field,
        }


@dataclass
class DimensionResult:
    score: float
    diagnostics: List[Diagnostic]


@dataclass
class ItemReport:
    """QA result for one item. Derived; recomputed on demand."""
    item_id: str
    item_type: str
    dimension_scores: Dict[Dimension, float]
    diagnostics: List[Diagnostic]
    score: float
    verdict: Verdict
    checked_at: datetime = field(default_factory=datetime.utcnow, compare=False)

    @property
    def critical_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity == Severity.CRITICAL)

    @property
    def diagnostic_codes(self) -> List[str]:
        return [d.code for d in self.diagnostics]

    def diagnostics_for(self, dimension: Dimension) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.dimension == dimension]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "item_type": self.item_type,
            "score": self.score,
            "verdict": self.verdict.value,
            "dimension_scores": {d.value: s for d, s in self.dimension_scores.items()},
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass
class BankReport:
    """Aggregate over a scanned collection. Replaced wholesale on re-scan."""
    total_items: int
    passed: int
    warned: int
    failed: int
    overall_score: float
    dimension_summary: Dict[Dimension, Dict[str, int]]
    type_distribution: Dict[str, int]
    item_reports: List[ItemReport]
    checked_at: datetime = field(default_factory=datetime.utcnow, compare=False)

    def to_dict(self, include_items: bool = True) -> Dict[str, Any]:
        data = {
            "total_items": self.total_items,
            "passed": self.passed,
            "warned": self.warned,
            "failed": self.failed,
            "overall_score": self.overall_score,
            "dimension_summary": {d.value: s for d, s in self.dimension_summary.items()},
            "type_distribution": dict(self.type_distribution),
            "checked_at": self.checked_at.isoformat(),
        }
        if include_items:
            data["item_reports"] = [r.to_dict() for r in self.item_reports]
        return data


# =============================================================================
# DOCUMENT ACCESSORS
# =============================================================================

def as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def text_of(value: Any) -> str:
    """Searchable text for any JSON value."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def is_blank(value: Any) -> bool:
    """None, whitespace-only strings and empty containers count as blank."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def word_count(text: str) -> int:
    return len(text.split())


def iter_text_fields(value: Any, path: str = "", skip_keys: Tuple[str, ...] = ()) -> Iterator[Tuple[str, str]]:
    """Yield (path, text) for every string inside a JSON value."""
    if isinstance(value, str):
        yield path, value
    elif isinstance(value, dict):
        for key, child in value.items():
            if key in skip_keys:
                continue
            yield from iter_text_fields(child, f"{path}.{key}" if path else str(key), skip_keys)
    elif isinstance(value, list):
        for idx, child in enumerate(value):
            yield from iter_text_fields(child, f"{path}[{idx}]", skip_keys)


def map_text_fields(value: Any, transform: Callable[[str, str], str], path: str = "",
                    skip_keys: Tuple[str, ...] = ()) -> Any:
    """Return a copy of a JSON value with transform(path, text) applied to every string."""
    if isinstance(value, str):
        return transform(path, value)
    if isinstance(value, dict):
        return {
            key: child if key in skip_keys
            else map_text_fields(child, transform, f"{path}.{key}" if path else str(key), skip_keys)
            for key, child in value.items()
        }
    if isinstance(value, list):
        return [map_text_fields(child, transform, f"{path}[{idx}]", skip_keys) for idx, child in enumerate(value)]
    return value


# =============================================================================
# CHART CONTEXT
# =============================================================================

CHART_TABS = ("sbar", "vitals", "labs", "physicalExam", "orders", "mar", "imaging")

TAB_ALIASES = {
    "notes": "sbar",
    "sbarnote": "sbar",
    "handoff": "sbar",
    "vitalsigns": "vitals",
    "lab": "labs",
    "laboratory": "labs",
    "labresults": "labs",
    "exam": "physicalExam",
    "physical": "physicalExam",
    "assessment": "physicalExam",
    "medications": "mar",
    "meds": "mar",
    "medicationadministrationrecord": "mar",
    "radiology": "imaging",
    "providerorders": "orders",
}


def canonical_tab(name: Any) -> Optional[str]:
    if not isinstance(name, str):
        return None
    squashed = name.strip().lower().replace(" ", "").replace("_", "").replace("-", "")
    for tab in CHART_TABS:
        if tab.lower() == squashed:
            return tab
    return TAB_ALIASES.get(squashed)


def sbar_to_text(value: Any) -> str:
    """Flatten an SBAR note given as a string or as a section dict."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        if isinstance(value.get("content"), str) and not value.get("situation"):
            return value["content"]
        sections = ("situation", "background", "assessment", "recommendation")
        parts = [f"{s.title()}: {text_of(value.get(s))}" for s in sections if value.get(s)]
        if value.get("timestamp"):
            parts.insert(0, text_of(value.get("timestamp")))
        return "\n".join(parts)
    return text_of(value)


def chart_tabs(item: Dict[str, Any]) -> Dict[str, str]:
    """
    Chart tab contents keyed by canonical tab id.

    Reads both the flat form (itemContext.sbar, itemContext.vitals, ...) and
    the list form (itemContext.tabs = [{id, title, content}]).
    """
    context = as_dict(item.get("itemContext"))
    tabs: Dict[str, str] = {}

    for key, value in context.items():
        tab = canonical_tab(key)
        if tab is None or value is None:
            continue
        tabs[tab] = sbar_to_text(value) if tab == "sbar" else text_of(value)

    for entry in as_list(context.get("tabs")):
        if not isinstance(entry, dict):
            continue
        tab = canonical_tab(entry.get("id")) or canonical_tab(entry.get("title"))
        if tab is None:
            continue
        content = entry.get("content")
        text = sbar_to_text(content) if tab == "sbar" else text_of(content)
        tabs[tab] = f"{tabs[tab]}\n{text}".strip() if tab in tabs else text

    return tabs


def patient_of(item: Dict[str, Any]) -> Dict[str, Any]:
    return as_dict(as_dict(item.get("itemContext")).get("patient"))


def option_ids(item: Dict[str, Any], key: str = "options") -> List[Any]:
    return [o.get("id") for o in as_list(item.get(key)) if isinstance(o, dict)]


def correct_answer_texts(item: Dict[str, Any]) -> List[str]:
    """Text of every answer the item keys as correct, whatever its family."""
    item_type = parse_item_type(item.get("type"))
    if item_type is None:
        return []
    family = ITEM_FAMILIES[item_type]
    options = {o.get("id"): text_of(o.get("text")) for o in as_list(item.get("options")) if isinstance(o, dict)}

    if family == ItemFamily.SINGLE_ANSWER:
        answer = options.get(item.get("correctOptionId"))
        return [answer] if answer else []
    if family == ItemFamily.MULTI_SELECT:
        return [options[i] for i in as_list(item.get("correctOptionIds")) if i in options]
    if family == ItemFamily.ORDERED:
        return [options[i] for i in as_list(item.get("correctOrder")) if i in options]
    if family == ItemFamily.BOWTIE:
        actions = {a.get("id"): text_of(a.get("text")) for a in as_list(item.get("actions")) if isinstance(a, dict)}
        return [actions[i] for i in as_list(item.get("correctActionIds")) if i in actions]
    if family == ItemFamily.CLOZE:
        return [text_of(b.get("correctOption")) for b in as_list(item.get("blanks")) if isinstance(b, dict)]
    if family == ItemFamily.MATRIX:
        columns = {c.get("id"): text_of(c.get("text")) for c in as_list(item.get("columns")) if isinstance(c, dict)}
        selected = []
        for value in as_dict(item.get("correctMatches")).values():
            selected.extend(value if isinstance(value, list) else [value])
        return [columns[c] for c in selected if isinstance(c, str) and c in columns]
    # highlight and hotspot answers are spans/regions, not recommendations
    return []


# Every type must belong to a family and carry a scoring rule
_unmapped = (set(ItemType) - set(ITEM_FAMILIES)) | (set(ItemType) - set(SCORING_RULES))
if _unmapped:
    raise RuntimeError(f"Item types missing from dispatch tables: {sorted(t.value for t in _unmapped)}")

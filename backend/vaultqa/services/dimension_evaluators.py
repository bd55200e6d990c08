"""
Dimension Evaluators

One pure function per quality dimension, each mapping an item document to a
DimensionResult (0-100 score + diagnostics):

1.  completeness       - required fields present and non-empty
2.  typeStructure      - type-specific shape, dispatched per item family
3.  scoringAccuracy    - scoring method / maxPoints vs. correctness structure
4.  pedagogy           - Bloom / CJMM / NCLEX category / difficulty / tags
5.  rationaleQuality   - explanations present, long enough, not templated
6.  optionLogic        - option ids/text unique, correctness maps consistent
7.  dataReferences     - referenced chart tabs exist and carry real data
8.  errorDetection     - placeholder strings, leaked errors, control chars
9.  isolationSafety    - allergy / isolation precaution contradictions
10. sbarSpecificity    - SBAR length band and military time notation
11. ehrSync            - values cited in the stem/rationale exist in the chart
12. studyCompanion     - clinical pearls, question trap and mnemonic

An evaluator that cannot read an item's shape reports a critical PARSE
diagnostic and the minimum score for its dimension instead of raising.
"""

import os
import re
import logging
import functools
from difflib import SequenceMatcher
from typing import Any, Callable, Dict, List, Optional

from vaultqa.services.item_model import (
    BLOOM_LEVELS,
    CJMM_STEPS,
    ITEM_FAMILIES,
    NCLEX_CATEGORIES,
    SCORING_RULES,
    VALID_SCORING_METHODS,
    Diagnostic,
    Dimension,
    DimensionResult,
    ItemFamily,
    ItemType,
    Severity,
    as_dict,
    as_list,
    canonical_bloom,
    canonical_category,
    canonical_cjmm,
    canonical_difficulty,
    chart_tabs,
    correct_answer_texts,
    expected_max_points,
    is_blank,
    iter_text_fields,
    option_ids,
    parse_item_type,
    patient_of,
    text_of,
    word_count,
)
from vaultqa.services.qa_rules import (
    CONTROL_CHARACTERS,
    GENERIC_RATIONALE_RULES,
    LAZY_TAB_RULES,
    PLACEHOLDER_RULES,
)
from vaultqa.services.score_aggregator import MIN_DIMENSION_SCORE, dimension_score

logger = logging.getLogger(__name__)

# Thresholds
MIN_STEM_CHARS = 10
SHORT_STEM_CHARS = 25
RATIONALE_MIN_WORDS = int(os.getenv("RATIONALE_MIN_WORDS", "20"))
NEAR_DUPLICATE_RATIO = 0.9
SBAR_MIN_WORDS = 120
SBAR_MAX_WORDS = 160

# Shape errors an evaluator may hit on a malformed document
EVALUATOR_ERRORS = (AttributeError, TypeError, KeyError, ValueError, IndexError)


class Findings:
    """Diagnostic collector bound to one dimension."""

    def __init__(self, dimension: Dimension):
        self.dimension = dimension
        self.diagnostics: List[Diagnostic] = []

    def add(self, severity: Severity, code: str, message: str, field: Optional[str] = None) -> None:
        self.diagnostics.append(Diagnostic(self.dimension, severity, code, message, field))

    def critical(self, code: str, message: str, field: Optional[str] = None) -> None:
        self.add(Severity.CRITICAL, code, message, field)

    def warning(self, code: str, message: str, field: Optional[str] = None) -> None:
        self.add(Severity.WARNING, code, message, field)

    def info(self, code: str, message: str, field: Optional[str] = None) -> None:
        self.add(Severity.INFO, code, message, field)


Evaluator = Callable[[Any], DimensionResult]


def evaluator(dimension: Dimension, prefix: str) -> Callable[[Callable[[Dict[str, Any], Findings], None]], Evaluator]:
    """Wrap a check function into an evaluator that never raises on bad shapes."""

    def decorator(check: Callable[[Dict[str, Any], Findings], None]) -> Evaluator:
        @functools.wraps(check)
        def run(item: Any) -> DimensionResult:
            findings = Findings(dimension)
            try:
                if not isinstance(item, dict):
                    raise TypeError(f"item is {type(item).__name__}, not an object")
                check(item, findings)
            except EVALUATOR_ERRORS as e:
                item_id = item.get("id") if isinstance(item, dict) else None
                logger.debug(f"{dimension.value} could not evaluate item {item_id}: {e}")
                parse_failure = Diagnostic(
                    dimension,
                    Severity.CRITICAL,
                    f"{prefix}-PARSE",
                    f"Item could not be evaluated for {dimension.value}: {e}",
                )
                return DimensionResult(MIN_DIMENSION_SCORE, [parse_failure])
            return DimensionResult(dimension_score(findings.diagnostics), findings.diagnostics)

        run.dimension = dimension
        return run

    return decorator


def _require_dict(value: Any, name: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise TypeError(f"{name} is {type(value).__name__}, not an object")
    return value


# =============================================================================
# 1. COMPLETENESS
# =============================================================================

@evaluator(Dimension.COMPLETENESS, "COMP")
def check_completeness(item: Dict[str, Any], found: Findings) -> None:
    if is_blank(item.get("id")):
        found.critical("COMP-001", "Missing item ID.", "id")
    if is_blank(item.get("type")):
        found.critical("COMP-002", "Missing item type.", "type")

    stem = item.get("stem")
    if not isinstance(stem, str) or len(stem.strip()) < MIN_STEM_CHARS:
        found.critical("COMP-003", f"Stem is missing or too short (<{MIN_STEM_CHARS} chars).", "stem")

    if is_blank(item.get("scoring")):
        found.critical("COMP-004", "Missing scoring rule.", "scoring")

    rationale = item.get("rationale")
    if is_blank(rationale):
        found.critical("COMP-005", "Missing rationale.", "rationale")
    elif isinstance(rationale, dict) and is_blank(rationale.get("correct")):
        found.critical("COMP-007", "Rationale has no correct-answer explanation.", "rationale.correct")

    if is_blank(item.get("pedagogy")):
        found.critical("COMP-006", "Missing pedagogy metadata.", "pedagogy")


# =============================================================================
# 2. TYPE STRUCTURE
# =============================================================================

def _has_items(value: Any, minimum: int = 1) -> bool:
    return isinstance(value, list) and len(value) >= minimum


def _structure_single_answer(item: Dict[str, Any], item_type: ItemType, found: Findings) -> None:
    if not _has_items(item.get("options"), 2):
        found.critical("TYPE-010", f"{item_type.value} requires >=2 options.", "options")
    if is_blank(item.get("correctOptionId")):
        found.critical("TYPE-011", f"{item_type.value} requires correctOptionId.", "correctOptionId")


def _structure_multi_select(item: Dict[str, Any], item_type: ItemType, found: Findings) -> None:
    if not _has_items(item.get("options"), 4):
        found.critical("TYPE-020", f"{item_type.value} requires >=4 options.", "options")
    correct_ids = item.get("correctOptionIds")
    if not isinstance(correct_ids, list):
        found.critical("TYPE-021", f"{item_type.value} requires a correctOptionIds list.", "correctOptionIds")

    if item_type == ItemType.SELECT_N:
        n = item.get("n")
        if isinstance(n, bool) or not isinstance(n, int) or n < 1:
            found.critical("TYPE-022", 'selectN requires a positive integer "n" field.', "n")
        elif isinstance(correct_ids, list) and correct_ids and n != len(correct_ids):
            found.warning("TYPE-023", f"selectN n ({n}) does not match correctOptionIds count ({len(correct_ids)}).", "n")


def _structure_ordered(item: Dict[str, Any], item_type: ItemType, found: Findings) -> None:
    options = item.get("options")
    if not _has_items(options, 3):
        found.critical("TYPE-040", "orderedResponse requires >=3 options.", "options")
    order = item.get("correctOrder")
    if not isinstance(order, list):
        found.critical("TYPE-041", "orderedResponse requires correctOrder.", "correctOrder")
    elif isinstance(options, list) and set(order) != set(option_ids(item)):
        found.critical("TYPE-042", "correctOrder must list every option id exactly once.", "correctOrder")


def _structure_highlight(item: Dict[str, Any], item_type: ItemType, found: Findings) -> None:
    passage = item.get("passage")
    if not isinstance(passage, str) or len(passage) < 30:
        found.critical("TYPE-030", "highlight requires a passage (>=30 chars).", "passage")
    spans = item.get("correctSpanIndices")
    if not isinstance(spans, list) or not all(
        isinstance(i, int) and not isinstance(i, bool) and i >= 0 for i in spans
    ):
        found.critical("TYPE-031", "highlight requires correctSpanIndices as non-negative integers.", "correctSpanIndices")


def _structure_matrix(item: Dict[str, Any], item_type: ItemType, found: Findings) -> None:
    rows, columns, matches = item.get("rows"), item.get("columns"), item.get("correctMatches")
    if not _has_items(rows, 2):
        found.critical("TYPE-050", "matrixMatch requires >=2 rows.", "rows")
    if not _has_items(columns, 2):
        found.critical("TYPE-051", "matrixMatch requires >=2 columns.", "columns")
    if not isinstance(matches, dict):
        found.critical("TYPE-052", "matrixMatch requires a correctMatches map.", "correctMatches")
        return

    row_ids = set(option_ids(item, "rows"))
    column_ids = set(option_ids(item, "columns"))
    for row_id in option_ids(item, "rows"):
        if is_blank(matches.get(row_id)):
            found.critical("TYPE-053", f'Row "{row_id}" has no correct column.', f"correctMatches.{row_id}")
    for row_id, selected in matches.items():
        if row_id not in row_ids:
            found.critical("TYPE-054", f'correctMatches references unknown row "{row_id}".', "correctMatches")
        for column_id in (selected if isinstance(selected, list) else [selected]):
            if column_id not in column_ids:
                found.critical("TYPE-054", f'correctMatches maps "{row_id}" to unknown column "{column_id}".', f"correctMatches.{row_id}")


def _structure_cloze(item: Dict[str, Any], item_type: ItemType, found: Findings) -> None:
    if not isinstance(item.get("template"), str) or not item["template"].strip():
        found.critical("TYPE-060", f"{item_type.value} requires a template string.", "template")
    blanks = item.get("blanks")
    if not _has_items(blanks):
        found.critical("TYPE-061", f"{item_type.value} requires >=1 blanks.", "blanks")
        return
    for idx, blank in enumerate(blanks):
        if is_blank(_require_dict(blank, f"blanks[{idx}]").get("correctOption")):
            found.critical("TYPE-062", f"Blank {idx} missing correctOption.", f"blanks[{idx}].correctOption")


def _structure_bowtie(item: Dict[str, Any], item_type: ItemType, found: Findings) -> None:
    if not _has_items(item.get("actions")) or not _has_items(item.get("parameters")):
        found.critical("TYPE-070", "bowtie requires actions and parameters pools.", "actions")

    condition = item.get("condition")
    conditions = item.get("potentialConditions")
    if is_blank(condition) or not isinstance(conditions, list) or condition not in conditions:
        found.critical("TYPE-071", "bowtie condition must be one of potentialConditions.", "condition")

    for pool_key, ids_key in (("actions", "correctActionIds"), ("parameters", "correctParameterIds")):
        ids = item.get(ids_key)
        if not isinstance(ids, list) or not ids:
            found.critical("TYPE-072", f"bowtie requires {ids_key}.", ids_key)
            continue
        pool = set(option_ids(item, pool_key))
        for ref in ids:
            if ref not in pool:
                found.critical("TYPE-072", f'{ids_key} contains "{ref}" which is not in {pool_key}.', ids_key)


def _structure_hotspot(item: Dict[str, Any], item_type: ItemType, found: Findings) -> None:
    if not isinstance(item.get("hotspots"), list):
        found.critical("TYPE-080", "hotspot requires a hotspots array.", "hotspots")
    correct = item.get("correctHotspotIds")
    if not isinstance(correct, list):
        found.critical("TYPE-081", "hotspot requires correctHotspotIds.", "correctHotspotIds")
        return
    known = set(option_ids(item, "hotspots"))
    for ref in correct:
        if ref not in known:
            found.critical("TYPE-082", f'correctHotspotIds contains "{ref}" which is not a hotspot.', "correctHotspotIds")


_STRUCTURE_CHECKS: Dict[ItemFamily, Callable[[Dict[str, Any], ItemType, Findings], None]] = {
    ItemFamily.SINGLE_ANSWER: _structure_single_answer,
    ItemFamily.MULTI_SELECT: _structure_multi_select,
    ItemFamily.ORDERED: _structure_ordered,
    ItemFamily.HIGHLIGHT: _structure_highlight,
    ItemFamily.MATRIX: _structure_matrix,
    ItemFamily.CLOZE: _structure_cloze,
    ItemFamily.BOWTIE: _structure_bowtie,
    ItemFamily.HOTSPOT: _structure_hotspot,
}


@evaluator(Dimension.TYPE_STRUCTURE, "TYPE")
def check_type_structure(item: Dict[str, Any], found: Findings) -> None:
    item_type = parse_item_type(item.get("type"))
    if item_type is None:
        found.critical("TYPE-001", f'Unknown item type: "{item.get("type")}".', "type")
        return
    _STRUCTURE_CHECKS[ITEM_FAMILIES[item_type]](item, item_type, found)


# =============================================================================
# 3. SCORING ACCURACY
# =============================================================================

def _is_positive_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return isinstance(value, int) and value >= 1


def _pool_values(options: Any) -> List[str]:
    """Drag-and-drop pools are plain strings or {id, text} dicts."""
    values = []
    for option in as_list(options):
        if isinstance(option, dict):
            values.extend(v for v in (option.get("id"), option.get("text")) if v is not None)
        else:
            values.append(option)
    return values


@evaluator(Dimension.SCORING_ACCURACY, "SCORE")
def check_scoring_accuracy(item: Dict[str, Any], found: Findings) -> None:
    scoring = item.get("scoring")
    if is_blank(scoring):
        found.warning("SCORE-001", "No scoring rule defined.", "scoring")
        return
    scoring = _require_dict(scoring, "scoring")
    item_type = parse_item_type(item.get("type"))

    method = scoring.get("method")
    if method not in VALID_SCORING_METHODS:
        found.critical("SCORE-002", f'Invalid scoring method: "{method}".', "scoring.method")
    elif item_type is not None and method not in SCORING_RULES[item_type][0]:
        found.warning("SCORE-005", f'Scoring method "{method}" is not used for {item_type.value} items.', "scoring.method")

    max_points = scoring.get("maxPoints")
    if max_points is None:
        found.critical("SCORE-003", "scoring.maxPoints is missing.", "scoring.maxPoints")
    elif not _is_positive_int(max_points):
        found.critical("SCORE-004", f"scoring.maxPoints must be a positive integer, got: {max_points!r}.", "scoring.maxPoints")
    elif method == "dichotomous" and max_points != 1:
        found.critical("SCORE-010", f"Dichotomous scoring must have maxPoints=1, got {max_points}.", "scoring.maxPoints")
    else:
        expected = expected_max_points(item)
        if expected is not None and max_points != expected:
            found.critical(
                "SCORE-020",
                f"maxPoints ({max_points}) does not match the correctness map of this {item.get('type')} item ({expected}).",
                "scoring.maxPoints",
            )

    # Correctness references must point at real options
    options = item.get("options")
    known = set(option_ids(item)) if isinstance(options, list) else None

    correct_id = item.get("correctOptionId")
    if known is not None and not is_blank(correct_id) and correct_id not in known:
        found.critical("SCORE-030", f'correctOptionId "{correct_id}" not found in options.', "correctOptionId")

    correct_ids = item.get("correctOptionIds")
    if isinstance(correct_ids, list):
        if not correct_ids:
            found.critical("SCORE-033", "correctOptionIds designates zero correct answers.", "correctOptionIds")
        elif known is not None:
            for ref in correct_ids:
                if ref not in known:
                    found.critical("SCORE-031", f'correctOptionIds contains "{ref}" which is not in options.', "correctOptionIds")

    for key in ("correctSpanIndices", "correctHotspotIds"):
        if isinstance(item.get(key), list) and not item[key]:
            found.critical("SCORE-033", f"{key} designates zero correct answers.", key)

    if item_type == ItemType.CLOZE_DROPDOWN:
        for idx, blank in enumerate(as_list(item.get("blanks"))):
            blank = _require_dict(blank, f"blanks[{idx}]")
            if isinstance(blank.get("options"), list) and not is_blank(blank.get("correctOption")):
                if blank["correctOption"] not in blank["options"]:
                    found.critical("SCORE-032", f'Blank {idx} correctOption "{blank["correctOption"]}" not in its options.', f"blanks[{idx}].correctOption")
    elif item_type == ItemType.DRAG_AND_DROP_CLOZE and isinstance(options, list):
        pool = _pool_values(options)
        for idx, blank in enumerate(as_list(item.get("blanks"))):
            blank = _require_dict(blank, f"blanks[{idx}]")
            if not is_blank(blank.get("correctOption")) and blank["correctOption"] not in pool:
                found.critical("SCORE-032", f'Blank {idx} correctOption "{blank["correctOption"]}" not in the drag pool.', f"blanks[{idx}].correctOption")


# =============================================================================
# 4. PEDAGOGY
# =============================================================================

@evaluator(Dimension.PEDAGOGY, "PED")
def check_pedagogy(item: Dict[str, Any], found: Findings) -> None:
    if is_blank(item.get("pedagogy")):
        return  # completeness reports it
    p = _require_dict(item["pedagogy"], "pedagogy")

    bloom = p.get("bloomLevel")
    if bloom not in BLOOM_LEVELS:
        if canonical_bloom(bloom):
            found.info("PED-006", f'bloomLevel "{bloom}" should be "{canonical_bloom(bloom)}".', "pedagogy.bloomLevel")
        else:
            found.warning("PED-001", f'Invalid bloomLevel: "{bloom}". Expected one of: {", ".join(BLOOM_LEVELS)}.', "pedagogy.bloomLevel")

    step = p.get("cjmmStep")
    if step not in CJMM_STEPS:
        if canonical_cjmm(step):
            found.info("PED-006", f'cjmmStep "{step}" should be "{canonical_cjmm(step)}".', "pedagogy.cjmmStep")
        else:
            found.warning("PED-002", f'Invalid cjmmStep: "{step}". Expected one of: {", ".join(CJMM_STEPS)}.', "pedagogy.cjmmStep")

    category = p.get("nclexCategory")
    if category not in NCLEX_CATEGORIES:
        if canonical_category(category):
            found.info("PED-006", f'nclexCategory "{category}" should be "{canonical_category(category)}".', "pedagogy.nclexCategory")
        else:
            found.warning("PED-003", f'Invalid nclexCategory: "{category}".', "pedagogy.nclexCategory")

    difficulty = p.get("difficulty")
    is_numeric = isinstance(difficulty, int) and not isinstance(difficulty, bool) and 1 <= difficulty <= 5
    if not is_numeric:
        if canonical_difficulty(difficulty) is not None:
            found.info("PED-004", f'Difficulty "{difficulty}" is not a numeric 1-5 value.', "pedagogy.difficulty")
        else:
            found.warning("PED-004", f"Difficulty must be 1-5, got: {difficulty!r}.", "pedagogy.difficulty")

    tags = p.get("topicTags")
    if not isinstance(tags, list) or not any(isinstance(t, str) and t.strip() for t in tags):
        found.warning("PED-005", "No topicTags provided.", "pedagogy.topicTags")


# =============================================================================
# 5. RATIONALE QUALITY
# =============================================================================

@evaluator(Dimension.RATIONALE_QUALITY, "RAT")
def check_rationale_quality(item: Dict[str, Any], found: Findings) -> None:
    if is_blank(item.get("rationale")):
        return  # completeness reports it
    r = _require_dict(item["rationale"], "rationale")

    for key, code in (("correct", "RAT-001"), ("incorrect", "RAT-002")):
        text = r.get(key)
        if is_blank(text):
            found.critical(code, f'Rationale "{key}" explanation is missing.', f"rationale.{key}")
        elif not isinstance(text, str):
            raise TypeError(f"rationale.{key} is {type(text).__name__}, not text")
        elif word_count(text) < RATIONALE_MIN_WORDS:
            found.warning("RAT-004", f'Rationale "{key}" explanation is too short (<{RATIONALE_MIN_WORDS} words).', f"rationale.{key}")

    if not _has_items(r.get("reviewUnits")):
        found.info("RAT-003", "No reviewUnits provided.", "rationale.reviewUnits")

    breakdown = [text_of(as_dict(b).get("content")) for b in as_list(r.get("answerBreakdown"))]
    combined = " ".join(t for t in [text_of(r.get("correct")), text_of(r.get("incorrect"))] + breakdown if t)
    for rule in GENERIC_RATIONALE_RULES.matching(combined):
        found.warning("RAT-010", f"Rationale reads as generic ({rule.name}): {rule.description}.", "rationale")

    correct, incorrect = r.get("correct"), r.get("incorrect")
    if isinstance(correct, str) and isinstance(incorrect, str) and correct.strip() and correct.strip() == incorrect.strip():
        found.critical("RAT-011", "Correct and incorrect rationale explanations are identical.", "rationale")


# =============================================================================
# 6. OPTION LOGIC
# =============================================================================

CORRECTNESS_LISTS = (
    "correctOptionIds",
    "correctOrder",
    "correctActionIds",
    "correctParameterIds",
    "correctHotspotIds",
    "correctSpanIndices",
)

_TEMPLATE_PLACEHOLDER = re.compile(r"\{\{\s*([\w.-]+)\s*\}\}")


def _normalized(text: Any) -> str:
    return " ".join(text.lower().split()) if isinstance(text, str) else ""


@evaluator(Dimension.OPTION_LOGIC, "OPT")
def check_option_logic(item: Dict[str, Any], found: Findings) -> None:
    options = as_list(item.get("options"))
    dict_options = [o for o in options if isinstance(o, dict)]

    if dict_options:
        ids = [o.get("id") for o in dict_options]
        if len(set(map(str, ids))) != len(ids):
            found.critical("OPT-001", "Duplicate option IDs found.", "options")
        for idx, option in enumerate(options):
            if isinstance(option, dict) and is_blank(option.get("text")):
                found.warning("OPT-002", f'Option {idx} (id: "{option.get("id")}") has empty text.', f"options[{idx}].text")

    texts = [_normalized(o.get("text") if isinstance(o, dict) else o) for o in options]
    texts = [t for t in texts if t]
    if len(set(texts)) < len(texts):
        found.warning("OPT-003", "Duplicate option text found.", "options")

    for key in CORRECTNESS_LISTS:
        values = item.get(key)
        if isinstance(values, list):
            seen, repeated = set(), []
            for value in values:
                marker = str(value)
                if marker in seen and marker not in repeated:
                    repeated.append(marker)
                seen.add(marker)
            for marker in repeated:
                found.critical("OPT-004", f'{key} lists "{marker}" more than once.', key)

    # Distractors that are near copies of a keyed answer
    correct_ids = set(str(i) for i in as_list(item.get("correctOptionIds")))
    if not is_blank(item.get("correctOptionId")):
        correct_ids.add(str(item["correctOptionId"]))
    if correct_ids and dict_options:
        keyed = [_normalized(o.get("text")) for o in dict_options if str(o.get("id")) in correct_ids]
        for option in dict_options:
            if str(option.get("id")) in correct_ids:
                continue
            distractor = _normalized(option.get("text"))
            if not distractor:
                continue
            for answer in keyed:
                if answer and answer != distractor and \
                        SequenceMatcher(None, answer, distractor).ratio() >= NEAR_DUPLICATE_RATIO:
                    found.warning("OPT-005", f'Distractor "{option.get("id")}" is a near duplicate of a correct answer.', "options")
                    break

    item_type = parse_item_type(item.get("type"))
    if item_type is not None and ITEM_FAMILIES[item_type] == ItemFamily.CLOZE and isinstance(item.get("template"), str):
        placeholders = set(_TEMPLATE_PLACEHOLDER.findall(item["template"]))
        blank_ids = [str(as_dict(b).get("id")) for b in as_list(item.get("blanks"))]
        for blank_id in blank_ids:
            if blank_id not in placeholders:
                found.warning("OPT-020", f'Template missing placeholder "{{{{{blank_id}}}}}" for blank "{blank_id}".', "template")
        for placeholder in sorted(placeholders - set(blank_ids)):
            found.warning("OPT-021", f'Template placeholder "{{{{{placeholder}}}}}" has no matching blank.', "template")


# =============================================================================
# 7. DATA REFERENCES
# =============================================================================

TAB_REFERENCES = {
    "sbar": re.compile(r"\bSBAR\b|hand-?off report|nurses'? notes?", re.IGNORECASE),
    "vitals": re.compile(r"\bvital signs?\b|\bvitals\b", re.IGNORECASE),
    "labs": re.compile(r"\blab(?:oratory)? (?:results|values|findings|report)\b|\blabs\b", re.IGNORECASE),
    "physicalExam": re.compile(r"\bphysical (?:exam|examination|assessment)\b", re.IGNORECASE),
    "orders": re.compile(r"\b(?:provider|physician|prescriber)(?:'s)? orders\b", re.IGNORECASE),
    "mar": re.compile(r"\bMAR\b|medication administration record", re.IGNORECASE),
    "imaging": re.compile(r"\bimaging\b|\bx-ray\b|\bradiology\b|\bCT scan\b", re.IGNORECASE),
}


def _referring_text(item: Dict[str, Any]) -> str:
    rationale = as_dict(item.get("rationale"))
    return " ".join(text_of(v) for v in (item.get("stem"), rationale.get("correct"), rationale.get("incorrect")))


@evaluator(Dimension.DATA_REFERENCES, "DATA")
def check_data_references(item: Dict[str, Any], found: Findings) -> None:
    context = item.get("itemContext")
    if context is not None:
        _require_dict(context, "itemContext")
    tabs = chart_tabs(item)

    for tab_id, content in tabs.items():
        lazy = LAZY_TAB_RULES.matching(content)
        if lazy:
            found.warning("DATA-003", f'Chart tab "{tab_id}" carries no real data ({lazy[0].description}).', f"itemContext.{tab_id}")

    referring = _referring_text(item)
    for tab_id, pattern in TAB_REFERENCES.items():
        if tab_id not in tabs and pattern.search(referring):
            found.warning("DATA-002", f'Stem or rationale refers to the "{tab_id}" tab, which the item does not include.', f"itemContext.{tab_id}")

    item_type = parse_item_type(item.get("type"))
    if item_type is None or ITEM_FAMILIES[item_type] not in (ItemFamily.SINGLE_ANSWER, ItemFamily.MULTI_SELECT):
        return
    keys = set()
    for option in as_list(item.get("options")):
        if isinstance(option, dict):
            keys.update(_normalized(text_of(v)) for v in (option.get("id"), option.get("text")) if v is not None)
    for idx, entry in enumerate(as_list(as_dict(item.get("rationale")).get("answerBreakdown"))):
        label = _normalized(text_of(as_dict(entry).get("label")))
        if label and keys and label not in keys:
            found.info("DATA-010", f'answerBreakdown label "{as_dict(entry).get("label")}" does not match any option.', f"rationale.answerBreakdown[{idx}]")


# =============================================================================
# 8. ERROR DETECTION
# =============================================================================

ERROR_SCAN_SKIP = ("id", "type", "imageUrl", "mediaUrl")


@evaluator(Dimension.ERROR_DETECTION, "ERR")
def check_error_detection(item: Dict[str, Any], found: Findings) -> None:
    fields = list(iter_text_fields(item, skip_keys=ERROR_SCAN_SKIP))

    for rule in PLACEHOLDER_RULES:
        for path, text in fields:
            if rule.name == "template_token" and path == "template":
                continue
            if rule.matches(text):
                found.critical("ERR-001", f"Item contains defect pattern ({rule.name}): {rule.description}.", path)
                break

    for path, text in fields:
        if CONTROL_CHARACTERS.search(text):
            found.critical("ERR-004", "Item text contains control characters.", path)
            break

    stem = item.get("stem")
    if isinstance(stem, str) and stem.strip() and len(stem.strip()) < SHORT_STEM_CHARS:
        found.warning("ERR-010", f"Stem is suspiciously short ({len(stem.strip())} chars).", "stem")


# =============================================================================
# 9. ISOLATION / ALLERGY SAFETY
# =============================================================================

ALLERGY_FAMILIES = {
    "penicillin": (
        ("penicillin",),
        ("penicillin", "amoxicillin", "ampicillin", "piperacillin", "nafcillin", "oxacillin",
         "dicloxacillin", "augmentin", "unasyn", "zosyn"),
    ),
    "sulfa": (
        ("sulfa",),
        ("sulfamethoxazole", "sulfasalazine", "bactrim", "septra", "trimethoprim-sulfamethoxazole"),
    ),
    "NSAID": (
        ("nsaid", "ibuprofen", "aspirin"),
        ("ibuprofen", "naproxen", "ketorolac", "aspirin", "indomethacin", "diclofenac", "celecoxib",
         "meloxicam", "motrin", "advil", "aleve", "toradol"),
    ),
}

ISOLATION_CONDITIONS = {
    "airborne": ("tuberculosis", "tb", "measles", "varicella", "chickenpox", "disseminated zoster",
                 "smallpox", "sars", "covid"),
    "contact": ("mrsa", "c. diff", "c.diff", "cdiff", "clostridium difficile", "clostridioides difficile",
                "vre", "scabies", "rsv", "rotavirus", "impetigo", "lice"),
    "droplet": ("influenza", "flu", "meningococcal", "pertussis", "whooping cough", "mumps", "rubella",
                "pneumonic plague", "adenovirus", "rhinovirus"),
}

ISOLATION_CONFLICTS = {
    "airborne": (
        re.compile(r"\bsurgical mask\b", re.IGNORECASE),
        re.compile(r"\b(?:leave|keep|prop)\b[\w\s]{0,12}\bdoor\b[\w\s]{0,6}\bopen\b", re.IGNORECASE),
        re.compile(r"\bsemi-?private room\b", re.IGNORECASE),
    ),
    "droplet": (
        re.compile(r"\bwithout (?:a |wearing a )?mask\b", re.IGNORECASE),
        re.compile(r"\bshared? (?:a )?room\b", re.IGNORECASE),
    ),
    "contact": (
        re.compile(r"\bwithout (?:a |wearing a )?gown\b", re.IGNORECASE),
        re.compile(r"\bshare[sd]?\b[\w\s]{0,12}\b(?:stethoscope|equipment|blood pressure cuff)\b", re.IGNORECASE),
    ),
}

SPORE_FORMING = re.compile(r"\bc\.?\s?diff\b|clostridi(?:um|oides) difficile", re.IGNORECASE)
ALCOHOL_HAND_RUB = re.compile(r"\balcohol[- ]based (?:hand )?(?:rub|sanitizer|gel)\b", re.IGNORECASE)

WITHHOLDING = re.compile(
    r"\b(?:hold|withhold|avoid|do not|don't|discontinue|stop|clarify|question|refuse|contraindicat\w*|instead of|rather than)\b",
    re.IGNORECASE,
)


def _mentions(term: str, text: str) -> bool:
    return re.search(rf"(?<![a-z]){re.escape(term)}(?![a-z])", text) is not None


@evaluator(Dimension.ISOLATION_SAFETY, "SAFE")
def check_isolation_safety(item: Dict[str, Any], found: Findings) -> None:
    patient = patient_of(item)
    if not patient:
        return
    answers = correct_answer_texts(item)

    raw_allergies = patient.get("allergies")
    allergy_text = " ".join(text_of(a) for a in raw_allergies) if isinstance(raw_allergies, list) else text_of(raw_allergies)
    allergy_text = allergy_text.lower()
    for family, (triggers, drugs) in ALLERGY_FAMILIES.items():
        if not any(_mentions(t, allergy_text) for t in triggers):
            continue
        for answer in answers:
            lowered = answer.lower()
            drug = next((d for d in drugs if _mentions(d, lowered)), None)
            if drug and not WITHHOLDING.search(answer):
                found.critical("SAFE-001", f'Correct answer recommends {drug} despite a documented {family} allergy.', "itemContext.patient.allergies")
                break

    iso = text_of(patient.get("iso") or patient.get("precautions")).lower()
    for precaution, patterns in ISOLATION_CONFLICTS.items():
        if precaution not in iso:
            continue
        for answer in answers:
            if any(p.search(answer) for p in patterns) and not WITHHOLDING.search(answer):
                found.critical("SAFE-002", f"Correct answer contradicts {precaution} precautions: \"{answer[:80]}\".", "itemContext.patient.iso")
                break

    tabs = chart_tabs(item)
    scenario = " ".join([text_of(item.get("stem")), text_of(patient.get("diagnosis"))] + list(tabs.values())).lower()
    if SPORE_FORMING.search(scenario):
        for answer in answers:
            if ALCOHOL_HAND_RUB.search(answer) and not WITHHOLDING.search(answer):
                found.critical("SAFE-002", "Correct answer relies on alcohol-based hand rub for a spore-forming infection.", "itemContext.patient.iso")
                break

    if "iso" not in patient:
        return
    needs = {p: any(_mentions(c, scenario) for c in conditions) for p, conditions in ISOLATION_CONDITIONS.items()}
    if needs["airborne"] and "airborne" not in iso:
        found.warning("SAFE-010", "Scenario describes an airborne condition but isolation is not set to airborne.", "itemContext.patient.iso")
    elif needs["contact"] and not needs["airborne"] and "contact" not in iso:
        found.warning("SAFE-010", "Scenario describes a contact-transmitted condition but isolation is not set to contact.", "itemContext.patient.iso")
    elif needs["droplet"] and not (needs["airborne"] or needs["contact"]) and "droplet" not in iso:
        found.warning("SAFE-010", "Scenario describes a droplet-transmitted condition but isolation is not set to droplet.", "itemContext.patient.iso")


# =============================================================================
# 10. SBAR SPECIFICITY
# =============================================================================

MILITARY_TIME = re.compile(r"^(?:[01]\d|2[0-3]):[0-5]\d$")
TIME_TOKEN = re.compile(r"(?<![\d:])\d{1,2}:\d{2}(?![\d:])")
AM_PM = re.compile(r"\b\d{1,2}(?::\d{2})?\s*[ap]\.?m\b\.?", re.IGNORECASE)


@evaluator(Dimension.SBAR_SPECIFICITY, "SBAR")
def check_sbar_specificity(item: Dict[str, Any], found: Findings) -> None:
    sbar = chart_tabs(item).get("sbar")
    if sbar is None:
        return

    words = word_count(sbar)
    if words < SBAR_MIN_WORDS or words > SBAR_MAX_WORDS:
        found.warning("SBAR-001", f"SBAR word count ({words}) is outside the {SBAR_MIN_WORDS}-{SBAR_MAX_WORDS} range.", "itemContext.sbar")

    times = TIME_TOKEN.findall(sbar)
    if not times:
        found.info("SBAR-003", "No timestamps found in SBAR; military time (HH:mm) expected.", "itemContext.sbar")
    for time in dict.fromkeys(times):
        if not MILITARY_TIME.match(time):
            found.warning("SBAR-002", f'Time "{time}" is not in military HH:mm format.', "itemContext.sbar")

    if AM_PM.search(sbar):
        found.warning("SBAR-004", "SBAR mixes AM/PM notation with military time.", "itemContext.sbar")


# =============================================================================
# 11. EHR SYNC
# =============================================================================

CLINICAL_VALUE_PATTERNS = (
    ("BP", re.compile(r"(?:\bBP\b|blood pressure)[^0-9\n]{0,20}(\d{2,3}/\d{2,3})", re.IGNORECASE)),
    ("BP", re.compile(r"\b(\d{2,3}/\d{2,3})\s*mm\s?Hg", re.IGNORECASE)),
    ("HR", re.compile(r"(?:\bHR\b|heart rate|apical pulse|\bpulse\b)[^0-9\n]{0,20}(\d{2,3})\b", re.IGNORECASE)),
    ("RR", re.compile(r"(?:\bRR\b|respiratory rate|respirations)[^0-9\n]{0,20}(\d{1,2})\b", re.IGNORECASE)),
    ("SpO2", re.compile(r"(?:SpO2|O2 sat(?:uration)?|oxygen saturation|pulse oximetry)[^0-9\n]{0,20}(\d{2,3})\s*%", re.IGNORECASE)),
    ("Temperature", re.compile(r"\btemp(?:erature)?\b[^0-9\n]{0,20}(\d{2,3}(?:\.\d)?)", re.IGNORECASE)),
)

LAB_VALUE_PATTERN = re.compile(
    r"\b(potassium|sodium|glucose|hemoglobin|hgb|creatinine|bun|wbc|platelets?|inr|troponin|"
    r"lactate|bnp|magnesium|calcium|paco2|pao2|hco3|ph)\b[^0-9\n]{0,15}(\d+(?:\.\d+)?)",
    re.IGNORECASE,
)


def extract_clinical_values(text: str) -> List[tuple]:
    """(label, value) pairs for vital signs and labs cited in text, in order, deduplicated."""
    found = []
    for label, pattern in CLINICAL_VALUE_PATTERNS:
        found.extend((label, m.group(1)) for m in pattern.finditer(text))
    found.extend((m.group(1).lower(), m.group(2)) for m in LAB_VALUE_PATTERN.finditer(text))
    return list(dict.fromkeys(found))


def _value_in_chart(value: str, chart: str) -> bool:
    parts = value.split("/") if "/" in value else [value]
    return all(re.search(rf"(?<![\d.]){re.escape(p)}(?![\d])", chart) for p in parts)


@evaluator(Dimension.EHR_SYNC, "EHR")
def check_ehr_sync(item: Dict[str, Any], found: Findings) -> None:
    tabs = chart_tabs(item)
    if not tabs:
        return
    chart = "\n".join(tabs.values())
    rationale = as_dict(item.get("rationale"))
    claims = " ".join(text_of(v) for v in (item.get("stem"), rationale.get("correct")))

    for label, value in extract_clinical_values(claims):
        if not _value_in_chart(value, chart):
            found.warning("EHR-001", f"{label} {value} cited in the stem/rationale is not found in the chart tabs.", "itemContext")


# =============================================================================
# 12. STUDY COMPANION
# =============================================================================

@evaluator(Dimension.STUDY_COMPANION, "STUDY")
def check_study_companion(item: Dict[str, Any], found: Findings) -> None:
    if is_blank(item.get("rationale")):
        return
    r = _require_dict(item["rationale"], "rationale")

    pearls = r.get("clinicalPearls")
    if is_blank(pearls) or (isinstance(pearls, list) and all(is_blank(p) for p in pearls)):
        found.info("STUDY-001", "Missing clinicalPearls.", "rationale.clinicalPearls")

    trap = as_dict(r.get("questionTrap"))
    if is_blank(trap.get("trap")) or is_blank(trap.get("howToOvercome")):
        found.info("STUDY-002", "Missing or incomplete questionTrap (trap + howToOvercome).", "rationale.questionTrap")

    mnemonic = as_dict(r.get("mnemonic"))
    if is_blank(mnemonic.get("title")) or is_blank(mnemonic.get("expansion")):
        found.info("STUDY-003", "Missing or incomplete mnemonic (title + expansion).", "rationale.mnemonic")


# =============================================================================
# REGISTRY
# =============================================================================

EVALUATORS: Dict[Dimension, Evaluator] = {
    Dimension.COMPLETENESS: check_completeness,
    Dimension.TYPE_STRUCTURE: check_type_structure,
    Dimension.SCORING_ACCURACY: check_scoring_accuracy,
    Dimension.PEDAGOGY: check_pedagogy,
    Dimension.RATIONALE_QUALITY: check_rationale_quality,
    Dimension.OPTION_LOGIC: check_option_logic,
    Dimension.DATA_REFERENCES: check_data_references,
    Dimension.ERROR_DETECTION: check_error_detection,
    Dimension.ISOLATION_SAFETY: check_isolation_safety,
    Dimension.SBAR_SPECIFICITY: check_sbar_specificity,
    Dimension.EHR_SYNC: check_ehr_sync,
    Dimension.STUDY_COMPANION: check_study_companion,
}

if list(EVALUATORS) != list(Dimension) or set(_STRUCTURE_CHECKS) != set(ItemFamily):
    raise RuntimeError("Evaluator registry does not cover every dimension and item family")

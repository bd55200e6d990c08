"""
Deterministic Repairer

Applies rule-derivable, semantically safe corrections to item documents:

1. Identity fields      - itemType->type, prompt/question->stem, content->template
2. Type aliases         - 'multiple_choice' -> 'multipleChoice'
3. Shape                - options object->array, rationale string->object,
                          [BLANK1] markers -> {{blank1}}, rationale.sbar -> itemContext.sbar
4. Study companion      - top-level pearls/trap/mnemonic moved into rationale
5. Correctness          - correctOptionId(s) synthesised from per-option isCorrect flags
6. Scoring              - method normalised to the type, maxPoints from the correctness map
7. Pedagogy             - neutral defaults, alias canonicalisation, difficulty words
8. Artifacts            - placeholder strings and control characters stripped

It never writes clinical content. Repairs run on a deep copy; the caller's
document is never touched. A second pass over repaired output makes no
changes.
"""

import re
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from vaultqa.services.item_model import (
    ITEM_FAMILIES,
    PEDAGOGY_DEFAULTS,
    SCORING_METHOD_ALIASES,
    SCORING_RULES,
    ItemFamily,
    ItemReport,
    ItemType,
    as_list,
    canonical_bloom,
    canonical_category,
    canonical_cjmm,
    canonical_difficulty,
    expected_max_points,
    is_blank,
    map_text_fields,
    parse_item_type,
    resolve_type_alias,
)
from vaultqa.services.item_qa import run_item_qa
from vaultqa.services.qa_rules import PLACEHOLDER_RULES, strip_control_characters

logger = logging.getLogger(__name__)

STRIP_SKIP_KEYS = ("id", "type", "imageUrl", "mediaUrl")
BLANK_MARKER = re.compile(r"\[BLANK[\s_]?(\d+)\]", re.IGNORECASE)
MAX_STRIP_PASSES = 5
MAX_FIX_ROUNDS = 4


@dataclass
class RepairResult:
    item: Any
    changes: List[str]
    report: ItemReport

    @property
    def change_count(self) -> int:
        return len(self.changes)


@dataclass
class BankRepairResult:
    items: List[Any]
    total_changes: int
    reports: List[ItemReport] = field(default_factory=list)


# =============================================================================
# INDIVIDUAL FIXES
# =============================================================================

def _migrate_identity(item: Dict[str, Any], changes: List[str]) -> None:
    if is_blank(item.get("type")) and not is_blank(item.get("itemType")):
        item["type"] = item.pop("itemType")
        changes.append("itemType→type")

    for legacy in ("prompt", "question"):
        if is_blank(item.get("stem")) and isinstance(item.get(legacy), str) and item[legacy].strip():
            item["stem"] = item.pop(legacy)
            changes.append(f"{legacy}→stem")

    item_type = parse_item_type(item.get("type"))
    if item_type is not None and ITEM_FAMILIES[item_type] == ItemFamily.CLOZE:
        if is_blank(item.get("template")) and isinstance(item.get("content"), str) and item["content"].strip():
            item["template"] = item.pop("content")
            changes.append("content→template")


def _normalize_type(item: Dict[str, Any], changes: List[str]) -> None:
    raw = item.get("type")
    if parse_item_type(raw) is not None:
        return
    resolved = resolve_type_alias(raw)
    if resolved is not None:
        item["type"] = resolved.value
        changes.append(f'Normalized type "{raw}" → {resolved.value}')


def _normalize_shapes(item: Dict[str, Any], changes: List[str]) -> None:
    options = item.get("options")
    item_type = parse_item_type(item.get("type"))
    if isinstance(options, dict) and item_type not in (ItemType.BOWTIE, ItemType.DRAG_AND_DROP_CLOZE):
        converted = []
        for key, value in options.items():
            if isinstance(value, str):
                converted.append({"id": key, "text": value})
            elif isinstance(value, dict):
                converted.append({"id": key, "text": value.get("text") or value.get("content") or "", **{
                    k: v for k, v in value.items() if k not in ("id", "text")
                }})
        if converted:
            item["options"] = converted
            changes.append("options object→array")
    elif isinstance(options, dict) and item_type == ItemType.DRAG_AND_DROP_CLOZE:
        pool: List[str] = []
        for value in options.values():
            for entry in (value if isinstance(value, list) else [value]):
                if isinstance(entry, str) and entry not in pool:
                    pool.append(entry)
        if pool:
            item["options"] = pool
            changes.append("options object→flat array")

    if isinstance(item.get("template"), str) and BLANK_MARKER.search(item["template"]):
        item["template"] = BLANK_MARKER.sub(lambda m: "{{blank" + m.group(1) + "}}", item["template"])
        changes.append("[BLANK]→{{blank}}")

    if isinstance(item.get("rationale"), str) and item["rationale"].strip():
        item["rationale"] = {"correct": item["rationale"], "incorrect": "", "reviewUnits": []}
        changes.append("rationale string→object")

    rationale = item.get("rationale")
    if isinstance(rationale, dict) and not is_blank(rationale.get("sbar")):
        context = item.get("itemContext")
        if context is None:
            context = item["itemContext"] = {}
        if isinstance(context, dict) and is_blank(context.get("sbar")):
            context["sbar"] = rationale.pop("sbar")
            changes.append("rationale.sbar→itemContext.sbar")


def _migrate_study_companion(item: Dict[str, Any], changes: List[str]) -> None:
    rationale = item.get("rationale")
    if not isinstance(rationale, dict):
        return

    if not is_blank(item.get("clinicalPearls")) and is_blank(rationale.get("clinicalPearls")):
        pearls = item.pop("clinicalPearls")
        rationale["clinicalPearls"] = pearls if isinstance(pearls, list) else [pearls]
        changes.append("clinicalPearls→rationale")

    if not is_blank(item.get("questionTrap")) and is_blank(rationale.get("questionTrap")):
        trap = item.pop("questionTrap")
        rationale["questionTrap"] = trap if isinstance(trap, dict) else {"trap": "Common Pitfall", "howToOvercome": trap}
        changes.append("questionTrap→rationale")

    if not is_blank(item.get("mnemonic")) and is_blank(rationale.get("mnemonic")):
        mnemonic = item.pop("mnemonic")
        rationale["mnemonic"] = mnemonic if isinstance(mnemonic, dict) else {"title": "HINT", "expansion": mnemonic}
        changes.append("mnemonic→rationale")


def _synthesize_correctness(item: Dict[str, Any], changes: List[str]) -> None:
    item_type = parse_item_type(item.get("type"))
    if item_type is None:
        return
    flagged = [o.get("id") for o in as_list(item.get("options")) if isinstance(o, dict) and o.get("isCorrect") is True]
    flagged = [i for i in flagged if not is_blank(i)]
    if not flagged:
        return

    family = ITEM_FAMILIES[item_type]
    if family == ItemFamily.SINGLE_ANSWER and is_blank(item.get("correctOptionId")) and len(flagged) == 1:
        item["correctOptionId"] = flagged[0]
        changes.append(f'Synthesized correctOptionId "{flagged[0]}" from isCorrect flags')
    elif family == ItemFamily.MULTI_SELECT and is_blank(item.get("correctOptionIds")):
        item["correctOptionIds"] = flagged
        changes.append(f"Synthesized correctOptionIds ({len(flagged)}) from isCorrect flags")
        if item_type == ItemType.SELECT_N and (isinstance(item.get("n"), bool) or not isinstance(item.get("n"), int)):
            item["n"] = len(flagged)
            changes.append(f"Set selectN n={len(flagged)}")


def _normalize_scoring(item: Dict[str, Any], changes: List[str]) -> None:
    item_type = parse_item_type(item.get("type"))
    scoring = item.get("scoring")
    if not isinstance(scoring, dict):
        if item_type is None:
            return
        scoring = item["scoring"] = {}
        changes.append("Created scoring object")

    method = scoring.get("method")
    if method in SCORING_METHOD_ALIASES:
        scoring["method"] = SCORING_METHOD_ALIASES[method]
        changes.append(f'Scoring method "{method}" → {scoring["method"]}')

    if item_type is None:
        return

    allowed, default = SCORING_RULES[item_type]
    if scoring.get("method") not in allowed:
        previous = scoring.get("method")
        scoring["method"] = default
        changes.append(f"Normalized {item_type.value} scoring method {previous!r} → {default}")

    expected = expected_max_points(item)
    if expected is None and scoring["method"] == "linkage":
        blanks = as_list(item.get("blanks"))
        current = scoring.get("maxPoints")
        if blanks and (isinstance(current, bool) or not isinstance(current, int) or current < 1):
            expected = len(blanks)
    if expected is not None and (isinstance(scoring.get("maxPoints"), bool) or scoring.get("maxPoints") != expected):
        previous = scoring.get("maxPoints")
        scoring["maxPoints"] = expected
        changes.append(f"scoring.maxPoints {previous!r} → {expected}")


def _normalize_pedagogy(item: Dict[str, Any], changes: List[str]) -> None:
    pedagogy = item.get("pedagogy")
    if not isinstance(pedagogy, dict):
        pedagogy = item["pedagogy"] = {}
        changes.append("Created pedagogy object")

    canonicalizers = {
        "bloomLevel": canonical_bloom,
        "cjmmStep": canonical_cjmm,
        "nclexCategory": canonical_category,
        "difficulty": canonical_difficulty,
    }
    for key, canonical in canonicalizers.items():
        value = pedagogy.get(key)
        if is_blank(value):
            pedagogy[key] = PEDAGOGY_DEFAULTS[key]
            changes.append(f"Defaulted pedagogy.{key} → {PEDAGOGY_DEFAULTS[key]!r}")
            continue
        normalized = canonical(value)
        if normalized is not None and (normalized != value or type(normalized) is not type(value)):
            pedagogy[key] = normalized
            changes.append(f"Normalized pedagogy.{key}: {value!r} → {normalized!r}")

    tags = pedagogy.get("topicTags")
    if isinstance(tags, str) and tags.strip():
        pedagogy["topicTags"] = [tags.strip()]
        changes.append("pedagogy.topicTags string→list")
    elif not isinstance(tags, list) or not any(isinstance(t, str) and t.strip() for t in tags):
        pedagogy["topicTags"] = list(PEDAGOGY_DEFAULTS["topicTags"])
        changes.append("Defaulted pedagogy.topicTags → ['General']")


def _strip_artifacts(item: Dict[str, Any], changes: List[str]) -> Dict[str, Any]:
    touched: List[str] = []

    def clean(path: str, text: str) -> str:
        exclude = ("template_token",) if path == "template" else ()
        cleaned = strip_control_characters(text)
        for _ in range(MAX_STRIP_PASSES):
            stripped = PLACEHOLDER_RULES.strip(cleaned, exclude=exclude)
            if stripped == cleaned:
                break
            cleaned = stripped
        if cleaned != text:
            touched.append(path)
        return cleaned

    repaired = map_text_fields(item, clean, skip_keys=STRIP_SKIP_KEYS)
    changes.extend(f"Stripped artifacts from {path}" for path in touched)
    return repaired


def _apply_fixes(item: Dict[str, Any], changes: List[str]) -> Dict[str, Any]:
    _migrate_identity(item, changes)
    _normalize_type(item, changes)
    _normalize_shapes(item, changes)
    _migrate_study_companion(item, changes)
    _synthesize_correctness(item, changes)
    _normalize_scoring(item, changes)
    _normalize_pedagogy(item, changes)
    return _strip_artifacts(item, changes)


# =============================================================================
# PUBLIC API
# =============================================================================

def repair_item(item: Any) -> RepairResult:
    """Repair a copy of one item and re-run QA on the result."""
    if not isinstance(item, dict):
        return RepairResult(item=item, changes=[], report=run_item_qa(item))

    repaired = copy.deepcopy(item)
    changes: List[str] = []

    # Stripping can blank a field a structural fix fills, so run to a fixed point.
    for _ in range(MAX_FIX_ROUNDS):
        round_changes: List[str] = []
        repaired = _apply_fixes(repaired, round_changes)
        if not round_changes:
            break
        changes.extend(round_changes)

    report = run_item_qa(repaired)
    if changes:
        logger.info(f"Repaired item {report.item_id}: {len(changes)} changes, score {report.score:.2f}")
    return RepairResult(item=repaired, changes=changes, report=report)


def repair_bank(items: List[Any], results: Optional[List[RepairResult]] = None) -> BankRepairResult:
    """Repair every item; results, when given, collects the per-item RepairResults."""
    repaired_items, reports = [], []
    total_changes = 0
    for item in items:
        result = repair_item(item)
        repaired_items.append(result.item)
        reports.append(result.report)
        total_changes += result.change_count
        if results is not None:
            results.append(result)

    logger.info(f"Deterministic repair: {total_changes} changes across {len(repaired_items)} items")
    return BankRepairResult(items=repaired_items, total_changes=total_changes, reports=reports)

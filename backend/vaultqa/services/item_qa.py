"""
Single-item QA and bank aggregation.

run_item_qa runs every dimension evaluator over one item and assembles an
ItemReport; build_bank_report folds item reports into a BankReport.
"""

import logging
from collections import Counter
from typing import Any, Dict, Iterable, List

import numpy as np

from vaultqa.services.dimension_evaluators import EVALUATORS
from vaultqa.services.item_model import (
    BankReport,
    Diagnostic,
    Dimension,
    ItemReport,
    Severity,
    Verdict,
)
from vaultqa.services.score_aggregator import overall_score, verdict_for

logger = logging.getLogger(__name__)

UNKNOWN_ID = "<missing id>"
UNKNOWN_TYPE = "<unknown>"


def _identity(item: Any, key: str, fallback: str) -> str:
    if isinstance(item, dict) and isinstance(item.get(key), str) and item[key].strip():
        return item[key]
    return fallback


def run_item_qa(item: Any) -> ItemReport:
    """
    Evaluate one item across all twelve dimensions.

    Deterministic for a given document: two runs over an unmodified item give
    reports that compare equal (checked_at is excluded from equality).
    """
    dimension_scores: Dict[Dimension, float] = {}
    diagnostics: List[Diagnostic] = []

    for dimension, evaluate in EVALUATORS.items():
        result = evaluate(item)
        dimension_scores[dimension] = result.score
        diagnostics.extend(result.diagnostics)

    score = overall_score(dimension_scores)
    critical_count = sum(1 for d in diagnostics if d.severity == Severity.CRITICAL)

    return ItemReport(
        item_id=_identity(item, "id", UNKNOWN_ID),
        item_type=_identity(item, "type", UNKNOWN_TYPE),
        dimension_scores=dimension_scores,
        diagnostics=diagnostics,
        score=score,
        verdict=verdict_for(score, critical_count),
    )


def build_bank_report(reports: Iterable[ItemReport]) -> BankReport:
    """Aggregate item reports; the bank score is the mean of item scores."""
    reports = list(reports)
    verdicts = Counter(r.verdict for r in reports)

    dimension_summary: Dict[Dimension, Dict[str, int]] = {
        d: {"passed": 0, "warned": 0, "failed": 0} for d in Dimension
    }
    for report in reports:
        for dimension in Dimension:
            criticals = sum(1 for d in report.diagnostics_for(dimension) if d.severity == Severity.CRITICAL)
            verdict = verdict_for(report.dimension_scores[dimension], criticals)
            dimension_summary[dimension][_SUMMARY_KEYS[verdict]] += 1

    return BankReport(
        total_items=len(reports),
        passed=verdicts[Verdict.PASS],
        warned=verdicts[Verdict.WARN],
        failed=verdicts[Verdict.FAIL],
        overall_score=float(np.mean([r.score for r in reports])) if reports else 0.0,
        dimension_summary=dimension_summary,
        type_distribution=dict(Counter(r.item_type for r in reports)),
        item_reports=reports,
    )


_SUMMARY_KEYS = {Verdict.PASS: "passed", Verdict.WARN: "warned", Verdict.FAIL: "failed"}

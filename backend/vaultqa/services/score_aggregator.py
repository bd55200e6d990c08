"""
Score aggregation for item QA.

Dimension score: 100 minus a fixed penalty per diagnostic scaled by severity,
floored at 0. Overall score: unweighted mean over every dimension.
Verdict: thresholds on the overall score, overridden by critical diagnostics.
"""

import os
import logging
from typing import Dict, Iterable

import numpy as np

from vaultqa.services.item_model import Diagnostic, Dimension, Severity, Verdict

logger = logging.getLogger(__name__)

SEVERITY_PENALTIES: Dict[Severity, float] = {
    Severity.CRITICAL: float(os.getenv("QA_PENALTY_CRITICAL", "40")),
    Severity.WARNING: float(os.getenv("QA_PENALTY_WARNING", "15")),
    Severity.INFO: float(os.getenv("QA_PENALTY_INFO", "5")),
}

MAX_SCORE = 100.0
MIN_DIMENSION_SCORE = 0.0

PASS_THRESHOLD = 90.0
WARN_THRESHOLD = 70.0


def dimension_score(diagnostics: Iterable[Diagnostic]) -> float:
    penalty = sum(SEVERITY_PENALTIES[d.severity] for d in diagnostics)
    return max(MIN_DIMENSION_SCORE, MAX_SCORE - penalty)


def overall_score(dimension_scores: Dict[Dimension, float]) -> float:
    """Unweighted mean; every dimension must be present."""
    missing = [d.value for d in Dimension if d not in dimension_scores]
    if missing:
        raise ValueError(f"Missing dimension scores: {missing}")
    return round(float(np.mean([dimension_scores[d] for d in Dimension])), 2)


def verdict_for(score: float, critical_count: int) -> Verdict:
    """
    Classify a score.

    One critical diagnostic caps the verdict at warn, two or more force fail,
    so a high mean can never hide a severe defect.
    """
    if critical_count >= 2 or score < WARN_THRESHOLD:
        return Verdict.FAIL
    if critical_count == 1:
        return Verdict.WARN
    if score >= PASS_THRESHOLD:
        return Verdict.PASS
    return Verdict.WARN

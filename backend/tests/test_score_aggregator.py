"""
Tests for score aggregation and verdicts.
"""

import pytest

from vaultqa.services.item_model import Diagnostic, Dimension, Severity, Verdict
from vaultqa.services.score_aggregator import dimension_score, overall_score, verdict_for


def _diag(severity: Severity) -> Diagnostic:
    return Diagnostic(Dimension.COMPLETENESS, severity, "COMP-000", "test")


class TestDimensionScore:

    @pytest.mark.unit
    def test_no_diagnostics_scores_100(self):
        assert dimension_score([]) == 100.0

    @pytest.mark.unit
    def test_penalties_by_severity(self):
        """Test critical 40, warning 15, info 5"""
        assert dimension_score([_diag(Severity.CRITICAL)]) == 60.0
        assert dimension_score([_diag(Severity.WARNING)]) == 85.0
        assert dimension_score([_diag(Severity.INFO)]) == 95.0
        assert dimension_score([_diag(Severity.WARNING), _diag(Severity.INFO)]) == 80.0

    @pytest.mark.unit
    def test_floor_at_zero(self):
        assert dimension_score([_diag(Severity.CRITICAL)] * 3) == 0.0


class TestOverallScore:

    @pytest.mark.unit
    def test_unweighted_mean(self):
        scores = {d: 100.0 for d in Dimension}
        scores[Dimension.PEDAGOGY] = 40.0
        assert overall_score(scores) == 95.0

    @pytest.mark.unit
    def test_rounded_to_two_places(self):
        scores = {d: 100.0 for d in Dimension}
        scores[Dimension.PEDAGOGY] = 95.0
        assert overall_score(scores) == 99.58

    @pytest.mark.unit
    def test_missing_dimension_raises(self):
        with pytest.raises(ValueError):
            overall_score({Dimension.COMPLETENESS: 100.0})


class TestVerdict:

    @pytest.mark.unit
    @pytest.mark.parametrize("score,criticals,expected", [
        (100.0, 0, Verdict.PASS),
        (90.0, 0, Verdict.PASS),
        (89.99, 0, Verdict.WARN),
        (70.0, 0, Verdict.WARN),
        (69.99, 0, Verdict.FAIL),
        (96.67, 1, Verdict.WARN),
        (93.33, 2, Verdict.FAIL),
        (65.0, 1, Verdict.FAIL),
    ])
    def test_thresholds_and_critical_override(self, score, criticals, expected):
        assert verdict_for(score, criticals) == expected

    @pytest.mark.unit
    def test_more_criticals_never_improve_verdict(self):
        order = [Verdict.PASS, Verdict.WARN, Verdict.FAIL]
        for score in (100.0, 85.0, 60.0):
            ranks = [order.index(verdict_for(score, c)) for c in range(4)]
            assert ranks == sorted(ranks)

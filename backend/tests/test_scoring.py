"""
Unit tests for fusion scoring and risk level policy.
"""
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest
from behavior import BehavioralSignals
from keystroke_features import AnomalyVerdict
from policy import LEVEL_THRESHOLDS, risk_level
from schemas import RiskLevel
from scoring import DEFAULT_WEIGHTS, FusionScorer, zero_score


FULL_ORDER = [
    'KEYSTROKE_ANOMALY',
    'CODE_STYLOMETRY',
    'PASTE_BURST',
    'TAB_SWITCHING',
    'LOW_COMPILE',
    'SUSPICIOUS_TIMING',
    'MOUSE_ANOMALY',
    'APPLICATION_SWITCHING',
]


def everything_fires():
    behavior = BehavioralSignals(
        paste_bursts=5,
        tab_switches=8,
        compile_count=0,
        session_duration=600000,
        suspicious_timing=True,
        mouse_anomaly=True,
        application_switching=True,
    )
    return AnomalyVerdict(True, ['x'], 1.0), AnomalyVerdict(True, ['y'], 1.0), behavior


class TestRiskLevel:
    """Test score discretization."""

    @pytest.mark.parametrize("score,level", [
        (0.0, RiskLevel.LOW),
        (39.99, RiskLevel.LOW),
        (40.0, RiskLevel.MEDIUM),
        (69.99, RiskLevel.MEDIUM),
        (70.0, RiskLevel.HIGH),
        (100.0, RiskLevel.HIGH),
    ])
    def test_levels(self, score, level):
        assert risk_level(score) == level

    def test_thresholds(self):
        assert LEVEL_THRESHOLDS == {'high': 70.0, 'medium': 40.0}


class TestFusionScorer:
    """Test fixed additive fusion."""

    def test_nothing_fires(self):
        snapshot = FusionScorer().score("s1", AnomalyVerdict(), AnomalyVerdict(), BehavioralSignals())
        assert snapshot.score == 0.0
        assert snapshot.level == RiskLevel.LOW
        assert snapshot.reasons == []
        assert snapshot.at is not None

    def test_paste_tab_low_compile_scenario(self):
        """3 pastes, 4 window switches, no compiles over 400 s -> 15 + 10 + 10."""
        behavior = BehavioralSignals(paste_bursts=3, tab_switches=4, compile_count=0, session_duration=400000)
        snapshot = FusionScorer().score("s1", AnomalyVerdict(), AnomalyVerdict(), behavior)
        assert [r.code for r in snapshot.reasons] == ['PASTE_BURST', 'TAB_SWITCHING', 'LOW_COMPILE']
        assert [r.weight for r in snapshot.reasons] == [15.0, 10.0, 10.0]
        assert snapshot.score == pytest.approx(35.0)
        assert snapshot.level == RiskLevel.LOW

    def test_below_caps(self):
        behavior = BehavioralSignals(paste_bursts=1, tab_switches=2)
        snapshot = FusionScorer().score("s1", AnomalyVerdict(), AnomalyVerdict(), behavior)
        assert [r.weight for r in snapshot.reasons] == [6.0, 6.0]

    def test_modality_confidences(self):
        typing = AnomalyVerdict(True, ['Unusually uniform keystroke timing detected'], 0.7)
        code = AnomalyVerdict(True, ['High probability of AI-generated code'], 0.7)
        snapshot = FusionScorer().score("s1", typing, code, BehavioralSignals())
        assert snapshot.reasons[0].weight == pytest.approx(21.0)
        assert snapshot.reasons[1].weight == pytest.approx(17.5)
        assert 'Unusually uniform keystroke timing detected' in snapshot.reasons[0].message
        assert snapshot.score == pytest.approx(38.5)

    def test_full_order_and_high_level(self):
        typing, code, behavior = everything_fires()
        snapshot = FusionScorer().score("s1", typing, code, behavior)
        assert [r.code for r in snapshot.reasons] == FULL_ORDER
        assert snapshot.score == pytest.approx(100.0)
        assert snapshot.level == RiskLevel.HIGH

    def test_order_is_deterministic(self):
        scorer = FusionScorer()
        first = scorer.score("s1", *everything_fires())
        second = scorer.score("s1", *everything_fires())
        assert [r.code for r in first.reasons] == [r.code for r in second.reasons]

    def test_score_is_clamped(self):
        scorer = FusionScorer(weights={'keystroke': 200.0})
        snapshot = scorer.score("s1", AnomalyVerdict(True, [], 1.0), AnomalyVerdict(), BehavioralSignals())
        assert snapshot.score == 100.0
        assert scorer.weights['code'] == DEFAULT_WEIGHTS['code']

    @pytest.mark.parametrize("compiles,duration,fires", [
        (0, 300001, True),
        (1, 300001, True),
        (2, 300001, False),
        (0, 300000, False),
    ])
    def test_low_compile_rule(self, compiles, duration, fires):
        behavior = BehavioralSignals(compile_count=compiles, session_duration=duration)
        snapshot = FusionScorer().score("s1", AnomalyVerdict(), AnomalyVerdict(), behavior)
        assert ('LOW_COMPILE' in [r.code for r in snapshot.reasons]) is fires


class TestZeroScore:
    """Test the default snapshot."""

    def test_defaults(self):
        snapshot = zero_score("s1")
        assert snapshot.score == 0.0
        assert snapshot.level == RiskLevel.LOW
        assert snapshot.reasons == []
        assert snapshot.at is None

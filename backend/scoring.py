"""
Fusion scoring for interview fraud detection.

This module combines per-modality outputs into one auditable score:
- Keystroke anomaly confidence
- Code stylometry anomaly confidence
- Behavioral pattern signals (paste, tab switching, compile cadence, timing,
  mouse anomalies, application switching)

Weights are fixed and additive (deliberately not normalized); the sum is clamped
to [0, 100]. Every rule that contributes appends a reason in evaluation order.
"""
import logging
from typing import Dict, List, Optional
from datetime import datetime, timezone

from behavior import BehavioralSignals
from keystroke_features import AnomalyVerdict
from policy import risk_level
from schemas import FraudReason, FraudScore

logger = logging.getLogger(__name__)


# Default fusion weights
DEFAULT_WEIGHTS = {
    'keystroke': 30.0,        # multiplier on typing anomaly confidence
    'code': 25.0,             # multiplier on code anomaly confidence
    'paste_each': 6.0,        # per PASTE event
    'paste_cap': 15.0,
    'tab_each': 3.0,          # per WINDOW_SWITCH / TAB_BLUR event
    'tab_cap': 10.0,
    'low_compile': 10.0,      # few compiles in a long session
    'timing': 5.0,
    'mouse': 3.0,
    'app_switching': 2.0,
}

# Low-compile rule: at most this many compiles in a session longer than this
LOW_COMPILE_MAX_COUNT = 1
LOW_COMPILE_MIN_DURATION_MS = 300000.0

MAX_SCORE = 100.0


def zero_score(session_id: str, at: Optional[datetime] = None) -> FraudScore:
    """Default snapshot for a session with no score history."""
    return FraudScore(session_id=session_id, score=0.0, level=risk_level(0.0), reasons=[], at=at)


class FusionScorer:
    """Combine modality verdicts and behavioral signals into a FraudScore."""

    def __init__(self, weights: Optional[Dict[str, float]] = None):
        """
        Initialize the scorer.

        Args:
            weights: Optional partial override of DEFAULT_WEIGHTS
        """
        self.weights = dict(DEFAULT_WEIGHTS)
        if weights:
            self.weights.update(weights)

    def compute_reasons(
        self,
        typing: AnomalyVerdict,
        code: AnomalyVerdict,
        behavior: BehavioralSignals
    ) -> List[FraudReason]:
        """Evaluate every rule in fixed order, keeping those that contribute."""
        w = self.weights
        candidates = [
            (
                'KEYSTROKE_ANOMALY',
                typing.confidence * w['keystroke'],
                f"Typing pattern anomalies: {', '.join(typing.anomalies) or 'none'}",
            ),
            (
                'CODE_STYLOMETRY',
                code.confidence * w['code'],
                f"Code style anomalies: {', '.join(code.anomalies) or 'none'}",
            ),
            (
                'PASTE_BURST',
                min(behavior.paste_bursts * w['paste_each'], w['paste_cap']),
                f"{behavior.paste_bursts} paste event(s) detected",
            ),
            (
                'TAB_SWITCHING',
                min(behavior.tab_switches * w['tab_each'], w['tab_cap']),
                f"{behavior.tab_switches} tab/window switch(es) detected",
            ),
            (
                'LOW_COMPILE',
                w['low_compile'] if (
                    behavior.compile_count <= LOW_COMPILE_MAX_COUNT
                    and behavior.session_duration > LOW_COMPILE_MIN_DURATION_MS
                ) else 0.0,
                f"Only {behavior.compile_count} compile/run action(s) in a "
                f"{behavior.session_duration / 1000.0:.0f}s session",
            ),
            (
                'SUSPICIOUS_TIMING',
                w['timing'] if behavior.suspicious_timing else 0.0,
                "Irregular gaps between transcript chunks",
            ),
            (
                'MOUSE_ANOMALY',
                w['mouse'] if behavior.mouse_anomaly else 0.0,
                "Non-human mouse movement pattern reported",
            ),
            (
                'APPLICATION_SWITCHING',
                w['app_switching'] if behavior.application_switching else 0.0,
                "Rapid application switching in the last 30 seconds",
            ),
        ]

        return [
            FraudReason(code=code_name, message=message, weight=round(weight, 4))
            for code_name, weight, message in candidates
            if weight > 0
        ]

    def score(
        self,
        session_id: str,
        typing: AnomalyVerdict,
        code: AnomalyVerdict,
        behavior: BehavioralSignals,
        at: Optional[datetime] = None
    ) -> FraudScore:
        """
        Compute one score snapshot.

        Args:
            session_id: Session the snapshot belongs to
            typing: Keystroke anomaly verdict
            code: Code stylometry anomaly verdict
            behavior: Behavioral signals
            at: Snapshot timestamp (defaults to now, UTC)

        Returns:
            FraudScore with score in [0, 100] and ordered reasons
        """
        reasons = self.compute_reasons(typing, code, behavior)
        total = sum(r.weight for r in reasons)
        final = round(min(max(total, 0.0), MAX_SCORE), 2)

        snapshot = FraudScore(
            session_id=session_id,
            score=final,
            level=risk_level(final),
            reasons=reasons,
            at=at or datetime.now(timezone.utc),
        )
        logger.debug(
            f"Score for {session_id}: {final:.2f} ({snapshot.level.value}), "
            f"reasons={[r.code for r in reasons]}"
        )
        return snapshot

"""
Keystroke dynamics feature extraction.

This module derives typing features from raw key press/release events:
- Digraph latencies (release of one key -> press of the next)
- Trigraph latencies (three consecutive presses, two in-band digraph legs)
- Key hold durations
- Pause distribution and inter-keystroke interval variance
- A fixed, additive typing-anomaly verdict
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from schemas import KeystrokeEvent

logger = logging.getLogger(__name__)


# Digraph / trigraph latency band (ms), inclusive on both ends
MIN_LATENCY_MS = 10.0
MAX_LATENCY_MS = 2000.0

# Hold durations are accepted in the open interval (0, MAX_HOLD_MS)
MAX_HOLD_MS = 2000.0

# Gaps between key presses longer than this count as pauses
PAUSE_THRESHOLD_MS = 100.0

# A verdict needs at least this many key presses
MIN_PRESSES_FOR_VERDICT = 2

TYPING_THRESHOLDS = {
    'uniform_variance': 50.0,        # inter-keystroke variance below -> robotic
    'fast_cpm': 200.0,               # characters per minute above -> too fast
    'slow_cpm': 20.0,                # characters per minute below -> too slow
    'long_pause_ms': 5000.0,         # pause length counted as "long"
    'long_pause_fraction': 0.3,      # share of long pauses above -> copy-paste
    'digraph_variance': 100.0,       # variance of per-pair means below -> too consistent
    'suspicious_confidence': 0.3,    # confidence above -> suspicious
}

TYPING_WEIGHTS = {
    'uniform_timing': 0.3,
    'too_fast': 0.2,
    'too_slow': 0.1,
    'copy_paste_pattern': 0.2,
    'too_consistent': 0.2,
}


@dataclass
class Digraph:
    """Release-to-press transition between two keys."""
    key1: str
    key2: str
    latency: float
    timestamp: float


@dataclass
class Trigraph:
    """Three consecutive presses joined by two in-band digraph legs."""
    key1: str
    key2: str
    key3: str
    latency1: float
    latency2: float
    timestamp: float


class RunningStats:
    """Welford online mean / population variance."""

    __slots__ = ('count', 'mean', '_m2')

    def __init__(self):
        self.count = 0
        self.mean = 0.0
        self._m2 = 0.0

    def add(self, value: float):
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self._m2 += delta * (value - self.mean)

    @property
    def variance(self) -> float:
        if self.count < 1:
            return 0.0
        return self._m2 / self.count


@dataclass
class TypingProfile:
    """Per-session aggregate of keystroke timing statistics."""
    session_id: str
    average_speed: float = 0.0
    digraph_latencies: Dict[Tuple[str, str], float] = field(default_factory=dict)
    trigraph_latencies: Dict[Tuple[str, str, str], float] = field(default_factory=dict)
    key_hold_durations: Dict[str, float] = field(default_factory=dict)
    pause_distribution: List[float] = field(default_factory=list)
    variance: float = 0.0
    press_count: int = 0


@dataclass
class AnomalyVerdict:
    """Outcome of a fixed-rule anomaly check."""
    is_suspicious: bool = False
    anomalies: List[str] = field(default_factory=list)
    confidence: float = 0.0


def is_valid_latency(latency: float) -> bool:
    """Latencies outside the band are treated as noise."""
    return MIN_LATENCY_MS <= latency <= MAX_LATENCY_MS


class KeystrokeLog:
    """
    Append-only raw keystroke log with incrementally maintained aggregates.

    Digraphs, trigraphs and hold durations are updated on append from the tail
    of the log only, which yields the same values as recomputing them from the
    whole history in arrival order.
    """

    def __init__(self):
        self.events: List[KeystrokeEvent] = []
        self.digraphs: List[Digraph] = []
        self.trigraphs: List[Trigraph] = []
        self.digraph_stats: Dict[Tuple[str, str], RunningStats] = {}
        self.trigraph_stats: Dict[Tuple[str, str, str], RunningStats] = {}
        self.hold_stats: Dict[str, RunningStats] = {}
        self._open_presses: Dict[str, float] = {}
        self._pending: Optional[Digraph] = None

    def __len__(self) -> int:
        return len(self.events)

    def append(self, event: KeystrokeEvent) -> bool:
        """
        Append one event and update derived aggregates.

        Returns:
            False if the event was discarded as malformed (negative or
            non-finite timestamp), True otherwise
        """
        if not math.isfinite(event.t) or event.t < 0:
            logger.debug(f"Discarding keystroke with invalid timestamp t={event.t}")
            return False

        previous = self.events[-1] if self.events else None
        self.events.append(event)

        if event.action == 'down':
            self._open_presses[event.key] = event.t
            if previous is not None and previous.action == 'up':
                self._on_release_press(previous, event)
            else:
                # A press not preceded by a release breaks any trigraph chain
                self._pending = None
        else:
            pressed_at = self._open_presses.pop(event.key, None)
            if pressed_at is not None:
                duration = event.t - pressed_at
                if 0 < duration < MAX_HOLD_MS:
                    self.hold_stats.setdefault(event.key, RunningStats()).add(duration)

        return True

    def _on_release_press(self, release: KeystrokeEvent, press: KeystrokeEvent):
        latency = press.t - release.t
        if not is_valid_latency(latency):
            self._pending = None
            return

        digraph = Digraph(release.key, press.key, latency, press.t)
        self.digraphs.append(digraph)
        self.digraph_stats.setdefault((digraph.key1, digraph.key2), RunningStats()).add(latency)

        pending = self._pending
        if pending is not None and pending.key2 == release.key:
            trigraph = Trigraph(
                key1=pending.key1,
                key2=pending.key2,
                key3=press.key,
                latency1=pending.latency,
                latency2=latency,
                timestamp=press.t,
            )
            self.trigraphs.append(trigraph)
            triple = (trigraph.key1, trigraph.key2, trigraph.key3)
            self.trigraph_stats.setdefault(triple, RunningStats()).add(
                (trigraph.latency1 + trigraph.latency2) / 2.0
            )

        self._pending = digraph


def build_typing_profile(session_id: str, log: Optional[KeystrokeLog]) -> TypingProfile:
    """
    Compute a typing profile from a keystroke log.

    Never raises: an empty or missing log yields an all-zero profile.
    """
    if log is None or not log.events:
        return TypingProfile(session_id=session_id)

    times = np.array([e.t for e in log.events], dtype=np.float64)
    span_ms = float(times.max() - times.min())

    presses = [e for e in log.events if e.action == 'down']
    character_count = sum(1 for e in presses if len(e.key) == 1)
    average_speed = (character_count / span_ms) * 60000.0 if span_ms > 0 else 0.0

    press_times = np.sort(np.array([e.t for e in presses], dtype=np.float64))
    if len(press_times) >= 2:
        intervals = np.diff(press_times)
        variance = float(np.var(intervals))
        pauses = [float(gap) for gap in intervals if gap > PAUSE_THRESHOLD_MS]
    else:
        variance = 0.0
        pauses = []

    return TypingProfile(
        session_id=session_id,
        average_speed=float(average_speed),
        digraph_latencies={pair: s.mean for pair, s in log.digraph_stats.items()},
        trigraph_latencies={triple: s.mean for triple, s in log.trigraph_stats.items()},
        key_hold_durations={key: s.mean for key, s in log.hold_stats.items()},
        pause_distribution=pauses,
        variance=variance,
        press_count=len(presses),
    )


def digraph_mean_variance(digraph_latencies: Dict[Tuple[str, str], float]) -> float:
    """Population variance across per-key-pair mean digraph latencies."""
    if len(digraph_latencies) < 2:
        return 0.0
    return float(np.var(np.array(list(digraph_latencies.values()), dtype=np.float64)))


def detect_typing_anomalies(
    profile: TypingProfile,
    thresholds: Optional[Dict[str, float]] = None
) -> AnomalyVerdict:
    """
    Apply the fixed additive typing-anomaly rules to a profile.

    Rules (confidence contributions):
        variance < 50                       -> +0.3 uniform timing
        speed > 200 cpm                     -> +0.2 too fast
        speed < 20 cpm                      -> +0.1 too slow
        >30% of pauses longer than 5000 ms  -> +0.2 copy-paste pattern
        per-pair digraph variance < 100     -> +0.2 too consistent

    Args:
        profile: Typing profile to evaluate
        thresholds: Optional threshold overrides

    Returns:
        AnomalyVerdict with confidence clamped to [0, 1]
    """
    if thresholds is None:
        thresholds = TYPING_THRESHOLDS

    if profile.press_count < MIN_PRESSES_FOR_VERDICT:
        return AnomalyVerdict()

    anomalies = []
    confidence = 0.0

    if profile.variance < thresholds['uniform_variance']:
        anomalies.append('Unusually uniform keystroke timing detected')
        confidence += TYPING_WEIGHTS['uniform_timing']

    if profile.average_speed > thresholds['fast_cpm']:
        anomalies.append('Unusually fast typing speed detected')
        confidence += TYPING_WEIGHTS['too_fast']
    elif profile.average_speed < thresholds['slow_cpm']:
        anomalies.append('Unusually slow typing speed detected')
        confidence += TYPING_WEIGHTS['too_slow']

    total_pauses = len(profile.pause_distribution)
    if total_pauses > 0:
        long_pauses = sum(1 for p in profile.pause_distribution if p > thresholds['long_pause_ms'])
        if long_pauses / total_pauses > thresholds['long_pause_fraction']:
            anomalies.append('Frequent long pauses detected (possible copy-paste)')
            confidence += TYPING_WEIGHTS['copy_paste_pattern']

    if digraph_mean_variance(profile.digraph_latencies) < thresholds['digraph_variance']:
        anomalies.append('Unusually consistent digraph timing detected')
        confidence += TYPING_WEIGHTS['too_consistent']

    confidence = round(min(max(confidence, 0.0), 1.0), 4)
    verdict = AnomalyVerdict(
        is_suspicious=confidence > thresholds['suspicious_confidence'],
        anomalies=anomalies,
        confidence=confidence,
    )
    logger.debug(f"Typing verdict for {profile.session_id}: confidence={confidence:.2f}, anomalies={anomalies}")
    return verdict


class KeystrokeAnalyzer:
    """Records keystrokes into per-session logs and derives typing verdicts."""

    def __init__(self, store):
        """
        Args:
            store: SessionStore owning the per-session keystroke logs
        """
        self.store = store

    def record_keystroke(self, session_id: str, event: KeystrokeEvent) -> bool:
        """Append a keystroke to the session's raw log (caller holds the session lock)."""
        log = self.store.keystroke_log(session_id)
        return log.append(event)

    def get_digraphs(self, session_id: str) -> List[Digraph]:
        log = self.store.keystroke_log(session_id, create=False)
        return list(log.digraphs) if log is not None else []

    def get_trigraphs(self, session_id: str) -> List[Trigraph]:
        log = self.store.keystroke_log(session_id, create=False)
        return list(log.trigraphs) if log is not None else []

    def generate_typing_profile(self, session_id: str) -> TypingProfile:
        return build_typing_profile(session_id, self.store.keystroke_log(session_id, create=False))

    def detect_typing_anomalies(self, session_id: str) -> AnomalyVerdict:
        return detect_typing_anomalies(self.generate_typing_profile(session_id))

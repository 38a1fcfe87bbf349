"""
Behavioral pattern signals from a session's raw logs.

Derives coarse activity signals used by the fusion scorer:
- Paste bursts and tab/window switches from screen events
- Compile cadence and overall session duration
- Irregular gaps between transcript chunks
- Copy-paste proxy from oversized keystroke batches
- Mouse-anomaly proxy from tagged screen events
- Rapid application switching within a trailing window
"""
import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

import numpy as np

from schemas import CompileRunEvent, KeystrokeEvent, ScreenEvent, ScreenEventType, TranscriptChunk

logger = logging.getLogger(__name__)


TAB_SWITCH_TYPES = {ScreenEventType.WINDOW_SWITCH.value, ScreenEventType.TAB_BLUR.value}

MOUSE_ANOMALY_PATTERNS = {'teleport', 'linear_path', 'constant_velocity', 'inhuman_speed'}

BEHAVIOR_THRESHOLDS = {
    'gap_multiplier': 3.0,            # gap above this multiple of the mean is irregular
    'irregular_gap_fraction': 0.3,    # share of irregular gaps above -> suspicious timing
    'keystroke_batch_size': 50,       # batch larger than this -> copy-paste proxy
    'app_switch_count': 5,            # switches within the window to fire
    'app_switch_window_ms': 30000.0,  # trailing window relative to scoring time
    'long_chunk_chars': 200.0,        # average chunk length above -> long transcript chunks
}


@dataclass
class BehavioralSignals:
    """Activity-pattern signals for one session."""
    paste_bursts: int = 0
    tab_switches: int = 0
    compile_count: int = 0
    average_transcript_chunk_length: float = 0.0
    session_duration: float = 0.0
    suspicious_timing: bool = False
    copy_paste_suspected: bool = False
    mouse_anomaly: bool = False
    application_switching: bool = False
    long_transcript_chunks: bool = False


def is_valid_time(t: float) -> bool:
    """Negative or non-finite timestamps are dropped as malformed."""
    return math.isfinite(t) and t >= 0


def is_valid_chunk(chunk: TranscriptChunk) -> bool:
    return is_valid_time(chunk.start_ms) and is_valid_time(chunk.end_ms)


def session_bounds(
    transcripts: Sequence[TranscriptChunk],
    screen_events: Sequence[ScreenEvent],
    compile_events: Sequence[CompileRunEvent],
    keystrokes: Sequence[KeystrokeEvent] = ()
) -> Optional[tuple]:
    """
    Earliest start and latest end timestamp across all logs.

    Empty logs contribute no bound. Returns None if every log is empty.
    """
    starts: List[float] = []
    ends: List[float] = []

    for chunk in transcripts:
        if not is_valid_chunk(chunk):
            continue
        starts.append(chunk.start_ms)
        ends.append(chunk.end_ms)
    for events in (screen_events, compile_events, keystrokes):
        for event in events:
            if is_valid_time(event.t):
                starts.append(event.t)
                ends.append(event.t)

    if not starts:
        return None
    return min(starts), max(ends)


def has_suspicious_timing(transcripts: Sequence[TranscriptChunk], thresholds=None) -> bool:
    """
    True when more than 30% of consecutive transcript gaps exceed 3x the mean gap.

    Chunks are ordered by start time; overlapping chunks count as a zero gap.
    Chunks with a negative or non-finite bound are skipped.
    """
    if thresholds is None:
        thresholds = BEHAVIOR_THRESHOLDS

    ordered = sorted((c for c in transcripts if is_valid_chunk(c)), key=lambda c: c.start_ms)
    if len(ordered) < 2:
        return False
    gaps = np.array(
        [max(0.0, ordered[i].start_ms - ordered[i - 1].end_ms) for i in range(1, len(ordered))],
        dtype=np.float64,
    )
    mean_gap = float(gaps.mean())
    if mean_gap <= 0:
        return False

    irregular = int(np.sum(gaps > thresholds['gap_multiplier'] * mean_gap))
    return irregular / len(gaps) > thresholds['irregular_gap_fraction']


def _batch_size(event: ScreenEvent) -> float:
    for key in ('batchSize', 'batch_size', 'count'):
        value = event.meta.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return 0.0


def count_recent(events: Iterable[ScreenEvent], event_type: str, now_ms: float, window_ms: float) -> int:
    """Count events of a type whose timestamp lies in [now_ms - window_ms, now_ms]."""
    lower = now_ms - window_ms
    return sum(1 for e in events if e.type == event_type and lower <= e.t <= now_ms)


def analyze_behavior(
    transcripts: Sequence[TranscriptChunk],
    screen_events: Sequence[ScreenEvent],
    compile_events: Sequence[CompileRunEvent],
    keystrokes: Sequence[KeystrokeEvent] = (),
    now_ms: Optional[float] = None,
    thresholds=None
) -> BehavioralSignals:
    """
    Derive behavioral signals from a session's raw logs.

    Args:
        transcripts: Transcript chunks in arrival order
        screen_events: Screen events in arrival order
        compile_events: Compile/run/test events
        keystrokes: Raw keystrokes (only used for session bounds)
        now_ms: Scoring time for the application-switch window
                (defaults to the latest timestamp across the logs)
        thresholds: Optional threshold overrides

    Returns:
        BehavioralSignals (all-zero for empty logs)
    """
    if thresholds is None:
        thresholds = BEHAVIOR_THRESHOLDS

    transcripts = [c for c in transcripts if is_valid_chunk(c)]
    screen = [e for e in screen_events if is_valid_time(e.t)]
    compiles = [e for e in compile_events if is_valid_time(e.t)]

    paste_bursts = sum(1 for e in screen if e.type == ScreenEventType.PASTE.value)
    tab_switches = sum(1 for e in screen if e.type in TAB_SWITCH_TYPES)

    bounds = session_bounds(transcripts, screen, compiles, keystrokes)
    session_duration = float(bounds[1] - bounds[0]) if bounds is not None else 0.0
    if now_ms is None:
        now_ms = bounds[1] if bounds is not None else 0.0

    average_chunk_length = (
        float(np.mean([len(c.text) for c in transcripts])) if transcripts else 0.0
    )

    copy_paste = any(
        e.type == ScreenEventType.KEYSTROKE_BATCH.value
        and _batch_size(e) > thresholds['keystroke_batch_size']
        for e in screen
    )
    mouse_anomaly = any(
        e.type == ScreenEventType.MOUSE_ANOMALY.value
        and e.meta.get('pattern') in MOUSE_ANOMALY_PATTERNS
        for e in screen
    )
    app_switches = count_recent(
        screen,
        ScreenEventType.APPLICATION_SWITCH.value,
        now_ms,
        thresholds['app_switch_window_ms'],
    )

    signals = BehavioralSignals(
        paste_bursts=paste_bursts,
        tab_switches=tab_switches,
        compile_count=len(compiles),
        average_transcript_chunk_length=average_chunk_length,
        session_duration=session_duration,
        suspicious_timing=has_suspicious_timing(transcripts, thresholds),
        copy_paste_suspected=copy_paste,
        mouse_anomaly=mouse_anomaly,
        application_switching=app_switches >= thresholds['app_switch_count'],
        long_transcript_chunks=average_chunk_length > thresholds['long_chunk_chars'],
    )
    logger.debug(f"Behavioral signals: {signals}")
    return signals

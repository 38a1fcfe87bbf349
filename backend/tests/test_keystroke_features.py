"""
Unit tests for keystroke dynamics features and the typing-anomaly verdict.
"""
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest
from schemas import KeystrokeEvent
from keystroke_features import (
    KeystrokeLog,
    KeystrokeAnalyzer,
    RunningStats,
    TypingProfile,
    build_typing_profile,
    detect_typing_anomalies,
    digraph_mean_variance,
    is_valid_latency,
)
from session_store import SessionStore


def ks(t, key, action, session_id="s1"):
    return KeystrokeEvent(session_id=session_id, t=t, key=key, action=action)


def log_of(events):
    log = KeystrokeLog()
    for event in events:
        log.append(event)
    return log


def uniform_typing():
    """10 presses, 80 ms holds, 120 ms between presses."""
    events = []
    for i, key in enumerate("abcdefghij"):
        events.append(ks(i * 120, key, "down"))
        events.append(ks(i * 120 + 80, key, "up"))
    return events


def human_typing():
    """Irregular rhythm with varied digraph latencies."""
    strokes = [("h", 0, 180), ("e", 500, 660), ("l", 840, 1040), ("l", 1560, 1700),
               ("o", 1800, 2000), (" ", 2700, 2840), ("w", 3000, 3220)]
    events = []
    for key, down, up in strokes:
        events.append(ks(down, key, "down"))
        events.append(ks(up, key, "up"))
    return events


class TestLatencyBand:
    """Test the digraph latency band."""

    @pytest.mark.parametrize("latency,included", [
        (9, False),
        (10, True),
        (500, True),
        (2000, True),
        (2001, False),
    ])
    def test_band_inclusion(self, latency, included):
        """Digraphs are kept iff 10 <= latency <= 2000."""
        log = log_of([ks(0, "a", "down"), ks(50, "a", "up"), ks(50 + latency, "b", "down")])
        assert (len(log.digraphs) == 1) is included
        profile = build_typing_profile("s1", log)
        assert (("a", "b") in profile.digraph_latencies) is included

    def test_is_valid_latency(self):
        assert is_valid_latency(10)
        assert not is_valid_latency(-5)

    def test_press_after_press_is_not_digraph(self):
        """Only release -> press transitions form digraphs."""
        log = log_of([ks(0, "a", "down"), ks(40, "b", "down"), ks(90, "a", "up")])
        assert log.digraphs == []


class TestTrigraphs:
    """Test trigraph chaining."""

    def test_three_key_sequence(self):
        """Two chained in-band legs form one trigraph."""
        log = log_of([
            ks(0, "a", "down"), ks(80, "a", "up"),
            ks(120, "b", "down"), ks(200, "b", "up"),
            ks(240, "c", "down"),
        ])
        assert len(log.digraphs) == 2
        assert len(log.trigraphs) == 1
        tri = log.trigraphs[0]
        assert (tri.key1, tri.key2, tri.key3) == ("a", "b", "c")
        assert tri.latency1 == 40
        assert tri.latency2 == 40
        assert tri.timestamp == 240

    def test_out_of_band_leg_breaks_chain(self):
        """A leg outside the band prevents the trigraph."""
        log = log_of([
            ks(0, "a", "down"), ks(80, "a", "up"),
            ks(3000, "b", "down"), ks(3080, "b", "up"),
            ks(3120, "c", "down"),
        ])
        assert len(log.digraphs) == 1
        assert log.trigraphs == []

    def test_profile_groups_by_triple(self):
        """Trigraph feature is the mean over occurrences of the triple."""
        events = [
            ks(0, "a", "down"), ks(80, "a", "up"),
            ks(120, "b", "down"), ks(200, "b", "up"),
            ks(240, "c", "down"), ks(300, "c", "up"),
            ks(1000, "a", "down"), ks(1080, "a", "up"),
            ks(1140, "b", "down"), ks(1200, "b", "up"),
            ks(1260, "c", "down"), ks(1300, "c", "up"),
        ]
        profile = build_typing_profile("s1", log_of(events))
        # (40 + 40) / 2 and (60 + 60) / 2
        assert profile.trigraph_latencies[("a", "b", "c")] == pytest.approx(50.0)
        assert profile.digraph_latencies[("a", "b")] == pytest.approx(50.0)


class TestTypingProfile:
    """Test typing profile computation."""

    def test_empty_profile(self):
        """No events yields an all-zero profile."""
        for log in (None, KeystrokeLog()):
            profile = build_typing_profile("s1", log)
            assert profile.average_speed == 0.0
            assert profile.digraph_latencies == {}
            assert profile.trigraph_latencies == {}
            assert profile.key_hold_durations == {}
            assert profile.pause_distribution == []
            assert profile.variance == 0.0

    def test_uniform_profile(self):
        profile = build_typing_profile("s1", log_of(uniform_typing()))
        assert profile.press_count == 10
        assert profile.variance == pytest.approx(0.0)
        # 10 characters over 1160 ms
        assert profile.average_speed == pytest.approx(10 / 1160 * 60000)
        assert profile.pause_distribution == [120.0] * 9
        assert profile.key_hold_durations["a"] == pytest.approx(80.0)

    def test_hold_duration_bounds(self):
        """Holds outside (0, 2000) ms and unmatched releases are ignored."""
        log = log_of([
            ks(0, "a", "down"), ks(2500, "a", "up"),
            ks(3000, "z", "up"),
            ks(4000, "b", "down"), ks(4100, "b", "up"),
        ])
        profile = build_typing_profile("s1", log)
        assert "a" not in profile.key_hold_durations
        assert "z" not in profile.key_hold_durations
        assert profile.key_hold_durations["b"] == pytest.approx(100.0)

    def test_special_keys_do_not_count_as_characters(self):
        log = log_of([ks(0, "Shift", "down"), ks(60000, "a", "down")])
        assert build_typing_profile("s1", log).average_speed == pytest.approx(1.0)

    def test_negative_timestamp_discarded(self):
        log = KeystrokeLog()
        assert log.append(ks(-1, "a", "down")) is False
        assert len(log) == 0

    def test_running_stats_population_variance(self):
        stats = RunningStats()
        for value in (2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0):
            stats.add(value)
        assert stats.mean == pytest.approx(5.0)
        assert stats.variance == pytest.approx(4.0)


class TestTypingAnomalies:
    """Test the additive typing-anomaly rules."""

    def test_uniform_typing_fires(self):
        """Identical holds and gaps trigger uniform timing."""
        verdict = detect_typing_anomalies(build_typing_profile("s1", log_of(uniform_typing())))
        assert 'Unusually uniform keystroke timing detected' in verdict.anomalies
        assert 'Unusually fast typing speed detected' in verdict.anomalies
        assert 'Unusually consistent digraph timing detected' in verdict.anomalies
        assert verdict.confidence == pytest.approx(0.7)
        assert verdict.is_suspicious

    def test_human_typing_is_clean(self):
        verdict = detect_typing_anomalies(build_typing_profile("s1", log_of(human_typing())))
        assert verdict.anomalies == []
        assert verdict.confidence == 0.0
        assert not verdict.is_suspicious

    def test_slow_typing_with_long_pause(self):
        log = log_of([ks(0, "a", "down"), ks(100, "a", "up"), ks(10000, "b", "down"), ks(10100, "b", "up")])
        verdict = detect_typing_anomalies(build_typing_profile("s1", log))
        assert 'Unusually slow typing speed detected' in verdict.anomalies
        assert 'Frequent long pauses detected (possible copy-paste)' in verdict.anomalies
        assert verdict.confidence == pytest.approx(0.8)

    def test_single_press_yields_empty_verdict(self):
        verdict = detect_typing_anomalies(build_typing_profile("s1", log_of([ks(0, "a", "down")])))
        assert verdict.confidence == 0.0
        assert not verdict.is_suspicious

    def test_confidence_is_clamped(self):
        profile = TypingProfile(session_id="s1", average_speed=500.0, pause_distribution=[9000.0],
                                variance=0.0, press_count=5)
        verdict = detect_typing_anomalies(profile)
        assert 0.0 <= verdict.confidence <= 1.0

    def test_digraph_mean_variance(self):
        assert digraph_mean_variance({("a", "b"): 40.0}) == 0.0
        assert digraph_mean_variance({("a", "b"): 40.0, ("b", "c"): 60.0}) == pytest.approx(100.0)


class TestKeystrokeAnalyzer:
    """Test the store-backed analyzer."""

    def test_record_and_query(self):
        store = SessionStore()
        analyzer = KeystrokeAnalyzer(store)
        for event in uniform_typing():
            analyzer.record_keystroke("s1", event)

        assert len(analyzer.get_digraphs("s1")) == 9
        assert len(analyzer.get_trigraphs("s1")) == 8
        assert analyzer.detect_typing_anomalies("s1").is_suspicious

    def test_unknown_session_does_not_materialize(self):
        store = SessionStore()
        analyzer = KeystrokeAnalyzer(store)
        assert analyzer.get_digraphs("ghost") == []
        assert analyzer.generate_typing_profile("ghost").press_count == 0
        assert store.get_state("ghost") is None

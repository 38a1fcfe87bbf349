"""
Tests for the offline replay command.
"""
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import json
import pytest
from replay_session import load_records, main


RECORDS = [
    {"kind": "transcript", "seq": 1, "text": "Let me think about this", "start_ms": 0, "end_ms": 1200, "speaker": "candidate"},
    {"kind": "screen", "t": 1500, "type": "PASTE", "meta": {"length": 240}},
    {"kind": "keystroke", "t": 1600, "key": "a", "action": "down"},
    {"kind": "keystroke", "t": 1680, "key": "a", "action": "up"},
    {"kind": "compile", "t": 2000, "action": "run", "ok": True},
    {"kind": "code", "code": "def f(x):\n    return x", "language": "python"},
]


def write_recording(path, records):
    path.write_text("\n".join(json.dumps(r) for r in records) + "\n\n", encoding="utf-8")
    return path


class TestLoadRecords:
    """Test JSON-lines parsing."""

    def test_skips_blank_lines(self, tmp_path):
        path = write_recording(tmp_path / "rec.jsonl", RECORDS)
        assert len(load_records(str(path))) == len(RECORDS)

    def test_unknown_kind(self, tmp_path):
        path = write_recording(tmp_path / "rec.jsonl", [{"kind": "video", "t": 1}])
        with pytest.raises(ValueError):
            load_records(str(path))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "rec.jsonl"
        path.write_text("{not json}\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_records(str(path))


class TestMain:
    """Test the command-line entry point."""

    def test_replay_prints_report(self, tmp_path, capsys):
        path = write_recording(tmp_path / "rec.jsonl", RECORDS)
        assert main([str(path), "--candidate", "cand-7", "--end"]) == 0

        report = json.loads(capsys.readouterr().out)
        assert report["session"]["candidate_id"] == "cand-7"
        assert report["session"]["status"] == "ended"
        assert len(report["scores"]) == len(RECORDS)
        assert len(report["transcript_chunks"]) == 1
        assert report["screen_events"][0]["type"] == "PASTE"
        assert report["scores"][-1]["reasons"][0]["code"] == "PASTE_BURST"

    def test_missing_file(self, tmp_path):
        assert main([str(tmp_path / "missing.jsonl")]) == 1

    def test_malformed_record(self, tmp_path):
        path = write_recording(tmp_path / "rec.jsonl", [{"kind": "keystroke", "t": 1, "key": "a", "action": "hold"}])
        assert main([str(path)]) == 1

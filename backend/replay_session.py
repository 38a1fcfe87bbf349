#!/usr/bin/env python3
"""
Offline session replay.

Feeds a recorded JSON-lines telemetry file through the fraud detection handlers
and prints the resulting session report as JSON. Each line is one record:

    {"kind": "transcript", "seq": 1, "text": "...", "start_ms": 0, "end_ms": 900}
    {"kind": "screen", "t": 1200, "type": "PASTE", "meta": {"length": 240}}
    {"kind": "compile", "t": 5000, "action": "run", "ok": true}
    {"kind": "keystroke", "t": 5100, "key": "a", "action": "down"}
    {"kind": "code", "code": "...", "language": "python"}

Usage:
    python replay_session.py recording.jsonl --candidate cand-1 --company acme
"""
import sys
import json
import asyncio
import argparse
import logging
from typing import Any, Dict, List, Optional

from config import configure_logging
from fraud_handlers import FraudDetectionHandler

logger = logging.getLogger(__name__)


RECORD_FIELDS = {
    'transcript': ('seq', 'text', 'start_ms', 'end_ms', 'speaker'),
    'screen': ('t', 'type', 'meta'),
    'compile': ('t', 'action', 'ok'),
    'keystroke': ('t', 'key', 'action'),
    'code': ('code', 'language'),
}


def load_records(path: str) -> List[Dict[str, Any]]:
    """
    Read a JSON-lines recording, skipping blank lines.

    Raises:
        ValueError: malformed JSON or unknown record kind
    """
    records = []
    with open(path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"line {line_no}: invalid JSON ({e.msg})") from e
            if not isinstance(record, dict) or record.get('kind') not in RECORD_FIELDS:
                raise ValueError(f"line {line_no}: unknown record kind {record.get('kind') if isinstance(record, dict) else None!r}")
            records.append(record)
    return records


async def replay(
    handler: FraudDetectionHandler,
    records: List[Dict[str, Any]],
    candidate_id: str,
    company_id: str,
    role: Optional[str] = None
) -> str:
    """
    Replay records into a fresh session.

    Returns:
        The session id the records were replayed into
    """
    session_id = await handler.start_session(
        candidate_id,
        company_id,
        consent={'audio': True, 'video': True, 'screen': True, 'telemetry': True},
        role=role,
    )

    ingest = {
        'transcript': handler.ingest_transcript,
        'screen': handler.ingest_screen_event,
        'compile': handler.ingest_compile_event,
        'keystroke': handler.ingest_keystroke,
        'code': handler.submit_code_sample,
    }
    for record in records:
        kind = record['kind']
        kwargs = {name: record[name] for name in RECORD_FIELDS[kind] if name in record}
        await ingest[kind](session_id, **kwargs)

    logger.info(f"Replayed {len(records)} record(s) into {session_id}")
    return session_id


async def run(args) -> Dict[str, Any]:
    handler = FraudDetectionHandler()
    records = load_records(args.recording)
    session_id = await replay(handler, records, args.candidate, args.company, args.role)
    if args.end:
        await handler.end_session(session_id)
    report = await handler.get_report(session_id)
    return report.model_dump(mode='json')


def main(argv: Optional[List[str]] = None) -> int:
    """Command-line entry point; returns a process exit code."""
    parser = argparse.ArgumentParser(description='Replay recorded interview telemetry and print the fraud report')
    parser.add_argument('recording', help='Path to a JSON-lines telemetry recording')
    parser.add_argument('--candidate', default='replay-candidate', help='Candidate id for the replayed session')
    parser.add_argument('--company', default='replay-company', help='Company id for the replayed session')
    parser.add_argument('--role', default=None, help='Optional role for the replayed session')
    parser.add_argument('--end', action='store_true', help='End the session after replay')
    parser.add_argument('--log-level', default=None, help='Override FRAUD_LOG_LEVEL')

    args = parser.parse_args(argv)
    configure_logging(args.log_level.upper() if args.log_level else None)

    try:
        report = asyncio.run(run(args))
    except (OSError, ValueError) as e:
        # pydantic's ValidationError is a ValueError
        logger.error(f"Replay failed: {e}")
        return 1

    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""Print the most recent vital-sign rows stored by vital_capture_app.py."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from capture_config import ensure_config  # noqa: E402
from vital_store import VitalSignStore  # noqa: E402


def format_row(row: dict) -> str:
    confidence = row.get("ecg_confidence")
    conf_text = "-" if confidence is None else f"{float(confidence):.3f}"
    return (
        f"{row.get('timestamp')}  HR={row.get('hr')}  SpO2={row.get('spo2')}  ABP={row.get('abp')}  "
        f"ECG={row.get('ecg_classification')} ({conf_text})"
    )


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", default="vital_capture_config.json")
    parser.add_argument("--db", default=None, help="sqlite path (overrides config)")
    parser.add_argument("--limit", type=int, default=10)
    parser.add_argument("--json", action="store_true", help="emit one JSON object per line")
    args = parser.parse_args()

    db_path = args.db
    if db_path is None:
        db_path = str(ensure_config(Path(args.config))["database"].get("path", "data/vital_signs.sqlite"))
    if db_path != ":memory:" and not Path(db_path).exists():
        print(f"[WARN] database not found: {db_path}", file=sys.stderr)
        return 1

    store = VitalSignStore(db_path)
    if not store.connect():
        return 1
    try:
        rows = store.get_recent_vital_signs(args.limit)
    finally:
        store.disconnect()

    for row in rows:
        print(json.dumps(row, ensure_ascii=False) if args.json else format_row(row))
    print(f"[INFO] rows={len(rows)} db={db_path}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

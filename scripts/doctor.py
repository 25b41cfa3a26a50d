#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json

from trackledger.core.errors import StoreUnavailable
from trackledger.core.ops.doctor import DoctorReport, run_doctor


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate trackledger collection files")
    parser.add_argument("--state-dir", default=None, help="State directory (defaults to TRACKLEDGER_STATE_DIR)")
    parser.add_argument(
        "--repair",
        action="store_true",
        help="Drop invalid records, dedupe ids and recompute progress, keeping a backup",
    )
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON report")
    return parser.parse_args()


def _print_human(report: DoctorReport) -> None:
    print(f"Doctor report @ {report.ts_iso}")
    print(f"State dir: {report.state_dir}")
    print(f"Overall: {'OK' if report.ok else 'ATTENTION NEEDED'}")
    print()
    for item in report.files:
        healthy = not (item.invalid_count or item.duplicate_ids or item.inconsistent_progress)
        status = "missing" if not item.exists else ("ok" if healthy else "invalid")
        print(f"- {item.name}: {status}")
        print(f"  path={item.path}")
        print(f"  size={item.size_bytes}B version={item.version}")
        if item.record_count is not None:
            print(f"  records={item.record_count} valid={item.valid_count or 0} invalid={item.invalid_count or 0}")
        if item.duplicate_ids:
            print(f"  duplicate ids: {', '.join(item.duplicate_ids)}")
        if item.inconsistent_progress:
            print(f"  inconsistent progress: {', '.join(item.inconsistent_progress)}")
        for note in item.notes:
            print(f"  note: {note}")
    print()
    print(
        "Summary: "
        f"files={report.summary.total_files} missing={report.summary.missing} "
        f"invalid_records={report.summary.invalid_records} duplicate_ids={report.summary.duplicate_ids} "
        f"inconsistent_progress={report.summary.inconsistent_progress} total_bytes={report.summary.total_bytes}"
    )


def main() -> int:
    args = _parse_args()
    try:
        report = run_doctor(state_dir=args.state_dir, repair=args.repair)
    except StoreUnavailable as exc:
        print(f"store unavailable: {exc}")
        return 3

    if args.json:
        print(json.dumps(report.model_dump(), indent=2), flush=True)
    else:
        _print_human(report)

    return 0 if report.ok else 2


if __name__ == "__main__":
    raise SystemExit(main())

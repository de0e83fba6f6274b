"""
Medication / Mood Insights - command line report
=================================================
Reads an app export (JSON) and prints the insights report.

Export shape:
    {"medications": [...], "doses": [...], "moodEntries": [...]}
camelCase or snake_case keys are both accepted.

Usage:
    python insights_cli.py export.json                 # Full JSON report
    python insights_cli.py export.json --summary       # 3-bullet digest
    python insights_cli.py export.json --days 30       # Last 30 days only
    python insights_cli.py export.json -o report.json  # Write to file
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from config import ANALYSIS_WINDOW_DAYS, BODY_WEIGHT_KG, LOG_LEVEL, REPORT_TIMEZONE

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s  %(levelname)-8s  %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger("insights_cli")

from insight_analyzer import generate_insights_report
from models import parse_export
from pipeline.summary_builder import build_concise_summary


def load_export(path: Path) -> Dict[str, Any]:
    with path.open(encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, dict):
        raise ValueError("export must be a JSON object")
    return payload


def run(args: argparse.Namespace) -> int:
    path = Path(args.export)
    try:
        medications, doses, moods = parse_export(load_export(path))
    except (OSError, ValueError, KeyError, TypeError) as e:
        log.error("Could not read export %s: %s", path, e)
        return 1

    log.info("Loaded %d medications, %d doses, %d mood entries from %s",
             len(medications), len(doses), len(moods), path.name)

    report = generate_insights_report(
        medications,
        doses,
        moods,
        window_days=args.days,
        now=args.now,
        body_weight=args.body_weight,
        tz=args.timezone,
    )

    if args.summary:
        text = build_concise_summary(report)
    else:
        text = json.dumps(report.to_dict(), indent=2, ensure_ascii=False)

    if args.output:
        Path(args.output).write_text(text + "\n", encoding="utf-8")
        log.info("Report written to %s", args.output)
    else:
        print(text)

    return 0 if report.data_quality.analysis_status != "failed" else 1


# ═══════════════════════════════════════════════════════════════
#  CLI
# ═══════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Medication / mood insights report"
    )
    parser.add_argument("export",
                        help="Path to the JSON export")
    parser.add_argument("--days", type=int, default=ANALYSIS_WINDOW_DAYS,
                        help="Analysis window in days (default: all data)")
    parser.add_argument("--now", type=int, default=None,
                        help="Reference time, epoch ms (default: latest timestamp)")
    parser.add_argument("--body-weight", type=float, default=BODY_WEIGHT_KG,
                        help=f"Body weight in kg (default: {BODY_WEIGHT_KG:g})")
    parser.add_argument("--timezone", default=REPORT_TIMEZONE,
                        help=f"Time zone for time-of-day patterns (default: {REPORT_TIMEZONE})")
    parser.add_argument("--summary", action="store_true",
                        help="Print the 3-bullet digest instead of JSON")
    parser.add_argument("-o", "--output",
                        help="Write to a file instead of stdout")
    return parser


def main():
    args = build_parser().parse_args()
    sys.exit(run(args))


if __name__ == "__main__":
    main()

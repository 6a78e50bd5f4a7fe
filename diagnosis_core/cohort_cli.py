from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Iterable

from .cohort import attempt_from_cache, report_to_json, safe_cohort_report
from .exam_bank import parse_outcomes
from .results_cache import ResultsCacheError
from .types import AttemptRecord

log = logging.getLogger(__name__)


def load_attempts(path: Path) -> list[AttemptRecord]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    rows = raw.get("attempts", []) if isinstance(raw, dict) else raw
    out: list[AttemptRecord] = []
    for row in rows:
        try:
            out.append(
                attempt_from_cache(
                    str(row["attemptId"]),
                    str(row.get("learnerId", "")),
                    row.get("resultsCache") or {},
                    parse_outcomes(row.get("outcomes") or {}),
                    row.get("groups") or {},
                    row.get("intervention"),
                )
            )
        except (KeyError, ResultsCacheError) as e:
            log.warning("skipping attempt row: %s", e)
    return out


def _fmt_items(items: Iterable[dict[str, Any]]) -> list[str]:
    return [
        f"  {it['question_id']:<12} {it['status']:<8} p={it['difficulty']:.2f} "
        f"s={it['slip']:.2f} g={it['guess']:.2f} D={it['discrimination']:+.2f}"
        for it in items
    ]


def print_report(report: dict[str, Any]) -> None:
    print(f"=== Cohort Report {report.get('exam_id') or ''} ===".rstrip())
    print(f"Attempts: {report['total_attempts']}")

    print("\nItems:")
    lines = _fmt_items(report["items"])
    print("\n".join(lines) if lines else "  (none)")

    print("\nShadow nodes:")
    if report["recommendations"]:
        for rec in report["recommendations"]:
            print(f" - {rec}")
    else:
        print("  (none)")

    print("\nFairness:")
    for f in report["fairness"]:
        ratio = "insufficient data" if f["impact_ratio"] is None else f"{f['impact_ratio']:.2f}"
        print(f"  {f['dimension']}: {f['status']} ({ratio})")
        if f["insufficient_groups"]:
            print(f"    insufficient data: {', '.join(f['insufficient_groups'])}")
    if not report["fairness"]:
        print("  (no protected dimensions)")

    flagged = [m for m in report.get("label_bias", []) if m["impacted_group"]]
    if flagged:
        print("\nLabel bias:")
        for m in flagged:
            print(f"  {m['dimension']}/{m['label']}: {m['status']} ({m['impacted_group']}, gap {m['gap']:.2f})")


def write_summary(report: dict[str, Any], path: Path) -> str:
    text = report_to_json(report)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text + "\n", encoding="utf-8")
    return text


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Cohort item, pathology and fairness report")
    ap.add_argument("attempts", type=Path, help="JSON file with completed attempts")
    ap.add_argument("--exam-id", default="")
    ap.add_argument("--dimension", action="append", default=None, help="protected dimension (repeatable)")
    ap.add_argument("--out", type=Path, default=Path("cohort_report.json"))
    args = ap.parse_args(argv)

    attempts = load_attempts(args.attempts)
    report = safe_cohort_report(attempts, args.exam_id, args.dimension)
    print_report(report)
    write_summary(report, args.out)
    return 2 if any(f["status"] == "CRITICAL" for f in report["fairness"]) else 0


if __name__ == "__main__":
    raise SystemExit(main())

"""Export cohort item-health rows as JSON or CSV for content reviewers."""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List
import csv
import io

_FIELDS: tuple[str, ...] = (
    "question_id",
    "total_responses",
    "difficulty",
    "slip",
    "guess",
    "discrimination",
    "median_time_ms",
    "status",
    "useless_distractors",
)


def _as_int(val: Any) -> int:
    try:
        return int(val)
    except (TypeError, ValueError):
        return 0


def _as_rate(val: Any) -> float:
    try:
        return round(float(val), 3)
    except (TypeError, ValueError):
        return 0.0


def _as_options(val: Any) -> str:
    return ";".join(str(v) for v in (val or []))


def _as_text(val: Any) -> str:
    return "" if val is None else str(val)


_COERCE: Dict[str, Callable[[Any], Any]] = {
    "total_responses": _as_int,
    "difficulty": _as_rate,
    "slip": _as_rate,
    "guess": _as_rate,
    "discrimination": _as_rate,
    "median_time_ms": _as_rate,
    "useless_distractors": _as_options,
}


def _item_row(stat: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _COERCE.get(key, _as_text)(stat.get(key)) for key in _FIELDS}


def to_json(rows: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """``{"items": [...]}`` with one flat row per item."""

    items: List[Dict[str, Any]] = [_item_row(r or {}) for r in rows]
    return {"items": items}


def to_csv(rows: Iterable[Dict[str, Any]]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=_FIELDS, lineterminator="\n")
    writer.writeheader()
    writer.writerows(_item_row(r or {}) for r in rows)
    return buf.getvalue()


__all__ = ["to_json", "to_csv"]

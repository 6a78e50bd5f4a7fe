"""Metacognitive calibration of one session.

Self-reported certainty is bucketed (HIGH/MEDIUM/LOW/NONE) and compared with
the observed accuracy inside each bucket.  The expected calibration error is
the plain mean of the per-bucket gaps, so a single badly calibrated bucket
weighs as much as a crowded one.
"""
from __future__ import annotations

from typing import Iterable, List

from . import config
from .types import CONFIDENCE_LEVELS, CalibrationMetrics, QuestionResponse

__all__ = ["certainty_of", "calculate_calibration", "calibration_status"]


def certainty_of(level: str) -> int:
    return int(config.CONFIDENCE_VALUES.get(level, 0))


def calibration_status(certainty: float, accuracy: float) -> str:
    if certainty > accuracy + config.CALIBRATION_MARGIN:
        return "OVERCONFIDENT"
    if accuracy > certainty + config.CALIBRATION_MARGIN:
        return "UNDERCONFIDENT"
    return "CALIBRATED"


def calculate_calibration(responses: Iterable[QuestionResponse]) -> CalibrationMetrics:
    rs = list(responses)
    if not rs:
        return CalibrationMetrics()

    n = len(rs)
    gaps: List[float] = []
    for level in CONFIDENCE_LEVELS:
        bucket = [r for r in rs if r.confidence == level]
        if not bucket:
            continue
        acc = 100.0 * sum(1 for r in bucket if r.is_correct) / len(bucket)
        gaps.append(abs(acc - certainty_of(level)))

    certainty = sum(certainty_of(r.confidence) for r in rs) / n
    accuracy = 100.0 * sum(1 for r in rs if r.is_correct) / n
    ece = sum(gaps) / len(gaps) if gaps else 0.0

    return CalibrationMetrics(
        certainty_average=round(certainty, 2),
        accuracy_average=round(accuracy, 2),
        blind_spots=sum(1 for r in rs if r.confidence == "HIGH" and not r.is_correct),
        fragile_knowledge=sum(1 for r in rs if r.confidence == "LOW" and r.is_correct),
        ece_score=round(max(ece, 0.0), 2),
        calibration_status=calibration_status(certainty, accuracy),  # type: ignore[arg-type]
    )

"""Classical item statistics used by the cohort calibration layer.

The helpers operate on plain counts and rates so that both the batch report
and developer tools can reuse them without building attempt records first.
"""
from __future__ import annotations

from typing import Optional

__all__ = [
    "pass_rate",
    "slip",
    "guess",
    "discrimination",
    "impact_ratio",
]


def pass_rate(correct: int, total: int) -> float:
    """Share of correct answers, ``0.0`` for an empty group."""

    if total <= 0:
        return 0.0
    return float(correct) / float(total)


def slip(correct_masters: int, valid_masters: int) -> float:
    """Probability that a master fails the item.

    Parameters
    ----------
    correct_masters: int
        Masters that answered the item correctly.
    valid_masters: int
        Masters with a usable (non-rapid) response to the item.

    Returns
    -------
    float
        ``1 − correct_masters / valid_masters``, or ``0.0`` without masters.
    """

    if valid_masters <= 0:
        return 0.0
    return 1.0 - pass_rate(correct_masters, valid_masters)


def guess(correct_novices: int, valid_novices: int) -> float:
    """Probability that a novice answers the item correctly."""

    return pass_rate(correct_novices, valid_novices)


def discrimination(p_upper: float, p_lower: float) -> float:
    """Upper-group pass rate minus lower-group pass rate."""

    return float(p_upper) - float(p_lower)


def impact_ratio(min_rate: float, max_rate: float) -> Optional[float]:
    """Four-fifths rule ratio between the lowest and highest group rate.

    A cohort where nobody received an intervention is treated as perfectly
    balanced (``1.0``).  Negative rates are invalid and yield ``None``.
    """

    if min_rate < 0 or max_rate < 0:
        return None
    if max_rate == 0:
        return 1.0
    return max(0.0, min(1.0, float(min_rate) / float(max_rate)))

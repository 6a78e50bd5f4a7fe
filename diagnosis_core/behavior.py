from __future__ import annotations
from typing import Iterable, List, Optional
from . import config
from .types import BehaviorProfile, QuestionResponse


def calculate_rte(time_ms: Optional[int], expected_time_ms: Optional[int]) -> Optional[float]:
    """Response time effort: observed / expected time, or None without a baseline."""
    if time_ms is None or not expected_time_ms or expected_time_ms <= 0:
        return None
    return round(float(time_ms) / float(expected_time_ms), 2)


def is_rapid_guessing(time_ms: Optional[int]) -> bool:
    # unreported timing is not evidence of guessing
    if time_ms is None:
        return False
    return int(time_ms) < config.RTE_TIME_FLOOR_MS


def is_evidence_quality_sufficient(response: QuestionResponse) -> bool:
    return not is_rapid_guessing(response.telemetry.time_ms)


def temporal_entropy(hesitation_count: int, revisit_count: int) -> float:
    """Indecision score of one response: weighted answer changes plus revisits."""
    return (
        hesitation_count * config.ENTROPY_HESITATION_WEIGHT
        + revisit_count * config.ENTROPY_REVISIT_WEIGHT
    )


def is_fragile_certainty(is_correct: bool, z_score: Optional[float]) -> bool:
    if not is_correct or z_score is None:
        return False
    return z_score > config.FRAGILE_Z_SCORE


def _mean(vals: List[float]) -> float:
    return sum(vals) / len(vals) if vals else 0.0


def calculate_behavior_profile(responses: Iterable[QuestionResponse]) -> BehaviorProfile:
    rs = list(responses)
    if not rs:
        return BehaviorProfile()
    n = len(rs)

    rapid = sum(1 for r in rs if is_rapid_guessing(r.telemetry.time_ms))

    accuracy = 100.0 * sum(1 for r in rs if r.is_correct) / n
    hes = _mean([float(r.telemetry.hesitation_count) for r in rs])
    focus = _mean([float(r.telemetry.focus_lost_count) for r in rs])
    # effortful but accurate: anxiety rather than missing knowledge
    anxious = (
        hes > config.ANXIOUS_HESITATION_MEAN
        and focus > config.ANXIOUS_FOCUS_LOST_MEAN
        and accuracy >= config.ANXIOUS_ACCURACY_MIN
    )

    # circular navigation or confirmation latency on a correct answer
    indecisive = sum(
        1 for r in rs
        if temporal_entropy(r.telemetry.hesitation_count, r.telemetry.revisit_count) > config.ENTROPY_HIGH
        or is_fragile_certainty(r.is_correct, r.telemetry.z_score)
    )

    inconsistent = sum(
        1 for r in rs
        if (r.confidence == "HIGH" and not r.is_correct) or (r.confidence == "LOW" and r.is_correct)
    )

    return BehaviorProfile(
        is_impulsive=rapid > n * config.IMPULSIVE_FRACTION,
        is_anxious=anxious,
        is_consistent=inconsistent < n * config.CONSISTENCY_MAX_FRACTION,
        is_indecisive=indecisive > n * config.INDECISIVE_FRACTION,
    )

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Iterable, List, Mapping, Optional, Sequence

from . import config
from .behavior import calculate_behavior_profile, is_evidence_quality_sufficient
from .calibration import calculate_calibration
from .diagnosis import diagnose_all
from .normalizer import CohortTiming, audit_flags_of, normalize_responses
from .types import (
    DiagnosticResult,
    Misconception,
    QuestionDefinition,
    QuestionResponse,
    TelemetryEvent,
)

log = logging.getLogger(__name__)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def overall_score(responses: Sequence[QuestionResponse]) -> int:
    """Percent correct over non-rapid responses, rounded half up."""
    valid = [r for r in responses if is_evidence_quality_sufficient(r)]
    if not valid:
        return 0
    pct = 100.0 * sum(1 for r in valid if r.is_correct) / len(valid)
    return int(math.floor(pct + 0.5))


def evaluate_responses(
    attempt_id: str,
    student_id: str,
    responses: Sequence[QuestionResponse],
    questions: Sequence[QuestionDefinition],
    misconceptions: Iterable[Misconception] | Mapping[str, Misconception] = (),
    evaluated_at: Optional[str] = None,
) -> DiagnosticResult:
    lookup = (
        dict(misconceptions) if isinstance(misconceptions, Mapping)
        else {m.id: m for m in misconceptions}
    )
    calibration = calculate_calibration(responses)
    diagnoses = diagnose_all(responses, questions, lookup, calibration.calibration_status)
    return DiagnosticResult(
        attempt_id=attempt_id,
        student_id=student_id,
        overall_score=overall_score(responses),
        competency_diagnoses=diagnoses,
        calibration=calibration,
        behavior_profile=calculate_behavior_profile(responses),
        evaluated_at=evaluated_at or _utcnow_iso(),
        schema_version=config.SCHEMA_VERSION,
        audit_flags=audit_flags_of(responses),
    )


def evaluate_session(
    attempt_id: str,
    student_id: str,
    questions: Sequence[QuestionDefinition],
    events: Iterable[TelemetryEvent],
    misconceptions: Iterable[Misconception] | Mapping[str, Misconception] = (),
    cohort_stats: Optional[CohortTiming] = None,
    evaluated_at: Optional[str] = None,
) -> DiagnosticResult:
    """Normalize the telemetry log of one attempt and diagnose it."""
    responses: List[QuestionResponse] = normalize_responses(questions, events, cohort_stats)
    result = evaluate_responses(
        attempt_id, student_id, responses, questions, misconceptions, evaluated_at
    )
    log.info(
        "evaluated attempt %s: %d responses, score=%d, flags=%d",
        attempt_id, len(responses), result.overall_score, len(result.audit_flags),
    )
    return result

# diagnosis_core/diagnosis.py
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from . import config
from .behavior import is_evidence_quality_sufficient, is_fragile_certainty
from .calibration import certainty_of
from .types import (
    CONFIDENCE_LEVELS,
    CompetencyDiagnosis,
    DiagnosisEvidence,
    Misconception,
    QuestionDefinition,
    QuestionResponse,
)

log = logging.getLogger(__name__)

_CONFIDENCE_RANK = {lvl: idx for idx, lvl in enumerate(CONFIDENCE_LEVELS)}


def _emit_trace(**values: object) -> None:
    if not config.DEBUG_TRACE:
        return
    ordered = [f"{key}={values[key]}" for key in config.TRACE_FIELDS if key in values]
    if ordered:
        log.info("trace %s", " ".join(ordered))


def _mean(vals: Sequence[float]) -> float:
    return sum(vals) / len(vals) if vals else 0.0


def _misconception_for(
    response: QuestionResponse,
    competency_id: str,
    questions: Mapping[str, QuestionDefinition],
    misconceptions: Mapping[str, Misconception],
) -> Optional[Misconception]:
    q = questions.get(response.question_id)
    opt = q.option(response.selected_option_id) if q else None
    if opt is None or not opt.diagnoses_misconception_id:
        return None
    m = misconceptions.get(opt.diagnoses_misconception_id)
    if m is None or m.competency_id != competency_id:
        log.debug(
            "option %s points at %s, which is not a misconception of %s",
            opt.id, opt.diagnoses_misconception_id, competency_id,
        )
        return None
    return m


def _is_dont_know(response: QuestionResponse, questions: Mapping[str, QuestionDefinition]) -> bool:
    q = questions.get(response.question_id)
    opt = q.option(response.selected_option_id) if q else None
    return bool(opt and opt.is_dont_know)


def _evidence(reason: str, score: float, responses: Sequence[QuestionResponse], **extra) -> DiagnosisEvidence:
    return DiagnosisEvidence(
        reason=reason,
        confidence_score=int(max(0, min(100, round(score)))),
        time_ms=sum(r.telemetry.time_ms or 0 for r in responses),
        hesitation_count=sum(r.telemetry.hesitation_count for r in responses),
        source_question_ids=[r.question_id for r in responses],
        **extra,
    )


def diagnose_competency(
    competency_id: str,
    responses: Sequence[QuestionResponse],
    questions: Mapping[str, QuestionDefinition],
    misconceptions: Mapping[str, Misconception],
    calibration_status: str = "CALIBRATED",
) -> CompetencyDiagnosis:
    """Reduce the responses of one competency to a single verdict.

    Precedence: MASTERED (all correct and fluent), then MISCONCEPTION (a
    considered wrong answer on a mapped trap option), then GAP (any other
    wrong answer), then NEUTRAL.  Rapid guesses never establish mastery or a
    misconception.
    """
    rs = list(responses)
    for r in rs:
        _emit_trace(
            competency_id=competency_id,
            question_id=r.question_id,
            option=r.selected_option_id,
            correct=r.is_correct,
            confidence=r.confidence,
            time_ms=r.telemetry.time_ms,
            rapid=not is_evidence_quality_sufficient(r),
        )

    if not rs:
        return CompetencyDiagnosis(
            competency_id, "NEUTRAL", _evidence("No responses recorded for this competency", 0, rs)
        )

    valid = [r for r in rs if is_evidence_quality_sufficient(r)]
    incorrect = [r for r in rs if not r.is_correct]

    if not incorrect:
        if not valid:
            return CompetencyDiagnosis(
                competency_id, "NEUTRAL",
                _evidence("Evidence discarded: every answer was a rapid guess", 0, rs),
            )
        timed = [r for r in valid if r.telemetry.time_ms is not None]
        fluent = True
        if timed:
            avg_time = _mean([float(r.telemetry.time_ms or 0) for r in timed])
            avg_expected = _mean([r.telemetry.expected_time_ms for r in timed])
            fluent = avg_time <= config.MASTERY_TIME_RATIO * avg_expected
        fragile = any(is_fragile_certainty(r.is_correct, r.telemetry.z_score) for r in valid)
        if fluent and not fragile:
            score = max(config.MASTERY_CONFIDENCE_FLOOR, _mean([certainty_of(r.confidence) for r in valid]))
            return CompetencyDiagnosis(
                competency_id, "MASTERED",
                _evidence("All answers correct within the expected time", score, rs),
            )
        return CompetencyDiagnosis(
            competency_id, "NEUTRAL",
            _evidence("Correct answers, but with excessive effort for fluency", 0, rs),
        )

    candidates = []
    for idx, r in enumerate(incorrect):
        if not is_evidence_quality_sufficient(r):
            continue
        m = _misconception_for(r, competency_id, questions, misconceptions)
        if m is not None:
            candidates.append((_CONFIDENCE_RANK.get(r.confidence, 0), -idx, r, m))

    if candidates:
        _, _, r, m = max(candidates, key=lambda c: (c[0], c[1]))
        score = config.MISCONCEPTION_CONFIDENCE.get(r.confidence, 50)
        reason = m.description
        if calibration_status == "OVERCONFIDENT":
            score += config.OVERCONFIDENCE_BONUS
            reason += " (reinforced by session-wide overconfidence)"
        return CompetencyDiagnosis(
            competency_id, "MISCONCEPTION",
            _evidence(reason, score, rs, misconception_id=m.id),
            remedial_content_ids=[m.remedial_content_id] if m.remedial_content_id else [],
        )

    if any(_is_dont_know(r, questions) for r in incorrect):
        return CompetencyDiagnosis(
            competency_id, "GAP",
            _evidence("Student explicitly answered \"I don't know\"", config.DONT_KNOW_CONFIDENCE, rs),
        )
    if all(not is_evidence_quality_sufficient(r) for r in incorrect):
        reason = "Incorrect rapid guess; too fast to confirm a misconception"
    else:
        reason = "Incorrect answer with no mapped misconception"
    score = config.GAP_CONFIDENCE_BASE + 40.0 * len(incorrect) / len(rs)
    return CompetencyDiagnosis(competency_id, "GAP", _evidence(reason, score, rs))


def diagnose_all(
    responses: Iterable[QuestionResponse],
    questions: Sequence[QuestionDefinition],
    misconceptions: Mapping[str, Misconception],
    calibration_status: str = "CALIBRATED",
) -> List[CompetencyDiagnosis]:
    """One diagnosis per competency tested by ``questions``, in first-seen order."""
    by_comp: Dict[str, List[QuestionResponse]] = {}
    for q in questions:
        by_comp.setdefault(q.competency_id, [])
    for r in responses:
        by_comp.setdefault(r.competency_id, []).append(r)

    q_index = {q.id: q for q in questions}
    out: List[CompetencyDiagnosis] = []
    for comp, rs in by_comp.items():
        try:
            out.append(diagnose_competency(comp, rs, q_index, misconceptions, calibration_status))
        except Exception as e:
            log.exception("diagnosis failed for competency %s", comp)
            out.append(
                CompetencyDiagnosis(
                    comp, "NEUTRAL",
                    DiagnosisEvidence(
                        reason="Diagnosis failed; competency left neutral",
                        confidence_score=0,
                        source_question_ids=[r.question_id for r in rs],
                        error=str(e) or type(e).__name__,
                    ),
                )
            )
    return out

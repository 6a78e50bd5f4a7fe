"""Turn the raw telemetry log of one attempt into ``QuestionResponse`` records.

Only the latest ``ANSWER_UPDATE`` of a question decides what was selected and
how long it took; hesitation and focus-loss counts accumulate over every
event of that question.  Correctness always comes from the answer key.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from . import config
from .behavior import calculate_rte
from .types import (
    CONFIDENCE_LEVELS,
    QuestionDefinition,
    QuestionResponse,
    ResponseTelemetry,
    TelemetryEvent,
)

log = logging.getLogger(__name__)

MISSING_ANSWER_KEY = "MISSING_ANSWER_KEY"
UNKNOWN_OPTION = "UNKNOWN_OPTION"
MISSING_TIMING = "MISSING_TIMING"

CohortTiming = Mapping[str, Mapping[str, float]]


def _int(val: object, default: int = 0) -> int:
    try:
        return int(val)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _opt_int(val: object) -> Optional[int]:
    if val is None or val == "":
        return None
    try:
        return max(0, int(val))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _confidence(raw: object) -> str:
    s = str(raw or "NONE").strip().upper()
    return s if s in CONFIDENCE_LEVELS else "NONE"


def _selected_option(payload: Mapping[str, object]) -> Optional[str]:
    for key in ("selectedOptionId", "optionId", "value"):
        v = payload.get(key)
        if v is not None and v != "":
            return str(v)
    return None


def _expected_ms(question: QuestionDefinition) -> int:
    secs = question.expected_time_seconds
    if secs is None or secs <= 0:
        secs = config.DEFAULT_EXPECTED_TIME_SECONDS
    return int(round(float(secs) * 1000))


def _z_score(question_id: str, time_ms: Optional[int], cohort_stats: Optional[CohortTiming]) -> Optional[float]:
    if time_ms is None or not cohort_stats or question_id not in cohort_stats:
        return None
    stats = cohort_stats[question_id]
    std = float(stats.get("std_dev", 0.0) or 0.0)
    if std <= 0:
        return None
    return round((time_ms - float(stats.get("mean", 0.0))) / std, 3)


def _group_events(
    questions: Mapping[str, QuestionDefinition], events: Iterable[TelemetryEvent]
) -> Dict[str, List[Tuple[int, TelemetryEvent]]]:
    by_q: Dict[str, List[Tuple[int, TelemetryEvent]]] = {}
    for seq, evt in enumerate(events):
        qid = evt.question_id
        if qid is None or qid not in questions:
            log.debug("ignoring %s event for unknown question %r", evt.event_type, qid)
            continue
        by_q.setdefault(qid, []).append((seq, evt))
    return by_q


def normalize_question(
    question: QuestionDefinition,
    events: List[Tuple[int, TelemetryEvent]],
    cohort_stats: Optional[CohortTiming] = None,
) -> Optional[QuestionResponse]:
    answers = [(evt.timestamp, seq, evt) for seq, evt in events if evt.event_type == "ANSWER_UPDATE"]
    if not answers:
        return None
    _, _, latest = max(answers, key=lambda row: (row[0], row[1]))
    tel = latest.payload.get("telemetry") or {}

    hesitation = 0
    focus_lost = 0
    for _, evt in events:
        if evt.event_type == "HESITATION":
            hesitation += _int(evt.payload.get("count"), 1)
        elif evt.event_type == "FOCUS_LOST":
            focus_lost += _int(evt.payload.get("count"), 1)
        else:
            t = evt.payload.get("telemetry") or {}
            hesitation += _int(t.get("hesitationCount"))
            focus_lost += _int(t.get("focusLostCount"))

    option_id = _selected_option(latest.payload)
    flags: List[str] = []
    if not question.has_answer_key:
        flags.append(MISSING_ANSWER_KEY)
        log.warning("question %s has no answer key; response marked incorrect", question.id)
    option = question.option(option_id)
    if option is None:
        flags.append(UNKNOWN_OPTION)
        log.warning("question %s: selected option %r is not defined", question.id, option_id)

    time_ms = _opt_int(tel.get("timeMs"))
    if time_ms is None:
        flags.append(MISSING_TIMING)
        log.warning("question %s: answer has no usable timeMs; excluded from rapid-guess checks", question.id)
    expected_ms = _expected_ms(question)
    return QuestionResponse(
        question_id=question.id,
        competency_id=question.competency_id,
        selected_option_id=option_id,
        is_correct=bool(option is not None and option.is_correct and question.has_answer_key),
        confidence=_confidence(tel.get("confidence")),  # type: ignore[arg-type]
        telemetry=ResponseTelemetry(
            time_ms=time_ms,
            expected_time_ms=expected_ms,
            hesitation_count=hesitation,
            focus_lost_count=focus_lost,
            revisit_count=max(0, _int(tel.get("revisitCount"))),
            rte=calculate_rte(time_ms, expected_ms),
            z_score=_z_score(question.id, time_ms, cohort_stats),
        ),
        audit_flags=tuple(flags),
    )


def normalize_responses(
    questions: Iterable[QuestionDefinition],
    events: Iterable[TelemetryEvent],
    cohort_stats: Optional[CohortTiming] = None,
) -> List[QuestionResponse]:
    """Return one response per answered question, in question order."""
    ordered = list(questions)
    by_id = {q.id: q for q in ordered}
    grouped = _group_events(by_id, events)
    out: List[QuestionResponse] = []
    for q in ordered:
        resp = normalize_question(q, grouped.get(q.id, []), cohort_stats)
        if resp is not None:
            out.append(resp)
    return out


def audit_flags_of(responses: Iterable[QuestionResponse]) -> List[Dict[str, str]]:
    return [
        {"questionId": r.question_id, "flag": flag}
        for r in responses
        for flag in r.audit_flags
    ]

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping
from .types import (
    CompetencyNode, ItemOutcome, Misconception, OptionDefinition,
    QuestionDefinition, QuestionResponse, TelemetryEvent,
)


@dataclass
class ExamDefinition:
    exam_id: str
    questions: List[QuestionDefinition] = field(default_factory=list)
    misconceptions: Dict[str, Misconception] = field(default_factory=dict)
    graph: List[CompetencyNode] = field(default_factory=list)


def parse_question(raw: Mapping[str, Any]) -> QuestionDefinition:
    opts = [
        OptionDefinition(
            id=str(o["id"]),
            is_correct=bool(o.get("isCorrect", False)),
            diagnoses_misconception_id=o.get("diagnosesMisconceptionId"),
            is_dont_know=bool(o.get("isDontKnow", o.get("isGap", False))),
        )
        for o in raw.get("options", [])
    ]
    expected = raw.get("expectedTimeSeconds")
    return QuestionDefinition(
        id=str(raw["id"]),
        competency_id=str(raw.get("competencyId") or "generic"),
        options=opts,
        expected_time_seconds=float(expected) if expected is not None else None,
    )


def parse_exam(exam_id: str, raw: Mapping[str, Any]) -> ExamDefinition:
    mis = [
        Misconception(
            id=str(m["id"]),
            competency_id=str(m["competencyId"]),
            description=str(m.get("description", "")),
            remedial_content_id=m.get("remedialContentId"),
        )
        for m in raw.get("misconceptions", [])
    ]
    graph = [
        CompetencyNode(id=str(n["id"]), prerequisites=[str(p) for p in n.get("prerequisites", [])], title=n.get("title"))
        for n in raw.get("competencies", [])
    ]
    return ExamDefinition(
        exam_id=exam_id,
        questions=[parse_question(q) for q in raw.get("questions", [])],
        misconceptions={m.id: m for m in mis},
        graph=graph,
    )


def parse_event(raw: Mapping[str, Any]) -> TelemetryEvent:
    return TelemetryEvent(
        event_type=str(raw["event_type"]).upper(),  # type: ignore[arg-type]
        payload=dict(raw.get("payload") or {}),
        timestamp=float(raw.get("timestamp", 0.0)),
    )


def parse_outcomes(raw: Mapping[str, Any]) -> Dict[str, ItemOutcome]:
    return {
        str(qid): ItemOutcome(
            is_correct=bool(o.get("isCorrect", False)),
            selected_option_id=o.get("selectedOptionId"),
            time_ms=int(o["timeMs"]) if o.get("timeMs") is not None else None,
        )
        for qid, o in raw.items()
    }


def outcomes_payload(responses: Iterable[QuestionResponse]) -> Dict[str, Dict[str, Any]]:
    return {
        r.question_id: {
            "isCorrect": r.is_correct,
            "selectedOptionId": r.selected_option_id,
            "timeMs": r.telemetry.time_ms,
        }
        for r in responses
    }

from __future__ import annotations

import pytest

from diagnosis_core.results_cache import to_cache
from diagnosis_core.types import (
    AttemptRecord,
    BehaviorProfile,
    CalibrationMetrics,
    CompetencyDiagnosis,
    CompetencyNode,
    DiagnosisEvidence,
    DiagnosticResult,
    ItemOutcome,
    Misconception,
    OptionDefinition,
    QuestionDefinition,
    QuestionResponse,
    ResponseTelemetry,
    TelemetryEvent,
)


def make_question(
    qid: str,
    competency: str,
    *,
    traps: dict[str, str] | None = None,
    dont_know: bool = False,
    keyed: bool = True,
    expected_seconds: float | None = 30.0,
) -> QuestionDefinition:
    """Question with a correct option ``<qid>-ok``, a plain distractor ``<qid>-x``
    and one option per trap (``option id -> misconception id``)."""

    options = [
        OptionDefinition(id=f"{qid}-ok", is_correct=keyed),
        OptionDefinition(id=f"{qid}-x"),
    ]
    for opt_id, mid in (traps or {}).items():
        options.append(OptionDefinition(id=opt_id, diagnoses_misconception_id=mid))
    if dont_know:
        options.append(OptionDefinition(id=f"{qid}-idk", is_dont_know=True))
    return QuestionDefinition(id=qid, competency_id=competency, options=options, expected_time_seconds=expected_seconds)


def answer(qid: str, option: str, ts: float, *, time_ms: int = 5000, confidence: str = "HIGH", **telemetry) -> TelemetryEvent:
    tel = {"timeMs": time_ms, "confidence": confidence}
    tel.update(telemetry)
    return TelemetryEvent("ANSWER_UPDATE", {"questionId": qid, "selectedOptionId": option, "telemetry": tel}, ts)


def response(
    qid: str,
    competency: str,
    option: str,
    correct: bool,
    *,
    confidence: str = "HIGH",
    time_ms: int | None = 5000,
    expected_ms: int = 30000,
    hesitation: int = 0,
    focus_lost: int = 0,
    revisit: int = 0,
    z_score: float | None = None,
) -> QuestionResponse:
    return QuestionResponse(
        question_id=qid,
        competency_id=competency,
        selected_option_id=option,
        is_correct=correct,
        confidence=confidence,  # type: ignore[arg-type]
        telemetry=ResponseTelemetry(
            time_ms=time_ms,
            expected_time_ms=expected_ms,
            hesitation_count=hesitation,
            focus_lost_count=focus_lost,
            revisit_count=revisit,
            z_score=z_score,
        ),
    )


def diagnosis(competency: str, state: str, *, reason: str = "r", score: int = 90, hesitation: int = 0) -> CompetencyDiagnosis:
    return CompetencyDiagnosis(
        competency, state,  # type: ignore[arg-type]
        DiagnosisEvidence(reason=reason, confidence_score=score, hesitation_count=hesitation),
    )


def build_fraction_exam() -> tuple[list[QuestionDefinition], dict[str, Misconception], list[CompetencyNode]]:
    questions = [
        make_question("q1", "comp-add"),
        make_question("q2", "comp-sub"),
        make_question("q3", "comp-frac", traps={"q3-lin": "mis-linear-add"}, dont_know=True),
    ]
    misconceptions = {
        "mis-linear-add": Misconception(
            "mis-linear-add", "comp-frac", "Adds numerators and denominators separately",
            remedial_content_id="lesson-common-denominator",
        ),
    }
    graph = [
        CompetencyNode("comp-add"),
        CompetencyNode("comp-sub", ["comp-add"]),
        CompetencyNode("comp-frac", ["comp-add"]),
        CompetencyNode("comp-ratio", ["comp-frac"]),
        CompetencyNode("comp-prop", ["comp-ratio"]),
    ]
    return questions, misconceptions, graph


def build_attempt(
    aid: str,
    score: float,
    *,
    outcomes: dict[str, ItemOutcome] | None = None,
    groups: dict[str, str] | None = None,
    intervention: bool | None = None,
    diagnoses: list[CompetencyDiagnosis] | None = None,
) -> AttemptRecord:
    return AttemptRecord(
        attempt_id=aid,
        learner_id=f"learner-{aid}",
        overall_score=score,
        outcomes=outcomes or {},
        diagnoses=diagnoses or [],
        groups=groups or {},
        intervention=intervention,
    )


def build_group(prefix: str, dimension: str, label: str, n: int, interventions: int) -> list[AttemptRecord]:
    return [
        build_attempt(f"{prefix}-{i:02d}", 50.0, groups={dimension: label}, intervention=i < interventions)
        for i in range(n)
    ]


@pytest.fixture
def fraction_exam():
    return build_fraction_exam()


def cache_blob(aid: str, score: int, diagnoses: list[CompetencyDiagnosis] | None = None, *, status: str = "CALIBRATED") -> dict:
    result = DiagnosticResult(
        attempt_id=aid,
        student_id=f"learner-{aid}",
        overall_score=score,
        competency_diagnoses=diagnoses or [],
        calibration=CalibrationMetrics(calibration_status=status),  # type: ignore[arg-type]
        behavior_profile=BehaviorProfile(),
        evaluated_at="2026-01-01T00:00:00+00:00",
    )
    return to_cache(result)

from __future__ import annotations

import pytest

from diagnosis_core.evaluator import evaluate_session, overall_score
from diagnosis_core.normalizer import MISSING_TIMING, UNKNOWN_OPTION
from diagnosis_core.types import TelemetryEvent
from diagnosis_core.results_cache import ResultsCacheError, from_cache, to_cache
from tests.conftest import answer, response

EVALUATED_AT = "2026-01-01T00:00:00+00:00"


def _fraction_session():
    return [
        answer("q1", "q1-ok", 1.0, time_ms=5000, confidence="MEDIUM"),
        answer("q2", "q2-x", 2.0, time_ms=7000, confidence="HIGH"),
        answer("q3", "q3-lin", 3.0, time_ms=8000, confidence="HIGH"),
    ]


def test_three_question_session(fraction_exam):
    questions, misconceptions, _ = fraction_exam

    result = evaluate_session(
        "att-1", "stu-1", questions, _fraction_session(), misconceptions, evaluated_at=EVALUATED_AT
    )

    assert result.overall_score == 33
    assert result.calibration.calibration_status == "OVERCONFIDENT"
    assert result.diagnosis_for("comp-add").state == "MASTERED"
    assert result.diagnosis_for("comp-sub").state == "GAP"
    frac = result.diagnosis_for("comp-frac")
    assert frac.state == "MISCONCEPTION"
    assert frac.evidence.misconception_id == "mis-linear-add"
    assert frac.evidence.confidence_score == 100
    assert result.schema_version == 1
    assert result.evaluated_at == EVALUATED_AT


def test_misconceptions_may_be_passed_as_a_list(fraction_exam):
    questions, misconceptions, _ = fraction_exam

    result = evaluate_session("att-1", "stu-1", questions, _fraction_session(), list(misconceptions.values()))

    assert result.diagnosis_for("comp-frac").state == "MISCONCEPTION"


def test_rapid_trap_answer_does_not_become_misconception(fraction_exam):
    questions, misconceptions, _ = fraction_exam
    events = [answer("q3", "q3-lin", 1.0, time_ms=150, confidence="HIGH")]

    result = evaluate_session("att-2", "stu-2", questions, events, misconceptions)

    assert result.diagnosis_for("comp-frac").state == "GAP"
    assert result.overall_score == 0


def test_trap_answer_without_timing_still_counts_as_misconception(fraction_exam):
    questions, misconceptions, _ = fraction_exam
    events = [
        TelemetryEvent(
            "ANSWER_UPDATE",
            {"questionId": "q3", "selectedOptionId": "q3-lin", "telemetry": {"confidence": "HIGH"}},
            1.0,
        )
    ]

    result = evaluate_session("att-4", "stu-4", questions, events, misconceptions)

    assert result.diagnosis_for("comp-frac").state == "MISCONCEPTION"
    assert result.behavior_profile.is_impulsive is False
    assert to_cache(result)["auditFlags"] == [{"questionId": "q3", "flag": MISSING_TIMING}]


@pytest.mark.parametrize(
    "flags,expected",
    [
        ([True, True, False], 67),
        ([True] + [False] * 7, 13),
        ([], 0),
    ],
)
def test_overall_score_rounds_half_up(flags, expected):
    rs = [response(f"q{i}", "c", "x", ok) for i, ok in enumerate(flags)]
    assert overall_score(rs) == expected


def test_overall_score_skips_rapid_answers():
    rs = [
        response("q1", "c", "q1-ok", True),
        response("q2", "c", "q2-x", False),
        response("q3", "c", "q3-ok", True, time_ms=100),
    ]
    assert overall_score(rs) == 50


def test_results_cache_keeps_audit_flags_and_reads_back(fraction_exam):
    questions, misconceptions, _ = fraction_exam
    events = _fraction_session() + [answer("q2", "bogus", 9.0)]

    result = evaluate_session("att-3", "stu-3", questions, events, misconceptions, evaluated_at=EVALUATED_AT)
    blob = to_cache(result)

    assert blob["schemaVersion"] == 1
    assert blob["auditFlags"] == [{"questionId": "q2", "flag": UNKNOWN_OPTION}]
    assert blob["competencyDiagnoses"][2]["evidence"]["misconceptionId"] == "mis-linear-add"
    assert from_cache(blob) == result


def test_results_cache_rejects_unknown_versions_and_garbage():
    with pytest.raises(ResultsCacheError, match="schemaVersion"):
        from_cache({"schemaVersion": 99})
    with pytest.raises(ResultsCacheError, match="malformed"):
        from_cache({"schemaVersion": 1, "attemptId": "a"})
    with pytest.raises(ResultsCacheError):
        from_cache(["not", "a", "dict"])  # type: ignore[arg-type]

from __future__ import annotations

from diagnosis_core.remediation import dependents_of, downstream, mutations_to_dicts, plan_mutations
from diagnosis_core.types import (
    BehaviorProfile,
    CalibrationMetrics,
    CompetencyDiagnosis,
    CompetencyNode,
    DiagnosisEvidence,
    DiagnosticResult,
)


def _result(*diagnoses):
    return DiagnosticResult(
        attempt_id="att-1",
        student_id="stu-1",
        overall_score=50,
        competency_diagnoses=list(diagnoses),
        calibration=CalibrationMetrics(),
        behavior_profile=BehaviorProfile(),
        evaluated_at="2026-01-01T00:00:00+00:00",
    )


def test_mutations_per_verdict(fraction_exam):
    _, misconceptions, graph = fraction_exam
    result = _result(
        CompetencyDiagnosis(
            "comp-frac", "MISCONCEPTION",
            DiagnosisEvidence("Adds numerators and denominators separately", 95, misconception_id="mis-linear-add"),
        ),
        CompetencyDiagnosis("comp-add", "GAP", DiagnosisEvidence("Incorrect answer with no mapped misconception", 100)),
        CompetencyDiagnosis("comp-sub", "MASTERED", DiagnosisEvidence("All answers correct", 66)),
        CompetencyDiagnosis("comp-ratio", "NEUTRAL", DiagnosisEvidence("No responses", 0)),
    )

    muts = plan_mutations(result, graph, misconceptions)

    assert [(m.action, m.target_node_id) for m in muts] == [
        ("INSERT_NODE", "comp-frac"),
        ("INSERT_NODE", "comp-add"),
        ("LOCK_DOWNSTREAM", "comp-frac"),
        ("LOCK_DOWNSTREAM", "comp-prop"),
        ("LOCK_DOWNSTREAM", "comp-ratio"),
        ("LOCK_DOWNSTREAM", "comp-sub"),
        ("UNLOCK_NEXT", "comp-sub"),
    ]
    assert muts[0].metadata == {"position": "BEFORE", "newStatus": "infected", "contentId": "lesson-common-denominator"}
    assert muts[1].metadata["title"] == "Scaffolding: comp-add"
    assert muts[1].metadata["newStatus"] == "locked"


def test_misconception_without_lookup_points_at_its_id():
    result = _result(
        CompetencyDiagnosis("c", "MISCONCEPTION", DiagnosisEvidence("belief", 80, misconception_id="m-9")),
    )

    [m] = plan_mutations(result)

    assert m.metadata["contentId"] == "m-9"


def test_downstream_survives_cycles():
    graph = [CompetencyNode("a", ["b"]), CompetencyNode("b", ["a"]), CompetencyNode("c", ["b"])]
    deps = dependents_of(graph)

    assert downstream("a", deps) == ["b", "c"]


def test_mutation_dicts_are_camel_case():
    result = _result(CompetencyDiagnosis("c", "MASTERED", DiagnosisEvidence("ok", 90)))

    [row] = mutations_to_dicts(plan_mutations(result))

    assert row == {
        "action": "UNLOCK_NEXT",
        "targetNodeId": "c",
        "reason": "Competency mastery confirmed.",
        "metadata": {"newStatus": "mastered"},
    }

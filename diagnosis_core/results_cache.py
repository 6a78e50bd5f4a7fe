"""Versioned JSON form of ``DiagnosticResult`` (the ``results_cache`` blob).

Blobs are written once at finalization and only read afterwards, so the
reader must keep accepting every schema version it has ever written.
"""
from __future__ import annotations

from typing import Any, Dict

from .types import (
    BehaviorProfile,
    CalibrationMetrics,
    CompetencyDiagnosis,
    DiagnosisEvidence,
    DiagnosticResult,
)

SUPPORTED_VERSIONS: tuple[int, ...] = (1,)


class ResultsCacheError(ValueError):
    pass


def _evidence_to_dict(ev: DiagnosisEvidence) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "reason": ev.reason,
        "confidenceScore": ev.confidence_score,
        "timeMs": ev.time_ms,
        "hesitationCount": ev.hesitation_count,
        "sourceQuestionIds": list(ev.source_question_ids),
    }
    if ev.misconception_id is not None:
        out["misconceptionId"] = ev.misconception_id
    if ev.error is not None:
        out["error"] = ev.error
    return out


def diagnosis_to_dict(d: CompetencyDiagnosis) -> Dict[str, Any]:
    return {
        "competencyId": d.competency_id,
        "state": d.state,
        "evidence": _evidence_to_dict(d.evidence),
        "remedialContentIds": list(d.remedial_content_ids),
    }


def diagnosis_from_dict(raw: Dict[str, Any]) -> CompetencyDiagnosis:
    ev = raw.get("evidence") or {}
    return CompetencyDiagnosis(
        competency_id=str(raw["competencyId"]),
        state=raw["state"],
        evidence=DiagnosisEvidence(
            reason=str(ev.get("reason", "")),
            confidence_score=int(ev.get("confidenceScore", 0)),
            time_ms=int(ev.get("timeMs", 0)),
            hesitation_count=int(ev.get("hesitationCount", 0)),
            source_question_ids=[str(q) for q in ev.get("sourceQuestionIds", [])],
            misconception_id=ev.get("misconceptionId"),
            error=ev.get("error"),
        ),
        remedial_content_ids=[str(c) for c in raw.get("remedialContentIds", [])],
    )


def to_cache(result: DiagnosticResult) -> Dict[str, Any]:
    cal = result.calibration
    beh = result.behavior_profile
    return {
        "schemaVersion": result.schema_version,
        "attemptId": result.attempt_id,
        "studentId": result.student_id,
        "overallScore": result.overall_score,
        "competencyDiagnoses": [diagnosis_to_dict(d) for d in result.competency_diagnoses],
        "calibration": {
            "certaintyAverage": cal.certainty_average,
            "accuracyAverage": cal.accuracy_average,
            "blindSpots": cal.blind_spots,
            "fragileKnowledge": cal.fragile_knowledge,
            "eceScore": cal.ece_score,
            "calibrationStatus": cal.calibration_status,
        },
        "behaviorProfile": {
            "isImpulsive": beh.is_impulsive,
            "isAnxious": beh.is_anxious,
            "isConsistent": beh.is_consistent,
            "isIndecisive": beh.is_indecisive,
        },
        "auditFlags": [dict(f) for f in result.audit_flags],
        "evaluatedAt": result.evaluated_at,
    }


def from_cache(blob: Dict[str, Any]) -> DiagnosticResult:
    if not isinstance(blob, dict):
        raise ResultsCacheError("results_cache must be a JSON object")
    version = blob.get("schemaVersion")
    if version not in SUPPORTED_VERSIONS:
        raise ResultsCacheError(f"unsupported results_cache schemaVersion: {version!r}")
    try:
        cal = blob.get("calibration") or {}
        beh = blob.get("behaviorProfile") or {}
        return DiagnosticResult(
            attempt_id=str(blob["attemptId"]),
            student_id=str(blob["studentId"]),
            overall_score=int(blob["overallScore"]),
            competency_diagnoses=[diagnosis_from_dict(d) for d in blob.get("competencyDiagnoses", [])],
            calibration=CalibrationMetrics(
                certainty_average=float(cal.get("certaintyAverage", 0.0)),
                accuracy_average=float(cal.get("accuracyAverage", 0.0)),
                blind_spots=int(cal.get("blindSpots", 0)),
                fragile_knowledge=int(cal.get("fragileKnowledge", 0)),
                ece_score=float(cal.get("eceScore", 0.0)),
                calibration_status=cal.get("calibrationStatus", "CALIBRATED"),
            ),
            behavior_profile=BehaviorProfile(
                is_impulsive=bool(beh.get("isImpulsive", False)),
                is_anxious=bool(beh.get("isAnxious", False)),
                is_consistent=bool(beh.get("isConsistent", True)),
                is_indecisive=bool(beh.get("isIndecisive", False)),
            ),
            evaluated_at=str(blob.get("evaluatedAt", "")),
            schema_version=int(version),
            audit_flags=[dict(f) for f in blob.get("auditFlags", [])],
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ResultsCacheError(f"malformed results_cache: {e}") from e

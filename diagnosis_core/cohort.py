# diagnosis_core/cohort.py
from __future__ import annotations

import json
import logging
import math
from collections import Counter
from dataclasses import asdict
from statistics import mean, median, pstdev
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import config
from . import irt
from .fairness import detect_dif, dimensions_of, fairness_audit, label_bias_audit
from .results_cache import from_cache
from .types import AttemptRecord, ItemHealthStat, ItemOutcome, Pathology

log = logging.getLogger(__name__)


def attempt_from_cache(
    attempt_id: str,
    learner_id: str,
    results_cache: Dict[str, Any],
    outcomes: Mapping[str, ItemOutcome] | None = None,
    groups: Mapping[str, str] | None = None,
    intervention: Optional[bool] = None,
) -> AttemptRecord:
    res = from_cache(results_cache)
    return AttemptRecord(
        attempt_id=attempt_id,
        learner_id=learner_id,
        overall_score=float(res.overall_score),
        outcomes=dict(outcomes or {}),
        diagnoses=list(res.competency_diagnoses),
        groups={str(k): str(v) for k, v in (groups or {}).items()},
        intervention=intervention,
        ece_score=res.calibration.ece_score,
        calibration_status=res.calibration.calibration_status,
        is_impulsive=res.behavior_profile.is_impulsive,
        is_anxious=res.behavior_profile.is_anxious,
    )


def split_cohort(attempts: Sequence[AttemptRecord]) -> Tuple[set[str], set[str]]:
    """Masters are the top ``MASTER_FRACTION`` by score, novices the bottom ``NOVICE_FRACTION``."""
    ranked = sorted(attempts, key=lambda a: (-a.overall_score, a.attempt_id))
    n = len(ranked)
    if n < 2:
        return set(), set()
    k_top = max(1, int(math.floor(n * config.MASTER_FRACTION)))
    k_low = max(1, int(math.floor(n * config.NOVICE_FRACTION)))
    masters = {a.attempt_id for a in ranked[:k_top]}
    novices = {a.attempt_id for a in ranked[max(k_top, n - k_low):]}
    return masters, novices


def _is_valid(outcome: ItemOutcome) -> bool:
    return outcome.time_ms is None or outcome.time_ms >= config.RTE_TIME_FLOOR_MS


def item_status(slip: float, guess: float, discrimination: float) -> str:
    if slip > config.SLIP_BROKEN:
        return "BROKEN"
    if guess > config.GUESS_TRIVIAL and discrimination < config.DISCRIMINATION_TRIVIAL:
        return "TRIVIAL"
    return "HEALTHY"


def useless_distractors(question_id: str, attempts: Sequence[AttemptRecord]) -> List[str]:
    counts: Counter[str] = Counter()
    total = 0
    for a in attempts:
        o = a.outcomes.get(question_id)
        if o is None or o.selected_option_id is None:
            continue
        counts[o.selected_option_id] += 1
        total += 1
    if not total:
        return []
    return sorted(opt for opt, c in counts.items() if c / total < config.USELESS_DISTRACTOR_LIMIT)


def item_health(attempts: Sequence[AttemptRecord]) -> List[ItemHealthStat]:
    masters, novices = split_cohort(attempts)
    question_ids = sorted({qid for a in attempts for qid in a.outcomes})
    out: List[ItemHealthStat] = []
    for qid in question_ids:
        valid = [
            (a.attempt_id, a.outcomes[qid]) for a in attempts
            if qid in a.outcomes and _is_valid(a.outcomes[qid])
        ]
        if not valid:
            continue
        total_correct = sum(1 for _, o in valid if o.is_correct)
        m_valid = [o for aid, o in valid if aid in masters]
        n_valid = [o for aid, o in valid if aid in novices]
        m_correct = sum(1 for o in m_valid if o.is_correct)
        n_correct = sum(1 for o in n_valid if o.is_correct)

        s = irt.slip(m_correct, len(m_valid))
        g = irt.guess(n_correct, len(n_valid))
        d = irt.discrimination(irt.pass_rate(m_correct, len(m_valid)), irt.pass_rate(n_correct, len(n_valid)))
        times = [o.time_ms for _, o in valid if o.time_ms is not None]
        stat = ItemHealthStat(
            question_id=qid,
            total_responses=len(valid),
            difficulty=round(irt.pass_rate(total_correct, len(valid)), 3),
            slip=round(s, 3),
            guess=round(g, 3),
            discrimination=round(d, 3),
            median_time_ms=float(median(times)) if times else 0.0,
            status=item_status(s, g, d),  # type: ignore[arg-type]
            useless_distractors=useless_distractors(qid, attempts),
        )
        if stat.status == "BROKEN":
            log.warning(
                "item %s looks ambiguous or mis-keyed: %d%% of masters failed it",
                qid, int(round(s * 100)),
            )
        out.append(stat)
    return out


def timing_stats(attempts: Iterable[AttemptRecord], min_samples: Optional[int] = None) -> Dict[str, Dict[str, float]]:
    """Per-question mean and population std-dev of non-rapid response times.

    Questions with fewer than ``TIMING_MIN_SAMPLE`` timed answers get no entry.
    """
    floor = config.TIMING_MIN_SAMPLE if min_samples is None else min_samples
    times: Dict[str, List[float]] = {}
    for a in attempts:
        for qid, o in a.outcomes.items():
            if o.time_ms is None or o.time_ms < config.RTE_TIME_FLOOR_MS:
                continue
            times.setdefault(qid, []).append(float(o.time_ms))
    return {
        qid: {"mean": round(mean(ts), 3), "std_dev": round(pstdev(ts), 3)}
        for qid, ts in sorted(times.items())
        if len(ts) >= max(2, floor)
    }


def pathology_ranking(attempts: Iterable[AttemptRecord]) -> List[Pathology]:
    """Competencies ordered by how many attempts were diagnosed with a misconception."""
    rows: Dict[str, List] = {}
    for a in attempts:
        for d in a.diagnoses:
            if d.state != "MISCONCEPTION":
                continue
            rows.setdefault(d.competency_id, []).append(d)
    out: List[Pathology] = []
    for comp, ds in rows.items():
        reasons = Counter(d.evidence.reason for d in ds)
        top_reason = sorted(reasons.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]
        out.append(
            Pathology(
                competency_id=comp,
                total_occurrences=len(ds),
                avg_confidence_score=round(sum(d.evidence.confidence_score for d in ds) / len(ds), 2),
                avg_hesitation=round(sum(d.evidence.hesitation_count for d in ds) / len(ds), 2),
                reason=top_reason,
            )
        )
    out.sort(key=lambda p: (-p.total_occurrences, p.competency_id))
    return out


def top_shadow_nodes(ranking: Sequence[Pathology], n: Optional[int] = None) -> List[Pathology]:
    return list(ranking[: (config.PATHOLOGY_TOP_N if n is None else n)])


def remediation_recommendation(p: Pathology) -> str:
    return (
        f"{p.competency_id}: {p.total_occurrences} student(s) hold the belief \"{p.reason}\". "
        "Schedule a refutation activity before unlocking dependent competencies."
    )


def archetype(a: AttemptRecord) -> str:
    if a.overall_score >= config.ARCHETYPE_MASTER_SCORE and a.calibration_status == "CALIBRATED":
        return "MASTER"
    if a.calibration_status == "OVERCONFIDENT":
        return "OVERCONFIDENT"
    if a.calibration_status == "UNDERCONFIDENT":
        return "UNDERCONFIDENT"
    if a.overall_score < config.ARCHETYPE_AT_RISK_SCORE:
        return "AT_RISK"
    return "DEVELOPING"


def cohort_radar(attempts: Iterable[AttemptRecord]) -> List[Dict[str, Any]]:
    rows = [
        {
            "attempt_id": a.attempt_id,
            "learner_id": a.learner_id,
            "overall_score": a.overall_score,
            "ece_score": a.ece_score,
            "archetype": archetype(a),
            "is_impulsive": a.is_impulsive,
            "is_anxious": a.is_anxious,
        }
        for a in attempts
    ]
    rows.sort(key=lambda r: (r["learner_id"], r["attempt_id"]))
    return rows


def _high_ability(attempts: Sequence[AttemptRecord]) -> List[AttemptRecord]:
    ranked = sorted(attempts, key=lambda a: (-a.overall_score, a.attempt_id))
    return ranked[: int(math.ceil(len(ranked) / 2))]


def empty_report(exam_id: str = "") -> Dict[str, Any]:
    return {
        "exam_id": exam_id,
        "total_attempts": 0,
        "items": [],
        "pathology_ranking": [],
        "top_shadow_nodes": [],
        "recommendations": [],
        "fairness": [],
        "label_bias": [],
        "dif_alerts": [],
        "cohort_radar": [],
    }


def build_cohort_report(
    attempts: Sequence[AttemptRecord],
    exam_id: str = "",
    dimensions: Sequence[str] | None = None,
) -> Dict[str, Any]:
    """Read-only batch report over completed attempts; deterministic for identical input."""
    attempts = sorted(attempts, key=lambda a: a.attempt_id)
    dims = list(dimensions) if dimensions is not None else dimensions_of(attempts)
    ranking = pathology_ranking(attempts)
    top = top_shadow_nodes(ranking)
    report = empty_report(exam_id)
    report.update(
        {
            "total_attempts": len(attempts),
            "items": [asdict(s) for s in item_health(attempts)],
            "pathology_ranking": [asdict(p) for p in ranking],
            "top_shadow_nodes": [p.competency_id for p in top],
            "recommendations": [remediation_recommendation(p) for p in top],
            "fairness": [asdict(f) for f in fairness_audit(attempts, dims)],
            "label_bias": [asdict(m) for m in label_bias_audit(attempts, dims)],
            "dif_alerts": [asdict(a) for a in detect_dif(attempts, _high_ability(attempts), dims)],
            "cohort_radar": cohort_radar(attempts),
        }
    )
    return report


def safe_cohort_report(
    attempts: Sequence[AttemptRecord],
    exam_id: str = "",
    dimensions: Sequence[str] | None = None,
) -> Dict[str, Any]:
    try:
        return build_cohort_report(attempts, exam_id, dimensions)
    except Exception:
        log.exception("cohort report failed for exam %s; returning empty report", exam_id)
        return empty_report(exam_id)


def report_to_json(report: Dict[str, Any]) -> str:
    return json.dumps(report, indent=2, sort_keys=True)

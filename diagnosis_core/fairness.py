from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Sequence

from . import config
from .irt import impact_ratio, pass_rate
from .types import AttemptRecord, DifAlert, FairnessMetric, GroupLabelRate, GroupRate, LabelBiasMetric

log = logging.getLogger(__name__)

INSUFFICIENT_DATA = "INSUFFICIENT_DATA"

# behaviour labels audited for disparate labelling
BEHAVIOR_LABELS: Dict[str, str] = {"impulsive": "is_impulsive", "anxious": "is_anxious"}


def equity_status(ratio: float | None) -> str:
    if ratio is None:
        return INSUFFICIENT_DATA
    if ratio < config.IMPACT_CRITICAL:
        return "CRITICAL"
    if ratio < config.IMPACT_WARNING:
        return "WARNING"
    return "OPTIMAL"


def dimensions_of(attempts: Iterable[AttemptRecord]) -> List[str]:
    return sorted({dim for a in attempts for dim in a.groups})


def _group_rates(dimension: str, attempts: Sequence[AttemptRecord]) -> List[GroupRate]:
    buckets: Dict[str, List[AttemptRecord]] = {}
    for a in attempts:
        label = a.groups.get(dimension)
        if label is None:
            continue
        buckets.setdefault(str(label), []).append(a)
    rates = []
    for label in sorted(buckets):
        rows = buckets[label]
        interventions = sum(1 for a in rows if a.received_intervention)
        rates.append(
            GroupRate(
                group=label,
                total_attempts=len(rows),
                interventions=interventions,
                intervention_rate=round(pass_rate(interventions, len(rows)), 4),
                avg_score=round(sum(a.overall_score for a in rows) / len(rows), 2),
            )
        )
    return rates


def disparate_impact(dimension: str, attempts: Sequence[AttemptRecord]) -> FairnessMetric:
    """Four-fifths rule for one protected dimension.

    Groups below ``FAIRNESS_MIN_SAMPLE`` attempts are listed as insufficient
    and left out of the ratio; with fewer than two eligible groups no ratio
    is reported at all.
    """
    groups = _group_rates(dimension, attempts)
    eligible = [g for g in groups if g.total_attempts >= config.FAIRNESS_MIN_SAMPLE]
    short = [g.group for g in groups if g.total_attempts < config.FAIRNESS_MIN_SAMPLE]
    if short:
        log.info("fairness %s: insufficient data for groups %s", dimension, ", ".join(short))

    ratio = None
    if len(eligible) >= 2:
        rates = [g.intervention_rate for g in eligible]
        ratio = impact_ratio(min(rates), max(rates))
        if ratio is not None:
            ratio = round(ratio, 4)
    return FairnessMetric(
        dimension=dimension,
        groups=eligible,
        insufficient_groups=short,
        impact_ratio=ratio,
        status=equity_status(ratio),  # type: ignore[arg-type]
    )


def fairness_audit(attempts: Sequence[AttemptRecord], dimensions: Sequence[str] | None = None) -> List[FairnessMetric]:
    dims = list(dimensions) if dimensions is not None else dimensions_of(attempts)
    return [disparate_impact(dim, attempts) for dim in dims]


def label_bias(dimension: str, attempts: Sequence[AttemptRecord], label: str = "impulsive") -> LabelBiasMetric:
    """Spread between the most and least often labelled groups of one dimension.

    Uses the same sample floor as ``disparate_impact``; the group with the
    highest rate is reported as impacted.
    """
    attr = BEHAVIOR_LABELS[label]
    buckets: Dict[str, List[AttemptRecord]] = {}
    for a in attempts:
        group = a.groups.get(dimension)
        if group is not None:
            buckets.setdefault(str(group), []).append(a)

    rates: List[GroupLabelRate] = []
    short: List[str] = []
    for group in sorted(buckets):
        rows = buckets[group]
        if len(rows) < config.FAIRNESS_MIN_SAMPLE:
            short.append(group)
            continue
        flagged = sum(1 for a in rows if getattr(a, attr))
        rates.append(GroupLabelRate(group, len(rows), flagged, round(pass_rate(flagged, len(rows)), 4)))

    gap = None
    impacted = None
    status = INSUFFICIENT_DATA
    if len(rates) >= 2:
        top = max(rates, key=lambda g: g.rate)
        gap = round(top.rate - min(g.rate for g in rates), 4)
        if gap > config.LABEL_BIAS_CRITICAL_GAP:
            status = "CRITICAL"
        elif gap > config.LABEL_BIAS_GAP:
            status = "WARNING"
        else:
            status = "OPTIMAL"
        if status != "OPTIMAL":
            impacted = top.group
            log.warning("label bias on %s: group %s is labelled %s at %.0f%%", dimension, top.group, label, top.rate * 100)
    return LabelBiasMetric(
        dimension=dimension,
        label=label,
        groups=rates,
        insufficient_groups=short,
        gap=gap,
        impacted_group=impacted,
        status=status,  # type: ignore[arg-type]
    )


def label_bias_audit(attempts: Sequence[AttemptRecord], dimensions: Sequence[str] | None = None) -> List[LabelBiasMetric]:
    dims = list(dimensions) if dimensions is not None else dimensions_of(attempts)
    return [label_bias(dim, attempts, label) for dim in dims for label in BEHAVIOR_LABELS]


def detect_dif(
    attempts: Sequence[AttemptRecord],
    high_ability: Sequence[AttemptRecord],
    dimensions: Sequence[str] | None = None,
) -> List[DifAlert]:
    """Pass-rate gaps between groups of comparable (high) ability, per item."""
    dims = list(dimensions) if dimensions is not None else dimensions_of(attempts)
    question_ids = sorted({qid for a in attempts for qid in a.outcomes})
    alerts: List[DifAlert] = []
    for dim in dims:
        for qid in question_ids:
            stats: Dict[str, List[int]] = {}
            for a in high_ability:
                label = a.groups.get(dim)
                outcome = a.outcomes.get(qid)
                if label is None or outcome is None:
                    continue
                row = stats.setdefault(str(label), [0, 0])
                row[1] += 1
                if outcome.is_correct:
                    row[0] += 1
            rates = {
                g: pass_rate(c, t) for g, (c, t) in stats.items()
                if t >= config.FAIRNESS_MIN_SAMPLE
            }
            if len(rates) < 2:
                continue
            gap = max(rates.values()) - min(rates.values())
            if gap <= config.DIF_WARNING_GAP:
                continue
            worst = min(sorted(rates), key=lambda g: rates[g])
            alerts.append(
                DifAlert(
                    question_id=qid,
                    dimension=dim,
                    disadvantaged_group=worst,
                    gap=round(gap, 4),
                    status="CRITICAL" if gap > config.DIF_CRITICAL_GAP else "WARNING",
                )
            )
    return alerts

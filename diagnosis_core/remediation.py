"""Learning-path mutations derived from a finalized diagnosis."""
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Set

from .types import CompetencyNode, DiagnosticResult, Misconception, PathMutation


def dependents_of(graph: Iterable[CompetencyNode]) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {}
    for node in graph:
        for pre in node.prerequisites:
            out.setdefault(pre, []).append(node.id)
    return {k: sorted(set(v)) for k, v in out.items()}


def downstream(competency_id: str, dependents: Mapping[str, List[str]]) -> List[str]:
    seen: Set[str] = set()
    stack = list(dependents.get(competency_id, []))
    while stack:
        cur = stack.pop()
        if cur in seen or cur == competency_id:
            continue
        seen.add(cur)
        stack.extend(dependents.get(cur, []))
    return sorted(seen)


def plan_mutations(
    result: DiagnosticResult,
    graph: Iterable[CompetencyNode] = (),
    misconceptions: Mapping[str, Misconception] | None = None,
) -> List[PathMutation]:
    deps = dependents_of(graph)
    lookup = misconceptions or {}
    out: List[PathMutation] = []
    for d in result.competency_diagnoses:
        if d.state == "MISCONCEPTION":
            mid = d.evidence.misconception_id or ""
            m = lookup.get(mid)
            content = (m.remedial_content_id if m and m.remedial_content_id else mid)
            out.append(PathMutation(
                "INSERT_NODE", d.competency_id,
                f"Specific misconception detected: {d.evidence.reason}",
                {"position": "BEFORE", "newStatus": "infected", "contentId": content},
            ))
        elif d.state == "GAP":
            out.append(PathMutation(
                "INSERT_NODE", d.competency_id,
                f"Knowledge gap detected: {d.evidence.reason}",
                {"position": "BEFORE", "newStatus": "locked", "title": f"Scaffolding: {d.competency_id}"},
            ))
            for target in downstream(d.competency_id, deps):
                out.append(PathMutation(
                    "LOCK_DOWNSTREAM", target,
                    f"Prerequisite {d.competency_id} not yet secured",
                    {"newStatus": "locked"},
                ))
        elif d.state == "MASTERED":
            out.append(PathMutation(
                "UNLOCK_NEXT", d.competency_id, "Competency mastery confirmed.", {"newStatus": "mastered"},
            ))
    return out


def mutations_to_dicts(mutations: Iterable[PathMutation]) -> List[Dict[str, object]]:
    return [
        {"action": m.action, "targetNodeId": m.target_node_id, "reason": m.reason, "metadata": dict(m.metadata)}
        for m in mutations
    ]

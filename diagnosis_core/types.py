from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Literal

ConfidenceLevel = Literal["HIGH", "MEDIUM", "LOW", "NONE"]
CompetencyState = Literal["MASTERED", "GAP", "MISCONCEPTION", "NEUTRAL"]
CalibrationStatus = Literal["CALIBRATED", "OVERCONFIDENT", "UNDERCONFIDENT"]
EventType = Literal["ANSWER_UPDATE", "HESITATION", "FOCUS_LOST"]
ItemStatus = Literal["HEALTHY", "BROKEN", "TRIVIAL"]
EquityStatus = Literal["OPTIMAL", "WARNING", "CRITICAL", "INSUFFICIENT_DATA"]
MutationAction = Literal["INSERT_NODE", "UPDATE_STATUS", "UNLOCK_NEXT", "LOCK_DOWNSTREAM"]

CONFIDENCE_LEVELS: tuple[str, ...] = ("NONE", "LOW", "MEDIUM", "HIGH")


# ---- content / competency graph ----
@dataclass(frozen=True)
class OptionDefinition:
    id: str
    is_correct: bool = False
    diagnoses_misconception_id: Optional[str] = None
    is_dont_know: bool = False

@dataclass(frozen=True)
class QuestionDefinition:
    id: str; competency_id: str
    options: List[OptionDefinition] = field(default_factory=list)
    expected_time_seconds: Optional[float] = None

    def option(self, option_id: Optional[str]) -> Optional[OptionDefinition]:
        return next((o for o in self.options if o.id == option_id), None)

    @property
    def has_answer_key(self) -> bool:
        return any(o.is_correct for o in self.options)

@dataclass(frozen=True)
class Misconception:
    id: str; competency_id: str; description: str
    remedial_content_id: Optional[str] = None

@dataclass(frozen=True)
class CompetencyNode:
    id: str
    prerequisites: List[str] = field(default_factory=list)
    title: Optional[str] = None


# ---- raw telemetry ----
@dataclass(frozen=True)
class TelemetryEvent:
    event_type: EventType
    payload: Dict[str, Any]
    timestamp: float

    @property
    def question_id(self) -> Optional[str]:
        qid = self.payload.get("questionId")
        return str(qid) if qid is not None else None


# ---- normalized evidence ----
@dataclass(frozen=True)
class ResponseTelemetry:
    time_ms: Optional[int]  # None when the client did not report timing
    expected_time_ms: int
    hesitation_count: int = 0
    focus_lost_count: int = 0
    revisit_count: int = 0
    rte: Optional[float] = None
    z_score: Optional[float] = None

@dataclass(frozen=True)
class QuestionResponse:
    question_id: str
    competency_id: str
    selected_option_id: Optional[str]
    is_correct: bool
    confidence: ConfidenceLevel
    telemetry: ResponseTelemetry
    audit_flags: tuple[str, ...] = ()


# ---- verdicts ----
@dataclass
class DiagnosisEvidence:
    reason: str
    confidence_score: int
    time_ms: int = 0
    hesitation_count: int = 0
    source_question_ids: List[str] = field(default_factory=list)
    misconception_id: Optional[str] = None
    error: Optional[str] = None

@dataclass
class CompetencyDiagnosis:
    competency_id: str
    state: CompetencyState
    evidence: DiagnosisEvidence
    remedial_content_ids: List[str] = field(default_factory=list)

@dataclass
class CalibrationMetrics:
    certainty_average: float = 0.0
    accuracy_average: float = 0.0
    blind_spots: int = 0
    fragile_knowledge: int = 0
    ece_score: float = 0.0
    calibration_status: CalibrationStatus = "CALIBRATED"

@dataclass
class BehaviorProfile:
    is_impulsive: bool = False
    is_anxious: bool = False
    is_consistent: bool = True
    is_indecisive: bool = False

@dataclass
class DiagnosticResult:
    attempt_id: str
    student_id: str
    overall_score: int
    competency_diagnoses: List[CompetencyDiagnosis]
    calibration: CalibrationMetrics
    behavior_profile: BehaviorProfile
    evaluated_at: str
    schema_version: int = 1
    audit_flags: List[Dict[str, str]] = field(default_factory=list)

    def diagnosis_for(self, competency_id: str) -> Optional[CompetencyDiagnosis]:
        return next((d for d in self.competency_diagnoses if d.competency_id == competency_id), None)

@dataclass(frozen=True)
class PathMutation:
    action: MutationAction
    target_node_id: str
    reason: str
    metadata: Dict[str, str] = field(default_factory=dict)


# ---- cohort inputs / views ----
@dataclass(frozen=True)
class ItemOutcome:
    is_correct: bool
    selected_option_id: Optional[str] = None
    time_ms: Optional[int] = None

@dataclass
class AttemptRecord:
    attempt_id: str
    learner_id: str
    overall_score: float
    outcomes: Dict[str, ItemOutcome] = field(default_factory=dict)
    diagnoses: List[CompetencyDiagnosis] = field(default_factory=list)
    groups: Dict[str, str] = field(default_factory=dict)
    intervention: Optional[bool] = None
    ece_score: float = 0.0
    calibration_status: CalibrationStatus = "CALIBRATED"
    is_impulsive: bool = False
    is_anxious: bool = False

    @property
    def received_intervention(self) -> bool:
        if self.intervention is not None:
            return bool(self.intervention)
        return any(d.state in ("GAP", "MISCONCEPTION") for d in self.diagnoses)

@dataclass
class ItemHealthStat:
    question_id: str
    total_responses: int
    difficulty: float
    slip: float
    guess: float
    discrimination: float
    median_time_ms: float
    status: ItemStatus
    useless_distractors: List[str] = field(default_factory=list)

@dataclass
class Pathology:
    competency_id: str
    total_occurrences: int
    avg_confidence_score: float
    avg_hesitation: float
    reason: str

@dataclass
class GroupRate:
    group: str
    total_attempts: int
    interventions: int
    intervention_rate: float
    avg_score: float

@dataclass
class FairnessMetric:
    dimension: str
    groups: List[GroupRate]
    insufficient_groups: List[str]
    impact_ratio: Optional[float]
    status: EquityStatus

@dataclass
class GroupLabelRate:
    group: str
    total_attempts: int
    flagged: int
    rate: float

@dataclass
class LabelBiasMetric:
    dimension: str
    label: str
    groups: List[GroupLabelRate]
    insufficient_groups: List[str]
    gap: Optional[float]
    impacted_group: Optional[str]
    status: EquityStatus

@dataclass
class DifAlert:
    question_id: str
    dimension: str
    disadvantaged_group: str
    gap: float
    status: Literal["WARNING", "CRITICAL"]

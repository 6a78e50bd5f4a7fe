from __future__ import annotations
from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
import logging, os, uuid, typing as t

# ---- Engine imports ----
from diagnosis_core import config as engine_config
from diagnosis_core.audit_export import to_json as items_to_json, to_csv as items_to_csv
from diagnosis_core.cohort import attempt_from_cache, empty_report, safe_cohort_report, timing_stats
from diagnosis_core.evaluator import evaluate_responses
from diagnosis_core.exam_bank import outcomes_payload, parse_event, parse_exam, parse_outcomes
from diagnosis_core.normalizer import normalize_responses
from diagnosis_core.remediation import mutations_to_dicts, plan_mutations
from diagnosis_core.results_cache import ResultsCacheError, to_cache
from .storage import (
    COMPLETED,
    AttemptCompletedError,
    InvalidIdError,
    StaleTelemetryError,
    append_telemetry,
    attempts_for_exam,
    complete_attempt,
    create_attempt,
    load_attempt,
    load_exam,
    load_telemetry,
    save_exam,
)

log = logging.getLogger(__name__)

app = FastAPI(title="Diagnostic Engine API")

ID_PATTERN = r"^[A-Za-z0-9_-]+$"
FINALIZE_RETRIES = 3

ALLOWED_ORIGINS = [o for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",") if o]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)


@app.get("/")
def root():
    return {"status": "ok", "service": "diagnostic-engine-api"}


@app.exception_handler(InvalidIdError)
def invalid_id(_request: Request, exc: InvalidIdError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# ---- Schemas ----
class _Camel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

class OptionIn(_Camel):
    id: str
    is_correct: bool = Field(False, alias="isCorrect")
    diagnoses_misconception_id: str | None = Field(None, alias="diagnosesMisconceptionId")
    is_dont_know: bool = Field(False, alias="isDontKnow")

class QuestionIn(_Camel):
    id: str
    competency_id: str = Field("generic", alias="competencyId")
    options: list[OptionIn] = []
    expected_time_seconds: float | None = Field(None, alias="expectedTimeSeconds")

class MisconceptionIn(_Camel):
    id: str
    competency_id: str = Field(alias="competencyId")
    description: str = ""
    remedial_content_id: str | None = Field(None, alias="remedialContentId")

class CompetencyIn(_Camel):
    id: str
    prerequisites: list[str] = []
    title: str | None = None

class ExamReq(_Camel):
    questions: list[QuestionIn]
    misconceptions: list[MisconceptionIn] = []
    competencies: list[CompetencyIn] = []

class StartReq(BaseModel):
    exam_id: str = Field(pattern=ID_PATTERN, max_length=128)
    learner_id: str
    groups: dict[str, str] = {}
    attempt_id: str | None = Field(None, pattern=ID_PATTERN, max_length=128)

class EventIn(BaseModel):
    event_type: t.Literal["ANSWER_UPDATE", "HESITATION", "FOCUS_LOST"]
    payload: dict[str, t.Any] = {}
    timestamp: float

class TelemetryReq(BaseModel):
    events: list[EventIn]


# ---- Helpers ----
def _attempt_or_404(attempt_id: str) -> dict[str, t.Any]:
    attempt = load_attempt(attempt_id)
    if not attempt:
        raise HTTPException(404, "attempt not found")
    return attempt


def _exam_or_404(exam_id: str) -> dict[str, t.Any]:
    exam = load_exam(exam_id)
    if exam is None:
        raise HTTPException(404, "exam not found")
    return exam


def _cohort(exam_id: str) -> list:
    records = []
    for a in attempts_for_exam(exam_id):
        try:
            records.append(
                attempt_from_cache(
                    a["attemptId"],
                    a.get("learnerId", ""),
                    a.get("resultsCache") or {},
                    parse_outcomes(a.get("outcomes") or {}),
                    a.get("groups") or {},
                )
            )
        except ResultsCacheError:
            log.warning("skipping attempt %s: unreadable results cache", a.get("attemptId"))
    return records


# ---- Health ----
@app.get("/health")
def health():
    return {"status": "ok", "schema_version": engine_config.SCHEMA_VERSION, "thresholds": engine_config.effective_thresholds()}


# ---- Exams ----
@app.put("/exams/{exam_id}")
def put_exam(exam_id: str, req: ExamReq):
    save_exam(exam_id, req.model_dump(by_alias=True))
    return {"exam_id": exam_id, "questions": len(req.questions)}


# ---- Attempts ----
@app.post("/attempts")
def start_attempt(req: StartReq):
    _exam_or_404(req.exam_id)
    aid = req.attempt_id or str(uuid.uuid4())
    if load_attempt(aid):
        raise HTTPException(409, "attempt already exists")
    record = create_attempt(aid, {"examId": req.exam_id, "learnerId": req.learner_id, "groups": req.groups})
    return {"attempt_id": aid, "status": record["status"]}


@app.post("/attempts/{attempt_id}/telemetry")
def post_telemetry(attempt_id: str, req: TelemetryReq):
    try:
        n = append_telemetry(attempt_id, [e.model_dump() for e in req.events])
    except KeyError:
        raise HTTPException(404, "attempt not found")
    except AttemptCompletedError:
        raise HTTPException(409, "attempt already finalized")
    return {"ok": True, "appended": n}


def _timing_baseline(exam_id: str) -> dict[str, dict[str, float]] | None:
    try:
        return timing_stats(_cohort(exam_id)) or None
    except Exception:
        log.exception("cohort timing for exam %s unavailable; finalizing without z-scores", exam_id)
        return None


@app.post("/attempts/{attempt_id}/finalize")
def finalize(attempt_id: str):
    attempt = _attempt_or_404(attempt_id)
    if attempt.get("status") == COMPLETED and attempt.get("resultsCache"):
        return attempt["resultsCache"]

    exam = parse_exam(attempt["examId"], _exam_or_404(attempt["examId"]))
    baseline = _timing_baseline(attempt["examId"])
    for _ in range(FINALIZE_RETRIES):
        raw = load_telemetry(attempt_id)
        try:
            events = [parse_event(e) for e in raw]
            responses = normalize_responses(exam.questions, events, baseline)
            result = evaluate_responses(
                attempt_id, attempt.get("learnerId", ""), responses, exam.questions, exam.misconceptions
            )
            cache = to_cache(result)
            mutations = mutations_to_dicts(plan_mutations(result, exam.graph, exam.misconceptions))
        except Exception:
            log.exception("evaluation failed for attempt %s; left in progress", attempt_id)
            raise HTTPException(500, "evaluation failed; attempt left in progress")

        try:
            stored = complete_attempt(
                attempt_id,
                {"resultsCache": cache, "outcomes": outcomes_payload(responses), "appliedMutations": mutations},
                telemetry_seen=len(raw),
            )
        except StaleTelemetryError:
            log.info("telemetry for attempt %s grew during evaluation; re-reading", attempt_id)
            continue
        log.info("finalized attempt %s (%d mutations)", attempt_id, len(stored.get("appliedMutations", [])))
        return stored["resultsCache"]

    raise HTTPException(409, "telemetry still arriving; retry finalize")


@app.get("/attempts/{attempt_id}/results")
def get_results(attempt_id: str):
    attempt = _attempt_or_404(attempt_id)
    if attempt.get("status") != COMPLETED:
        raise HTTPException(404, "attempt not finalized")
    return attempt.get("resultsCache")


@app.get("/attempts/{attempt_id}/mutations")
def get_mutations(attempt_id: str):
    attempt = _attempt_or_404(attempt_id)
    if attempt.get("status") != COMPLETED:
        raise HTTPException(404, "attempt not finalized")
    return {"attempt_id": attempt_id, "appliedMutations": attempt.get("appliedMutations", [])}


# ---- Cohort reports ----
@app.get("/exams/{exam_id}/report")
def exam_report(exam_id: str, dimension: list[str] | None = Query(None)):
    _exam_or_404(exam_id)
    try:
        attempts = _cohort(exam_id)
    except Exception:
        log.exception("loading cohort for exam %s failed", exam_id)
        return empty_report(exam_id)
    return safe_cohort_report(attempts, exam_id, dimension)


@app.get("/exams/{exam_id}/items.json")
def items_json(exam_id: str):
    if not engine_config.AUDIT_EXPORT_ENABLED:
        raise HTTPException(404, "item export disabled")
    report = exam_report(exam_id, None)
    return {"exam_id": exam_id, **items_to_json(report["items"])}


@app.get("/exams/{exam_id}/items.csv")
def items_csv(exam_id: str):
    if not engine_config.AUDIT_EXPORT_ENABLED:
        raise HTTPException(404, "item export disabled")
    report = exam_report(exam_id, None)
    body = items_to_csv(report["items"])
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=\"{exam_id}_items.csv\""},
    )

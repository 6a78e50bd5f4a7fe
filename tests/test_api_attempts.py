from __future__ import annotations

import importlib
import os
import sys

from fastapi.testclient import TestClient


_DEF_MODULES = [
    "diagnosis_core.config",
    "api.storage",
    "api.app",
]


def _reload_app(tmp_path) -> tuple[object, object]:
    os.environ["DATA_DIR"] = str(tmp_path)
    for name in _DEF_MODULES:
        if name in sys.modules:
            importlib.reload(sys.modules[name])
        else:
            __import__(name)
    storage = sys.modules["api.storage"]
    app_module = sys.modules["api.app"]
    return storage, app_module


EXAM = {
    "questions": [
        {"id": "q1", "competencyId": "comp-add", "options": [{"id": "q1-ok", "isCorrect": True}, {"id": "q1-x"}]},
        {"id": "q2", "competencyId": "comp-sub", "options": [{"id": "q2-ok", "isCorrect": True}, {"id": "q2-x"}]},
        {
            "id": "q3",
            "competencyId": "comp-frac",
            "expectedTimeSeconds": 30,
            "options": [
                {"id": "q3-ok", "isCorrect": True},
                {"id": "q3-lin", "diagnosesMisconceptionId": "mis-linear-add"},
            ],
        },
    ],
    "misconceptions": [
        {
            "id": "mis-linear-add",
            "competencyId": "comp-frac",
            "description": "Adds numerators and denominators separately",
            "remedialContentId": "lesson-common-denominator",
        }
    ],
    "competencies": [
        {"id": "comp-add"},
        {"id": "comp-sub", "prerequisites": ["comp-add"]},
        {"id": "comp-frac", "prerequisites": ["comp-add"]},
    ],
}


def _event(qid, option, ts, time_ms, confidence):
    return {
        "event_type": "ANSWER_UPDATE",
        "payload": {"questionId": qid, "selectedOptionId": option, "telemetry": {"timeMs": time_ms, "confidence": confidence}},
        "timestamp": ts,
    }


EVENTS = [
    _event("q1", "q1-ok", 1.0, 5000, "MEDIUM"),
    {"event_type": "HESITATION", "payload": {"questionId": "q2", "count": 2}, "timestamp": 1.5},
    _event("q2", "q2-x", 2.0, 7000, "HIGH"),
    _event("q3", "q3-lin", 3.0, 8000, "HIGH"),
]


def _start(client, attempt_id="att-1", exam_id="ex-1"):
    return client.post(
        "/attempts",
        json={"exam_id": exam_id, "learner_id": "stu-1", "groups": {"gender": "F"}, "attempt_id": attempt_id},
    )


def test_attempt_lifecycle(tmp_path):
    storage, app_module = _reload_app(tmp_path / "flow")
    client = TestClient(app_module.app)

    assert client.put("/exams/ex-1", json=EXAM).status_code == 200
    assert _start(client, exam_id="missing").status_code == 404

    started = _start(client)
    assert started.status_code == 200
    assert started.json()["status"] == storage.IN_PROGRESS
    assert _start(client).status_code == 409

    sent = client.post("/attempts/att-1/telemetry", json={"events": EVENTS})
    assert sent.status_code == 200
    assert sent.json()["appended"] == 4

    assert client.get("/attempts/att-1/results").status_code == 404

    fin = client.post("/attempts/att-1/finalize")
    assert fin.status_code == 200, fin.text
    body = fin.json()
    assert body["schemaVersion"] == 1
    assert body["overallScore"] == 33
    states = {d["competencyId"]: d["state"] for d in body["competencyDiagnoses"]}
    assert states == {"comp-add": "MASTERED", "comp-sub": "GAP", "comp-frac": "MISCONCEPTION"}

    again = client.post("/attempts/att-1/finalize")
    assert again.json() == body, "finalize must not re-evaluate a completed attempt"

    assert client.get("/attempts/att-1/results").json() == body
    assert client.post("/attempts/att-1/telemetry", json={"events": EVENTS}).status_code == 409

    muts = client.get("/attempts/att-1/mutations").json()["appliedMutations"]
    actions = [(m["action"], m["targetNodeId"]) for m in muts]
    assert ("INSERT_NODE", "comp-frac") in actions
    assert ("UNLOCK_NEXT", "comp-add") in actions

    stored = storage.load_attempt("att-1")
    assert stored["status"] == storage.COMPLETED
    assert stored["outcomes"]["q3"] == {"isCorrect": False, "selectedOptionId": "q3-lin", "timeMs": 8000}

    report = client.get("/exams/ex-1/report", params={"dimension": "gender"}).json()
    assert report["total_attempts"] == 1
    assert report["top_shadow_nodes"] == ["comp-frac"]
    assert report["fairness"][0]["status"] == "INSUFFICIENT_DATA"


def test_failed_evaluation_leaves_attempt_in_progress(tmp_path, monkeypatch):
    storage, app_module = _reload_app(tmp_path / "fail")
    client = TestClient(app_module.app)
    client.put("/exams/ex-1", json=EXAM)
    _start(client)
    client.post("/attempts/att-1/telemetry", json={"events": EVENTS})

    def boom(*_args, **_kwargs):
        raise RuntimeError("engine down")

    monkeypatch.setattr(app_module, "evaluate_responses", boom)

    resp = client.post("/attempts/att-1/finalize")

    assert resp.status_code == 500
    stored = storage.load_attempt("att-1")
    assert stored["status"] == storage.IN_PROGRESS
    assert "resultsCache" not in stored


def test_item_exports(tmp_path, monkeypatch):
    _storage, app_module = _reload_app(tmp_path / "exports")
    client = TestClient(app_module.app)
    client.put("/exams/ex-1", json=EXAM)
    _start(client)
    client.post("/attempts/att-1/telemetry", json={"events": EVENTS})
    client.post("/attempts/att-1/finalize")

    as_json = client.get("/exams/ex-1/items.json")
    assert as_json.status_code == 200
    payload = as_json.json()
    assert payload["exam_id"] == "ex-1"
    assert [row["question_id"] for row in payload["items"]] == ["q1", "q2", "q3"]

    as_csv = client.get("/exams/ex-1/items.csv")
    assert as_csv.status_code == 200
    assert as_csv.headers["content-type"].startswith("text/csv")
    assert as_csv.text.splitlines()[0].startswith("question_id,total_responses")

    monkeypatch.setattr(app_module.engine_config, "AUDIT_EXPORT_ENABLED", False)
    assert client.get("/exams/ex-1/items.csv").status_code == 404


def test_health_reports_thresholds(tmp_path):
    _storage, app_module = _reload_app(tmp_path / "health")
    client = TestClient(app_module.app)

    body = client.get("/health").json()

    assert body["status"] == "ok"
    assert body["schema_version"] == 1
    assert body["thresholds"]["RTE_TIME_FLOOR_MS"] == 300


def test_attempt_ids_cannot_leave_the_data_dir(tmp_path):
    _storage, app_module = _reload_app(tmp_path / "data")
    client = TestClient(app_module.app)
    client.put("/exams/ex-1", json=EXAM)

    resp = _start(client, attempt_id="../../escaped")

    assert resp.status_code == 422
    assert not (tmp_path / "escaped.json").exists()
    assert _start(client, exam_id="../exams/ex-1").status_code == 422
    assert client.get("/attempts/bad.id/results").status_code == 400
    assert client.put("/exams/ex.1", json=EXAM).status_code == 400


def test_env_threshold_overrides_reach_the_engine(tmp_path, monkeypatch):
    monkeypatch.setenv("GUESS_TRIVIAL", "0.9")
    try:
        _storage, app_module = _reload_app(tmp_path / "env")
        client = TestClient(app_module.app)

        assert client.get("/health").json()["thresholds"]["GUESS_TRIVIAL"] == 0.9
        assert app_module.engine_config.GUESS_TRIVIAL == 0.9
    finally:
        monkeypatch.delenv("GUESS_TRIVIAL")
        importlib.reload(sys.modules["diagnosis_core.config"])


def test_finalize_uses_cohort_timing_for_z_scores(tmp_path, monkeypatch):
    _storage, app_module = _reload_app(tmp_path / "timing")
    monkeypatch.setattr(app_module.engine_config, "TIMING_MIN_SAMPLE", 3)
    client = TestClient(app_module.app)
    client.put("/exams/ex-1", json=EXAM)

    for i, time_ms in enumerate((4000, 5000, 6000)):
        _start(client, attempt_id=f"prior-{i}")
        client.post(f"/attempts/prior-{i}/telemetry", json={"events": [_event("q1", "q1-ok", 1.0, time_ms, "HIGH")]})
        assert client.post(f"/attempts/prior-{i}/finalize").status_code == 200

    _start(client, attempt_id="slow")
    client.post("/attempts/slow/telemetry", json={"events": [_event("q1", "q1-ok", 1.0, 30000, "HIGH")]})
    body = client.post("/attempts/slow/finalize").json()

    states = {d["competencyId"]: d["state"] for d in body["competencyDiagnoses"]}
    assert states["comp-add"] == "NEUTRAL", "correct but far slower than the cohort"
    assert body["behaviorProfile"]["isIndecisive"] is True


def test_finalize_retries_when_telemetry_arrives_mid_evaluation(tmp_path, monkeypatch):
    storage, app_module = _reload_app(tmp_path / "race")
    client = TestClient(app_module.app)
    client.put("/exams/ex-1", json=EXAM)
    _start(client)
    client.post("/attempts/att-1/telemetry", json={"events": EVENTS[:1]})

    real_evaluate = app_module.evaluate_responses
    calls = []

    def evaluate_while_client_writes(*args, **kwargs):
        if not calls:
            storage.append_telemetry("att-1", [_event("q2", "q2-ok", 2.0, 6000, "HIGH")])
        calls.append(1)
        return real_evaluate(*args, **kwargs)

    monkeypatch.setattr(app_module, "evaluate_responses", evaluate_while_client_writes)

    body = client.post("/attempts/att-1/finalize").json()

    assert len(calls) == 2
    assert body["overallScore"] == 100
    assert storage.load_attempt("att-1")["outcomes"]["q2"]["isCorrect"] is True

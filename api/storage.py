"""Utility helpers for persisting exams, attempts and telemetry logs.

Everything lives in JSON files under ``DATA_DIR``.  Attempt files are
replaced atomically, so a reader sees either the in-progress attempt or the
completed one with its ``resultsCache``, never a half-written mix.  Telemetry
is an append-only JSONL log per attempt.
"""

from __future__ import annotations

import json
import os
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


DATA_ROOT = Path(os.getenv("DATA_DIR", "data")).resolve()
EXAMS_DIR = DATA_ROOT / "exams"
ATTEMPTS_DIR = DATA_ROOT / "attempts"
TELEMETRY_DIR = DATA_ROOT / "telemetry"
ATTEMPT_INDEX_PATH = DATA_ROOT / "attempts_index.json"

IN_PROGRESS = "IN_PROGRESS"
COMPLETED = "COMPLETED"

_LOCK = threading.Lock()

_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class InvalidIdError(ValueError):
    pass


class AttemptCompletedError(RuntimeError):
    pass


class StaleTelemetryError(RuntimeError):
    """Telemetry arrived between reading the log and writing the result."""


def _path_for(base: Path, ident: str, suffix: str) -> Path:
    if not isinstance(ident, str) or not _ID_RE.fullmatch(ident):
        raise InvalidIdError(f"invalid id: {ident!r}")
    path = (base / f"{ident}{suffix}").resolve()
    if path.parent != base.resolve():
        raise InvalidIdError(f"id escapes data dir: {ident!r}")
    return path


def _ensure_dirs() -> None:
    for d in (EXAMS_DIR, ATTEMPTS_DIR, TELEMETRY_DIR):
        d.mkdir(parents=True, exist_ok=True)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return default


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp.replace(path)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---- exams ----
def save_exam(exam_id: str, definition: Dict[str, Any]) -> None:
    path = _path_for(EXAMS_DIR, exam_id, ".json")
    _ensure_dirs()
    _write_json(path, definition)


def load_exam(exam_id: str) -> Optional[Dict[str, Any]]:
    return _read_json(_path_for(EXAMS_DIR, exam_id, ".json"), None)


# ---- attempts ----
def _attempt_path(attempt_id: str) -> Path:
    return _path_for(ATTEMPTS_DIR, attempt_id, ".json")


def _telemetry_path(attempt_id: str) -> Path:
    return _path_for(TELEMETRY_DIR, attempt_id, ".jsonl")


def _index_entry(record: Dict[str, Any]) -> Dict[str, Any]:
    return {"examId": record.get("examId"), "learnerId": record.get("learnerId"), "status": record["status"]}


def create_attempt(attempt_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    path = _attempt_path(attempt_id)
    _ensure_dirs()
    record = dict(payload)
    record.setdefault("attemptId", attempt_id)
    record.setdefault("status", IN_PROGRESS)
    record.setdefault("startedAt", utcnow_iso())
    with _LOCK:
        _write_json(path, record)
        index: Dict[str, Dict[str, Any]] = _read_json(ATTEMPT_INDEX_PATH, {})
        index[attempt_id] = _index_entry(record)
        _write_json(ATTEMPT_INDEX_PATH, index)
    return record


def load_attempt(attempt_id: str) -> Optional[Dict[str, Any]]:
    return _read_json(_attempt_path(attempt_id), None)


def complete_attempt(
    attempt_id: str,
    updates: Dict[str, Any],
    telemetry_seen: Optional[int] = None,
) -> Dict[str, Any]:
    """Write status, results cache and mutations in a single file replace.

    A completed attempt is returned as stored and never rewritten.  With
    ``telemetry_seen`` the write is refused (``StaleTelemetryError``) when the
    telemetry log grew after the caller read it.
    """

    path = _attempt_path(attempt_id)
    with _LOCK:
        record = _read_json(path, None)
        if record is None:
            raise KeyError(attempt_id)
        if record.get("status") == COMPLETED:
            return record
        if telemetry_seen is not None and _count_events(attempt_id) != telemetry_seen:
            raise StaleTelemetryError(attempt_id)
        record.update(updates)
        record["status"] = COMPLETED
        record.setdefault("finishedAt", utcnow_iso())
        _write_json(path, record)
        index: Dict[str, Dict[str, Any]] = _read_json(ATTEMPT_INDEX_PATH, {})
        index[attempt_id] = _index_entry(record)
        _write_json(ATTEMPT_INDEX_PATH, index)
    return record


def attempts_for_exam(exam_id: str, status: str = COMPLETED) -> List[Dict[str, Any]]:
    index: Dict[str, Dict[str, Any]] = _read_json(ATTEMPT_INDEX_PATH, {})
    out: List[Dict[str, Any]] = []
    for aid in sorted(index):
        meta = index[aid]
        if meta.get("examId") != exam_id or meta.get("status") != status:
            continue
        record = load_attempt(aid)
        if record:
            out.append(record)
    return out


# ---- telemetry ----
def _count_events(attempt_id: str) -> int:
    path = _telemetry_path(attempt_id)
    if not path.exists():
        return 0
    with path.open("r", encoding="utf-8") as f:
        return sum(1 for line in f if line.strip())


def append_telemetry(attempt_id: str, events: List[Dict[str, Any]]) -> int:
    """Append events unless the attempt is already completed (checked under the lock)."""

    path = _telemetry_path(attempt_id)
    _ensure_dirs()
    with _LOCK:
        record = _read_json(_attempt_path(attempt_id), None)
        if record is None:
            raise KeyError(attempt_id)
        if record.get("status") == COMPLETED:
            raise AttemptCompletedError(attempt_id)
        with path.open("a", encoding="utf-8") as f:
            for evt in events:
                f.write(json.dumps(evt, sort_keys=True) + "\n")
    return len(events)


def load_telemetry(attempt_id: str) -> List[Dict[str, Any]]:
    path = _telemetry_path(attempt_id)
    if not path.exists():
        return []
    out: List[Dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                out.append(json.loads(line))
    return out

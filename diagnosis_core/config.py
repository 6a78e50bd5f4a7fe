from __future__ import annotations
import os, json, pathlib


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


SCHEMA_VERSION: int = 1

# response evidence
RTE_TIME_FLOOR_MS: int = 300
DEFAULT_EXPECTED_TIME_SECONDS: float = 60.0
MASTERY_TIME_RATIO: float = 1.3
FRAGILE_Z_SCORE: float = 2.0

CONFIDENCE_VALUES: dict[str, int] = {"HIGH": 100, "MEDIUM": 66, "LOW": 33, "NONE": 0}
MISCONCEPTION_CONFIDENCE: dict[str, int] = {"HIGH": 95, "MEDIUM": 80, "LOW": 65, "NONE": 50}
OVERCONFIDENCE_BONUS: int = 5
MASTERY_CONFIDENCE_FLOOR: int = 50
GAP_CONFIDENCE_BASE: int = 60
DONT_KNOW_CONFIDENCE: int = 100

# calibration / behaviour
CALIBRATION_MARGIN: float = 15.0
IMPULSIVE_FRACTION: float = 0.25
ANXIOUS_HESITATION_MEAN: float = 2.0
ANXIOUS_FOCUS_LOST_MEAN: float = 1.0
ANXIOUS_ACCURACY_MIN: float = 70.0
CONSISTENCY_MAX_FRACTION: float = 0.20
ENTROPY_HESITATION_WEIGHT: float = 0.5
ENTROPY_REVISIT_WEIGHT: float = 1.0
ENTROPY_HIGH: float = 2.0
INDECISIVE_FRACTION: float = 0.40

# item statistics
MASTER_FRACTION: float = 0.30
NOVICE_FRACTION: float = 0.30
SLIP_BROKEN: float = 0.40
GUESS_TRIVIAL: float = 0.60
DISCRIMINATION_TRIVIAL: float = 0.20
USELESS_DISTRACTOR_LIMIT: float = 0.05

# fairness
IMPACT_CRITICAL: float = 0.80
IMPACT_WARNING: float = 0.90
FAIRNESS_MIN_SAMPLE: int = 10
DIF_WARNING_GAP: float = 0.20
DIF_CRITICAL_GAP: float = 0.30
LABEL_BIAS_GAP: float = 0.20
LABEL_BIAS_CRITICAL_GAP: float = 0.30

# cohort timing baseline fed to the z-score
TIMING_MIN_SAMPLE: int = 10

PATHOLOGY_TOP_N: int = 3
ARCHETYPE_MASTER_SCORE: float = 80.0
ARCHETYPE_AT_RISK_SCORE: float = 50.0

AUDIT_EXPORT_ENABLED: bool = True

DEBUG_TRACE: bool = False
TRACE_FIELDS: tuple[str, ...] = (
    "competency_id",
    "question_id",
    "option",
    "correct",
    "confidence",
    "time_ms",
    "rapid",
)
# // env overrides for staging/ops; thresholds in _OVERRIDABLE go through load_config below
AUDIT_EXPORT_ENABLED = _env_bool("AUDIT_EXPORT_ENABLED", AUDIT_EXPORT_ENABLED)
DEBUG_TRACE = _env_bool("DEBUG_TRACE", False)

_OVERRIDABLE = (
    "RTE_TIME_FLOOR_MS",
    "MASTERY_TIME_RATIO",
    "IMPULSIVE_FRACTION",
    "SLIP_BROKEN",
    "GUESS_TRIVIAL",
    "FAIRNESS_MIN_SAMPLE",
    "PATHOLOGY_TOP_N",
    "TIMING_MIN_SAMPLE",
)


def load_config(path: str = "config.json") -> dict:
    """Module defaults, then ``config.json``, then the environment."""
    cfg = {name: globals()[name] for name in _OVERRIDABLE}
    p = pathlib.Path(path)
    if p.exists():
        try:
            raw = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            raw = {}
        for k, v in raw.items():
            if k in cfg:
                cfg[k] = type(cfg[k])(v)
    for k, default in list(cfg.items()):
        if isinstance(default, int):
            cfg[k] = _env_int(k, cfg[k])
        else:
            cfg[k] = _env_float(k, cfg[k])
    return cfg


def apply_config(cfg: dict) -> None:
    """Install merged overrides as the module constants the engine reads."""
    g = globals()
    for k, v in cfg.items():
        if k in _OVERRIDABLE:
            g[k] = v


def effective_thresholds() -> dict:
    return {name: globals()[name] for name in _OVERRIDABLE}


apply_config(load_config())

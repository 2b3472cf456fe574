"""Environment-driven settings for the sensing pipeline.

Values are read from the process environment after ``.env.local`` in the
repository root has been loaded with python-dotenv.  Malformed values fall
back to their defaults (a warning is logged) and the focus detector ranges
are clamped the same way the settings screen used to clamp them.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from src.logger import get_logger

log = get_logger("config")

REPO_ROOT = Path(__file__).resolve().parent.parent
ENV_PREFIX = "FOCUS_SENSE_"

STRICTNESS_LEVELS = {"relaxed": 0, "normal": 1, "strict": 2}

WINDOW_MINUTES_RANGE = (3.0, 10.0)
COOLDOWN_DETECTED_RANGE = (0.0, 30.0)
COOLDOWN_MISSED_RANGE = (0.0, 5.0)


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


@dataclass
class SensingConfig:
    """Tunable knobs shared by the scorer, the focus detector and the loops."""

    sensitivity: float = 1.0

    # fast loop
    burst_period_seconds: float = 2.0
    burst_score_window_seconds: float = 120.0
    burst_analysis_window_seconds: float = 180.0
    burst_cooldown_seconds: float = 30.0
    burst_max_events: int = 30

    # slow loop
    focus_enabled: bool = True
    focus_period_seconds: float = 30.0
    detection_window_minutes: float = 5.0
    cooldown_detected_minutes: float = 10.0
    cooldown_missed_minutes: float = 2.0
    strictness: int = 1
    snapshot_max_age: float = 300.0

    # display toggles
    show_observation: bool = True
    show_insight: bool = True
    show_offer: bool = True

    # external collaborators
    reasoning_timeout: float = 30.0
    search_command: str = "clawhub"
    search_timeout: float = 3.0
    burst_search_timeout: float = 2.0
    skills_dir: str = "/opt/homebrew/lib/node_modules/openclaw/skills"

    def __post_init__(self) -> None:
        self.sensitivity = clamp(self.sensitivity, 0.5, 2.0)
        self.detection_window_minutes = clamp(
            self.detection_window_minutes, *WINDOW_MINUTES_RANGE
        )
        self.cooldown_detected_minutes = clamp(
            self.cooldown_detected_minutes, *COOLDOWN_DETECTED_RANGE
        )
        self.cooldown_missed_minutes = clamp(
            self.cooldown_missed_minutes, *COOLDOWN_MISSED_RANGE
        )
        self.strictness = int(clamp(self.strictness, 0, 2))


def parse_strictness(raw: str) -> int:
    """``relaxed``/``normal``/``strict`` または 0/1/2 を受け付ける."""
    value = raw.strip().lower()
    if value in STRICTNESS_LEVELS:
        return STRICTNESS_LEVELS[value]
    return int(value)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning("Ignoring malformed %s%s=%r", ENV_PREFIX, name, raw)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(ENV_PREFIX + name)
    return raw.strip() if raw and raw.strip() else default


def load_local_env() -> None:
    load_dotenv(dotenv_path=REPO_ROOT / ".env.local", override=True)


def load_config(*, load_env_file: bool = True) -> SensingConfig:
    """環境変数から設定を読み込む."""
    if load_env_file:
        load_local_env()

    defaults = SensingConfig()
    strictness = defaults.strictness
    raw_strictness = os.getenv(ENV_PREFIX + "STRICTNESS")
    if raw_strictness:
        try:
            strictness = parse_strictness(raw_strictness)
        except ValueError:
            log.warning("Ignoring malformed %sSTRICTNESS=%r", ENV_PREFIX, raw_strictness)

    return SensingConfig(
        sensitivity=_env_float("SENSITIVITY", defaults.sensitivity),
        burst_period_seconds=_env_float("BURST_PERIOD", defaults.burst_period_seconds),
        burst_cooldown_seconds=_env_float(
            "BURST_COOLDOWN", defaults.burst_cooldown_seconds
        ),
        focus_enabled=_env_bool("FOCUS_ENABLED", defaults.focus_enabled),
        focus_period_seconds=_env_float("FOCUS_PERIOD", defaults.focus_period_seconds),
        detection_window_minutes=_env_float(
            "WINDOW_MINUTES", defaults.detection_window_minutes
        ),
        cooldown_detected_minutes=_env_float(
            "COOLDOWN_DETECTED", defaults.cooldown_detected_minutes
        ),
        cooldown_missed_minutes=_env_float(
            "COOLDOWN_MISSED", defaults.cooldown_missed_minutes
        ),
        strictness=strictness,
        show_observation=_env_bool("SHOW_OBSERVATION", defaults.show_observation),
        show_insight=_env_bool("SHOW_INSIGHT", defaults.show_insight),
        show_offer=_env_bool("SHOW_OFFER", defaults.show_offer),
        reasoning_timeout=_env_float("REASONING_TIMEOUT", defaults.reasoning_timeout),
        search_command=_env_str("SEARCH_COMMAND", defaults.search_command),
        search_timeout=_env_float("SEARCH_TIMEOUT", defaults.search_timeout),
        skills_dir=_env_str("SKILLS_DIR", defaults.skills_dir),
    )

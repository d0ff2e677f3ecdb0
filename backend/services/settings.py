"""Settings for the reconstruction services.

Values come from ``config/burndown-config.json`` (camelCase keys) with
environment overrides. A missing or malformed file falls back to defaults.
"""

import json
import logging
import os
from dataclasses import dataclass, field, replace
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join(
    os.path.dirname(__file__), "..", "config", "burndown-config.json"
)

DEFAULT_DONE_LIKE_STATES = frozenset({"done", "closed", "completed", "resolved"})
DEFAULT_IN_PROGRESS_STATES = frozenset({"in progress", "active", "committed", "doing"})
DEFAULT_HOURS_TYPES = frozenset({"task", "bug", "test case"})
DEFAULT_FLOW_TYPES = DEFAULT_HOURS_TYPES | frozenset({"test suite", "test plan"})


@dataclass(frozen=True)
class Settings:
    done_like_states: frozenset = DEFAULT_DONE_LIKE_STATES
    in_progress_states: frozenset = DEFAULT_IN_PROGRESS_STATES
    hours_types: frozenset = DEFAULT_HOURS_TYPES
    flow_types: frozenset = DEFAULT_FLOW_TYPES
    sprint_timezone: str = "UTC"
    retry_delays: tuple = (5, 15, 30)
    baseline_cache_ttl: float = 300.0
    database_url: str = "sqlite:///burndown.db"
    cors_origins: tuple = field(
        default=("http://localhost:5173", "http://127.0.0.1:5173")
    )


def _lowered_set(values) -> frozenset:
    return frozenset(str(v).strip().lower() for v in values if str(v).strip())


def load_settings(path: Optional[str] = None) -> Settings:
    """Load settings from the JSON config file and the environment."""
    path = path or os.environ.get("BURNDOWN_CONFIG") or DEFAULT_CONFIG_PATH
    settings = Settings()
    config = {}

    if os.path.exists(path):
        try:
            with open(path, "r") as f:
                config = json.load(f)
            logger.info(f"Loaded burndown config from {path}")
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load burndown config {path}: {e}")
            config = {}
    else:
        logger.info(f"No burndown config at {path}, using defaults")

    overrides = {}
    if config.get("doneLikeStates"):
        overrides["done_like_states"] = _lowered_set(config["doneLikeStates"])
    if config.get("inProgressStates"):
        overrides["in_progress_states"] = _lowered_set(config["inProgressStates"])
    if config.get("hoursTypes"):
        overrides["hours_types"] = _lowered_set(config["hoursTypes"])
    if config.get("flowTypes"):
        overrides["flow_types"] = _lowered_set(config["flowTypes"])
    if config.get("sprintTimezone"):
        overrides["sprint_timezone"] = str(config["sprintTimezone"])
    if config.get("retryDelaysSeconds"):
        overrides["retry_delays"] = tuple(float(d) for d in config["retryDelaysSeconds"])
    if config.get("baselineCacheTtlSeconds") is not None:
        overrides["baseline_cache_ttl"] = float(config["baselineCacheTtlSeconds"])
    if config.get("corsOrigins"):
        overrides["cors_origins"] = tuple(config["corsOrigins"])

    # Environment wins over the file
    if os.environ.get("SPRINT_TIMEZONE"):
        overrides["sprint_timezone"] = os.environ["SPRINT_TIMEZONE"]
    if os.environ.get("DATABASE_URL"):
        overrides["database_url"] = os.environ["DATABASE_URL"]

    return replace(settings, **overrides)

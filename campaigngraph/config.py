"""Configuration loading and defaults.

Reads from config.toml at the project root, with environment variable overrides.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path

from dotenv import load_dotenv

# Look for .env in the package's parent directory (project root)
_project_root = Path(__file__).resolve().parent.parent
load_dotenv(_project_root / ".env")
load_dotenv()  # also check cwd

# ---------------------------------------------------------------------------
# Load config.toml
# ---------------------------------------------------------------------------

_toml_path = Path(os.getenv("CAMPAIGNGRAPH_CONFIG", str(_project_root / "config.toml")))
_cfg: dict = {}
if _toml_path.exists():
    with open(_toml_path, "rb") as f:
        _cfg = tomllib.load(f)

_scheduler = _cfg.get("scheduler", {})
_planner = _cfg.get("planner", {})
_storage = _cfg.get("storage", {})

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

DATA_DIR = Path(os.getenv("CAMPAIGNGRAPH_DATA_DIR", _storage.get("data_dir", str(Path.cwd() / "graphs"))))

# ---------------------------------------------------------------------------
# Provider API keys (env-only, never in toml)
# ---------------------------------------------------------------------------

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")

# ---------------------------------------------------------------------------
# Scheduler defaults
# ---------------------------------------------------------------------------

DEFAULT_PARALLELISM = int(os.getenv("CAMPAIGNGRAPH_PARALLELISM", _scheduler.get("parallelism", 5)))
DEFAULT_POLL_INTERVAL_MS = int(os.getenv("CAMPAIGNGRAPH_POLL_INTERVAL_MS", _scheduler.get("poll_interval_ms", 2000)))
DEFAULT_TIMEOUT_MS = int(os.getenv("CAMPAIGNGRAPH_TIMEOUT_MS", _scheduler.get("timeout_ms", 3_600_000)))

# Retry policy
DEFAULT_MAX_ATTEMPTS = int(os.getenv("CAMPAIGNGRAPH_MAX_ATTEMPTS", _scheduler.get("max_attempts", 3)))
DEFAULT_BACKOFF_MS = int(os.getenv("CAMPAIGNGRAPH_BACKOFF_MS", _scheduler.get("backoff_ms", 1000)))
DEFAULT_BACKOFF_MULTIPLIER = float(
    os.getenv("CAMPAIGNGRAPH_BACKOFF_MULTIPLIER", _scheduler.get("backoff_multiplier", 2.0))
)
DEFAULT_MAX_BACKOFF_MS = int(os.getenv("CAMPAIGNGRAPH_MAX_BACKOFF_MS", _scheduler.get("max_backoff_ms", 30_000)))

# Per-task wall clock budget, 0 disables it
DEFAULT_TASK_TIMEOUT_SECONDS = float(
    os.getenv("CAMPAIGNGRAPH_TASK_TIMEOUT", _scheduler.get("task_timeout_seconds", 300))
)

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

DEFAULT_MODEL = os.getenv("CAMPAIGNGRAPH_DEFAULT_MODEL", _planner.get("default_model", "anthropic/claude-sonnet-4-5"))
PLANNER_MODEL = os.getenv("CAMPAIGNGRAPH_PLANNER_MODEL", _planner.get("planner_model", DEFAULT_MODEL))
DEFAULT_TEMPERATURE = float(os.getenv("CAMPAIGNGRAPH_TEMPERATURE", _planner.get("temperature", 0.7)))
PLANNER_TEMPERATURE = float(os.getenv("CAMPAIGNGRAPH_PLANNER_TEMPERATURE", _planner.get("planner_temperature", 0.3)))
DEFAULT_MAX_TOKENS = int(os.getenv("CAMPAIGNGRAPH_MAX_TOKENS", _planner.get("max_tokens", 4000)))
PLANNER_MAX_TASKS = int(os.getenv("CAMPAIGNGRAPH_PLANNER_MAX_TASKS", _planner.get("max_tasks", 10)))
PLANNER_MAX_DEPTH = int(os.getenv("CAMPAIGNGRAPH_PLANNER_MAX_DEPTH", _planner.get("max_depth", 5)))

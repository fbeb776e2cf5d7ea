"""Workforce sync - identity resolution and consolidation for staffing exports.

Importing the package configures logging from ``LOG_LEVEL``, ``JSON_LOGS``
and ``SERVICE_NAME``; ``__version__`` is read from the nearest VERSION file.
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path

# Configure structured logging on import
from .logging_config import configure_logging

# Deployment environment decides level and format
_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("JSON_LOGS", "true").lower() == "true"
_service_name = os.getenv("SERVICE_NAME", "workforce-sync")

configure_logging(
    log_level=_log_level,
    json_logs=_json_logs,
    service_name=_service_name,
)


def _candidate_version_paths(start: Path) -> Iterable[Path]:
    """Yield possible VERSION file locations from closest to farthest."""
    # Explicit override wins
    env_override = os.getenv("WORKFORCE_VERSION_FILE")
    if env_override:
        yield Path(env_override)

    # Source checkout: VERSION at the repo root
    for parent in [start.parent, *start.parents]:
        yield parent / "VERSION"

    # Working directory of the caller
    yield Path.cwd() / "VERSION"


def _load_version() -> str:
    module_path = Path(__file__).resolve()
    for version_path in _candidate_version_paths(module_path):
        try:
            if version_path.is_file():
                value = version_path.read_text(encoding="utf-8").strip()
                if value:
                    return value
        except OSError:
            continue
    return "0.0.0"


__version__ = _load_version()

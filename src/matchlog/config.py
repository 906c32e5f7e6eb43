"""Settings for the match log command line and embedding applications.

Resolution order for every setting: explicit argument, environment
variable, then default. The store directory is discovered by walking up
from the working directory looking for ``.matchlog``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .constants import DEFAULT_STORAGE_KEY, STORE_DIR_NAME

ENV_STORE_PATH = "MATCHLOG_PATH"
ENV_STORAGE_KEY = "MATCHLOG_STORAGE_KEY"
ENV_BACKEND = "MATCHLOG_BACKEND"
ENV_LOG_LEVEL = "MATCHLOG_LOG_LEVEL"

BACKENDS = ("file", "sqlite")


@dataclass
class Settings:
    store_dir: Path
    storage_key: str = DEFAULT_STORAGE_KEY
    backend: str = "file"
    log_level: str = "WARNING"


def find_store_dir(start: Path | None = None) -> Path:
    """Find ``.matchlog`` in the start directory or any parent.

    Falls back to ``<start>/.matchlog`` (not created here).
    """
    start = start or Path.cwd()
    for parent in [start] + list(start.parents):
        candidate = parent / STORE_DIR_NAME
        if candidate.is_dir():
            return candidate
    return start / STORE_DIR_NAME


def load_settings(env: Mapping[str, str] | None = None, cwd: Path | None = None) -> Settings:
    """Build settings from environment variables.

    Raises:
        ValueError: If MATCHLOG_BACKEND names an unknown backend
    """
    env = os.environ if env is None else env

    if store_path := env.get(ENV_STORE_PATH):
        store_dir = Path(store_path)
    else:
        store_dir = find_store_dir(cwd)

    backend = env.get(ENV_BACKEND, "file").lower()
    if backend not in BACKENDS:
        raise ValueError(f"Unknown storage backend {backend!r}; expected one of {', '.join(BACKENDS)}")

    return Settings(
        store_dir=store_dir,
        storage_key=env.get(ENV_STORAGE_KEY) or DEFAULT_STORAGE_KEY,
        backend=backend,
        log_level=(env.get(ENV_LOG_LEVEL) or "WARNING").upper(),
    )

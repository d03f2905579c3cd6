"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from modfinder.errors import fatal

DEFAULT_DB_PATH = Path("data/modfinder.db")
DEPLOYMENT_MODES = ("local", "managed")


def _get_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise fatal(f"{name}={raw!r} is not an integer") from exc


@dataclass(slots=True)
class AppConfig:
    db_path: Path = DEFAULT_DB_PATH
    workers: int = 10
    buffer_size: int | None = None
    timeout_minutes: int = 10
    queue_name: str = "dev-fetch-tasks"
    deployment_mode: str = "local"
    proxy_removed_path: Path | None = None
    proxy_root: Path | None = None
    aws_region: str | None = None
    user: str = "etl"

    def __post_init__(self) -> None:
        if self.deployment_mode not in DEPLOYMENT_MODES:
            raise fatal(
                f"unknown deployment mode {self.deployment_mode!r}; expected one of {DEPLOYMENT_MODES}"
            )
        if self.workers < 1:
            raise fatal(f"workers must be positive, got {self.workers}")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_minutes * 60.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AppConfig":
        environ = os.environ if environ is None else environ
        proxy_removed = environ.get("MODFINDER_PROXY_REMOVED")
        proxy_root = environ.get("MODFINDER_PROXY_ROOT")
        buffer_size = _get_int(environ, "MODFINDER_BUFFER_SIZE", 0)
        return cls(
            db_path=Path(environ.get("MODFINDER_DB") or DEFAULT_DB_PATH),
            workers=_get_int(environ, "MODFINDER_WORKERS", 10),
            buffer_size=buffer_size or None,
            timeout_minutes=_get_int(environ, "MODFINDER_TIMEOUT_MINUTES", 10),
            queue_name=environ.get("MODFINDER_TASK_QUEUE") or "dev-fetch-tasks",
            deployment_mode=environ.get("MODFINDER_DEPLOYMENT") or "local",
            proxy_removed_path=Path(proxy_removed) if proxy_removed else None,
            proxy_root=Path(proxy_root) if proxy_root else None,
            aws_region=environ.get("AWS_REGION") or None,
            user=environ.get("USER") or "etl",
        )

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

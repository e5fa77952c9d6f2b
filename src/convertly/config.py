"""
Configuration - env vars and service defaults.
"""

import os
import tempfile
from dataclasses import dataclass


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8080
    reload: bool = False
    version: str = "0.1.0"
    workers: int = 8
    queue_capacity: int = 256
    job_timeout_sec: float = 60.0
    # Longer than job_timeout_sec so a worker's own deadline fires first
    wait_timeout_sec: float = 65.0
    retention_sec: float = 1800.0
    sweep_interval_sec: float = 600.0
    max_upload_mb: int = 32
    work_dir: str = tempfile.gettempdir()
    pandoc_bin: str = "pandoc"
    log_level: str = "INFO"
    log_file: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8080")),
            reload=_env_bool("RELOAD", "false"),
            version=os.getenv("CONVERTLY_VERSION", "0.1.0"),
            workers=int(os.getenv("WORKERS", "8")),
            queue_capacity=int(os.getenv("QUEUE_CAPACITY", "256")),
            job_timeout_sec=float(os.getenv("JOB_TIMEOUT_SEC", "60")),
            wait_timeout_sec=float(os.getenv("WAIT_TIMEOUT_SEC", "65")),
            retention_sec=float(os.getenv("RETENTION_SEC", "1800")),
            sweep_interval_sec=float(os.getenv("SWEEP_INTERVAL_SEC", "600")),
            max_upload_mb=int(os.getenv("MAX_UPLOAD_MB", "32")),
            work_dir=os.getenv("WORK_DIR") or tempfile.gettempdir(),
            pandoc_bin=os.getenv("PANDOC_BIN", "pandoc"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE") or None,
        )

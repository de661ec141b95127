from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Mapping, Optional
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
API_KEY = os.getenv("API_KEY", "").strip() or None
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip()
LOG_FORMAT = os.getenv("LOG_FORMAT", "console").strip().lower()

DEFAULT_TIMEOUT_MS = 10000
DEFAULT_RETRY_COUNT = 3
DEFAULT_RETRY_DELAY_MS = 1000
DEFAULT_BATCH_WORKERS = 8

DEPARTMENT_DATE_FIELDS = {
    "laboratory": "CheckDate",
    "general": "AssessmentDate",
    "imaging": "ExamDate",
    "instrument": "TestDate",
}

DEPARTMENT_DATE_LABELS = {
    "laboratory": "检验日期",
    "general": "评估日期",
    "imaging": "检查日期",
    "instrument": "测试日期",
}


class ConfigurationError(RuntimeError):
    """Raised when a service cannot be constructed from the environment."""


@dataclass(frozen=True)
class ExamDateLookupConfig:
    base_url: str
    timeout: float
    retry_count: int
    retry_delay: float
    batch_workers: int = DEFAULT_BATCH_WORKERS

    def __post_init__(self):
        if not self.base_url or not self.base_url.strip():
            raise ConfigurationError("Exam date lookup base_url must not be empty")
        if self.timeout is None or float(self.timeout) <= 0:
            raise ConfigurationError(f"Exam date lookup timeout must be positive, got {self.timeout!r}")
        object.__setattr__(self, "base_url", self.base_url.strip().rstrip("/"))
        object.__setattr__(self, "retry_count", max(1, int(self.retry_count)))
        object.__setattr__(self, "retry_delay", max(0.0, float(self.retry_delay or 0)))
        object.__setattr__(self, "batch_workers", max(1, int(self.batch_workers)))


def _int_env(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = (environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")


def load_exam_date_config(environ: Optional[Mapping[str, str]] = None) -> ExamDateLookupConfig:
    """Build the exam date lookup configuration from environment variables.

    EXAMINATION_API_BASE_URL wins; otherwise EXAMINATION_API_HOST and
    EXAMINATION_API_PORT are combined into http://host:port/api. With neither,
    there is no endpoint to talk to and ConfigurationError is raised.
    Timeout and retry delay are given in milliseconds; a timeout of zero or
    less means the default.
    """
    env = os.environ if environ is None else environ

    base_url = (env.get("EXAMINATION_API_BASE_URL") or "").strip()
    if not base_url:
        host = (env.get("EXAMINATION_API_HOST") or "").strip()
        port = (env.get("EXAMINATION_API_PORT") or "").strip()
        if host and port:
            base_url = f"http://{host}:{port}/api"
        else:
            raise ConfigurationError(
                "Exam date API is not configured: set EXAMINATION_API_BASE_URL "
                "or both EXAMINATION_API_HOST and EXAMINATION_API_PORT"
            )

    timeout_ms = _int_env(env, "EXAMINATION_API_TIMEOUT", DEFAULT_TIMEOUT_MS)
    if timeout_ms <= 0:
        timeout_ms = DEFAULT_TIMEOUT_MS
    retry_count = _int_env(env, "EXAMINATION_API_RETRY_COUNT", DEFAULT_RETRY_COUNT)
    retry_delay_ms = _int_env(env, "EXAMINATION_API_RETRY_DELAY", DEFAULT_RETRY_DELAY_MS)
    workers = _int_env(env, "EXAMINATION_API_BATCH_WORKERS", DEFAULT_BATCH_WORKERS)

    return ExamDateLookupConfig(
        base_url=base_url,
        timeout=timeout_ms / 1000.0,
        retry_count=retry_count,
        retry_delay=retry_delay_ms / 1000.0,
        batch_workers=workers,
    )

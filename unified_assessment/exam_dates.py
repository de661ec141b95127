"""
Exam date lookup against the third-party examination system.

The examination system assigns each visit a study id and knows on which day
the visit took place. It is reached over HTTP:

    POST {base_url}/get_tjrq   {"studyId": "..."}
    ->  {"code": 200, "data": "YYYY-MM-DD HH:mm:ss"}

Any other code, a transport error or a timeout is a failed attempt. Attempts
are repeated up to `retry_count` times with a fixed delay in between; when
they are exhausted the lookup returns None. Callers decide what to do without
a date, so expected failures never raise out of this module.
"""

from __future__ import annotations

import re
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

import requests
from requests.adapters import HTTPAdapter
from dateutil import parser as date_parser

from .config import (
    DEPARTMENT_DATE_FIELDS,
    DEPARTMENT_DATE_LABELS,
    ExamDateLookupConfig,
)
from .logging_config import get_logger

logger = get_logger(__name__)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")

USER_AGENT = "HealthManagementSystem/1.0"
HEALTH_CHECK_STUDY_ID = "TEST_HEALTH_CHECK"


class ExamDateLookupError(RuntimeError):
    """One lookup attempt failed (transport error or non-success envelope)."""


def is_valid_date_format(value: Any) -> bool:
    """True for strings shaped exactly `YYYY-MM-DD HH:mm:ss` that name a real instant."""
    if not value or not isinstance(value, str):
        return False
    if not _DATE_RE.match(value):
        return False
    try:
        datetime.strptime(value, DATE_FORMAT)
    except ValueError:
        return False
    return True


def normalize_for_storage(value: Any) -> Optional[str]:
    """
    Coerce a date string into `YYYY-MM-DD HH:mm:ss`.

    Already-canonical strings come back unchanged; anything else is run
    through a lenient parser and reformatted. Unparseable input gives None.
    """
    if not value:
        return None
    if is_valid_date_format(value):
        return value
    if isinstance(value, datetime):
        return value.strftime(DATE_FORMAT)
    try:
        parsed = date_parser.parse(str(value))
    except (ValueError, OverflowError) as e:
        logger.debug("Unparseable date string", value=value, error=str(e))
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed.strftime(DATE_FORMAT)


def date_part(value: str) -> str:
    """`2024-03-05 08:30:00` -> `2024-03-05`."""
    return value.strip().split(" ")[0].split("T")[0]


def date_field_for_department(department_type: str) -> str:
    return DEPARTMENT_DATE_FIELDS.get(department_type, "CheckDate")


def date_display_name_for_department(department_type: str) -> str:
    return DEPARTMENT_DATE_LABELS.get(department_type, "体检日期")


class ExamDateResolver:
    """
    Client for the exam date lookup service.

    Construct once at application start-up and share the instance; it owns a
    `requests.Session` whose connection pool is sized to `batch_workers`, so
    batch lookups on worker threads do not queue for or discard connections.
    """

    def __init__(
        self,
        config: ExamDateLookupConfig,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        if session is None:
            session = requests.Session()
            # batch workers share this session; one pooled connection each
            adapter = HTTPAdapter(
                pool_connections=1, pool_maxsize=config.batch_workers
            )
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self._session = session
        self._session.headers.update(
            {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        )
        self._sleep = sleep
        logger.info(
            "Exam date resolver initialized",
            api_url=config.base_url,
            timeout_s=config.timeout,
            retry_count=config.retry_count,
            retry_delay_s=config.retry_delay,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url}/get_tjrq"

    def close(self) -> None:
        self._session.close()

    def _call_api(self, study_id: str) -> Dict[str, Any]:
        resp = self._session.post(
            self.endpoint,
            json={"studyId": study_id},
            timeout=self.config.timeout,
        )
        resp.raise_for_status()
        payload = resp.json()
        if not isinstance(payload, dict):
            raise ExamDateLookupError(f"Unexpected response body: {payload!r}")
        return payload

    def resolve_date(self, study_id: Optional[str]) -> Optional[str]:
        """
        Look up the visit date for an exam id.

        Returns the date string as sent by the service (normally
        `YYYY-MM-DD HH:mm:ss`), or None when the id is empty, unknown, or the
        service could not be reached within `retry_count` attempts.
        """
        if not study_id:
            logger.warning("Exam date lookup skipped: empty exam id")
            return None

        attempts = self.config.retry_count
        for attempt in range(1, attempts + 1):
            try:
                payload = self._call_api(study_id)
                code = payload.get("code")
                if code != 200:
                    raise ExamDateLookupError(f"API returned code {code!r}")
                exam_date = payload.get("data")
                if not exam_date:
                    logger.warning("No exam date on record", medical_exam_id=study_id)
                    return None
                logger.info("Exam date resolved", medical_exam_id=study_id, exam_date=exam_date)
                return str(exam_date)
            except (requests.RequestException, ValueError, ExamDateLookupError) as e:
                logger.warning(
                    "Exam date lookup attempt failed",
                    medical_exam_id=study_id,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                )
                if attempt < attempts:
                    self._sleep(self.config.retry_delay)

        logger.error("Exam date lookup gave up", medical_exam_id=study_id, attempts=attempts)
        return None

    def resolve_dates_batch(self, study_ids: Iterable[str]) -> Dict[str, str]:
        """
        Resolve many exam ids concurrently.

        Ids that cannot be resolved are left out of the result; the batch as a
        whole never fails because one id did.
        """
        if study_ids is None or isinstance(study_ids, str):
            return {}
        unique_ids = [sid for sid in dict.fromkeys(study_ids) if sid]
        if not unique_ids:
            return {}

        logger.info("Batch exam date lookup", count=len(unique_ids))
        workers = min(self.config.batch_workers, len(unique_ids))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            dates = list(pool.map(self.resolve_date, unique_ids))

        results = {sid: d for sid, d in zip(unique_ids, dates) if d}
        logger.info("Batch exam date lookup finished", requested=len(unique_ids), resolved=len(results))
        return results

    def health_check(self) -> Dict[str, Any]:
        """Probe the service once, without retries."""
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            self._call_api(HEALTH_CHECK_STUDY_ID)
        except (requests.RequestException, ValueError, ExamDateLookupError) as e:
            return {
                "status": "unhealthy",
                "api_url": self.config.base_url,
                "message": f"Exam date service unavailable: {e}",
                "timestamp": timestamp,
            }
        return {
            "status": "healthy",
            "api_url": self.config.base_url,
            "message": "Exam date service reachable",
            "timestamp": timestamp,
        }

    # Kept on the instance so callers holding only the resolver can use them.
    is_valid_date_format = staticmethod(is_valid_date_format)
    normalize_for_storage = staticmethod(normalize_for_storage)

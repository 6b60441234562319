from __future__ import annotations

import json
import time
from typing import Any, Callable, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from . import logging as resume_logging
from .errors import JobFailedError, PollTimeoutError, WorkbenchError
from .models import JobStatus, TailorOutput, TailorStatus

DEFAULT_POLL_INTERVAL_S = 3.0
DEFAULT_POLL_TIMEOUT_S = 300.0

LOGGER = resume_logging.get_logger("poller")


class TailorClientError(WorkbenchError):
    status_code = 502


def poll_for_result(
    fetch_status: Callable[[str], TailorStatus],
    job_id: str,
    *,
    interval_s: float = DEFAULT_POLL_INTERVAL_S,
    timeout_s: float = DEFAULT_POLL_TIMEOUT_S,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> TailorOutput:
    """Poll a tailor job until it reaches a terminal status.

    The status is checked before every wait and once more when the deadline
    passes, so a job finishing right at the deadline is still reported. A
    timeout only stops the polling; the job itself keeps running.
    """
    deadline = clock() + timeout_s
    polls = 0
    while True:
        status = fetch_status(job_id)
        polls += 1
        if status.status == JobStatus.complete:
            if status.output is None:
                raise JobFailedError("Tailor job completed without output", name="MissingOutput")
            return status.output
        if status.status in (JobStatus.errored, JobStatus.terminated):
            if status.error is not None:
                raise JobFailedError(status.error.message, name=status.error.name)
            raise JobFailedError(f"Tailor job {status.status.value}", name="JobFailed")
        now = clock()
        if now >= deadline:
            resume_logging.log_event(
                LOGGER, "tailor_poll_timeout", {"job_id": job_id, "polls": polls}
            )
            raise PollTimeoutError(f"Tailor job {job_id} did not finish within {timeout_s}s")
        sleep(min(interval_s, deadline - now))


class TailorClient:
    def __init__(self, base_url: str, timeout_s: float = 30.0) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.timeout_s = timeout_s

    def start(
        self,
        resume: Dict[str, Any],
        job_description: str,
        master_profile: Optional[Dict[str, Any]] = None,
    ) -> str:
        body: Dict[str, Any] = {"resume": resume, "jobDescription": job_description}
        if master_profile is not None:
            body["masterProfile"] = master_profile
        payload = _request_json(
            f"{self.base_url}/tailor", method="POST", body=body, timeout_s=self.timeout_s
        )
        job_id = payload.get("jobId") if isinstance(payload, dict) else None
        if not isinstance(job_id, str) or not job_id:
            raise TailorClientError("Tailor service returned no job id")
        return job_id

    def status(self, job_id: str) -> TailorStatus:
        url = f"{self.base_url}/tailor/status?{urlencode({'id': job_id})}"
        payload = _request_json(url, timeout_s=self.timeout_s)
        return TailorStatus.model_validate(payload)

    def tailor(
        self,
        resume: Dict[str, Any],
        job_description: str,
        master_profile: Optional[Dict[str, Any]] = None,
        *,
        interval_s: float = DEFAULT_POLL_INTERVAL_S,
        timeout_s: float = DEFAULT_POLL_TIMEOUT_S,
    ) -> TailorOutput:
        job_id = self.start(resume, job_description, master_profile)
        return poll_for_result(self.status, job_id, interval_s=interval_s, timeout_s=timeout_s)


def _request_json(
    url: str,
    *,
    method: str = "GET",
    body: Optional[Dict[str, Any]] = None,
    timeout_s: float = 30.0,
) -> Any:
    data = None
    headers = {}
    if body is not None:
        data = json.dumps(body).encode("utf-8")
        headers["Content-Type"] = "application/json"
    request = Request(url, data=data, headers=headers, method=method)
    try:
        with urlopen(request, timeout=timeout_s) as response:
            raw = response.read().decode("utf-8")
    except HTTPError as exc:
        detail = exc.read().decode("utf-8") if exc.fp else str(exc)
        raise TailorClientError(_error_detail(detail), status_code=exc.code) from exc
    except (URLError, TimeoutError) as exc:
        raise TailorClientError(str(exc)) from exc
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise TailorClientError("Invalid JSON response") from exc


def _error_detail(raw: str) -> str:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return raw
    if isinstance(payload, dict):
        detail = payload.get("detail") or payload.get("error")
        if isinstance(detail, str):
            return detail
    return raw

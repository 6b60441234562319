"""Durable two-step tailoring workflow.

A tailor job runs ``call-generation`` then ``parse-result``. Each step's
output is written to the job store before the next step starts, so a job
that is re-run (worker restart, redelivered stream message) replays the
recorded outputs instead of paying for another model call.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from prometheus_client import Counter

from . import logging as resume_logging
from . import prompts, schemas, state_machine
from .config import env_float, env_int, parse_optional_int
from .errors import JobNotFoundError, UnparseableOutputError
from .extraction import parse_model_json
from .generation import GenerationClient, truncate_text
from .highlights import diff_highlights
from .job_store import JobStore
from .models import (
    ENTRY_SECTIONS,
    JobError,
    JobStatus,
    StepRecord,
    TailorJob,
    TailorOutput,
)
from .reconcile import reconcile_document

CALL_GENERATION = "call-generation"
PARSE_RESULT = "parse-result"

_RESUME_KEYS = ("updatedResume", "tailoredResume", "resume")
_SECTION_KEYS = {"contact", "summary", "sectionOrder", "skills", *ENTRY_SECTIONS}
_CHANGE_FIELDS = ("section", "change", "why", "coachingNote")

TAILOR_RESUME_CHAR_CAP = 24000
TAILOR_JOB_DESCRIPTION_CHAR_CAP = 8000
TAILOR_MASTER_PROFILE_CHAR_CAP = 16000
DEFAULT_STEP_TIMEOUT_S = 600.0

LOGGER = resume_logging.get_logger("workflow")

tailor_step_attempts_total = Counter(
    "tailor_step_attempts_total", "Workflow step attempts", ["step"]
)
tailor_step_failures_total = Counter(
    "tailor_step_failures_total", "Workflow step attempt failures", ["step"]
)
tailor_jobs_finished_total = Counter(
    "tailor_jobs_finished_total", "Tailor jobs reaching a terminal status", ["status"]
)


@dataclass
class RetryPolicy:
    limit: int = 1
    delay_s: float = 5.0
    backoff: str = "linear"

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        if self.backoff == "constant":
            return self.delay_s
        if self.backoff == "exponential":
            return self.delay_s * (2 ** (attempt - 1))
        return self.delay_s * attempt

    def total_delay(self) -> float:
        return sum(self.delay_for(attempt) for attempt in range(1, self.limit + 1))


NO_RETRY = RetryPolicy(limit=0, delay_s=0.0)


class TailorWorkflow:
    def __init__(
        self,
        store: JobStore,
        client: GenerationClient,
        retry_policy: Optional[RetryPolicy] = None,
        *,
        max_output_tokens: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_output_tokens = max_output_tokens
        self.sleep = sleep

    def max_run_seconds(self) -> float:
        """Longest one run can take: every generation attempt times out and every backoff is slept."""
        timeout_s = getattr(self.client.provider, "timeout_s", None) or DEFAULT_STEP_TIMEOUT_S
        return (self.retry_policy.limit + 1) * timeout_s + self.retry_policy.total_delay()

    def run(self, job_id: str) -> TailorJob:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        if state_machine.is_terminal(job.status):
            resume_logging.log_event(
                LOGGER, "tailor_job_skipped", {"job_id": job_id, "status": job.status.value}
            )
            return job
        if job.status != JobStatus.running:
            self.store.set_status(job_id, JobStatus.running)
        resume_logging.log_event(LOGGER, "tailor_job_started", {"job_id": job_id})

        try:
            raw_text = self._run_step(
                job, CALL_GENERATION, lambda: self._call_generation(job), self.retry_policy
            )
            output = self._run_step(
                job, PARSE_RESULT, lambda: self._parse_result(job, raw_text), NO_RETRY
            )
        except Exception as exc:
            error = JobError(name=type(exc).__name__, message=_error_message(exc))
            self.store.set_status(job_id, JobStatus.errored, error=error)
            tailor_jobs_finished_total.labels(status=JobStatus.errored.value).inc()
            resume_logging.log_event(
                LOGGER,
                "tailor_job_errored",
                {"job_id": job_id, "error_type": error.name, "error": error.message},
            )
            return self.store.get_job(job_id) or job

        self.store.set_status(
            job_id, JobStatus.complete, output=TailorOutput.model_validate(output)
        )
        tailor_jobs_finished_total.labels(status=JobStatus.complete.value).inc()
        resume_logging.log_event(LOGGER, "tailor_job_completed", {"job_id": job_id})
        return self.store.get_job(job_id) or job

    def _run_step(
        self,
        job: TailorJob,
        name: str,
        action: Callable[[], Any],
        policy: RetryPolicy,
    ) -> Any:
        recorded = self.store.get_step(job.id, name)
        if recorded is not None:
            resume_logging.log_event(
                LOGGER, "tailor_step_replayed", {"job_id": job.id, "step": name}
            )
            return recorded.output

        attempt = 1
        while True:
            tailor_step_attempts_total.labels(step=name).inc()
            try:
                output = action()
            except Exception as exc:
                tailor_step_failures_total.labels(step=name).inc()
                resume_logging.log_event(
                    LOGGER,
                    "tailor_step_failed",
                    {
                        "job_id": job.id,
                        "step": name,
                        "attempt": attempt,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
                if attempt > policy.limit:
                    raise
                delay = policy.delay_for(attempt)
                self.store.set_status(job.id, JobStatus.waiting)
                self.sleep(delay)
                self.store.set_status(job.id, JobStatus.running)
                attempt += 1
                continue
            self.store.put_step(
                StepRecord(
                    job_id=job.id,
                    name=name,
                    output=output,
                    attempts=attempt,
                    completed_at=datetime.now(timezone.utc),
                )
            )
            resume_logging.log_event(
                LOGGER,
                "tailor_step_recorded",
                {"job_id": job.id, "step": name, "attempt": attempt},
            )
            return output

    def _call_generation(self, job: TailorJob) -> str:
        params = job.params
        master_json = prompts.compact_json(params.masterProfile) if params.masterProfile else ""
        messages = prompts.build_tailor_messages(
            truncate_text(prompts.compact_json(params.resume), TAILOR_RESUME_CHAR_CAP),
            truncate_text(params.jobDescription.strip(), TAILOR_JOB_DESCRIPTION_CHAR_CAP),
            truncate_text(master_json, TAILOR_MASTER_PROFILE_CHAR_CAP),
        )
        return self.client.generate(
            prompts.TAILOR_INSTRUCTION, messages, max_output_tokens=self.max_output_tokens
        )

    def _parse_result(self, job: TailorJob, raw_text: str) -> Dict[str, Any]:
        parsed = parse_model_json(raw_text)
        if not isinstance(parsed, dict):
            raise UnparseableOutputError("tailored_resume_invalid", raw_text=raw_text)
        proposed = _resolve_proposed_resume(parsed)
        if proposed is None:
            raise UnparseableOutputError("tailored_resume_missing", raw_text=raw_text)
        base = reconcile_document(job.params.resume, {})
        document = reconcile_document(base, proposed, preserve_cardinality=True)
        output = TailorOutput(
            document=document,
            highlights=diff_highlights(base, document),
            changes=schemas.filter_valid("ChangeNote", _normalize_changes(parsed.get("changes"))),
        )
        return output.model_dump(mode="json")


def _resolve_proposed_resume(parsed: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    for key in _RESUME_KEYS:
        candidate = parsed.get(key)
        if isinstance(candidate, dict):
            return candidate
    if _SECTION_KEYS & set(parsed):
        return parsed
    return None


def _normalize_changes(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    normalized: List[Dict[str, Any]] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        if "coachingNote" not in item and "coaching_note" in item:
            item = {**item, "coachingNote": item["coaching_note"]}
        note = {key: item[key] for key in _CHANGE_FIELDS if key in item}
        if note.get("coachingNote") is None:
            note.pop("coachingNote", None)
        normalized.append(note)
    return normalized


def _error_message(exc: Exception) -> str:
    detail = getattr(exc, "detail", None)
    if isinstance(detail, str) and detail:
        return detail
    return str(exc) or type(exc).__name__


def retry_policy_from_env() -> RetryPolicy:
    return RetryPolicy(
        limit=env_int("TAILOR_RETRY_LIMIT", 1),
        delay_s=env_float("TAILOR_RETRY_DELAY_S", 5.0),
    )


def workflow_from_env(store: JobStore, client: GenerationClient) -> TailorWorkflow:
    return TailorWorkflow(
        store,
        client,
        retry_policy_from_env(),
        max_output_tokens=parse_optional_int(os.getenv("TAILOR_MAX_OUTPUT_TOKENS")),
    )

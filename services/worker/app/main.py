from __future__ import annotations

import json
import os
import time
import uuid

import redis
from prometheus_client import Counter

from libs.resume_ai import events, generation, job_store, workflow
from libs.resume_ai import logging as resume_logging
from libs.resume_ai.config import parse_optional_int
from libs.resume_ai.errors import JobNotFoundError

resume_logging.configure_logging("worker")
LOGGER = resume_logging.get_logger("worker")

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
WORKER_RECOVER_INTERVAL_S = float(os.getenv("WORKER_RECOVER_INTERVAL_S", "60"))
WORKER_RECOVER_MARGIN_S = float(os.getenv("WORKER_RECOVER_MARGIN_S", "60"))

redis_client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
store = job_store.create_job_store_from_env()
tailor_workflow = workflow.workflow_from_env(store, generation.client_from_env())


def recover_idle_ms(flow: workflow.TailorWorkflow) -> int:
    """Idle time before a pending entry is reclaimed.

    Never shorter than one full run of ``flow``, so an entry still being
    worked on is not handed to a second consumer mid-generation.
    """
    derived = int((flow.max_run_seconds() + WORKER_RECOVER_MARGIN_S) * 1000)
    configured = parse_optional_int(os.getenv("WORKER_RECOVER_IDLE_MS"))
    return max(configured or 0, derived)


WORKER_RECOVER_IDLE_MS = recover_idle_ms(tailor_workflow)

worker_events_handled_total = Counter(
    "worker_events_handled_total", "Job events handled by the worker", ["outcome"]
)
worker_recovered_events_total = Counter(
    "worker_recovered_events_total", "Stalled job events reclaimed by the worker"
)
worker_loop_errors_total = Counter("worker_loop_errors_total", "Worker consume loop errors")


def handle_event(data: dict[str, str]) -> None:
    """Run the workflow for one ``tailor.job_created`` stream entry.

    Exceptions from the store or the runner propagate so the entry stays
    pending and is reclaimed later; step failures are already recorded on
    the job by the workflow itself.
    """
    envelope = json.loads(data.get("data") or "{}")
    if envelope.get("type") not in events.JOB_EVENTS:
        worker_events_handled_total.labels(outcome="ignored").inc()
        return
    payload = envelope.get("payload") or {}
    job_id = envelope.get("job_id") or payload.get("job_id")
    if not job_id:
        worker_events_handled_total.labels(outcome="ignored").inc()
        return
    try:
        job = tailor_workflow.run(job_id)
    except JobNotFoundError:
        resume_logging.log_event(LOGGER, "tailor_job_missing", {"job_id": job_id})
        worker_events_handled_total.labels(outcome="missing").inc()
        return
    worker_events_handled_total.labels(outcome=job.status.value).inc()


def _recover_pending_events(local_redis: redis.Redis, group: str, consumer: str) -> None:
    try:
        res = local_redis.xautoclaim(
            events.TAILOR_JOB_STREAM,
            group,
            consumer,
            min_idle_time=WORKER_RECOVER_IDLE_MS,
            start_id="0-0",
            count=50,
        )
        _, messages, *rest = res
        if rest:
            resume_logging.log_event(
                LOGGER, "worker_recover_deleted_ids", {"deleted_ids": rest[0]}
            )
    except Exception:
        LOGGER.exception("worker_recover_error")
        return
    for message_id, data in messages or []:
        try:
            handle_event(data)
            local_redis.xack(events.TAILOR_JOB_STREAM, group, message_id)
            worker_recovered_events_total.inc()
        except Exception:
            LOGGER.exception("worker_recover_handle_error", message_id=message_id)


def run() -> None:
    group = events.TAILOR_JOB_GROUP
    consumer = str(uuid.uuid4())
    try:
        redis_client.xgroup_create(events.TAILOR_JOB_STREAM, group, id="0-0", mkstream=True)
    except redis.ResponseError:
        pass
    resume_logging.log_event(LOGGER, "worker_started", {"consumer": consumer})
    last_recovery = 0.0
    while True:
        try:
            if time.monotonic() - last_recovery >= WORKER_RECOVER_INTERVAL_S:
                _recover_pending_events(redis_client, group, consumer)
                last_recovery = time.monotonic()
            messages = redis_client.xreadgroup(
                group, consumer, {events.TAILOR_JOB_STREAM: ">"}, count=1, block=1000
            )
            for _, entries in messages or []:
                for message_id, data in entries:
                    try:
                        handle_event(data)
                    except Exception:
                        LOGGER.exception("worker_handle_error", message_id=message_id)
                        continue
                    redis_client.xack(events.TAILOR_JOB_STREAM, group, message_id)
        except Exception:
            LOGGER.exception("worker_loop_error")
            worker_loop_errors_total.inc()
            time.sleep(1)


if __name__ == "__main__":
    run()

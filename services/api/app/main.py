from __future__ import annotations

import os
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import redis
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import Counter, make_asgi_app

from libs.resume_ai import events, fast_path, generation, job_store, models, workflow
from libs.resume_ai import logging as resume_logging
from libs.resume_ai.config import parse_optional_int
from libs.resume_ai.errors import (
    JobCreationError,
    JobNotFoundError,
    UnparseableOutputError,
    WorkbenchError,
)

resume_logging.configure_logging("api")
LOGGER = resume_logging.get_logger("api")

app = FastAPI(title="Resume Workbench API")

cors_origins = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
TAILOR_DISPATCH_MODE = os.getenv("TAILOR_DISPATCH_MODE", "thread").strip().lower()
JOB_RECOVERY_ENABLED = os.getenv("JOB_RECOVERY_ENABLED", "true").lower() == "true"
CHAT_MAX_OUTPUT_TOKENS = parse_optional_int(os.getenv("CHAT_MAX_OUTPUT_TOKENS")) or 2048
PARSE_MAX_OUTPUT_TOKENS = parse_optional_int(os.getenv("PARSE_MAX_OUTPUT_TOKENS")) or 3000

redis_client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
store = job_store.create_job_store_from_env()
generation_client = generation.client_from_env()
tailor_workflow = workflow.workflow_from_env(store, generation_client)

tailor_jobs_created_total = Counter("tailor_jobs_created_total", "Tailor jobs created")
tailor_dispatch_errors_total = Counter(
    "tailor_dispatch_errors_total", "Tailor jobs that could not be dispatched", ["mode"]
)


@app.on_event("startup")
def _startup() -> None:
    if JOB_RECOVERY_ENABLED:
        _recover_jobs()


@app.exception_handler(WorkbenchError)
def _workbench_error_handler(request: Request, exc: WorkbenchError) -> JSONResponse:
    if isinstance(exc, UnparseableOutputError):
        return JSONResponse(
            status_code=exc.status_code, content={"error": exc.detail, "raw": exc.raw_text}
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/tailor", response_model=models.TailorCreated)
def create_tailor_job(request: models.TailorCreate) -> models.TailorCreated:
    if not request.resume or not (request.jobDescription or "").strip():
        raise HTTPException(status_code=400, detail="resume and jobDescription are required")
    params = models.TailorParams(
        resume=request.resume,
        jobDescription=request.jobDescription,
        masterProfile=request.masterProfile,
    )
    try:
        job = store.create_job(params)
    except Exception as exc:
        raise JobCreationError(f"Failed to start tailor workflow: {exc}") from exc
    try:
        _dispatch_job(job.id)
    except Exception as exc:
        tailor_dispatch_errors_total.labels(mode=TAILOR_DISPATCH_MODE).inc()
        store.set_status(
            job.id,
            models.JobStatus.errored,
            error=models.JobError(name=type(exc).__name__, message=str(exc)),
        )
        raise JobCreationError(f"Failed to start tailor workflow: {exc}") from exc
    tailor_jobs_created_total.inc()
    resume_logging.log_event(
        LOGGER, "tailor_job_created", {"job_id": job.id, "dispatch_mode": TAILOR_DISPATCH_MODE}
    )
    return models.TailorCreated(jobId=job.id)


@app.get("/tailor/status")
def get_tailor_status(id: Optional[str] = None) -> dict[str, Any]:
    if not id:
        raise HTTPException(status_code=400, detail="id is required")
    job = store.get_job(id)
    if job is None:
        raise JobNotFoundError(f"Job not found: {id}")
    # output only once complete, error only once failed
    body: dict[str, Any] = {"status": job.status.value}
    if job.status == models.JobStatus.complete and job.output is not None:
        body["output"] = job.output.model_dump(mode="json")
    elif job.status in (models.JobStatus.errored, models.JobStatus.terminated):
        error = job.error or models.JobError(
            name="JobFailed", message=f"Tailor job {job.status.value}"
        )
        body["error"] = error.model_dump()
    return body


@app.post("/parse", response_model=models.ParseResponse)
def parse_resume(request: models.ParseRequest) -> models.ParseResponse:
    document = fast_path.structure_resume(
        request.text, generation_client, max_output_tokens=PARSE_MAX_OUTPUT_TOKENS
    )
    return models.ParseResponse(resume=document)


@app.post("/chat", response_model=models.ChatResponse)
def chat(request: models.ChatRequest) -> models.ChatResponse:
    return fast_path.chat_turn(
        request.messages,
        request.resume,
        request.jobDescription,
        request.bio,
        generation_client,
        max_output_tokens=CHAT_MAX_OUTPUT_TOKENS,
    )


def _dispatch_job(job_id: str) -> None:
    if TAILOR_DISPATCH_MODE == "stream":
        _emit_job_created(job_id)
        return
    thread = threading.Thread(target=_run_job, args=(job_id,), daemon=True)
    thread.start()


def _emit_job_created(job_id: str) -> None:
    envelope = models.EventEnvelope(
        type="tailor.job_created",
        version="1",
        occurred_at=datetime.now(timezone.utc),
        correlation_id=str(uuid.uuid4()),
        job_id=job_id,
        payload={"job_id": job_id},
    )
    redis_client.xadd(events.TAILOR_JOB_STREAM, {"data": envelope.model_dump_json()})


def _recover_jobs() -> None:
    if TAILOR_DISPATCH_MODE == "stream":
        # pending stream entries are reclaimed by the worker
        return
    for job in store.list_unfinished():
        resume_logging.log_event(
            LOGGER, "tailor_job_recovered", {"job_id": job.id, "status": job.status.value}
        )
        _dispatch_job(job.id)


def _run_job(job_id: str) -> Any:
    try:
        return tailor_workflow.run(job_id)
    except Exception:
        LOGGER.exception("tailor_job_run_error", job_id=job_id)
        return None

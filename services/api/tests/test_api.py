import json
import os

import pytest
from fastapi.testclient import TestClient

os.environ["JOB_STORE_BACKEND"] = "memory"
os.environ["LLM_PROVIDER"] = "mock"
os.environ["TAILOR_DISPATCH_MODE"] = "thread"

from services.api.app import main  # noqa: E402
from libs.resume_ai import models  # noqa: E402
from libs.resume_ai.llm_provider import LLMProvider, LLMResponse  # noqa: E402

client = TestClient(main.app)

RESUME = {
    "contact": {"name": "Jane Doe"},
    "summary": "Backend engineer.",
    "experience": [{"id": "e1", "company": "Acme", "bullets": ["Built APIs"]}],
}


class _FakeProvider(LLMProvider):
    def __init__(self, content: str) -> None:
        self.content = content

    def generate(self, instruction, messages, *, max_output_tokens=None):
        return LLMResponse(content=self.content)


@pytest.fixture
def provider(monkeypatch):
    fake = _FakeProvider("")
    monkeypatch.setattr(main.generation_client, "provider", fake)
    return fake


@pytest.fixture
def inline_dispatch(monkeypatch):
    dispatched = []

    def _dispatch(job_id: str) -> None:
        dispatched.append(job_id)
        main._run_job(job_id)

    monkeypatch.setattr(main, "_dispatch_job", _dispatch)
    monkeypatch.setattr(main.tailor_workflow, "sleep", lambda _: None)
    return dispatched


def test_healthz():
    assert client.get("/healthz").json() == {"status": "ok"}


def test_tailor_job_completes(provider, inline_dispatch):
    provider.content = json.dumps(
        {
            "updatedResume": {"summary": "Distributed systems engineer."},
            "changes": [{"section": "summary", "change": "Refocused", "why": "Matches JD"}],
        }
    )
    response = client.post("/tailor", json={"resume": RESUME, "jobDescription": "Distributed systems"})
    assert response.status_code == 200
    job_id = response.json()["jobId"]
    assert inline_dispatch == [job_id]

    status = client.get("/tailor/status", params={"id": job_id})
    assert status.status_code == 200
    body = status.json()
    assert body["status"] == "complete"
    assert "error" not in body
    assert body["output"]["document"]["summary"] == "Distributed systems engineer."
    assert body["output"]["document"]["experience"] == RESUME["experience"]
    assert body["output"]["highlights"] == [{"path": "summary", "changeType": "changed"}]
    assert body["output"]["changes"][0]["section"] == "summary"


def test_tailor_job_errors_on_empty_generation(provider, inline_dispatch):
    provider.content = ""
    job_id = client.post(
        "/tailor", json={"resume": RESUME, "jobDescription": "Anything"}
    ).json()["jobId"]
    body = client.get("/tailor/status", params={"id": job_id}).json()
    assert body["status"] == "errored"
    assert body["error"]["name"] == "EmptyResponseError"
    assert body["error"]["message"]
    assert "output" not in body


def test_queued_status_has_neither_output_nor_error(monkeypatch):
    monkeypatch.setattr(main, "_dispatch_job", lambda job_id: None)
    job_id = client.post("/tailor", json={"resume": RESUME, "jobDescription": "JD"}).json()["jobId"]
    assert client.get("/tailor/status", params={"id": job_id}).json() == {"status": "queued"}


@pytest.mark.parametrize(
    "payload",
    [
        {"jobDescription": "JD"},
        {"resume": {}, "jobDescription": "JD"},
        {"resume": RESUME, "jobDescription": "   "},
        {"resume": RESUME},
    ],
)
def test_tailor_rejects_missing_inputs(payload):
    assert client.post("/tailor", json=payload).status_code == 400


def test_tailor_dispatch_failure_returns_500(monkeypatch):
    def _boom(job_id: str) -> None:
        raise RuntimeError("stream unavailable")

    monkeypatch.setattr(main, "_dispatch_job", _boom)
    response = client.post("/tailor", json={"resume": RESUME, "jobDescription": "JD"})
    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to start tailor workflow: stream unavailable"


def test_tailor_status_requires_id():
    assert client.get("/tailor/status").status_code == 400


def test_tailor_status_unknown_job():
    assert client.get("/tailor/status", params={"id": "missing"}).status_code == 404


def test_parse_returns_structured_resume(provider):
    provider.content = '{"contact": {"name": "Sam"}, "skills": ["Go"]}'
    response = client.post("/parse", json={"text": "Sam - Go developer"})
    assert response.status_code == 200
    resume = response.json()["resume"]
    assert resume["contact"]["name"] == "Sam"
    assert resume["skills"][0]["skills"] == ["Go"]
    assert resume["experience"] == []


def test_parse_rejects_blank_text(provider):
    assert client.post("/parse", json={"text": " "}).status_code == 400
    assert client.post("/parse", json={}).status_code == 400


def test_parse_unparseable_returns_raw(provider):
    provider.content = "I could not read that file"
    response = client.post("/parse", json={"text": "resume"})
    assert response.status_code == 500
    assert response.json()["raw"] == "I could not read that file"
    assert response.json()["error"]


def test_parse_empty_response_is_502(provider):
    provider.content = ""
    assert client.post("/parse", json={"text": "resume"}).status_code == 502


def test_chat_applies_partial_edit(provider):
    provider.content = '{"reply": "Done.", "updatedResume": {"summary": "Short."}}'
    response = client.post(
        "/chat",
        json={"messages": [{"role": "user", "content": "shorten"}], "resume": RESUME},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["reply"] == "Done."
    assert body["updatedResume"]["summary"] == "Short."
    assert body["updatedResume"]["experience"] == RESUME["experience"]


def test_chat_empty_response_hides_raw_text(provider):
    provider.content = ""
    body = client.post(
        "/chat", json={"messages": [{"role": "user", "content": "hi"}], "resume": RESUME}
    ).json()
    assert body == {"reply": "I ran into an issue reaching the AI. Please try again.", "updatedResume": None}


def test_chat_requires_messages(provider):
    assert client.post("/chat", json={"messages": [], "resume": RESUME}).status_code == 400


def test_emit_job_created_uses_tailor_stream(monkeypatch):
    captured = []

    class _RedisStub:
        def xadd(self, stream, fields):
            captured.append((stream, json.loads(fields["data"])))

    monkeypatch.setattr(main, "redis_client", _RedisStub())
    main._emit_job_created("job-1")
    stream, envelope = captured[0]
    assert stream == "tailor.jobs"
    assert envelope["type"] == "tailor.job_created"
    assert envelope["job_id"] == "job-1"
    assert models.EventEnvelope.model_validate(envelope).payload == {"job_id": "job-1"}


def test_startup_redispatches_unfinished_jobs(monkeypatch):
    queued = main.store.create_job(models.TailorParams(resume=RESUME, jobDescription="JD"))
    running = main.store.create_job(models.TailorParams(resume=RESUME, jobDescription="JD"))
    main.store.set_status(running.id, models.JobStatus.running)
    done = main.store.create_job(models.TailorParams(resume=RESUME, jobDescription="JD"))
    main.store.set_status(done.id, models.JobStatus.running)
    main.store.set_status(done.id, models.JobStatus.errored)

    dispatched = []
    monkeypatch.setattr(main, "_dispatch_job", dispatched.append)
    with TestClient(main.app):
        pass

    assert queued.id in dispatched
    assert running.id in dispatched
    assert done.id not in dispatched


def test_stream_mode_leaves_recovery_to_worker(monkeypatch):
    main.store.create_job(models.TailorParams(resume=RESUME, jobDescription="JD"))
    dispatched = []
    monkeypatch.setattr(main, "TAILOR_DISPATCH_MODE", "stream")
    monkeypatch.setattr(main, "_dispatch_job", dispatched.append)
    main._recover_jobs()
    assert dispatched == []

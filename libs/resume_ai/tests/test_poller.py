from __future__ import annotations

import json

import pytest

from libs.resume_ai import poller as poller_module
from libs.resume_ai.errors import JobFailedError, PollTimeoutError
from libs.resume_ai.models import JobError, JobStatus, TailorOutput, TailorStatus
from libs.resume_ai.poller import TailorClient, TailorClientError, poll_for_result


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _fetcher(statuses):
    calls = {"count": 0}

    def _fetch(job_id: str) -> TailorStatus:
        index = min(calls["count"], len(statuses) - 1)
        calls["count"] += 1
        return statuses[index]

    return _fetch, calls


def test_returns_output_when_complete() -> None:
    clock = _FakeClock()
    output = TailorOutput(document={"summary": "done"})
    fetch, calls = _fetcher(
        [
            TailorStatus(status=JobStatus.running),
            TailorStatus(status=JobStatus.waiting),
            TailorStatus(status=JobStatus.complete, output=output),
        ]
    )
    result = poll_for_result(fetch, "job-1", interval_s=3, timeout_s=300, clock=clock, sleep=clock.sleep)
    assert result == output
    assert calls["count"] == 3
    assert clock.sleeps == [3, 3]


def test_times_out_only_after_deadline() -> None:
    clock = _FakeClock()
    fetch, calls = _fetcher([TailorStatus(status=JobStatus.running)])
    with pytest.raises(PollTimeoutError):
        poll_for_result(fetch, "job-1", interval_s=3, timeout_s=10, clock=clock, sleep=clock.sleep)
    assert clock.now >= 10
    assert sum(clock.sleeps) == 10
    assert calls["count"] == 5


def test_job_finishing_at_deadline_is_reported() -> None:
    clock = _FakeClock()
    output = TailorOutput(document={})
    fetch, _ = _fetcher(
        [
            TailorStatus(status=JobStatus.running),
            TailorStatus(status=JobStatus.complete, output=output),
        ]
    )
    assert poll_for_result(fetch, "j", interval_s=5, timeout_s=5, clock=clock, sleep=clock.sleep) == output


@pytest.mark.parametrize("status", [JobStatus.errored, JobStatus.terminated])
def test_failed_statuses_raise(status) -> None:
    clock = _FakeClock()
    fetch, _ = _fetcher(
        [TailorStatus(status=status, error=JobError(name="GenerationError", message="boom"))]
    )
    with pytest.raises(JobFailedError) as exc_info:
        poll_for_result(fetch, "j", clock=clock, sleep=clock.sleep)
    assert exc_info.value.detail == "boom"
    assert exc_info.value.name == "GenerationError"


def test_terminated_without_error_still_fails() -> None:
    clock = _FakeClock()
    fetch, _ = _fetcher([TailorStatus(status=JobStatus.terminated)])
    with pytest.raises(JobFailedError, match="terminated"):
        poll_for_result(fetch, "j", clock=clock, sleep=clock.sleep)


class _FakeHTTPResponse:
    def __init__(self, payload) -> None:
        self._raw = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._raw

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False


def test_tailor_client_starts_and_reads_status(monkeypatch) -> None:
    requests = []

    def _fake_urlopen(request, timeout=0):  # type: ignore[no-untyped-def]
        requests.append(request)
        if request.get_method() == "POST":
            return _FakeHTTPResponse({"jobId": "job-7"})
        return _FakeHTTPResponse({"status": "running"})

    monkeypatch.setattr(poller_module, "urlopen", _fake_urlopen)

    client = TailorClient("http://api.local/")
    assert client.start({"summary": "x"}, "JD") == "job-7"
    assert client.status("job-7").status == JobStatus.running
    assert requests[0].full_url == "http://api.local/tailor"
    assert json.loads(requests[0].data) == {"resume": {"summary": "x"}, "jobDescription": "JD"}
    assert requests[1].full_url == "http://api.local/tailor/status?id=job-7"


def test_tailor_client_requires_job_id(monkeypatch) -> None:
    monkeypatch.setattr(poller_module, "urlopen", lambda request, timeout=0: _FakeHTTPResponse({}))
    with pytest.raises(TailorClientError):
        TailorClient("http://api.local").start({"summary": "x"}, "JD")

"""Shared fixtures and in-memory collaborators for the watcher tests."""

from __future__ import annotations

import datetime as _dt
import threading
from typing import Any

import pytest

from errors import TransientIOError
from models import AnalysisRequest, AnalysisResult, BuildEvent, BuildResult, DeliveryReceipt
from retry import RetryPolicy


def make_event(job_name: str = "build-A", build_number: int = 42,
               result: BuildResult | None = BuildResult.FAILURE, branch: str | None = "main",
               source: str = "webhook") -> BuildEvent:
    return BuildEvent(
        job_name=job_name,
        build_number=build_number,
        result=result,
        timestamp=_dt.datetime(2026, 10, 17, 9, 30, tzinfo=_dt.timezone.utc),
        log_url=f"https://jenkins.example.com/job/{job_name}/{build_number}/console",
        branch=branch,
        source=source,
    )


class FakeJenkins:
    """Serves build logs from memory; can fail a set number of times first."""

    def __init__(self, log: bytes = b"", failures: int = 0):
        self.log = log
        self.failures = failures
        self.calls: list[tuple[str, int]] = []

    def get_build_log(self, job_name: str, build_number: int) -> bytes:
        self.calls.append((job_name, build_number))
        if self.failures > 0:
            self.failures -= 1
            raise TransientIOError("connection reset")
        return self.log


class FakeAnalyzer:
    """Answers every request, or raises the queued errors first."""

    def __init__(self, errors: list[Exception] | None = None):
        self.errors = list(errors or [])
        self.requests: list[AnalysisRequest] = []

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        self.requests.append(request)
        if self.errors:
            raise self.errors.pop(0)
        return AnalysisResult(
            job_name=request.job_name,
            build_number=request.build_number,
            log_url=request.log_url,
            root_cause="Unit tests failed in `test_login`",
            fix_steps=("Fix the assertion in test_login",),
            prevention=("Run tests before merging",),
            summary="Login test broke",
            result=request.result,
            branch=request.branch,
        )


class FakeTransport:
    """Records sent messages; raises *error* on every send when set."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.sent: list[tuple[Any, Any]] = []
        self.attempts = 0
        self._lock = threading.Lock()

    def send(self, target, message) -> DeliveryReceipt:
        with self._lock:
            self.attempts += 1
            if self.error is not None:
                raise self.error
            self.sent.append((target, message))
        return DeliveryReceipt(target, f"msg-{len(self.sent)}")


@pytest.fixture
def no_wait_retry() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, backoff=0, max_backoff=0, sleep=lambda _seconds: None)


@pytest.fixture
def base_env() -> dict[str, str]:
    return {
        "JENKINS_URL": "https://jenkins.example.com/",
        "JENKINS_USER": "watcher",
        "JENKINS_TOKEN": "s3cr3t-token",
        "SLACK_BOT_TOKEN": "xoxb-test",
        "WEBHOOK_SECRET": "hook-secret",
    }


@pytest.fixture
def failing_log() -> str:
    return "\n".join([
        "Started by GitHub push by octocat",
        "Building in workspace /var/lib/jenkins/workspace/build-A",
        "2026-10-17 09:29:58 | INFO | running pytest",
        "tests/test_login.py::test_login FAILED",
        "2026-10-17 09:30:01 | ERROR | collection finished",
        "E       AssertionError: expected 200, got 500",
        "Build step 'Execute shell' marked build as failure",
        "Finished: FAILURE",
    ])


@pytest.fixture
def notification_plugin_payload() -> dict[str, Any]:
    """A realistic Jenkins Notification plugin body for a finished build."""
    return {
        "name": "build-A",
        "url": "job/build-A/",
        "build": {
            "full_url": "https://jenkins.example.com/job/build-A/42/",
            "number": 42,
            "phase": "COMPLETED",
            "status": "FAILURE",
            "url": "job/build-A/42/",
            "timestamp": 1760693400000,
            "scm": {"url": "https://github.com/acme/build-a.git", "branch": "origin/main", "commit": "abc123"},
        },
    }

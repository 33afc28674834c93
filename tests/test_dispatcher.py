"""Tests for log retrieval and analysis dispatch."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from conftest import FakeAnalyzer, FakeJenkins, make_event
from dispatcher import AnalysisDispatcher
from errors import AnalysisFailed, AnalysisRejected, TransientIOError
from ingestor import normalize_event
from jenkins_client import JenkinsClient
from models import FeatureFlags


def _dispatcher(jenkins, analyzer, retry, **kwargs) -> AnalysisDispatcher:
    return AnalysisDispatcher(jenkins, analyzer, retry, **kwargs)


class TestDispatch:

    def test_successful_analysis(self, failing_log, no_wait_retry):
        jenkins = FakeJenkins(failing_log.encode())
        analyzer = FakeAnalyzer()

        result = _dispatcher(jenkins, analyzer, no_wait_retry,
                             features=FeatureFlags(security_scan=True)).dispatch(make_event())

        assert result.job_name == "build-A"
        assert result.build_number == 42
        assert jenkins.calls == [("build-A", 42)]
        request = analyzer.requests[0]
        assert request.error_hint == "E       AssertionError: expected 200, got 500"
        assert request.features.security_scan is True
        assert request.log_url == make_event().log_url

    def test_log_is_truncated(self, no_wait_retry):
        log = ("x" * 100 + "\n") * 1000
        analyzer = FakeAnalyzer()

        _dispatcher(FakeJenkins(log.encode()), analyzer, no_wait_retry,
                    log_max_bytes=2048, log_head_lines=5).dispatch(make_event())

        assert len(analyzer.requests[0].log_content.encode()) <= 2048

    def test_transient_log_fetch_is_retried(self, failing_log, no_wait_retry):
        jenkins = FakeJenkins(failing_log.encode(), failures=2)

        _dispatcher(jenkins, FakeAnalyzer(), no_wait_retry).dispatch(make_event())

        assert len(jenkins.calls) == 3

    def test_log_fetch_exhausted(self, no_wait_retry):
        jenkins = FakeJenkins(b"", failures=5)
        analyzer = FakeAnalyzer()

        with pytest.raises(AnalysisFailed, match="could not fetch build log") as exc_info:
            _dispatcher(jenkins, analyzer, no_wait_retry).dispatch(make_event())

        assert exc_info.value.attempts == 3
        assert analyzer.requests == []

    def test_permanent_log_fetch_error(self, no_wait_retry):
        class MissingBuild(FakeJenkins):
            def get_build_log(self, job_name, build_number):
                self.calls.append((job_name, build_number))
                raise requests.exceptions.HTTPError("404 Not Found")

        jenkins = MissingBuild()

        with pytest.raises(AnalysisFailed):
            _dispatcher(jenkins, FakeAnalyzer(), no_wait_retry).dispatch(make_event())
        assert len(jenkins.calls) == 1

    def test_three_timeouts_give_one_failure(self, failing_log, no_wait_retry):
        analyzer = FakeAnalyzer(errors=[TransientIOError("timed out")] * 3)
        event = make_event()

        with pytest.raises(AnalysisFailed) as exc_info:
            _dispatcher(FakeJenkins(failing_log.encode()), analyzer, no_wait_retry).dispatch(event)

        failure = exc_info.value
        assert len(analyzer.requests) == 3
        assert failure.event is event
        assert failure.attempts == 3
        assert failure.error_hint == "E       AssertionError: expected 200, got 500"

    def test_recovers_after_one_timeout(self, failing_log, no_wait_retry):
        analyzer = FakeAnalyzer(errors=[TransientIOError("timed out")])

        result = _dispatcher(FakeJenkins(failing_log.encode()), analyzer, no_wait_retry).dispatch(make_event())

        assert result.root_cause
        assert len(analyzer.requests) == 2

    def test_explicit_analyzer_error_is_not_retried(self, failing_log, no_wait_retry):
        analyzer = FakeAnalyzer(errors=[AnalysisRejected("analyzer error: model overloaded")])

        with pytest.raises(AnalysisFailed, match="model overloaded"):
            _dispatcher(FakeJenkins(failing_log.encode()), analyzer, no_wait_retry).dispatch(make_event())
        assert len(analyzer.requests) == 1


class TestFolderJobs:

    def test_log_is_fetched_from_the_nested_job_path(self, no_wait_retry):
        jenkins = JenkinsClient("https://jenkins.example.com", "watcher", "token")
        jenkins.session = MagicMock()
        jenkins.session.get.return_value.content = b"ERROR: deploy failed\n"
        event = normalize_event({
            "name": "main",
            "url": "job/repo/job/main/",
            "build": {"number": 7, "phase": "COMPLETED", "status": "FAILURE",
                      "full_url": "https://jenkins.example.com/job/repo/job/main/7/"},
        })

        log = _dispatcher(jenkins, FakeAnalyzer(), no_wait_retry).fetch_log(event)

        assert log == "ERROR: deploy failed\n"
        assert jenkins.session.get.call_args.args[0] == "https://jenkins.example.com/job/repo/job/main/7/consoleText"
        assert event.log_url == "https://jenkins.example.com/job/repo/job/main/7/console"

"""
Log retrieval and analysis dispatch for admitted build events.
"""

import logging
from typing import Protocol

from errors import AnalysisFailed, AnalysisRejected, TransientIOError
from jenkins_client import JenkinsClient
from log_analyzer import LogAnalyzer, decode_log, truncate_log
from models import AnalysisRequest, AnalysisResult, BuildEvent, FeatureFlags
from retry import RetryPolicy

logger = logging.getLogger(__name__)


class Analyzer(Protocol):
    def analyze(self, request: AnalysisRequest) -> AnalysisResult: ...


class AnalysisDispatcher:
    """Fetches a build log, trims it and asks the analyzer what went wrong.

    Any failure ends as a single AnalysisFailed so the caller can send a
    degraded notification instead.
    """

    def __init__(self, jenkins: JenkinsClient, analyzer: Analyzer, retry_policy: RetryPolicy,
                 features: FeatureFlags = FeatureFlags(), log_max_bytes: int = 64 * 1024,
                 log_head_lines: int = 50, ignore_exceptions=()):
        self.jenkins = jenkins
        self.analyzer = analyzer
        self.retry_policy = retry_policy
        self.features = features
        self.log_max_bytes = log_max_bytes
        self.log_head_lines = log_head_lines
        self.ignore_exceptions = tuple(ignore_exceptions)

    def _attempts(self) -> int:
        return self.retry_policy.max_attempts

    def fetch_log(self, event: BuildEvent) -> str:
        raw = self.retry_policy.call(self.jenkins.get_build_log, event.job_name, event.build_number)
        return decode_log(raw)

    def build_request(self, event: BuildEvent, log_content: str) -> AnalysisRequest:
        error_line, _ = LogAnalyzer.extract_exception_from_log(log_content, self.ignore_exceptions)
        return AnalysisRequest(
            job_name=event.job_name,
            build_number=event.build_number,
            result=event.result,
            log_content=truncate_log(log_content, self.log_max_bytes, self.log_head_lines),
            log_url=event.log_url,
            features=self.features,
            branch=event.branch,
            error_hint=error_line,
        )

    def dispatch(self, event: BuildEvent) -> AnalysisResult:
        """Return the analysis for *event* or raise AnalysisFailed."""
        try:
            log_content = self.fetch_log(event)
        except TransientIOError as exc:
            raise AnalysisFailed(event, f"could not fetch build log: {exc}", self._attempts()) from exc
        except Exception as exc:
            raise AnalysisFailed(event, f"could not fetch build log: {exc}", 1) from exc

        request = self.build_request(event, log_content)
        logger.info("Dispatching analysis for %s #%d (%d bytes of log, features: %s)",
                    event.job_name, event.build_number, len(request.log_content.encode('utf-8')),
                    ', '.join(request.features.enabled()) or 'none')

        try:
            result = self.retry_policy.call(self.analyzer.analyze, request)
        except TransientIOError as exc:
            raise AnalysisFailed(event, f"analyzer unavailable after {self._attempts()} attempts: {exc}",
                                 self._attempts(), request.error_hint) from exc
        except AnalysisRejected as exc:
            raise AnalysisFailed(event, str(exc), 1, request.error_hint) from exc
        except Exception as exc:
            logger.exception("Analyzer crashed on %s #%d", event.job_name, event.build_number)
            raise AnalysisFailed(event, f"analyzer error: {exc}", 1, request.error_hint) from exc

        logger.info("Analysis ready for %s #%d", event.job_name, event.build_number)
        return result

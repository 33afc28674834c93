"""
HTTP client for the external build-failure analyzer.

The analyzer is a black box: it receives one AnalysisRequest as JSON and answers
with root cause, fix steps, prevention notes and an optional summary.
"""

import logging
from typing import Optional

import requests

from errors import AnalysisRejected, TransientIOError
from models import AnalysisRequest, AnalysisResult

logger = logging.getLogger(__name__)


def _as_steps(value) -> tuple:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(line.strip() for line in value.splitlines() if line.strip())
    return tuple(str(item) for item in value if item)


class AnalysisClient:
    """Calls the analyzer endpoint with a per-request timeout."""

    def __init__(self, url: str, api_key: Optional[str] = None, timeout: float = 120):
        self.url = url
        self.timeout = timeout
        self.session = requests.Session()
        if api_key:
            self.session.headers['Authorization'] = f"Bearer {api_key}"

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        logger.debug("Requesting analysis for %s #%d (%d chars of log)",
                     request.job_name, request.build_number, len(request.log_content))
        try:
            r = self.session.post(self.url, json=request.to_payload(), timeout=self.timeout)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise TransientIOError(f"Analyzer unreachable: {e}") from e

        if r.status_code == 429 or r.status_code >= 500:
            raise TransientIOError(f"Analyzer returned HTTP {r.status_code}")

        if r.status_code >= 400:
            raise AnalysisRejected(f"analyzer rejected the request (HTTP {r.status_code})")
        try:
            data = r.json()
        except ValueError:
            raise AnalysisRejected("analyzer answered with invalid JSON") from None

        if not isinstance(data, dict):
            raise AnalysisRejected("analyzer answered with an unexpected payload")
        if data.get('error'):
            raise AnalysisRejected(f"analyzer error: {data['error']}")
        root_cause = data.get('root_cause')
        if not root_cause:
            raise AnalysisRejected("analyzer answer has no root cause")

        return AnalysisResult(
            job_name=request.job_name,
            build_number=request.build_number,
            log_url=request.log_url,
            root_cause=str(root_cause),
            fix_steps=_as_steps(data.get('fix_steps')),
            prevention=_as_steps(data.get('prevention')),
            summary=data.get('summary'),
            result=request.result,
            branch=request.branch,
        )

"""
Error taxonomy for the Jenkins build watcher.
"""

from typing import Optional


class WatcherError(Exception):
    """Base class for all watcher errors."""


class ConfigurationError(WatcherError):
    """Invalid or missing configuration. Only raised at startup."""


class MalformedEventError(WatcherError):
    """An inbound event payload is missing required fields or has the wrong types."""


class TransientIOError(WatcherError):
    """A network failure talking to Jenkins, the analyzer or a notification platform.

    These are retried with bounded exponential backoff.
    """


class DeliveryError(WatcherError):
    """A notification platform rejected a message permanently (bad channel, bad token, ...)."""


class AnalysisFailed(WatcherError):
    """Analysis could not be produced for a build."""

    def __init__(self, event, reason: str, attempts: int = 0, error_hint: Optional[str] = None):
        super().__init__(f"Analysis failed for {event.job_name} #{event.build_number}: {reason}")
        self.event = event
        self.reason = reason
        self.attempts = attempts
        self.error_hint = error_hint


class AnalysisRejected(WatcherError):
    """The analyzer answered, but with an explicit error or an unusable payload. Not retried."""

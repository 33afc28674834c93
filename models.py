"""
Data records passed between the watcher stages.

Every record here is immutable: a stage produces one and hands it to the next.
"""

import datetime as _dt
from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple, Optional, Tuple


class BuildResult(str, Enum):
    SUCCESS = 'SUCCESS'
    FAILURE = 'FAILURE'
    UNSTABLE = 'UNSTABLE'
    ABORTED = 'ABORTED'

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional['BuildResult']:
        """Map a Jenkins result string to a BuildResult, or None when unknown."""
        if value is None:
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class Platform(str, Enum):
    SLACK = 'slack'
    TEAMS = 'teams'


class DedupKey(NamedTuple):
    job_name: str
    build_number: int


@dataclass(frozen=True)
class BuildEvent:
    """One completed Jenkins build."""

    job_name: str
    build_number: int
    result: Optional[BuildResult]
    timestamp: _dt.datetime
    log_url: str
    branch: Optional[str] = None
    source: str = 'webhook'

    @property
    def dedup_key(self) -> DedupKey:
        return DedupKey(self.job_name, self.build_number)


@dataclass(frozen=True)
class FeatureFlags:
    detailed_analysis: bool = True
    security_scan: bool = False
    performance_metrics: bool = False

    def enabled(self) -> Tuple[str, ...]:
        names = []
        if self.detailed_analysis:
            names.append('detailed_analysis')
        if self.security_scan:
            names.append('security_scan')
        if self.performance_metrics:
            names.append('performance_metrics')
        return tuple(names)


@dataclass(frozen=True)
class AnalysisRequest:
    """What gets sent to the analyzer for one failed build."""

    job_name: str
    build_number: int
    result: Optional[BuildResult]
    log_content: str
    log_url: str
    features: FeatureFlags
    branch: Optional[str] = None
    error_hint: Optional[str] = None

    def to_payload(self) -> dict:
        return {
            'job_name': self.job_name,
            'build_number': self.build_number,
            'result': self.result.value if self.result else None,
            'branch': self.branch,
            'log_url': self.log_url,
            'log': self.log_content,
            'error_hint': self.error_hint,
            'features': {
                'detailed_analysis': self.features.detailed_analysis,
                'security_scan': self.features.security_scan,
                'performance_metrics': self.features.performance_metrics,
            },
        }


@dataclass(frozen=True)
class AnalysisResult:
    """Diagnosis of one failed build."""

    job_name: str
    build_number: int
    log_url: str
    root_cause: str
    fix_steps: Tuple[str, ...] = ()
    prevention: Tuple[str, ...] = ()
    summary: Optional[str] = None
    result: Optional[BuildResult] = None
    branch: Optional[str] = None


@dataclass(frozen=True)
class NotificationTarget:
    platform: Platform
    channel: str
    team: Optional[str] = None

    def __str__(self) -> str:
        if self.team:
            return f"{self.platform.value}:{self.team}/{self.channel}"
        return f"{self.platform.value}:{self.channel}"


@dataclass(frozen=True)
class Message:
    """Platform-neutral notification content, rendered by each notifier."""

    title: str
    text: str
    link: Optional[str] = None
    fields: Tuple[Tuple[str, str], ...] = ()
    degraded: bool = False


@dataclass(frozen=True)
class DeliveryReceipt:
    target: NotificationTarget
    message_id: Optional[str] = None


@dataclass
class DeliveryReport:
    """Outcome of fanning one message out to every target."""

    receipts: list = field(default_factory=list)
    failures: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def delivered_to(self) -> list:
        return [receipt.target for receipt in self.receipts]

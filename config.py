#!/usr/bin/env python3
"""
Configuration settings for the Jenkins build watcher.

All values come from environment variables and are parsed once, at startup,
into an immutable Settings snapshot.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Tuple

from errors import ConfigurationError
from models import FeatureFlags, NotificationTarget, Platform


class ResultFilter(str, Enum):
    FAILURE = 'failure'
    NON_SUCCESS = 'non_success'
    ANY = 'any'


_TRUE = {'1', 'true', 'yes', 'on'}
_FALSE = {'0', 'false', 'no', 'off', ''}


@dataclass(frozen=True)
class Settings:
    # Jenkins Configuration
    jenkins_url: str
    jenkins_user: str
    jenkins_token: str = field(repr=False)
    jenkins_timeout: float = 60.0

    # Filtering
    job_filter: Tuple[str, ...] = ()
    result_filter: ResultFilter = ResultFilter.FAILURE
    branch_filter: Optional[str] = None
    enable_branch_filter: bool = False

    # Deduplication
    debounce_window: float = 600.0
    dedup_sweep_interval: float = 60.0

    # Log handling
    log_max_kb: int = 64
    log_head_lines: int = 50
    ignore_exceptions: Tuple[str, ...] = ()

    # Analysis
    analysis_url: Optional[str] = None
    analysis_api_key: Optional[str] = field(default=None, repr=False)
    analysis_timeout: float = 120.0
    features: FeatureFlags = field(default_factory=FeatureFlags)

    # Retry
    max_attempts: int = 3
    retry_backoff: float = 1.0
    retry_max_backoff: float = 30.0

    # Notifications
    slack_bot_token: Optional[str] = field(default=None, repr=False)
    teams_webhook_url: Optional[str] = field(default=None, repr=False)
    targets: Tuple[NotificationTarget, ...] = ()
    enable_summary_channel: bool = False
    summary_target: Optional[NotificationTarget] = None
    notify_timeout: float = 30.0

    # Ingestion
    enable_webhook: bool = True
    webhook_host: str = '0.0.0.0'
    webhook_port: int = 8080
    webhook_secret: Optional[str] = field(default=None, repr=False)
    enable_polling: bool = False
    poll_interval: float = 60.0
    poll_backfill: bool = False
    state_file: str = '.jenkins_watch_state.json'

    # Runtime
    worker_count: int = 4
    log_level: str = 'INFO'
    log_format: str = 'console'
    metrics_port: int = 0


def _get(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    value = env.get(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _number(env: Mapping[str, str], name: str, default, cast=float, minimum=None):
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if minimum is not None and value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _list(env: Mapping[str, str], name: str) -> Tuple[str, ...]:
    raw = env.get(name, '')
    return tuple(item.strip() for item in raw.split(',') if item.strip())


def _result_filter(env: Mapping[str, str]) -> ResultFilter:
    raw = _get(env, 'RESULT_FILTER')
    if raw is None:
        # FAILURE_ONLY is the older switch; RESULT_FILTER wins when both are set
        return ResultFilter.FAILURE if _bool(env, 'FAILURE_ONLY', True) else ResultFilter.NON_SUCCESS
    try:
        return ResultFilter(raw.lower())
    except ValueError:
        choices = ', '.join(choice.value for choice in ResultFilter)
        raise ConfigurationError(f"RESULT_FILTER must be one of {choices}, got {raw!r}") from None


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build the Settings snapshot, raising ConfigurationError on bad input."""
    env = os.environ if environ is None else environ

    missing = [name for name in ('JENKINS_URL', 'JENKINS_USER', 'JENKINS_TOKEN') if not _get(env, name)]
    if missing:
        raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

    slack_token = _get(env, 'SLACK_BOT_TOKEN')
    teams_webhook = _get(env, 'TEAMS_WEBHOOK_URL')

    targets = []
    if slack_token:
        targets.append(NotificationTarget(Platform.SLACK, _get(env, 'SLACK_CHANNEL', '#jenkins-health')))
    if teams_webhook:
        targets.append(NotificationTarget(Platform.TEAMS, _get(env, 'TEAMS_CHANNEL', 'General'),
                                          _get(env, 'TEAMS_TEAM')))
    if not targets:
        raise ConfigurationError("No notification target configured: set SLACK_BOT_TOKEN and/or TEAMS_WEBHOOK_URL")

    enable_summary = _bool(env, 'ENABLE_SUMMARY_CHANNEL', False)
    summary_target = None
    summary_channel = _get(env, 'SUMMARY_CHANNEL')
    if enable_summary:
        if not summary_channel:
            raise ConfigurationError("ENABLE_SUMMARY_CHANNEL is set but SUMMARY_CHANNEL is empty")
        if not slack_token:
            raise ConfigurationError("SUMMARY_CHANNEL is a Slack channel and needs SLACK_BOT_TOKEN")
        summary_target = NotificationTarget(Platform.SLACK, summary_channel)

    enable_webhook = _bool(env, 'ENABLE_WEBHOOK', True)
    enable_polling = _bool(env, 'ENABLE_POLLING', False)
    webhook_secret = _get(env, 'WEBHOOK_SECRET')
    if not (enable_webhook or enable_polling):
        raise ConfigurationError("Both ENABLE_WEBHOOK and ENABLE_POLLING are off; nothing would be ingested")
    if enable_webhook and not webhook_secret:
        raise ConfigurationError("WEBHOOK_SECRET is required when ENABLE_WEBHOOK is on")

    if _bool(env, 'ENABLE_BRANCH_FILTER', False) and not _get(env, 'BRANCH_FILTER'):
        raise ConfigurationError("ENABLE_BRANCH_FILTER is on but BRANCH_FILTER is empty")

    log_format = _get(env, 'LOG_FORMAT', 'console').lower()
    if log_format not in ('console', 'json'):
        raise ConfigurationError(f"LOG_FORMAT must be 'console' or 'json', got {log_format!r}")

    log_level = _get(env, 'LOG_LEVEL', 'INFO').upper()
    if log_level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
        raise ConfigurationError(f"LOG_LEVEL {log_level!r} is not a logging level")

    jenkins_url = _get(env, 'JENKINS_URL')
    if not jenkins_url.startswith(('http://', 'https://')):
        raise ConfigurationError(f"JENKINS_URL must be an http(s) URL, got {jenkins_url!r}")

    return Settings(
        jenkins_url=jenkins_url.rstrip('/'),
        jenkins_user=_get(env, 'JENKINS_USER'),
        jenkins_token=_get(env, 'JENKINS_TOKEN'),
        jenkins_timeout=_number(env, 'JENKINS_TIMEOUT_SECONDS', 60.0, minimum=1),
        job_filter=_list(env, 'JOB_FILTER'),
        result_filter=_result_filter(env),
        branch_filter=_get(env, 'BRANCH_FILTER'),
        enable_branch_filter=_bool(env, 'ENABLE_BRANCH_FILTER', False),
        debounce_window=_number(env, 'DEBOUNCE_WINDOW_SECONDS', 600.0, minimum=1),
        dedup_sweep_interval=_number(env, 'DEDUP_SWEEP_INTERVAL_SECONDS', 60.0, minimum=1),
        log_max_kb=_number(env, 'LOG_MAX_KB', 64, cast=int, minimum=1),
        log_head_lines=_number(env, 'LOG_HEAD_LINES', 50, cast=int, minimum=0),
        ignore_exceptions=_list(env, 'IGNORE_EXCEPTIONS'),
        analysis_url=_get(env, 'ANALYSIS_URL'),
        analysis_api_key=_get(env, 'ANALYSIS_API_KEY'),
        analysis_timeout=_number(env, 'ANALYSIS_TIMEOUT_SECONDS', 120.0, minimum=1),
        features=FeatureFlags(
            detailed_analysis=_bool(env, 'ENABLE_DETAILED_ANALYSIS', True),
            security_scan=_bool(env, 'ENABLE_SECURITY_SCAN', False),
            performance_metrics=_bool(env, 'ENABLE_PERFORMANCE_METRICS', False),
        ),
        max_attempts=_number(env, 'MAX_ATTEMPTS', 3, cast=int, minimum=1),
        retry_backoff=_number(env, 'RETRY_BACKOFF_SECONDS', 1.0, minimum=0),
        retry_max_backoff=_number(env, 'RETRY_MAX_BACKOFF_SECONDS', 30.0, minimum=0),
        slack_bot_token=slack_token,
        teams_webhook_url=teams_webhook,
        targets=tuple(targets),
        enable_summary_channel=enable_summary,
        summary_target=summary_target,
        notify_timeout=_number(env, 'NOTIFY_TIMEOUT_SECONDS', 30.0, minimum=1),
        enable_webhook=enable_webhook,
        webhook_host=_get(env, 'WEBHOOK_HOST', '0.0.0.0'),
        webhook_port=_number(env, 'WEBHOOK_PORT', 8080, cast=int, minimum=1),
        webhook_secret=webhook_secret,
        enable_polling=enable_polling,
        poll_interval=_number(env, 'POLL_INTERVAL_SECONDS', 60.0, minimum=1),
        poll_backfill=_bool(env, 'POLL_BACKFILL', False),
        state_file=_get(env, 'STATE_FILE', '.jenkins_watch_state.json'),
        worker_count=_number(env, 'WORKER_COUNT', 4, cast=int, minimum=1),
        log_level=log_level,
        log_format=log_format,
        metrics_port=_number(env, 'METRICS_PORT', 0, cast=int, minimum=0),
    )

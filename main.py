#!/usr/bin/env python3
"""
Jenkins Build Watcher
=====================

A long-running service that:
1. Receives Jenkins build-completion events (webhook push and/or API polling)
2. Filters and de-duplicates them
3. Fetches and trims the build log of each failure and has it analyzed
4. Sends the diagnosis to Slack and/or Microsoft Teams

Usage:
    python main.py

Environment Variables:
    JENKINS_URL        - Jenkins base URL (required)
    JENKINS_USER       - Jenkins API user (required)
    JENKINS_TOKEN      - Jenkins API token (required)
    SLACK_BOT_TOKEN    - Slack bot token (this and/or TEAMS_WEBHOOK_URL)
    SLACK_CHANNEL      - Slack channel for notifications
    TEAMS_WEBHOOK_URL  - Teams incoming webhook URL
    WEBHOOK_SECRET     - shared secret for signed webhook deliveries

See config.py for the full list.
"""

import logging
import signal
import sys
import threading
from typing import Dict, Optional

import metrics
from analysis_client import AnalysisClient
from config import Settings, load_settings
from dedup import DedupStore
from dispatcher import AnalysisDispatcher
from errors import ConfigurationError
from filters import describe, rule_from_settings
from ingestor import EventIngestor
from jenkins_client import JenkinsClient
from log_analyzer import HeuristicAnalyzer
from logging_config import setup_logging
from models import Platform
from notification_router import NotificationRouter
from pipeline import Pipeline, WorkerPool
from poller import BuildPoller
from retry import RetryPolicy
from slack_notifier import SlackNotifier
from state_store import HighWaterMarkStore
from teams_notifier import TeamsNotifier
from webhook_server import WebhookServer, create_app

logger = logging.getLogger('jenkins_watch')


class Watcher:
    """Owns every component and the order they start and stop in."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.stop_event = threading.Event()
        self.accepting = threading.Event()

        retry_policy = RetryPolicy.from_settings(settings)
        self.jenkins = JenkinsClient(settings.jenkins_url, settings.jenkins_user, settings.jenkins_token,
                                     timeout=settings.jenkins_timeout)

        if settings.analysis_url:
            analyzer = AnalysisClient(settings.analysis_url, settings.analysis_api_key, settings.analysis_timeout)
        else:
            logger.warning("ANALYSIS_URL not set, using the built-in heuristic analyzer")
            analyzer = HeuristicAnalyzer(settings.ignore_exceptions)

        transports: Dict[Platform, object] = {}
        if settings.slack_bot_token:
            transports[Platform.SLACK] = SlackNotifier(settings.slack_bot_token, timeout=settings.notify_timeout)
        if settings.teams_webhook_url:
            transports[Platform.TEAMS] = TeamsNotifier(settings.teams_webhook_url, timeout=settings.notify_timeout)

        self.rule = rule_from_settings(settings)
        self.dedup = DedupStore(settings.debounce_window, settings.dedup_sweep_interval)
        dispatcher = AnalysisDispatcher(
            self.jenkins, analyzer, retry_policy,
            features=settings.features,
            log_max_bytes=settings.log_max_kb * 1024,
            log_head_lines=settings.log_head_lines,
            ignore_exceptions=settings.ignore_exceptions,
        )
        router = NotificationRouter(transports, settings.targets, retry_policy,
                                    summary_target=settings.summary_target,
                                    enable_summary_channel=settings.enable_summary_channel)
        self.workers = WorkerPool(Pipeline(self.rule, self.dedup, dispatcher, router), settings.worker_count)
        self.ingestor = EventIngestor(self.workers.submit, jenkins_url=settings.jenkins_url)

        self.poller: Optional[BuildPoller] = None
        self.poller_thread: Optional[threading.Thread] = None
        if settings.enable_polling:
            self.poller = BuildPoller(self.jenkins, self.ingestor, HighWaterMarkStore(settings.state_file),
                                      jobs=settings.job_filter, interval=settings.poll_interval,
                                      backfill=settings.poll_backfill)

        self.webhook: Optional[WebhookServer] = None
        if settings.enable_webhook:
            app = create_app(self.ingestor, settings.webhook_secret, self.accepting)
            self.webhook = WebhookServer(app, settings.webhook_host, settings.webhook_port, settings.log_level)

    def start(self) -> None:
        s = self.settings
        logger.info("Filter: %s", describe(self.rule))
        if s.branch_filter and not s.enable_branch_filter:
            logger.warning("BRANCH_FILTER=%s is ignored because ENABLE_BRANCH_FILTER is off", s.branch_filter)
        logger.info("Targets: %s", ', '.join(str(t) for t in s.targets))
        if s.enable_summary_channel:
            logger.info("Summary channel: %s", s.summary_target)

        self.workers.start()
        self.accepting.set()
        if self.webhook:
            self.webhook.start()
        if self.poller:
            self.poller_thread = threading.Thread(target=self.poller.run, args=(self.stop_event,),
                                                  name='poller', daemon=True)
            self.poller_thread.start()
        if s.metrics_port:
            metrics.serve(s.metrics_port)
            logger.info("Metrics on port %d", s.metrics_port)

    def wait(self) -> None:
        """Block until shutdown is requested, sweeping the dedup store meanwhile."""
        while not self.stop_event.wait(self.settings.dedup_sweep_interval):
            self.dedup.sweep()

    def request_stop(self, *_args) -> None:
        self.stop_event.set()

    def shutdown(self) -> None:
        """Stop intake first, then let the workers finish everything already queued."""
        logger.info("Shutting down: no longer accepting events")
        self.accepting.clear()
        self.stop_event.set()
        if self.webhook:
            self.webhook.stop()
        if self.poller_thread:
            self.poller_thread.join(self.settings.jenkins_timeout * 2)
        self.workers.stop()
        logger.info("All pending notifications flushed")


def main() -> int:
    """Main entry point for the Jenkins build watcher."""
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        print(f"❌ Configuration error: {exc}", file=sys.stderr)
        return 2

    setup_logging(settings.log_level, settings.log_format)
    logger.info("🚀 Starting Jenkins build watcher for %s", settings.jenkins_url)

    try:
        watcher = Watcher(settings)
    except ConfigurationError as exc:
        logger.critical("❌ Configuration error: %s", exc)
        return 2
    signal.signal(signal.SIGINT, watcher.request_stop)
    signal.signal(signal.SIGTERM, watcher.request_stop)

    watcher.start()
    watcher.wait()
    watcher.shutdown()
    logger.info("🎉 Jenkins build watcher stopped")
    return 0


if __name__ == '__main__':
    sys.exit(main())

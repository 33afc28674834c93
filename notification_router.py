"""
Fans analysis results (or degraded failure notices) out to every configured channel.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional, Protocol, Sequence

import metrics
from errors import AnalysisFailed
from formatting import Outcome, render_full, render_summary
from models import DeliveryReceipt, DeliveryReport, Message, NotificationTarget, Platform
from retry import RetryPolicy

logger = logging.getLogger(__name__)


class Transport(Protocol):
    def send(self, target: NotificationTarget, message: Message) -> DeliveryReceipt: ...


class NotificationRouter:
    """Delivers to each target independently; one target failing never affects the others."""

    def __init__(self, transports: Dict[Platform, Transport], targets: Sequence[NotificationTarget],
                 retry_policy: RetryPolicy, summary_target: Optional[NotificationTarget] = None,
                 enable_summary_channel: bool = False):
        self.transports = transports
        self.targets = tuple(targets)
        self.retry_policy = retry_policy
        self.summary_target = summary_target
        self.enable_summary_channel = enable_summary_channel

    def _send_one(self, target: NotificationTarget, message: Message) -> DeliveryReceipt:
        transport = self.transports.get(target.platform)
        if transport is None:
            raise LookupError(f"No transport configured for {target.platform.value}")
        return self.retry_policy.call(transport.send, target, message)

    def _plan(self, outcome: Outcome, targets: Sequence[NotificationTarget]):
        full = render_full(outcome)
        plan = [(target, full) for target in targets]
        if self.enable_summary_channel and self.summary_target is not None:
            plan.append((self.summary_target, render_summary(outcome)))
        return plan

    def deliver(self, outcome: Outcome, targets: Optional[Sequence[NotificationTarget]] = None) -> DeliveryReport:
        """Send *outcome* to *targets* (default: all configured) plus the summary channel when enabled."""
        plan = self._plan(outcome, self.targets if targets is None else targets)
        report = DeliveryReport()
        if not plan:
            return report

        if isinstance(outcome, AnalysisFailed):
            logger.warning("Sending degraded notification for %s #%d: %s",
                           outcome.event.job_name, outcome.event.build_number, outcome.reason)

        with ThreadPoolExecutor(max_workers=len(plan), thread_name_prefix='notify') as pool:
            futures = [(target, pool.submit(self._send_one, target, message)) for target, message in plan]
            for target, future in futures:
                try:
                    receipt = future.result()
                except Exception as exc:
                    report.failures[target] = str(exc)
                    metrics.notification_failures_total.labels(platform=target.platform.value).inc()
                    logger.error("❌ Delivery to %s failed: %s", target, exc)
                else:
                    report.receipts.append(receipt)
                    metrics.notifications_sent_total.labels(platform=target.platform.value).inc()
        return report

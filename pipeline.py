"""
The per-event pipeline (filter, dedup, dispatch, notify) and the worker pool running it.
"""

import logging
import queue
import threading
from enum import Enum
from typing import List, Optional

import metrics
from dedup import DedupStore
from dispatcher import AnalysisDispatcher
from errors import AnalysisFailed
from filters import FilterRule, evaluate
from models import BuildEvent
from notification_router import NotificationRouter

logger = logging.getLogger(__name__)

_STOP = object()


class Outcome(str, Enum):
    FILTERED = 'filtered'
    DUPLICATE = 'duplicate'
    NOTIFIED = 'notified'
    DEGRADED = 'degraded'
    ERROR = 'error'


class Pipeline:
    """Runs one event through filter -> dedup -> dispatch -> notify."""

    def __init__(self, rule: FilterRule, dedup: DedupStore, dispatcher: AnalysisDispatcher,
                 router: NotificationRouter):
        self.rule = rule
        self.dedup = dedup
        self.dispatcher = dispatcher
        self.router = router

    def process(self, event: BuildEvent) -> Outcome:
        """Handle *event*; errors stay inside this call and never reach the caller."""
        try:
            return self._process(event)
        except Exception:
            logger.exception("Pipeline error for %s #%d", event.job_name, event.build_number)
            return Outcome.ERROR

    def _process(self, event: BuildEvent) -> Outcome:
        if not evaluate(self.rule, event):
            metrics.events_filtered_total.inc()
            logger.debug("Filtered out %s #%d", event.job_name, event.build_number)
            return Outcome.FILTERED

        if not self.dedup.admit(event.dedup_key):
            metrics.events_duplicate_total.inc()
            logger.info("Duplicate event for %s #%d suppressed", event.job_name, event.build_number)
            return Outcome.DUPLICATE

        logger.info("🔴 %s #%d finished with %s, analyzing", event.job_name, event.build_number,
                    event.result.value if event.result else 'unknown result')
        try:
            outcome = self.dispatcher.dispatch(event)
        except AnalysisFailed as failure:
            metrics.analyses_failed_total.inc()
            self.router.deliver(failure)
            return Outcome.DEGRADED

        self.router.deliver(outcome)
        return Outcome.NOTIFIED


class WorkerPool:
    """Worker threads consuming a single arrival-ordered queue."""

    def __init__(self, pipeline: Pipeline, worker_count: int = 4,
                 work_queue: Optional[queue.Queue] = None):
        self.pipeline = pipeline
        self.worker_count = worker_count
        self.queue = work_queue if work_queue is not None else queue.Queue()
        self._threads: List[threading.Thread] = []

    def submit(self, event: BuildEvent) -> None:
        self.queue.put(event)

    def _work(self) -> None:
        while True:
            item = self.queue.get()
            try:
                if item is _STOP:
                    return
                self.pipeline.process(item)
            finally:
                self.queue.task_done()

    def start(self) -> None:
        for i in range(self.worker_count):
            thread = threading.Thread(target=self._work, name=f'worker-{i}', daemon=True)
            thread.start()
            self._threads.append(thread)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Drain queued events, then stop every worker.

        Callers must stop the producers first; anything queued before this call
        is still processed.
        """
        for _ in self._threads:
            self.queue.put(_STOP)
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []

"""
Poll mode: periodically asks Jenkins for builds completed since the last run.
"""

import logging
import threading
from typing import List, Optional, Sequence

import requests

from errors import MalformedEventError, TransientIOError
from ingestor import EventIngestor
from jenkins_client import BuildSummary, JenkinsClient
from state_store import HighWaterMarkStore

logger = logging.getLogger(__name__)


class BuildPoller:
    """Emits one event per newly completed build, per job, in ascending build order.

    The high-water mark of a job only moves after its event was handed to the
    ingestor, so a restart resumes right after the last build handed off.
    """

    def __init__(self, client: JenkinsClient, ingestor: EventIngestor, store: HighWaterMarkStore,
                 jobs: Sequence[str] = (), interval: float = 60.0, backfill: bool = False):
        self.client = client
        self.ingestor = ingestor
        self.store = store
        self.jobs = tuple(jobs)
        self.interval = interval
        self.backfill = backfill

    def _job_names(self) -> List[str]:
        if self.jobs:
            return list(self.jobs)
        return [job['name'] for job in self.client.get_jobs()]

    def _starting_mark(self, job_name: str) -> int:
        mark = self.store.get(job_name)
        if mark is not None:
            return mark
        if self.backfill:
            return 0
        # First sight of this job: start from now instead of replaying its history
        latest = self.client.last_completed_build_number(job_name) or 0
        self.store.advance(job_name, latest)
        logger.info("Started watching %s from build #%d", job_name, latest)
        return latest

    def _emit(self, job_name: str, build: BuildSummary) -> None:
        payload = {
            'job_name': job_name,
            'build_number': build.number,
            'result': build.result,
            'branch': build.branch,
            'timestamp': build.timestamp,
            'url': build.url,
        }
        try:
            self.ingestor.ingest(payload, source='poll')
        except MalformedEventError:
            # already logged by the ingestor; skip past it so the job does not stall
            pass
        self.store.advance(job_name, build.number)

    def poll_job(self, job_name: str) -> int:
        mark = self._starting_mark(job_name)
        emitted = 0
        for build in self.client.list_recent_builds(job_name, mark):
            if build.number <= mark:
                continue
            if not build.completed:
                # Later builds wait until this one finishes, so none is ever skipped
                break
            self._emit(job_name, build)
            emitted += 1
        return emitted

    def poll_once(self, stop: Optional[threading.Event] = None) -> int:
        """Poll every job once and return the number of events emitted."""
        try:
            job_names = self._job_names()
        except (TransientIOError, requests.exceptions.RequestException) as exc:
            logger.warning("Could not list Jenkins jobs: %s", exc)
            return 0

        total = 0
        for job_name in job_names:
            if stop is not None and stop.is_set():
                break
            try:
                total += self.poll_job(job_name)
            except (TransientIOError, requests.exceptions.RequestException) as exc:
                logger.warning("Skipping job '%s' this round: %s", job_name, exc)
            except Exception:
                logger.exception("Polling job '%s' failed, retrying next round", job_name)
        if total:
            logger.info("Poll found %d new completed builds", total)
        return total

    def run(self, stop: threading.Event) -> None:
        """Poll until *stop* is set."""
        logger.info("Polling %s every %.0fs", ', '.join(self.jobs) or 'all jobs', self.interval)
        while not stop.is_set():
            try:
                self.poll_once(stop)
            except Exception:
                logger.exception("Poll round failed")
            stop.wait(self.interval)
        logger.info("Poller stopped")

"""
Per-job high-water marks for poll mode, persisted as a small JSON file.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from errors import ConfigurationError

logger = logging.getLogger(__name__)


class HighWaterMarkStore:
    """Remembers the last processed build number of every polled job."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._marks: Dict[str, int] = self._load()

    def _load(self) -> Dict[str, int]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise ConfigurationError(f"Cannot read state file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"State file {self.path} does not hold a JSON object")
        marks = {}
        for job_name, number in data.items():
            if isinstance(number, int) and not isinstance(number, bool):
                marks[job_name] = number
            else:
                logger.warning("Ignoring bad high-water mark for %s in %s: %r", job_name, self.path, number)
        return marks

    def get(self, job_name: str) -> Optional[int]:
        with self._lock:
            return self._marks.get(job_name)

    def advance(self, job_name: str, build_number: int) -> bool:
        """Raise the mark for *job_name*; lower or equal numbers are ignored."""
        with self._lock:
            current = self._marks.get(job_name)
            if current is not None and build_number <= current:
                return False
            marks = dict(self._marks)
            marks[job_name] = build_number
            self._write_locked(marks)
            self._marks = marks
            return True

    def _write_locked(self, marks: Dict[str, int]) -> None:
        # temp file + rename: the state file is always either old or new, never partial
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=self.path.name, suffix='.tmp', dir=directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(marks, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise

"""
Event ingestion: turns raw Jenkins payloads into BuildEvent records.

Two payload shapes are understood:

* the Jenkins Notification plugin body::

    {"name": "build-A", "build": {"number": 42, "phase": "COMPLETED", "status": "FAILURE",
                                  "full_url": "...", "timestamp": 1700000000000,
                                  "scm": {"branch": "origin/main"}}}

* a flat body, also used for poll results::

    {"job_name": "build-A", "build_number": 42, "result": "FAILURE",
     "branch": "main", "timestamp": 1700000000000, "log_url": "..."}
"""

import datetime as _dt
import hashlib
import hmac
import logging
import math
import urllib.parse as _url
from typing import Any, Callable, Mapping, Optional

import metrics
from errors import MalformedEventError
from models import BuildEvent, BuildResult

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = 'X-Jenkins-Signature'
TERMINAL_PHASES = {'COMPLETED', 'FINALIZED'}

# Callable the ingestor hands normalized events to (the work queue's put)
EventSink = Callable[[BuildEvent], None]


def sign_payload(body: bytes, secret: str) -> str:
    """Signature value Jenkins is expected to send for *body*."""
    return 'sha256=' + hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(body, secret), signature.strip())


def normalize_branch(branch: Optional[str]) -> Optional[str]:
    if not branch:
        return None
    for prefix in ('refs/heads/', 'origin/', 'refs/remotes/origin/'):
        if branch.startswith(prefix):
            branch = branch[len(prefix):]
    return branch or None


def _timestamp(value: Any) -> _dt.datetime:
    """Jenkins timestamps are epoch milliseconds; ISO strings are accepted too."""
    if value is None:
        return _dt.datetime.now(_dt.timezone.utc)
    if isinstance(value, bool):
        raise MalformedEventError(f"timestamp has the wrong type: {value!r}")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise MalformedEventError(f"timestamp is not a finite number: {value!r}")
        try:
            return _dt.datetime.fromtimestamp(value / 1000, tz=_dt.timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise MalformedEventError(f"timestamp is out of range: {value!r}") from None
    if isinstance(value, str):
        try:
            parsed = _dt.datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            raise MalformedEventError(f"timestamp is not ISO-8601: {value!r}") from None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=_dt.timezone.utc)
    raise MalformedEventError(f"timestamp has the wrong type: {value!r}")


def job_path(url: Any) -> Optional[str]:
    """Full job name from a Jenkins job or build URL: 'job/repo/job/main/7/' -> 'repo/main'."""
    if not isinstance(url, str):
        return None
    segments = [segment for segment in _url.urlsplit(url).path.split('/') if segment]
    names = []
    i = 0
    while i < len(segments) - 1:
        if segments[i] == 'job':
            names.append(_url.unquote(segments[i + 1]))
            i += 2
        else:
            i += 1
    return '/'.join(names) or None


def _console_url(build_url: Any) -> Any:
    if isinstance(build_url, str) and build_url:
        return build_url.rstrip('/') + '/console'
    return build_url


def _require_str(payload: Mapping, key: str, what: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedEventError(f"{what} is missing or not a string")
    return value.strip()


def _require_build_number(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise MalformedEventError(f"build number is missing or not an integer: {value!r}")
    try:
        number = int(value)
    except ValueError:
        raise MalformedEventError(f"build number is not an integer: {value!r}") from None
    if number < 1:
        raise MalformedEventError(f"build number must be positive: {number}")
    return number


def _require_result(payload: Mapping, key: str) -> Optional[BuildResult]:
    if key not in payload:
        raise MalformedEventError(f"result status '{key}' is missing")
    value = payload[key]
    if value is not None and not isinstance(value, str):
        raise MalformedEventError(f"result status has the wrong type: {value!r}")
    return BuildResult.parse(value)


def is_completion(payload: Mapping) -> bool:
    """False for Notification plugin QUEUED/STARTED phases, which carry no result yet."""
    build = payload.get('build')
    if isinstance(build, Mapping) and build.get('phase'):
        return str(build['phase']).upper() in TERMINAL_PHASES
    return True


def normalize_event(payload: Any, source: str = 'webhook', jenkins_url: Optional[str] = None) -> BuildEvent:
    """Produce exactly one BuildEvent from *payload* or raise MalformedEventError."""
    if not isinstance(payload, Mapping):
        raise MalformedEventError("event payload is not a JSON object")

    build = payload.get('build')
    if isinstance(build, Mapping):
        # Notification plugin names are short; folder and multibranch jobs need the path from the url
        job_name = (job_path(payload.get('url')) or job_path(build.get('url'))
                    or _require_str(payload, 'name', 'job name'))
        number = _require_build_number(build.get('number'))
        result = _require_result(build, 'status')
        scm = build.get('scm') if isinstance(build.get('scm'), Mapping) else {}
        branch = scm.get('branch') if isinstance(scm.get('branch'), str) else None
        build_url = build.get('full_url') or ''
        if not build_url and jenkins_url and isinstance(build.get('url'), str):
            build_url = jenkins_url.rstrip('/') + '/' + build['url'].lstrip('/')
        log_url = _console_url(build_url)
        timestamp = _timestamp(build.get('timestamp'))
    elif build is not None:
        raise MalformedEventError("'build' must be an object")
    else:
        job_name = _require_str(payload, 'job_name', 'job name')
        number = _require_build_number(payload.get('build_number'))
        result = _require_result(payload, 'result')
        branch = payload.get('branch') if isinstance(payload.get('branch'), str) else None
        log_url = payload.get('log_url') or _console_url(payload.get('url') or '')
        timestamp = _timestamp(payload.get('timestamp'))

    if not isinstance(log_url, str):
        raise MalformedEventError(f"log url has the wrong type: {log_url!r}")

    return BuildEvent(
        job_name=job_name,
        build_number=number,
        result=result,
        timestamp=timestamp,
        log_url=log_url,
        branch=normalize_branch(branch),
        source=source,
    )


class EventIngestor:
    """Normalizes payloads from any source and hands the events to the sink."""

    def __init__(self, sink: EventSink, jenkins_url: Optional[str] = None):
        self.sink = sink
        self.jenkins_url = jenkins_url

    def ingest(self, payload: Any, source: str = 'webhook') -> BuildEvent:
        try:
            event = normalize_event(payload, source, self.jenkins_url)
        except MalformedEventError as exc:
            metrics.malformed_events_total.labels(source=source).inc()
            logger.warning("Dropping malformed %s event: %s", source, exc)
            raise
        self.sink(event)
        metrics.events_received_total.labels(source=source).inc()
        logger.debug("Queued %s #%d (%s) from %s", event.job_name, event.build_number,
                     event.result.value if event.result else 'unknown', source)
        return event

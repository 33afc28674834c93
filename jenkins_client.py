"""
Jenkins API client for listing builds and downloading build logs.
"""

import logging
import urllib.parse as _url
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests
from requests.auth import HTTPBasicAuth

from errors import TransientIOError

logger = logging.getLogger(__name__)

BUILD_FIELDS = 'number,result,timestamp,url,building,actions[lastBuiltRevision[branch[name]]]'


@dataclass(frozen=True)
class BuildSummary:
    """One row of a job's build history."""

    number: int
    result: Optional[str]
    timestamp: int
    url: str
    building: bool = False
    branch: Optional[str] = None

    @property
    def completed(self) -> bool:
        return not self.building and self.result is not None


def _is_transient(exc: requests.exceptions.RequestException) -> bool:
    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    response = getattr(exc, 'response', None)
    return response is not None and (response.status_code == 429 or response.status_code >= 500)


def _branch_from_actions(actions) -> Optional[str]:
    for action in actions or []:
        if not action:
            continue
        revision = action.get('lastBuiltRevision') or {}
        for branch in revision.get('branch') or []:
            name = branch.get('name')
            if name:
                return name
    return None


class JenkinsClient:
    """Client for interacting with Jenkins API."""

    def __init__(self, base_url: str, user: str, token: str, timeout: float = 60):
        self.base_url = base_url.rstrip('/')
        self.auth = HTTPBasicAuth(user, token)
        self.timeout = timeout
        self.session = requests.Session()
        self.session.auth = self.auth

    def _get(self, url: str, *, params: Dict[str, str] | None = None) -> requests.Response:
        """GET with auth and timeout; network trouble and 5xx become TransientIOError."""
        try:
            r = self.session.get(url, params=params, timeout=self.timeout)
            r.raise_for_status()
            return r
        except requests.exceptions.RequestException as e:
            if _is_transient(e):
                raise TransientIOError(f"Jenkins request failed for {url}: {e}") from e
            raise

    def _json_get(self, url: str, *, params: Dict[str, str] | None = None):
        """Wrapper around _get that returns decoded JSON."""
        return self._get(url, params=params).json()

    def job_url(self, job_name: str) -> str:
        """URL of a job; folder paths like 'team/service' map to nested /job/ segments."""
        parts = [_url.quote(part, safe='') for part in job_name.strip('/').split('/') if part]
        return self.base_url + ''.join(f'/job/{part}' for part in parts) + '/'

    def build_url(self, job_name: str, build_number: int) -> str:
        return f"{self.job_url(job_name)}{build_number}/"

    def get_jobs(self) -> List[Dict[str, str]]:
        """Return a list of {name,url} dicts for every job (recursive into folders)."""
        return self._get_jobs_recursive(self.base_url, prefix='')

    def _get_jobs_recursive(self, url: str, prefix: str) -> List[Dict[str, str]]:
        """Recursively fetch jobs, descending into folders."""
        api = url.rstrip('/') + '/api/json'
        data = self._json_get(api, params={'tree': 'jobs[name,url,_class]'})

        result = []
        for job in data.get('jobs', []):
            job_class = job.get('_class', '')
            full_name = f"{prefix}{job['name']}"
            # Cloudbees folders, native folders and multibranch projects all nest jobs
            if 'folder' in job_class.lower() or 'multibranch' in job_class.lower():
                result.extend(self._get_jobs_recursive(job['url'], prefix=full_name + '/'))
            else:
                result.append({'name': full_name, 'url': job['url']})
        return result

    def list_recent_builds(self, job_name: str, since_build_number: int = 0,
                           batch_size: int = 100, max_builds: int = 1000) -> List[BuildSummary]:
        """Builds of *job_name* numbered above *since_build_number*, oldest first.

        Pages back through allBuilds until a build at or below the mark shows up.
        Running builds are included (with building=True) so callers can stop at them.
        At most *max_builds* are returned, always the oldest ones above the mark,
        so a long backlog drains over several calls without gaps.
        """
        api = self.job_url(job_name) + 'api/json'
        builds: List[BuildSummary] = []
        offset = 0

        while True:
            params = {'tree': f'allBuilds[{BUILD_FIELDS}]{{{offset},{offset + batch_size}}}'}
            data = self._json_get(api, params=params)
            batch = data.get('allBuilds', [])
            if not batch:
                break

            reached_mark = False
            for b in batch:
                if b['number'] <= since_build_number:
                    reached_mark = True
                    break
                builds.append(BuildSummary(
                    number=b['number'],
                    result=b.get('result'),
                    timestamp=b.get('timestamp', 0),
                    url=b.get('url') or self.build_url(job_name, b['number']),
                    building=bool(b.get('building')),
                    branch=_branch_from_actions(b.get('actions')),
                ))

            if reached_mark or len(batch) < batch_size:
                break
            offset += batch_size

        builds.sort(key=lambda b: b.number)
        return builds[:max_builds]

    def get_build_log(self, job_name: str, build_number: int) -> bytes:
        """Download the console log for a build."""
        log_url = self.build_url(job_name, build_number) + 'consoleText'
        return self._get(log_url).content

    def last_completed_build_number(self, job_name: str) -> Optional[int]:
        """Number of the newest finished build of *job_name*, or None if it never ran."""
        api = self.job_url(job_name) + 'api/json'
        data = self._json_get(api, params={'tree': 'lastCompletedBuild[number]'})
        last = data.get('lastCompletedBuild')
        return last['number'] if last else None

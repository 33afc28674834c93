"""
Log analysis module: truncation of Jenkins console logs and extraction of the
failing line, plus a rule-based analyzer used when no external one is configured.
"""

import re
from typing import List, Optional, Sequence, Tuple

from models import AnalysisRequest, AnalysisResult

TRUNCATION_MARKER = '\n[... log truncated ...]\n'

TIMESTAMP_PATTERN = r'^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}'
LEVEL_PREFIX_PATTERN = (r'^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}(?:[.,]\d+)?\s*(?:\|\s*)?'
                        r'(?:INFO|ERROR|WARN|DEBUG|FATAL|TRACE)?\s*(?:\|\s*)?')
BUILD_MARKED_FAILED = "marked build as failure"
FALSE_POSITIVES = ('<method', 'with_traceback', "of '", 'objects>', 'raise ', 'except ', 'except:', 'try:', 'catch')
FALLBACK_ERROR_PATTERNS = (r'ERROR:', r'FATAL:', r'FAILED', r'Build step.*failed')


def truncate_log(content: str, max_bytes: int, head_lines: int) -> str:
    """Cut *content* down to at most *max_bytes* UTF-8 bytes.

    Keeps the first *head_lines* lines (capped at a quarter of the budget) and
    fills the rest with the end of the log, starting on a line boundary. The
    head and the truncation marker count against *max_bytes*, so the tail is
    *max_bytes* minus those, never more. The result stays within *max_bytes*:
    logs already within budget come back unchanged, so truncating twice is the
    same as truncating once.
    """
    data = content.encode('utf-8')
    if len(data) <= max_bytes:
        return content

    marker = TRUNCATION_MARKER.encode('utf-8')
    head = ''.join(content.splitlines(keepends=True)[:head_lines]).encode('utf-8')
    head = head[:max_bytes // 4].decode('utf-8', errors='ignore').encode('utf-8')

    tail_budget = max_bytes - len(head) - len(marker)
    if tail_budget <= 0:
        return data[-max_bytes:].decode('utf-8', errors='ignore')

    tail = data[-tail_budget:]
    newline = tail.find(b'\n')
    if 0 <= newline < len(tail) - 1:
        tail = tail[newline + 1:]
    tail_text = tail.decode('utf-8', errors='ignore')
    return head.decode('utf-8') + TRUNCATION_MARKER + tail_text


def decode_log(raw: bytes) -> str:
    return raw.decode('utf-8', errors='replace')


class LogAnalyzer:
    """Analyzer for Jenkins build logs to extract exceptions and context."""

    @staticmethod
    def _is_ignored(line: str, ignore_exceptions: Sequence[str]) -> bool:
        return any(pattern and pattern in line for pattern in ignore_exceptions)

    @staticmethod
    def _context(lines: List[str], error_index: int, timestamp_index: int) -> str:
        """Lines from the last timestamp before the error up to the 'marked build as failure' step."""
        if timestamp_index != -1:
            context_start = timestamp_index
        else:
            context_start = max(0, error_index - 10)

        context_end = len(lines)
        for i in range(context_start, len(lines)):
            if BUILD_MARKED_FAILED in lines[i]:
                context_end = i
                break
        return '\n'.join(lines[context_start:context_end])

    @classmethod
    def extract_exception_from_log(cls, log_content: str,
                                   ignore_exceptions: Sequence[str] = ()) -> Tuple[str, str]:
        """Return (error line, context) for the last real exception in the log, skipping ignored ones."""
        lines = log_content.strip().split('\n')

        latest_timestamp_index = -1
        for i in range(len(lines) - 1, -1, -1):
            if re.match(TIMESTAMP_PATTERN, lines[i]):
                latest_timestamp_index = i
                break

        # Pattern: word boundary + Exception/Error type + colon
        for i in range(len(lines) - 1, -1, -1):
            line = lines[i]
            if not (re.search(r'\b\w*Exception\s*:', line) or re.search(r'\b\w*Error\s*:', line)):
                continue
            if any(exclude in line for exclude in FALSE_POSITIVES) or cls._is_ignored(line, ignore_exceptions):
                continue

            timestamp_index = latest_timestamp_index
            if timestamp_index > i:
                timestamp_index = -1
                for j in range(i - 1, -1, -1):
                    if re.match(TIMESTAMP_PATTERN, lines[j]):
                        timestamp_index = j
                        break
            return line.strip(), cls._context(lines, i, timestamp_index)

        # Fallback to other error patterns if no Exception found
        for i in range(len(lines) - 1, -1, -1):
            line = lines[i]
            if cls._is_ignored(line, ignore_exceptions):
                continue
            if any(re.search(pattern, line, re.IGNORECASE) for pattern in FALLBACK_ERROR_PATTERNS):
                timestamp_index = latest_timestamp_index if latest_timestamp_index <= i else -1
                return line.strip(), cls._context(lines, i, timestamp_index)

        return "No clear error found", ""

    @staticmethod
    def extract_exception_type(exception_line: str) -> str:
        """Extract the exception type from an exception line, handling various formats."""
        if not exception_line:
            return "Unknown"

        line_without_timestamp = re.sub(LEVEL_PREFIX_PATTERN, '', exception_line).strip()
        if not line_without_timestamp:
            return "Unknown"

        match = re.match(r'^([A-Za-z_][A-Za-z0-9_.]*(?:Exception|Error|Warning))\s*:', line_without_timestamp)
        if match:
            return match.group(1)

        match = re.search(r'\b([A-Za-z_][A-Za-z0-9_.]*(?:Exception|Error))\b', line_without_timestamp)
        if match:
            return match.group(1)

        first_word = line_without_timestamp.split()[0]
        if any(pattern in first_word.lower() for pattern in ['error', 'exception', 'failed', 'fatal']):
            return first_word.rstrip(':')

        return "BuildFailure"


# (category, line pattern, fix steps, prevention)
FAILURE_CATEGORIES = (
    ('out of memory',
     r'OutOfMemoryError|Cannot allocate memory|Killed\s*$|exit code 137|MemoryError',
     ('Raise the heap or container memory limit for the build (-Xmx, agent pod limits).',
      'Check the failing step for a leak or an unusually large data set.'),
     ('Track peak memory per build and alert before it reaches the limit.',)),
    ('disk full',
     r'No space left on device|ENOSPC|Disk quota exceeded',
     ('Free space on the agent: clean old workspaces, docker images and caches.',
      'Re-run the build once the agent has space.'),
     ('Enable workspace cleanup after builds and monitor agent disk usage.',)),
    ('timeout',
     r'Timeout|timed out|TimeoutException|Build timed out',
     ('Find the step that hung in the log and check the service it was waiting on.',
      'Raise the step timeout only if the work legitimately takes longer.'),
     ('Put explicit timeouts on every external call in the pipeline.',)),
    ('network',
     r'Connection refused|Connection reset|UnknownHostException|Could not resolve host|Name or service not known|ConnectionError',
     ('Check that the remote host is reachable from the agent (DNS, firewall, proxy).',
      'Retry the build; if it persists, check the status of the remote service.'),
     ('Add retries around network fetches and mirror external dependencies.',)),
    ('dependency resolution',
     r'Could not resolve dependencies|No matching distribution|ERR! 404|ModuleNotFoundError|ImportError|Could not find artifact',
     ('Verify the dependency name and version exist in the configured registry.',
      'Check registry credentials and mirrors used by the agent.'),
     ('Pin dependency versions and use a lock file.',)),
    ('test failure',
     r'AssertionError|Tests? failed|FAILED \S+::|There were test failures|Failures: [1-9]',
     ('Open the failing test in the log and reproduce it locally.',
      'Check the most recent commits touching the code under test.'),
     ('Quarantine flaky tests and track their failure rate.',)),
    ('compilation',
     r'COMPILATION ERROR|error: cannot find symbol|SyntaxError|error TS\d+|compilation failed',
     ('Fix the reported source error; the file and line are in the log excerpt.',
      'Make sure the branch is rebased on a green main.'),
     ('Run the compiler or linter in a pre-merge check.',)),
    ('permissions',
     r'Permission denied|AccessDenied|403 Forbidden|401 Unauthorized|EACCES',
     ('Check the credentials bound to the job and their scopes.',
      'Check file ownership on the agent workspace.'),
     ('Rotate credentials through the credential store and alert on expiry.',)),
)

SECRET_PATTERNS = (
    ('AWS access key', r'\bAKIA[0-9A-Z]{16}\b'),
    ('private key', r'-----BEGIN (?:RSA |EC |OPENSSH )?PRIVATE KEY-----'),
    ('Slack token', r'\bxox[abpr]-[0-9A-Za-z-]{10,}'),
    ('GitHub token', r'\bgh[pousr]_[0-9A-Za-z]{36}\b'),
    ('inline password', r'(?i)\b(?:password|passwd|pwd)\s*[=:]\s*[^\s*]{4,}'),
)
DURATION_PATTERN = re.compile(r'(?:took|total time:|finished in|time elapsed:)\s*(\d+(?:\.\d+)?)\s*(ms|sec|s|min)\b',
                              re.IGNORECASE)
DURATION_FACTORS = {'ms': 0.001, 's': 1.0, 'sec': 1.0, 'min': 60.0}


def find_secret_leaks(log: str) -> List[str]:
    """Kinds of credential that appear in cleartext in *log*."""
    return [name for name, pattern in SECRET_PATTERNS if re.search(pattern, log)]


def slowest_steps(log: str, limit: int = 3) -> List[Tuple[float, str]]:
    """The *limit* longest durations reported in *log*, in seconds, with their line."""
    found = []
    for line in log.splitlines():
        match = DURATION_PATTERN.search(line)
        if match:
            seconds = float(match.group(1)) * DURATION_FACTORS[match.group(2).lower()]
            found.append((seconds, line.strip()))
    found.sort(key=lambda item: item[0], reverse=True)
    return found[:limit]


class HeuristicAnalyzer:
    """Rule-based stand-in for the external analyzer."""

    def __init__(self, ignore_exceptions: Sequence[str] = ()):
        self.ignore_exceptions = tuple(ignore_exceptions)

    def classify(self, text: str) -> Optional[Tuple[str, Tuple[str, ...], Tuple[str, ...]]]:
        for category, pattern, fix_steps, prevention in FAILURE_CATEGORIES:
            if re.search(pattern, text, re.IGNORECASE | re.MULTILINE):
                return category, fix_steps, prevention
        return None

    def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        error_line, context = LogAnalyzer.extract_exception_from_log(request.log_content, self.ignore_exceptions)
        exception_type = LogAnalyzer.extract_exception_type(error_line)
        match = self.classify(error_line) or self.classify(context)

        if match:
            category, fix_steps, prevention = match
            root_cause = f"{exception_type} ({category}): {error_line}"
        else:
            category = None
            fix_steps = ('Read the log excerpt around the error line and reproduce the failing step.',)
            prevention = ()
            root_cause = f"{exception_type}: {error_line}"

        if request.features.detailed_analysis and context:
            root_cause = f"{root_cause}\n```\n{context[-1500:]}\n```"

        prevention = list(prevention)
        if request.features.security_scan:
            leaks = find_secret_leaks(request.log_content)
            if leaks:
                root_cause += f"\nCredentials printed in the log: {', '.join(leaks)}."
                prevention.append('Mask credentials with withCredentials and rotate the leaked ones.')
        if request.features.performance_metrics:
            slow = slowest_steps(request.log_content)
            if slow:
                root_cause += "\nSlowest steps:\n" + "\n".join(f"• {seconds:.1f}s {line}" for seconds, line in slow)

        summary = f"{request.job_name} #{request.build_number} failed"
        if category:
            summary += f" ({category})"
        summary += f": {error_line}"
        return AnalysisResult(
            job_name=request.job_name,
            build_number=request.build_number,
            log_url=request.log_url,
            root_cause=root_cause,
            fix_steps=tuple(fix_steps),
            prevention=tuple(prevention),
            summary=summary,
            result=request.result,
            branch=request.branch,
        )

"""
Builds platform-neutral messages from analysis results and failures.
"""

import re
from typing import Union

from errors import AnalysisFailed
from models import AnalysisResult, Message

SUMMARY_LIMIT = 280

Outcome = Union[AnalysisResult, AnalysisFailed]


def _result_label(result) -> str:
    return result.value if result is not None else 'UNKNOWN'


def _fields(job_name: str, build_number: int, result, branch) -> tuple:
    fields = [('Job', job_name), ('Build', f"#{build_number}"), ('Result', _result_label(result))]
    if branch:
        fields.append(('Branch', branch))
    return tuple(fields)


def strip_code(text: str) -> str:
    """Drop fenced code blocks and inline code, then collapse whitespace."""
    text = re.sub(r'```.*?(```|$)', ' ', text, flags=re.DOTALL)
    text = re.sub(r'`[^`]*`', ' ', text)
    return re.sub(r'\s+', ' ', text).strip()


def shorten(text: str, limit: int = SUMMARY_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - 1].rstrip() + '…'


def render_full(outcome: Outcome) -> Message:
    if isinstance(outcome, AnalysisFailed):
        return render_degraded(outcome)

    lines = [f"*Root cause*\n{outcome.root_cause}"]
    if outcome.fix_steps:
        lines.append("*How to fix*\n" + '\n'.join(f"{i}. {step}" for i, step in enumerate(outcome.fix_steps, 1)))
    if outcome.prevention:
        lines.append("*Prevention*\n" + '\n'.join(f"• {note}" for note in outcome.prevention))

    return Message(
        title=f"🔴 {outcome.job_name} #{outcome.build_number} failed",
        text='\n\n'.join(lines),
        link=outcome.log_url,
        fields=_fields(outcome.job_name, outcome.build_number, outcome.result, outcome.branch),
    )


def render_degraded(failure: AnalysisFailed) -> Message:
    event = failure.event
    lines = ["Automated analysis unavailable, raw log link attached.", f"Reason: {failure.reason}"]
    if failure.error_hint:
        lines.append(f"Last error line: `{failure.error_hint}`")
    return Message(
        title=f"⚠️ {event.job_name} #{event.build_number} failed (analysis unavailable)",
        text='\n'.join(lines),
        link=event.log_url,
        fields=_fields(event.job_name, event.build_number, event.result, event.branch),
        degraded=True,
    )


def render_summary(outcome: Outcome) -> Message:
    """One-line variant for the summary channel; never includes code."""
    if isinstance(outcome, AnalysisFailed):
        event = outcome.event
        return Message(
            title=f"{event.job_name} #{event.build_number}",
            text=f"{_result_label(event.result)}, analysis unavailable",
            link=event.log_url,
            degraded=True,
        )

    text = strip_code(outcome.summary or outcome.root_cause.split('\n', 1)[0])
    return Message(
        title=f"{outcome.job_name} #{outcome.build_number}",
        text=shorten(text or 'see build log'),
        link=outcome.log_url,
    )

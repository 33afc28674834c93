"""
Filter rules deciding which build events are worth analyzing.

A rule is a small expression tree of frozen nodes. Evaluation is pure: it never
does I/O and never raises for a well-formed rule.
"""

from dataclasses import dataclass
from typing import FrozenSet, Optional, Tuple, Union

from config import ResultFilter, Settings
from models import BuildEvent, BuildResult

FAILURE_RESULTS = frozenset({BuildResult.FAILURE})
NON_SUCCESS_RESULTS = frozenset({BuildResult.FAILURE, BuildResult.UNSTABLE, BuildResult.ABORTED})


@dataclass(frozen=True)
class ResultNotNull:
    pass


@dataclass(frozen=True)
class ResultIn:
    results: FrozenSet[BuildResult]


@dataclass(frozen=True)
class JobIn:
    jobs: FrozenSet[str]


@dataclass(frozen=True)
class BranchEquals:
    branch: str


@dataclass(frozen=True)
class And:
    clauses: Tuple['FilterRule', ...]


FilterRule = Union[ResultNotNull, ResultIn, JobIn, BranchEquals, And]


def evaluate(rule: FilterRule, event: BuildEvent) -> bool:
    """Return True when *event* matches *rule*. Clauses are checked left to right."""
    if isinstance(rule, And):
        return all(evaluate(clause, event) for clause in rule.clauses)
    if isinstance(rule, ResultNotNull):
        return event.result is not None
    if isinstance(rule, ResultIn):
        return event.result in rule.results
    if isinstance(rule, JobIn):
        return event.job_name in rule.jobs
    if isinstance(rule, BranchEquals):
        return event.branch == rule.branch
    raise TypeError(f"Not a filter rule: {rule!r}")


def build_rule(job_filter: Tuple[str, ...] = (),
               result_filter: ResultFilter = ResultFilter.FAILURE,
               branch: Optional[str] = None,
               enable_branch_filter: bool = False) -> FilterRule:
    """Combine the optional sub-conditions with AND.

    A missing sub-condition matches everything, so an empty job list means
    "monitor every job". The branch clause is only active when branch
    filtering is enabled, whatever *branch* holds.
    """
    clauses = [ResultNotNull()]
    if result_filter == ResultFilter.FAILURE:
        clauses.append(ResultIn(FAILURE_RESULTS))
    elif result_filter == ResultFilter.NON_SUCCESS:
        clauses.append(ResultIn(NON_SUCCESS_RESULTS))
    if job_filter:
        clauses.append(JobIn(frozenset(job_filter)))
    if enable_branch_filter and branch:
        clauses.append(BranchEquals(branch))
    return And(tuple(clauses))


def rule_from_settings(settings: Settings) -> FilterRule:
    return build_rule(settings.job_filter, settings.result_filter,
                      settings.branch_filter, settings.enable_branch_filter)


def describe(rule: FilterRule) -> str:
    """Human readable form of a rule, for startup logs."""
    if isinstance(rule, And):
        return ' AND '.join(describe(clause) for clause in rule.clauses) or 'true'
    if isinstance(rule, ResultNotNull):
        return 'result != null'
    if isinstance(rule, ResultIn):
        return 'result in {' + ', '.join(sorted(result.value for result in rule.results)) + '}'
    if isinstance(rule, JobIn):
        return 'job in {' + ', '.join(sorted(rule.jobs)) + '}'
    if isinstance(rule, BranchEquals):
        return f"branch == {rule.branch!r}"
    raise TypeError(f"Not a filter rule: {rule!r}")

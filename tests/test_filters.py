"""Tests for filter rule construction and evaluation."""

from __future__ import annotations

import pytest

from conftest import make_event
from config import ResultFilter
from filters import (
    And,
    BranchEquals,
    JobIn,
    ResultIn,
    ResultNotNull,
    build_rule,
    describe,
    evaluate,
)
from models import BuildResult

ALL_RESULTS = [BuildResult.SUCCESS, BuildResult.FAILURE, BuildResult.UNSTABLE, BuildResult.ABORTED, None]


class TestEvaluate:

    def test_leaf_nodes(self):
        event = make_event(result=BuildResult.FAILURE, branch="main")

        assert evaluate(ResultNotNull(), event) is True
        assert evaluate(ResultIn(frozenset({BuildResult.FAILURE})), event) is True
        assert evaluate(JobIn(frozenset({"other"})), event) is False
        assert evaluate(BranchEquals("main"), event) is True

    def test_conjunction(self):
        event = make_event()

        assert evaluate(And((ResultNotNull(), JobIn(frozenset({"build-A"})))), event) is True
        assert evaluate(And((JobIn(frozenset({"x"})), BranchEquals("main"))), event) is False
        assert evaluate(And(()), event) is True

    def test_null_result(self):
        event = make_event(result=None)

        assert evaluate(ResultNotNull(), event) is False

    def test_not_a_rule(self):
        with pytest.raises(TypeError):
            evaluate("result == FAILURE", make_event())


class TestBuildRule:

    def test_failures_only_with_empty_job_list(self):
        rule = build_rule((), ResultFilter.FAILURE)

        assert evaluate(rule, make_event(job_name="anything", result=BuildResult.FAILURE)) is True
        assert evaluate(rule, make_event(result=BuildResult.UNSTABLE)) is False
        assert evaluate(rule, make_event(result=BuildResult.SUCCESS)) is False

    def test_non_success(self):
        rule = build_rule((), ResultFilter.NON_SUCCESS)

        assert evaluate(rule, make_event(result=BuildResult.UNSTABLE)) is True
        assert evaluate(rule, make_event(result=BuildResult.ABORTED)) is True
        assert evaluate(rule, make_event(result=BuildResult.SUCCESS)) is False
        assert evaluate(rule, make_event(result=None)) is False

    def test_any_still_requires_a_result(self):
        rule = build_rule((), ResultFilter.ANY)

        assert evaluate(rule, make_event(result=BuildResult.SUCCESS)) is True
        assert evaluate(rule, make_event(result=None)) is False

    def test_job_list(self):
        rule = build_rule(("build-A", "deploy-B"), ResultFilter.FAILURE)

        assert evaluate(rule, make_event(job_name="deploy-B")) is True
        assert evaluate(rule, make_event(job_name="build-C")) is False

    def test_job_names_are_matched_literally(self):
        rule = build_rule(("build-A' || true || '",), ResultFilter.FAILURE)

        assert evaluate(rule, make_event(job_name="build-A")) is False

    def test_branch_filter_only_when_enabled(self):
        disabled = build_rule((), ResultFilter.FAILURE, branch="release", enable_branch_filter=False)
        enabled = build_rule((), ResultFilter.FAILURE, branch="release", enable_branch_filter=True)
        event = make_event(branch="main")

        assert evaluate(disabled, event) is True
        assert evaluate(enabled, event) is False
        assert evaluate(enabled, make_event(branch="release")) is True

    @pytest.mark.parametrize("job_name", ["build-A", "deploy/prod", "x"])
    def test_empty_job_list_ignores_job_name(self, job_name):
        for result_filter in ResultFilter:
            rule = build_rule((), result_filter, branch="main", enable_branch_filter=True)
            for result in ALL_RESULTS:
                for branch in ("main", "dev", None):
                    baseline = evaluate(rule, make_event(job_name="reference", result=result, branch=branch))
                    assert evaluate(rule, make_event(job_name=job_name, result=result, branch=branch)) is baseline

    def test_describe(self):
        rule = build_rule(("build-A",), ResultFilter.FAILURE, branch="main", enable_branch_filter=True)

        assert describe(rule) == "result != null AND result in {FAILURE} AND job in {build-A} AND branch == 'main'"

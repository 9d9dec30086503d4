"""Tests for directives, options and status combination."""

import asyncio

import pytest

from quicktap.errors import UsageError
from quicktap.models import (
    Directive,
    DirectiveKind,
    Outcome,
    Status,
    TestOptions,
    TestResult,
    aggregate_status,
    merge_options,
    resolve_directive,
)


class TestResolveDirective:
    def test_no_flags(self) -> None:
        assert resolve_directive() is None
        assert resolve_directive(False, False) is None

    def test_skip_wins_over_todo(self) -> None:
        directive = resolve_directive(skip=True, todo="later")
        assert directive == Directive(DirectiveKind.SKIP)

    def test_reason_strings(self) -> None:
        assert resolve_directive(skip="flaky") == Directive(DirectiveKind.SKIP, "flaky")
        assert resolve_directive(todo="wip") == Directive(DirectiveKind.TODO, "wip")

    def test_todo_without_reason(self) -> None:
        directive = resolve_directive(todo=True)
        assert directive is not None
        assert directive.is_todo
        assert directive.reason is None


class TestMergeOptions:
    def test_defaults(self) -> None:
        options = merge_options()
        assert options == TestOptions()
        assert options.timeout is None
        assert options.skip is False
        assert options.todo is False
        assert options.only is False

    def test_mapping_merges_over_defaults(self) -> None:
        options = merge_options({"timeout": 2.0, "only": True})
        assert options.timeout == 2.0
        assert options.only is True
        assert options.skip is False

    def test_keyword_overrides(self) -> None:
        options = merge_options(TestOptions(timeout=1.0), todo="soon")
        assert options.timeout == 1.0
        assert options.todo == "soon"

    def test_signal_is_kept(self) -> None:
        signal = asyncio.Event()
        assert merge_options(signal=signal).signal is signal

    def test_unknown_option_rejected(self) -> None:
        with pytest.raises(UsageError, match="retries"):
            merge_options({"retries": 3})

    def test_non_positive_timeout_rejected(self) -> None:
        with pytest.raises(UsageError, match="timeout"):
            merge_options(timeout=0)

    def test_zero_concurrency_rejected(self) -> None:
        with pytest.raises(UsageError, match="concurrency"):
            merge_options(concurrency=0)

    def test_wrong_type_rejected(self) -> None:
        with pytest.raises(UsageError):
            merge_options(42)  # type: ignore[arg-type]


class TestAggregateStatus:
    def test_all_ok(self) -> None:
        children = [(None, Status.OK), (None, Status.OK)]
        assert aggregate_status(Status.OK, children) is Status.OK

    def test_failing_child_fails_parent(self) -> None:
        children = [(None, Status.OK), (None, Status.NOT_OK)]
        assert aggregate_status(Status.OK, children) is Status.NOT_OK

    def test_own_failure(self) -> None:
        assert aggregate_status(Status.NOT_OK, []) is Status.NOT_OK

    def test_skipped_and_todo_children_ignored(self) -> None:
        children = [
            (Directive(DirectiveKind.SKIP), Status.NOT_OK),
            (Directive(DirectiveKind.TODO, "wip"), Status.NOT_OK),
        ]
        assert aggregate_status(Status.OK, children) is Status.OK


class TestTestResult:
    @pytest.mark.parametrize(
        ("outcome", "status"),
        [
            (Outcome.PASSED, Status.OK),
            (Outcome.FAILED, Status.NOT_OK),
            (Outcome.SKIPPED, Status.OK),
            (Outcome.TODO_PASSED, Status.OK),
            (Outcome.TODO_FAILED, Status.OK),
        ],
    )
    def test_status_from_outcome(self, outcome: Outcome, status: Status) -> None:
        assert TestResult(outcome=outcome).status is status

    def test_failed_flag(self) -> None:
        assert TestResult(outcome=Outcome.TODO_FAILED).failed is True
        assert TestResult(outcome=Outcome.SKIPPED).failed is False

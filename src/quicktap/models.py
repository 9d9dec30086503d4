"""Value types for the test tree.

Directives, statuses, per-node options and results, plus the pure rules
for combining them. Nothing in this module has side effects.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any

from quicktap.errors import UsageError


class NodeKind(str, enum.Enum):
    """What declared a node."""

    ROOT = "root"
    SUITE = "suite"
    UNIT = "unit"
    CASE = "case"


class Status(str, enum.Enum):
    """Terminal pass/fail status of a node."""

    OK = "ok"
    NOT_OK = "not_ok"


class Outcome(str, enum.Enum):
    """Explicit result of running one node."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    TODO_PASSED = "todo_passed"
    TODO_FAILED = "todo_failed"


class DirectiveKind(str, enum.Enum):
    SKIP = "skip"
    TODO = "todo"


@dataclass(frozen=True)
class Directive:
    """A SKIP or TODO annotation with an optional reason."""

    kind: DirectiveKind
    reason: str | None = None

    @property
    def is_skip(self) -> bool:
        return self.kind is DirectiveKind.SKIP

    @property
    def is_todo(self) -> bool:
        return self.kind is DirectiveKind.TODO


def resolve_directive(
    skip: bool | str | None = False,
    todo: bool | str | None = False,
) -> Directive | None:
    """Combine the skip/todo flags of a declaration into one directive.

    Skip wins over todo. A string flag doubles as the directive reason.
    """
    if skip:
        return Directive(DirectiveKind.SKIP, skip if isinstance(skip, str) else None)
    if todo:
        return Directive(DirectiveKind.TODO, todo if isinstance(todo, str) else None)
    return None


@dataclass(frozen=True)
class TestOptions:
    """Per-declaration options.

    Attributes:
        timeout: Maximum seconds a body may run. ``None`` is unbounded.
        skip: ``True`` or a reason string to skip the node.
        todo: ``True`` or a reason string to mark the node as todo.
        only: Restrict the run to ``only``-marked nodes.
        signal: Event that aborts the node and its descendants when set.
        concurrency: Maximum number of children running at once.
            ``None`` is unbounded.
    """

    __test__ = False

    timeout: float | None = None
    skip: bool | str = False
    todo: bool | str = False
    only: bool = False
    signal: asyncio.Event | None = None
    concurrency: int | None = None


_OPTION_NAMES = frozenset(f.name for f in fields(TestOptions))


def merge_options(
    options: TestOptions | Mapping[str, Any] | None = None,
    **overrides: Any,
) -> TestOptions:
    """Merge *options* and keyword overrides over the defaults.

    Raises:
        UsageError: On an unknown option name or a non-positive
            ``concurrency``/``timeout``.
    """
    if options is None:
        merged = TestOptions()
    elif isinstance(options, TestOptions):
        merged = options
    elif isinstance(options, Mapping):
        merged = _replace_checked(TestOptions(), dict(options))
    else:
        raise UsageError(
            f"Options must be a TestOptions or a mapping, got {type(options).__name__}"
        )
    if overrides:
        merged = _replace_checked(merged, overrides)
    if merged.timeout is not None and merged.timeout <= 0:
        raise UsageError(f"timeout must be positive, got {merged.timeout}")
    if merged.concurrency is not None and merged.concurrency < 1:
        raise UsageError(f"concurrency must be >= 1, got {merged.concurrency}")
    return merged


def _replace_checked(options: TestOptions, values: dict[str, Any]) -> TestOptions:
    unknown = sorted(set(values) - _OPTION_NAMES)
    if unknown:
        raise UsageError(f"Unknown test option(s): {', '.join(unknown)}")
    return replace(options, **values)


@dataclass
class TestResult:
    """What running a node produced.

    Attributes:
        outcome: The explicit outcome.
        failure_reason: Human-readable reason for a failed or todo-failed run.
        error: The exception caught at the node boundary, if any.
        duration: Wall-clock seconds spent on the node's own body and hooks.
    """

    __test__ = False

    outcome: Outcome
    failure_reason: str | None = None
    error: BaseException | None = None
    duration: float = 0.0

    @property
    def status(self) -> Status:
        return Status.NOT_OK if self.outcome is Outcome.FAILED else Status.OK

    @property
    def failed(self) -> bool:
        return self.outcome in (Outcome.FAILED, Outcome.TODO_FAILED)


def aggregate_status(
    own: Status,
    children: Iterable[tuple[Directive | None, Status]],
) -> Status:
    """Derive a parent's aggregate status from its enumerated children.

    Args:
        own: The parent's own terminal status.
        children: ``(directive, aggregate status)`` for each child that
            was enumerated.

    Skipped and todo children never affect the result.
    """
    if own is Status.NOT_OK:
        return Status.NOT_OK
    for directive, status in children:
        if directive is not None:
            continue
        if status is Status.NOT_OK:
            return Status.NOT_OK
    return Status.OK


@dataclass
class HarnessConfig:
    """Harness-wide configuration.

    Attributes:
        default_timeout: Timeout applied to nodes that declare none.
        concurrency: Child concurrency applied to nodes that declare none.
        report_errors: Emit a YAML diagnostic block after failing test
            points.
    """

    default_timeout: float | None = None
    concurrency: int | None = None
    report_errors: bool = False


@dataclass
class RunSummary:
    """Totals for one run of a harness."""

    ok: bool
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    todo: int = 0
    duration: float = 0.0
    failures: list[str] = field(default_factory=list)

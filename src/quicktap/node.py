"""The test tree.

A :class:`TestNode` is one declared suite, unit or case. Nodes register
themselves with their parent on construction and never run anything by
themselves; :mod:`quicktap.engine` drives them.

Bodies receive a :class:`SuiteContext` (describe) or a
:class:`TestContext` (it/test) when they accept a positional argument.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from collections.abc import Iterator, Mapping
from contextvars import ContextVar
from dataclasses import replace
from typing import Any, Awaitable, Callable, Union

from quicktap.errors import (
    EngineError,
    LateDeclarationError,
    StatusNotSetError,
    UsageError,
)
from quicktap.formatting import DEFAULT_NAME, child_indent
from quicktap.models import (
    Directive,
    NodeKind,
    Status,
    TestOptions,
    TestResult,
    aggregate_status,
    merge_options,
    resolve_directive,
)

logger = logging.getLogger(__name__)

Body = Callable[..., Union[Awaitable[None], None]]
Hook = Callable[..., Union[Awaitable[None], None]]

# The node whose body (or hook) is currently executing in this task.
current_scope: ContextVar[TestNode | None] = ContextVar(
    "quicktap_current_scope", default=None
)


class NodePhase(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"


class HookKind(str, enum.Enum):
    BEFORE = "before"
    AFTER = "after"
    BEFORE_EACH = "before_each"
    AFTER_EACH = "after_each"


class TestNode:
    """One node of the test hierarchy.

    Args:
        name: Display name; ``"<anonymous>"`` when omitted.
        body: Callable to execute, sync or async. ``None`` for pure
            grouping nodes.
        scope: Parent node. ``None`` only for the root.
        kind: What kind of declaration produced the node.
        options: Declaration options, merged over the defaults.

    Raises:
        LateDeclarationError: If *scope* has already frozen its children.
    """

    __test__ = False

    def __init__(
        self,
        name: str | None = None,
        body: Body | None = None,
        scope: TestNode | None = None,
        kind: NodeKind = NodeKind.UNIT,
        options: TestOptions | Mapping[str, Any] | None = None,
    ) -> None:
        if scope is None and kind is not NodeKind.ROOT:
            kind = NodeKind.ROOT
        self.name = name or DEFAULT_NAME
        self.body = body
        self.scope = scope
        self.kind = kind
        self.options = merge_options(options)
        self.directive: Directive | None = resolve_directive(
            self.options.skip, self.options.todo
        )
        self.only = self.options.only
        self.children: list[TestNode] = []
        self.indent = child_indent(scope.indent) if scope is not None else ""
        self.phase = NodePhase.PENDING
        self.result: TestResult | None = None
        self.diagnostics: list[str] = []
        self.hooks: dict[HookKind, list[Hook]] = {hook: [] for hook in HookKind}

        # Engine bookkeeping
        self.selected: bool | None = None
        self.run_only_subtests = False
        self.body_ran = False
        self.body_error: BaseException | None = None
        self.enumerated: list[TestNode] = []
        self._frozen = False
        self._status: Status | None = None
        self._abort_event = asyncio.Event()
        self._context: SuiteContext | None = None

        if scope is not None:
            scope._add_child(self)

    def __repr__(self) -> str:
        return f"<TestNode {self.name!r} kind={self.kind.value} phase={self.phase.value}>"

    def __str__(self) -> str:
        return self.to_json()

    # ------------------------------------------------------------------
    # Tree structure
    # ------------------------------------------------------------------

    @property
    def is_root(self) -> bool:
        return self.scope is None

    @property
    def root(self) -> TestNode:
        node = self
        while node.scope is not None:
            node = node.scope
        return node

    @property
    def frozen(self) -> bool:
        return self._frozen

    def ancestors(self) -> Iterator[TestNode]:
        """Yield the parent chain, nearest first."""
        node = self.scope
        while node is not None:
            yield node
            node = node.scope

    def walk(self) -> Iterator[TestNode]:
        """Yield this node and every declared descendant, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    @property
    def path(self) -> tuple[str, ...]:
        names = [self.name] if not self.is_root else []
        names.extend(a.name for a in self.ancestors() if not a.is_root)
        return tuple(reversed(names))

    def _add_child(self, child: TestNode) -> None:
        if self._frozen:
            raise LateDeclarationError(self.name, child.name)
        self.children.append(child)
        if self.aborted:
            child.abort()

    def freeze(self) -> None:
        """Reject any further child declarations."""
        self._frozen = True

    # ------------------------------------------------------------------
    # Hooks and diagnostics
    # ------------------------------------------------------------------

    def add_hook(self, kind: HookKind, fn: Hook) -> None:
        if self._frozen:
            raise UsageError(
                f"Cannot register a {kind.value} hook on '{self.name}' "
                f"after its subtests started"
            )
        self.hooks[kind].append(fn)

    # ------------------------------------------------------------------
    # Abort
    # ------------------------------------------------------------------

    @property
    def signal(self) -> asyncio.Event:
        """Event set when this node is aborted."""
        return self._abort_event

    @property
    def aborted(self) -> bool:
        return self._abort_event.is_set()

    def abort(self) -> None:
        """Abort this node and every descendant that has not finished."""
        if self.phase is NodePhase.DONE:
            return
        if not self._abort_event.is_set():
            logger.debug("Aborting '%s'", self.name)
        self._abort_event.set()
        for child in self.children:
            child.abort()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def status(self) -> Status:
        """Terminal status of the node.

        Raises:
            StatusNotSetError: If the node has not finished running.
        """
        if self._status is None:
            raise StatusNotSetError(self.name)
        return self._status

    @property
    def has_status(self) -> bool:
        return self._status is not None

    def mark_done(self, result: TestResult) -> None:
        """Record the node's result. Called once, by the engine."""
        if self._status is not None:
            raise EngineError(f"Status of '{self.name}' written twice")
        self.result = result
        self._status = result.status
        self.phase = NodePhase.DONE
        self._frozen = True

    @property
    def aggregate_status(self) -> Status:
        """Own status combined with the aggregate of every enumerated child."""
        return aggregate_status(
            self.status,
            ((child.directive, child.aggregate_status) for child in self.enumerated),
        )

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    @property
    def context(self) -> SuiteContext:
        if self._context is None:
            if self.kind is NodeKind.SUITE:
                self._context = SuiteContext(self)
            else:
                self._context = TestContext(self)
        return self._context

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize the node and the subtests it ran.

        Raises:
            StatusNotSetError: If the node has not been run yet.
        """
        status = self.status
        data: dict[str, Any] = {
            "name": self.name,
            "kind": self.kind.value,
            "status": status.value,
            "outcome": self.result.outcome.value if self.result else None,
            "directive": None,
            "only": self.only,
            "failure_reason": self.result.failure_reason if self.result else None,
            "children": [child.to_dict() for child in self.enumerated],
        }
        if self.directive is not None:
            data["directive"] = {
                "kind": self.directive.kind.value,
                "reason": self.directive.reason,
            }
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def resolve_arguments(
    args: tuple[Any, ...],
) -> tuple[str | None, TestOptions | Mapping[str, Any] | None, Body | None]:
    """Split declaration arguments into ``(name, options, fn)``.

    Accepts ``(name, fn)``, ``(name, options, fn)``, ``(name,)``,
    ``(name, options)``, ``(fn,)`` and ``(options, fn)``.

    Raises:
        UsageError: On any other shape.
    """
    rest = list(args)
    name: str | None = None
    options: TestOptions | Mapping[str, Any] | None = None
    fn: Body | None = None
    if rest and (rest[0] is None or isinstance(rest[0], str)):
        name = rest.pop(0)
    if rest and (rest[0] is None or isinstance(rest[0], (TestOptions, Mapping))):
        options = rest.pop(0)
    if rest and callable(rest[0]):
        fn = rest.pop(0)
    if rest:
        raise UsageError(
            "Expected (name, fn) or (name, options, fn), got "
            f"({', '.join(type(a).__name__ for a in args)})"
        )
    return name, options, fn


class Declarator:
    """Callable that declares nodes of one kind under a resolved scope.

    ``declarator(name, fn)`` declares a node; ``.skip``, ``.todo`` and
    ``.only`` force the matching option before delegating. Keyword
    arguments are merged into the options.

    Called without a body, it returns a decorator instead::

        @harness.it("adds", timeout=1)
        def adds():
            assert 1 + 1 == 2

    The decorated name is bound to the declared :class:`TestNode`.
    """

    def __init__(self, resolve_scope: Callable[[], TestNode], kind: NodeKind) -> None:
        self._resolve_scope = resolve_scope
        self._kind = kind

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self._declare(args, kwargs)

    def skip(self, *args: Any, **kwargs: Any) -> Any:
        return self._declare(args, kwargs, skip=True)

    def todo(self, *args: Any, **kwargs: Any) -> Any:
        return self._declare(args, kwargs, todo=True)

    def only(self, *args: Any, **kwargs: Any) -> Any:
        return self._declare(args, kwargs, only=True)

    def _declare(
        self,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        **forced: Any,
    ) -> TestNode | Callable[[Body], TestNode]:
        name, options, fn = resolve_arguments(args)
        merged = merge_options(options, **kwargs)
        for key, value in forced.items():
            # A reason string already given for the same directive wins.
            if not getattr(merged, key):
                merged = replace(merged, **{key: value})
        if fn is None:
            def decorator(body: Body) -> TestNode:
                return self._make_node(name, merged, body)

            return decorator
        return self._make_node(name, merged, fn)

    def _make_node(
        self, name: str | None, options: TestOptions, fn: Body
    ) -> TestNode:
        scope = self._resolve_scope()
        node = TestNode(name, fn, scope=scope, kind=self._kind, options=options)
        logger.debug(
            "Declared %s '%s' under '%s'", self._kind.value, node.name, scope.name
        )
        return node


class SuiteContext:
    """Handle passed to describe bodies."""

    def __init__(self, node: TestNode) -> None:
        self._node = node

    @property
    def name(self) -> str:
        return self._node.name

    @property
    def signal(self) -> asyncio.Event:
        """Event set when this test is aborted or times out."""
        return self._node.signal

    def before(self, fn: Hook) -> None:
        """Run *fn* once, after this body and before any subtest."""
        self._node.add_hook(HookKind.BEFORE, fn)

    def after(self, fn: Hook) -> None:
        """Run *fn* once, after every subtest finished."""
        self._node.add_hook(HookKind.AFTER, fn)

    def before_each(self, fn: Hook) -> None:
        """Run *fn* before the body of every nested test."""
        self._node.add_hook(HookKind.BEFORE_EACH, fn)

    def after_each(self, fn: Hook) -> None:
        """Run *fn* after the body of every nested test."""
        self._node.add_hook(HookKind.AFTER_EACH, fn)


class TestContext(SuiteContext):
    """Handle passed to it/test bodies.

    ``ctx.test(...)`` declares a subtest of the running test and returns
    the new node immediately; subtests run once the body has finished.
    """

    __test__ = False

    def __init__(self, node: TestNode) -> None:
        super().__init__(node)
        self.test = Declarator(lambda: self._node, NodeKind.CASE)

    def diagnostic(self, message: str) -> None:
        """Queue a ``#`` comment emitted after this test's subtests."""
        self._node.diagnostics.append(str(message))

    def run_only(self, enabled: bool = True) -> None:
        """Restrict this test's subtests to the ``only``-marked ones."""
        self._node.run_only_subtests = enabled

"""Test tree execution engine.

Walks a root :class:`TestNode` and writes TAP version 14 to a reporter.
A run goes through three stages:

1. Collection: every non-skipped describe body is invoked, in
   declaration order, so the statically declared tree is complete.
2. Selection: if any collected node is marked ``only``, nodes off an
   ancestor/self/descendant path of such a node are dropped.
3. Execution: siblings run concurrently; each child's rendered block is
   buffered and flushed in declaration order.

Body failures are caught at the node boundary and become ``not ok``
test points. :class:`~quicktap.errors.EngineError` is the only thing
that escapes a run.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import time
from collections.abc import AsyncIterator, Callable

from quicktap.errors import (
    AbortedError,
    BodyTimeoutError,
    EngineError,
    RootAlreadyRanError,
    UsageError,
)
from quicktap.events import TestEvent, TestEventEmitter, TestEventType
from quicktap.formatting import (
    VERSION_LINE,
    comment_lines,
    plan_line,
    result_line,
    yaml_block,
)
from quicktap.models import (
    HarnessConfig,
    NodeKind,
    Outcome,
    RunSummary,
    Status,
    TestResult,
)
from quicktap.node import Hook, HookKind, NodePhase, TestNode, current_scope
from quicktap.reporters import Reporter

logger = logging.getLogger(__name__)


def accepts_argument(fn: Callable[..., object]) -> bool:
    """Return ``True`` if *fn* can be called with one positional argument."""
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError):
        return False
    for param in signature.parameters.values():
        if param.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
            inspect.Parameter.VAR_POSITIONAL,
        ):
            return True
    return False


def select_only(root: TestNode) -> bool:
    """Mark which collected nodes take part in the run.

    Returns ``True`` if any node in the tree is marked ``only``.
    """
    if not any(node.only for node in root.walk()):
        for node in root.walk():
            node.selected = True
        return False

    def _mark(node: TestNode, inherited: bool) -> bool:
        on_path = inherited or node.only
        hits = [_mark(child, on_path) for child in node.children]
        hit = node.only or any(hits)
        node.selected = on_path or hit
        return hit

    _mark(root, False)
    root.selected = True
    return True


class OrderedOutput:
    """Buffer for sibling blocks that flushes in declaration order.

    Blocks may complete in any order; a block is written to *sink* only
    once every block before it has been written.
    """

    def __init__(self, size: int, sink: Callable[[str], None]) -> None:
        self._blocks: list[list[str] | None] = [None] * size
        self._next = 0
        self._sink = sink

    @property
    def flushed(self) -> int:
        return self._next

    def complete(self, index: int, lines: list[str]) -> None:
        if self._blocks[index] is not None or index < self._next:
            raise EngineError(f"Output block {index} completed twice")
        self._blocks[index] = lines
        while self._next < len(self._blocks):
            block = self._blocks[self._next]
            if block is None:
                break
            for line in block:
                self._sink(line)
            self._blocks[self._next] = []
            self._next += 1


class TestEngine:
    """Runs a test tree once and reports it as TAP.

    Args:
        reporter: Sink for the emitted lines.
        config: Harness-wide defaults (timeout, concurrency, diagnostics).
        event_emitter: Optional observer for lifecycle events.
    """

    __test__ = False

    def __init__(
        self,
        reporter: Reporter,
        config: HarnessConfig | None = None,
        event_emitter: TestEventEmitter | None = None,
    ) -> None:
        self._reporter = reporter
        self._config = config or HarnessConfig()
        self._event_emitter = event_emitter

    async def _emit(self, event: TestEvent) -> None:
        """Emit a run event if an emitter is configured."""
        if self._event_emitter is not None:
            await self._event_emitter.emit(event)

    async def run(self, root: TestNode) -> RunSummary:
        """Run every test under *root* and return the totals.

        Raises:
            RootAlreadyRanError: If *root* was already run.
            UsageError: If *root* is not a root node.
            EngineError: On an unrecoverable rendering or bookkeeping error.
        """
        if not root.is_root:
            raise UsageError(f"'{root.name}' is not a root node")
        if root.phase is not NodePhase.PENDING:
            raise RootAlreadyRanError("This test tree has already been run")
        root.phase = NodePhase.RUNNING
        start_time = time.monotonic()

        self._reporter.emit(VERSION_LINE)
        await self._emit(TestEvent(type=TestEventType.RUN_START))

        try:
            await self._collect(root)
            if select_only(root):
                logger.info("'only' markers present; running the marked tests only")

            root.freeze()
            children = [child for child in root.children if child.selected]
            root.enumerated = children
            self._reporter.emit(plan_line(len(children), root.indent))
            await self._run_children(root, children, self._reporter.emit)
        except EngineError as exc:
            logger.error("Run aborted: %s", exc)
            raise

        duration = time.monotonic() - start_time
        root.mark_done(TestResult(outcome=Outcome.PASSED, duration=duration))
        summary = summarize(root, duration)
        logger.info(
            "Run finished: %d passed, %d failed, %d skipped, %d todo in %.2fs",
            summary.passed,
            summary.failed,
            summary.skipped,
            summary.todo,
            duration,
        )
        await self._emit(TestEvent(
            type=TestEventType.RUN_COMPLETE,
            data={
                "ok": summary.ok,
                "total": summary.total,
                "failed": summary.failed,
                "duration": duration,
            },
        ))
        return summary

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    async def _collect(self, node: TestNode) -> None:
        """Invoke describe bodies so their children are declared."""
        for child in list(node.children):
            if child.directive is not None and child.directive.is_skip:
                continue
            if child.kind is NodeKind.SUITE and not child.body_ran:
                signal = child.options.signal
                if signal is not None and signal.is_set():
                    child.abort()
                await self._run_body(child)
            await self._collect(child)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run_children(
        self,
        parent: TestNode,
        children: list[TestNode],
        sink: Callable[[str], None],
    ) -> None:
        output = OrderedOutput(len(children), sink)
        limit = parent.options.concurrency or self._config.concurrency
        semaphore = asyncio.Semaphore(limit) if limit else None

        async def _run_child(index: int, child: TestNode) -> None:
            if semaphore is None:
                lines = await self._run_node(child, index + 1)
            else:
                async with semaphore:
                    lines = await self._run_node(child, index + 1)
            output.complete(index, lines)

        await asyncio.gather(
            *[_run_child(index, child) for index, child in enumerate(children)]
        )

    async def _run_node(self, node: TestNode, ordinal: int) -> list[str]:
        """Run *node* and its subtests; return its rendered block."""
        assert node.scope is not None
        line_indent = node.scope.indent

        if node.directive is not None and node.directive.is_skip:
            node.freeze()
            node.mark_done(TestResult(outcome=Outcome.SKIPPED))
            logger.debug("Skipped '%s'", node.name)
            await self._emit(self._node_event(TestEventType.NODE_SKIP, node))
            return [result_line(True, ordinal, node.name, line_indent, node.directive)]

        node.phase = NodePhase.RUNNING
        await self._emit(self._node_event(TestEventType.NODE_START, node))
        logger.debug("Running '%s'", " > ".join(node.path))
        started = time.monotonic()

        subtest_lines: list[str] = []
        async with self._watch_signal(node):
            error = await self._run_own(node)
            if isinstance(error, (BodyTimeoutError, AbortedError)):
                node.abort()
            error = await self._run_subtests(node, error, subtest_lines)

        result = self._make_result(node, error, time.monotonic() - started)
        node.mark_done(result)
        await self._emit_result(node, result)

        lines = [
            result_line(
                result.status is Status.OK,
                ordinal,
                node.name,
                line_indent,
                node.directive,
            )
        ]
        if self._config.report_errors and result.failed:
            lines.extend(yaml_block(self._failure_fields(result), node.indent))
        lines.extend(subtest_lines)
        for message in node.diagnostics:
            lines.extend(comment_lines(message, node.indent))
        return lines

    async def _run_own(self, node: TestNode) -> BaseException | None:
        """Run the node's body, wrapped in inherited each-hooks."""
        if node.aborted and not node.body_ran:
            return AbortedError()
        if node.kind is NodeKind.SUITE:
            if not node.body_ran:
                await self._run_body(node)
            return node.body_error

        error = await self._run_each_hooks(node, HookKind.BEFORE_EACH)
        if error is None:
            await self._run_body(node)
            error = node.body_error
        after_error = await self._run_each_hooks(node, HookKind.AFTER_EACH)
        return error or after_error

    async def _run_subtests(
        self,
        node: TestNode,
        error: BaseException | None,
        lines: list[str],
    ) -> BaseException | None:
        """Freeze, select and run the node's children between its hooks."""
        node.freeze()
        for child in node.children:
            if child.selected is None:
                child.selected = child.only or not node.run_only_subtests
        children = [child for child in node.children if child.selected]
        node.enumerated = children

        before_error = await self._run_hooks(node, HookKind.BEFORE)
        if before_error is not None:
            node.abort()
            error = error or before_error

        if children:
            lines.append(plan_line(len(children), node.indent))
            await self._run_children(node, children, lines.append)

        after_error = await self._run_hooks(node, HookKind.AFTER)
        return error or after_error

    # ------------------------------------------------------------------
    # Invoking user code
    # ------------------------------------------------------------------

    async def _run_body(self, node: TestNode) -> None:
        """Invoke the node's own body once and record its error."""
        node.body_ran = True
        if node.body is None:
            return
        node.body_error = await self._invoke(node, node.body)

    async def _run_hooks(self, node: TestNode, kind: HookKind) -> BaseException | None:
        for hook in node.hooks[kind]:
            error = await self._invoke(node, hook, label=f"{kind.value} hook")
            if error is not None:
                return error
        return None

    async def _run_each_hooks(
        self, node: TestNode, kind: HookKind
    ) -> BaseException | None:
        ancestors = list(node.ancestors())
        if kind is HookKind.BEFORE_EACH:
            ancestors.reverse()
        for ancestor in ancestors:
            for hook in ancestor.hooks[kind]:
                error = await self._invoke(node, hook, label=f"{kind.value} hook")
                if error is not None:
                    return error
        return None

    async def _invoke(
        self,
        node: TestNode,
        fn: Hook,
        label: str = "body",
    ) -> BaseException | None:
        """Run *fn* for *node* under its timeout and abort signal.

        Returns the caught exception, a :class:`BodyTimeoutError`, an
        :class:`AbortedError`, or ``None`` on success.
        """
        if node.aborted:
            return AbortedError()
        timeout = self._timeout_for(node)
        context = node.context

        async def _call() -> None:
            token = current_scope.set(node)
            try:
                outcome = fn(context) if accepts_argument(fn) else fn()
                if inspect.isawaitable(outcome):
                    await outcome
            finally:
                current_scope.reset(token)

        started = time.monotonic()
        task = asyncio.create_task(_call())
        abort_wait = asyncio.create_task(node.signal.wait())
        try:
            done, _ = await asyncio.wait(
                {task, abort_wait},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            abort_wait.cancel()

        if task in done:
            if task.cancelled():
                return AbortedError(f"{label} was cancelled")
            error = task.exception()
            if error is not None:
                logger.debug("%s of '%s' raised %r", label, node.name, error)
                return error
            # A blocking body finishes before the timer gets a chance to fire.
            if timeout is not None and time.monotonic() - started > timeout:
                logger.info("'%s' timed out after %ss", node.name, timeout)
                return BodyTimeoutError(timeout)
            return None

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await task
        if node.aborted:
            return AbortedError()
        assert timeout is not None
        logger.info("'%s' timed out after %ss", node.name, timeout)
        return BodyTimeoutError(timeout)

    def _timeout_for(self, node: TestNode) -> float | None:
        if node.options.timeout is not None:
            return node.options.timeout
        return self._config.default_timeout

    @contextlib.asynccontextmanager
    async def _watch_signal(self, node: TestNode) -> AsyncIterator[None]:
        """Abort *node* when its external ``signal`` option gets set."""
        signal = node.options.signal
        if signal is None:
            yield
            return
        if signal.is_set():
            node.abort()
            yield
            return

        async def _wait() -> None:
            await signal.wait()
            node.abort()

        watcher = asyncio.create_task(_wait())
        try:
            yield
        finally:
            watcher.cancel()

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @staticmethod
    def _make_result(
        node: TestNode, error: BaseException | None, duration: float
    ) -> TestResult:
        todo = node.directive is not None and node.directive.is_todo
        if error is None:
            outcome = Outcome.TODO_PASSED if todo else Outcome.PASSED
            return TestResult(outcome=outcome, duration=duration)
        outcome = Outcome.TODO_FAILED if todo else Outcome.FAILED
        reason = str(error) or type(error).__name__
        if not todo:
            logger.info("'%s' failed: %s", " > ".join(node.path), reason)
        return TestResult(
            outcome=outcome,
            failure_reason=reason,
            error=error,
            duration=duration,
        )

    @staticmethod
    def _failure_fields(result: TestResult) -> dict[str, object]:
        error = result.error
        return {
            "message": result.failure_reason,
            "severity": "todo" if result.outcome is Outcome.TODO_FAILED else "fail",
            "type": type(error).__name__ if error is not None else None,
            "duration_ms": round(result.duration * 1000, 3),
        }

    @staticmethod
    def _node_event(
        event_type: TestEventType, node: TestNode, **data: object
    ) -> TestEvent:
        return TestEvent(
            type=event_type,
            node_name=node.name,
            path=node.path,
            data=dict(data),
        )

    async def _emit_result(self, node: TestNode, result: TestResult) -> None:
        if isinstance(result.error, BodyTimeoutError):
            event_type = TestEventType.NODE_TIMEOUT
        elif isinstance(result.error, AbortedError):
            event_type = TestEventType.NODE_ABORTED
        elif result.outcome in (Outcome.TODO_PASSED, Outcome.TODO_FAILED):
            event_type = TestEventType.NODE_TODO
        elif result.outcome is Outcome.FAILED:
            event_type = TestEventType.NODE_FAIL
        else:
            event_type = TestEventType.NODE_PASS
        await self._emit(self._node_event(
            event_type,
            node,
            outcome=result.outcome.value,
            failure_reason=result.failure_reason,
            duration=result.duration,
        ))


def summarize(root: TestNode, duration: float = 0.0) -> RunSummary:
    """Count the outcomes of every enumerated node under *root*."""
    summary = RunSummary(ok=root.aggregate_status is Status.OK, duration=duration)
    stack = list(reversed(root.enumerated))
    while stack:
        node = stack.pop()
        summary.total += 1
        outcome = node.result.outcome if node.result else None
        if outcome is Outcome.PASSED:
            summary.passed += 1
        elif outcome is Outcome.FAILED:
            summary.failed += 1
            summary.failures.append(" > ".join(node.path))
        elif outcome is Outcome.SKIPPED:
            summary.skipped += 1
        else:
            summary.todo += 1
        stack.extend(reversed(node.enumerated))
    return summary

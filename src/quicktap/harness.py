"""Declaration API.

A :class:`Harness` owns one root node, the reporter it writes to and the
engine that runs it. ``describe``, ``it`` and ``test`` declare nodes under
the scope whose body is currently running, or under the root when called
outside any body::

    harness = Harness()

    def suite():
        harness.it("adds", lambda: None)
        harness.it.skip("divides", lambda: None, skip="not implemented")

    harness.describe("math", suite)
    summary = harness.run_sync()

The module-level functions delegate to a default harness created at
import time; :func:`set_default_harness` replaces it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from quicktap.engine import TestEngine
from quicktap.events import TestEventEmitter
from quicktap.models import HarnessConfig, NodeKind, RunSummary
from quicktap.node import Declarator, TestNode, current_scope
from quicktap.reporters import Reporter, as_reporter

logger = logging.getLogger(__name__)


class Harness:
    """A test tree plus everything needed to run it once.

    Args:
        config: Harness-wide defaults.
        reporter: Sink for TAP lines, or a plain ``Callable[[str], None]``.
            Defaults to the console.
        event_emitter: Optional observer for lifecycle events.
    """

    def __init__(
        self,
        config: HarnessConfig | None = None,
        reporter: Reporter | Callable[[str], None] | None = None,
        event_emitter: TestEventEmitter | None = None,
    ) -> None:
        self.config = config or HarnessConfig()
        self.reporter = as_reporter(reporter)
        self.event_emitter = event_emitter
        self.root = TestNode("root", kind=NodeKind.ROOT)
        self._engine = TestEngine(self.reporter, self.config, event_emitter)

        self.describe = Declarator(self.active_scope, NodeKind.SUITE)
        self.it = Declarator(self.active_scope, NodeKind.UNIT)
        self.test = Declarator(self.active_scope, NodeKind.CASE)

    def active_scope(self) -> TestNode:
        """Return the node new declarations attach to."""
        scope = current_scope.get()
        if scope is not None and scope.root is self.root:
            return scope
        return self.root

    @property
    def has_run(self) -> bool:
        return self.root.has_status

    async def run(self) -> RunSummary:
        """Run the declared tree once.

        Raises:
            RootAlreadyRanError: On a second call.
        """
        logger.debug("Starting run with %d top-level tests", len(self.root.children))
        return await self._engine.run(self.root)

    def run_sync(self) -> RunSummary:
        """Run the tree on a fresh event loop."""
        return asyncio.run(self.run())


_default_harness = Harness()


def get_default_harness() -> Harness:
    return _default_harness


def set_default_harness(harness: Harness) -> Harness:
    """Install *harness* as the target of the module-level API.

    Returns the previously installed harness.
    """
    global _default_harness
    previous = _default_harness
    _default_harness = harness
    return previous


def _default_scope() -> TestNode:
    return _default_harness.active_scope()


describe = Declarator(_default_scope, NodeKind.SUITE)
it = Declarator(_default_scope, NodeKind.UNIT)
test = Declarator(_default_scope, NodeKind.CASE)


def run() -> RunSummary:
    """Run the default harness on a fresh event loop."""
    return _default_harness.run_sync()

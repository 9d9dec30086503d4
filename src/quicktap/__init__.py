"""quicktap - nested describe/it/test declarations reported as TAP version 14.

Tests are declared as a tree of suites and units, run concurrently on an
asyncio event loop, and reported line by line in declaration order.
"""

from quicktap.engine import OrderedOutput, TestEngine, select_only, summarize
from quicktap.errors import (
    AbortedError,
    BodyTimeoutError,
    EngineError,
    FormatterError,
    LateDeclarationError,
    QuickTapError,
    RootAlreadyRanError,
    StatusNotSetError,
    UsageError,
)
from quicktap.events import TestEvent, TestEventEmitter, TestEventType
from quicktap.harness import (
    Harness,
    describe,
    get_default_harness,
    it,
    run,
    set_default_harness,
    test,
)
from quicktap.models import (
    Directive,
    DirectiveKind,
    HarnessConfig,
    NodeKind,
    Outcome,
    RunSummary,
    Status,
    TestOptions,
    TestResult,
)
from quicktap.node import SuiteContext, TestContext, TestNode
from quicktap.reporters import (
    BufferReporter,
    ConsoleReporter,
    Reporter,
    StreamReporter,
)

__all__ = [
    "AbortedError",
    "BodyTimeoutError",
    "BufferReporter",
    "ConsoleReporter",
    "Directive",
    "DirectiveKind",
    "EngineError",
    "FormatterError",
    "Harness",
    "HarnessConfig",
    "LateDeclarationError",
    "NodeKind",
    "OrderedOutput",
    "Outcome",
    "QuickTapError",
    "Reporter",
    "RootAlreadyRanError",
    "RunSummary",
    "Status",
    "StatusNotSetError",
    "StreamReporter",
    "SuiteContext",
    "TestContext",
    "TestEngine",
    "TestEvent",
    "TestEventEmitter",
    "TestEventType",
    "TestNode",
    "TestOptions",
    "TestResult",
    "UsageError",
    "describe",
    "get_default_harness",
    "it",
    "run",
    "select_only",
    "set_default_harness",
    "summarize",
    "test",
]

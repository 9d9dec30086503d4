"""Error hierarchy for the quicktap engine.

Two families matter to callers. :class:`UsageError` subclasses signal a
bug in the test declarations (declaring too late, reading a result
before it exists, running twice) and are raised synchronously.
:class:`EngineError` subclasses mean the engine itself can no longer
produce a trustworthy TAP stream and abort the run.

:class:`BodyTimeoutError` and :class:`AbortedError` are never raised out
of a run; they are stored on a node's result as the failure cause.
"""

from __future__ import annotations


class QuickTapError(Exception):
    """Base exception for all quicktap errors."""


class UsageError(QuickTapError):
    """Structural misuse of the declaration API."""


class LateDeclarationError(UsageError):
    """A child was declared after its parent froze its children."""

    def __init__(self, parent_name: str, child_name: str) -> None:
        super().__init__(
            f"Cannot declare '{child_name}' under '{parent_name}': "
            f"'{parent_name}' has already started running its subtests"
        )
        self.parent_name = parent_name
        self.child_name = child_name


class StatusNotSetError(UsageError):
    """A node's status was read before the node ran."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Test '{name}' has not been run yet")
        self.name = name


class RootAlreadyRanError(UsageError):
    """The root of a harness was run a second time."""


class EngineError(QuickTapError):
    """Raised for unrecoverable engine failures."""


class FormatterError(EngineError):
    """Rendering a TAP line was asked for impossible values."""


class BodyTimeoutError(QuickTapError):
    """A test body exceeded its configured timeout.

    Attributes:
        timeout: The limit that was exceeded, in seconds.
    """

    def __init__(self, timeout: float) -> None:
        super().__init__(f"test timed out after {timeout}s")
        self.timeout = timeout


class AbortedError(QuickTapError):
    """A test was cancelled by an abort request before it could finish."""

    def __init__(self, message: str = "test was aborted") -> None:
        super().__init__(message)

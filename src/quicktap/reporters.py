"""Sinks for the emitted TAP lines.

The engine only ever calls ``emit(line)``. Anything that satisfies the
:class:`Reporter` protocol can receive a run: the console, a file, an
in-memory buffer.
"""

from __future__ import annotations

from typing import Callable, Protocol, TextIO, runtime_checkable

from rich.console import Console


@runtime_checkable
class Reporter(Protocol):
    """Protocol that all TAP sinks must satisfy."""

    def emit(self, line: str) -> None:
        """Write one line of TAP output (without trailing newline)."""
        ...


class ConsoleReporter:
    """Write TAP lines to a rich console (stdout by default).

    Lines bypass rich rendering and go straight to the console's file,
    so tabs and control characters are written exactly as rendered.
    """

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(highlight=False, soft_wrap=True)

    def emit(self, line: str) -> None:
        stream = self._console.file
        stream.write(line + "\n")
        stream.flush()


class StreamReporter:
    """Write TAP lines to any text stream."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def emit(self, line: str) -> None:
        self._stream.write(line + "\n")
        self._stream.flush()


class BufferReporter:
    """Collect TAP lines in memory."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def emit(self, line: str) -> None:
        self.lines.append(line)

    @property
    def text(self) -> str:
        """The collected output, newline-terminated."""
        return "".join(f"{line}\n" for line in self.lines)

    def clear(self) -> None:
        self.lines.clear()


class CallbackReporter:
    """Adapt a plain ``Callable[[str], None]`` to the :class:`Reporter` protocol."""

    def __init__(self, callback: Callable[[str], None]) -> None:
        self._callback = callback

    def emit(self, line: str) -> None:
        self._callback(line)


def as_reporter(sink: Reporter | Callable[[str], None] | None) -> Reporter:
    """Return *sink* as a :class:`Reporter`, defaulting to the console."""
    if sink is None:
        return ConsoleReporter()
    if isinstance(sink, Reporter):
        return sink
    if callable(sink):
        return CallbackReporter(sink)
    raise TypeError(f"Expected a Reporter or a callable, got {type(sink).__name__}")

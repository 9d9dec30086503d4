"""TAP version 14 line rendering.

Pure functions only: every helper takes plain values and returns the
exact text the protocol expects. Indentation is always passed in by the
caller, so nothing here knows about the node tree.
"""

from __future__ import annotations

from typing import Any

from quicktap.errors import FormatterError
from quicktap.models import Directive, DirectiveKind

VERSION_LINE = "TAP version 14"
INDENTATION = "  "
DEFAULT_NAME = "<anonymous>"


def child_indent(indent: str) -> str:
    """Return the indentation used one nesting level below *indent*."""
    return indent + INDENTATION


def description(text: str) -> str:
    """Normalize *text* so that it starts with ``" - "``."""
    return text if text.startswith(" - ") else f" - {text}"


def escape(text: str) -> str:
    """Escape backslashes and double quotes for a diagnostic payload."""
    return text.replace("\\", "\\\\").replace('"', '\\"')


def escape_description(text: str) -> str:
    """Escape a test point name so ``#`` is not read as a directive.

    Line breaks are written as ``\\n`` and ``\\r`` so the name stays on
    its test point line.
    """
    return (
        text.replace("\\", "\\\\")
        .replace("#", "\\#")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )


def plan_line(count: int, indent: str = "") -> str:
    """Render ``1..<count>``."""
    if count < 0:
        raise FormatterError(f"Plan count must be non-negative, got {count}")
    return f"{indent}1..{count}"


def directive_suffix(directive: Directive | None) -> str:
    """Render the ``# SKIP`` / ``# TODO`` suffix of a test point line."""
    if directive is None:
        return ""
    keyword = "SKIP" if directive.kind is DirectiveKind.SKIP else "TODO"
    if directive.reason:
        return f" # {keyword} {escape_description(directive.reason)}"
    return f" # {keyword}"


def result_line(
    ok: bool,
    ordinal: int,
    name: str,
    indent: str = "",
    directive: Directive | None = None,
) -> str:
    """Render a single test point.

    Todo test points are always rendered as ``ok`` with their TODO
    annotation, whatever the body did.

    Args:
        ok: Whether the test point passed.
        ordinal: 1-based position among the parent's enumerated children.
        name: Display name of the test point.
        indent: Indentation of the parent's nesting level.
        directive: Optional SKIP or TODO directive.

    Raises:
        FormatterError: If *ordinal* is not a positive integer.
    """
    if ordinal < 1:
        raise FormatterError(f"Test point ordinal must be >= 1, got {ordinal}")
    if directive is not None and directive.kind is DirectiveKind.TODO:
        ok = True
    status = "ok" if ok else "not ok"
    text = description(escape_description(name))
    return f"{indent}{status} {ordinal}{text}{directive_suffix(directive)}"


def comment_lines(message: str, indent: str = "") -> list[str]:
    """Render a free-form diagnostic as ``#`` comment lines."""
    lines = message.splitlines() or [""]
    return [f"{indent}# {line}".rstrip() for line in lines]


def yaml_block(fields: dict[str, Any], indent: str = "") -> list[str]:
    """Render a YAML diagnostic block following a test point.

    String values are quoted and escaped; numbers and booleans are
    written bare. ``None`` values are omitted.
    """
    lines = [f"{indent}---"]
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, bool):
            rendered = "true" if value else "false"
        elif isinstance(value, (int, float)):
            rendered = str(value)
        else:
            text = escape(str(value)).replace("\n", "\\n")
            rendered = f'"{text}"'
        lines.append(f"{indent}{key}: {rendered}")
    lines.append(f"{indent}...")
    return lines

"""Shared fixtures: a harness writing into an in-memory buffer."""

from __future__ import annotations

import pytest

from quicktap.harness import Harness
from quicktap.reporters import BufferReporter


@pytest.fixture()
def buffer() -> BufferReporter:
    return BufferReporter()


@pytest.fixture()
def harness(buffer: BufferReporter) -> Harness:
    return Harness(reporter=buffer)

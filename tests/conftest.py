"""Pytest configuration and fixtures."""

from collections.abc import AsyncIterator, Callable
from pathlib import Path

import pytest


async def _chunked(payload, size: int = 1000) -> AsyncIterator:
    for start in range(0, len(payload), size):
        yield payload[start:start + size]


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Directory for disk stores."""
    return tmp_path / ".cache"


@pytest.fixture
def chunked() -> Callable[..., AsyncIterator]:
    """Stream a str or bytes payload in fixed-size chunks."""
    return _chunked


@pytest.fixture
def large_text() -> str:
    """A payload large enough to span many stream chunks."""
    return "abc" * 5000


@pytest.fixture
def large_reader(large_text: str) -> Callable[[], AsyncIterator]:
    """Reader factory streaming the large payload as text chunks."""
    return lambda: _chunked(large_text)

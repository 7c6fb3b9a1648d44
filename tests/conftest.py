"""Shared test fixtures."""

from pathlib import Path

import pytest
from PIL import Image

from vibechat.capture.store import CaptureStore
from vibechat.memory.store import MemoryStore


def _tiny_screen() -> Image.Image:
    return Image.new("RGB", (4, 3), (10, 20, 30))


@pytest.fixture
async def memory(tmp_path: Path) -> MemoryStore:
    """A MemoryStore backed by a temp database with default personalities."""
    store = MemoryStore(tmp_path / "memory.db")
    await store.initialize()
    return store


@pytest.fixture
def captures(tmp_path: Path) -> CaptureStore:
    """A CaptureStore whose grabber returns the same tiny image every time."""
    return CaptureStore(tmp_path / "captures", grabber=_tiny_screen)

"""Shared pytest fixtures for character studio tests."""

from __future__ import annotations

import pytest

from app.studio.models import TextChunk
from app.studio.quota import QuotaStore
from fakes import MemoryStorage, ScriptedGenerator


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def quota_store(storage: MemoryStorage) -> QuotaStore:
    return QuotaStore(storage, free_limit=5)


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def text_only() -> list:
    return [TextChunk("x"), TextChunk("y")]

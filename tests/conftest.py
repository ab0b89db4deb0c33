from __future__ import annotations

import pytest

from fakes import FakeThreadStore


@pytest.fixture
def thread_store() -> FakeThreadStore:
    return FakeThreadStore()

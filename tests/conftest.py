"""Shared fixtures for RepoSync tests.

The test doubles live in support.py (this directory is on sys.path for
every test module).
"""

import threading
from typing import List

import pytest

from support import FakeTarget, Host


@pytest.fixture
def target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def host() -> Host:
    return Host()


@pytest.fixture
def no_sleep() -> List[float]:
    """Collects requested sleeps instead of sleeping."""
    return []


@pytest.fixture
def cancel() -> threading.Event:
    return threading.Event()

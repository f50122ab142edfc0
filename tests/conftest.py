"""Shared fixtures for Pearl Gate tests."""
from __future__ import annotations

import pytest

from pearl_gate.service import LinkService
from pearl_gate.state import LinkStore


@pytest.fixture
def store(tmp_path):
    return LinkStore(tmp_path)


@pytest.fixture
def service(store):
    return LinkService(store)

"""Shared pytest fixtures."""

import pytest

from finops.core.config import get_settings


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are cached per process; tests that patch the environment need a fresh copy"""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()

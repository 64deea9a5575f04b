"""Shared test fixtures for polaris."""

import pytest

from polaris.core.config import Settings, reset_settings
from polaris.storage.store import MemoryDocumentStore
from polaris.workflow.engine import RetryPolicy, StepContext
from polaris.workflow.steps import MemoryStepStore

from helpers import INTERNAL_KEY

FAST_RETRY = RetryPolicy(max_attempts=2, min_seconds=0, max_seconds=0)


@pytest.fixture
def settings():
    """Settings with no delays and a fast retry policy."""
    s = Settings(
        internal_key=INTERNAL_KEY,
        mongodb_url="",
        db_sync_delay=0,
        step_max_attempts=2,
        step_retry_min_seconds=0,
        step_retry_max_seconds=0,
        suggestion_debounce=0,
    )
    reset_settings(s)
    yield s
    reset_settings()


@pytest.fixture
def store():
    return MemoryDocumentStore(INTERNAL_KEY)


@pytest.fixture
def step_store():
    return MemoryStepStore()


@pytest.fixture
def step(step_store):
    return StepContext("run-test", step_store, retry=FAST_RETRY)

"""Shared fixtures for dataknobs-tasks tests."""

import pytest

from dataknobs_tasks import ExecutionConfig, LeafTask
from dataknobs_tasks.testing import RecordingHandler


@pytest.fixture
def recorder() -> RecordingHandler:
    """Provide a fresh recording handler."""
    return RecordingHandler()


@pytest.fixture
def config(recorder: RecordingHandler) -> ExecutionConfig:
    """Provide a config that records lifecycle events."""
    return ExecutionConfig(
        callbacks=(recorder,),
        metadata={"suite": "tasks"},
        tags={"test"},
        recursion_limit=10,
    )


@pytest.fixture
def double() -> LeafTask:
    async def double(x: int) -> int:
        return x * 2

    return LeafTask(double)


@pytest.fixture
def add_one() -> LeafTask:
    async def add_one(x: int) -> int:
        return x + 1

    return LeafTask(add_one)


@pytest.fixture
def identity() -> LeafTask:
    return LeafTask(lambda x: x, name="identity")

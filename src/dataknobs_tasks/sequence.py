"""Sequential composition of tasks."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from .base import Task, require_task, task_name
from .config import ExecutionConfig
from .exceptions import ConfigurationError, ExecutionError, RecursionLimitError

logger = logging.getLogger(__name__)


class Sequence(Task):
    """Chains tasks so each one's output becomes the next one's input.

    Steps run in strict order: step ``i + 1`` never starts before step ``i``
    completes. Each step runs with ``config.child()``. The first failure
    stops the sequence and is raised as an ``ExecutionError`` naming the
    failing step; no partial result is returned.

    Example:
        ```python
        pipeline = Sequence([double, add_one])
        assert await pipeline.invoke(3) == 7

        # Equivalent
        pipeline = Sequence(double, add_one)
        pipeline = double.pipe(add_one)
        ```
    """

    def __init__(self, *steps: Any, name: str | None = None):
        if len(steps) == 1 and isinstance(steps[0], (list, tuple)):
            steps = tuple(steps[0])
        if not steps:
            raise ConfigurationError("Sequence requires at least one step")
        for index, step in enumerate(steps):
            require_task(step, step=index)
        super().__init__(name)
        self._steps: tuple[Any, ...] = tuple(steps)

    @property
    def steps(self) -> tuple[Any, ...]:
        return self._steps

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._steps)

    async def _execute(self, input: Any, config: ExecutionConfig) -> Any:
        value = input
        for index, step in enumerate(self._steps):
            step_config = config.child()
            try:
                value = await step.invoke(value, step_config)
            except RecursionLimitError:
                raise
            except Exception as e:
                logger.debug(
                    "Sequence '%s' stopped at step %d (%s): %s",
                    self.name, index, task_name(step), e,
                )
                raise ExecutionError.annotate(e, "step", index, task_name(step)) from e
        return value

    def __repr__(self) -> str:
        return f"Sequence({', '.join(task_name(s) for s in self._steps)})"


__all__ = ["Sequence"]

"""Concurrent fan-out/fan-in of named tasks.

Example:
    ```python
    from dataknobs_tasks import ParallelGroup

    analysis = ParallelGroup({
        "summary": summary_task,
        "keywords": keyword_task,
        "sentiment": sentiment_task,
    })

    results = await analysis.invoke("Local LLMs enable privacy-first AI.")
    # {"summary": ..., "keywords": ..., "sentiment": ...}

    # Partial results as each branch finishes
    async for snapshot in analysis.stream("Local LLMs enable privacy-first AI."):
        print(sorted(snapshot))
    ```
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from types import MappingProxyType
from typing import Any, Dict, List

from .base import Task, require_task, task_name
from .callbacks import LifecycleManager
from .config import ExecutionConfig
from .exceptions import ConfigurationError, ExecutionError, RecursionLimitError

logger = logging.getLogger(__name__)


class ParallelGroup(Task):
    """Runs named tasks concurrently on the same input.

    Every branch receives the same input and its own ``config.child()``.
    The joined result maps each name to its branch's output, with keys in
    construction order regardless of which branch finished first.

    On failure the first failing branch is raised as an ``ExecutionError``
    naming the branch (if several fail in the same scheduling step, the one
    declared first wins) and the branches still running are cancelled.

    ``stream`` yields a snapshot of the accumulated results every time a
    branch finishes, in completion order. A failing branch aborts the stream
    after the snapshots already yielded.

    ``batch`` runs the whole group once per input and returns one result
    mapping per input, in input order.

    The mapping is validated eagerly: anything other than a mapping of
    string names to tasks raises ``ConfigurationError`` at construction.
    """

    def __init__(self, tasks: Mapping[str, Any], name: str | None = None):
        if not isinstance(tasks, Mapping):
            raise ConfigurationError(
                "ParallelGroup requires a mapping of named tasks",
                context={"type": type(tasks).__name__},
            )
        if not tasks:
            raise ConfigurationError("ParallelGroup requires at least one task")
        for key, value in tasks.items():
            if not isinstance(key, str):
                raise ConfigurationError(
                    f"Branch name {key!r} must be a string",
                    context={"branch": repr(key)},
                )
            require_task(value, branch=key)
        super().__init__(name)
        self._tasks: Mapping[str, Any] = MappingProxyType(dict(tasks))

    @property
    def tasks(self) -> Mapping[str, Any]:
        return self._tasks

    @property
    def names(self) -> List[str]:
        return list(self._tasks)

    def has_task(self, name: str) -> bool:
        return name in self._tasks

    def get_task(self, name: str) -> Any:
        """Get the task registered under ``name``.

        Raises:
            KeyError: If no branch has that name
        """
        return self._tasks[name]

    def __len__(self) -> int:
        return len(self._tasks)

    def _start(self, input: Any, config: ExecutionConfig) -> Dict[str, asyncio.Task]:
        branch_configs = {name: config.child() for name in self._tasks}
        return {
            name: asyncio.ensure_future(branch.invoke(input, branch_configs[name]))
            for name, branch in self._tasks.items()
        }

    @staticmethod
    async def _cancel(futures: Dict[str, asyncio.Task]) -> None:
        for future in futures.values():
            if not future.done():
                future.cancel()
        # Also retrieves exceptions of other failed branches
        await asyncio.gather(*futures.values(), return_exceptions=True)

    def _raise_branch_error(self, name: str, error: BaseException) -> None:
        if isinstance(error, RecursionLimitError):
            raise error
        logger.debug("ParallelGroup '%s' branch '%s' failed: %s", self.name, name, error)
        branch = task_name(self._tasks[name])
        raise ExecutionError.annotate(error, "branch", name, branch) from error

    def _first_failure(
        self, futures: Dict[str, asyncio.Task], settled: Any
    ) -> tuple[str, BaseException] | None:
        for name, future in futures.items():
            if future in settled and not future.cancelled() and future.exception() is not None:
                return name, future.exception()
        return None

    async def _execute(self, input: Any, config: ExecutionConfig) -> Dict[str, Any]:
        futures: Dict[str, asyncio.Task] = {}
        try:
            futures = self._start(input, config)
            done, _ = await asyncio.wait(
                futures.values(), return_when=asyncio.FIRST_EXCEPTION
            )
            failure = self._first_failure(futures, done)
            if failure is not None:
                name, error = failure
                self._raise_branch_error(name, error)
            return {name: future.result() for name, future in futures.items()}
        finally:
            await self._cancel(futures)

    async def _stream(self, input: Any, config: ExecutionConfig) -> AsyncIterator[Dict[str, Any]]:
        manager = LifecycleManager.from_config(config)
        await manager.notify_start(self, input, config)

        futures: Dict[str, asyncio.Task] = {}
        results: Dict[str, Any] = {}
        try:
            futures = self._start(input, config)
            pending = set(futures.values())
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                # Branches settling in the same step are reported in declaration order
                for name, future in futures.items():
                    if future not in done:
                        continue
                    error = future.exception()
                    if error is not None:
                        self._raise_branch_error(name, error)
                    results[name] = future.result()
                    yield dict(results)
        except Exception as e:
            await manager.notify_error(self, e, config)
            raise
        finally:
            await self._cancel(futures)

        await manager.notify_end(self, dict(results), config)

    def __repr__(self) -> str:
        return f"ParallelGroup({', '.join(self._tasks)})"


__all__ = ["ParallelGroup"]

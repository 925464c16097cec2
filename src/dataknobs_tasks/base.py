"""Base task abstraction.

A task wraps one unit of asynchronous work behind a uniform contract:

- invoke: Run once for an input and return the output
- stream: Produce the output as an async iterator of partial results
- batch: Run once per input, concurrently, returning outputs in input order
- pipe: Chain with another task into a ``Sequence``

Every concrete task implements only ``_execute`` (and optionally
``_stream``); the lifecycle wrapping in ``invoke`` is the same for leaves
and composites, so a tree of tasks is invokable at any depth.

Example:
    ```python
    from dataknobs_tasks import LeafTask, task

    @task
    async def double(x: int) -> int:
        return x * 2

    add_one = LeafTask(lambda x: x + 1, name="add_one")

    pipeline = double | add_one
    assert await pipeline.invoke(3) == 7
    assert await double.batch([1, 2, 3]) == [2, 4, 6]
    ```
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import aclosing
from typing import TYPE_CHECKING, Any, Dict, List, Protocol, Union, runtime_checkable

from .callbacks import LifecycleManager
from .config import ExecutionConfig, ensure_config
from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from .sequence import Sequence

logger = logging.getLogger(__name__)

ConfigLike = Union[ExecutionConfig, Dict[str, Any], None]

TASK_CAPABILITIES = ("invoke", "stream", "batch", "pipe")


@runtime_checkable
class TaskLike(Protocol):
    """Structural type of anything usable as a task in a composition."""

    async def invoke(self, input: Any, config: ConfigLike = None) -> Any: ...

    def stream(self, input: Any, config: ConfigLike = None) -> AsyncIterator[Any]: ...

    async def batch(self, inputs: Iterable[Any], config: ConfigLike = None) -> List[Any]: ...

    def pipe(self, other: Any) -> Any: ...


def is_task(obj: Any) -> bool:
    """Check whether ``obj`` provides the full task capability set."""
    return obj is not None and all(
        callable(getattr(obj, capability, None)) for capability in TASK_CAPABILITIES
    )


def require_task(obj: Any, **context: Any) -> Any:
    """Return ``obj`` if it is a task, raise ``ConfigurationError`` otherwise."""
    if not is_task(obj):
        missing = [c for c in TASK_CAPABILITIES if not callable(getattr(obj, c, None))]
        raise ConfigurationError(
            f"{obj!r} is not a task (missing {', '.join(missing)})",
            context={"type": type(obj).__name__, "missing": missing, **context},
        )
    return obj


async def gather_fail_fast(coros: Iterable[Awaitable[Any]]) -> List[Any]:
    """Await all ``coros`` concurrently, keeping their order.

    The first failure cancels whatever is still running and is re-raised.
    """
    futures = [asyncio.ensure_future(c) for c in coros]
    try:
        return list(await asyncio.gather(*futures))
    except BaseException:
        for future in futures:
            if not future.done():
                future.cancel()
        await asyncio.gather(*futures, return_exceptions=True)
        raise


def task_name(obj: Any) -> str:
    return getattr(obj, "name", None) or type(obj).__name__


class Task(ABC):
    """Abstract base class for composable asynchronous work.

    Subclasses implement ``_execute``. Tasks are built once and invoked many
    times; they hold no per-invocation state, so one instance can run
    concurrently with different inputs and configs.

    Attributes:
        name: Identifier used in lifecycle events and error annotations
    """

    def __init__(self, name: str | None = None):
        self.name = name or type(self).__name__

    @abstractmethod
    async def _execute(self, input: Any, config: ExecutionConfig) -> Any:
        """Perform the work of this task.

        Raising is the only failure channel.

        Args:
            input: The task input
            config: Config for this invocation

        Returns:
            The task output
        """
        ...

    async def invoke(self, input: Any, config: ConfigLike = None) -> Any:
        """Run the task once for ``input``.

        Handlers in ``config.callbacks`` are notified before execution, and
        after it with either the output or the exception. The exception is
        re-raised unchanged.

        Args:
            input: The task input
            config: ExecutionConfig, dict, or None for defaults

        Returns:
            The task output
        """
        config = ensure_config(config)
        manager = LifecycleManager.from_config(config)
        await manager.notify_start(self, input, config)
        try:
            output = await self._execute(input, config)
        except Exception as e:
            logger.debug("Task '%s' failed: %s", self.name, e)
            await manager.notify_error(self, e, config)
            raise
        await manager.notify_end(self, output, config)
        return output

    async def stream(self, input: Any, config: ConfigLike = None) -> AsyncIterator[Any]:
        """Run the task, yielding partial outputs as they become available.

        Each call returns a fresh, finite iterator. By default it yields a
        single element: the result of ``invoke``.

        Args:
            input: The task input
            config: ExecutionConfig, dict, or None for defaults

        Yields:
            Partial outputs; the last one is the complete output
        """
        config = ensure_config(config)
        async with aclosing(self._stream(input, config)) as chunks:
            async for chunk in chunks:
                yield chunk

    async def _stream(self, input: Any, config: ExecutionConfig) -> AsyncIterator[Any]:
        yield await self.invoke(input, config)

    async def batch(self, inputs: Iterable[Any], config: ConfigLike = None) -> List[Any]:
        """Invoke the task once per input, concurrently.

        Results are returned in input order regardless of completion order.
        ``config.max_concurrency`` bounds how many invocations run at once.
        The first failure cancels the remaining invocations and propagates.

        Args:
            inputs: The inputs to process
            config: ExecutionConfig, dict, or None for defaults

        Returns:
            One output per input
        """
        config = ensure_config(config)
        items = list(inputs)
        if not items:
            return []

        semaphore = (
            asyncio.Semaphore(config.max_concurrency) if config.max_concurrency else None
        )

        async def _run(item: Any) -> Any:
            if semaphore is None:
                return await self.invoke(item, config)
            async with semaphore:
                return await self.invoke(item, config)

        results = await gather_fail_fast(_run(item) for item in items)
        logger.debug("Batch of %d completed for task '%s'", len(results), self.name)
        return results

    def pipe(self, other: Any) -> Sequence:
        """Chain ``other`` after this task.

        Returns a new two-step ``Sequence``. Nested pipes are not flattened:
        ``a.pipe(b).pipe(c)`` and ``a.pipe(b.pipe(c))`` give the same output
        through differently shaped trees.
        """
        from .sequence import Sequence

        return Sequence(self, other)

    def __or__(self, other: Any) -> Sequence:
        return self.pipe(other)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class LeafTask(Task):
    """A task wrapping a user function.

    The function may be async or plain. It receives the input as its first
    argument, and the ExecutionConfig as ``config`` when it declares a
    parameter with that name.

    Example:
        ```python
        async def summarize(text: str) -> str:
            return await generator.generate(f"Summarize: {text}")

        summary = LeafTask(summarize)

        def tagged(text: str, config: ExecutionConfig) -> str:
            return f"{config.run_name}: {text}"

        label = LeafTask(tagged)
        ```
    """

    def __init__(self, func: Callable[..., Any], name: str | None = None):
        if not callable(func):
            raise ConfigurationError(
                "LeafTask requires a callable", context={"type": type(func).__name__}
            )
        super().__init__(name or getattr(func, "__name__", None) or type(self).__name__)
        self._func = func
        try:
            parameters = inspect.signature(func).parameters
        except (TypeError, ValueError):
            parameters = {}
        self._wants_config = "config" in parameters

    @property
    def func(self) -> Callable[..., Any]:
        return self._func

    async def _execute(self, input: Any, config: ExecutionConfig) -> Any:
        if self._wants_config:
            result = self._func(input, config=config)
        else:
            result = self._func(input)
        if inspect.isawaitable(result):
            result = await result
        return result


def task(
    func: Callable[..., Any] | None = None, *, name: str | None = None
) -> Any:
    """Decorator turning a function into a ``LeafTask``.

    Usable bare (``@task``) or with a name (``@task(name="clean")``).
    """
    if func is None:
        return lambda f: LeafTask(f, name=name)
    return LeafTask(func, name=name)


__all__ = [
    "TASK_CAPABILITIES",
    "LeafTask",
    "Task",
    "TaskLike",
    "gather_fail_fast",
    "is_task",
    "require_task",
    "task",
    "task_name",
]

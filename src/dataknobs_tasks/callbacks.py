"""Lifecycle callbacks for task execution.

Handlers observe the start, end and failure of every task in an invocation
tree. They are attached through ``ExecutionConfig.callbacks`` and fanned out
by a ``LifecycleManager``:

- on_start: Called before a task executes, with its input
- on_end: Called after a task succeeds, with its output
- on_error: Called when a task raises, with the exception

A handler may implement any subset of the hooks, as plain or async methods.
A failing handler never affects the task being observed: the manager logs
the failure and moves on to the next handler.

Example:
    ```python
    class TimingHandler(CallbackHandler):
        async def on_start(self, task, input, config):
            print(f"{task.name} started")

        async def on_end(self, task, output, config):
            print(f"{task.name} finished")

    config = ExecutionConfig(callbacks=(TimingHandler(), LoggingCallbackHandler()))
    await pipeline.invoke("text", config)
    ```
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .exceptions import CallbackError

if TYPE_CHECKING:
    from .config import ExecutionConfig

logger = logging.getLogger(__name__)


class CallbackHandler:
    """Base class for lifecycle handlers.

    Every hook is a no-op; subclasses override the ones they need. Any object
    with one or more of these methods can be used as a handler, subclassing
    is optional.
    """

    async def on_start(self, task: Any, input: Any, config: ExecutionConfig) -> None:
        """Called before ``task`` executes.

        Args:
            task: The task about to run
            input: The task's input
            config: The config the task runs with
        """

    async def on_end(self, task: Any, output: Any, config: ExecutionConfig) -> None:
        """Called after ``task`` returns ``output``."""

    async def on_error(self, task: Any, error: BaseException, config: ExecutionConfig) -> None:
        """Called when ``task`` raises ``error``, before it propagates."""


class LifecycleManager:
    """Fans lifecycle notifications out to the handlers of a config.

    The manager keeps a reference to the config's callback tuple, never a
    copy, and never stores the task it reports on.
    """

    def __init__(self, handlers: tuple[Any, ...]):
        self._handlers = handlers

    @classmethod
    def from_config(cls, config: ExecutionConfig) -> LifecycleManager:
        return cls(config.callbacks)

    @property
    def handlers(self) -> tuple[Any, ...]:
        return self._handlers

    async def notify_start(self, task: Any, input: Any, config: ExecutionConfig) -> None:
        await self._dispatch("on_start", task, input, config)

    async def notify_end(self, task: Any, output: Any, config: ExecutionConfig) -> None:
        await self._dispatch("on_end", task, output, config)

    async def notify_error(
        self, task: Any, error: BaseException, config: ExecutionConfig
    ) -> None:
        await self._dispatch("on_error", task, error, config)

    async def _dispatch(self, hook: str, task: Any, payload: Any, config: ExecutionConfig) -> None:
        # Strictly sequential: each hook finishes before the next handler runs
        for handler in self._handlers:
            method = getattr(handler, hook, None)
            if method is None:
                continue
            try:
                result = method(task, payload, config)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                error = CallbackError(
                    f"Callback handler {type(handler).__name__}.{hook} failed: {e}",
                    context={
                        "handler": type(handler).__name__,
                        "hook": hook,
                        "task": getattr(task, "name", type(task).__name__),
                    },
                )
                logger.error("%s", error, exc_info=e)


class LoggingCallbackHandler(CallbackHandler):
    """Handler that logs every lifecycle event.

    Attributes:
        log_level: Logging level for start/end events (errors always use ERROR)
        include_metadata: Whether to include config metadata and tags
        json_format: Whether to output log payloads as JSON

    Example:
        ```python
        handler = LoggingCallbackHandler(log_level="DEBUG", json_format=True)
        config = ExecutionConfig(callbacks=(handler,), run_name="digest")
        ```
    """

    def __init__(
        self,
        log_level: str = "INFO",
        include_metadata: bool = True,
        json_format: bool = False,
    ):
        """Initialize the logging handler.

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            include_metadata: Whether to log config metadata and tags
            json_format: Whether to output in JSON format
        """
        self.log_level = log_level
        self.include_metadata = include_metadata
        self.json_format = json_format
        self._level = getattr(logging, log_level.upper())
        self._logger = logging.getLogger(f"{__name__}.TaskLogger")

    def _payload(self, event: str, task: Any, config: ExecutionConfig) -> dict[str, Any]:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "task": getattr(task, "name", type(task).__name__),
            "run_name": config.run_name,
            "recursion_limit": config.recursion_limit,
        }
        if self.include_metadata:
            log_data["tags"] = sorted(config.tags)
            log_data["metadata"] = dict(config.metadata)
        return log_data

    def _emit(self, level: int, label: str, log_data: dict[str, Any], **kwargs: Any) -> None:
        if self.json_format:
            self._logger.log(level, json.dumps(log_data, default=str), **kwargs)
        else:
            self._logger.log(level, f"{label}: {log_data}", **kwargs)

    async def on_start(self, task: Any, input: Any, config: ExecutionConfig) -> None:
        self._emit(self._level, "Task started", self._payload("task_start", task, config))
        self._logger.debug(f"Task input: {str(input)[:200]}")

    async def on_end(self, task: Any, output: Any, config: ExecutionConfig) -> None:
        self._emit(self._level, "Task finished", self._payload("task_end", task, config))
        self._logger.debug(f"Task output: {str(output)[:200]}")

    async def on_error(self, task: Any, error: BaseException, config: ExecutionConfig) -> None:
        log_data = self._payload("task_error", task, config)
        log_data["error_type"] = type(error).__name__
        log_data["error_message"] = str(error)
        self._emit(logging.ERROR, "Task failed", log_data, exc_info=error)


__all__ = [
    "CallbackHandler",
    "LifecycleManager",
    "LoggingCallbackHandler",
]

"""Testing utilities for dataknobs-tasks.

Small, deterministic building blocks for unit tests and examples: leaves
with controlled latency or failure, a handler that records lifecycle
events, and in-memory stand-ins for the provider protocols.

Example:
    ```python
    from dataknobs_tasks import ExecutionConfig, ParallelGroup
    from dataknobs_tasks.testing import RecordingHandler, delayed

    recorder = RecordingHandler()
    group = ParallelGroup({
        "summary": delayed("summary", 0.4),
        "keywords": delayed("keywords", 0.2),
    })
    result = await group.invoke("X", ExecutionConfig(callbacks=(recorder,)))
    assert result == {"summary": "summary: X", "keywords": "keywords: X"}
    assert recorder.events_for("summary") == ["start", "end"]
    ```
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .base import LeafTask


def delayed(label: str, seconds: float = 0.0) -> LeafTask:
    """Leaf that waits ``seconds`` and returns ``"<label>: <input>"``."""

    async def _label(input: Any) -> str:
        if seconds:
            await asyncio.sleep(seconds)
        return f"{label}: {input}"

    return LeafTask(_label, name=label)


def failing(
    message: str = "boom",
    seconds: float = 0.0,
    error_type: type[Exception] = RuntimeError,
    name: str = "failing",
) -> LeafTask:
    """Leaf that waits ``seconds`` and raises ``error_type(message)``."""

    async def _fail(input: Any) -> Any:
        if seconds:
            await asyncio.sleep(seconds)
        raise error_type(message)

    return LeafTask(_fail, name=name)


@dataclass
class RecordedEvent:
    """One lifecycle notification seen by a ``RecordingHandler``."""

    event: str
    task_name: str
    payload: Any
    recursion_limit: int


@dataclass
class RecordingHandler:
    """Handler that records every lifecycle event it receives.

    Attributes:
        label: Identifier, useful when checking ordering across handlers
        log: Optional shared list receiving ``(label, event, task_name)``
        events: Events recorded by this handler, in arrival order
    """

    label: str = "recorder"
    log: List[tuple[str, str, str]] | None = None
    events: List[RecordedEvent] = field(default_factory=list)

    def _record(self, event: str, task: Any, payload: Any, config: Any) -> None:
        name = getattr(task, "name", type(task).__name__)
        self.events.append(RecordedEvent(event, name, payload, config.recursion_limit))
        if self.log is not None:
            self.log.append((self.label, event, name))

    async def on_start(self, task: Any, input: Any, config: Any) -> None:
        self._record("start", task, input, config)

    async def on_end(self, task: Any, output: Any, config: Any) -> None:
        self._record("end", task, output, config)

    async def on_error(self, task: Any, error: BaseException, config: Any) -> None:
        self._record("error", task, error, config)

    def events_for(self, task_name: str) -> List[str]:
        """Event names recorded for the named task, in order."""
        return [e.event for e in self.events if e.task_name == task_name]


class EchoGenerator:
    """Text generator that echoes the prompt in fixed-size chunks.

    Attributes:
        prefix: Prepended to the echoed prompt
        chunk_size: Characters per ``on_text`` call
        delay: Seconds to wait before each chunk
        calls: Prompts and options received, in order
    """

    def __init__(self, prefix: str = "", chunk_size: int = 4, delay: float = 0.0):
        self.prefix = prefix
        self.chunk_size = chunk_size
        self.delay = delay
        self.calls: List[tuple[str, Dict[str, Any]]] = []

    async def generate(
        self,
        prompt: str,
        *,
        on_text: Callable[[str], Any] | None = None,
        **options: Any,
    ) -> str:
        self.calls.append((prompt, dict(options)))
        text = f"{self.prefix}{prompt}"
        for start in range(0, len(text), self.chunk_size):
            if self.delay:
                await asyncio.sleep(self.delay)
            if on_text is not None:
                result = on_text(text[start:start + self.chunk_size])
                if inspect.isawaitable(result):
                    await result
        return text


class StaticToolExecutor:
    """Tool executor backed by a dict of plain or async functions."""

    def __init__(self, tools: Dict[str, Callable[..., Any]]):
        self._tools = dict(tools)

    async def execute_tool(self, name: str, **kwargs: Any) -> Any:
        if name not in self._tools:
            raise KeyError(f"Tool '{name}' not found")
        result = self._tools[name](**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


__all__ = [
    "EchoGenerator",
    "RecordedEvent",
    "RecordingHandler",
    "StaticToolExecutor",
    "delayed",
    "failing",
]

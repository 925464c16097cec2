"""Leaf tasks backed by external providers.

Tasks never own the providers they call: a model session or tool registry
is created and closed by the application, and only its narrow async
contract is used here.

- TextGenerator: ``await generate(prompt, on_text=..., **options) -> str``
- ToolExecutor: ``await execute_tool(name, **kwargs) -> Any``

Example:
    ```python
    summarize = GenerationTask(llm, name="summarize", temperature=0.2)
    lookup = ToolTask(tool_registry, "search_docs")

    answer = await summarize.invoke("Summarize: ...")

    async for delta in summarize.stream("Tell me a story"):
        print(delta, end="", flush=True)

    hits = await lookup.invoke({"query": "parallel runnables"})
    ```
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from typing import Any, Dict, Protocol, runtime_checkable

from .base import Task
from .callbacks import LifecycleManager
from .config import ExecutionConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class TextGenerator(Protocol):
    """Async text generation contract of an inference provider.

    ``on_text``, when given, is called (and awaited if it returns an
    awaitable) with each piece of text as it arrives. The full text is
    returned once generation completes.
    """

    async def generate(
        self,
        prompt: str,
        *,
        on_text: Callable[[str], Any] | None = None,
        **options: Any,
    ) -> str: ...


@runtime_checkable
class ToolExecutor(Protocol):
    """Async tool execution contract: run the named tool or raise."""

    async def execute_tool(self, name: str, **kwargs: Any) -> Any: ...


class GenerationTask(Task):
    """Leaf task that sends its input as a prompt to a text generator.

    The input is either the prompt string or a mapping with a ``prompt`` key
    whose other keys override the task's generation options.

    ``stream`` yields text deltas as the generator reports them; if the
    generator reports none, the final text is yielded once.
    """

    def __init__(self, generator: TextGenerator, name: str | None = None, **options: Any):
        super().__init__(name)
        self._generator = generator
        self._options = dict(options)

    @property
    def options(self) -> Dict[str, Any]:
        return dict(self._options)

    def _prepare(self, input: Any) -> tuple[str, Dict[str, Any]]:
        options = dict(self._options)
        if isinstance(input, Mapping):
            overrides = dict(input)
            if "prompt" not in overrides:
                raise ValueError(
                    f"Task '{self.name}' expects a 'prompt' key in its input mapping, "
                    f"got keys {sorted(map(str, overrides))}"
                )
            prompt = overrides.pop("prompt")
            options.update(overrides)
        else:
            prompt = input
        return str(prompt), options

    async def _execute(self, input: Any, config: ExecutionConfig) -> str:
        prompt, options = self._prepare(input)
        return await self._generator.generate(prompt, **options)

    async def _stream(self, input: Any, config: ExecutionConfig) -> AsyncIterator[str]:
        manager = LifecycleManager.from_config(config)
        await manager.notify_start(self, input, config)

        try:
            prompt, options = self._prepare(input)
        except ValueError as e:
            await manager.notify_error(self, e, config)
            raise
        deltas: asyncio.Queue[str] = asyncio.Queue()
        generation = asyncio.ensure_future(
            self._generator.generate(prompt, on_text=deltas.put_nowait, **options)
        )
        getter: asyncio.Future | None = None
        emitted = False
        try:
            while True:
                getter = asyncio.ensure_future(deltas.get())
                done, _ = await asyncio.wait(
                    {getter, generation}, return_when=asyncio.FIRST_COMPLETED
                )
                if getter in done:
                    emitted = True
                    yield getter.result()
                    continue
                getter.cancel()
                while not deltas.empty():
                    emitted = True
                    yield deltas.get_nowait()
                text = generation.result()
                if not emitted:
                    yield text
                break
        except Exception as e:
            await manager.notify_error(self, e, config)
            raise
        finally:
            for future in (getter, generation):
                if future is not None and not future.done():
                    future.cancel()
            await asyncio.gather(
                *(f for f in (getter, generation) if f is not None), return_exceptions=True
            )

        await manager.notify_end(self, generation.result(), config)


class ToolTask(Task):
    """Leaf task that runs a named tool with its input as keyword arguments."""

    def __init__(self, executor: ToolExecutor, tool_name: str, name: str | None = None):
        super().__init__(name or tool_name)
        self._executor = executor
        self.tool_name = tool_name

    async def _execute(self, input: Any, config: ExecutionConfig) -> Any:
        if input is None:
            arguments: Dict[str, Any] = {}
        elif isinstance(input, Mapping):
            arguments = dict(input)
        else:
            raise TypeError(
                f"Tool '{self.tool_name}' expects a mapping of arguments, "
                f"got {type(input).__name__}"
            )
        logger.debug("Executing tool '%s' with %d arguments", self.tool_name, len(arguments))
        return await self._executor.execute_tool(self.tool_name, **arguments)


__all__ = [
    "GenerationTask",
    "TextGenerator",
    "ToolExecutor",
    "ToolTask",
]

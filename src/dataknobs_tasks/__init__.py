"""Composable asynchronous tasks for dataknobs pipelines.

This package provides a small core for chaining and parallelizing units of
asynchronous work:

- **Task contract**: ``invoke``, ``stream``, ``batch`` and ``pipe`` on every task
- **ExecutionConfig**: Immutable context (callbacks, metadata, tags, recursion budget)
- **Lifecycle callbacks**: Start/end/error notifications isolated from the work itself
- **Composites**: ``Sequence`` for chaining, ``ParallelGroup`` for fan-out/fan-in
- **Providers and wrappers**: Leaves over text generators and tool executors,
  retry, timeout and validation wrappers

Example:
    ```python
    from dataknobs_tasks import ExecutionConfig, GenerationTask, LeafTask, ParallelGroup, task

    @task
    async def clean(text: str) -> str:
        return text.strip()

    analysis = clean | ParallelGroup({
        "summary": GenerationTask(llm, temperature=0.2),
        "length": LeafTask(len),
    })

    config = ExecutionConfig(metadata={"lesson": "parallel"}, tags={"demo"})
    result = await analysis.invoke("  Local LLMs enable privacy-first AI. ", config)
    ```
"""

from dataknobs_tasks.base import (
    LeafTask,
    Task,
    TaskLike,
    is_task,
    task,
)
from dataknobs_tasks.callbacks import (
    CallbackHandler,
    LifecycleManager,
    LoggingCallbackHandler,
)
from dataknobs_tasks.config import (
    DEFAULT_RECURSION_LIMIT,
    ExecutionConfig,
    ensure_config,
    load_execution_config,
)
from dataknobs_tasks.decorators import (
    BackoffStrategy,
    RetryConfig,
    RetryTask,
    TimeoutTask,
    ValidationTask,
    repair_output,
    with_retry,
    with_timeout,
    with_validation,
)
from dataknobs_tasks.exceptions import (
    CallbackError,
    ConfigurationError,
    ExecutionError,
    RecursionLimitError,
    TaskError,
    TaskTimeoutError,
    TaskValidationError,
)
from dataknobs_tasks.parallel import ParallelGroup
from dataknobs_tasks.providers import (
    GenerationTask,
    TextGenerator,
    ToolExecutor,
    ToolTask,
)
from dataknobs_tasks.sequence import Sequence

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Tasks
    "Task",
    "TaskLike",
    "LeafTask",
    "task",
    "is_task",
    "Sequence",
    "ParallelGroup",
    # Configuration
    "ExecutionConfig",
    "DEFAULT_RECURSION_LIMIT",
    "ensure_config",
    "load_execution_config",
    # Callbacks
    "CallbackHandler",
    "LifecycleManager",
    "LoggingCallbackHandler",
    # Providers
    "TextGenerator",
    "ToolExecutor",
    "GenerationTask",
    "ToolTask",
    # Wrappers
    "BackoffStrategy",
    "RetryConfig",
    "RetryTask",
    "TimeoutTask",
    "with_retry",
    "with_timeout",
    "ValidationTask",
    "repair_output",
    "with_validation",
    # Exceptions
    "TaskError",
    "ConfigurationError",
    "ExecutionError",
    "RecursionLimitError",
    "CallbackError",
    "TaskTimeoutError",
    "TaskValidationError",
]

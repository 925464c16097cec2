"""Exception hierarchy for dataknobs-tasks.

Built on the common exception framework from dataknobs_common: every error
raised by the package derives from ``TaskError`` (a ``DataknobsError``) and
from the matching common category, so callers may catch either.

The hierarchy:
- ``ConfigurationError``: malformed composition or configuration input,
  raised when a task tree or config is built, never while it runs
- ``ExecutionError``: a contained task failed; annotated with where in the
  tree the failure happened
- ``RecursionLimitError``: a config's recursion budget was exhausted
- ``CallbackError``: a lifecycle handler failed; logged and discarded by the
  ``LifecycleManager``, never raised to callers
- ``TaskTimeoutError``: a ``TimeoutTask`` exceeded its limit
- ``TaskValidationError``: a ``ValidationTask`` rejected an output

Example:
    ```python
    from dataknobs_tasks import ExecutionError

    try:
        await pipeline.invoke(text)
    except ExecutionError as e:
        logger.error("Pipeline failed at %s: %s", e.path, e.original)
    ```
"""

from __future__ import annotations

from typing import Any, Dict, List

from dataknobs_common import (
    ConfigurationError as CommonConfigurationError,
    DataknobsError,
    OperationError,
    ResourceError,
    ValidationError,
)


class TaskError(DataknobsError):
    """Base exception for all dataknobs-tasks errors."""

    pass


class ConfigurationError(TaskError, CommonConfigurationError):
    """Raised when a task composition or execution config is invalid.

    Common scenarios include:
    - ``ParallelGroup`` given something other than a mapping of name to task
    - A composite given a value lacking the task capability set
    - A negative recursion limit or a non-mapping metadata value
    - A configuration file that is missing or has an unsupported format

    Example:
        ```python
        raise ConfigurationError(
            "Branch 'summary' is not a task",
            context={"branch": "summary", "type": "str"}
        )
        ```
    """

    pass


class RecursionLimitError(TaskError, OperationError):
    """Raised when ``child()`` is requested on a config with no budget left.

    Guards against unbounded recursive composition, such as an agent loop
    re-entering the same sequence indefinitely.
    """

    pass


class CallbackError(TaskError, OperationError):
    """Wraps an exception raised by a lifecycle handler.

    Created and logged by the ``LifecycleManager``; never propagated.
    """

    pass


class TaskTimeoutError(TaskError, ResourceError):
    """Raised when a wrapped invocation exceeds its time limit."""

    pass


class TaskValidationError(TaskError, ValidationError):
    """Raised when a task's output does not match its JSON schema.

    The context holds ``task`` and ``errors``, one message per violation.
    """

    pass


class ExecutionError(TaskError, OperationError):
    """Raised when a task contained in a composite fails.

    The original exception is kept unchanged in ``original`` (and as
    ``__cause__``). ``path`` lists where the failure happened, outermost
    composite first. Each entry is a dict with ``kind`` (``"step"`` or
    ``"branch"``), ``key`` (step index or branch name) and ``task`` (the
    failing task's name).

    Example:
        ```python
        try:
            await Sequence(double, add_one).invoke(3)
        except ExecutionError as e:
            assert e.step == 1
            assert isinstance(e.original, ValueError)
        ```
    """

    def __init__(
        self,
        message: str,
        original: BaseException,
        path: List[Dict[str, Any]] | None = None,
        context: Dict[str, Any] | None = None,
    ):
        self.original = original
        self.path = list(path or [])
        merged = {"path": self.path, "error_type": type(original).__name__}
        merged.update(context or {})
        super().__init__(message, context=merged)

    @classmethod
    def annotate(
        cls,
        error: BaseException,
        kind: str,
        key: Any,
        task_name: str,
    ) -> ExecutionError:
        """Build an error for a failure at one location in a composite.

        When ``error`` is itself an ``ExecutionError`` from a nested
        composite, the new location is prepended to its path and the
        original root exception is carried over.

        Args:
            error: The exception raised by the contained task
            kind: ``"step"`` for sequences, ``"branch"`` for parallel groups
            key: Step index or branch name
            task_name: Name of the contained task that failed

        Returns:
            A new ExecutionError; ``error`` itself is left untouched
        """
        location = {"kind": kind, "key": key, "task": task_name}
        if isinstance(error, ExecutionError):
            original = error.original
            path = [location] + error.path
        else:
            original = error
            path = [location]
        where = " -> ".join(f"{loc['kind']} {loc['key']!r} ({loc['task']})" for loc in path)
        return cls(f"{where} failed: {original}", original=original, path=path)

    def _innermost(self, kind: str) -> Any:
        for location in reversed(self.path):
            if location["kind"] == kind:
                return location["key"]
        return None

    @property
    def step(self) -> int | None:
        """Index of the failing sequence step closest to the failing task."""
        return self._innermost("step")

    @property
    def branch(self) -> str | None:
        """Name of the failing parallel branch closest to the failing task."""
        return self._innermost("branch")


__all__ = [
    "TaskError",
    "ConfigurationError",
    "ExecutionError",
    "RecursionLimitError",
    "CallbackError",
    "TaskTimeoutError",
    "TaskValidationError",
]

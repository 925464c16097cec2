"""Retry, timeout and validation wrappers around a single task invocation.

The composition core never retries, has no deadlines and does not inspect
outputs; these wrappers add all three from the outside without knowing
anything about the wrapped task beyond its ``invoke`` method. They are
tasks themselves, so they compose like any other.

Retries use ``dataknobs_common.retry``; ``RetryConfig`` and
``BackoffStrategy`` are re-exported from there.

Example:
    ```python
    resilient = with_retry(
        with_timeout(GenerationTask(llm), seconds=1.5),
        max_attempts=3,
        initial_delay=0.3,
    )
    checked = with_validation(
        resilient | parse_json,
        {"type": "object", "required": ["answer"]},
    )
    ```
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Dict, List

import jsonschema
from dataknobs_common.retry import BackoffStrategy, RetryConfig, RetryExecutor

from .base import Task, require_task, task_name
from .config import ExecutionConfig
from .exceptions import ConfigurationError, TaskTimeoutError, TaskValidationError

logger = logging.getLogger(__name__)


class RetryTask(Task):
    """Re-invokes a task after failures, sleeping between attempts.

    Every attempt is a full ``invoke`` of the wrapped task with the same
    config, so lifecycle handlers see each attempt. When attempts run out,
    the last exception propagates unchanged.
    """

    def __init__(self, inner: Any, retry: RetryConfig | None = None, name: str | None = None):
        require_task(inner)
        retry = retry or RetryConfig()
        if retry.max_attempts < 1:
            raise ConfigurationError(
                "max_attempts must be at least 1",
                context={"max_attempts": retry.max_attempts},
            )
        super().__init__(name or f"retry({task_name(inner)})")
        self.inner = inner
        self.retry = retry
        self._executor = RetryExecutor(retry)

    async def _execute(self, input: Any, config: ExecutionConfig) -> Any:
        return await self._executor.execute(self.inner.invoke, input, config)


class TimeoutTask(Task):
    """Fails an invocation of the wrapped task that runs longer than ``seconds``.

    Only an expired deadline becomes a ``TaskTimeoutError``; a timeout
    raised by the wrapped task itself propagates unchanged.
    """

    def __init__(self, inner: Any, seconds: float, name: str | None = None):
        require_task(inner)
        if seconds <= 0:
            raise ConfigurationError(
                "Timeout must be positive", context={"seconds": seconds}
            )
        super().__init__(name or f"timeout({task_name(inner)})")
        self.inner = inner
        self.seconds = seconds

    async def _execute(self, input: Any, config: ExecutionConfig) -> Any:
        future = asyncio.ensure_future(self.inner.invoke(input, config))
        try:
            done, _ = await asyncio.wait({future}, timeout=self.seconds)
        finally:
            if not future.done():
                future.cancel()
                await asyncio.gather(future, return_exceptions=True)
        if future not in done:
            raise TaskTimeoutError(
                f"Task '{task_name(self.inner)}' timed out after {self.seconds}s",
                context={"task": task_name(self.inner), "timeout_seconds": self.seconds},
            )
        return future.result()


_TYPE_DEFAULTS: Dict[str, Any] = {
    "string": "",
    "number": 0,
    "integer": 0,
    "boolean": False,
}


def _default_for(schema: Mapping[str, Any] | None) -> Any:
    if not schema:
        return None
    if "default" in schema:
        return schema["default"]
    kind = schema.get("type")
    if kind == "array":
        return []
    if kind == "object":
        return {}
    return _TYPE_DEFAULTS.get(kind)


def _coerce(value: Any, schema: Mapping[str, Any]) -> Any:
    kind = schema.get("type")
    if value is None or kind is None:
        return value
    try:
        if kind == "string":
            return value if isinstance(value, str) else str(value)
        if kind == "number" and isinstance(value, str):
            return float(value)
        if kind == "integer" and not isinstance(value, int):
            return int(float(value))
        if kind == "boolean" and not isinstance(value, bool):
            return value != "false" and bool(value)
        if kind == "array" and not isinstance(value, list):
            return [value]
    except (TypeError, ValueError):
        pass
    return value


def repair_output(output: Any, schema: Mapping[str, Any]) -> Any:
    """Best-effort repair of a mapping so it fits ``schema``.

    Missing required properties are filled with the property's ``default``
    or an empty value of its type, and present properties are coerced to
    their declared type where that is possible. Non-mapping outputs are
    returned unchanged.
    """
    if not isinstance(output, Mapping):
        return output
    properties = schema.get("properties", {})
    repaired = dict(output)
    for prop in schema.get("required", []):
        if prop not in repaired:
            repaired[prop] = _default_for(properties.get(prop))
    for key, prop_schema in properties.items():
        if key in repaired:
            repaired[key] = _coerce(repaired[key], prop_schema)
    return repaired


class ValidationTask(Task):
    """Checks the wrapped task's output against a JSON schema.

    In strict mode a non-conforming output raises ``TaskValidationError``
    listing every violation. In lenient mode the violations are logged as a
    warning and the output is returned as is. With ``repair=True`` the output
    is first passed through ``repair_output``.

    Example:
        ```python
        schema = {
            "type": "object",
            "properties": {"score": {"type": "integer", "minimum": 0}},
            "required": ["score"],
        }
        graded = ValidationTask(grader, schema, repair=True)
        ```
    """

    def __init__(
        self,
        inner: Any,
        schema: Mapping[str, Any],
        strict: bool = True,
        repair: bool = False,
        name: str | None = None,
    ):
        require_task(inner)
        validator_class = jsonschema.validators.validator_for(schema)
        try:
            validator_class.check_schema(schema)
        except jsonschema.SchemaError as e:
            raise ConfigurationError(
                f"Invalid output schema: {e.message}",
                context={"task": task_name(inner)},
            ) from e
        super().__init__(name or f"validate({task_name(inner)})")
        self.inner = inner
        self.schema = schema
        self.strict = strict
        self.repair = repair
        self._validator = validator_class(schema)

    def validate(self, output: Any) -> List[str]:
        """Return one message per schema violation in ``output``."""
        errors = []
        for error in sorted(self._validator.iter_errors(output), key=lambda e: list(e.path)):
            path = ".".join(str(p) for p in error.absolute_path)
            errors.append(f"{path}: {error.message}" if path else error.message)
        return errors

    async def _execute(self, input: Any, config: ExecutionConfig) -> Any:
        output = await self.inner.invoke(input, config)
        if self.repair:
            output = repair_output(output, self.schema)
        errors = self.validate(output)
        if errors:
            if self.strict:
                raise TaskValidationError(
                    f"Output of '{task_name(self.inner)}' failed validation: {errors[0]}",
                    context={"task": task_name(self.inner), "errors": errors},
                )
            logger.warning(
                "Output of '%s' failed validation: %s", task_name(self.inner), "; ".join(errors)
            )
        return output


def with_retry(inner: Any, **kwargs: Any) -> RetryTask:
    """Wrap ``inner`` in a ``RetryTask``; keyword arguments build the RetryConfig."""
    return RetryTask(inner, RetryConfig(**kwargs))


def with_timeout(inner: Any, seconds: float) -> TimeoutTask:
    """Wrap ``inner`` in a ``TimeoutTask``."""
    return TimeoutTask(inner, seconds)


def with_validation(
    inner: Any, schema: Mapping[str, Any], strict: bool = True, repair: bool = False
) -> ValidationTask:
    """Wrap ``inner`` in a ``ValidationTask``."""
    return ValidationTask(inner, schema, strict=strict, repair=repair)


__all__ = [
    "BackoffStrategy",
    "RetryConfig",
    "RetryTask",
    "TimeoutTask",
    "ValidationTask",
    "repair_output",
    "with_retry",
    "with_timeout",
    "with_validation",
]

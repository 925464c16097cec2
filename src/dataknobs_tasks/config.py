"""Execution configuration threaded through every task invocation.

An ``ExecutionConfig`` carries the callback handlers, metadata, tags and
recursion budget of one invocation tree. It is immutable: ``merge`` and
``child`` (and the ``with_*`` helpers built on ``merge``) always return a
new object, so sibling branches can never observe each other's changes.

Example:
    ```python
    from dataknobs_tasks import ExecutionConfig, LoggingCallbackHandler

    config = ExecutionConfig(
        callbacks=(LoggingCallbackHandler(),),
        metadata={"lesson": "parallel-orchestration"},
        tags={"parallel"},
        recursion_limit=10,
    )

    # Composites derive one level deeper before invoking a contained task
    step_config = config.child()
    assert step_config.recursion_limit == 9

    # Load defaults from a file
    config = load_execution_config("execution.yaml")
    ```
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Union

import yaml  # type: ignore[import-untyped]

from .exceptions import ConfigurationError, RecursionLimitError

logger = logging.getLogger(__name__)

DEFAULT_RECURSION_LIMIT = 25

_SERIALIZABLE_FIELDS = ("metadata", "tags", "recursion_limit", "max_concurrency", "run_name")


@dataclass(frozen=True)
class ExecutionConfig:
    """Immutable context for one invocation tree.

    Attributes:
        callbacks: Ordered handlers notified of lifecycle events
        metadata: Read-only mapping of diagnostic values
        tags: Set of labels
        recursion_limit: Remaining number of composite-to-child transitions
        max_concurrency: Upper bound on concurrent elements in ``batch``
            (``None`` means unbounded)
        run_name: Optional label for diagnostics
    """

    callbacks: tuple[Any, ...] = field(default=(), hash=False)
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)
    tags: frozenset[str] = frozenset()
    recursion_limit: int = DEFAULT_RECURSION_LIMIT
    max_concurrency: int | None = None
    run_name: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.metadata, Mapping):
            raise ConfigurationError(
                "metadata must be a mapping",
                context={"type": type(self.metadata).__name__},
            )
        if isinstance(self.tags, str):
            raise ConfigurationError("tags must be a collection of strings, not a string")
        if not isinstance(self.recursion_limit, int) or self.recursion_limit < 0:
            raise ConfigurationError(
                "recursion_limit must be a non-negative integer",
                context={"recursion_limit": self.recursion_limit},
            )
        if self.max_concurrency is not None and (
            not isinstance(self.max_concurrency, int) or self.max_concurrency < 1
        ):
            raise ConfigurationError(
                "max_concurrency must be a positive integer",
                context={"max_concurrency": self.max_concurrency},
            )
        # Frozen: normalise through object.__setattr__ so callers can pass
        # lists, sets and dicts without those objects being shared.
        try:
            callbacks = tuple(self.callbacks)
            tags = frozenset(self.tags)
        except TypeError as e:
            raise ConfigurationError(
                f"callbacks and tags must be collections: {e}",
                context={
                    "callbacks_type": type(self.callbacks).__name__,
                    "tags_type": type(self.tags).__name__,
                },
            ) from e
        object.__setattr__(self, "callbacks", callbacks)
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))
        object.__setattr__(self, "tags", tags)

    def merge(self, other: ExecutionConfig) -> ExecutionConfig:
        """Combine this config with another into a new config.

        Callbacks are concatenated (this config's first), metadata is
        shallow-merged with ``other``'s keys taking precedence, and tags are
        unioned. The recursion budget is the smaller of the two;
        ``max_concurrency`` and ``run_name`` come from ``other`` when set.

        Args:
            other: Config whose values are layered over this one

        Returns:
            New ExecutionConfig
        """
        return ExecutionConfig(
            callbacks=self.callbacks + other.callbacks,
            metadata={**self.metadata, **other.metadata},
            tags=self.tags | other.tags,
            recursion_limit=min(self.recursion_limit, other.recursion_limit),
            max_concurrency=(
                other.max_concurrency if other.max_concurrency is not None else self.max_concurrency
            ),
            run_name=other.run_name if other.run_name is not None else self.run_name,
        )

    def child(self) -> ExecutionConfig:
        """Derive the config for a task one level deeper in the tree.

        Returns:
            Copy of this config with ``recursion_limit`` decremented by one

        Raises:
            RecursionLimitError: If the budget is already zero
        """
        if self.recursion_limit <= 0:
            raise RecursionLimitError(
                "Recursion limit reached; the task tree is nested too deeply",
                context={"run_name": self.run_name, "tags": sorted(self.tags)},
            )
        return replace(self, recursion_limit=self.recursion_limit - 1)

    def with_callbacks(self, *handlers: Any) -> ExecutionConfig:
        """Return a new config with ``handlers`` appended to the callbacks."""
        return self.merge(ExecutionConfig(callbacks=handlers, recursion_limit=self.recursion_limit))

    def with_metadata(self, **items: Any) -> ExecutionConfig:
        """Return a new config with ``items`` layered over the metadata."""
        return self.merge(ExecutionConfig(metadata=items, recursion_limit=self.recursion_limit))

    def with_tags(self, *tags: str) -> ExecutionConfig:
        """Return a new config with ``tags`` added."""
        return self.merge(
            ExecutionConfig(tags=frozenset(tags), recursion_limit=self.recursion_limit)
        )

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> ExecutionConfig:
        """Create an ExecutionConfig from a dictionary.

        Unknown keys are ignored. ``callbacks`` may be given as a list of
        handler objects when building from code.

        Args:
            config_dict: Configuration dictionary

        Returns:
            ExecutionConfig instance
        """
        if not isinstance(config_dict, Mapping):
            raise ConfigurationError(
                "Execution config must be a mapping",
                context={"type": type(config_dict).__name__},
            )
        data = {k: v for k, v in config_dict.items() if k in _SERIALIZABLE_FIELDS}
        for key in ("metadata", "tags"):
            if key in data and data[key] is None:
                del data[key]
        if "callbacks" in config_dict:
            data["callbacks"] = tuple(config_dict["callbacks"] or ())
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the serializable attributes to a dictionary.

        Callbacks are live objects and are not included.
        """
        result: Dict[str, Any] = {
            "metadata": dict(self.metadata),
            "tags": sorted(self.tags),
            "recursion_limit": self.recursion_limit,
        }
        if self.max_concurrency is not None:
            result["max_concurrency"] = self.max_concurrency
        if self.run_name is not None:
            result["run_name"] = self.run_name
        return result


def ensure_config(
    config: Union[ExecutionConfig, Dict[str, Any], None],
) -> ExecutionConfig:
    """Normalize the ``config`` argument accepted by task methods.

    Args:
        config: An ExecutionConfig, a dictionary, or None for defaults

    Returns:
        ExecutionConfig instance
    """
    if config is None:
        return ExecutionConfig()
    if isinstance(config, ExecutionConfig):
        return config
    if isinstance(config, Mapping):
        return ExecutionConfig.from_dict(dict(config))
    raise ConfigurationError(
        "config must be an ExecutionConfig, a mapping, or None",
        context={"type": type(config).__name__},
    )


def load_execution_config(
    path: Union[str, Path],
    callbacks: Iterable[Any] = (),
) -> ExecutionConfig:
    """Load an ExecutionConfig from a YAML or JSON file.

    The settings may sit at the top level of the file or under an
    ``execution`` section:

    ```yaml
    execution:
      run_name: nightly-digest
      recursion_limit: 10
      max_concurrency: 4
      tags: [digest, batch]
      metadata:
        owner: data-team
    ```

    Args:
        path: Path to the configuration file
        callbacks: Handlers to attach (handlers are objects and cannot be
            declared in the file)

    Returns:
        ExecutionConfig instance

    Raises:
        ConfigurationError: If the file is missing, has an unsupported
            suffix, or holds invalid values
    """
    path = Path(path).resolve()
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {path}", context={"path": str(path)}
        )

    suffix = path.suffix.lower()
    with open(path) as f:
        if suffix in [".yaml", ".yml"]:
            data = yaml.safe_load(f) or {}
        elif suffix == ".json":
            data = json.load(f)
        else:
            raise ConfigurationError(
                f"Unsupported file format: {suffix}", context={"path": str(path)}
            )

    if not isinstance(data, Mapping):
        raise ConfigurationError(
            "Configuration file must contain a mapping", context={"path": str(path)}
        )
    if "execution" in data:
        data = data["execution"] or {}

    logger.debug("Loaded execution config from %s", path)
    config = ExecutionConfig.from_dict(data)
    handlers = tuple(callbacks)
    if handlers:
        config = config.with_callbacks(*handlers)
    return config


__all__ = [
    "DEFAULT_RECURSION_LIMIT",
    "ExecutionConfig",
    "ensure_config",
    "load_execution_config",
]

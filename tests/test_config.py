"""Tests for ExecutionConfig."""

import json
from pathlib import Path

import pytest

from dataknobs_tasks import (
    DEFAULT_RECURSION_LIMIT,
    ConfigurationError,
    ExecutionConfig,
    RecursionLimitError,
    ensure_config,
    load_execution_config,
)
from dataknobs_tasks.testing import RecordingHandler


class TestExecutionConfigBasics:
    """Test construction and immutability."""

    def test_defaults(self):
        config = ExecutionConfig()
        assert config.callbacks == ()
        assert dict(config.metadata) == {}
        assert config.tags == frozenset()
        assert config.recursion_limit == DEFAULT_RECURSION_LIMIT
        assert config.max_concurrency is None
        assert config.run_name is None

    def test_collections_are_normalized(self):
        handler = RecordingHandler()
        config = ExecutionConfig(callbacks=[handler], tags=["a", "b"], metadata={"k": 1})
        assert config.callbacks == (handler,)
        assert config.tags == frozenset({"a", "b"})
        assert config.metadata["k"] == 1

    def test_attributes_cannot_be_reassigned(self):
        config = ExecutionConfig()
        with pytest.raises(AttributeError):
            config.recursion_limit = 3  # type: ignore[misc]

    def test_hashable_and_consistent_with_equality(self):
        config = ExecutionConfig(
            callbacks=(RecordingHandler(),), metadata={"owner": "data-team"}, tags={"a"}
        )
        same = ExecutionConfig(
            callbacks=config.callbacks, metadata={"owner": "data-team"}, tags={"a"}
        )

        assert config == same
        assert hash(config) == hash(same)
        assert {config: "run"}[same] == "run"
        assert hash(ExecutionConfig()) == hash(ExecutionConfig())

    def test_metadata_is_read_only_and_not_shared(self):
        source = {"owner": "data-team"}
        config = ExecutionConfig(metadata=source)
        source["owner"] = "changed"

        assert config.metadata["owner"] == "data-team"
        with pytest.raises(TypeError):
            config.metadata["owner"] = "x"  # type: ignore[index]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"recursion_limit": -1},
            {"metadata": ["not", "a", "mapping"]},
            {"tags": "single-string"},
            {"max_concurrency": 0},
            {"max_concurrency": "four"},
            {"tags": 5},
            {"callbacks": 3},
        ],
    )
    def test_invalid_values_raise(self, kwargs):
        with pytest.raises(ConfigurationError):
            ExecutionConfig(**kwargs)


class TestMerge:
    """Test merge semantics."""

    def test_merge_combines_all_attributes(self):
        first, second = RecordingHandler("first"), RecordingHandler("second")
        base = ExecutionConfig(
            callbacks=(first,), metadata={"a": 1, "shared": "base"}, tags={"x"}
        )
        other = ExecutionConfig(
            callbacks=(second,), metadata={"b": 2, "shared": "other"}, tags={"y"}
        )

        merged = base.merge(other)

        assert merged.callbacks == (first, second)
        assert dict(merged.metadata) == {"a": 1, "b": 2, "shared": "other"}
        assert merged.tags == frozenset({"x", "y"})

    def test_merge_returns_new_object_and_leaves_inputs_alone(self):
        base = ExecutionConfig(metadata={"a": 1}, tags={"x"})
        other = ExecutionConfig(metadata={"b": 2}, tags={"y"})

        merged = base.merge(other)

        assert merged is not base and merged is not other
        assert dict(base.metadata) == {"a": 1}
        assert base.tags == frozenset({"x"})
        assert dict(other.metadata) == {"b": 2}

    def test_merge_keeps_smaller_recursion_budget(self):
        assert ExecutionConfig(recursion_limit=3).merge(ExecutionConfig()).recursion_limit == 3
        assert ExecutionConfig().merge(ExecutionConfig(recursion_limit=4)).recursion_limit == 4

    def test_merge_prefers_other_optional_values(self):
        base = ExecutionConfig(run_name="base", max_concurrency=2)
        assert base.merge(ExecutionConfig()).run_name == "base"
        assert base.merge(ExecutionConfig()).max_concurrency == 2

        merged = base.merge(ExecutionConfig(run_name="other", max_concurrency=5))
        assert merged.run_name == "other"
        assert merged.max_concurrency == 5

    def test_with_helpers(self):
        handler = RecordingHandler()
        config = (
            ExecutionConfig(recursion_limit=7)
            .with_callbacks(handler)
            .with_metadata(lesson="parallel")
            .with_tags("demo")
        )
        assert config.callbacks == (handler,)
        assert config.metadata["lesson"] == "parallel"
        assert "demo" in config.tags
        assert config.recursion_limit == 7


class TestChild:
    """Test recursion budget derivation."""

    def test_child_decrements_budget(self):
        config = ExecutionConfig(recursion_limit=5, metadata={"a": 1})
        child = config.child()

        assert child.recursion_limit == 4
        assert config.recursion_limit == 5
        assert dict(child.metadata) == {"a": 1}

    def test_child_shares_callbacks_by_reference(self):
        config = ExecutionConfig(callbacks=(RecordingHandler(),))
        assert config.child().callbacks is config.callbacks

    def test_limit_reached_exactly_on_the_call_that_exceeds_it(self):
        config = ExecutionConfig(recursion_limit=3)
        for _ in range(3):
            config = config.child()
        assert config.recursion_limit == 0

        with pytest.raises(RecursionLimitError):
            config.child()

    def test_zero_budget_rejects_first_child(self):
        with pytest.raises(RecursionLimitError):
            ExecutionConfig(recursion_limit=0).child()


class TestSerialization:
    """Test dict conversion and config loading."""

    def test_to_dict(self):
        config = ExecutionConfig(
            metadata={"a": 1}, tags={"b", "a"}, recursion_limit=4, run_name="run"
        )
        assert config.to_dict() == {
            "metadata": {"a": 1},
            "tags": ["a", "b"],
            "recursion_limit": 4,
            "run_name": "run",
        }

    def test_from_dict_ignores_unknown_keys(self):
        config = ExecutionConfig.from_dict(
            {"tags": ["x"], "recursion_limit": 2, "type": "execution", "name": "ignored"}
        )
        assert config.tags == frozenset({"x"})
        assert config.recursion_limit == 2

    def test_from_dict_round_trip(self):
        original = ExecutionConfig(metadata={"k": "v"}, tags={"t"}, max_concurrency=3)
        assert ExecutionConfig.from_dict(original.to_dict()) == original

    def test_ensure_config(self):
        config = ExecutionConfig()
        assert ensure_config(config) is config
        assert ensure_config(None) == ExecutionConfig()
        assert ensure_config({"recursion_limit": 1}).recursion_limit == 1
        with pytest.raises(ConfigurationError):
            ensure_config("not a config")  # type: ignore[arg-type]

    def test_load_yaml_with_execution_section(self, tmp_path: Path):
        path = tmp_path / "execution.yaml"
        path.write_text(
            "execution:\n"
            "  run_name: nightly-digest\n"
            "  recursion_limit: 10\n"
            "  max_concurrency: 4\n"
            "  tags: [digest, batch]\n"
            "  metadata:\n"
            "    owner: data-team\n"
        )
        handler = RecordingHandler()

        config = load_execution_config(path, callbacks=[handler])

        assert config.run_name == "nightly-digest"
        assert config.recursion_limit == 10
        assert config.max_concurrency == 4
        assert config.tags == frozenset({"digest", "batch"})
        assert config.metadata["owner"] == "data-team"
        assert config.callbacks == (handler,)

    def test_load_json_top_level(self, tmp_path: Path):
        path = tmp_path / "execution.json"
        path.write_text(json.dumps({"recursion_limit": 3, "tags": ["json"]}))

        config = load_execution_config(path)

        assert config.recursion_limit == 3
        assert config.tags == frozenset({"json"})

    def test_load_empty_yaml_gives_defaults(self, tmp_path: Path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_execution_config(path) == ExecutionConfig()

    def test_load_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_execution_config(tmp_path / "missing.yaml")

    def test_load_unsupported_suffix(self, tmp_path: Path):
        path = tmp_path / "execution.toml"
        path.write_text("recursion_limit = 3\n")
        with pytest.raises(ConfigurationError, match="Unsupported"):
            load_execution_config(path)

    @pytest.mark.parametrize(
        "content",
        [
            "recursion_limit: -2\n",
            "tags: 5\n",
            "max_concurrency: four\n",
            "metadata: [a, b]\n",
        ],
    )
    def test_load_invalid_values(self, tmp_path: Path, content):
        path = tmp_path / "execution.yaml"
        path.write_text(content)
        with pytest.raises(ConfigurationError):
            load_execution_config(path)

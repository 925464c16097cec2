"""Tests for the exception hierarchy."""

import pytest
from dataknobs_common import (
    ConfigurationError as CommonConfigurationError,
    DataknobsError,
    OperationError,
    ResourceError,
    ValidationError,
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


class TestTaskError:
    """Test the base TaskError class."""

    def test_basic_exception(self):
        error = TaskError("Something went wrong")
        assert str(error) == "Something went wrong"
        assert error.context == {}
        assert error.details == {}

    def test_exception_with_context(self):
        error = TaskError("Failed", context={"task": "summary"})
        assert error.context == {"task": "summary"}
        assert error.details is error.context

    @pytest.mark.parametrize(
        "error_class",
        [
            ConfigurationError,
            ExecutionError,
            RecursionLimitError,
            CallbackError,
            TaskTimeoutError,
            TaskValidationError,
        ],
    )
    def test_subclasses_are_task_errors(self, error_class):
        assert issubclass(error_class, TaskError)

    @pytest.mark.parametrize(
        "error_class, category",
        [
            (TaskError, DataknobsError),
            (ConfigurationError, CommonConfigurationError),
            (ExecutionError, OperationError),
            (RecursionLimitError, OperationError),
            (CallbackError, OperationError),
            (TaskTimeoutError, ResourceError),
            (TaskValidationError, ValidationError),
        ],
    )
    def test_errors_fit_common_categories(self, error_class, category):
        assert issubclass(error_class, category)

    def test_caught_as_common_error(self):
        with pytest.raises(CommonConfigurationError) as exc_info:
            raise ConfigurationError("bad branch", context={"branch": "summary"})
        assert exc_info.value.context == {"branch": "summary"}


class TestExecutionError:
    """Test location annotation on ExecutionError."""

    def test_annotate_plain_exception(self):
        original = ValueError("bad input")
        error = ExecutionError.annotate(original, "step", 1, "add_one")

        assert error.original is original
        assert error.path == [{"kind": "step", "key": 1, "task": "add_one"}]
        assert error.step == 1
        assert error.branch is None
        assert error.context["error_type"] == "ValueError"
        assert "step 1 (add_one)" in str(error)
        assert "bad input" in str(error)

    def test_annotate_nested_error_prepends_location(self):
        original = KeyError("missing")
        inner = ExecutionError.annotate(original, "step", 2, "lookup")
        outer = ExecutionError.annotate(inner, "branch", "keywords", "Sequence")

        assert outer.original is original
        assert [loc["key"] for loc in outer.path] == ["keywords", 2]
        assert outer.branch == "keywords"
        assert outer.step == 2
        # The inner error is left untouched
        assert [loc["key"] for loc in inner.path] == [2]

    def test_innermost_location_wins(self):
        original = RuntimeError("boom")
        error = ExecutionError.annotate(original, "step", 3, "leaf")
        error = ExecutionError.annotate(error, "step", 0, "Sequence")

        assert error.step == 3

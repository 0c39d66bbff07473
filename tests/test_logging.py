"""Tests for loguru logging in localtree.

This module verifies that logging is disabled by default and that
structured log records are produced when enabled, covering tree loading,
predictions, and rejected input rows.
"""

from __future__ import annotations

import contextlib
import io
import sys
import warnings
from collections.abc import Generator
from typing import NamedTuple
from unittest import mock

import loguru
import pytest
from loguru import logger
from pytest_check import check

from localtree.exceptions import InputTypeError
from localtree.logging import (
    PACKAGE_NAME,
    PREDICTION_LEVEL,
    PREDICTION_LEVEL_NUMBER,
    LoggingHandle,
    _register_prediction_level,
    enable_logging,
)
from localtree.predictor import LocalModel

from tree_fixtures import PETAL_LENGTH, PETAL_WIDTH, make_iris_description


class LogSink(NamedTuple):
    """Log sink with records list and handler ID for cleanup.

    Attributes:
        records (list[loguru.Record]): List that accumulates log record dictionaries.
        handler_id (int): Logger handler ID for cleanup.
    """

    records: list[loguru.Record]
    handler_id: int


@contextlib.contextmanager
def capturing_sink(*, enable_localtree: bool = True) -> Generator[list[loguru.Record]]:
    """Context manager that adds a loguru sink and yields the captured records list.

    Pass `enable_localtree=False` when the test must observe the logger state
    left by the code under test.

    Args:
        enable_localtree (bool): When True (default), enables the localtree
            logger for the duration of the block and disables it on exit.

    Yields:
        Generator[list[loguru.Record]]: Records appended in arrival order.
    """
    captured_records: list[loguru.Record] = []

    def _sink(message: loguru.Message) -> None:
        captured_records.append(message.record)

    handler_id = logger.add(_sink)
    if enable_localtree:
        logger.enable(PACKAGE_NAME)
    try:
        yield captured_records
    finally:
        if enable_localtree:
            logger.disable(PACKAGE_NAME)
        logger.remove(handler_id)


@pytest.fixture(autouse=True)
def restore_active_ids() -> Generator[None]:
    """Save and restore LoggingHandle._active_ids around each test.

    Yields:
        None: Nothing; used only for setup/teardown side effects.
    """
    saved_ids: set[int] = set(LoggingHandle._active_ids)

    yield

    added_ids = LoggingHandle._active_ids - saved_ids
    for handler_id in added_ids:
        with contextlib.suppress(ValueError):
            logger.remove(handler_id)
    LoggingHandle._active_ids.clear()
    LoggingHandle._active_ids.update(saved_ids)


@pytest.fixture
def log_sink() -> Generator[LogSink]:
    """Create a sink that captures log records with localtree logging enabled.

    Yields:
        Generator[LogSink]: Named tuple with records list and handler_id for cleanup.
    """
    # Arrange - create list to capture records
    captured_records: list[loguru.Record] = []

    def sink(message: loguru.Message) -> None:
        captured_records.append(message.record)

    handler_id = logger.add(sink)
    logger.enable(PACKAGE_NAME)

    yield LogSink(records=captured_records, handler_id=handler_id)

    # Cleanup - disable and remove handler
    logger.disable(PACKAGE_NAME)
    logger.remove(handler_id)


def test_logging_disabled_by_default() -> None:
    """Verify no localtree records are captured while logging is disabled.

    Given: localtree logging disabled, a sink capturing all output
    When: Load a model and make a prediction
    Then: No localtree records are captured
    """
    # Arrange
    logger.disable(PACKAGE_NAME)

    # Act
    with capturing_sink(enable_localtree=False) as captured_records:
        model = LocalModel.from_description(make_iris_description())
        model.predict({PETAL_LENGTH: 1.0})

    # Assert
    localtree_records = [r for r in captured_records if (r["name"] or "").startswith(PACKAGE_NAME)]
    assert localtree_records == []


class TestLoadAndPredictLogging:
    """Tests for the records emitted while loading and predicting."""

    def test_tree_loaded_record(self, log_sink: LogSink) -> None:
        """Loading a tree logs its shape at INFO.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        # Act
        LocalModel.from_description(make_iris_description())

        # Assert
        loaded = [r for r in log_sink.records if r["message"] == "Tree loaded"]
        with check:
            assert len(loaded) == 1
        with check:
            assert loaded[0]["level"].name == "INFO"
        with check:
            assert loaded[0]["extra"] == {"fields": 3, "nodes": 5, "leaves": 3, "depth": 2}

    def test_node_graph_record_at_debug(self, log_sink: LogSink) -> None:
        """Parsing the node graph logs the node count at DEBUG.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        # Act
        LocalModel.from_description(make_iris_description())

        # Assert
        built = [r for r in log_sink.records if r["message"] == "Node graph built"]
        with check:
            assert len(built) == 1
        with check:
            assert built[0]["level"].name == "DEBUG"
        with check:
            assert built[0]["extra"] == {"nodes": 5}

    def test_prediction_record(self, log_sink: LogSink) -> None:
        """Each prediction logs one PREDICTION record with structured fields.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        # Arrange
        model = LocalModel.from_description(make_iris_description())

        # Act
        model.predict({PETAL_LENGTH: 5.0, PETAL_WIDTH: 2.0})

        # Assert
        records = [r for r in log_sink.records if r["level"].name == PREDICTION_LEVEL]
        with check:
            assert len(records) == 1
        extra = records[0]["extra"] if records else {}
        with check:
            assert extra.get("node_id") == "4"
        with check:
            assert extra.get("prediction") == "Iris-virginica"
        with check:
            assert extra.get("path_length") == 2

    def test_rejected_row_logs_warning(self, log_sink: LogSink) -> None:
        """An invalid row logs a WARNING naming the offending fields and no prediction.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        # Arrange
        model = LocalModel.from_description(make_iris_description())

        # Act
        with pytest.raises(InputTypeError):
            model.predict({PETAL_LENGTH: "long"})

        # Assert
        warning_records = [r for r in log_sink.records if r["level"].name == "WARNING"]
        with check:
            assert len(warning_records) == 1
        with check:
            assert warning_records[0]["extra"].get("invalid_fields") == [PETAL_LENGTH]
        with check:
            assert not [r for r in log_sink.records if r["level"].name == PREDICTION_LEVEL]

    def test_ignored_keys_log_at_debug(self, log_sink: LogSink) -> None:
        """Unknown input keys are reported at DEBUG.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        model = LocalModel.from_description(make_iris_description())

        model.predict({PETAL_LENGTH: 1.0, "sepal length": 4.0})

        debug_records = [r for r in log_sink.records if r["level"].name == "DEBUG"]
        assert any("sepal length" in str(r["extra"]) or "sepal length" in r["message"] for r in debug_records)


class TestPredictionLevelRegistration:
    """Tests for PREDICTION custom log level registration."""

    def test_prediction_level_registered_with_correct_number(self) -> None:
        """The PREDICTION level exists between INFO and WARNING."""
        level = logger.level(PREDICTION_LEVEL)

        assert level.no == PREDICTION_LEVEL_NUMBER

    def test_duplicate_level_wrong_number_warns_not_raises(self) -> None:
        """A numeric mismatch on registration issues a warning, not an exception."""
        # Arrange
        fake_level = mock.MagicMock(spec=["no"])
        fake_level.no = PREDICTION_LEVEL_NUMBER + 1

        # Act
        with (
            mock.patch("localtree.logging.logger.level", return_value=fake_level),
            warnings.catch_warnings(record=True) as caught,
        ):
            warnings.simplefilter("always")
            _register_prediction_level()

        # Assert
        with check:
            assert len(caught) == 1
        with check:
            assert issubclass(caught[0].category, UserWarning)
        with check:
            assert "already registered with numeric value" in str(caught[0].message)


class TestEnableLoggingLifecycle:
    """Tests for enable_logging handle creation, disable, and context manager."""

    def test_enable_logging_returns_handle(self) -> None:
        """enable_logging returns an active LoggingHandle."""
        handle = enable_logging()

        with check:
            assert isinstance(handle, LoggingHandle)
        with check:
            assert handle.handler_id is not None

        handle.disable()

    def test_disable_double_call_safe(self) -> None:
        """Calling disable() twice is a no-op."""
        handle = enable_logging()

        handle.disable()
        handle.disable()

        assert handle.handler_id is None

    def test_context_manager_re_disables_on_exit(self) -> None:
        """Leaving the last handle's context disables localtree logging again."""
        # Arrange
        model = LocalModel.from_description(make_iris_description())
        with enable_logging():
            pass

        # Act
        with capturing_sink(enable_localtree=False) as captured_records:
            model.predict({PETAL_LENGTH: 1.0})

        # Assert
        assert not [r for r in captured_records if (r["name"] or "").startswith(PACKAGE_NAME)]

    def test_active_handle_count(self) -> None:
        """The active handle count tracks enable and disable calls."""
        baseline = LoggingHandle.get_active_handle_count()

        first = enable_logging()
        second = enable_logging()
        with check:
            assert LoggingHandle.get_active_handle_count() == baseline + 2

        first.disable()
        second.disable()
        with check:
            assert LoggingHandle.get_active_handle_count() == baseline


class TestEnableLoggingFiltering:
    """Tests for enable_logging level filtering and formatting."""

    @pytest.mark.parametrize(
        ("level", "present_levels", "absent_levels"),
        [
            ("PREDICTION", ["PREDICTION"], ["INFO", "DEBUG"]),
            ("DEBUG", ["DEBUG", "INFO", "PREDICTION"], []),
            ("WARNING", [], ["PREDICTION", "INFO", "DEBUG"]),
        ],
        ids=["default-prediction-level", "debug-level-captures-all", "warning-level-excludes-prediction"],
    )
    def test_enable_logging_level_filtering(
        self,
        monkeypatch: pytest.MonkeyPatch,
        level: str,
        present_levels: list[str],
        absent_levels: list[str],
    ) -> None:
        """Only records at or above the configured level reach stderr.

        Args:
            monkeypatch (pytest.MonkeyPatch): Pytest fixture for patching sys.stderr safely.
            level (str): The log level passed to enable_logging.
            present_levels (list[str]): Level names that must appear in stderr output.
            absent_levels (list[str]): Level names that must not appear in stderr output.
        """
        # Arrange
        captured_stderr = io.StringIO()
        monkeypatch.setattr(sys, "stderr", captured_stderr)
        handle = enable_logging(level=level)  # type: ignore[arg-type]

        # Act
        model = LocalModel.from_description(make_iris_description())  # INFO + DEBUG
        model.predict({PETAL_LENGTH: 1.0})  # PREDICTION
        handle.disable()

        # Assert
        stderr_output = captured_stderr.getvalue()
        for expected_level in present_levels:
            with check:
                assert expected_level in stderr_output
        for excluded_level in absent_levels:
            with check:
                assert excluded_level not in stderr_output

    @pytest.mark.parametrize(
        ("log_format", "expected_present", "expected_absent"),
        [
            ("short", ["predict"], ["localtree.predictor"]),
            ("full", ["localtree.predictor:predict"], []),
        ],
        ids=["short-format", "full-format"],
    )
    def test_enable_logging_format(
        self,
        monkeypatch: pytest.MonkeyPatch,
        log_format: str,
        expected_present: list[str],
        expected_absent: list[str],
    ) -> None:
        """The format controls which source-location tokens appear.

        Args:
            monkeypatch (pytest.MonkeyPatch): Pytest fixture for patching sys.stderr safely.
            log_format (str): Format passed to enable_logging.
            expected_present (list[str]): Tokens that must appear in stderr output.
            expected_absent (list[str]): Tokens that must not appear in stderr output.
        """
        captured_stderr = io.StringIO()
        monkeypatch.setattr(sys, "stderr", captured_stderr)
        model = LocalModel.from_description(make_iris_description())
        handle = enable_logging(log_format=log_format)  # type: ignore[arg-type]

        model.predict({PETAL_LENGTH: 1.0})
        handle.disable()

        stderr_output = captured_stderr.getvalue()
        for token in expected_present:
            with check:
                assert token in stderr_output
        for token in expected_absent:
            with check:
                assert token not in stderr_output

"""Tests for logging configuration and contextual log fields."""

import asyncio
import json
import logging
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from skill_gate.observability import (
    add_context,
    clear_context,
    configure_from_env,
    get_logger,
    setup_logging,
)
from skill_gate.observability.logging_config import ContextualFormatter, JSONFormatter


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo setup_logging so other tests keep propagating to caplog."""
    clear_context()
    yield
    clear_context()
    package_logger = logging.getLogger("skill_gate")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


def make_record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="skill_gate.core.registry",
        level=logging.WARNING,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def flush_package_handlers() -> None:
    for handler in logging.getLogger("skill_gate").handlers:
        handler.flush()


class TestLogContext:
    """Contextvar-backed log fields."""

    def test_add_accumulates_and_clear_resets(self):
        formatter = ContextualFormatter("%(message)s")
        add_context(skill_id="x")
        add_context(source="user")

        assert formatter.format(make_record("m")) == "m [skill_id=x source=user]"

        clear_context()
        assert formatter.format(make_record("m")) == "m"

    @pytest.mark.asyncio
    async def test_context_is_isolated_per_task(self):
        formatter = ContextualFormatter("%(message)s")

        async def gate(skill_id: str) -> str:
            add_context(skill_id=skill_id)
            await asyncio.sleep(0)
            return formatter.format(make_record("gated"))

        lines = await asyncio.gather(gate("a"), gate("b"))

        assert lines == ["gated [skill_id=a]", "gated [skill_id=b]"]
        assert formatter.format(make_record("outside")) == "outside"


class TestFormatters:
    """JSON and text formatters."""

    def test_json_formatter_includes_context_and_extra(self):
        add_context(skill_id="x")
        record = make_record("Skill 'x' inactive", decision="fail")

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Skill 'x' inactive"
        assert data["level"] == "WARNING"
        assert data["logger"] == "skill_gate.core.registry"
        assert data["context"] == {"skill_id": "x"}
        assert data["decision"] == "fail"
        assert data["timestamp"].endswith("Z")
        assert "lineno" not in data

    def test_contextual_formatter_appends_fields(self):
        add_context(skill_id="x", source="bundled")
        formatter = ContextualFormatter("%(levelname)s %(message)s")

        line = formatter.format(make_record("gated"))

        assert line == "WARNING gated [skill_id=x source=bundled]"

    def test_contextual_formatter_without_context(self):
        formatter = ContextualFormatter("%(message)s")

        assert formatter.format(make_record("plain")) == "plain"


class TestSetupLogging:
    """dictConfig wiring."""

    def test_writes_json_to_file(self, tmp_path: Path):
        log_file = tmp_path / "gate.log"
        setup_logging(level="DEBUG", format_type="json", log_file=str(log_file))

        get_logger("skill_gate.test").info("hello", extra={"skill_id": "x"})
        flush_package_handlers()

        lines = log_file.read_text().strip().splitlines()
        payload = json.loads(lines[-1])
        assert payload["message"] == "hello"
        assert payload["skill_id"] == "x"

    def test_level_applied(self, tmp_path: Path):
        log_file = tmp_path / "gate.log"
        setup_logging(level="WARNING", format_type="text", log_file=str(log_file))

        logger = get_logger("skill_gate.test")
        logger.info("quiet")
        logger.warning("loud")
        flush_package_handlers()

        content = log_file.read_text()
        assert "loud" in content
        assert "quiet" not in content

    def test_configure_from_env(self, tmp_path: Path):
        log_file = tmp_path / "env.log"
        env = {"LOG_LEVEL": "DEBUG", "LOG_FORMAT": "json", "LOG_FILE": str(log_file)}
        with patch.dict(os.environ, env):
            configure_from_env(default_level="WARNING")

        get_logger("skill_gate.test").debug("detail")
        flush_package_handlers()

        assert json.loads(log_file.read_text().strip())["message"] == "detail"

    def test_configure_from_env_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            configure_from_env(default_level="WARNING")

        package_logger = logging.getLogger("skill_gate")
        assert package_logger.level == logging.WARNING
        (handler,) = package_logger.handlers
        assert isinstance(handler.formatter, ContextualFormatter)

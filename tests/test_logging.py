"""Tests for structured logging."""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import threading
from pathlib import Path

from ticketwright.errors import error_for_status
from ticketwright.logging import setup_logging


def _records(logger: logging.Logger, log_dir: Path) -> list[dict[str, object]]:
    for handler in logger.handlers:
        handler.flush()
    return [json.loads(line) for line in (log_dir / "ticketwright.log").read_text().splitlines()]


class TestSetupLogging:
    def test_creates_log_file(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        logger.info("test_message", extra={"action": "create_issue"})
        record = _records(logger, tmp_path)[-1]
        assert record["msg"] == "test_message"
        assert record["action"] == "create_issue"
        assert record["logger"] == "ticketwright"
        assert record["level"] == "INFO"

    def test_creates_missing_directory(self, tmp_path: Path) -> None:
        setup_logging(tmp_path / "nested" / "logs")
        assert (tmp_path / "nested" / "logs").is_dir()

    def test_json_format(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        logger.info("formatted", extra={"action": "search", "duration_ms": 42.5})
        record = _records(logger, tmp_path)[-1]
        assert record["duration_ms"] == 42.5
        assert "tracker_status" not in record

    def test_child_loggers_reach_the_file(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        error_for_status(500, "<html>stack</html>", context="create issue")
        record = _records(logger, tmp_path)[-1]
        assert record["logger"] == "ticketwright.errors"
        assert record["tracker_status"] == 500
        assert record["body"] == "<html>stack</html>"

    def test_exception_recorded(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        try:
            raise RuntimeError("kaboom")
        except RuntimeError:
            logger.exception("failed")
        assert _records(logger, tmp_path)[-1]["exception"] == "kaboom"

    def test_idempotent_setup(self, tmp_path: Path) -> None:
        logger1 = setup_logging(tmp_path)
        logger2 = setup_logging(tmp_path)
        assert logger1 is logger2
        assert len(logger1.handlers) == 1

    def test_new_directory_replaces_handler(self, tmp_path: Path) -> None:
        setup_logging(tmp_path / "a")
        logger = setup_logging(tmp_path / "b")
        assert len(logger.handlers) == 1
        handler = logger.handlers[0]
        assert isinstance(handler, logging.handlers.RotatingFileHandler)
        assert handler.baseFilename == os.path.abspath(str(tmp_path / "b" / "ticketwright.log"))

    def test_no_duplicate_handlers_under_concurrency(self, tmp_path: Path) -> None:
        results: list[logging.Logger] = []
        barrier = threading.Barrier(4)

        def call_setup() -> None:
            barrier.wait()
            results.append(setup_logging(tmp_path))

        threads = [threading.Thread(target=call_setup) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 4
        assert all(r is results[0] for r in results)
        file_handlers = [
            h
            for h in logging.getLogger("ticketwright").handlers
            if isinstance(h, logging.handlers.RotatingFileHandler)
            and h.baseFilename == os.path.abspath(str(tmp_path / "ticketwright.log"))
        ]
        assert len(file_handlers) == 1, f"Expected 1 handler, got {len(file_handlers)}"

    def teardown_method(self) -> None:
        """Clean up the ticketwright logger handlers between tests."""
        logger = logging.getLogger("ticketwright")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

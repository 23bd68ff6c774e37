"""Test logging configuration."""

import logging
from pathlib import Path

import structlog
from structlog.testing import LogCapture

from ssh_tunnel_manager.common.logging import get_logger, setup_logging


class TestLogging:
    """Test logging functionality."""

    def setup_method(self) -> None:
        """Setup before each test - reset logging configuration."""
        structlog.reset_defaults()
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    def teardown_method(self) -> None:
        self.setup_method()

    def test_setup_logging_default(self) -> None:
        setup_logging()
        logger = get_logger("test")
        assert hasattr(logger, "info")
        assert hasattr(logger, "error")
        assert logging.getLogger().level == logging.INFO

    def test_setup_logging_with_level(self) -> None:
        setup_logging(level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_replaces_handlers(self) -> None:
        setup_logging()
        setup_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_setup_logging_json_format(self) -> None:
        setup_logging(json_format=True)
        logger = get_logger("test")

        cap = LogCapture()
        structlog.configure(processors=[cap])

        logger.info("tunnel created", pid=4242)

        assert len(cap.entries) == 1
        assert cap.entries[0]["event"] == "tunnel created"
        assert cap.entries[0]["pid"] == 4242

    def test_audit_file_records_info_below_console_level(self, tmp_path: Path) -> None:
        """The audit log keeps INFO records even when the console shows WARNING."""
        log_file = tmp_path / "audit.log"
        setup_logging(level="WARNING", log_file=str(log_file))

        logging.getLogger("test_audit").info("Created tunnel")
        logging.getLogger("test_audit").debug("not recorded")
        for handler in logging.getLogger().handlers:
            handler.flush()

        contents = log_file.read_text()
        assert "Created tunnel" in contents
        assert "not recorded" not in contents
        assert logging.getLogger().level == logging.INFO

    def test_audit_file_is_appended(self, tmp_path: Path) -> None:
        log_file = tmp_path / "audit.log"
        log_file.write_text("earlier entry\n")
        setup_logging(log_file=str(log_file))

        logging.getLogger("test_audit").info("later entry")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert log_file.read_text().startswith("earlier entry\n")

"""
Tests for the structlog configuration applied at application startup.
"""

from __future__ import annotations

import pytest
import structlog
from structlog.testing import capture_logs

from engage_server.core.logging import configure_logging


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    configure_logging("info", "console")


class TestConfigureLogging:
    @pytest.mark.parametrize("level", ["debug", "info", "warning", "error", "INFO"])
    @pytest.mark.parametrize("fmt", ["json", "console"])
    def test_accepts_level_names(self, level, fmt):
        configure_logging(level, fmt)

    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError):
            configure_logging("chatty")

    def test_filters_below_level(self):
        configure_logging("warning", "json")
        log = structlog.get_logger()

        with capture_logs() as logs:
            log.info("membership.added")
            log.warning("storage.retry", attempt=1)

        assert [entry["event"] for entry in logs] == ["storage.retry"]

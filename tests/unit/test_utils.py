"""
Unit tests for flash_arbitrage.utils and logging_config.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

import pytest

from flash_arbitrage import logging_config
from flash_arbitrage.utils import (
    ensure_path_exists,
    format_uptime,
    get_current_timestamp,
    is_directory_writable,
    safe_json_dump,
    timestamp_to_iso,
    wait_for_stop,
)


class Color(Enum):
    RED = "red"


class TestTimestampUtils:
    """Test timestamp utilities."""

    def test_get_current_timestamp(self):
        timestamp = get_current_timestamp()
        assert isinstance(timestamp, float)
        assert timestamp > 0

    def test_timestamp_to_iso(self):
        assert timestamp_to_iso(1700000000.0) == "2023-11-14T22:13:20+00:00"

    @pytest.mark.parametrize(
        "seconds, expected",
        [
            (0, "0s"),
            (59.9, "59s"),
            (61, "1m 1s"),
            (3600, "1h 0m 0s"),
            (93784, "1d 2h 3m 4s"),
            (-5, "0s"),
        ],
    )
    def test_format_uptime(self, seconds, expected):
        assert format_uptime(seconds) == expected


class TestJsonUtils:
    """Test JSON utilities."""

    def test_large_integers_stay_exact(self):
        assert json.loads(safe_json_dump({"wei": 2**255}))["wei"] == 2**255

    def test_custom_types(self):
        dt = datetime(2024, 1, 1, tzinfo=timezone.utc)
        data = json.loads(
            safe_json_dump(
                {"dt": dt, "amount": Decimal("0.0975"), "color": Color.RED, "raw": b"\x01\xff"}
            )
        )
        assert data == {
            "dt": "2024-01-01T00:00:00+00:00",
            "amount": "0.0975",
            "color": "red",
            "raw": "0x01ff",
        }


class TestPathUtils:
    """Test path utilities."""

    def test_ensure_path_exists(self, tmp_path):
        target = tmp_path / "a" / "b"
        assert ensure_path_exists(target) == target
        assert target.is_dir()

    def test_ensure_path_exists_file(self, tmp_path):
        target = tmp_path / "logs" / "engine.log"
        ensure_path_exists(target, is_file=True)
        assert target.parent.is_dir()
        assert not target.exists()

    def test_is_directory_writable(self, tmp_path):
        assert is_directory_writable(tmp_path / "new")
        assert list((tmp_path / "new").iterdir()) == []

    def test_file_path_is_not_writable_directory(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        assert not is_directory_writable(blocker / "sub")


class TestLoggingUtils:
    """Test logging helpers."""

    def test_setup_adds_rotating_file(self, tmp_path):
        log_file = tmp_path / "logs" / "engine.log"
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            logging_config.setup(level="DEBUG", log_file=log_file)
            logging.getLogger("flash_arbitrage.test").info("hello")
            for handler in root.handlers:
                handler.flush()
            assert "hello" in log_file.read_text()
            assert logging.getLogger("web3").level == logging.WARNING
        finally:
            for handler in root.handlers:
                if handler not in saved_handlers:
                    handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
            logging.getLogger("flash_arbitrage").setLevel(logging.NOTSET)


class TestWaitForStop:
    @pytest.mark.asyncio
    async def test_times_out(self):
        assert await wait_for_stop(asyncio.Event(), 0.01) is False

    @pytest.mark.asyncio
    async def test_returns_early_when_set(self):
        event = asyncio.Event()
        event.set()
        assert await wait_for_stop(event, 10) is True

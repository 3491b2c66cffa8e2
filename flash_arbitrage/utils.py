"""
Common utilities and helper functions for the flash arbitrage engine.

This module provides centralized helpers for timestamps, JSON serialization,
path checks and cooperative waits.
"""

import asyncio
import json
import time
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Union


# Timestamp utilities
def get_current_timestamp() -> float:
    """Get current Unix timestamp as float."""
    return time.time()


def timestamp_to_iso(timestamp: float) -> str:
    """Convert Unix timestamp to ISO 8601 string."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def format_uptime(seconds: float) -> str:
    """
    Format an uptime in seconds as ``1d 2h 3m 4s``.

    Leading zero units are omitted; seconds are always shown.
    """
    total = max(0, int(seconds))
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)

    if days > 0:
        return f"{days}d {hours}h {minutes}m {secs}s"
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


# JSON utilities
def safe_json_dump(data: Any, **kwargs) -> str:
    """
    Safely serialize data to JSON with sensible defaults.

    Integers wider than 53 bits are kept exact by the json module; Decimal,
    Enum, bytes and datetime values are converted by the default handler.
    """
    defaults = {"ensure_ascii": False, "default": _json_default_handler}
    defaults.update(kwargs)
    return json.dumps(data, **defaults)


def _json_default_handler(obj: Any) -> Any:
    """Default JSON serialization handler for custom types."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (bytes, bytearray)):
        return "0x" + bytes(obj).hex()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return str(obj)


# Path utilities
def ensure_path_exists(path: Union[str, Path], is_file: bool = False) -> Path:
    """Ensure a directory (or a file's parent directory) exists."""
    path_obj = Path(path)
    directory = path_obj.parent if is_file else path_obj
    directory.mkdir(parents=True, exist_ok=True)
    return path_obj


def is_directory_writable(path: Union[str, Path]) -> bool:
    """Check a directory is writable by creating and removing a probe file."""
    directory = Path(path)
    probe = directory / f".write_probe_{int(time.time() * 1000)}"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        probe.write_text("ok")
        probe.unlink()
        return True
    except OSError:
        return False


async def wait_for_stop(stop_event: asyncio.Event, timeout: float) -> bool:
    """Sleep up to ``timeout`` seconds; returns True early if ``stop_event`` is set."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False

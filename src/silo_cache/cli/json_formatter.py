"""
JSON Output Formatter for the silo-cache CLI

Machine-readable output used by every command when ``--json`` is given.
"""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from typing import Any

import orjson


def format_json_output(
    success: bool,
    command: str,
    data: Any | None = None,
    errors: list[str] | None = None,
    warnings: list[str] | None = None,
) -> bytes:
    """
    Format command output as JSON.

    Args:
        success: Whether the command executed successfully
        command: The command name (e.g., "get", "fetch")
        data: The command's output data
        errors: List of error messages
        warnings: List of warning messages

    Returns:
        JSON-encoded bytes ready for output

    Example:
        >>> output = format_json_output(success=True, command="stats", data={"hits": 3})
        >>> print(output.decode())
        {
          "command": "stats",
          "data": {
            "hits": 3
          },
          "errors": [],
          "success": true,
          "timestamp": "2024-05-03T10:30:00+00:00",
          "warnings": []
        }
    """
    errors = errors or []
    warnings = warnings or []

    if errors:
        success = False

    json_data = {
        "success": success,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "command": command,
        "data": data,
        "errors": errors,
        "warnings": warnings,
    }

    return orjson.dumps(
        json_data,
        default=str,
        option=orjson.OPT_SORT_KEYS | orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS,
    )


def write_json_output(output: bytes) -> None:
    """Write formatted JSON to stdout."""
    sys.stdout.buffer.write(output)
    sys.stdout.buffer.write(b"\n")
    sys.stdout.buffer.flush()

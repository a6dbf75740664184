"""File permission utilities for silo-cache.

The cache database can hold business data and the stored auth token, so a
newly created database file is restricted to its owner.
"""

from __future__ import annotations

import logging
from pathlib import Path

from silo_cache.shared.constants import FileSystem
from silo_cache.shared.errors import ApplicationError, ErrorCode, ErrorContext

logger = logging.getLogger(__name__)


def set_secure_file_permissions(file_path: Path | str) -> None:
    """Set secure file permissions (600 - owner read/write only).

    On Windows ``chmod`` only toggles the read-only flag, so this is best
    effort there.

    Args:
        file_path: Path to the file to secure

    Raises:
        ApplicationError: If the file is missing or permissions cannot be set
    """
    file_path = Path(file_path)

    context = ErrorContext(
        operation="set_secure_file_permissions",
        additional_data={"file_path": file_path},
    )

    if not file_path.exists():
        logger.error("File not found: %s", file_path)
        raise ApplicationError(
            ErrorCode.FILE_NOT_FOUND,
            f"Cannot set permissions: file does not exist: {file_path}",
            context,
        )

    try:
        file_path.chmod(FileSystem.SECURE_FILE_MODE)
    except PermissionError as e:
        logger.exception("Permission denied: %s", file_path)
        raise ApplicationError(
            ErrorCode.PERMISSION_DENIED,
            f"Cannot set permissions: {file_path}",
            context,
            original_error=e,
        ) from e
    except OSError as e:
        logger.exception("Failed to set permissions: %s", file_path)
        raise ApplicationError(
            ErrorCode.FILE_ACCESS_ERROR,
            f"Failed to set permissions: {file_path}",
            context,
            original_error=e,
        ) from e

    logger.debug("Secure permissions set for: %s", file_path)

"""
silo-cache Package Main Entry Point

Runs the CLI when the package is executed with ``python -m silo_cache``.
"""

import logging
import sys

from silo_cache.cli.common.error_handler import handle_cli_error
from silo_cache.cli.typer_app import app
from silo_cache.shared.constants import CLIDefaults

logger = logging.getLogger(__name__)


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        logger.info("Command interrupted by user")
        sys.exit(CLIDefaults.EXIT_ERROR)
    except SystemExit:  # pylint: disable=try-except-raise
        raise
    except Exception as e:  # noqa: BLE001
        exit_code = handle_cli_error(e, "silo-cache-main")
        sys.exit(exit_code)

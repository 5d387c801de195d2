"""
Unified CLI Error Handling
==========================

Provides consistent error handling and exit codes for the kscope CLI.
"""

import sys
import traceback
from enum import IntEnum
from typing import NoReturn

import click


class ExitCode(IntEnum):
    """Standard exit codes for CLI tools."""
    SUCCESS = 0
    DIAGNOSTICS = 1      # Language errors reported while running a script
    INVALID_ARGS = 2     # Invalid arguments or unreadable source
    INTERNAL_ERROR = 3   # Unexpected internal error


def handle_cli_exception(error: Exception, verbose: bool = False) -> NoReturn:
    """
    Unified exception handler for the kscope CLI.

    Formats the error message appropriately, optionally prints traceback
    in verbose mode, and exits with the correct exit code.

    Args:
        error: The exception that was raised
        verbose: If True, print full traceback for internal errors

    Raises:
        SystemExit: Always exits with an appropriate exit code
    """
    from kscope.lang.errors import LangError
    from kscope.errors import KscopeError

    if isinstance(error, LangError):
        # Language errors already carry location and "error:" prefix
        click.echo(str(error), err=True)
        sys.exit(ExitCode.DIAGNOSTICS)

    elif isinstance(error, KscopeError):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.DIAGNOSTICS)

    elif isinstance(error, (click.BadParameter, ValueError)):
        # Invalid command-line arguments or option values
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, (FileNotFoundError, PermissionError, UnicodeDecodeError)):
        # Unreadable source file
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    else:
        # Unexpected internal error
        click.echo(f"Internal error: {error}", err=True)
        if verbose:
            traceback.print_exc()
        sys.exit(ExitCode.INTERNAL_ERROR)

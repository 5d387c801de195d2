"""
kscope - Interactive Kaleidoscope Command-Line Interface
========================================================

This module implements the command-line interface for kscope. Without a
source file it runs a read-eval-print loop on standard input; with one
it runs the file as a script.

Usage Examples
--------------
Interactive session:
    $ kscope
    ready> def double(x) x*2;
    ready> double(21);
    Evaluated to 42.0

Run a script:
    $ kscope program.ks

Show the optimised IR instead of running:
    $ kscope --mode ir program.ks

Parse only, printing each construct:
    $ kscope --mode parse --ast program.ks

Verbose mode:
    $ kscope -v program.ks
"""

import logging
import sys
from pathlib import Path
from typing import Iterator, Optional, TextIO

import click

from kscope import __version__
from kscope.cli.errors import ExitCode, handle_cli_exception
from kscope.lang.ast import ASTPrinter
from kscope.lang.lexer import TokenStream
from kscope.lang.session import Session, SessionEvent, SessionMode, SessionOptions

PROMPT = "ready> "


# =============================================================================
# Helpers
# =============================================================================

def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if verbose else "%(message)s",
    )


def prompted_lines(stream: TextIO) -> Iterator[str]:
    """Yield lines from `stream`, printing the prompt before each read."""
    while True:
        click.echo(PROMPT, nl=False, err=True)
        line = stream.readline()
        if not line:
            click.echo(err=True)
            return
        yield line


def report(event: SessionEvent, printer: Optional[ASTPrinter]) -> None:
    """Print one session event: diagnostics to stderr, the rest to stdout."""
    if event.is_error:
        click.echo(event.message, err=True)
        return

    click.echo(event.message)
    if printer is not None and event.node is not None:
        click.echo(printer.print(event.node))


# =============================================================================
# CLI Definition
# =============================================================================

@click.command()
@click.argument(
    "source",
    required=False,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "-m", "--mode",
    type=click.Choice([m.value for m in SessionMode], case_sensitive=False),
    default=None,
    help="How far to take each construct: parse, ir or jit. Default: jit "
         "(or KSCOPE_MODE).",
)
@click.option(
    "-O", "--opt-level",
    type=click.IntRange(0, 3),
    default=None,
    help="Optimisation level 0-3 (0 disables the pass pipeline). Default: 2.",
)
@click.option(
    "--no-ir",
    is_flag=True,
    help="Do not print generated IR for definitions and externs",
)
@click.option(
    "--ast",
    is_flag=True,
    help="Print the AST of every parsed construct",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
@click.version_option(version=__version__, prog_name="kscope")
def main(
    source: Optional[Path],
    mode: Optional[str],
    opt_level: Optional[int],
    no_ir: bool,
    ast: bool,
    verbose: bool,
) -> None:
    """
    Run kscope interactively or on a source file.

    SOURCE is an optional kscope program. When omitted, statements are
    read from standard input with a "ready>" prompt on a terminal.

    \b
    Examples:
        kscope                         # Interactive session
        kscope program.ks              # Run a script
        kscope --mode ir program.ks    # Print optimised IR
        kscope -O0 program.ks          # Disable optimisation
        echo "1+2*3" | kscope          # Evaluate from a pipe

    \b
    Language:
        def name(a b) expression       # Function definition
        extern name(a b)               # External declaration
        expression                     # Evaluated immediately
        Operators: <  +  -  *          # Lowest to highest precedence
        Built-ins: extern printd(x), extern putchard(x)
    """
    setup_logging(verbose)

    # Environment first, command-line options override it
    options = SessionOptions.from_env()
    if mode is not None:
        options.mode = SessionMode(mode.lower())
    if opt_level is not None:
        options.opt_level = opt_level
    if no_ir:
        options.print_ir = False

    try:
        session = Session(options)

        if source is not None:
            lines = source.read_text().splitlines(keepends=True)
            filename = str(source)
        else:
            stdin = click.get_text_stream("stdin")
            lines = prompted_lines(stdin) if stdin.isatty() else stdin
            filename = "<stdin>"

        if verbose:
            click.echo(f"Mode: {options.mode.value}, optimisation level {options.opt_level}", err=True)

        printer = ASTPrinter() if ast else None
        for event in session.run(TokenStream.from_source(lines, filename)):
            report(event, printer)

        module = session.finish()
        if module is not None:
            click.echo(module)
        session.close()

    except Exception as e:
        handle_cli_exception(e, verbose)

    if source is not None and session.errors.has_errors():
        if verbose:
            click.echo(f"{session.errors.error_count()} error(s) in {source}", err=True)
        sys.exit(ExitCode.DIAGNOSTICS)


if __name__ == "__main__":
    main()

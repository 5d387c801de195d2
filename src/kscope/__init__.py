"""
kscope - An Interactive Kaleidoscope Front-End for LLVM
=======================================================

This package provides a small interactive language that compiles each
top-level construct to LLVM IR and, in JIT mode, runs every top-level
expression as soon as it has been typed.

Main Components
---------------
- **lang**: The language front-end
    Lexer, parser, AST, code generator, execution engine and session

- **cli**: Command-line tools (kscope)
    A REPL and script runner built on the session manager

Quick Start
-----------
Evaluate some code:
    >>> from kscope import Session
    >>> Session().evaluate("def double(x) x*2; double(21)")
    42.0

Inspect the IR instead:
    >>> from kscope import SessionOptions, SessionMode
    >>> session = Session(SessionOptions(mode=SessionMode.IR))
    >>> events = session.run_source("def double(x) x*2")
    >>> print(session.finish())

Or use the command-line tool:
    $ kscope
    ready> def double(x) x*2;
    ready> double(21);
    Evaluated to 42.0

Reference Documentation
-----------------------
- LLVM Kaleidoscope tutorial: https://llvm.org/docs/tutorial/
- llvmlite: https://llvmlite.readthedocs.io/

Version History
---------------
1.0.0 - Initial release with parse, IR and JIT session modes
"""

__version__ = "1.0.0"
__author__ = "kscope Contributors"

# =============================================================================
# Public API Exports
# =============================================================================

from kscope.errors import KscopeError, SourceLocation
from kscope.lang import (
    Session,
    SessionOptions,
    SessionMode,
    SessionEvent,
    EventKind,
    LangError,
    KSyntaxError,
    GenerationError,
    BackendError,
)

__all__ = [
    "__version__",
    "KscopeError",
    "SourceLocation",
    "Session",
    "SessionOptions",
    "SessionMode",
    "SessionEvent",
    "EventKind",
    "LangError",
    "KSyntaxError",
    "GenerationError",
    "BackendError",
]

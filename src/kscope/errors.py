"""
kscope Error Hierarchy
======================

This module defines the root of the exception hierarchy for kscope.
All exceptions inherit from KscopeError, allowing callers to catch every
toolchain error with a single except clause if desired.

Exception Hierarchy
-------------------
KscopeError (base)
└── LangError (kscope.lang.errors)
    ├── KSyntaxError - malformed token sequence
    ├── GenerationError - name resolution and code generation errors
    └── BackendError - verification and execution engine failures

Design Philosophy
-----------------
Each language exception captures the source location (filename, line,
column) of the construct that failed, so diagnostics printed by the REPL
point back at the offending input.

Error messages follow this format:
    filename:line:column: error: description
    hint: suggestion for fixing (when available)
"""

from dataclasses import dataclass


# =============================================================================
# Base Exception Class
# =============================================================================

class KscopeError(Exception):
    """
    Base exception for all kscope errors.

    All exceptions raised by the toolchain inherit from this class:

        try:
            session.run_source("def f(x) y")
        except KscopeError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Source Location Tracking
# =============================================================================

@dataclass(frozen=True)
class SourceLocation:
    """
    Represents a location in source code for error reporting.

    Tokens and AST nodes carry one of these so that diagnostics can name
    the place where a construct started. The frozen design ensures
    locations cannot be accidentally modified.

    Attributes:
        filename: Name of the source (or "<stdin>" for the REPL)
        line: Line number (1-indexed)
        column: Column number (1-indexed)
    """
    filename: str
    line: int
    column: int

    def __str__(self) -> str:
        """Format as 'filename:line:column' for error messages."""
        return f"{self.filename}:{self.line}:{self.column}"

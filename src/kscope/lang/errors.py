"""
Language Error Hierarchy
========================

This module defines the exception hierarchy for the kscope language
front-end. All exceptions inherit from LangError, which itself inherits
from KscopeError for consistent error handling across the package.

Exception Hierarchy
-------------------
LangError (base for all language errors)
├── KSyntaxError - malformed token sequence
│   ├── UnexpectedTokenError - token cannot start an expression
│   └── MissingTokenError - required token absent (')', '(' ...)
├── GenerationError - errors raised while generating IR
│   ├── UnknownVariableError - name is not a parameter of the function
│   ├── UnknownFunctionError - callee has no prototype anywhere
│   ├── ArityMismatchError - wrong number of call arguments
│   ├── InvalidOperatorError - operator parsed but not generatable
│   └── RedefinitionError - function body already exists in the unit
└── BackendError - verification or execution engine failure

Every one of these is recoverable: the session reports it and discards
the top-level construct that caused it.

Error Message Format
--------------------
    <stdin>:3:9: error: unknown variable name 'y'
    hint: only parameters of the enclosing function are in scope
"""

from typing import Optional, List

from kscope.errors import KscopeError, SourceLocation


# =============================================================================
# Base Language Exception
# =============================================================================

class LangError(KscopeError):
    """
    Base exception for all language front-end errors.

    Attributes:
        message: The error description
        location: Where in the source the error occurred
        hint: A suggestion for fixing the error
    """

    def __init__(
        self,
        message: str,
        location: Optional[SourceLocation] = None,
        hint: Optional[str] = None,
    ):
        self.message = message
        self.location = location
        self.hint = hint
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """
        Format the error message with location and hint.

            <stdin>:1:5: error: expected ')'
            hint: close the parenthesised expression
        """
        parts = []

        if self.location:
            parts.append(f"{self.location}: error: {self.message}")
        else:
            parts.append(f"error: {self.message}")

        if self.hint:
            parts.append(f"hint: {self.hint}")

        return "\n".join(parts)


# =============================================================================
# Syntax Errors (Parser)
# =============================================================================

class KSyntaxError(LangError):
    """
    Syntax error in kscope source.

    Raised by the parser when the token sequence does not match the
    grammar. The parser never recovers by itself; the session skips one
    token and carries on.
    """
    pass


class UnexpectedTokenError(KSyntaxError):
    """
    Unexpected token during parsing.

    Raised when the parser needs a primary expression (number, name or
    parenthesised expression) and finds something else.
    """

    def __init__(
        self,
        found: str,
        expected: Optional[str] = None,
        location: Optional[SourceLocation] = None,
    ):
        self.found = found
        self.expected = expected

        hint = None
        if expected:
            hint = f"expected {expected}"

        super().__init__(
            f"unknown token '{found}' when expecting an expression",
            location=location,
            hint=hint,
        )


class MissingTokenError(KSyntaxError):
    """
    Required token is missing.

    Raised when a required token (like ')' or a function name) is not
    found where the grammar demands it.
    """

    def __init__(
        self,
        expected: str,
        context: Optional[str] = None,
        location: Optional[SourceLocation] = None,
    ):
        self.expected = expected
        self.context = context

        message = f"expected {expected}"
        if context:
            message = f"{message} in {context}"

        super().__init__(message, location=location)


# =============================================================================
# Generation Errors (Name Resolution and IR Emission)
# =============================================================================

class GenerationError(LangError):
    """
    Error raised while turning a parsed construct into IR.

    The construct parsed correctly but refers to something that does not
    exist or cannot be emitted.
    """
    pass


class UnknownVariableError(GenerationError):
    """Variable reference that is not a parameter of the enclosing function."""

    def __init__(
        self,
        name: str,
        location: Optional[SourceLocation] = None,
        in_scope: Optional[List[str]] = None,
    ):
        self.name = name
        self.in_scope = in_scope or []

        if self.in_scope:
            names = ", ".join(f"'{n}'" for n in self.in_scope)
            hint = f"names in scope: {names}"
        else:
            hint = "only parameters of the enclosing function are in scope"

        super().__init__(
            f"unknown variable name '{name}'",
            location=location,
            hint=hint,
        )


class UnknownFunctionError(GenerationError):
    """Call to a function with no definition or extern in the session."""

    def __init__(
        self,
        name: str,
        location: Optional[SourceLocation] = None,
    ):
        self.name = name
        super().__init__(
            f"unknown function referenced '{name}'",
            location=location,
            hint=f"declare it first with 'extern {name}(...)' or 'def {name}(...)'",
        )


class ArityMismatchError(GenerationError):
    """
    Wrong number of arguments in a function call.

    The expected count comes from whichever prototype name resolution
    found: the current unit's declaration or the registry entry.
    """

    def __init__(
        self,
        name: str,
        expected: int,
        actual: int,
        location: Optional[SourceLocation] = None,
    ):
        self.name = name
        self.expected = expected
        self.actual = actual

        word = "argument" if expected == 1 else "arguments"
        super().__init__(
            f"incorrect # arguments passed: '{name}' expects {expected} {word}, got {actual}",
            location=location,
        )


class InvalidOperatorError(GenerationError):
    """Binary operator the parser accepted but the backend cannot emit."""

    def __init__(
        self,
        operator: str,
        location: Optional[SourceLocation] = None,
    ):
        self.operator = operator
        super().__init__(
            f"invalid binary operator '{operator}'",
            location=location,
        )


class RedefinitionError(GenerationError):
    """Function already has a body in the current compilation unit."""

    def __init__(
        self,
        name: str,
        location: Optional[SourceLocation] = None,
    ):
        self.name = name
        super().__init__(
            f"function '{name}' cannot be redefined",
            location=location,
        )


# =============================================================================
# Backend Errors
# =============================================================================

class BackendError(LangError):
    """
    Error reported by the code-generation backend or execution engine.

    Raised when generated IR fails verification, or when a finished unit
    cannot be loaded or its entry symbol cannot be resolved.
    """
    pass


# =============================================================================
# Error Collection
# =============================================================================

class ErrorCollector:
    """
    Collects the diagnostics reported during a session.

    The session recovers from every error, so nothing stops on the first
    one; the collector only keeps them for a final summary and for the
    CLI exit status.

    Example:
        collector = ErrorCollector()
        try:
            handle_construct()
        except LangError as e:
            collector.add(e)

        if collector.has_errors():
            print(collector.report())
    """

    def __init__(self):
        self.errors: List[LangError] = []

    def add(self, error: LangError) -> None:
        """Add an error to the collection."""
        self.errors.append(error)

    def has_errors(self) -> bool:
        """Return True if any errors have been collected."""
        return len(self.errors) > 0

    def error_count(self) -> int:
        """Return the number of collected errors."""
        return len(self.errors)

    def report(self) -> str:
        """Format all errors for display."""
        lines = [str(error) for error in self.errors]
        error_word = "error" if len(self.errors) == 1 else "errors"
        lines.append(f"{len(self.errors)} {error_word}")
        return "\n".join(lines)

    def clear(self) -> None:
        """Clear all collected errors."""
        self.errors.clear()

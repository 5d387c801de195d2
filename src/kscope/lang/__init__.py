"""
kscope Language Front-End
=========================

This package implements a small expression language with one numeric
type (double), function definitions, external declarations and
immediate evaluation of top-level expressions.

- A lexer producing a pull-model token stream
- A recursive descent parser with precedence climbing for operators
- A code generator emitting LLVM IR through a pluggable backend
- An ORC LLJIT execution engine with a tiny runtime library
- A session manager running the read-eval-print loop

Pipeline
--------
    Source → Lexer → Parser → AST → Code Generator → Unit → JIT → Value

Usage
-----
>>> from kscope.lang import Session
>>> session = Session()
>>> session.evaluate("def sq(x) x*x; sq(3) + 1")
10.0

Language Summary
----------------
    # Distance from the origin, squared
    def dist2(x y) x*x + y*y
    extern sin(x)
    sin(1.0) * dist2(3, 4)

Operators: < + - * (lowest to highest). Parameters are separated by
whitespace, arguments by commas.
"""

# =============================================================================
# Public API Imports
# =============================================================================

from kscope.lang.session import (
    Session,
    SessionOptions,
    SessionMode,
    SessionEvent,
    EventKind,
)
from kscope.lang.errors import (
    LangError,
    KSyntaxError,
    UnexpectedTokenError,
    MissingTokenError,
    GenerationError,
    UnknownVariableError,
    UnknownFunctionError,
    ArityMismatchError,
    InvalidOperatorError,
    RedefinitionError,
    BackendError,
    ErrorCollector,
)
from kscope.lang.lexer import KLexer, KTokenType, KToken, TokenStream
from kscope.lang.parser import KParser, BINOP_PRECEDENCE
from kscope.lang.registry import PrototypeRegistry, LocalBindings
from kscope.lang.codegen import Backend, LLVMBackend, CodeGenerator
from kscope.lang.jit import JITEngine, UnitHandle
from kscope.lang.ast import (
    ANONYMOUS_FUNCTION_NAME,
    ASTNode,
    Expression,
    NumberLiteral,
    VariableExpression,
    BinaryExpression,
    CallExpression,
    PrototypeNode,
    FunctionNode,
    ASTVisitor,
    ASTPrinter,
)

__all__ = [
    # Session
    "Session",
    "SessionOptions",
    "SessionMode",
    "SessionEvent",
    "EventKind",
    # Errors
    "LangError",
    "KSyntaxError",
    "UnexpectedTokenError",
    "MissingTokenError",
    "GenerationError",
    "UnknownVariableError",
    "UnknownFunctionError",
    "ArityMismatchError",
    "InvalidOperatorError",
    "RedefinitionError",
    "BackendError",
    "ErrorCollector",
    # Lexer
    "KLexer",
    "KTokenType",
    "KToken",
    "TokenStream",
    # Parser
    "KParser",
    "BINOP_PRECEDENCE",
    # Name resolution
    "PrototypeRegistry",
    "LocalBindings",
    # Code generation and execution
    "Backend",
    "LLVMBackend",
    "CodeGenerator",
    "JITEngine",
    "UnitHandle",
    # AST Nodes
    "ANONYMOUS_FUNCTION_NAME",
    "ASTNode",
    "Expression",
    "NumberLiteral",
    "VariableExpression",
    "BinaryExpression",
    "CallExpression",
    "PrototypeNode",
    "FunctionNode",
    "ASTVisitor",
    "ASTPrinter",
]

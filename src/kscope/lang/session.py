"""
kscope Session Manager
======================

This module drives a read-eval-print session. It pulls one top-level
construct at a time from the token stream, parses it, generates it into
the current compilation unit and, in JIT mode, hands units to the
execution engine.

    Tokens → Parse → Generate → Hand-off → Execute → Report

Session Modes
-------------
parse
    Parse only. Each construct is reported as parsed.

ir
    One compilation unit for the whole session. Each construct's IR is
    reported; anonymous expression functions are erased from the unit
    after being reported. finish() returns the optimised module.

jit (default)
    One unit per construct:

    - Open: a fresh unit receives the next construct.
    - Closing: after a definition or extern is generated, its unit is
      loaded into the engine and a new, empty unit is opened.
    - Evaluating: after a top-level expression is generated, its unit is
      loaded, __anon_expr is called with no arguments, the result is
      reported and the unit is unloaded again.

    Only the prototype registry survives a hand-off. Every later unit
    reaches earlier functions by re-declaring them from the registry.

Error Recovery
--------------
Every error is confined to the construct that raised it. A syntax error
is reported and exactly one token is skipped; a generation error is
reported and the construct is dropped. The loop only stops at EOF.

Usage
-----
>>> session = Session(SessionOptions(mode=SessionMode.JIT))
>>> session.evaluate("def sq(x) x*x; sq(4)")
16.0
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, Optional, Union

from kscope.lang.ast import ANONYMOUS_FUNCTION_NAME, ASTNode, FunctionNode, PrototypeNode
from kscope.lang.codegen import Backend, CodeGenerator, LLVMBackend
from kscope.lang.errors import BackendError, ErrorCollector, KSyntaxError, LangError
from kscope.lang.jit import JITEngine, UnitHandle
from kscope.lang.lexer import KTokenType, TokenStream
from kscope.lang.parser import KParser
from kscope.lang.registry import PrototypeRegistry

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

class SessionMode(Enum):
    """How far each construct travels through the pipeline."""
    PARSE = "parse"
    IR = "ir"
    JIT = "jit"


@dataclass
class SessionOptions:
    """
    Session configuration options.

    Attributes:
        mode: Pipeline depth (parse, ir or jit)
        opt_level: Function pass pipeline speed level 0-3; 0 disables it
        print_ir: Attach generated IR text to definition/extern events
        unit_name: Prefix for compilation unit names ("kscope.1", ...)
        precedence: Binary operator table override for the parser
    """
    mode: SessionMode = SessionMode.JIT
    opt_level: int = 2
    print_ir: bool = True
    unit_name: str = "kscope"
    precedence: Optional[dict[str, int]] = None

    def __post_init__(self):
        if isinstance(self.mode, str):
            self.mode = SessionMode(self.mode.lower())
        if not 0 <= self.opt_level <= 3:
            raise ValueError(f"opt_level must be between 0 and 3, got {self.opt_level}")

    @classmethod
    def from_env(cls) -> "SessionOptions":
        """
        Create SessionOptions from environment variables.

        Environment variables (all optional):
            KSCOPE_MODE: parse, ir or jit
            KSCOPE_OPT_LEVEL: 0-3
            KSCOPE_PRINT_IR: 0/false/no to disable IR in reports

        Invalid values are logged and ignored.
        """
        options = cls()

        if mode := os.environ.get("KSCOPE_MODE"):
            try:
                options.mode = SessionMode(mode.lower())
            except ValueError:
                logger.warning(f"Ignoring invalid KSCOPE_MODE={mode!r}")

        if level := os.environ.get("KSCOPE_OPT_LEVEL"):
            try:
                value = int(level)
                if not 0 <= value <= 3:
                    raise ValueError(level)
                options.opt_level = value
            except ValueError:
                logger.warning(f"Ignoring invalid KSCOPE_OPT_LEVEL={level!r}")

        if print_ir := os.environ.get("KSCOPE_PRINT_IR"):
            options.print_ir = print_ir.lower() not in ("0", "false", "no", "off")

        return options


# =============================================================================
# Session Events
# =============================================================================

class EventKind(Enum):
    """What a handled top-level construct turned out to be."""
    DEFINITION = "definition"
    EXTERN = "extern"
    EXPRESSION = "expression"
    ERROR = "error"


PARSED_MESSAGES = {
    EventKind.DEFINITION: "Parsed a function definition.",
    EventKind.EXTERN: "Parsed an extern",
    EventKind.EXPRESSION: "Parsed a top-level expr",
}


@dataclass
class SessionEvent:
    """
    Outcome of one top-level construct.

    Attributes:
        kind: Definition, extern, expression or error
        message: Text the REPL prints for this event
        name: Function name, when the construct has one
        ir: Generated IR text (ir/jit modes with print_ir)
        value: Result of an evaluated expression (jit mode)
        error: The diagnostic for ERROR events
        node: The parsed AST node
    """
    kind: EventKind
    message: str
    name: Optional[str] = None
    ir: Optional[str] = None
    value: Optional[float] = None
    error: Optional[LangError] = None
    node: Optional[ASTNode] = None

    @property
    def is_error(self) -> bool:
        return self.kind == EventKind.ERROR


# =============================================================================
# Session
# =============================================================================

class Session:
    """
    A read-eval-print session.

    The session owns the prototype registry, the current compilation unit
    and (in JIT mode) the execution engine. It can be fed several token
    streams in turn; state carries over between them.

    Example:
        session = Session()
        for event in session.run(TokenStream.from_source(text)):
            print(event.message)

    Attributes:
        options: Session configuration
        registry: Prototype registry shared by every unit
        errors: Diagnostics reported so far
        backend: Code-generation backend (None in parse mode)
        engine: Execution engine (JIT mode only)
        unit: The compilation unit currently open for writing
    """

    def __init__(
        self,
        options: Optional[SessionOptions] = None,
        backend: Optional[Backend] = None,
        engine: Optional[JITEngine] = None,
    ):
        self.options = options or SessionOptions()
        self.registry = PrototypeRegistry()
        self.errors = ErrorCollector()

        self.backend: Optional[Backend] = None
        self.engine: Optional[JITEngine] = None
        self.generator: Optional[CodeGenerator] = None
        self.unit: Any = None
        self._unit_count = 0

        if self.options.mode != SessionMode.PARSE:
            self.backend = backend or LLVMBackend(opt_level=self.options.opt_level)
            self.generator = CodeGenerator(self.backend, self.registry)
            if self.options.mode == SessionMode.JIT:
                self.engine = engine or JITEngine(self.backend)
            self.unit = self._open_unit()

    # =========================================================================
    # Main Loop
    # =========================================================================

    def run(self, tokens: TokenStream) -> Iterator[SessionEvent]:
        """
        Handle top-level constructs until EOF.

        top ::= definition | external | expression | ';'

        Yields:
            One SessionEvent per construct (top-level ';' is skipped)
        """
        parser = KParser(tokens, self.options.precedence)

        while True:
            token = tokens.current
            if token.type == KTokenType.EOF:
                return
            if token.is_char(";"):
                tokens.advance()
                continue

            if token.type == KTokenType.DEF:
                yield self.handle_definition(parser)
            elif token.type == KTokenType.EXTERN:
                yield self.handle_extern(parser)
            else:
                yield self.handle_top_level_expression(parser)

    def run_source(
        self,
        source: Union[str, Iterable[str]],
        filename: str = "<input>",
    ) -> list[SessionEvent]:
        """Run a complete source and return all events."""
        return list(self.run(TokenStream.from_source(source, filename)))

    def evaluate(self, source: str, filename: str = "<input>") -> Optional[float]:
        """
        Run `source` and return the value of its last top-level expression.

        Raises:
            LangError: The first diagnostic reported while running
        """
        value = None
        for event in self.run_source(source, filename):
            if event.is_error:
                raise event.error
            if event.value is not None:
                value = event.value
        return value

    def finish(self) -> Optional[str]:
        """
        End the session.

        Returns:
            The complete optimised module in ir mode, otherwise None
        """
        if self.options.mode == SessionMode.IR:
            return self.backend.render(self.unit)
        return None

    def close(self) -> None:
        """Release the execution engine and everything loaded into it."""
        if self.engine is not None:
            self.engine.close()
            self.engine = None

    # =========================================================================
    # Construct Handlers
    # =========================================================================

    def handle_definition(self, parser: KParser) -> SessionEvent:
        """Parse and generate 'def' prototype expression."""
        return self._handle(
            parser, parser.parse_definition, EventKind.DEFINITION, self._generate_definition,
        )

    def handle_extern(self, parser: KParser) -> SessionEvent:
        """Parse and generate 'extern' prototype."""
        return self._handle(
            parser, parser.parse_extern, EventKind.EXTERN, self._generate_extern,
        )

    def handle_top_level_expression(self, parser: KParser) -> SessionEvent:
        """Parse a bare expression as an anonymous function and evaluate it."""
        return self._handle(
            parser, parser.parse_top_level_expr, EventKind.EXPRESSION, self._generate_top_level,
        )

    def _handle(
        self,
        parser: KParser,
        parse: Callable[[], ASTNode],
        kind: EventKind,
        generate: Callable[[Any], SessionEvent],
    ) -> SessionEvent:
        try:
            node = parse()
        except KSyntaxError as e:
            # Skip token for error recovery
            parser.tokens.advance()
            return self._error(e)

        if self.options.mode == SessionMode.PARSE:
            name = None if kind == EventKind.EXPRESSION else node.name
            return SessionEvent(kind, PARSED_MESSAGES[kind], name=name, node=node)

        try:
            return generate(node)
        except LangError as e:
            return self._error(e)

    def _error(self, error: LangError) -> SessionEvent:
        self.errors.add(error)
        logger.debug(f"Discarded construct: {error.message}")
        return SessionEvent(EventKind.ERROR, str(error), error=error)

    # =========================================================================
    # Generation and Unit Lifecycle
    # =========================================================================

    def _open_unit(self) -> Any:
        self._unit_count += 1
        name = f"{self.options.unit_name}.{self._unit_count}"
        logger.debug(f"Opened unit '{name}'")
        return self.backend.new_unit(name)

    def _hand_off(self) -> UnitHandle:
        """Load the current unit into the engine and open a fresh one."""
        try:
            return self.engine.load_unit(self.unit)
        finally:
            self.unit = self._open_unit()

    def _render(self, fn: Any) -> Optional[str]:
        return self.backend.render(fn) if self.options.print_ir else None

    def _generate_definition(self, node: FunctionNode) -> SessionEvent:
        previous = self.registry.get(node.name)
        fn = self.generator.generate(node, self.unit)
        ir_text = self._render(fn)

        if self.options.mode == SessionMode.JIT:
            try:
                self._hand_off()
            except BackendError:
                # The definition never became callable
                self.registry.restore(node.name, previous)
                raise

        message = "Read function definition:"
        if ir_text:
            message = f"{message}\n{ir_text}"
        return SessionEvent(EventKind.DEFINITION, message, name=node.name, ir=ir_text, node=node)

    def _generate_extern(self, proto: PrototypeNode) -> SessionEvent:
        fn = self.generator.generate(proto, self.unit)
        ir_text = self._render(fn)

        if self.options.mode == SessionMode.JIT:
            self._hand_off()
        self.registry.register(proto)

        message = "Read extern:"
        if ir_text:
            message = f"{message}\n{ir_text}"
        return SessionEvent(EventKind.EXTERN, message, name=proto.name, ir=ir_text, node=proto)

    def _generate_top_level(self, node: FunctionNode) -> SessionEvent:
        fn = self.generator.generate(node, self.unit)
        ir_text = self._render(fn)

        if self.options.mode == SessionMode.IR:
            self.backend.erase_function(self.unit, fn)
            message = "Read top-level expression:"
            if ir_text:
                message = f"{message}\n{ir_text}"
            return SessionEvent(EventKind.EXPRESSION, message, ir=ir_text, node=node)

        handle = self._hand_off()
        try:
            entry = self.engine.resolve_symbol(ANONYMOUS_FUNCTION_NAME)
            if entry is None:
                raise BackendError(
                    f"'{ANONYMOUS_FUNCTION_NAME}' not found after loading unit '{handle.name}'",
                    node.location,
                )
            value = entry()
        finally:
            self.engine.unload_unit(handle)

        return SessionEvent(
            EventKind.EXPRESSION, f"Evaluated to {value}", ir=ir_text, value=value, node=node,
        )

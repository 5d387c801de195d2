"""
kscope Code Generator
=====================

This module turns kscope AST nodes into LLVM IR. It is split in two:

CodeGenerator
    The language side. Walks the AST (ASTVisitor), resolves every name
    (parameters through LocalBindings, functions through the current
    unit and then the PrototypeRegistry) and raises the language errors.
    It never touches llvmlite directly.

Backend / LLVMBackend
    The machine side. A small set of emit/declare calls issued by the
    generator, implemented with llvmlite.ir for construction and
    llvmlite.binding for verification and optimisation. Another backend
    can be dropped in by implementing the Backend interface.

Name Resolution
---------------
A call to `f` is resolved in this order:

1. A function named `f` already in the current unit (definition or
   declaration).
2. The registry's prototype for `f`, re-emitted as a declaration into
   the current unit. This is how a call reaches a function whose
   defining unit has already been handed to the execution engine.
3. Otherwise UnknownFunctionError.

Function Generation
-------------------
A definition registers its prototype before the body is generated so
that recursive calls resolve. If anything fails the registry entry is
put back as it was, and a function whose body failed is erased from the
unit, so a failed construct leaves no trace.

Optimisation
------------
llvmlite can only optimise parsed modules, so verify_and_optimize()
verifies the unit immediately and queues the function; the queued
functions are run through the function pass pipeline when the unit is
finalized for hand-off or printing.

Usage
-----
>>> backend = LLVMBackend()
>>> generator = CodeGenerator(backend, PrototypeRegistry())
>>> unit = backend.new_unit("demo")
>>> parser = KParser(TokenStream.from_source("def double(x) x*2"))
>>> fn = generator.generate(parser.parse_definition(), unit)
>>> print(backend.render(fn))
"""

import functools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import llvmlite.binding as llvm
from llvmlite import ir

from kscope.lang.ast import (
    ASTNode,
    ASTVisitor,
    NumberLiteral,
    VariableExpression,
    BinaryExpression,
    CallExpression,
    PrototypeNode,
    FunctionNode,
)
from kscope.lang.errors import (
    LangError,
    BackendError,
    UnknownVariableError,
    UnknownFunctionError,
    ArityMismatchError,
    InvalidOperatorError,
    RedefinitionError,
)
from kscope.lang.registry import PrototypeRegistry, LocalBindings

logger = logging.getLogger(__name__)


# =============================================================================
# Backend Interface
# =============================================================================

class Backend(ABC):
    """
    Abstract code-generation backend.

    Handles returned by the backend (units, functions, values) are opaque
    to the generator; it only passes them back into other backend calls.
    """

    @property
    @abstractmethod
    def binary_operators(self) -> frozenset[str]:
        """Operator characters emit_binary_op() supports."""
        pass

    @abstractmethod
    def new_unit(self, name: str) -> Any:
        """Create an empty compilation unit."""
        pass

    @abstractmethod
    def lookup_function(self, unit: Any, name: str) -> Optional[Any]:
        """Return the function named `name` in `unit`, or None."""
        pass

    @abstractmethod
    def declare_function(self, unit: Any, name: str, params: list[str]) -> Any:
        """Declare double name(double, ...) in `unit`, labelling arguments by `params`."""
        pass

    @abstractmethod
    def function_arity(self, fn: Any) -> int:
        pass

    @abstractmethod
    def has_body(self, fn: Any) -> bool:
        pass

    @abstractmethod
    def begin_function_body(self, fn: Any) -> list[Any]:
        """Start the body of `fn`; return its argument values in order."""
        pass

    @abstractmethod
    def emit_constant(self, value: float) -> Any:
        pass

    @abstractmethod
    def emit_binary_op(self, op: str, lhs: Any, rhs: Any) -> Any:
        pass

    @abstractmethod
    def emit_call(self, fn: Any, args: list[Any]) -> Any:
        pass

    @abstractmethod
    def emit_return(self, value: Any) -> None:
        pass

    @abstractmethod
    def verify_and_optimize(self, unit: Any, fn: Any) -> None:
        """Check the finished function and schedule its optimisation."""
        pass

    @abstractmethod
    def erase_function(self, unit: Any, fn: Any) -> None:
        """Remove `fn` from `unit` entirely."""
        pass

    @abstractmethod
    def finalize_unit(self, unit: Any) -> Any:
        """Produce the verified, optimised, engine-loadable form of `unit`."""
        pass

    @abstractmethod
    def render(self, value: Any) -> str:
        """Textual IR for a function or unit."""
        pass


# =============================================================================
# LLVM Backend (llvmlite)
# =============================================================================

@functools.lru_cache(maxsize=None)
def initialize_llvm() -> None:
    """Initialize the native LLVM target and asm printer once per process."""
    llvm.initialize_native_target()
    llvm.initialize_native_asmprinter()


def native_target_machine() -> llvm.TargetMachine:
    """Create a target machine for the host, used to lay out and optimise units."""
    initialize_llvm()
    target = llvm.Target.from_default_triple()
    return target.create_target_machine()


@dataclass
class LLVMUnit:
    """
    One compilation unit: an llvmlite IR module plus the functions
    waiting for the optimisation pipeline.

    Attributes:
        name: Module name
        module: The IR module under construction
        pending: Names of finished functions not yet optimised
    """
    name: str
    module: ir.Module
    pending: list[str] = field(default_factory=list)


class LLVMBackend(Backend):
    """
    Backend emitting LLVM IR through llvmlite.

    Every value is a double. Comparison results are widened back to
    double (true -> 1.0, false -> 0.0).

    Attributes:
        opt_level: Function pipeline speed level, 0 disables optimisation
        target_machine: Host target machine (triple and data layout source)
    """

    BINARY_OPERATORS = frozenset("+-*<")

    def __init__(self, opt_level: int = 2):
        self.opt_level = opt_level
        self.target_machine = native_target_machine()
        self.double = ir.DoubleType()
        self._builder: Optional[ir.IRBuilder] = None

    @property
    def binary_operators(self) -> frozenset[str]:
        return self.BINARY_OPERATORS

    # =========================================================================
    # Units and Functions
    # =========================================================================

    def new_unit(self, name: str) -> LLVMUnit:
        module = ir.Module(name=name)
        module.triple = self.target_machine.triple
        module.data_layout = str(self.target_machine.target_data)
        return LLVMUnit(name=name, module=module)

    def lookup_function(self, unit: LLVMUnit, name: str) -> Optional[ir.Function]:
        value = unit.module.globals.get(name)
        return value if isinstance(value, ir.Function) else None

    def declare_function(self, unit: LLVMUnit, name: str, params: list[str]) -> ir.Function:
        fnty = ir.FunctionType(self.double, [self.double] * len(params))
        fn = ir.Function(unit.module, fnty, name=name)
        for arg, param in zip(fn.args, params):
            arg.name = param
        return fn

    def function_arity(self, fn: ir.Function) -> int:
        return len(fn.args)

    def has_body(self, fn: ir.Function) -> bool:
        return not fn.is_declaration

    def begin_function_body(self, fn: ir.Function) -> list[ir.Argument]:
        block = fn.append_basic_block(name="entry")
        self._builder = ir.IRBuilder(block)
        return list(fn.args)

    def erase_function(self, unit: LLVMUnit, fn: ir.Function) -> None:
        module = unit.module
        if module.globals.get(fn.name) is fn:
            del module.globals[fn.name]
            # ir.Module keeps reserved names in its scope; release the name
            # so the function can be declared again in this unit.
            module.scope._useset.discard(fn.name)
        if fn.name in unit.pending:
            unit.pending.remove(fn.name)
        self._builder = None
        logger.debug(f"Erased '{fn.name}' from unit '{unit.name}'")

    # =========================================================================
    # Instructions
    # =========================================================================

    def emit_constant(self, value: float) -> ir.Constant:
        return ir.Constant(self.double, value)

    def emit_binary_op(self, op: str, lhs: ir.Value, rhs: ir.Value) -> ir.Value:
        builder = self._builder
        if op == "+":
            return builder.fadd(lhs, rhs, name="addtmp")
        if op == "-":
            return builder.fsub(lhs, rhs, name="subtmp")
        if op == "*":
            return builder.fmul(lhs, rhs, name="multmp")
        if op == "<":
            cmp = builder.fcmp_unordered("<", lhs, rhs, name="cmptmp")
            return builder.uitofp(cmp, self.double, name="booltmp")
        raise BackendError(f"operator '{op}' has no LLVM lowering")

    def emit_call(self, fn: ir.Function, args: list[ir.Value]) -> ir.Value:
        return self._builder.call(fn, args, name="calltmp")

    def emit_return(self, value: ir.Value) -> None:
        self._builder.ret(value)
        self._builder = None

    # =========================================================================
    # Verification, Optimisation and Output
    # =========================================================================

    def _parse(self, unit: LLVMUnit) -> llvm.ModuleRef:
        """Parse and verify the unit's IR with LLVM."""
        try:
            llmod = llvm.parse_assembly(str(unit.module))
            llmod.verify()
        except RuntimeError as e:
            raise BackendError(f"invalid IR in unit '{unit.name}': {e}") from e
        return llmod

    def verify_and_optimize(self, unit: LLVMUnit, fn: ir.Function) -> None:
        self._parse(unit)
        unit.pending.append(fn.name)

    def finalize_unit(self, unit: LLVMUnit) -> llvm.ModuleRef:
        llmod = self._parse(unit)
        llmod.name = unit.name

        if self.opt_level > 0 and unit.pending:
            pto = llvm.create_pipeline_tuning_options(speed_level=self.opt_level)
            pass_builder = llvm.create_pass_builder(self.target_machine, pto)
            fpm = pass_builder.getFunctionPassManager()
            for name in unit.pending:
                fpm.run(llmod.get_function(name), pass_builder)
            logger.debug(
                f"Optimised {len(unit.pending)} function(s) in unit '{unit.name}' "
                f"at level {self.opt_level}"
            )
        unit.pending.clear()
        return llmod

    def render(self, value: Any) -> str:
        if isinstance(value, LLVMUnit):
            return str(self.finalize_unit(value))
        return str(value).strip()


# =============================================================================
# Code Generator
# =============================================================================

class CodeGenerator(ASTVisitor):
    """
    Generates backend code for kscope AST nodes.

    One generator serves a whole session. The session tells it which
    unit is current for each top-level construct; the registry is shared
    with the session and outlives every unit.

    Attributes:
        backend: The code-generation backend
        registry: Session-wide prototype registry
        locals: Parameter bindings of the function being generated
        unit: The unit receiving code for the current construct
    """

    def __init__(self, backend: Backend, registry: PrototypeRegistry):
        self.backend = backend
        self.registry = registry
        self.locals = LocalBindings()
        self.unit: Any = None

    def generate(self, node: ASTNode, unit: Any) -> Any:
        """
        Generate one top-level construct into `unit`.

        Args:
            node: A FunctionNode or PrototypeNode
            unit: The current compilation unit

        Returns:
            The backend function object

        Raises:
            GenerationError: If a name cannot be resolved or emitted
            BackendError: If the backend rejects the result
        """
        self.unit = unit
        return node.generate(self)

    def resolve_function(self, name: str) -> Optional[Any]:
        """Find `name` in the current unit, else re-declare it from the registry."""
        fn = self.backend.lookup_function(self.unit, name)
        if fn is not None:
            return fn

        proto = self.registry.get(name)
        if proto is not None:
            logger.debug(f"Re-declaring '{name}' in unit from registry")
            return self.visit(proto)

        return None

    # =========================================================================
    # Expressions
    # =========================================================================

    def visit_NumberLiteral(self, node: NumberLiteral) -> Any:
        return self.backend.emit_constant(node.value)

    def visit_VariableExpression(self, node: VariableExpression) -> Any:
        value = self.locals.lookup(node.name)
        if value is None:
            raise UnknownVariableError(node.name, node.location, self.locals.names())
        return value

    def visit_BinaryExpression(self, node: BinaryExpression) -> Any:
        lhs = self.visit(node.left)
        rhs = self.visit(node.right)

        if node.operator not in self.backend.binary_operators:
            raise InvalidOperatorError(node.operator, node.location)
        return self.backend.emit_binary_op(node.operator, lhs, rhs)

    def visit_CallExpression(self, node: CallExpression) -> Any:
        callee = self.resolve_function(node.callee)
        if callee is None:
            raise UnknownFunctionError(node.callee, node.location)

        expected = self.backend.function_arity(callee)
        if expected != len(node.arguments):
            raise ArityMismatchError(node.callee, expected, len(node.arguments), node.location)

        args = [self.visit(arg) for arg in node.arguments]
        return self.backend.emit_call(callee, args)

    # =========================================================================
    # Declarations
    # =========================================================================

    def visit_PrototypeNode(self, node: PrototypeNode) -> Any:
        # Reuse a function already present under this name rather than
        # declaring a second one.
        existing = self.backend.lookup_function(self.unit, node.name)
        if existing is not None:
            return existing
        return self.backend.declare_function(self.unit, node.name, node.params)

    def visit_FunctionNode(self, node: FunctionNode) -> Any:
        proto = node.prototype
        previous = self.registry.register(proto)
        try:
            return self._generate_function(node)
        except LangError:
            self.registry.restore(proto.name, previous)
            raise
        finally:
            self.locals.clear()

    def _generate_function(self, node: FunctionNode) -> Any:
        proto = node.prototype
        fn = self.resolve_function(proto.name)

        if self.backend.has_body(fn):
            raise RedefinitionError(proto.name, node.location)

        args = self.backend.begin_function_body(fn)
        self.locals.reset(zip(proto.params, args))

        try:
            ret = self.visit(node.body)
            self.backend.emit_return(ret)
            self.backend.verify_and_optimize(self.unit, fn)
        except LangError:
            self.backend.erase_function(self.unit, fn)
            raise

        logger.debug(f"Generated function '{proto.name}'")
        return fn

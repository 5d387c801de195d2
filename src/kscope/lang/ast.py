"""
kscope Abstract Syntax Tree (AST) Definitions
=============================================

This module defines the AST node types produced by the kscope parser.

Node Hierarchy
--------------
ASTNode (base)
├── Declarations
│   ├── PrototypeNode - function name and parameter names
│   └── FunctionNode - prototype plus body expression
└── Expressions
    ├── NumberLiteral - numeric constant
    ├── VariableExpression - parameter reference
    ├── BinaryExpression - binary operator
    └── CallExpression - function call

Design Notes
------------
- All nodes are dataclasses carrying their source location
- The variant set is closed; consumers dispatch with ASTVisitor
- Children are exclusively owned: no sharing, no cycles
- Every node has generate(ctx), which hands the node to a code
  generator (any ASTVisitor whose visit methods emit IR)
- Variable names are resolved at generation time, never at parse time
"""

from dataclasses import dataclass, field
from typing import Any

from kscope.errors import SourceLocation


# Name given to the synthesized function wrapping a bare top-level
# expression. The lexer cannot produce an identifier starting with '_'.
ANONYMOUS_FUNCTION_NAME = "__anon_expr"


# =============================================================================
# AST Node Base Classes
# =============================================================================

@dataclass
class ASTNode:
    """
    Base class for all AST nodes.

    Attributes:
        location: Source location where this node starts
    """
    location: SourceLocation

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}@{self.location.line}:{self.location.column}"

    def generate(self, ctx: "ASTVisitor") -> Any:
        """
        Generate backend code for this node.

        Args:
            ctx: The code generator holding the current unit, the
                 prototype registry and the local bindings

        Returns:
            The backend-native value produced for this node
        """
        return ctx.visit(self)


@dataclass
class Expression(ASTNode):
    """Base class for all expression nodes. Every expression yields a double."""
    pass


# =============================================================================
# Expression Nodes
# =============================================================================

@dataclass
class NumberLiteral(Expression):
    """
    Numeric literal such as "1.0".

    Attributes:
        value: The floating-point value
    """
    value: float = 0.0


@dataclass
class VariableExpression(Expression):
    """
    Reference to a variable, like "a".

    Attributes:
        name: The variable name
    """
    name: str = ""


@dataclass
class BinaryExpression(Expression):
    """
    Binary operation expression (a op b).

    Attributes:
        operator: The operator character ('+', '-', '*', '<', ...)
        left: Left operand expression
        right: Right operand expression
    """
    operator: str = ""
    left: Expression = None
    right: Expression = None


@dataclass
class CallExpression(Expression):
    """
    Function call expression.

    Attributes:
        callee: Name of the function to call
        arguments: Argument expressions, in call order
    """
    callee: str = ""
    arguments: list[Expression] = field(default_factory=list)


# =============================================================================
# Declaration Nodes
# =============================================================================

@dataclass
class PrototypeNode(ASTNode):
    """
    The "prototype" of a function: its name and parameter names, which
    implicitly give the number of arguments it takes.

    Attributes:
        name: Function name
        params: Parameter names (uniqueness is not enforced)
    """
    name: str = ""
    params: list[str] = field(default_factory=list)

    @property
    def arity(self) -> int:
        return len(self.params)

    @property
    def is_anonymous(self) -> bool:
        return self.name == ANONYMOUS_FUNCTION_NAME


@dataclass
class FunctionNode(ASTNode):
    """
    A function definition: one prototype and one body expression.

    Attributes:
        prototype: The function's prototype
        body: The body expression whose value is returned
    """
    prototype: PrototypeNode = None
    body: Expression = None

    @property
    def name(self) -> str:
        return self.prototype.name

    @property
    def is_anonymous(self) -> bool:
        return self.prototype.is_anonymous


# =============================================================================
# AST Visitor Pattern
# =============================================================================

class ASTVisitor:
    """
    Base class for AST visitors.

    Subclasses override visit_* methods for the node types they handle.

    Usage:
        class MyVisitor(ASTVisitor):
            def visit_CallExpression(self, node):
                ...

        MyVisitor().visit(tree)
    """

    def visit(self, node: ASTNode) -> Any:
        """
        Visit a node by dispatching to the appropriate method.

        Args:
            node: The AST node to visit

        Returns:
            The result of the visit method (varies by node type)
        """
        method_name = f"visit_{node.__class__.__name__}"
        visitor = getattr(self, method_name, self.generic_visit)
        return visitor(node)

    def generic_visit(self, node: ASTNode) -> None:
        """Default visit method: visits all children of the node."""
        for field_value in node.__dict__.values():
            if isinstance(field_value, ASTNode):
                self.visit(field_value)
            elif isinstance(field_value, list):
                for item in field_value:
                    if isinstance(item, ASTNode):
                        self.visit(item)

    def visit_NumberLiteral(self, node: NumberLiteral): return self.generic_visit(node)
    def visit_VariableExpression(self, node: VariableExpression): return self.generic_visit(node)
    def visit_BinaryExpression(self, node: BinaryExpression): return self.generic_visit(node)
    def visit_CallExpression(self, node: CallExpression): return self.generic_visit(node)
    def visit_PrototypeNode(self, node: PrototypeNode): return self.generic_visit(node)
    def visit_FunctionNode(self, node: FunctionNode): return self.generic_visit(node)


# =============================================================================
# AST Pretty Printer
# =============================================================================

class ASTPrinter(ASTVisitor):
    """
    Pretty printer for AST debugging.

    Usage:
        printer = ASTPrinter()
        print(printer.print(node))

    Output for "def f(x) x + 2 * 3":
        Function: f(x)
          (x + (2 * 3))
    """

    def __init__(self):
        self.output: list[str] = []

    def print(self, node: ASTNode) -> str:
        """Print the AST and return as string."""
        self.output = []
        self.visit(node)
        return "\n".join(self.output)

    def visit_FunctionNode(self, node: FunctionNode):
        if node.is_anonymous:
            self.output.append("TopLevelExpr")
        else:
            self.output.append(f"Function: {self._signature(node.prototype)}")
        self.output.append(f"  {self.expr_str(node.body)}")

    def visit_PrototypeNode(self, node: PrototypeNode):
        self.output.append(f"Extern: {self._signature(node)}")

    def generic_visit(self, node: ASTNode) -> None:
        self.output.append(self.expr_str(node))

    @staticmethod
    def _signature(proto: PrototypeNode) -> str:
        return f"{proto.name}({' '.join(proto.params)})"

    def expr_str(self, expr: Expression) -> str:
        """Convert an expression to a fully parenthesised string."""
        if expr is None:
            return ""
        if isinstance(expr, NumberLiteral):
            return f"{expr.value:g}"
        if isinstance(expr, VariableExpression):
            return expr.name
        if isinstance(expr, BinaryExpression):
            return f"({self.expr_str(expr.left)} {expr.operator} {self.expr_str(expr.right)})"
        if isinstance(expr, CallExpression):
            args = ", ".join(self.expr_str(a) for a in expr.arguments)
            return f"{expr.callee}({args})"
        return f"<{type(expr).__name__}>"

"""
kscope Recursive Descent Parser
===============================

This module implements the parser for the kscope language. It pulls
tokens from a TokenStream (one token of lookahead) and builds AST nodes
one top-level construct at a time.

Grammar (EBNF)
--------------
top             ::= definition | external | expression | ';'
definition      ::= 'def' prototype expression
external        ::= 'extern' prototype
prototype       ::= IDENTIFIER '(' IDENTIFIER* ')'
expression      ::= primary binoprhs
binoprhs        ::= (OPERATOR primary)*
primary         ::= identifierexpr | numberexpr | parenexpr
identifierexpr  ::= IDENTIFIER | IDENTIFIER '(' (expression (',' expression)*)? ')'
numberexpr      ::= NUMBER
parenexpr       ::= '(' expression ')'

Prototype parameters are separated by whitespace only: "def f(a b) a*b".

Operator Precedence (lowest to highest)
---------------------------------------
10. comparison      <
20. additive        + -
40. multiplicative  *

Binary operators are parsed by precedence climbing rather than a rule
per level: parse_binop_rhs receives the minimum precedence an operator
must have to be consumed in the current frame. Operators of equal
precedence associate to the left. The table is a plain mapping from
operator character to precedence, so adding an operator is a data
change only.

Error Handling
--------------
Structural errors raise KSyntaxError subclasses. The parser performs no
recovery of its own; the caller decides how many tokens to skip.

Example Usage
-------------
>>> from kscope.lang.lexer import TokenStream
>>> from kscope.lang.parser import KParser
>>> from kscope.lang.ast import ASTPrinter
>>> parser = KParser(TokenStream.from_source("1+2*3"))
>>> fn = parser.parse_top_level_expr()
>>> ASTPrinter().expr_str(fn.body)
'(1 + (2 * 3))'
"""

import logging
from typing import Optional

from kscope.lang.lexer import KTokenType, TokenStream
from kscope.lang.ast import (
    ANONYMOUS_FUNCTION_NAME,
    Expression,
    NumberLiteral,
    VariableExpression,
    BinaryExpression,
    CallExpression,
    PrototypeNode,
    FunctionNode,
)
from kscope.lang.errors import UnexpectedTokenError, MissingTokenError

logger = logging.getLogger(__name__)


# Default binary operator precedence; 1 is lowest.
BINOP_PRECEDENCE: dict[str, int] = {
    "<": 10,
    "+": 20,
    "-": 20,
    "*": 40,
}


class KParser:
    """
    Recursive descent parser for kscope.

    The parser is bound to a token stream and exposes one method per
    grammar entry point. A session calls parse_definition, parse_extern
    or parse_top_level_expr depending on the current token.

    Attributes:
        tokens: The token stream being parsed
        precedence: Operator character -> precedence (higher binds tighter)
    """

    def __init__(
        self,
        tokens: TokenStream,
        precedence: Optional[dict[str, int]] = None,
    ):
        """
        Initialize the parser.

        Args:
            tokens: Token stream to pull from
            precedence: Operator precedence table (defaults to a copy of
                        BINOP_PRECEDENCE)
        """
        self.tokens = tokens
        self.precedence = dict(BINOP_PRECEDENCE if precedence is None else precedence)

    # =========================================================================
    # Token Access Methods
    # =========================================================================

    def _expect_char(self, char: str, context: Optional[str] = None) -> None:
        """Consume the punctuation `char` or raise MissingTokenError."""
        if not self.tokens.is_char(char):
            raise MissingTokenError(f"'{char}'", context, self.tokens.current.location)
        self.tokens.advance()

    def _token_precedence(self) -> int:
        """Precedence of the current token, or -1 if it is not a binary operator."""
        token = self.tokens.current
        if token.type != KTokenType.CHAR:
            return -1
        prec = self.precedence.get(token.value, -1)
        return prec if prec > 0 else -1

    # =========================================================================
    # Expression Parsing
    # =========================================================================

    def parse_number_expr(self) -> NumberLiteral:
        """numberexpr ::= NUMBER"""
        token = self.tokens.current
        self.tokens.advance()
        return NumberLiteral(location=token.location, value=token.value)

    def parse_paren_expr(self) -> Expression:
        """parenexpr ::= '(' expression ')'"""
        self.tokens.advance()  # eat '('
        expr = self.parse_expression()
        self._expect_char(")")
        return expr

    def parse_identifier_expr(self) -> Expression:
        """
        identifierexpr ::= IDENTIFIER
                         | IDENTIFIER '(' (expression (',' expression)*)? ')'
        """
        token = self.tokens.current
        name = token.value
        self.tokens.advance()  # eat identifier

        if not self.tokens.is_char("("):
            return VariableExpression(location=token.location, name=name)

        self.tokens.advance()  # eat '('
        arguments = []
        if not self.tokens.is_char(")"):
            while True:
                arguments.append(self.parse_expression())

                if self.tokens.is_char(")"):
                    break
                if not self.tokens.is_char(","):
                    raise MissingTokenError(
                        "')' or ','", "argument list", self.tokens.current.location,
                    )
                self.tokens.advance()

        self.tokens.advance()  # eat ')'
        return CallExpression(location=token.location, callee=name, arguments=arguments)

    def parse_primary(self) -> Expression:
        """primary ::= identifierexpr | numberexpr | parenexpr"""
        token = self.tokens.current

        if token.type == KTokenType.IDENTIFIER:
            return self.parse_identifier_expr()
        if token.type == KTokenType.NUMBER:
            return self.parse_number_expr()
        if token.is_char("("):
            return self.parse_paren_expr()

        raise UnexpectedTokenError(
            token.describe(),
            expected="a number, a name or '('",
            location=token.location,
        )

    def parse_binop_rhs(self, min_precedence: int, lhs: Expression) -> Expression:
        """
        binoprhs ::= (OPERATOR primary)*

        Folds operators into `lhs` for as long as the next operator binds
        at least as tightly as `min_precedence`.
        """
        while True:
            token_prec = self._token_precedence()
            if token_prec < min_precedence:
                return lhs

            op_token = self.tokens.current
            self.tokens.advance()  # eat operator

            rhs = self.parse_primary()

            # A tighter operator after rhs takes rhs as its left operand
            if token_prec < self._token_precedence():
                rhs = self.parse_binop_rhs(token_prec + 1, rhs)

            lhs = BinaryExpression(
                location=lhs.location,
                operator=op_token.value,
                left=lhs,
                right=rhs,
            )

    def parse_expression(self) -> Expression:
        """expression ::= primary binoprhs"""
        lhs = self.parse_primary()
        return self.parse_binop_rhs(0, lhs)

    # =========================================================================
    # Declaration Parsing
    # =========================================================================

    def parse_prototype(self) -> PrototypeNode:
        """prototype ::= IDENTIFIER '(' IDENTIFIER* ')'"""
        token = self.tokens.current
        if token.type != KTokenType.IDENTIFIER:
            raise MissingTokenError("function name", "prototype", token.location)

        name = token.value
        self.tokens.advance()

        self._expect_char("(", "prototype")

        params = []
        while self.tokens.current.type == KTokenType.IDENTIFIER:
            params.append(self.tokens.current.value)
            self.tokens.advance()

        self._expect_char(")", "prototype")

        return PrototypeNode(location=token.location, name=name, params=params)

    def parse_definition(self) -> FunctionNode:
        """definition ::= 'def' prototype expression"""
        location = self.tokens.current.location
        self.tokens.advance()  # eat 'def'
        proto = self.parse_prototype()
        body = self.parse_expression()
        logger.debug(f"Parsed definition of '{proto.name}' with {proto.arity} parameter(s)")
        return FunctionNode(location=location, prototype=proto, body=body)

    def parse_extern(self) -> PrototypeNode:
        """external ::= 'extern' prototype"""
        self.tokens.advance()  # eat 'extern'
        proto = self.parse_prototype()
        logger.debug(f"Parsed extern '{proto.name}' with {proto.arity} parameter(s)")
        return proto

    def parse_top_level_expr(self) -> FunctionNode:
        """Parse a bare expression and wrap it in a zero-argument anonymous function."""
        location = self.tokens.current.location
        body = self.parse_expression()
        proto = PrototypeNode(location=location, name=ANONYMOUS_FUNCTION_NAME, params=[])
        return FunctionNode(location=location, prototype=proto, body=body)


# =============================================================================
# Convenience Functions
# =============================================================================

def parse_expression_source(source: str, filename: str = "<input>") -> Expression:
    """
    Parse a single expression from source text.

    Args:
        source: The expression source
        filename: Source name for error messages

    Returns:
        The root Expression node

    Raises:
        KSyntaxError: If parsing fails
    """
    return KParser(TokenStream.from_source(source, filename)).parse_expression()

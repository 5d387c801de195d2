"""
kscope Lexer (Tokenizer)
========================

This module implements the token source for the kscope language. It
converts source text into a stream of tokens for the parser and exposes
the one-token-lookahead pull interface the parser is written against.

Token Categories
----------------
- Keywords: def, extern
- Identifiers: [A-Za-z][A-Za-z0-9]*
- Numbers: runs of digits and '.', read as a double
- Characters: any other single character ('(', ')', ',', ';', '+', ...)
- EOF: end of input

Comments
--------
- '#' starts a comment that runs to the end of the line.

Number Format
-------------
A number token is the longest run of [0-9.] characters. Its value is the
longest valid decimal prefix of that run, so "1.2.3" reads as 1.2 and a
lone "." reads as 0.0.

Example Usage
-------------
>>> from kscope.lang.lexer import KLexer
>>> for token in KLexer("def f(x) x*2", "test.ks").tokenize():
...     print(token)
Token(DEF, 'def', 1:1)
Token(IDENTIFIER, 'f', 1:5)
Token(CHAR, '(', 1:6)
Token(IDENTIFIER, 'x', 1:7)
Token(CHAR, ')', 1:8)
Token(IDENTIFIER, 'x', 1:10)
Token(CHAR, '*', 1:11)
Token(NUMBER, 2.0, 1:12)
Token(EOF, 1:13)
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterable, Iterator, Optional, Union
import re
import string

from kscope.errors import SourceLocation


# =============================================================================
# Token Type Enumeration
# =============================================================================

class KTokenType(Enum):
    """
    Token types for the kscope language.

    Punctuation and operators are not given individual types: they all
    arrive as CHAR tokens whose value is the character itself, so new
    operators only need a precedence table entry.
    """

    EOF = auto()            # End of input

    # === Keywords ===
    DEF = auto()            # def
    EXTERN = auto()         # extern

    # === Identifiers and Literals ===
    IDENTIFIER = auto()     # Function and parameter names
    NUMBER = auto()         # Numeric literals (always double)

    # === Everything else ===
    CHAR = auto()           # Single punctuation/operator character


KEYWORDS: dict[str, KTokenType] = {
    "def": KTokenType.DEF,
    "extern": KTokenType.EXTERN,
}


# =============================================================================
# Token Data Class
# =============================================================================

@dataclass(frozen=True)
class KToken:
    """
    Represents a single token from kscope source.

    Attributes:
        type: The KTokenType classification
        value: Text for identifiers/keywords, float for numbers, the
               character for CHAR tokens, None for EOF
        line: Line number in source (1-indexed)
        column: Column number in source (1-indexed)
        filename: Name of the source
    """
    type: KTokenType
    value: Union[str, float, None]
    line: int
    column: int
    filename: str

    def __repr__(self) -> str:
        """Format token for debugging output."""
        if self.value is not None:
            return f"Token({self.type.name}, {self.value!r}, {self.line}:{self.column})"
        return f"Token({self.type.name}, {self.line}:{self.column})"

    @property
    def location(self) -> SourceLocation:
        """Return a SourceLocation for error reporting."""
        return SourceLocation(self.filename, self.line, self.column)

    def is_char(self, char: str) -> bool:
        """Return True if this is the punctuation token for `char`."""
        return self.type == KTokenType.CHAR and self.value == char

    def describe(self) -> str:
        """Short human-readable form used in diagnostics."""
        if self.type == KTokenType.EOF:
            return "end of input"
        if self.type == KTokenType.NUMBER:
            return f"{self.value:g}"
        return str(self.value)


# =============================================================================
# Lexer Implementation
# =============================================================================

class KLexer:
    """
    Tokenizes kscope source.

    The source may be a complete string or any iterable of lines (an open
    file, sys.stdin, a generator). Lines are pulled only when the token
    stream needs them, so an interactive session can read, parse and
    evaluate one construct at a time.

    Usage:
        lexer = KLexer(source_text, filename)
        tokens = list(lexer.tokenize())

    Attributes:
        filename: Name of the source (for error reporting)
    """

    IDENT_START = string.ascii_letters
    IDENT_CHARS = string.ascii_letters + string.digits
    NUMBER_CHARS = string.digits + "."

    COMMENT_CHAR = "#"

    _DECIMAL_PREFIX = re.compile(r"\d*(?:\.\d*)?")

    def __init__(
        self,
        source: Union[str, Iterable[str]],
        filename: str = "<input>",
    ):
        """
        Initialize the lexer.

        Args:
            source: Source text, or an iterable producing lines of text
            filename: Name of the source (for error messages)
        """
        if isinstance(source, str):
            source = source.splitlines(keepends=True)
        self._lines = source
        self.filename = filename

    def tokenize(self) -> Iterator[KToken]:
        """
        Generate tokens from the source.

        Yields:
            KToken objects, ending with exactly one EOF token
        """
        line_number = 0
        last_line = ""
        for line_number, text in enumerate(self._lines, start=1):
            last_line = text
            yield from self._scan_line(text, line_number)

        eof_column = len(last_line.rstrip("\r\n")) + 1
        yield self._make_token(KTokenType.EOF, None, max(line_number, 1), eof_column)

    def _scan_line(self, text: str, line: int) -> Iterator[KToken]:
        """Yield the tokens of one source line."""
        pos = 0
        length = len(text)

        while pos < length:
            char = text[pos]

            if char.isspace():
                pos += 1
                continue

            if char == self.COMMENT_CHAR:
                return

            column = pos + 1

            if char in self.IDENT_START:
                end = self._scan_while(text, pos, self.IDENT_CHARS)
                word = text[pos:end]
                token_type = KEYWORDS.get(word, KTokenType.IDENTIFIER)
                yield self._make_token(token_type, word, line, column)
                pos = end
                continue

            if char in self.NUMBER_CHARS:
                end = self._scan_while(text, pos, self.NUMBER_CHARS)
                value = self._parse_number(text[pos:end])
                yield self._make_token(KTokenType.NUMBER, value, line, column)
                pos = end
                continue

            yield self._make_token(KTokenType.CHAR, char, line, column)
            pos += 1

    @staticmethod
    def _scan_while(text: str, pos: int, allowed: str) -> int:
        """Return the index of the first character at or after pos not in allowed."""
        while pos < len(text) and text[pos] in allowed:
            pos += 1
        return pos

    @classmethod
    def _parse_number(cls, text: str) -> float:
        """Convert a [0-9.] run to a float using its longest decimal prefix."""
        prefix = cls._DECIMAL_PREFIX.match(text).group(0)
        if not prefix.strip("."):
            return 0.0
        return float(prefix)

    def _make_token(
        self,
        token_type: KTokenType,
        value: Union[str, float, None],
        line: int,
        column: int,
    ) -> KToken:
        return KToken(
            type=token_type,
            value=value,
            line=line,
            column=column,
            filename=self.filename,
        )


# =============================================================================
# Token Stream (one-token lookahead)
# =============================================================================

class TokenStream:
    """
    Pull-model token stream with one token of lookahead.

    The parser only ever looks at `current` and calls `advance()`. Once
    EOF is reached, every further `advance()` returns the same EOF token.

    Example:
        stream = TokenStream.from_source("def f(x) x")
        stream.current       # Token(DEF, 'def', 1:1)
        stream.advance()     # Token(IDENTIFIER, 'f', 1:5)
    """

    def __init__(self, tokens: Iterable[KToken], filename: str = "<input>"):
        self._tokens = iter(tokens)
        self._current: Optional[KToken] = None
        self.filename = filename

    @classmethod
    def from_source(
        cls,
        source: Union[str, Iterable[str]],
        filename: str = "<input>",
    ) -> "TokenStream":
        """Create a stream over a fresh KLexer for `source`."""
        return cls(KLexer(source, filename).tokenize(), filename)

    @property
    def current(self) -> KToken:
        """The current token (primes the stream on first access)."""
        if self._current is None:
            self.advance()
        return self._current

    def advance(self) -> KToken:
        """Consume the current token and return the new current token."""
        if self._current is not None and self._current.type == KTokenType.EOF:
            return self._current

        token = next(self._tokens, None)
        if token is None:
            # Token iterables built by hand may omit the trailing EOF
            last = self._current
            token = KToken(
                type=KTokenType.EOF,
                value=None,
                line=last.line if last else 1,
                column=last.column + 1 if last else 1,
                filename=last.filename if last else self.filename,
            )
        self._current = token
        return token

    def at_end(self) -> bool:
        """Return True once the current token is EOF."""
        return self.current.type == KTokenType.EOF

    def is_char(self, char: str) -> bool:
        """Return True if the current token is the punctuation `char`."""
        return self.current.is_char(char)

"""
Lexer / Tokenizer for the BedRock compiler.

Converts BedRock source text into tokens for the parser. The lexer is
pull-based: the parser asks for one token at a time with next_token(),
and nothing is buffered unless tokenize() is called explicitly.

Handles the keyword set, identifiers, integer literals (decimal and
0x-prefixed hex), raw string literals, punctuation, and // comments.
"""

from __future__ import annotations
import enum
from dataclasses import dataclass
from typing import Dict, Iterator, List

from .errors import CompileError


# ──────────────────────────────────────────────
# Token types
# ──────────────────────────────────────────────

class TokenType(enum.Enum):
    # Literals
    INT_LITERAL = "integer"
    STRING_LITERAL = "string literal"

    # Identifier
    IDENT = "identifier"

    # Keywords
    KW_FN = "fn"
    KW_LET = "let"
    KW_VOLATILE = "volatile"
    KW_UNSAFE = "unsafe"
    KW_LOOP = "loop"
    KW_ASM = "asm"
    KW_CAST = "cast"

    # Operators
    STAR = "*"
    PIPE = "|"
    PLUS = "+"
    MINUS = "-"
    ASSIGN = "="
    ARROW = "->"
    LT = "<"
    GT = ">"

    # Punctuation
    LPAREN = "("
    RPAREN = ")"
    LBRACE = "{"
    RBRACE = "}"
    LBRACKET = "["
    RBRACKET = "]"
    COLON = ":"
    SEMI = ";"
    COMMA = ","
    HASH = "#"

    # Special
    EOF = "end of input"


# Kinds whose .value is a description rather than literal source text
_DESCRIPTIVE = {TokenType.INT_LITERAL, TokenType.STRING_LITERAL,
                TokenType.IDENT, TokenType.EOF}


def describe_type(ttype: TokenType) -> str:
    """Human-readable name of a token kind ('identifier', "'('")."""
    if ttype in _DESCRIPTIVE:
        return ttype.value
    return f"'{ttype.value}'"


# ──────────────────────────────────────────────
# Token data class
# ──────────────────────────────────────────────

@dataclass
class Token:
    type: TokenType
    value: str | int
    line: int
    col: int
    pos: int = 0        # UTF-8 byte offset of the first character

    def describe(self) -> str:
        if self.type == TokenType.IDENT:
            return f"identifier {self.value!r}"
        if self.type == TokenType.INT_LITERAL:
            return f"integer {self.value}"
        if self.type == TokenType.STRING_LITERAL:
            return f"string literal {self.value!r}"
        return describe_type(self.type)

    def __repr__(self):
        return f"Token({self.type.name}, {self.value!r}, L{self.line}:{self.col})"


# ──────────────────────────────────────────────
# Keyword / punctuation maps
# ──────────────────────────────────────────────

KEYWORDS: Dict[str, TokenType] = {
    "fn": TokenType.KW_FN,
    "let": TokenType.KW_LET,
    "volatile": TokenType.KW_VOLATILE,
    "unsafe": TokenType.KW_UNSAFE,
    "loop": TokenType.KW_LOOP,
    "asm": TokenType.KW_ASM,
    "cast": TokenType.KW_CAST,
}

SINGLE_CHAR_OPS: Dict[str, TokenType] = {
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "{": TokenType.LBRACE,
    "}": TokenType.RBRACE,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    ":": TokenType.COLON,
    ";": TokenType.SEMI,
    ",": TokenType.COMMA,
    "=": TokenType.ASSIGN,
    "*": TokenType.STAR,
    "|": TokenType.PIPE,
    "#": TokenType.HASH,
    "<": TokenType.LT,
    ">": TokenType.GT,
    "+": TokenType.PLUS,
}

MAX_U64 = 0xFFFF_FFFF_FFFF_FFFF

DEC_DIGITS = "0123456789"
HEX_DIGITS = "0123456789abcdefABCDEF"


# ──────────────────────────────────────────────
# Lexer
# ──────────────────────────────────────────────

class LexicalError(CompileError):
    def __init__(self, message: str, line: int, col: int, pos: int, char: str = ""):
        self.line = line
        self.col = col
        self.pos = pos
        self.char = char
        super().__init__(f"Lexical error at L{line}:{col} (byte {pos}): {message}")


class UnterminatedStringError(LexicalError):
    """A string literal reached end of input without a closing quote."""


class Lexer:
    """Produces BedRock tokens on demand from source text."""

    def __init__(self, source: str):
        self.source = source
        self.pos = 0
        self.line = 1
        self.col = 1
        self._byte_pos = 0

    def _peek(self, offset: int = 0) -> str:
        i = self.pos + offset
        return self.source[i] if i < len(self.source) else "\0"

    def _at_end(self) -> bool:
        return self.pos >= len(self.source)

    def _advance(self) -> str:
        ch = self.source[self.pos]
        self.pos += 1
        self._byte_pos += len(ch.encode("utf-8"))
        if ch == "\n":
            self.line += 1
            self.col = 1
        else:
            self.col += 1
        return ch

    def _error(self, message: str, char: str = "") -> LexicalError:
        return LexicalError(message, self.line, self.col, self._byte_pos, char)

    def _skip_whitespace_and_comments(self):
        while not self._at_end():
            ch = self._peek()
            if ch.isspace():
                self._advance()
            elif ch == "/" and self._peek(1) == "/":
                while not self._at_end() and self._peek() != "\n":
                    self._advance()
            else:
                break

    def _read_number(self) -> Token:
        start_line, start_col, start_byte = self.line, self.col, self._byte_pos

        if self._peek() == "0" and self._peek(1) in "xX":
            self._advance()  # '0'
            self._advance()  # 'x'
            start = self.pos
            while not self._at_end() and self._peek() in HEX_DIGITS:
                self._advance()
            digits = self.source[start:self.pos]
            if not digits:
                raise self._error("Malformed hexadecimal literal: no digits after '0x'")
            radix = 16
        else:
            start = self.pos
            while not self._at_end() and self._peek() in DEC_DIGITS:
                self._advance()
            digits = self.source[start:self.pos]
            radix = 10

        # A literal glued to an identifier character is a bad digit for the radix
        if not self._at_end() and (self._peek().isalnum() or self._peek() == "_"):
            raise self._error(f"Invalid digit {self._peek()!r} in base-{radix} literal",
                              self._peek())

        value = int(digits, radix)
        if value > MAX_U64:
            raise LexicalError("Integer literal does not fit in 64 bits",
                               start_line, start_col, start_byte)
        return Token(TokenType.INT_LITERAL, value, start_line, start_col, start_byte)

    def _read_string_literal(self) -> Token:
        start_line, start_col, start_byte = self.line, self.col, self._byte_pos
        self._advance()  # opening "
        start = self.pos
        while not self._at_end() and self._peek() != '"':
            self._advance()
        if self._at_end():
            raise UnterminatedStringError("Unterminated string literal",
                                          start_line, start_col, start_byte, '"')
        text = self.source[start:self.pos]
        self._advance()  # closing "
        return Token(TokenType.STRING_LITERAL, text, start_line, start_col, start_byte)

    def _read_identifier_or_keyword(self) -> Token:
        start_line, start_col, start_byte = self.line, self.col, self._byte_pos
        start = self.pos

        while not self._at_end() and (self._peek().isalnum() or self._peek() == "_"):
            self._advance()

        text = self.source[start:self.pos]
        if text in KEYWORDS:
            return Token(KEYWORDS[text], text, start_line, start_col, start_byte)
        return Token(TokenType.IDENT, text, start_line, start_col, start_byte)

    def next_token(self) -> Token:
        """Return the next token. Keeps returning EOF once input is exhausted."""
        self._skip_whitespace_and_comments()

        if self._at_end():
            return Token(TokenType.EOF, "", self.line, self.col, self._byte_pos)

        ch = self._peek()

        if ch.isalpha() or ch == "_":
            return self._read_identifier_or_keyword()

        if ch in DEC_DIGITS:
            return self._read_number()

        if ch == '"':
            return self._read_string_literal()

        start_line, start_col, start_byte = self.line, self.col, self._byte_pos

        if ch == "-":
            self._advance()
            if self._peek() == ">":
                self._advance()
                return Token(TokenType.ARROW, "->", start_line, start_col, start_byte)
            return Token(TokenType.MINUS, "-", start_line, start_col, start_byte)

        if ch in SINGLE_CHAR_OPS:
            self._advance()
            return Token(SINGLE_CHAR_OPS[ch], ch, start_line, start_col, start_byte)

        raise self._error(f"Unexpected character: {ch!r}", ch)

    def tokenize(self) -> List[Token]:
        """Drain the remaining input into a list ending with the EOF token."""
        tokens: List[Token] = []
        while True:
            tok = self.next_token()
            tokens.append(tok)
            if tok.type == TokenType.EOF:
                return tokens

    def __iter__(self) -> Iterator[Token]:
        while True:
            tok = self.next_token()
            if tok.type == TokenType.EOF:
                return
            yield tok

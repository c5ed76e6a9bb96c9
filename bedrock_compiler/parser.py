"""
Recursive-descent parser for the BedRock compiler.

Pulls tokens from a Lexer with one token of lookahead and builds the AST
defined in ast_nodes. Supports:

  - Global declarations: [volatile] let NAME: TYPE;
  - Functions: fn NAME() -> TYPE { ... }
  - Attributes: #[address(N)], #[align(N)], #[interrupt]
  - Statements: let, unsafe { }, loop { }, asm("..."), assignment,
    expression statements, and the console builtins clear(), newline(),
    print("text"[, color])
  - Expressions: integers, identifiers, calls, *deref, cast<T>(e),
    asm("..."), parentheses, and the binary operators |, +, -

There is no error recovery: the first mismatch raises ParseError.
"""

from __future__ import annotations
from typing import List, Optional
from .errors import CompileError
from .lexer import Lexer, Token, TokenType, describe_type
from .ast_nodes import *


class ParseError(CompileError):
    def __init__(self, expected: str, token: Token):
        self.token = token
        self.expected = expected
        self.found = token.describe()
        loc = f"L{token.line}:{token.col}"
        super().__init__(f"Parse error at {loc}: {expected} expected (found {self.found})")


# Attribute name -> whether it takes an integer argument
ATTRIBUTES = {
    "address": True,
    "align": True,
    "interrupt": False,
}

BUILTIN_STATEMENTS = ("clear", "newline", "print")

DEFAULT_PRINT_COLOR = 0x07

# Text-mode attribute byte: background << 4 | foreground
MAX_COLOR = 0xFF


class Parser:
    """Recursive descent parser producing an AST from a Lexer."""

    def __init__(self, lexer: Lexer):
        self.lexer = lexer
        self._tok: Token = lexer.next_token()

    # ── Helpers ─────────────────────────────

    def _cur(self) -> Token:
        return self._tok

    def _at(self, *types: TokenType) -> bool:
        return self._tok.type in types

    def _advance(self) -> Token:
        tok = self._tok
        if tok.type != TokenType.EOF:
            self._tok = self.lexer.next_token()
        return tok

    def _expect(self, ttype: TokenType, expected: str = "") -> Token:
        if self._tok.type != ttype:
            raise ParseError(expected or describe_type(ttype), self._tok)
        return self._advance()

    def _match(self, *types: TokenType) -> Optional[Token]:
        if self._tok.type in types:
            return self._advance()
        return None

    # ── Type parsing ──────────────────────────

    def _parse_type(self) -> Type:
        """type := '*' type | scalar-name"""
        if self._match(TokenType.STAR):
            return PointerType(self._parse_type())

        tok = self._expect(TokenType.IDENT, "type")
        if tok.value not in SCALAR_SIZES:
            raise ParseError("type name", tok)
        return ScalarType(tok.value)

    # ── Top-level parsing ─────────────────────

    def parse(self) -> Program:
        """Parse the full token stream into a Program AST."""
        prog = Program(line=1, col=1)
        while not self._at(TokenType.EOF):
            prog.items.append(self._parse_item())
        return prog

    def _parse_item(self) -> Item:
        attrs = self._parse_attributes()

        if self._at(TokenType.KW_FN):
            return self._parse_function(attrs)
        if self._at(TokenType.KW_LET, TokenType.KW_VOLATILE):
            return self._parse_global(attrs)

        raise ParseError("'fn' or 'let'", self._cur())

    def _parse_attributes(self) -> List[Attribute]:
        """Parse zero or more #[name] / #[name(integer)] attributes."""
        attrs: List[Attribute] = []
        while self._match(TokenType.HASH):
            self._expect(TokenType.LBRACKET)
            name_tok = self._expect(TokenType.IDENT, "attribute name")
            name = name_tok.value
            if name not in ATTRIBUTES:
                raise ParseError("attribute name (address, align, interrupt)", name_tok)

            if ATTRIBUTES[name]:
                self._expect(TokenType.LPAREN)
                value = self._expect(TokenType.INT_LITERAL).value
                self._expect(TokenType.RPAREN)
                attrs.append(AddressAttr(value) if name == "address" else AlignAttr(value))
            else:
                attrs.append(InterruptAttr())

            self._expect(TokenType.RBRACKET)
        return attrs

    def _parse_function(self, attrs: List[Attribute]) -> Function:
        """fn name() -> type { statement* }"""
        tok = self._advance()  # 'fn'
        name = self._expect(TokenType.IDENT).value
        self._expect(TokenType.LPAREN)
        self._expect(TokenType.RPAREN)
        self._expect(TokenType.ARROW)
        return_type = self._parse_type()
        body = self._parse_block()
        return Function(name=name, return_type=return_type, attributes=attrs,
                        body=body, line=tok.line, col=tok.col)

    def _parse_global(self, attrs: List[Attribute]) -> GlobalVariable:
        """[volatile] let name: type;"""
        tok = self._cur()
        is_volatile = self._match(TokenType.KW_VOLATILE) is not None
        self._expect(TokenType.KW_LET)
        name = self._expect(TokenType.IDENT).value
        self._expect(TokenType.COLON)
        var_type = self._parse_type()
        self._expect(TokenType.SEMI)
        return GlobalVariable(name=name, var_type=var_type, is_volatile=is_volatile,
                              attributes=attrs, line=tok.line, col=tok.col)

    # ── Statements ────────────────────────────

    def _parse_block(self) -> List[Statement]:
        """Parse '{' statement* '}'."""
        self._expect(TokenType.LBRACE)
        stmts: List[Statement] = []
        while not self._at(TokenType.RBRACE):
            if self._at(TokenType.EOF):
                raise ParseError("'}'", self._cur())
            stmts.append(self._parse_statement())
        self._advance()  # '}'
        return stmts

    def _parse_statement(self) -> Statement:
        if self._at(TokenType.KW_LET, TokenType.KW_VOLATILE):
            return self._parse_let()

        if self._at(TokenType.KW_UNSAFE):
            tok = self._advance()
            return UnsafeBlock(body=self._parse_block(), line=tok.line, col=tok.col)

        if self._at(TokenType.KW_LOOP):
            tok = self._advance()
            return LoopBlock(body=self._parse_block(), line=tok.line, col=tok.col)

        if self._at(TokenType.KW_ASM):
            expr = self._parse_asm()
            self._expect(TokenType.SEMI)
            return ExpressionStmt(expr=expr, line=expr.line, col=expr.col)

        if self._at(TokenType.IDENT) and self._cur().value in BUILTIN_STATEMENTS:
            return self._parse_builtin()

        return self._parse_expr_or_assignment()

    def _parse_let(self) -> Let:
        """[volatile] let name: type = expr;"""
        tok = self._cur()
        is_volatile = self._match(TokenType.KW_VOLATILE) is not None
        self._expect(TokenType.KW_LET)
        name = self._expect(TokenType.IDENT).value
        self._expect(TokenType.COLON)
        var_type = self._parse_type()
        self._expect(TokenType.ASSIGN)
        value = self._parse_expr()
        self._expect(TokenType.SEMI)
        return Let(name=name, var_type=var_type, value=value, is_volatile=is_volatile,
                   line=tok.line, col=tok.col)

    def _parse_builtin(self) -> Statement:
        """clear(); newline(); print("text"[, color]);"""
        tok = self._advance()
        self._expect(TokenType.LPAREN)

        if tok.value == "print":
            text = self._expect(TokenType.STRING_LITERAL).value
            color = DEFAULT_PRINT_COLOR
            if self._match(TokenType.COMMA):
                color_tok = self._expect(TokenType.INT_LITERAL)
                if color_tok.value > MAX_COLOR:
                    raise ParseError("color attribute (0..0xFF)", color_tok)
                color = color_tok.value
            stmt = Print(text=text, color=color, line=tok.line, col=tok.col)
        elif tok.value == "clear":
            stmt = ClearScreen(line=tok.line, col=tok.col)
        else:
            stmt = Newline(line=tok.line, col=tok.col)

        self._expect(TokenType.RPAREN)
        self._expect(TokenType.SEMI)
        return stmt

    def _parse_expr_or_assignment(self) -> Statement:
        tok = self._cur()
        expr = self._parse_expr()
        if self._match(TokenType.ASSIGN):
            value = self._parse_expr()
            self._expect(TokenType.SEMI)
            return Assignment(target=expr, value=value, line=tok.line, col=tok.col)
        self._expect(TokenType.SEMI)
        return ExpressionStmt(expr=expr, line=tok.line, col=tok.col)

    # ── Expression parsing (precedence climbing) ──

    def _parse_expr(self) -> Expression:
        return self._parse_bitwise_or()

    def _parse_bitwise_or(self) -> Expression:
        left = self._parse_additive()
        while self._at(TokenType.PIPE):
            tok = self._advance()
            right = self._parse_additive()
            left = BinaryOp(op="|", left=left, right=right,
                            line=tok.line, col=tok.col)
        return left

    def _parse_additive(self) -> Expression:
        left = self._parse_unary()
        while self._at(TokenType.PLUS, TokenType.MINUS):
            tok = self._advance()
            right = self._parse_unary()
            left = BinaryOp(op=tok.value, left=left, right=right,
                            line=tok.line, col=tok.col)
        return left

    def _parse_unary(self) -> Expression:
        tok = self._cur()

        if self._match(TokenType.STAR):
            operand = self._parse_unary()
            return Dereference(expr=operand, line=tok.line, col=tok.col)

        if self._match(TokenType.KW_CAST):
            self._expect(TokenType.LT)
            target_type = self._parse_type()
            self._expect(TokenType.GT)
            self._expect(TokenType.LPAREN)
            expr = self._parse_expr()
            self._expect(TokenType.RPAREN)
            return Cast(target_type=target_type, expr=expr, line=tok.line, col=tok.col)

        return self._parse_primary()

    def _parse_asm(self) -> Asm:
        tok = self._advance()  # 'asm'
        self._expect(TokenType.LPAREN)
        code = self._expect(TokenType.STRING_LITERAL).value
        self._expect(TokenType.RPAREN)
        return Asm(code=code, line=tok.line, col=tok.col)

    def _parse_arg_list(self) -> List[Expression]:
        """Comma-separated expressions; no trailing comma."""
        args: List[Expression] = []
        if self._at(TokenType.RPAREN):
            return args
        args.append(self._parse_expr())
        while self._match(TokenType.COMMA):
            args.append(self._parse_expr())
        return args

    def _parse_primary(self) -> Expression:
        tok = self._cur()

        if self._match(TokenType.INT_LITERAL):
            return IntLiteral(value=tok.value, line=tok.line, col=tok.col)

        if self._match(TokenType.IDENT):
            if self._match(TokenType.LPAREN):
                args = self._parse_arg_list()
                self._expect(TokenType.RPAREN)
                return FunctionCall(name=tok.value, args=args, line=tok.line, col=tok.col)
            return Identifier(name=tok.value, line=tok.line, col=tok.col)

        if self._at(TokenType.KW_ASM):
            return self._parse_asm()

        if self._match(TokenType.LPAREN):
            expr = self._parse_expr()
            self._expect(TokenType.RPAREN)
            return expr

        raise ParseError("expression", tok)

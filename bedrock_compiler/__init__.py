"""
BedRock Compiler
================
A front end and code generator for BedRock, a minimal systems language
for freestanding x86 code (boot images, toy kernels).

Architecture:
    ┌──────────┐    ┌──────────┐    ┌──────────┐    ┌──────────────────────────┐
    │ Source   │───>│  Lexer   │───>│  Parser  │───>│ Backend (one, by name)   │
    │ (.br)    │    │ (tokens) │    │  (AST)   │    │  asm         -> NASM text│
    └──────────┘    └──────────┘    └──────────┘    │  bin         -> 16-bit   │
                                                    │  bin-pattern -> 64-bit   │
                                                    └──────────────────────────┘

    - lexer.py:      pull-based scanner, one token per next_token() call
    - parser.py:     recursive descent with one token of lookahead
    - ast_nodes.py:  dataclass tree, read-only once parsed
    - codegen.py:    Backend contract + x86-64 assembly text generator
    - encoding.py:   opcode table and little-endian field packing
    - bincodegen.py: table-driven and pattern-matched machine-code generators
"""

__version__ = "0.1.0"

from .errors import CompileError
from .lexer import Lexer, Token, TokenType, LexicalError, UnterminatedStringError
from .ast_nodes import *
from .parser import Parser, ParseError
from .codegen import (Backend, AsmGenerator, CodeGenError, UnsupportedConstructError,
                      UnresolvedEntryError, DEFAULT_ENTRY)
from .bincodegen import TableGenerator, PatternGenerator

BACKENDS = {
    AsmGenerator.name: AsmGenerator,
    TableGenerator.name: TableGenerator,
    PatternGenerator.name: PatternGenerator,
}


def parse_source(source: str) -> Program:
    """Lex and parse source text into a Program AST."""
    return Parser(Lexer(source)).parse()


def compile_source(source: str, *, backend: str = "asm", entry: str = DEFAULT_ENTRY,
                   best_effort: bool = False):
    """Compile BedRock source to assembly text or machine code.

    Full pipeline: Lexer -> Parser -> AST -> Backend.

    Args:
        source: BedRock source code string.
        backend: 'asm' (default), 'bin' (table-driven 16-bit bytes), or
            'bin-pattern' (pattern-matched 64-bit bytes).
        entry: Name of the entry function (default 'kernel_main').
        best_effort: Log and skip constructs the backend cannot lower
            instead of raising.

    Returns:
        Assembly text (str) for 'asm', raw bytes (bytes) otherwise.

    Raises:
        CompileError: on the first lexical, parse, or code generation error.
        ValueError: if the backend name is unknown.
    """
    try:
        backend_cls = BACKENDS[backend]
    except KeyError:
        raise ValueError(f"Unknown backend {backend!r} "
                         f"(choose from {', '.join(BACKENDS)})") from None
    program = parse_source(source)
    return backend_cls(entry=entry, best_effort=best_effort).lower(program)

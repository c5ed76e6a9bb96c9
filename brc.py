#!/usr/bin/env python3
"""
brc — BedRock compiler CLI

Usage:
    python brc.py <input.br> [--format asm|bin|bin-pattern] [-o output]
                             [--entry kernel_main] [--best-effort] [-v | -q]

Output goes next to the input by default, with the extension swapped:
    asm          → <input>.asm  (NASM x86-64 text)
    bin          → <input>.bin  (16-bit flat image, entry jump at offset 0)
    bin-pattern  → <input>.bin  (64-bit code for the entry function only)

Examples:
    python brc.py kernel.br
    python brc.py kernel.br --format bin -o boot.bin
    python brc.py kernel.br --format bin-pattern --best-effort -v
    python brc.py kernel.br --tokens
"""

import argparse
import logging
import os
import sys

from bedrock_compiler import BACKENDS, DEFAULT_ENTRY, __version__, compile_source
from bedrock_compiler.errors import CompileError
from bedrock_compiler.lexer import Lexer
from bedrock_compiler.parser import Parser
from bedrock_compiler.ast_nodes import PointerType, ScalarType

logger = logging.getLogger("brc")

# Printed inline as "*u16" rather than expanded
TYPES = (ScalarType, PointerType)


def _default_output(input_path: str, fmt: str) -> str:
    ext = ".asm" if fmt == "asm" else ".bin"
    return os.path.splitext(input_path)[0] + ext


def _setup_logging(verbose: bool, quiet: bool):
    level = logging.INFO
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    logging.basicConfig(level=level, format='%(levelname)s: %(message)s')


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="brc",
        description="BedRock compiler for freestanding x86",
        epilog="Backends: " + ", ".join(BACKENDS),
    )
    parser.add_argument("input", help="Input BedRock source file")
    parser.add_argument("-o", "--output",
                        help="Output file (default: input with .asm/.bin extension)")
    parser.add_argument("--format", choices=list(BACKENDS), default="asm",
                        help="Backend / output format (default: asm)")
    parser.add_argument("--entry", default=DEFAULT_ENTRY,
                        help=f"Entry function name (default: {DEFAULT_ENTRY})")
    parser.add_argument("--best-effort", action="store_true",
                        help="Skip unsupported constructs with a warning instead of failing")
    parser.add_argument("--tokens", action="store_true",
                        help="Dump token stream and exit (debug)")
    parser.add_argument("--ast", action="store_true",
                        help="Dump AST and exit (debug)")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true",
                           help="Log compilation details")
    verbosity.add_argument("-q", "--quiet", action="store_true",
                           help="Only log errors")
    parser.add_argument("--version", action="version",
                        version=f"brc {__version__}")

    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.quiet)

    # Read input
    try:
        with open(args.input, "r", encoding="utf-8") as f:
            source = f.read()
    except FileNotFoundError:
        logger.error("File not found: %s", args.input)
        return 1
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Error reading %s: %s", args.input, e)
        return 1

    try:
        # Token dump mode
        if args.tokens:
            for tok in Lexer(source).tokenize():
                print(tok)
            return 0

        # AST dump mode
        if args.ast:
            _print_ast(Parser(Lexer(source)).parse())
            return 0

        logger.debug("Input:   %s", args.input)
        logger.debug("Backend: %s, entry: %s", args.format, args.entry)

        result = compile_source(source, backend=args.format, entry=args.entry,
                                best_effort=args.best_effort)
    except CompileError as e:
        logger.error("%s", e)
        return 1
    except Exception as e:
        logger.error("Internal compiler error: %s", e)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 2

    # Write output
    output = args.output or _default_output(args.input, args.format)
    try:
        if isinstance(result, bytes):
            with open(output, "wb") as f:
                f.write(result)
            logger.info("Wrote %s (%d bytes)", output, len(result))
        else:
            with open(output, "w", encoding="utf-8") as f:
                f.write(result)
            logger.info("Wrote %s (%d lines of assembly)", output, result.count("\n"))
    except OSError as e:
        logger.error("Error writing %s: %s", output, e)
        return 1
    return 0


def _print_ast(node, indent=0):
    """Pretty-print an AST node tree (debug helper)."""
    prefix = "  " * indent
    if hasattr(node, '__dataclass_fields__'):
        print(f"{prefix}{type(node).__name__}:")
        for fname in node.__dataclass_fields__:
            if fname in ("line", "col"):
                continue
            val = getattr(node, fname)
            if isinstance(val, list):
                print(f"{prefix}  {fname}:")
                for item in val:
                    _print_ast(item, indent + 2)
            elif hasattr(val, '__dataclass_fields__') and not isinstance(val, TYPES):
                print(f"{prefix}  {fname}:")
                _print_ast(val, indent + 2)
            elif val is not None:
                print(f"{prefix}  {fname}: {val}")
    else:
        print(f"{prefix}{node}")


if __name__ == "__main__":
    sys.exit(main())

"""
Common exception root for the BedRock compiler.

Every diagnostic raised by the pipeline (lexer, parser, backends) derives
from CompileError, so callers can catch one type and report it.
"""


class CompileError(Exception):
    """Base class for all compilation diagnostics."""

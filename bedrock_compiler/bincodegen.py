"""
Machine-code generators for the BedRock compiler.

Two strategies lower the AST straight to x86 bytes, without going through
assembly text. They share the Backend contract (lower(program) -> bytes)
but are separate, explicitly selected backends:

  TableGenerator ("bin")
      Table-driven, 16-bit real mode. Every function is encoded in
      declaration order behind a 3-byte placeholder jump at offset 0:

          offset 0:  E9 lo hi        jmp <entry>   (patched in pass two)
          offset 3:  55 89 E5 ...    first function
                     ...

      Pass one records each function's start offset while emitting its
      bytes. Pass two rewrites the placeholder displacement with
      offset(entry) - 3, little-endian.

  PatternGenerator ("bin-pattern")
      Demonstration-grade, 64-bit. Walks only the entry function's body
      and recognizes two shapes: a single pointer store inside `unsafe`,
      and a `loop` of halts.

Both raise UnsupportedConstructError on anything they cannot encode. With
best_effort=True the offending statement is dropped (its partial bytes are
rolled back) and a warning is logged instead.
"""

from __future__ import annotations
import logging
from typing import Dict
from .ast_nodes import *
from .codegen import (Backend, CodeGenError, UnsupportedConstructError, target_problem,
                      DEFAULT_ENTRY, TELETYPE, VIDEO_INT)
from .encoding import (EncodingError, RAW_INSTRUCTIONS, JMP_REL16_SIZE, JMP_REL8_SIZE,
                       encode, imm8, imm16, imm32, rel8, rel16)

logger = logging.getLogger(__name__)

# Real-mode code must fit in one segment for rel16 jumps to reach
SEGMENT_SIZE = 0x10000

BINARY_OPS = {
    "|": "or ax, bx",
    "+": "add ax, bx",
    "-": "sub ax, bx",
}


def _raw_instruction(code: str):
    return RAW_INSTRUCTIONS.get(code.strip().lower())


class _ByteBackend(Backend):
    """Output buffer and statement-level rollback shared by both strategies."""

    def __init__(self, entry: str = DEFAULT_ENTRY, best_effort: bool = False):
        super().__init__(entry, best_effort)
        self._code = bytearray()
        self._globals: Dict[str, int] = {}

    def _emit(self, data: bytes):
        self._code.extend(data)

    def _field(self, packer, value: int, node: ASTNode) -> bytes:
        """Pack an immediate/displacement, reporting overflow against node."""
        try:
            return packer(value)
        except EncodingError as e:
            raise UnsupportedConstructError(str(e), node) from None

    def _collect_globals(self, program: Program):
        self._globals = {g.name: g.address for g in program.globals
                         if g.address is not None}

    def _gen_statement(self, stmt: Statement):
        mark = len(self._code)
        try:
            self._lower_statement(stmt)
        except UnsupportedConstructError as e:
            if not self.best_effort:
                raise
            del self._code[mark:]
            logger.warning("[%s] %s (skipped)", self.name, e)

    def _lower_statement(self, stmt: Statement):
        raise NotImplementedError


# ──────────────────────────────────────────────
# Table-driven strategy
# ──────────────────────────────────────────────

class TableGenerator(_ByteBackend):
    """Two-pass 16-bit generator with entry-point back-patching."""

    name = "bin"

    def __init__(self, entry: str = DEFAULT_ENTRY, best_effort: bool = False):
        super().__init__(entry, best_effort)
        self.offsets: Dict[str, int] = {}

    def lower(self, program: Program) -> bytes:
        self._code = bytearray()
        self.offsets = {}
        self._index_functions(program)
        self._collect_globals(program)

        # Placeholder: jmp rel16 0, rewritten once the entry offset is known
        self._emit(encode('jmp rel16', rel16(0)))

        # Pass 1: emit functions, recording where each one starts
        for func in program.functions:
            self.offsets[func.name] = len(self._code)
            logger.debug("bin: %s at offset 0x%04X", func.name, len(self._code))
            self._gen_function(func)

        if len(self._code) > SEGMENT_SIZE:
            raise CodeGenError(f"Image is {len(self._code)} bytes, "
                               f"larger than one {SEGMENT_SIZE}-byte segment")

        # Pass 2: back-patch the entry jump
        self._patch_entry()
        return bytes(self._code)

    def _patch_entry(self):
        entry_offset = self.offsets.get(self.entry)
        if entry_offset is None:
            self._missing_entry()
            return
        displacement = entry_offset - JMP_REL16_SIZE
        self._code[1:JMP_REL16_SIZE] = rel16(displacement)
        logger.debug("bin: entry jump -> 0x%04X (disp %d)", entry_offset, displacement)

    def _gen_function(self, func: Function):
        if func.alignment:
            logger.debug("bin: #[align] on %s ignored by the flat image", func.name)

        self._emit(encode('push bp'))
        self._emit(encode('mov bp, sp'))
        for stmt in func.body:
            self._gen_statement(stmt)
        self._emit(encode('mov sp, bp'))
        self._emit(encode('pop bp'))
        self._emit(encode('ret'))

    # ── Statements ────────────────────────────

    def _lower_statement(self, stmt: Statement):
        if isinstance(stmt, ClearScreen):
            # mov ax, 0003h ; int 10h  (set 80x25 text mode, clears screen)
            self._emit(encode('mov ax, imm16', imm16(0x0003)))
            self._emit(encode('int imm8', imm8(VIDEO_INT)))
        elif isinstance(stmt, Newline):
            for ch in (0x0D, 0x0A):
                self._gen_teletype(ch)
        elif isinstance(stmt, Print):
            self._emit(encode('mov bl, imm8', self._field(imm8, stmt.color, stmt)))
            for ch in stmt.text.encode("utf-8"):
                self._gen_teletype(ch)
        elif isinstance(stmt, LoopBlock):
            self._gen_loop(stmt)
        elif isinstance(stmt, UnsafeBlock):
            for s in stmt.body:
                self._gen_statement(s)
        elif isinstance(stmt, ExpressionStmt):
            self._gen_expr(stmt.expr)
        elif isinstance(stmt, Assignment):
            self._gen_assignment(stmt)
        elif isinstance(stmt, Let):
            raise UnsupportedConstructError(
                f"Local variable '{stmt.name}' is not supported by the table-driven backend",
                stmt)
        else:
            raise CodeGenError(f"Unknown statement {type(stmt).__name__}", stmt)

    def _gen_teletype(self, ch: int):
        self._emit(encode('mov ah, imm8', imm8(TELETYPE)))
        self._emit(encode('mov al, imm8', imm8(ch)))
        self._emit(encode('int imm8', imm8(VIDEO_INT)))

    def _gen_loop(self, stmt: LoopBlock):
        start = len(self._code)
        for s in stmt.body:
            self._gen_statement(s)
        # Displacement counts from the end of the 3-byte jump
        displacement = start - (len(self._code) + JMP_REL16_SIZE)
        self._emit(encode('jmp rel16', self._field(rel16, displacement, stmt)))

    def _gen_assignment(self, stmt: Assignment):
        if not isinstance(stmt.target, Dereference):
            raise UnsupportedConstructError(
                f"Assignment target {type(stmt.target).__name__} {target_problem(stmt.target)}",
                stmt)
        self._gen_expr(stmt.value)              # value -> AX
        self._emit(encode('push ax'))
        self._gen_expr(stmt.target.expr)        # address -> AX
        self._emit(encode('mov bx, ax'))
        self._emit(encode('pop ax'))
        self._emit(encode('mov [bx], ax'))

    # ── Expressions (result in AX) ────────────

    def _gen_expr(self, expr: Expression):
        if isinstance(expr, IntLiteral):
            self._emit(encode('mov ax, imm16', self._field(imm16, expr.value, expr)))
        elif isinstance(expr, Identifier):
            addr = self._globals.get(expr.name)
            if addr is None:
                raise UnsupportedConstructError(
                    f"'{expr.name}' is not an addressed global", expr)
            self._emit(encode('mov ax, imm16', self._field(imm16, addr, expr)))
        elif isinstance(expr, Cast):
            self._gen_expr(expr.expr)
        elif isinstance(expr, Dereference):
            self._gen_expr(expr.expr)
            self._emit(encode('mov bx, ax'))
            self._emit(encode('mov ax, [bx]'))
        elif isinstance(expr, BinaryOp):
            form = BINARY_OPS.get(expr.op)
            if form is None:
                raise CodeGenError(f"Unknown operator {expr.op!r}", expr)
            self._gen_expr(expr.left)
            self._emit(encode('push ax'))
            self._gen_expr(expr.right)
            self._emit(encode('mov bx, ax'))
            self._emit(encode('pop ax'))
            self._emit(encode(form))
        elif isinstance(expr, Asm):
            opcode = _raw_instruction(expr.code)
            if opcode is None:
                raise UnsupportedConstructError(
                    f"Cannot encode raw instruction {expr.code!r}", expr)
            self._emit(opcode)
        elif isinstance(expr, FunctionCall):
            raise UnsupportedConstructError(
                f"Call to '{expr.name}' is not supported by the table-driven backend", expr)
        else:
            raise CodeGenError(f"Unknown expression {type(expr).__name__}", expr)


# ──────────────────────────────────────────────
# Pattern-matched strategy
# ──────────────────────────────────────────────

class PatternGenerator(_ByteBackend):
    """Encodes the entry function by recognizing two fixed statement shapes."""

    name = "bin-pattern"

    def lower(self, program: Program) -> bytes:
        self._code = bytearray()
        functions = self._index_functions(program)
        self._collect_globals(program)

        entry = functions.get(self.entry)
        if entry is None:
            self._missing_entry()
            return b""

        for stmt in entry.body:
            self._gen_statement(stmt)
        return bytes(self._code)

    def _lower_statement(self, stmt: Statement):
        if (isinstance(stmt, UnsafeBlock) and len(stmt.body) == 1
                and isinstance(stmt.body[0], Assignment)
                and isinstance(stmt.body[0].target, Dereference)):
            self._gen_pointer_store(stmt.body[0])
        elif isinstance(stmt, LoopBlock):
            self._gen_halt_loop(stmt)
        else:
            raise UnsupportedConstructError(
                f"{type(stmt).__name__} does not match a supported pattern "
                f"(unsafe {{ *addr = value; }} or loop {{ asm(\"hlt\"); }})", stmt)

    @staticmethod
    def _is_halt(stmt: Statement) -> bool:
        return (isinstance(stmt, ExpressionStmt) and isinstance(stmt.expr, Asm)
                and stmt.expr.code.strip().lower() == "hlt")

    def _gen_pointer_store(self, stmt: Assignment):
        """mov rax, addr ; mov word [rax], value"""
        addr = self._const_value(stmt.target.expr)
        value = self._const_value(stmt.value)
        self._emit(encode('mov rax, imm32', self._field(imm32, addr, stmt.target)))
        self._emit(encode('mov word [rax], imm16', self._field(imm16, value, stmt.value)))

    def _gen_halt_loop(self, stmt: LoopBlock):
        """hlt ... ; jmp short back to the first hlt"""
        start = len(self._code)
        for s in stmt.body:
            if self._is_halt(s):
                self._emit(encode('hlt'))
            else:
                self._unsupported(
                    f"{type(s).__name__} inside a halt loop is not supported "
                    f"(only asm(\"hlt\"))", s)
        body_len = len(self._code) - start
        displacement = -(body_len + JMP_REL8_SIZE)
        self._emit(encode('jmp rel8', self._field(rel8, displacement, stmt)))

    def _const_value(self, expr: Expression) -> int:
        """Fold an expression built from literals and addressed globals."""
        if isinstance(expr, IntLiteral):
            return expr.value
        if isinstance(expr, Cast):
            return self._const_value(expr.expr)
        if isinstance(expr, Identifier) and expr.name in self._globals:
            return self._globals[expr.name]
        if isinstance(expr, BinaryOp):
            left = self._const_value(expr.left)
            right = self._const_value(expr.right)
            if expr.op == "|":
                return left | right
            if expr.op == "+":
                return (left + right) & 0xFFFF_FFFF_FFFF_FFFF
            if expr.op == "-":
                return (left - right) & 0xFFFF_FFFF_FFFF_FFFF
        raise UnsupportedConstructError(
            f"{type(expr).__name__} is not a compile-time constant", expr)

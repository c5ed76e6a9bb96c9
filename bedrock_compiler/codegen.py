"""
x86-64 assembly generator for the BedRock compiler.

Translates the AST into NASM-syntax assembly text for a freestanding
kernel image. Also defines the Backend contract shared with the
machine-code generators in bincodegen.

Register usage convention:
  - RAX: expression result (accumulator)
  - RBX: second operand / value being stored
  - RDX: I/O port for the inb() builtin
  - RBP: frame pointer, locals live at negative displacements
  - RSP: stack pointer (grows downward)

Stack frame layout after the prologue:

    +----------------+
    | Return address |
    +----------------+
    | Saved RBP      |
    +----------------+ <- RBP
    | Local 1        |  [rbp-8]
    | Local 2        |  [rbp-16]
    | ...            |
    +----------------+ <- RSP

Every `let` pushes its initial value, so pushing both reserves and
initializes the slot. Calls take no arguments: no marshalling is done.
"""

from __future__ import annotations
import logging
from typing import Dict, List, Optional, Union
from .errors import CompileError
from .ast_nodes import *

logger = logging.getLogger(__name__)

DEFAULT_ENTRY = "kernel_main"

WORD_SIZE = 8


class CodeGenError(CompileError):
    def __init__(self, message: str, node: Optional[ASTNode] = None):
        self.node = node
        if node is not None:
            message = f"Code generation error at L{node.line}:{node.col}: {message}"
        else:
            message = f"Code generation error: {message}"
        super().__init__(message)


class UnsupportedConstructError(CodeGenError):
    """The backend has no lowering for this construct."""


class UnresolvedEntryError(CodeGenError):
    """No function carries the entry-point name."""


def target_problem(target: Expression) -> str:
    if is_lvalue(target):
        return "is not supported (only *pointer = value)"
    return "is not an lvalue"


# ──────────────────────────────────────────────
# Backend contract
# ──────────────────────────────────────────────

class Backend:
    """A terminal pipeline stage: lower(program) -> str | bytes.

    One instance serves one compilation at a time; lower() resets all
    per-compilation state before walking the program.

    best_effort turns codegen limitations (unsupported constructs, a
    missing entry function) into logged warnings instead of errors.
    """

    name = ""

    def __init__(self, entry: str = DEFAULT_ENTRY, best_effort: bool = False):
        self.entry = entry
        self.best_effort = best_effort

    def lower(self, program: Program) -> Union[str, bytes]:
        raise NotImplementedError

    def _index_functions(self, program: Program) -> Dict[str, Function]:
        """Map function name -> Function, rejecting duplicate definitions."""
        functions: Dict[str, Function] = {}
        for func in program.functions:
            if func.name in functions:
                raise CodeGenError(f"Duplicate function '{func.name}'", func)
            functions[func.name] = func
        return functions

    def _unsupported(self, message: str, node: ASTNode):
        """Raise, or in best-effort mode log and let the caller skip."""
        if not self.best_effort:
            raise UnsupportedConstructError(message, node)
        logger.warning("[%s] L%d:%d: %s (skipped)", self.name, node.line, node.col, message)

    def _missing_entry(self):
        message = f"Entry function '{self.entry}' is not defined"
        if not self.best_effort:
            raise UnresolvedEntryError(message)
        logger.warning("[%s] %s", self.name, message)


# ──────────────────────────────────────────────
# Assembly backend
# ──────────────────────────────────────────────

BINARY_OPS = {
    "|": "or",
    "+": "add",
    "-": "sub",
}

# BIOS teletype output: AH=0Eh, AL=char, INT 10h
TELETYPE = 0x0E
VIDEO_INT = 0x10


class AsmGenerator(Backend):
    """Generates x86-64 NASM assembly from the AST."""

    name = "asm"

    def __init__(self, entry: str = DEFAULT_ENTRY, best_effort: bool = False):
        super().__init__(entry, best_effort)
        self._lines: List[str] = []
        self._label_counter = 0
        # Per-function state
        self._locals: Dict[str, int] = {}
        self._stack_offset = 0

    # ── Label generation ──────────────────────

    def _label(self, prefix: str = "L") -> str:
        label = f".{prefix}_{self._label_counter}"
        self._label_counter += 1
        return label

    # ── Output helpers ────────────────────────

    def _emit(self, line: str):
        """Emit an instruction."""
        self._lines.append(f"    {line}")

    def _emit_label(self, label: str):
        self._lines.append(f"{label}:")

    def _emit_comment(self, text: str, indent: bool = True):
        self._lines.append(f"    ; {text}" if indent else f"; {text}")

    def _emit_blank(self):
        self._lines.append("")

    # ── Main generation entry point ───────────

    def lower(self, program: Program) -> str:
        """Generate complete assembly output from a Program AST."""
        self._lines = []
        self._label_counter = 0

        functions = self._index_functions(program)
        if self.entry not in functions:
            self._missing_entry()

        self._lines.extend([
            "bits 64",
            "section .text",
            f"global {self.entry}",
        ])
        self._emit_blank()

        for item in program.items:
            if isinstance(item, GlobalVariable):
                self._gen_global(item)
            else:
                self._gen_function(item)

        return "\n".join(self._lines) + "\n"

    # ── Globals ───────────────────────────────

    def _gen_global(self, glob: GlobalVariable):
        addr = glob.address
        if addr is not None:
            self._lines.append(f"{glob.name} equ 0x{addr:X}")
        else:
            self._emit_comment(
                f"Global {glob.name}: {glob.var_type}, {glob.var_type.size} bytes "
                f"(no #[address], storage not allocated)",
                indent=False)

    # ── Functions ─────────────────────────────

    def _gen_function(self, func: Function):
        self._locals = {}
        self._stack_offset = 0

        if func.alignment:
            self._emit(f"align {func.alignment}")
        if func.is_interrupt:
            self._emit_comment(f"Interrupt handler: {func.name}", indent=False)
        self._emit_label(func.name)

        # Prologue
        self._emit("push rbp")
        self._emit("mov rbp, rsp")

        for stmt in func.body:
            self._gen_statement(stmt)

        # Epilogue
        self._emit("mov rsp, rbp")
        self._emit("pop rbp")
        self._emit("ret")
        self._emit_blank()
        logger.debug("asm: %s uses %d bytes of locals", func.name, -self._stack_offset)

    # ── Statement generation ──────────────────

    def _gen_statement(self, stmt: Statement):
        if isinstance(stmt, Let):
            self._gen_let(stmt)
        elif isinstance(stmt, UnsafeBlock):
            for s in stmt.body:
                self._gen_statement(s)
        elif isinstance(stmt, LoopBlock):
            self._gen_loop(stmt)
        elif isinstance(stmt, ExpressionStmt):
            self._gen_expr(stmt.expr)
        elif isinstance(stmt, Assignment):
            self._gen_assignment(stmt)
        elif isinstance(stmt, ClearScreen):
            self._emit("mov ax, 0x0003")
            self._emit(f"int 0x{VIDEO_INT:02X}")
        elif isinstance(stmt, Newline):
            for ch in (0x0D, 0x0A):
                self._gen_teletype(ch)
        elif isinstance(stmt, Print):
            self._emit(f"mov bl, 0x{stmt.color:02X}")
            for ch in stmt.text.encode("utf-8"):
                self._gen_teletype(ch)
        else:
            raise CodeGenError(f"Unknown statement {type(stmt).__name__}", stmt)

    def _gen_teletype(self, ch: int):
        self._emit(f"mov ah, 0x{TELETYPE:02X}")
        self._emit(f"mov al, 0x{ch:02X}")
        self._emit(f"int 0x{VIDEO_INT:02X}")

    def _gen_let(self, stmt: Let):
        """Evaluate the initializer and push it as the new local's slot."""
        self._gen_expr(stmt.value)
        self._emit("push rax")
        self._stack_offset -= WORD_SIZE
        self._locals[stmt.name] = self._stack_offset
        self._emit_comment(f"variable {stmt.name} at [rbp{self._stack_offset}]")

    def _gen_loop(self, stmt: LoopBlock):
        top_label = self._label("L_loop")
        self._emit_label(top_label)
        for s in stmt.body:
            self._gen_statement(s)
        self._emit(f"jmp {top_label}")

    def _gen_assignment(self, stmt: Assignment):
        """Store through a pointer: *addr = value (always a 16-bit store)."""
        self._gen_expr(stmt.value)
        self._emit("push rax")              # save value

        if isinstance(stmt.target, Dereference):
            self._gen_expr(stmt.target.expr)    # address -> RAX
            self._emit("pop rbx")
            self._emit("mov [rax], bx")
            return

        kind = type(stmt.target).__name__
        self._unsupported(f"Assignment target {kind} {target_problem(stmt.target)}", stmt)
        self._emit_comment(f"unsupported assignment target ({kind})")
        self._emit("add rsp, 8")            # drop saved value

    # ── Expression generation ─────────────────
    # Convention: expression result is left in RAX

    def _gen_expr(self, expr: Expression):
        if isinstance(expr, IntLiteral):
            self._emit(f"mov rax, {expr.value}")
        elif isinstance(expr, Identifier):
            offset = self._locals.get(expr.name)
            if offset is not None:
                self._emit(f"mov rax, [rbp{offset}]")
            else:
                self._emit(f"mov rax, {expr.name}")  # global symbol
        elif isinstance(expr, Cast):
            self._gen_expr(expr.expr)
        elif isinstance(expr, Dereference):
            self._gen_expr(expr.expr)
            self._emit("mov rax, [rax]")
        elif isinstance(expr, BinaryOp):
            self._gen_binary_op(expr)
        elif isinstance(expr, FunctionCall):
            self._gen_call(expr)
        elif isinstance(expr, Asm):
            self._emit(expr.code)
        else:
            raise CodeGenError(f"Unknown expression {type(expr).__name__}", expr)

    def _gen_binary_op(self, op: BinaryOp):
        mnemonic = BINARY_OPS.get(op.op)
        if mnemonic is None:
            raise CodeGenError(f"Unknown operator {op.op!r}", op)
        self._gen_expr(op.left)
        self._emit("push rax")
        self._gen_expr(op.right)
        self._emit("mov rbx, rax")
        self._emit("pop rax")
        self._emit(f"{mnemonic} rax, rbx")

    def _gen_call(self, call: FunctionCall):
        if call.name == "inb":
            # Port read: port -> DX, IN AL,DX, zero-extend the byte
            if len(call.args) != 1:
                raise CodeGenError(f"inb expects 1 argument, got {len(call.args)}", call)
            self._gen_expr(call.args[0])
            self._emit("mov dx, ax")
            self._emit("in al, dx")
            self._emit("and rax, 0xFF")
            return
        self._emit(f"call {call.name}")

"""
x86 instruction encodings used by the BedRock machine-code backends.

The backends never run a general assembler: they emit a handful of fixed
instruction forms straight from this table and fill in immediates and
relative displacements themselves.

Encodings (Intel SDM Vol. 2):
  IMM   -- immediate load            e.g. mov ax, imm16   (B8 iw)
  STK   -- push / pop                e.g. push ax         (50)
  MOV   -- register move / store     e.g. mov bx, ax      (89 C3)
  ALU   -- add / sub / or            e.g. add ax, bx      (01 D8)
  INT   -- software interrupt        e.g. int 0x10        (CD 10)
  REL   -- relative jump             jmp rel16 (E9 cw), jmp rel8 (EB cb)

All multi-byte fields are little-endian. Relative displacements are
measured from the first byte after the jump instruction.
"""

from __future__ import annotations
import struct
from typing import Dict

__all__ = ['OPCODES', 'RAW_INSTRUCTIONS', 'EncodingError',
           'encode', 'imm8', 'imm16', 'imm32', 'rel8', 'rel16',
           'JMP_REL16_SIZE', 'JMP_REL8_SIZE']


class EncodingError(ValueError):
    """An immediate or displacement does not fit its field."""


# ──────────────────────────────────────────────
# Opcode table
# ──────────────────────────────────────────────
# Format: { 'mnemonic form': opcode bytes (without immediates) }

OPCODES: Dict[str, bytes] = {}

def _op(form: str, *opcode: int):
    """Register an instruction form."""
    OPCODES[form] = bytes(opcode)

# ── 16-bit real mode (table-driven backend) ──
_op('push bp',          0x55)
_op('pop bp',           0x5D)
_op('mov bp, sp',       0x89, 0xE5)
_op('mov sp, bp',       0x89, 0xEC)
_op('ret',              0xC3)
_op('push ax',          0x50)
_op('pop ax',           0x58)
_op('mov bx, ax',       0x89, 0xC3)
_op('mov ax, [bx]',     0x8B, 0x07)
_op('mov [bx], ax',     0x89, 0x07)
_op('mov ax, imm16',    0xB8)
_op('mov ah, imm8',     0xB4)
_op('mov al, imm8',     0xB0)
_op('mov bl, imm8',     0xB3)
_op('add ax, bx',       0x01, 0xD8)
_op('sub ax, bx',       0x29, 0xD8)
_op('or ax, bx',        0x09, 0xD8)
_op('int imm8',         0xCD)
_op('hlt',              0xF4)
_op('jmp rel16',        0xE9)
_op('jmp rel8',         0xEB)

# ── 64-bit long mode (pattern-matched backend) ──
_op('mov rax, imm32',           0x48, 0xC7, 0xC0)  # sign-extended to 64 bits
_op('mov word [rax], imm16',    0x66, 0xC7, 0x00)

JMP_REL16_SIZE = len(OPCODES['jmp rel16']) + 2
JMP_REL8_SIZE = len(OPCODES['jmp rel8']) + 1

# asm("...") strings the machine-code backends can encode
RAW_INSTRUCTIONS: Dict[str, bytes] = {
    'hlt': OPCODES['hlt'],
}


# ──────────────────────────────────────────────
# Field packing
# ──────────────────────────────────────────────

def _pack(fmt: str, value: int, what: str) -> bytes:
    try:
        return struct.pack(fmt, value)
    except struct.error:
        raise EncodingError(f"{what} {value:#x} out of range") from None


def imm8(value: int) -> bytes:
    return _pack('<B', value, "8-bit immediate")


def imm16(value: int) -> bytes:
    return _pack('<H', value, "16-bit immediate")


def imm32(value: int) -> bytes:
    """Signed 32-bit immediate (the CPU sign-extends it to 64 bits)."""
    return _pack('<i', value, "32-bit immediate")


def rel8(displacement: int) -> bytes:
    return _pack('<b', displacement, "8-bit displacement")


def rel16(displacement: int) -> bytes:
    """16-bit displacement; IP wraps inside the 64K segment, so any
    displacement reaching within the segment is valid modulo 2**16."""
    if not -0xFFFF <= displacement <= 0xFFFF:
        raise EncodingError(f"16-bit displacement {displacement:#x} out of range")
    return _pack('<H', displacement & 0xFFFF, "16-bit displacement")


def encode(form: str, operand: bytes = b'') -> bytes:
    """Opcode bytes for a table form followed by its packed operand."""
    return OPCODES[form] + operand

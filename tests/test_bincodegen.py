"""
Machine-code backend tests for the BedRock compiler.

Tests verify byte-exact output of the table-driven ("bin") and
pattern-matched ("bin-pattern") generators against the x86 encodings
in the Intel SDM, plus the field packing helpers they share.
"""

import logging
import pytest
from bedrock_compiler import compile_source, parse_source, TableGenerator, PatternGenerator
from bedrock_compiler.parser import ParseError
from bedrock_compiler.codegen import (CodeGenError, UnsupportedConstructError,
                                      UnresolvedEntryError)
from bedrock_compiler.encoding import EncodingError, encode, imm16, imm32, rel8, rel16

PROLOGUE = bytes.fromhex("55 89 E5")
EPILOGUE = bytes.fromhex("89 EC 5D C3")


def _bin(code: str, **kwargs) -> bytes:
    return compile_source(code, backend="bin", **kwargs)


def _pattern(code: str, **kwargs) -> bytes:
    return compile_source(code, backend="bin-pattern", **kwargs)


def _main_body(body: str, prelude: str = "", **kwargs) -> bytes:
    """Compile a single kernel_main with the table backend, return its body bytes."""
    code = _bin(f"{prelude}\nfn kernel_main() -> void {{ {body} }}", **kwargs)
    assert code[:3] == b"\xE9\x00\x00"
    assert code[3:6] == PROLOGUE
    assert code.endswith(EPILOGUE)
    return code[6:-len(EPILOGUE)]


def _disp16(code: bytes, at: int) -> int:
    return int.from_bytes(code[at:at + 2], "little", signed=True)


# ─── Field packing ─────────────────────────

class TestEncoding:
    def test_encode_appends_operand(self):
        assert encode('mov ax, imm16', imm16(0x1234)) == b"\xB8\x34\x12"
        assert encode('ret') == b"\xC3"

    def test_imm16_range(self):
        assert imm16(0xFFFF) == b"\xFF\xFF"
        with pytest.raises(EncodingError, match="16-bit immediate"):
            imm16(0x10000)

    def test_imm32_is_signed(self):
        assert imm32(0xB8000) == b"\x00\x80\x0B\x00"
        with pytest.raises(EncodingError):
            imm32(0x80000000)

    def test_rel8(self):
        assert rel8(-3) == b"\xFD"
        with pytest.raises(EncodingError):
            rel8(-129)

    def test_rel16_little_endian(self):
        assert rel16(14) == b"\x0E\x00"
        assert rel16(-4) == b"\xFC\xFF"
        with pytest.raises(EncodingError):
            rel16(0x10000)


# ─── Table-driven: layout and patching ─────

class TestTableLayout:
    def test_empty_entry(self):
        assert _bin("fn kernel_main() -> void {}") == b"\xE9\x00\x00" + PROLOGUE + EPILOGUE

    def test_entry_patch_three_functions(self):
        gen = TableGenerator(entry="c")
        code = gen.lower(parse_source("fn a() -> void {} fn b() -> void {} fn c() -> void {}"))
        assert gen.offsets == {"a": 3, "b": 10, "c": 17}
        assert code[0] == 0xE9
        assert _disp16(code, 1) == gen.offsets["c"] - 3
        assert code[1:3] == b"\x0E\x00"

    def test_entry_not_first(self):
        code = _bin("fn helper() -> void {} fn kernel_main() -> void {}")
        assert 3 + _disp16(code, 1) == 10

    def test_missing_entry(self):
        with pytest.raises(UnresolvedEntryError, match="'kernel_main' is not defined"):
            _bin("fn a() -> void {}")

    def test_missing_entry_best_effort_leaves_placeholder(self, caplog):
        with caplog.at_level(logging.WARNING):
            code = _bin("fn a() -> void {}", best_effort=True)
        assert code == b"\xE9\x00\x00" + PROLOGUE + EPILOGUE
        assert "kernel_main" in caplog.text

    def test_duplicate_function(self):
        with pytest.raises(CodeGenError, match="Duplicate function"):
            _bin("fn kernel_main() -> void {} fn kernel_main() -> void {}")

    def test_align_is_ignored(self):
        assert _bin("#[align(16)] fn kernel_main() -> void {}") == \
            b"\xE9\x00\x00" + PROLOGUE + EPILOGUE


# ─── Table-driven: statements ──────────────

class TestTableStatements:
    def test_halt_loop(self):
        body = _main_body('loop { asm("hlt"); }')
        assert body == b"\xF4\xE9\xFC\xFF"

    def test_halt_loop_jump_lands_on_hlt(self):
        code = _bin('fn kernel_main() -> void { loop { asm("hlt"); } }')
        h = code.index(b"\xF4")
        assert code[h + 1] == 0xE9
        after_jump = h + 4
        assert after_jump + _disp16(code, h + 2) == h

    def test_empty_loop_jumps_to_itself(self):
        assert _main_body("loop { }") == b"\xE9\xFD\xFF"

    def test_clear(self):
        assert _main_body("clear();") == bytes.fromhex("B8 03 00 CD 10")

    def test_newline(self):
        assert _main_body("newline();") == bytes.fromhex("B4 0E B0 0D CD 10 B4 0E B0 0A CD 10")

    def test_print_default_color(self):
        assert _main_body('print("Hi");') == bytes.fromhex(
            "B3 07 B4 0E B0 48 CD 10 B4 0E B0 69 CD 10")

    def test_print_utf8_bytes(self):
        body = _main_body('print("é", 0x1F);')
        assert body == bytes.fromhex("B3 1F B4 0E B0 C3 CD 10 B4 0E B0 A9 CD 10")

    def test_print_color_must_fit_a_byte(self):
        with pytest.raises(ParseError, match="color attribute"):
            _main_body('print("A", 0x100);')

    def test_print_max_color(self):
        assert _main_body('print("", 0xFF);') == b"\xB3\xFF"

    def test_pointer_store(self):
        body = _main_body("unsafe { *VGA = 0x0F41; }",
                          prelude="#[address(0xB800)] volatile let VGA: *u16;")
        assert body == bytes.fromhex("B8 41 0F 50 B8 00 B8 89 C3 58 89 07")

    @pytest.mark.parametrize("op,opcode", [("|", "09 D8"), ("+", "01 D8"), ("-", "29 D8")])
    def test_binary_ops(self, op, opcode):
        body = _main_body(f"unsafe {{ *cast<*u16>(0x2000) = 0x0F00 {op} 0x41; }}")
        assert body == bytes.fromhex(
            f"B8 00 0F 50 B8 41 00 89 C3 58 {opcode} "
            "50 B8 00 20 89 C3 58 89 07")

    def test_dereference_load(self):
        assert _main_body("*cast<*u16>(0x0400);") == bytes.fromhex("B8 00 04 89 C3 8B 07")


# ─── Table-driven: unsupported constructs ──

class TestTableUnsupported:
    @pytest.mark.parametrize("body,message", [
        ("let x: u8 = 1;", "Local variable 'x'"),
        ("helper();", "Call to 'helper'"),
        ('asm("cli");', "raw instruction 'cli'"),
        ("x = 1;", "Assignment target Identifier"),
        ("unsafe { *cast<*u16>(0x2000) = 0x10000; }", "16-bit immediate"),
        ("unsafe { *VGA = 1; }", "16-bit immediate"),
        ("unsafe { *SCREEN = 1; }", "'SCREEN' is not an addressed global"),
    ])
    def test_strict(self, body, message):
        prelude = "#[address(0xB8000)] let VGA: *u16; let SCREEN: *u16;"
        with pytest.raises(UnsupportedConstructError, match=message):
            _bin(f"{prelude} fn helper() -> void {{}} fn kernel_main() -> void {{ {body} }}")

    def test_best_effort_rolls_back_statement(self, caplog):
        with caplog.at_level(logging.WARNING, logger="bedrock_compiler.bincodegen"):
            body = _main_body("clear(); let x: u8 = 1 + 2; clear();", best_effort=True)
        assert body == bytes.fromhex("B8 03 00 CD 10 B8 03 00 CD 10")
        assert "(skipped)" in caplog.text

    def test_best_effort_inside_loop(self):
        body = _main_body('loop { asm("cli"); asm("hlt"); }', best_effort=True)
        assert body == b"\xF4\xE9\xFC\xFF"


# ─── Pattern-matched backend ───────────────

class TestPattern:
    def test_halt_loop(self):
        assert _pattern('fn kernel_main() -> void { loop { asm("hlt"); } }') == b"\xF4\xEB\xFD"

    def test_two_halts(self):
        code = _pattern('fn kernel_main() -> void { loop { asm("hlt"); asm("hlt"); } }')
        assert code == b"\xF4\xF4\xEB\xFC"

    def test_halt_loop_skips_other_statements(self, caplog):
        with caplog.at_level(logging.WARNING, logger="bedrock_compiler.codegen"):
            code = _pattern('fn kernel_main() -> void { loop { asm("nop"); asm("hlt"); } }',
                            best_effort=True)
        assert code == b"\xF4\xEB\xFD"
        assert caplog.text.count("(skipped)") == 1

    def test_halt_loop_with_other_statement_strict(self):
        with pytest.raises(UnsupportedConstructError, match="ExpressionStmt inside a halt loop"):
            _pattern('fn kernel_main() -> void { loop { asm("nop"); asm("hlt"); } }')

    def test_pointer_store_then_halt(self):
        code = _pattern("""
            #[address(0xB8000)] volatile let VGA: *u16;
            fn kernel_main() -> void {
                unsafe { *VGA = 0x0F41; }
                loop { asm("hlt"); }
            }
        """)
        assert code == bytes.fromhex("48 C7 C0 00 80 0B 00 66 C7 00 41 0F F4 EB FD")

    def test_constant_folding(self):
        code = _pattern("fn kernel_main() -> void { "
                        "unsafe { *cast<*u16>(0xB8000 + 2) = 0x0F00 | 0x42; } }")
        assert code == bytes.fromhex("48 C7 C0 02 80 0B 00 66 C7 00 42 0F")

    def test_only_entry_is_lowered(self):
        code = _pattern('fn helper() -> void { clear(); } '
                        'fn kernel_main() -> void { loop { asm("hlt"); } }')
        assert code == b"\xF4\xEB\xFD"

    def test_unmatched_shape_strict(self):
        with pytest.raises(UnsupportedConstructError, match="ClearScreen"):
            _pattern("fn kernel_main() -> void { clear(); }")

    def test_non_constant_store_strict(self):
        with pytest.raises(UnsupportedConstructError, match="not a compile-time constant"):
            _pattern("fn kernel_main() -> void { unsafe { *p = 1; } }")

    def test_unmatched_shape_best_effort(self, caplog):
        with caplog.at_level(logging.WARNING):
            code = _pattern('fn kernel_main() -> void { clear(); let x: u8 = 1; '
                            'loop { asm("hlt"); } }', best_effort=True)
        assert code == b"\xF4\xEB\xFD"
        assert caplog.text.count("(skipped)") == 2

    def test_missing_entry(self):
        with pytest.raises(UnresolvedEntryError):
            _pattern("fn other() -> void {}")

    def test_missing_entry_best_effort(self):
        assert _pattern("fn other() -> void {}", best_effort=True) == b""

"""
AST Node definitions for the BedRock compiler.

Defines the Abstract Syntax Tree produced by the parser and consumed
(read-only) by the backends. Each node records the line/column of the
token that started it so backends can point diagnostics at the source.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Union


# ──────────────────────────────────────────────
# Type system
# ──────────────────────────────────────────────

# Scalar type name -> size in bytes
SCALAR_SIZES = {
    "u8": 1, "u16": 2, "u32": 4, "u64": 8,
    "i8": 1, "i16": 2, "i32": 4, "i64": 8,
    "f32": 4, "f64": 8,
    "bool": 1,
    "void": 0,
}

POINTER_SIZE = 8


@dataclass(frozen=True)
class ScalarType:
    """One of the fixed scalar types (u8..u64, i8..i64, f32, f64, bool, void)."""
    name: str

    @property
    def size(self) -> int:
        return SCALAR_SIZES[self.name]

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class PointerType:
    """Pointer to another type: *T."""
    pointee: Type

    @property
    def size(self) -> int:
        return POINTER_SIZE

    def __str__(self) -> str:
        return f"*{self.pointee}"


Type = Union[ScalarType, PointerType]


# ──────────────────────────────────────────────
# Attributes: #[address(0xB8000)], #[interrupt], #[align(16)]
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class AddressAttr:
    """Fixes a symbol at an absolute address."""
    value: int


@dataclass(frozen=True)
class InterruptAttr:
    """Marks an interrupt handler (informational only)."""


@dataclass(frozen=True)
class AlignAttr:
    value: int


Attribute = Union[AddressAttr, InterruptAttr, AlignAttr]


def find_attr(attributes: List[Attribute], kind: type) -> Optional[Attribute]:
    """Return the last attribute of the given class, or None."""
    found = None
    for attr in attributes:
        if isinstance(attr, kind):
            found = attr
    return found


# ──────────────────────────────────────────────
# Base AST node
# ──────────────────────────────────────────────

@dataclass
class ASTNode:
    """Base class for all AST nodes."""
    line: int = 0
    col: int = 0


# ──────────────────────────────────────────────
# Expressions
# ──────────────────────────────────────────────

@dataclass
class IntLiteral(ASTNode):
    """Unsigned 64-bit integer constant."""
    value: int = 0

@dataclass
class Identifier(ASTNode):
    """Variable or global symbol reference."""
    name: str = ""

@dataclass
class Cast(ASTNode):
    """cast<T>(expr) -- type-level only, no runtime effect."""
    target_type: Type = field(default_factory=lambda: ScalarType("u64"))
    expr: Expression = None  # type: ignore

@dataclass
class Dereference(ASTNode):
    """Pointer dereference: *expr."""
    expr: Expression = None  # type: ignore

@dataclass
class BinaryOp(ASTNode):
    """Binary operation: left op right, op in '|', '+', '-'."""
    op: str = ""
    left: Expression = None   # type: ignore
    right: Expression = None  # type: ignore

@dataclass
class FunctionCall(ASTNode):
    """Call by name: name(args...)."""
    name: str = ""
    args: List[Expression] = field(default_factory=list)

@dataclass
class Asm(ASTNode):
    """Raw instruction escape: asm("hlt")."""
    code: str = ""


Expression = Union[
    IntLiteral, Identifier, Cast, Dereference,
    BinaryOp, FunctionCall, Asm,
]


def is_lvalue(expr: Expression) -> bool:
    return isinstance(expr, (Identifier, Dereference))


# ──────────────────────────────────────────────
# Statements
# ──────────────────────────────────────────────

@dataclass
class Let(ASTNode):
    """let name: type = value;"""
    name: str = ""
    var_type: Type = field(default_factory=lambda: ScalarType("u64"))
    value: Expression = None  # type: ignore
    is_volatile: bool = False

@dataclass
class UnsafeBlock(ASTNode):
    """unsafe { ... } -- syntactic marker only."""
    body: List[Statement] = field(default_factory=list)

@dataclass
class LoopBlock(ASTNode):
    """loop { ... } -- unconditional infinite loop."""
    body: List[Statement] = field(default_factory=list)

@dataclass
class ExpressionStmt(ASTNode):
    """Expression evaluated for its side effects."""
    expr: Expression = None  # type: ignore

@dataclass
class Assignment(ASTNode):
    """target = value; target should be an lvalue (checked by backends)."""
    target: Expression = None  # type: ignore
    value: Expression = None   # type: ignore

@dataclass
class ClearScreen(ASTNode):
    """clear(); -- reset the text-mode screen."""

@dataclass
class Newline(ASTNode):
    """newline(); -- emit CR LF on the console."""

@dataclass
class Print(ASTNode):
    """print("text", color); -- write a string literal to the console."""
    text: str = ""
    color: int = 0x07


Statement = Union[
    Let, UnsafeBlock, LoopBlock, ExpressionStmt, Assignment,
    ClearScreen, Newline, Print,
]


# ──────────────────────────────────────────────
# Top-level items
# ──────────────────────────────────────────────

@dataclass
class GlobalVariable(ASTNode):
    """[volatile] let name: type;"""
    name: str = ""
    var_type: Type = field(default_factory=lambda: ScalarType("u64"))
    is_volatile: bool = False
    attributes: List[Attribute] = field(default_factory=list)

    @property
    def address(self) -> Optional[int]:
        attr = find_attr(self.attributes, AddressAttr)
        return attr.value if attr else None

@dataclass
class Function(ASTNode):
    """fn name() -> type { body }"""
    name: str = ""
    return_type: Type = field(default_factory=lambda: ScalarType("void"))
    attributes: List[Attribute] = field(default_factory=list)
    body: List[Statement] = field(default_factory=list)

    @property
    def is_interrupt(self) -> bool:
        return find_attr(self.attributes, InterruptAttr) is not None

    @property
    def alignment(self) -> Optional[int]:
        attr = find_attr(self.attributes, AlignAttr)
        return attr.value if attr else None


Item = Union[GlobalVariable, Function]


@dataclass
class Program(ASTNode):
    """Root node: ordered list of top-level items."""
    items: List[Item] = field(default_factory=list)

    @property
    def functions(self) -> List[Function]:
        return [item for item in self.items if isinstance(item, Function)]

    @property
    def globals(self) -> List[GlobalVariable]:
        return [item for item in self.items if isinstance(item, GlobalVariable)]

"""Syntax tree of the zz language: names, locations, types, expressions, statements and definitions."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union


class CompileError(Exception):
    """A fatal diagnostic, carrying notes that point at source locations."""

    def __init__(self, message: str, notes: Optional[list] = None):
        super().__init__(message)
        self.message = message
        self.notes = list(notes or [])


@dataclass(frozen=True)
class Location:
    """A span of source text in a named file."""

    file: str
    text: str = " "
    start: int = 0
    end: int = 1

    def __post_init__(self) -> None:
        if not 0 <= self.start <= self.end <= len(self.text):
            raise ValueError(
                f"invalid span {self.start}..{self.end} in text of length {len(self.text)}"
            )

    @property
    def line(self) -> int:
        """1-based line of the start of the span."""
        return self.text.count("\n", 0, self.start) + 1

    @property
    def end_line(self) -> int:
        """1-based line of the end of the span."""
        return self.text.count("\n", 0, self.end) + 1

    @property
    def fragment(self) -> str:
        return self.text[self.start:self.end]

    @classmethod
    def builtin(cls) -> "Location":
        return cls(file="prelude", text=" ", start=0, end=1)

    @classmethod
    def generated(cls, here: "Location", text: str) -> "Location":
        """A location for generated code placed right after the end of ``here``."""
        line = here.end_line
        body = "\n" * line + text
        return cls(file=here.file, text=body, start=line, end=line + len(text))

    def __str__(self) -> str:
        return f"{self.file}:{self.line}"


@dataclass(frozen=True)
class Name:
    """A ``::`` separated path. Absolute names start with an empty part."""

    parts: tuple = ()

    @classmethod
    def parse(cls, text: str) -> "Name":
        return cls(tuple(text.split("::")))

    def is_absolute(self) -> bool:
        return len(self.parts) > 0 and self.parts[0] == ""

    def parent(self) -> "Name":
        if not self.parts:
            raise IndexError("empty name has no parent")
        return Name(self.parts[:-1])

    def child(self, part: str) -> "Name":
        return Name(self.parts + (part,))

    def last(self) -> str:
        if not self.parts:
            raise IndexError("empty name has no last part")
        return self.parts[-1]

    def __len__(self) -> int:
        return len(self.parts)

    def __iter__(self):
        return iter(self.parts)

    def __str__(self) -> str:
        return "::".join(self.parts)


@dataclass
class Tags:
    """Key to (value to location) annotations attached to types and arguments."""

    entries: dict = field(default_factory=dict)

    def get(self, key: str) -> Optional[dict]:
        return self.entries.get(key)

    def insert(self, key: str, value: str, loc: Location) -> None:
        self.entries.setdefault(key, {})[value] = loc

    def remove(self, key: str, value: Optional[str] = None) -> None:
        """Drop a key, or only one of its values when ``value`` is given."""
        values = self.entries.pop(key, None)
        if values is None or value is None:
            return
        values.pop(value, None)
        if values:
            self.entries[key] = values

    def __contains__(self, key: str) -> bool:
        return key in self.entries

    def __len__(self) -> int:
        return len(self.entries)


class Storage(enum.Enum):
    STATIC = "static"
    THREAD_LOCAL = "thread_local"
    ATOMIC = "atomic"


class Visibility(enum.Enum):
    SHARED = "shared"
    OBJECT = "object"
    EXPORT = "export"


class TailKind(enum.Enum):
    NONE = "none"
    DYNAMIC = "dynamic"
    STATIC = "static"
    BIND = "bind"


@dataclass
class Tail:
    """Trailing flexible storage of a type: none, dynamic, a fixed size or bound to a name."""

    kind: TailKind = TailKind.NONE
    size: Optional[int] = None
    binding: Optional[str] = None
    loc: Optional[Location] = None

    def __str__(self) -> str:
        if self.kind is TailKind.NONE:
            return ""
        if self.kind is TailKind.DYNAMIC:
            return "+"
        if self.kind is TailKind.STATIC:
            return f"+{self.size}"
        return f"+{self.binding}"


class Primitive(enum.Enum):
    NEW = "new"
    ELIDED = "elided"
    U8 = "u8"
    U16 = "u16"
    U32 = "u32"
    U64 = "u64"
    U128 = "u128"
    I8 = "i8"
    I16 = "i16"
    I32 = "i32"
    I64 = "i64"
    I128 = "i128"
    INT = "int"
    UINT = "uint"
    ISIZE = "isize"
    USIZE = "usize"
    BOOL = "bool"
    F32 = "f32"
    F64 = "f64"
    ULITERAL = "uliteral"
    ILITERAL = "iliteral"

    def is_signed(self) -> bool:
        return self in _SIGNED

    def __str__(self) -> str:
        return self.value


_SIGNED = frozenset({
    Primitive.I8, Primitive.I16, Primitive.I32, Primitive.I64, Primitive.I128,
    Primitive.INT, Primitive.ISIZE, Primitive.ILITERAL,
})


@dataclass
class Pointer:
    loc: Location
    tags: Tags = field(default_factory=Tags)


@dataclass(eq=False)
class Typed:
    """A type reference: a primitive or a name, with pointer levels and a tail."""

    t: Union[Primitive, Name]
    loc: Location
    ptr: list = field(default_factory=list)
    tail: Tail = field(default_factory=Tail)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Typed):
            return NotImplemented
        return (
            self.t == other.t
            and len(self.ptr) == len(other.ptr)
            and self.tail == other.tail
        )

    __hash__ = None  # type: ignore[assignment]

    def __str__(self) -> str:
        return f"{self.t}{'*' * len(self.ptr)}{self.tail}"


class InfixOperator(enum.Enum):
    EQUALS = "=="
    NEQUALS = "!="
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"
    BITXOR = "^"
    BOOLAND = "&&"
    BOOLOR = "||"
    MOREEQ = ">="
    LESSEQ = "<="
    LESSTHAN = "<"
    MORETHAN = ">"
    SHIFTLEFT = "<<"
    SHIFTRIGHT = ">>"
    MODULO = "%"
    BITAND = "&"
    BITOR = "|"

    def returns_boolean(self) -> bool:
        return self in _RETURNS_BOOLEAN

    def takes_boolean(self) -> bool:
        return self in _TAKES_BOOLEAN

    def takes_integer(self) -> bool:
        return self not in (InfixOperator.BOOLAND, InfixOperator.BOOLOR)


_TAKES_BOOLEAN = frozenset({
    InfixOperator.EQUALS, InfixOperator.NEQUALS,
    InfixOperator.BOOLAND, InfixOperator.BOOLOR,
})
_RETURNS_BOOLEAN = _TAKES_BOOLEAN | {
    InfixOperator.MOREEQ, InfixOperator.LESSEQ,
    InfixOperator.LESSTHAN, InfixOperator.MORETHAN,
}


class PrefixOperator(enum.Enum):
    BOOLNOT = "!"
    BITNOT = "~"
    INCREMENT = "++"
    DECREMENT = "--"
    ADDRESS_OF = "&"
    DEREF = "*"


class PostfixOperator(enum.Enum):
    INCREMENT = "++"
    DECREMENT = "--"


class AssignOperator(enum.Enum):
    BITOR = "|="
    BITAND = "&="
    ADD = "+="
    SUB = "-="
    EQ = "="


_EMIT_KINDS = ("default", "skip", "error")


@dataclass(frozen=True)
class EmitBehaviour:
    """How a call is emitted: normally, not at all, or as an error with a message."""

    kind: str = "default"
    loc: Optional[Location] = None
    message: str = ""

    def __post_init__(self) -> None:
        if self.kind not in _EMIT_KINDS:
            raise ValueError(f"unknown emit behaviour {self.kind!r}")


# Expressions


@dataclass
class NameExpr:
    typed: Typed

    @property
    def loc(self) -> Location:
        return self.typed.loc


@dataclass
class MemberAccess:
    loc: Location
    lhs: "Expression"
    op: str
    rhs: str


@dataclass
class ArrayAccess:
    loc: Location
    lhs: "Expression"
    rhs: "Expression"


@dataclass
class LiteralString:
    loc: Location
    v: bytes


@dataclass
class LiteralChar:
    loc: Location
    v: int


@dataclass
class Literal:
    loc: Location
    v: str


@dataclass
class Call:
    loc: Location
    name: "Expression"
    args: list = field(default_factory=list)
    expanded: bool = False
    emit: EmitBehaviour = field(default_factory=EmitBehaviour)


@dataclass
class Infix:
    loc: Location
    lhs: "Expression"
    rhs: "Expression"
    op: InfixOperator


@dataclass
class Cast:
    loc: Location
    into: Typed
    expr: "Expression"


@dataclass
class UnaryPost:
    loc: Location
    op: PostfixOperator
    expr: "Expression"


@dataclass
class UnaryPre:
    loc: Location
    op: PrefixOperator
    expr: "Expression"


@dataclass
class StructInit:
    loc: Location
    typed: Typed
    fields: list = field(default_factory=list)


@dataclass
class ArrayInit:
    loc: Location
    fields: list = field(default_factory=list)


Expression = Union[
    NameExpr, MemberAccess, ArrayAccess, LiteralString, LiteralChar, Literal,
    Call, Infix, Cast, UnaryPost, UnaryPre, StructInit, ArrayInit,
]


# Statements


@dataclass
class Block:
    end: Location
    statements: list = field(default_factory=list)
    expanded: bool = False


@dataclass
class Mark:
    lhs: Expression
    loc: Location
    key: str
    value: str


@dataclass
class Label:
    loc: Location
    label: str


@dataclass
class Assign:
    loc: Location
    lhs: Expression
    op: AssignOperator
    rhs: Expression


@dataclass
class ExprStatement:
    loc: Location
    expr: Expression


@dataclass
class Switch:
    loc: Location
    expr: Expression
    cases: list = field(default_factory=list)
    default: Optional[Block] = None


@dataclass
class Continue:
    loc: Location


@dataclass
class Break:
    loc: Location


@dataclass
class Return:
    loc: Location
    expr: Optional[Expression] = None


@dataclass
class Var:
    """A local variable; ``is_array`` with ``array_len`` None means an unsized array."""

    loc: Location
    typed: Typed
    name: str
    tags: Tags = field(default_factory=Tags)
    assign: Optional[Expression] = None
    is_array: bool = False
    array_len: Optional[Expression] = None


@dataclass
class While:
    expr: Expression
    body: Block


@dataclass
class For:
    e1: list
    e2: Optional[Expression]
    e3: list
    body: Block


@dataclass
class If:
    branches: list = field(default_factory=list)


@dataclass
class BlockStatement:
    block: Block


@dataclass
class Unsafe:
    block: Block


@dataclass
class CBlock:
    loc: Location
    lit: str


Statement = Union[
    Mark, Label, Assign, ExprStatement, Switch, Continue, Break, Return,
    Var, While, For, If, BlockStatement, Unsafe, CBlock,
]


# Arguments and fields


@dataclass
class AnonArg:
    typed: Typed


@dataclass
class NamedArg:
    typed: Typed
    name: str
    loc: Location
    tags: Tags = field(default_factory=Tags)


@dataclass
class Field:
    """A struct field; ``is_array`` with ``array_len`` None is a trailing flexible array."""

    typed: Typed
    name: str
    loc: Location
    tags: Tags = field(default_factory=Tags)
    is_array: bool = False
    array_len: Optional[Expression] = None


# Definitions


@dataclass
class StaticDef:
    typed: Typed
    expr: Expression
    tags: Tags = field(default_factory=Tags)
    storage: Storage = Storage.STATIC
    is_array: bool = False
    array_len: Optional[Expression] = None


@dataclass
class ConstDef:
    typed: Typed
    expr: Expression


@dataclass
class FunctionDef:
    nameloc: Location
    body: Block
    ret: Optional[AnonArg] = None
    args: list = field(default_factory=list)
    hints: dict = field(default_factory=dict)
    attr: dict = field(default_factory=dict)
    vararg: bool = False
    callassert: list = field(default_factory=list)
    calleffect: list = field(default_factory=list)
    callattests: list = field(default_factory=list)


@dataclass
class TheoryDef:
    ret: Optional[AnonArg] = None
    args: list = field(default_factory=list)
    attr: dict = field(default_factory=dict)


@dataclass
class FntypeDef:
    nameloc: Location
    ret: Optional[AnonArg] = None
    args: list = field(default_factory=list)
    attr: dict = field(default_factory=dict)
    vararg: bool = False


@dataclass
class StructDef:
    fields: list = field(default_factory=list)
    packed: bool = False
    tail: Tail = field(default_factory=Tail)
    union: bool = False
    impls: dict = field(default_factory=dict)


@dataclass
class EnumDef:
    names: list = field(default_factory=list)


@dataclass
class MacroDef:
    body: Block
    args: list = field(default_factory=list)


@dataclass
class TestcaseDef:
    fields: list = field(default_factory=list)


@dataclass
class IncludeDef:
    expr: str
    loc: Location
    fqn: Name
    inline: bool = False
    needs: list = field(default_factory=list)


Def = Union[
    StaticDef, ConstDef, FunctionDef, TheoryDef, FntypeDef, StructDef,
    EnumDef, MacroDef, TestcaseDef, IncludeDef,
]


@dataclass
class Local:
    name: str
    vis: Visibility
    loc: Location
    definition: Def
    doc: str = ""


@dataclass
class Import:
    name: Name
    loc: Location
    alias: Optional[str] = None
    local: list = field(default_factory=list)
    vis: Visibility = Visibility.OBJECT
    inline: bool = False
    needs: list = field(default_factory=list)


@dataclass
class Module:
    name: Name = field(default_factory=Name)
    source: Path = field(default_factory=Path)
    locals: list = field(default_factory=list)
    imports: list = field(default_factory=list)
    sources: set = field(default_factory=set)
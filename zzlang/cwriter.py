"""Writing C source text for types, expressions, statements and blocks."""

from __future__ import annotations

import enum
import io
import re
from dataclasses import dataclass, field
from typing import Optional, TextIO

from . import ast
from .ast import CompileError, Name, Primitive, TailKind


class TypeComplete(enum.Enum):
    """Whether a flattened declaration is complete or only forward declared."""

    COMPLETE = "complete"
    INCOMPLETE = "incomplete"


@dataclass
class FlatModule:
    """A module with all of its dependencies flattened into declaration order."""

    name: Name
    d: list = field(default_factory=list)
    aliases: dict = field(default_factory=dict)
    typevariants: dict = field(default_factory=dict)
    sources: set = field(default_factory=set)
    deps: set = field(default_factory=set)


_C_PRIMITIVES = {
    Primitive.U8: "uint8_t",
    Primitive.U16: "uint16_t",
    Primitive.U32: "uint32_t",
    Primitive.U64: "uint64_t",
    Primitive.U128: "uint128_t",
    Primitive.I8: "int8_t",
    Primitive.I16: "int16_t",
    Primitive.I32: "int32_t",
    Primitive.I64: "int64_t",
    Primitive.I128: "int128_t",
    Primitive.INT: "int",
    Primitive.UINT: "unsigned int",
    Primitive.ISIZE: "intptr_t",
    Primitive.USIZE: "uintptr_t",
    Primitive.BOOL: "bool",
    Primitive.F32: "float",
    Primitive.F64: "double",
}

_MANGLE = re.compile(r"[^A-Za-z0-9_]")

_SIMPLE_ESCAPES = {
    ord("\\"): "\\\\",
    ord("\t"): "\\t",
    ord("\r"): "\\r",
    ord("\n"): "\\n",
}


def escape_literal(c: int, isstr: bool) -> str:
    """Escape one byte for use inside a C string (``isstr``) or char literal."""
    if c == ord('"') and isstr:
        return '\\"'
    if c == ord("'") and not isstr:
        return "\\'"
    simple = _SIMPLE_ESCAPES.get(c)
    if simple is not None:
        return simple
    if 32 <= c < 127:
        return chr(c)
    if isstr:
        return f'""\\x{c:x}""'
    return f"\\x{c:x}"


class CodeWriter:
    """Writes C code for the parts of a module into a text stream."""

    def __init__(self, module: FlatModule, out: Optional[TextIO] = None, header: bool = False):
        self.module = module
        self.out = out if out is not None else io.StringIO()
        self.header = header
        self.inside_macro = False
        self.cur_loc: Optional[ast.Location] = None
        self.emit_as_extern: set = set()

    def _write(self, text: str) -> None:
        self.out.write(text)

    def _newline(self) -> None:
        self._write("\\\n" if self.inside_macro else "\n")

    # names

    def to_local_name(self, name: Name) -> str:
        if not name.is_absolute():
            return "_".join(name.parts)
        if name in self.emit_as_extern:
            return name.last()
        alias = self.module.aliases.get(name)
        if alias is not None:
            return alias
        if len(name) > 1 and name.parts[1] == "ext":
            return name.last()
        return "_".join(name.parts[1:])

    def to_local_name_mangle(self, name: Name) -> str:
        return _MANGLE.sub("_", self.to_local_name(name))

    def to_local_typed_name(self, typed: ast.Typed) -> str:
        t = typed.t
        if isinstance(t, Name):
            s = self.to_local_name(t)
            if typed.tail.kind is TailKind.STATIC:
                s = f"{s}_{typed.tail.size}"
            return s
        c_name = _C_PRIMITIVES.get(t)
        if c_name is None:
            raise CompileError(
                "ICE: untyped literal ended up in emitter",
                [(typed.loc, "this should have been resolved earlier")],
            )
        return c_name

    # locations and pointers

    def emit_loc(self, loc: ast.Location) -> None:
        cur = self.cur_loc
        if cur is not None and cur.file == loc.file and cur.line == loc.line:
            return
        self.cur_loc = loc
        if self.header or self.inside_macro:
            return
        self._write(f'\n#line {loc.line} "{loc.file.replace(chr(92), chr(92) * 2)}"\n')

    def emit_pointer(self, pointers: list) -> None:
        for ptr in pointers:
            if "mut" not in ptr.tags:
                self._write(" const ")
            self._write("* ")

    # expressions

    def emit_expr(self, expr: ast.Expression) -> None:
        match expr:
            case ast.ArrayInit(fields=fields, loc=loc):
                self.emit_loc(loc)
                self._write("{")
                for item in fields:
                    self.emit_expr(item)
                    self._write(",")
                self._write("}")
            case ast.StructInit(typed=typed, fields=fields, loc=loc):
                self.emit_loc(loc)
                self._write(f"    ({self.to_local_typed_name(typed)}")
                self._write("){")
                for name, item in fields:
                    self._write(f".{name} = ")
                    self.emit_expr(item)
                    self._write(",")
                self._write("}")
            case ast.UnaryPost(expr=inner, loc=loc, op=op):
                self._write("(")
                self.emit_loc(loc)
                self.emit_expr(inner)
                self._write(f" {op.value}")
                self._write(")")
            case ast.UnaryPre(expr=inner, loc=loc, op=op):
                self._write("(")
                self.emit_loc(loc)
                self._write(f" {op.value}")
                self.emit_expr(inner)
                self._write(")")
            case ast.Cast(into=into, expr=inner):
                self._write(f"    ({self.to_local_typed_name(into)}")
                self.emit_pointer(into.ptr)
                self._write(")(")
                self.emit_expr(inner)
                self._write(")")
            case ast.NameExpr(typed=typed):
                self.emit_loc(typed.loc)
                self._write(f"    {self.to_local_typed_name(typed)}")
            case ast.LiteralString(loc=loc, v=v):
                self.emit_loc(loc)
                self._write('    "')
                self._write("".join(escape_literal(c, True) for c in v))
                self._write('"')
            case ast.LiteralChar(loc=loc, v=v):
                self.emit_loc(loc)
                self._write("    '")
                self._write(escape_literal(v, False))
                self._write("'")
            case ast.Literal(loc=loc, v=v):
                self.emit_loc(loc)
                self._write(f"    {v}")
            case ast.Call(loc=loc, name=name, args=args, emit=emit):
                if emit.kind == "skip":
                    return
                if emit.kind == "error":
                    raise CompileError(emit.message, [(emit.loc, "here")])
                self.emit_loc(loc)
                self.emit_expr(name)
                self._write("(")
                for index, arg in enumerate(args):
                    if index:
                        self._write(",")
                    self.emit_expr(arg)
                self._write("    )")
            case ast.Infix(lhs=lhs, rhs=rhs, op=op, loc=loc):
                self._write("(")
                self.emit_expr(lhs)
                self.emit_loc(loc)
                self._write(f" {op.value}")
                self.emit_expr(rhs)
                self._write("  )")
            case ast.MemberAccess(loc=loc, lhs=lhs, rhs=rhs, op=op):
                self.emit_loc(loc)
                self.emit_expr(lhs)
                self._write(f" {op}{rhs}")
            case ast.ArrayAccess(loc=loc, lhs=lhs, rhs=rhs):
                self.emit_loc(loc)
                self.emit_expr(lhs)
                self._write(" [ ")
                self.emit_expr(rhs)
                self._write("]")
            case _:
                raise TypeError(f"not an expression: {expr!r}")

    # statements

    def emit_statement(self, stm: ast.Statement) -> bool:
        """Write one statement; return True if it needs a terminating semicolon."""
        match stm:
            case ast.Mark():
                return False
            case ast.Break(loc=loc):
                self.emit_loc(loc)
                self._write("break")
                return True
            case ast.Label(loc=loc, label=label):
                self.emit_loc(loc)
                self._write(f"{label}:")
                self._newline()
                return False
            case ast.Unsafe(block=block) | ast.BlockStatement(block=block):
                self.emit_block(block, True)
                return False
            case ast.CBlock(loc=loc, lit=lit):
                self.emit_loc(loc)
                self._write(lit)
                return False
            case ast.For(e1=e1, e2=e2, e3=e3, body=body):
                self._write("  for (")
                self._for_clause(e1)
                self._write(";")
                if e2 is not None:
                    self.emit_expr(e2)
                self._write(";")
                self._for_clause(e3)
                self._write(")")
                self.emit_block(body, True)
                return False
            case ast.While(expr=cond, body=body):
                self._write("while (")
                self.emit_expr(cond)
                self._write(")")
                self.emit_block(body, True)
                return False
            case ast.If(branches=branches):
                if not branches:
                    return False
                first, *rest = branches
                loc, cond, body = first
                if cond is None:
                    raise CompileError("if without condition", [(loc, "here")])
                self._write("if (")
                self.emit_expr(cond)
                self._write(")")
                self.emit_block(body, True)
                for _, cond, body in rest:
                    if cond is not None:
                        self._write(" else if (")
                        self.emit_expr(cond)
                        self._write(")")
                    else:
                        self._write(" else ")
                    self.emit_block(body, True)
                return False
            case ast.Assign(lhs=lhs, rhs=rhs, loc=loc, op=op):
                self.emit_loc(loc)
                self.emit_expr(lhs)
                self._write(f" {op.value} ")
                self.emit_expr(rhs)
                return True
            case ast.Var():
                self.emit_loc(stm.loc)
                self._write(f"  {self.to_local_typed_name(stm.typed)}")
                self.emit_pointer(stm.typed.ptr)
                if "mut" not in stm.tags:
                    self._write(" const ")
                self._write(f" {stm.name} ")
                if stm.is_array:
                    self._write(" [ ")
                    if stm.array_len is not None:
                        self.emit_expr(stm.array_len)
                    self._write(" ] ")
                self.emit_loc(stm.loc)
                if stm.assign is not None:
                    self._write(" = ")
                    self.emit_expr(stm.assign)
                return True
            case ast.ExprStatement(expr=inner, loc=loc):
                self.emit_loc(loc)
                self.emit_expr(inner)
                return True
            case ast.Continue(loc=loc):
                self.emit_loc(loc)
                self._write("continue")
                return True
            case ast.Return(expr=inner, loc=loc):
                self.emit_loc(loc)
                self._write("  return ")
                if inner is not None:
                    self.emit_expr(inner)
                return True
            case ast.Switch(loc=loc, expr=cond, cases=cases, default=default):
                self.emit_loc(loc)
                self._write("switch (\n")
                self.emit_expr(cond)
                self._write(") {\n")
                for conds, body in cases:
                    for c in conds:
                        self._write("case ")
                        self.emit_expr(c)
                        self._write(":\n")
                    self._write("{\n")
                    self.emit_block(body, True)
                    self._write("break;}\n")
                if default is not None:
                    self._write("default: {\n")
                    self.emit_block(default, True)
                    self._write("break;}\n")
                self._write("}\n")
                return False
            case _:
                raise TypeError(f"not a statement: {stm!r}")

    def _for_clause(self, statements: list) -> None:
        for index, s in enumerate(statements):
            if index:
                self._write(",")
            self._newline()
            self.emit_statement(s)

    def emit_block(self, block: ast.Block, realblock: bool) -> None:
        if realblock:
            self._write("{\\\n" if self.inside_macro else "{\n")
        for stm in block.statements:
            if self.emit_statement(stm):
                self._write(";")
            self._newline()
        if realblock:
            self._write("}\\\n" if self.inside_macro else "\n}\n")

    def function_args(self, args: list) -> None:
        for index, arg in enumerate(args):
            if index:
                self._write(", ")
            self._write(self.to_local_typed_name(arg.typed))
            self.emit_pointer(arg.typed.ptr)
            if "mut" not in arg.tags:
                self._write(" const ")
            self._write(f" {arg.name}")
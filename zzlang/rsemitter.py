"""Emitting Rust FFI bindings for the public parts of a flattened module."""

from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import Optional, Union

from . import ast
from .ast import CompileError, Name, Primitive, TailKind
from .cwriter import FlatModule, TypeComplete, escape_literal

log = logging.getLogger(__name__)

_RUST_PRIMITIVES = {
    Primitive.U8: "u8",
    Primitive.U16: "u16",
    Primitive.U32: "u32",
    Primitive.U64: "u64",
    Primitive.U128: "u128",
    Primitive.I8: "i8",
    Primitive.I16: "i16",
    Primitive.I32: "i32",
    Primitive.I64: "i64",
    Primitive.I128: "i128",
    Primitive.INT: "std::os::raw::c_int",
    Primitive.UINT: "std::os::raw::c_uint",
    Primitive.ISIZE: "isize",
    Primitive.USIZE: "usize",
    Primitive.BOOL: "bool",
    Primitive.F32: "f32",
    Primitive.F64: "f64",
}

_STRUCT_WRAPPER = """
pub struct {name} {{
    inner:  Box<__Inner{name}>,
    tail:   usize,
}}

impl std::ops::Deref for {name} {{
    type Target = __Inner{name};

    fn deref(&self) -> &__Inner{name} {{
        self.inner.deref()
    }}
}}

impl std::clone::Clone for {name} {{
    fn clone(&self) -> Self {{
        unsafe {{
            let size = sizeof_{name} + self.tail;


            let mut s = Box::new(vec![0u8; size]);
            std::ptr::copy_nonoverlapping(self._self(), s.as_mut_ptr(), size);

            let ss : *mut __Inner{name}= std::mem::transmute(Box::leak(s).as_mut_ptr());

            Self {{ inner: Box::from_raw(ss), tail: self.tail }}
        }}
    }}
}}

impl {name} {{
    pub fn _tail(&mut self) -> usize {{
        self.tail
    }}
    pub fn _self_mut(&mut self) -> *mut u8 {{
        unsafe {{ std::mem::transmute(self.inner.as_mut() as *mut __Inner{name}) }}
    }}
    pub fn _self(&self) -> *const u8 {{
        unsafe {{ std::mem::transmute(self.inner.as_ref() as *const __Inner{name}) }}
    }}
}}

"""


def rust_outname(stage, module: FlatModule) -> str:
    """Return the path of the Rust file emitted for ``module``."""
    return f"target/{stage}/rs/{'_'.join(module.name.parts[1:])}.rs"


class RustEmitter:
    """Writes the structs and function declarations of a module as Rust bindings."""

    def __init__(self, stage, module: FlatModule, root: Union[str, os.PathLike] = "."):
        self.module = module
        self.path = Path(root) / rust_outname(stage, module)
        self.out = io.StringIO()

    @property
    def text(self) -> str:
        """Everything written so far."""
        return self.out.getvalue()

    def _write(self, text: str) -> None:
        self.out.write(text)

    def _variants(self, local: ast.Local) -> list:
        variants = self.module.typevariants.get(Name.parse(local.name), ())
        return [
            (ast.Local(local.name + f"_{v}", local.vis, local.loc, local.definition, local.doc), v)
            for v in variants
        ]

    def _own_complete(self) -> list:
        return [
            local
            for local, complete in self.module.d
            if complete == TypeComplete.COMPLETE
            and Name.parse(local.name).parent() == self.module.name
        ]

    def emit(self) -> Path:
        """Write the bindings file and return its path."""
        log.debug("emitting rs %s", self.module.name)
        own = self._own_complete()

        self._write("extern crate libc;\n")
        for local in own:
            if isinstance(local.definition, ast.StructDef):
                self.emit_struct(local, None)
                for variant, v in self._variants(local):
                    self.emit_struct(variant, v)

        self._write("extern {\n")
        for local in own:
            match local.definition:
                case ast.StructDef():
                    self.emit_struct_len(local, None)
                    for variant, v in self._variants(local):
                        self.emit_struct_len(variant, v)
                case ast.EnumDef():
                    self.emit_enum(local)
                case ast.FunctionDef():
                    if not local.name.endswith("::main"):
                        self.emit_decl(local)
                case _:
                    pass
            self._write("\n")
        self._write("}\n")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self.text, encoding="utf-8", errors="surrogateescape")
        return self.path

    # names

    def to_local_name(self, name: Name) -> str:
        if not name.is_absolute():
            return "_".join(name.parts)
        alias = self.module.aliases.get(name)
        if alias is not None:
            return alias
        if len(name) > 1 and name.parts[1] == "ext":
            return name.last()
        return "_".join(name.parts[1:])

    def to_local_typed_name(self, typed: ast.Typed) -> Optional[str]:
        """Return the Rust type for ``typed``, or None if it cannot be represented."""
        t = typed.t
        if isinstance(t, Name):
            if len(typed.ptr) != 1:
                return None
            return "u8"
        rust_name = _RUST_PRIMITIVES.get(t)
        if rust_name is None:
            raise CompileError(
                "ICE: untyped ended up in emitter",
                [(typed.loc, "this should have been resolved earlier")],
            )
        return rust_name

    # declarations

    def emit_enum(self, local: ast.Local) -> None:
        name = self.to_local_name(Name.parse(local.name))
        self._write(f"enum {name} {{\n")
        for member, literal in local.definition.names:
            self._write(f"    {name}_{member}")
            if literal is not None:
                self._write(f" = {literal}")
            self._write(",\n")
        self._write("\n};\n")

    def emit_struct_len(self, local: ast.Local, tail_variant: Optional[int]) -> None:
        full = Name.parse(local.name)
        self._write(f'    #[link_name = "sizeof_{self.to_local_name(full)}"]\n')
        self._write(f"    pub static sizeof_{full.last()}: libc::size_t;\n")

    def emit_struct(self, local: ast.Local, tail_variant: Optional[int]) -> None:
        struct = local.definition
        shortname = Name.parse(local.name).last()

        self._write(_STRUCT_WRAPPER.format(name=shortname))
        self._write(f"\n\n#[repr(C)]\npub struct __Inner{shortname} {{\n")

        last = len(struct.fields) - 1
        for index, fld in enumerate(struct.fields):
            fieldtype = self.to_local_typed_name(fld.typed)
            if fieldtype is None:
                continue
            if fld.is_array and fld.array_len is not None:
                self._write(f"    pub {fld.name} : [")
                self._emit_pointer(fld.typed.ptr)
                self._write(f"{fieldtype};")
                self.emit_expr(fld.array_len)
                self._write("]")
            elif fld.is_array:
                if index != last:
                    raise CompileError(
                        "tail field has no be the last field in a struct",
                        [(fld.loc, "tail field would displace next field")],
                    )
                if tail_variant is not None:
                    self._write(f"    pub {fld.name} : [")
                    self._emit_pointer(fld.typed.ptr)
                    self._write(f";{tail_variant}]")
                else:
                    # Unsized fields have no stable layout on the Rust side.
                    self._write(f"    // {fld.name}")
            else:
                self._write(f"    pub {fld.name} :{fieldtype}")
            self._write(" ,\n")
        self._write("}\n")

        self._write(f"impl {shortname} {{\n")
        has_tail = struct.tail.kind in (TailKind.DYNAMIC, TailKind.STATIC, TailKind.BIND)
        if not has_tail or tail_variant is not None:
            self._write("    pub fn new() -> Self {\n")
            self._write("        let tail = 0;\n")
            self._write(f"        let size = unsafe{{sizeof_{shortname}}};\n")
        else:
            self._write("    pub fn new(tail:  usize) -> Self {\n")
            self._write(f"        let size = unsafe{{sizeof_{shortname}}} + tail;\n")
        self._write("        unsafe {\n")
        self._write("            let s = Box::new(vec![0u8; size]);\n")
        self._write(
            f"            let ss : *mut __Inner{shortname}= "
            "std::mem::transmute(Box::leak(s).as_mut_ptr());\n"
        )
        self._write("            Self { inner: Box::from_raw(ss), tail } \n")
        self._write("        }\n")
        self._write("    }\n")
        self._write("}\n")

    def _function_args(self, args: list) -> None:
        first = True
        for arg in args:
            argtype = self.to_local_typed_name(arg.typed)
            if argtype is None:
                continue
            if not first:
                self._write(", ")
            first = False
            self._write(f" Z{arg.name}: ")
            self._emit_pointer(arg.typed.ptr)
            self._write(argtype)

    def emit_decl(self, local: ast.Local) -> None:
        """Declare an external function; skipped if its return type is not representable."""
        fn = local.definition
        full = Name.parse(local.name)
        rettype = None
        if fn.ret is not None:
            rettype = self.to_local_typed_name(fn.ret.typed)
            if rettype is None:
                return

        self._write(f'    #[link_name = "{self.to_local_name(full)}"]\n')
        self._write(f"    pub fn {full.last()}(")
        self._function_args(fn.args)
        self._write(")")
        if fn.ret is not None:
            self._write("  -> ")
            self._emit_pointer(fn.ret.typed.ptr)
            self._write(rettype)
        self._write(";\n")

    def _emit_pointer(self, pointers: list) -> None:
        for ptr in pointers:
            self._write("*")
            self._write("mut " if "mut" in ptr.tags else "const ")

    # expressions

    def emit_expr(self, expr: ast.Expression) -> None:
        match expr:
            case ast.ArrayInit() | ast.StructInit() | ast.Cast():
                pass
            case ast.UnaryPost(expr=inner, op=op):
                self._write("(")
                self.emit_expr(inner)
                self._write(f" {op.value}")
                self._write(")")
            case ast.UnaryPre(expr=inner, op=op):
                self._write("(")
                self._write(f" {op.value}")
                self.emit_expr(inner)
                self._write(")")
            case ast.NameExpr(typed=typed):
                rendered = self.to_local_typed_name(typed)
                self._write(f"    {rendered if rendered is not None else '()'}")
            case ast.LiteralString(v=v):
                self._write('    "')
                self._write("".join(escape_literal(c, True) for c in v))
                self._write('"')
            case ast.LiteralChar(v=v):
                self._write("    '")
                self._write(escape_literal(v, False))
                self._write("'")
            case ast.Literal(v=v):
                self._write(f"    {v}")
            case ast.Call(name=name, args=args, emit=emit):
                if emit.kind == "skip":
                    return
                if emit.kind == "error":
                    raise CompileError(emit.message, [(emit.loc, "here")])
                self.emit_expr(name)
                self._write("(")
                for index, arg in enumerate(args):
                    if index:
                        self._write(",")
                    self.emit_expr(arg)
                self._write("    )")
            case ast.Infix(lhs=lhs, rhs=rhs, op=op):
                self._write("(")
                self.emit_expr(lhs)
                self._write(f" {op.value}")
                self.emit_expr(rhs)
                self._write("  )")
            case ast.MemberAccess(lhs=lhs, rhs=rhs, op=op):
                self.emit_expr(lhs)
                self._write(f" {op}{rhs}")
            case ast.ArrayAccess(lhs=lhs, rhs=rhs):
                self.emit_expr(lhs)
                self._write(" [ ")
                self.emit_expr(rhs)
                self._write("]")
            case _:
                raise TypeError(f"not an expression: {expr!r}")
import dataclasses

import pytest

from zzlang import ast
from zzlang.ast import CompileError, Location, Name, Primitive, TailKind, Visibility
from zzlang.cwriter import FlatModule, TypeComplete
from zzlang.rsemitter import RustEmitter, rust_outname

LOC = Location.builtin()
MOD = Name(("", "mymod"))


def typed(t, pointers=0, mut=False):
    ptrs = []
    for _ in range(pointers):
        tags = ast.Tags()
        if mut:
            tags.insert("mut", "", LOC)
        ptrs.append(ast.Pointer(loc=LOC, tags=tags))
    result = ast.Typed(t=t, loc=LOC)
    result.ptr = ptrs
    return result


def arg(name, t):
    return ast.NamedArg(typed=t, name=name, loc=LOC, tags=ast.Tags())


def function(args, ret=None):
    return ast.FunctionDef(
        nameloc=LOC,
        ret=ret,
        args=args,
        hints={},
        attr={},
        body=ast.Block(end=LOC, statements=[], expanded=False),
        vararg=False,
        callassert=[],
        calleffect=[],
        callattests=[],
    )


def field(name, t, is_array=False, array_len=None):
    return ast.Field(typed=t, name=name, is_array=is_array, array_len=array_len, tags=ast.Tags(), loc=LOC)


def struct(fields, tail=None):
    if tail is None:
        tail = ast.Typed(t=Primitive.U8, loc=LOC).tail
    return ast.StructDef(fields=fields, packed=False, tail=tail, union=False, impls={})


def local(name, definition, vis=Visibility.EXPORT):
    return ast.Local(str(MOD.child(name)), vis, LOC, definition, "")


def emitter(tmp_path, d=(), aliases=None):
    module = FlatModule(name=MOD, d=list(d), aliases=dict(aliases or {}))
    return RustEmitter("debug", module, root=tmp_path)


def test_outname_uses_stage_and_module():
    module = FlatModule(name=Name(("", "a", "b")))
    assert rust_outname("release", module) == "target/release/rs/a_b.rs"


@pytest.mark.parametrize(
    "prim, expected",
    [
        (Primitive.U8, "u8"),
        (Primitive.I64, "i64"),
        (Primitive.INT, "std::os::raw::c_int"),
        (Primitive.UINT, "std::os::raw::c_uint"),
        (Primitive.USIZE, "usize"),
        (Primitive.F64, "f64"),
    ],
)
def test_primitive_types(tmp_path, prim, expected):
    assert emitter(tmp_path).to_local_typed_name(typed(prim)) == expected


def test_named_type_only_as_single_pointer(tmp_path):
    e = emitter(tmp_path)
    other = MOD.child("Thing")
    assert e.to_local_typed_name(typed(other, pointers=1)) == "u8"
    assert e.to_local_typed_name(typed(other)) is None
    assert e.to_local_typed_name(typed(other, pointers=2)) is None


def test_unresolved_type_is_an_error(tmp_path):
    with pytest.raises(CompileError):
        emitter(tmp_path).to_local_typed_name(typed(Primitive.ELIDED))


def test_local_names(tmp_path):
    alias_target = MOD.child("aliased")
    e = emitter(tmp_path, aliases={alias_target: "short"})
    assert e.to_local_name(Name(("x", "y"))) == "x_y"
    assert e.to_local_name(Name(("", "ext", "<stdio.h>", "printf"))) == "printf"
    assert e.to_local_name(alias_target) == "short"
    assert e.to_local_name(MOD.child("f")) == "mymod_f"


def test_emit_decl_writes_link_name_and_args(tmp_path):
    e = emitter(tmp_path)
    fn = function(
        [arg("x", typed(Primitive.U32)), arg("skipped", typed(MOD.child("S"))), arg("p", typed(Primitive.U8, 1, mut=True))],
        ret=ast.AnonArg(typed=typed(Primitive.BOOL)),
    )
    e.emit_decl(local("f", fn))
    text = e.text
    assert '#[link_name = "mymod_f"]' in text
    assert "pub fn f(" in text
    assert " Zx: u32" in text
    assert " Zp: *mut u8" in text
    assert "Zskipped" not in text
    assert text.rstrip().endswith("-> bool;")


def test_emit_decl_skips_unrepresentable_return(tmp_path):
    e = emitter(tmp_path)
    fn = function([], ret=ast.AnonArg(typed=typed(MOD.child("S"))))
    e.emit_decl(local("g", fn))
    assert e.text == ""


def test_emit_enum(tmp_path):
    e = emitter(tmp_path)
    e.emit_enum(local("Color", ast.EnumDef(names=[("red", 0), ("green", 7)])))
    text = e.text
    assert text.startswith("enum mymod_Color {\n")
    assert "    mymod_Color_red = 0,\n" in text
    assert "    mymod_Color_green = 7,\n" in text


def test_emit_struct_len(tmp_path):
    e = emitter(tmp_path)
    e.emit_struct_len(local("Point", struct([])), None)
    assert '#[link_name = "sizeof_mymod_Point"]' in e.text
    assert "pub static sizeof_Point: libc::size_t;" in e.text


def test_emit_struct_without_tail(tmp_path):
    e = emitter(tmp_path)
    e.emit_struct(local("Point", struct([field("x", typed(Primitive.I32)), field("o", typed(MOD.child("S")))])), None)
    text = e.text
    assert "pub struct Point {" in text
    assert "#[repr(C)]\npub struct __InnerPoint {" in text
    assert "    pub x :i32 ,\n" in text
    assert "pub o" not in text
    assert "pub fn new() -> Self {" in text
    assert "unsafe{sizeof_Point}" in text


def test_emit_struct_with_dynamic_tail(tmp_path):
    none_tail = ast.Typed(t=Primitive.U8, loc=LOC).tail
    dynamic = dataclasses.replace(none_tail, kind=TailKind.DYNAMIC)
    fields = [field("len", typed(Primitive.USIZE)), field("mem", typed(Primitive.U8), is_array=True)]
    e = emitter(tmp_path)
    e.emit_struct(local("Buf", struct(fields, tail=dynamic)), None)
    assert "pub fn new(tail:  usize) -> Self {" in e.text
    assert "    // mem ,\n" in e.text

    variant = emitter(tmp_path)
    variant.emit_struct(local("Buf", struct(fields, tail=dynamic)), 8)
    assert "pub fn new() -> Self {" in variant.text
    assert "    pub mem : [;8] ,\n" in variant.text


def test_tail_field_must_be_last(tmp_path):
    fields = [field("mem", typed(Primitive.U8), is_array=True), field("x", typed(Primitive.U8))]
    with pytest.raises(CompileError):
        emitter(tmp_path).emit_struct(local("Bad", struct(fields)), None)


def test_emit_expressions(tmp_path):
    e = emitter(tmp_path)
    one = ast.Literal(loc=LOC, v="1")
    two = ast.Literal(loc=LOC, v="2")
    e.emit_expr(ast.Infix(loc=LOC, lhs=one, rhs=two, op=ast.InfixOperator.ADD))
    assert e.text == "(    1 +    2  )"

    cast = emitter(tmp_path)
    cast.emit_expr(ast.Cast(loc=LOC, into=typed(Primitive.U8), expr=one))
    assert cast.text == ""

    name = emitter(tmp_path)
    name.emit_expr(ast.NameExpr(typed=typed(MOD.child("thing"))))
    assert name.text == "    ()"


def test_emit_writes_file(tmp_path):
    point = local("Point", struct([field("x", typed(Primitive.I32))]))
    f = local("f", function([arg("a", typed(Primitive.U16))]))
    main = local("main", function([]))
    foreign = ast.Local(str(Name(("", "other", "h"))), Visibility.EXPORT, LOC, function([]), "")
    incomplete = local("later", function([]))
    d = [
        (point, TypeComplete.COMPLETE),
        (f, TypeComplete.COMPLETE),
        (main, TypeComplete.COMPLETE),
        (foreign, TypeComplete.COMPLETE),
        (incomplete, TypeComplete.INCOMPLETE),
    ]
    e = emitter(tmp_path, d=d)
    path = e.emit()
    assert path == tmp_path / "target/debug/rs/mymod.rs"
    text = path.read_text()
    assert text == e.text
    assert text.startswith("extern crate libc;\n")
    assert text.endswith("}\n")
    assert text.index("pub struct Point {") < text.index("extern {\n")
    assert "pub fn f(" in text
    assert "pub fn main(" not in text
    assert "pub fn h(" not in text
    assert "pub fn later(" not in text
    assert "pub static sizeof_Point: libc::size_t;" in text
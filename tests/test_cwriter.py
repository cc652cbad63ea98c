import io

import pytest

from zzlang import ast
from zzlang.ast import CompileError, Location, Name, Primitive, Tail, TailKind
from zzlang.cwriter import CodeWriter, FlatModule, TypeComplete, escape_literal


def loc(line=1, file="t.zz"):
    text = "\n" * (line - 1) + "x"
    return Location(file=file, text=text, start=line - 1, end=line)


def writer(header=True, aliases=None):
    module = FlatModule(name=Name(("", "mod")), aliases=aliases or {})
    out = io.StringIO()
    return CodeWriter(module, out, header=header), out


def lit(v):
    return ast.Literal(loc=loc(), v=v)


def test_escape_literal_printable_and_quotes():
    assert escape_literal(ord("A"), True) == "A"
    assert escape_literal(ord('"'), True) == '\\"'
    assert escape_literal(ord('"'), False) == '"'
    assert escape_literal(ord("'"), False) == "\\'"
    assert escape_literal(ord("'"), True) == "'"


def test_escape_literal_controls_and_high_bytes():
    assert escape_literal(ord("\n"), True) == "\\n"
    assert escape_literal(ord("\\"), False) == "\\\\"
    assert escape_literal(0x80, True) == '""\\x80""'
    assert escape_literal(1, False) == "\\x1"


def test_to_local_name_variants():
    alias_name = Name(("", "other", "thing"))
    w, _ = writer(aliases={alias_name: "thing"})
    assert w.to_local_name(Name(("a", "b"))) == "a_b"
    assert w.to_local_name(Name(("", "foo", "bar"))) == "foo_bar"
    assert w.to_local_name(Name(("", "ext", "<stdio.h>", "printf"))) == "printf"
    assert w.to_local_name(alias_name) == "thing"


def test_extern_names_use_last_part():
    w, _ = writer()
    n = Name(("", "foo", "puts"))
    w.emit_as_extern.add(n)
    assert w.to_local_name(n) == "puts"


def test_mangle_only_identifier_chars():
    w, _ = writer()
    mangled = w.to_local_name_mangle(Name(("", "my", "E::a")))
    assert mangled.replace("_", "").isalnum()
    assert mangled.startswith("my_E")
    assert ":" not in mangled


def test_to_local_typed_name():
    w, _ = writer()
    assert w.to_local_typed_name(ast.Typed(t=Primitive.U8, loc=loc())) == "uint8_t"
    assert w.to_local_typed_name(ast.Typed(t=Primitive.USIZE, loc=loc())) == "uintptr_t"
    t = ast.Typed(t=Name(("", "m", "S")), loc=loc(), tail=Tail(TailKind.STATIC, size=5))
    assert w.to_local_typed_name(t) == "m_S_5"


def test_untyped_literal_raises():
    w, _ = writer()
    with pytest.raises(CompileError):
        w.to_local_typed_name(ast.Typed(t=Primitive.ILITERAL, loc=loc()))


def test_emit_loc_writes_line_once():
    w, out = writer(header=False)
    w.emit_loc(loc(3))
    w.emit_loc(loc(3))
    text = out.getvalue()
    assert text.count("#line") == 1
    assert '#line 3 "t.zz"' in text


def test_emit_loc_silent_in_header():
    w, out = writer(header=True)
    w.emit_loc(loc(2))
    assert out.getvalue() == ""
    assert w.cur_loc == loc(2)


def test_emit_pointer_mut_and_const():
    w, out = writer()
    mut_tags = ast.Tags()
    mut_tags.insert("mut", "", loc())
    w.emit_pointer([ast.Pointer(loc=loc()), ast.Pointer(loc=loc(), tags=mut_tags)])
    assert out.getvalue() == " const * * "


def test_emit_infix_and_literal_string():
    w, out = writer()
    w.emit_expr(ast.Infix(loc=loc(), lhs=lit("1"), rhs=lit("2"), op=ast.InfixOperator.ADD))
    assert out.getvalue() == "(    1 +    2  )"
    w2, out2 = writer()
    w2.emit_expr(ast.LiteralString(loc=loc(), v=b'hi"'))
    assert out2.getvalue() == '    "hi\\""'


def test_call_skip_and_error():
    w, out = writer()
    name = ast.NameExpr(ast.Typed(t=Name(("", "mod", "f")), loc=loc()))
    w.emit_expr(ast.Call(loc=loc(), name=name, emit=ast.EmitBehaviour("skip")))
    assert out.getvalue() == ""
    with pytest.raises(CompileError) as info:
        w.emit_expr(ast.Call(loc=loc(), name=name,
                             emit=ast.EmitBehaviour("error", loc(), "bad call")))
    assert info.value.message == "bad call"


def test_call_emits_name_and_args():
    w, out = writer()
    name = ast.NameExpr(ast.Typed(t=Name(("", "mod", "f")), loc=loc()))
    w.emit_expr(ast.Call(loc=loc(), name=name, args=[lit("1"), lit("2")]))
    text = out.getvalue()
    assert text.startswith("    mod_f(")
    assert text.endswith("    )")
    assert text.count(",") == 1


def test_block_with_return():
    w, out = writer()
    block = ast.Block(end=loc(), statements=[ast.Return(loc=loc(), expr=lit("0"))])
    w.emit_block(block, True)
    assert out.getvalue() == "{\n  return     0;\n\n}\n"


def test_block_inside_macro_uses_continuations():
    w, out = writer()
    w.inside_macro = True
    w.emit_block(ast.Block(end=loc(), statements=[ast.Break(loc=loc())]), True)
    text = out.getvalue()
    assert text.startswith("{\\\n")
    assert text.endswith("}\\\n")
    assert "break;" in text


def test_if_else_chain():
    w, out = writer()
    empty = ast.Block(end=loc())
    stm = ast.If(branches=[(loc(), lit("a"), empty), (loc(), lit("b"), empty), (loc(), None, empty)])
    assert w.emit_statement(stm) is False
    text = out.getvalue()
    assert text.startswith("if (")
    assert text.count(" else if (") == 1
    assert text.count(" else ") == 2


def test_statement_semicolon_flags():
    w, _ = writer()
    assert w.emit_statement(ast.Continue(loc=loc())) is True
    assert w.emit_statement(ast.Label(loc=loc(), label="out")) is False
    assert w.emit_statement(ast.Mark(lhs=lit("x"), loc=loc(), key="k", value="v")) is False


def test_function_args():
    w, out = writer()
    mut_tags = ast.Tags()
    mut_tags.insert("mut", "", loc())
    ptr_tags = ast.Tags()
    ptr_tags.insert("mut", "", loc())
    args = [
        ast.NamedArg(typed=ast.Typed(t=Primitive.INT, loc=loc()), name="a", loc=loc()),
        ast.NamedArg(
            typed=ast.Typed(t=Primitive.U8, loc=loc(), ptr=[ast.Pointer(loc=loc(), tags=ptr_tags)]),
            name="b", loc=loc(), tags=mut_tags,
        ),
    ]
    w.function_args(args)
    assert out.getvalue() == "int const  a, uint8_t*  b"


def test_flat_module_defaults():
    m = FlatModule(name=Name(("", "x")))
    assert m.d == [] and m.aliases == {} and m.typevariants == {}
    assert TypeComplete.COMPLETE != TypeComplete.INCOMPLETE
import pytest

from zzlang.ast import (
    Call,
    EmitBehaviour,
    InfixOperator,
    Literal,
    Location,
    Module,
    Name,
    NameExpr,
    Pointer,
    Primitive,
    Tags,
    Tail,
    TailKind,
    Typed,
)


@pytest.fixture
def loc():
    return Location("a.zz", "fn main()\n{\n}\n", 0, 12)


def test_builtin_location():
    b = Location.builtin()
    assert b.file == "prelude"
    assert b.line == 1
    assert str(b) == f"prelude:{b.line}"


def test_location_str_uses_file_and_line(loc):
    assert str(loc) == f"{loc.file}:{loc.line}"
    assert loc.end_line > loc.line


def test_generated_location_follows_end(loc):
    gen = Location.generated(loc, "foo")
    assert gen.file == loc.file
    assert gen.fragment == "foo"
    assert gen.line == loc.end_line + 1


def test_invalid_span_rejected():
    with pytest.raises(ValueError):
        Location("x", "ab", 1, 5)


def test_name_round_trip():
    n = Name.parse("::ext::<stddef.h>")
    assert str(n) == "::ext::<stddef.h>"
    assert n.is_absolute()
    assert n.last() == "<stddef.h>"
    assert len(n) == 3


def test_name_relative():
    assert not Name.parse("foo::bar").is_absolute()


def test_name_parent_child_inverse():
    n = Name.parse("::a::b")
    assert n.parent().child(n.last()) == n
    assert hash(Name.parse("::a::b")) == hash(n)


def test_empty_name_parent_raises():
    with pytest.raises(IndexError):
        Name().parent()
    with pytest.raises(IndexError):
        Name().last()


def test_tags_insert_and_remove_value(loc):
    tags = Tags()
    tags.insert("mut", "", loc)
    tags.insert("safe", "a", loc)
    tags.insert("safe", "b", loc)
    assert "mut" in tags
    tags.remove("safe", "a")
    assert set(tags.get("safe")) == {"b"}
    tags.remove("safe", "b")
    assert "safe" not in tags
    tags.remove("mut")
    assert tags.get("mut") is None
    assert len(tags) == 0


@pytest.mark.parametrize(
    "prim,signed",
    [
        (Primitive.I8, True),
        (Primitive.INT, True),
        (Primitive.ILITERAL, True),
        (Primitive.U64, False),
        (Primitive.BOOL, False),
        (Primitive.F32, False),
    ],
)
def test_primitive_signed(prim, signed):
    assert prim.is_signed() is signed


def test_typed_display(loc):
    t = Typed(Primitive.U8, loc, [Pointer(loc), Pointer(loc)], Tail(TailKind.STATIC, size=4))
    assert str(t) == "u8**+4"
    other = Typed(Name.parse("::a::b"), loc, [Pointer(loc)], Tail(TailKind.DYNAMIC))
    assert str(other) == "::a::b*+"
    bound = Typed(Primitive.ILITERAL, loc, tail=Tail(TailKind.BIND, binding="n"))
    assert str(bound) == "iliteral+n"


def test_typed_equality_ignores_location_and_tags(loc):
    tags = Tags()
    tags.insert("mut", "", loc)
    a = Typed(Primitive.I32, loc, [Pointer(loc, tags)])
    b = Typed(Primitive.I32, Location.builtin(), [Pointer(Location.builtin())])
    assert a == b
    assert a != Typed(Primitive.I32, loc)


def test_infix_operator_classes():
    assert InfixOperator.EQUALS.returns_boolean()
    assert not InfixOperator.ADD.returns_boolean()
    assert InfixOperator.BOOLAND.takes_boolean()
    assert not InfixOperator.LESSTHAN.takes_boolean()
    assert not InfixOperator.BOOLOR.takes_integer()
    assert InfixOperator.MORETHAN.takes_integer()


@pytest.mark.parametrize("op_name", [op.name for op in InfixOperator])
def test_takes_boolean_implies_returns_boolean(op_name):
    op = InfixOperator[op_name]
    takes_bool = InfixOperator.takes_boolean(op)
    returns_bool = InfixOperator.returns_boolean(op)
    takes_int = InfixOperator.takes_integer(op)
    assert (not takes_bool) or returns_bool
    assert takes_int or takes_bool


def test_name_expression_location(loc):
    t = Typed(Name.parse("x"), loc)
    assert NameExpr(t).loc == loc


def test_call_defaults(loc):
    call = Call(loc, Literal(loc, "f"))
    assert call.emit.kind == "default"
    assert call.args == []


def test_emit_behaviour_rejects_unknown_kind():
    with pytest.raises(ValueError):
        EmitBehaviour("sometimes")


def test_module_defaults():
    m = Module()
    assert len(m.name) == 0
    assert m.locals == [] and m.imports == [] and m.sources == set()
# zzlang

Middle and back end pieces of a compiler for the ZZ language. The package
turns the names used in a module's syntax tree into fully qualified ones,
and writes a flattened module out as C source, a C export header, or Rust
FFI bindings.

## Install

    pip install zzlang

## Modules

- `zzlang.ast` – the syntax tree: `Name`, `Location`, `Typed`, `Tags`,
  `Tail`, `Primitive`, the expression and statement classes, the
  definitions (`FunctionDef`, `StructDef`, `EnumDef`, `ConstDef`,
  `StaticDef`, `MacroDef`, `IncludeDef`, …), `Local`, `Import` and
  `Module`. Fatal problems are raised as `CompileError`, whose `notes`
  hold `(Location, text)` pairs.
- `zzlang.scope` – lexical scopes and import lookup: `Scope` (with
  `push`, `pop`, `insert`, `get`, `resolve` and `resolve_tags`),
  `resolve_import`, `check_available` (visibility and re-export checks),
  `CModule` for modules backed by C sources, `Ext` for the table of C
  includes, and `Diagnostics`, which collects errors and raises once from
  `check()`.
- `zzlang.absolute` – `make_absolute(md, all_modules, ext)` rewrites in
  place every name in a module to its absolute form, turns primitive type
  names into `Primitive` values, numbers enum members, adds the size
  argument for tail-bound function arguments, and records the module's C
  includes in `ext`. It raises `CompileError` on the first fatal problem,
  or at the end if any error was collected.
- `zzlang.cwriter` – `FlatModule` and `TypeComplete` describe a module
  whose dependencies are already in declaration order; `CodeWriter`
  renders types, expressions, statements and blocks as C into a text
  stream; `escape_literal` escapes one byte for a C string or char literal.
- `zzlang.cemitter` – `Emitter(project_name, std, stage, module, header=False, root=".")`
  writes a whole `FlatModule` as `target/<stage>/zz/<module>.c` (`.cpp`
  when `std` contains `c++`) or as an export header under
  `target/<stage>/include/zz/<project>/`, writes test case files under
  `target/<stage>/testcases/`, and returns a `CFile`.
  `CFile.is_newer_than(path)` tells whether a target needs rebuilding;
  `outname` gives the output path.
- `zzlang.rsemitter` – `RustEmitter(stage, module, root=".")` writes wrapper
  structs and `extern` declarations to `target/<stage>/rs/<module>.rs`;
  `rust_outname` gives that path.

## Example

    from zzlang.ast import Infix, InfixOperator, Literal, Location, Name
    from zzlang.cwriter import CodeWriter, FlatModule

    name = Name.parse("::mylib::buffer::Buffer")
    name.is_absolute()     # True
    str(name.parent())     # '::mylib::buffer'
    name.last()            # 'Buffer'

    loc = Location("main.zz")
    writer = CodeWriter(FlatModule(Name.parse("::app::main")), header=True)
    writer.emit_expr(Infix(loc, Literal(loc, "1"), Literal(loc, "2"), InfixOperator.ADD))
    writer.out.getvalue()  # '(    1 +    2  )'

## What it does not do

There is no parser, no flattening step and no command-line driver. Syntax
trees have to be built by the caller, `make_absolute` is run module by
module with the map of all known modules, and the `FlatModule` handed to
`Emitter` or `RustEmitter` (declarations in order, aliases, tail variants)
must be assembled by the caller too. Nothing here invokes a C compiler.

## Tests

    pip install zzlang[test]
    pytest
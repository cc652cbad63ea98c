"""Emitting a flattened module as a C source file or a C header."""

from __future__ import annotations

import io
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from . import ast
from .ast import CompileError, Name, Storage, Visibility
from .cwriter import CodeWriter, FlatModule, TypeComplete

log = logging.getLogger(__name__)

_STD_INCLUDES = "#include <stdint.h>\n#include <stddef.h>\n#include <stdbool.h>\n"

_VISIBILITY_ATTR = {
    Visibility.OBJECT: "",
    Visibility.SHARED: '__attribute__ ((visibility ("hidden"))) ',
    Visibility.EXPORT: '__attribute__ ((visibility ("default"))) ',
}


@dataclass
class CFile:
    """A C file produced from a module, with the sources it was made from."""

    name: Name
    filepath: str
    sources: set = field(default_factory=set)
    deps: set = field(default_factory=set)

    def is_newer_than(self, target: Union[str, os.PathLike]) -> bool:
        """True if ``target`` is missing or any source was modified after it."""
        try:
            target_mtime = os.stat(target).st_mtime
        except OSError:
            return True
        return any(os.stat(source).st_mtime > target_mtime for source in self.sources)


def outname(project_name: str, std: Optional[str], stage, module: Name, header: bool) -> tuple:
    """Return ``(is_cxx, path)`` of the file emitted for ``module``."""
    cxx = std is not None and "c++" in std
    joined = "_".join(module.parts[1:])
    if header:
        return cxx, f"target/{stage}/include/zz/{project_name}/{joined}.h"
    if cxx:
        return cxx, f"target/{stage}/zz/{joined}.cpp"
    return cxx, f"target/{stage}/zz/{joined}.c"


def _parse_u64(text: str) -> Optional[int]:
    digits = text.strip().lower().replace("_", "")
    try:
        if digits.startswith("0x"):
            value = int(digits[2:], 16)
        elif digits.startswith("0b"):
            value = int(digits[2:], 2)
        else:
            value = int(digits, 10)
    except ValueError:
        return None
    if not 0 <= value < 2 ** 64:
        return None
    return value


class Emitter(CodeWriter):
    """Writes a flattened module as C code under ``root``."""

    def __init__(
        self,
        project_name: str,
        std: Optional[str],
        stage,
        module: FlatModule,
        header: bool = False,
        root: Union[str, os.PathLike] = ".",
    ):
        super().__init__(module, io.StringIO(), header)
        self.root = Path(root)
        self.cxx, relative = outname(project_name, std, stage, module.name, header)
        self.path = self.root / relative
        self.casedir = self.root / f"target/{stage}/testcases/{'_'.join(module.name.parts[1:])}"
        shutil.rmtree(self.casedir, ignore_errors=True)
        self.casedir.mkdir(parents=True, exist_ok=True)
        self._write(_STD_INCLUDES)

    @property
    def text(self) -> str:
        """Everything written so far."""
        return self.out.getvalue()

    def _export_guard_open(self, local_name: str, suffix: str = "") -> None:
        if self.header:
            tn = self.to_local_name_mangle(Name.parse(local_name))
            self._write(f"\n#ifndef ZZ_EXPORT_{tn}{suffix}\n#define ZZ_EXPORT_{tn}{suffix}\n")

    def _export_guard_close(self) -> None:
        if self.header:
            self._write("\n#endif\n")

    def _variants(self, local: ast.Local) -> list:
        return list(self.module.typevariants.get(Name.parse(local.name), ()))

    def emit(self) -> CFile:
        """Write the whole module and return the resulting file description."""
        module = self.module
        log.debug("emitting %s", "_".join(module.name.parts))

        if self.header:
            headername = "_".join(module.name.parts)
            self._write(f"#ifndef ZZ_EXPORT_HEADER_{headername}\n#define ZZ_EXPORT_HEADER_{headername}\n")

        # Forward declarations of all structs come first.
        for local, _ in module.d:
            if isinstance(local.definition, ast.StructDef):
                self.emit_struct_def(local, None)
                for v in self._variants(local):
                    variant = ast.Local(local.name + f"_{v}", local.vis, local.loc, local.definition, local.doc)
                    self.emit_struct_def(variant, v)

        included = set()
        for local, complete in module.d:
            done = complete == TypeComplete.COMPLETE
            definition = local.definition
            match definition:
                case ast.MacroDef():
                    if done:
                        self.emit_macro(local)
                case ast.ConstDef():
                    self._export_guard_open(local.name)
                    self.emit_const(local)
                    self._export_guard_close()
                case ast.StaticDef():
                    if not self.header and done:
                        self.emit_static(local)
                case ast.EnumDef():
                    if done:
                        self._export_guard_open(local.name)
                        self.emit_enum(local)
                        self._export_guard_close()
                case ast.FntypeDef():
                    self.emit_fntype(local)
                case ast.TestcaseDef():
                    if not self.header and done:
                        self.emit_testcase(local)
                case ast.FunctionDef():
                    self.emit_decl(local)
                case ast.IncludeDef():
                    if local.name not in included:
                        included.add(local.name)
                        self.emit_include(local)
                case ast.StructDef():
                    if done:
                        self._emit_complete_struct(local)
                case ast.TheoryDef():
                    pass

        if self.header:
            self._write("#endif\n")
        else:
            # Function bodies always go last, after every declaration.
            for local, complete in module.d:
                definition = local.definition
                if not isinstance(definition, ast.FunctionDef):
                    continue
                owner = Name.parse(local.name).parent()
                if complete == TypeComplete.COMPLETE and (
                    owner == module.name or "inline" in definition.attr
                ):
                    self.emit_def(local)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self.text, encoding="utf-8", errors="surrogateescape")

        return CFile(
            name=module.name,
            filepath=str(self.path),
            sources=set(module.sources),
            deps=set(module.deps),
        )

    def _emit_complete_struct(self, local: ast.Local) -> None:
        self._export_guard_open(local.name)
        isimpl = Name.parse(local.name).parent() == self.module.name
        self.emit_struct(local, isimpl, None)
        self._export_guard_close()
        for v in self._variants(local):
            variant = ast.Local(local.name + f"_{v}", local.vis, local.loc, local.definition, local.doc)
            self._export_guard_open(variant.name, f"_{v}")
            self.emit_struct(variant, isimpl, v)
            self._export_guard_close()

    def emit_include(self, local: ast.Local) -> None:
        self.emit_loc(local.loc)
        inc = local.definition
        if inc.inline and self.header:
            return

        log.debug("    emit include %s (inline? %s)", inc.fqn, inc.inline)
        if inc.inline:
            try:
                content = Path(inc.expr).read_text(encoding="utf-8", errors="surrogateescape")
            except OSError as err:
                raise CompileError(f"cannot inline {inc.expr!r}", [(inc.loc, str(err))]) from err
            if not self.inside_macro:
                escaped = inc.expr.replace("\\", "\\\\")
                self._write(f'\n#line 1 "{escaped}"\n')
            self._write(content)
            return

        self.emit_loc(inc.loc)
        extern_c = self.cxx and ".h>" in inc.expr
        if extern_c:
            self._write('extern "C" {\n')
        self._write(f"#include {inc.expr}\n")
        if extern_c:
            self._write("}\n")
        if len(inc.fqn) > 3:
            self._write(f"using namespace {'::'.join(inc.fqn.parts[3:])} ;\n")

    def emit_macro(self, local: ast.Local) -> None:
        self.emit_loc(local.loc)
        self.inside_macro = True
        macro = local.definition
        self.emit_loc(local.loc)
        self._write(f"#define {self.to_local_name(Name.parse(local.name))}")
        if macro.args:
            self._write(f"({','.join(macro.args)}) \\\n")
        self._write(" ")
        self.emit_block(macro.body, False)
        self._write("\n")
        self.inside_macro = False

    def _emit_ret(self, ret: Optional[ast.AnonArg]) -> None:
        if ret is None:
            self._write("void ")
        else:
            self._write(f"{self.to_local_typed_name(ret.typed)} ")
            self.emit_pointer(ret.typed.ptr)

    def emit_static(self, local: ast.Local) -> None:
        self.emit_loc(local.loc)
        static = local.definition
        self._write("static " if "mut" in static.tags else "static const ")
        self._write(" __attribute__ ((unused)) ")
        if static.storage is Storage.ATOMIC:
            self._write("_Atomic ")
        elif static.storage is Storage.THREAD_LOCAL:
            self._write("_Thread_local ")
        self._write(f"{self.to_local_typed_name(static.typed)} ")
        self.emit_pointer(static.typed.ptr)
        self._write(f"{self.to_local_name(Name.parse(local.name))} ")
        if static.is_array:
            self._write(" [ ")
            if static.array_len is not None:
                self.emit_expr(static.array_len)
            self._write(" ] ")
        self._write("=")
        self.emit_expr(static.expr)
        self._write(";\n")

    def emit_const(self, local: ast.Local) -> None:
        const = local.definition
        self.emit_loc(local.loc)
        self._write(f"#define {self.to_local_name(Name.parse(local.name))} ((")
        self._write(f"{self.to_local_typed_name(const.typed)} ")
        self.emit_pointer(const.typed.ptr)
        self._write(")")
        self.emit_expr(const.expr)
        self._write(")\n")

    def emit_enum(self, local: ast.Local) -> None:
        self.emit_loc(local.loc)
        local_name = self.to_local_name(Name.parse(local.name))
        self._write("typedef enum {\n")
        for name, literal in local.definition.names:
            self._write(f"    {local_name}_{name}")
            if literal is not None:
                self._write(f" = {literal}")
            self._write(",\n")
        self._write(f"\n}} {local_name};\n")

    def emit_testcase(self, local: ast.Local) -> None:
        testname = Name.parse(local.name).last()
        directory = self.casedir / testname
        shutil.rmtree(directory, ignore_errors=True)
        directory.mkdir(parents=True, exist_ok=True)
        for fname, expr in local.definition.fields:
            (directory / fname).write_bytes(self._testcase_bytes(expr))

    @staticmethod
    def _testcase_bytes(expr: ast.Expression) -> bytes:
        not_emittable = "this expression cannot be emitted as testcase file"
        match expr:
            case ast.LiteralString(v=v):
                return bytes(v)
            case ast.Literal(v=v):
                return v.encode("utf-8")
            case ast.ArrayInit(fields=fields):
                out = bytearray()
                for item in fields:
                    match item:
                        case ast.LiteralChar(v=v):
                            out.append(v & 0xFF)
                        case ast.Literal(v=v, loc=loc):
                            value = _parse_u64(v)
                            if value is None or value > 255:
                                raise CompileError(
                                    "testcase field must be literal string or byte array",
                                    [(loc, not_emittable)],
                                )
                            out.append(value)
                        case _:
                            raise CompileError(
                                "testcase field must be literal string or byte array, not",
                                [(item.loc, not_emittable)],
                            )
                return bytes(out)
            case _:
                raise CompileError(
                    "testcase field must be literal string or byte array",
                    [(expr.loc, not_emittable)],
                )

    def emit_struct_def(self, local: ast.Local, tail_variant: Optional[int]) -> None:
        """Write the forward declaration and typedef of a struct or union."""
        kind = "union " if local.definition.union else "struct "
        name = self.to_local_name(Name.parse(local.name))
        self.emit_loc(local.loc)
        self._write(f"{kind}{name}_t;\n")
        self._write(f"typedef {kind}{name}_t {name};\n")

    def emit_struct(self, local: ast.Local, isimpl: bool, tail_variant: Optional[int]) -> None:
        struct = local.definition
        name = self.to_local_name(Name.parse(local.name))
        self.emit_loc(local.loc)
        self._write("union " if struct.union else "struct ")
        self._write(f"{name}_t ")
        self._write("{\n")

        emitted_tail = False
        last = len(struct.fields) - 1
        for index, fld in enumerate(struct.fields):
            self.emit_loc(fld.loc)
            self._write(f"   {self.to_local_typed_name(fld.typed)}")
            self.emit_pointer(fld.typed.ptr)
            if fld.is_array and fld.array_len is not None:
                self._write(f" {fld.name}[")
                self.emit_expr(fld.array_len)
                self._write("]")
            elif fld.is_array:
                if index != last:
                    raise CompileError(
                        "tail field has no be the last field in a struct",
                        [(fld.loc, "tail field would displace next field")],
                    )
                if tail_variant is not None:
                    emitted_tail = True
                    self._write(f" {fld.name}[{tail_variant}]")
                else:
                    self._write(f" {fld.name}[]")
            else:
                self._write(f" {fld.name}")
            self._write(" ;\n")

        if tail_variant is not None and not emitted_tail:
            self._write(f"   uint8_t _____tail [{tail_variant}];\n")
        self._write("}\n")
        if struct.packed:
            self._write(" __attribute__((__packed__)) ")
        self._write(";\n")

        if local.vis == Visibility.EXPORT and isimpl and not self.header:
            self._write(f"const size_t sizeof_{name} = sizeof({name});\n")

    def emit_fntype(self, local: ast.Local) -> None:
        fntype = local.definition
        self.emit_loc(local.loc)
        self._write("typedef ")
        self._emit_ret(fntype.ret)
        for attr, loc in fntype.attr.items():
            raise CompileError("ICE: unsupported attr", [(loc, f"'{attr}' is not a valid c attribute")])
        self._write(f"(*{self.to_local_name(Name.parse(local.name))}) (")
        self.function_args(fntype.args)
        if fntype.vararg:
            self._write(", ...")
        self._write(");\n")

    def _apply_attrs(self, attr: dict, name: Name) -> Name:
        for key, loc in attr.items():
            if key == "extern":
                self.emit_as_extern.add(name)
                name = Name(("", name.last()))
            elif key == "inline":
                self._write(" static inline ")
            else:
                raise CompileError("ICE: unsupported attr", [(loc, f"'{key}' is not a valid c attribute")])
        return name

    def emit_decl(self, local: ast.Local) -> None:
        """Declare a function, plus an inline redirect when it is known by an alias."""
        fn = local.definition
        inline = "inline" in fn.attr

        self.emit_loc(local.loc)
        if local.vis == Visibility.OBJECT:
            self._write("static ")
        elif local.vis == Visibility.SHARED and not inline:
            self._write("extern ")

        self._emit_ret(fn.ret)
        self._write(_VISIBILITY_ATTR[local.vis])

        full = Name.parse(local.name)
        name = self._apply_attrs(fn.attr, full)
        self._write(f"{'_'.join(name.parts[1:])} (")
        self.function_args(fn.args)
        if fn.vararg:
            self._write(", ...")
        self._write(");\n")

        # Aliases are unreliable in some compilers, so redirect through an inline function.
        if full in self.emit_as_extern:
            return
        flat = "_".join(full.parts[1:])
        if self.to_local_name(full) == flat or self.header:
            return
        self.emit_loc(local.loc)
        self._write("static inline ")
        self._emit_ret(fn.ret)
        self._write(" __attribute__ ((always_inline, unused)) ")
        self._write(f"{self.to_local_name(full)} (")
        self.function_args(fn.args)
        if fn.vararg:
            self._write(", ...")
        self._write(")")
        self._write("{")
        if fn.ret is not None:
            self._write("return ")
        self._write(f"{flat}(")
        self._write(", ".join(f" {arg.name}" for arg in fn.args))
        self._write(");} \n")

    def emit_def(self, local: ast.Local) -> None:
        fn = local.definition
        is_main = local.name.endswith("::main")

        self.emit_loc(local.loc)
        if not is_main and local.vis == Visibility.OBJECT:
            self._write("static ")

        name = self._apply_attrs(fn.attr, Name.parse(local.name))
        self._emit_ret(fn.ret)

        if is_main:
            self._write("main (")
        else:
            self._write(_VISIBILITY_ATTR[local.vis])
            self._write(f"{'_'.join(name.parts[1:])} (")

        self.function_args(fn.args)
        if fn.vararg:
            self._write(", ...")
        self._write(")\n")
        self.emit_block(fn.body, True)
        self._write("\n")
"""Name scopes and the rules that turn local names into absolute ones."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Union

from . import ast
from .ast import CompileError, Location, Name, Primitive, Visibility

log = logging.getLogger(__name__)

_STDDEF = Name(("", "ext", "<stddef.h>"))

_PRIMITIVES = {
    "new": Primitive.NEW,
    "let": Primitive.ELIDED,
    "u8": Primitive.U8,
    "u16": Primitive.U16,
    "u32": Primitive.U32,
    "u64": Primitive.U64,
    "u128": Primitive.U128,
    "i8": Primitive.I8,
    "i16": Primitive.I16,
    "i32": Primitive.I32,
    "i64": Primitive.I64,
    "i128": Primitive.I128,
    "uint": Primitive.UINT,
    "int": Primitive.INT,
    "isize": Primitive.ISIZE,
    "usize": Primitive.USIZE,
    "bool": Primitive.BOOL,
    "f32": Primitive.F32,
    "f64": Primitive.F64,
}

_C_BUILTINS = frozenset({"char", "void", "sizeof", "unsigned"})


@dataclass
class Diagnostics:
    """Collects non-fatal errors and warnings; ``check`` fails if any error was seen."""

    errors: list = field(default_factory=list)
    warnings: list = field(default_factory=list)
    failed: bool = False

    def error(self, message: str, notes=()) -> None:
        self.errors.append(CompileError(message, list(notes)))
        self.failed = True
        log.error("%s", message)

    def warn(self, message: str, notes=()) -> None:
        self.warnings.append(CompileError(message, list(notes)))
        log.warning("%s", message)

    def check(self) -> None:
        """Raise if any error (or failing warning) has been recorded."""
        if self.failed:
            notes = [note for err in self.errors for note in err.notes]
            raise CompileError("exit abs due to previous errors", notes)


@dataclass
class CModule:
    """A module implemented by a C source, whose contents are not tracked."""

    name: Name
    source: Path = field(default_factory=Path)


AnyModule = Union[ast.Module, CModule]


@dataclass
class Ext:
    """The external C includes known to the build, keyed by absolute name."""

    ext: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if _STDDEF not in self.ext:
            self.ext[_STDDEF] = ast.Local(
                name=str(_STDDEF),
                vis=Visibility.OBJECT,
                loc=Location.builtin(),
                definition=ast.IncludeDef(
                    expr="<stddef.h>",
                    loc=Location.builtin(),
                    fqn=_STDDEF,
                    inline=False,
                    needs=[],
                ),
            )


@dataclass
class InScope:
    name: Name
    loc: Location
    is_module: bool
    subtypes: bool


class Scope:
    """A stack of frames mapping local names to what they refer to."""

    def __init__(self, diagnostics: Optional[Diagnostics] = None):
        self.frames: list = []
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()

    def push(self) -> None:
        self.frames.append({})

    def pop(self) -> None:
        self.frames.pop()

    def get(self, name: str) -> Optional[InScope]:
        for frame in reversed(self.frames):
            found = frame.get(name)
            if found is not None:
                return found
        return None

    def insert(self, local: str, fqn: Name, loc: Location, is_module: bool, subtypes: bool) -> None:
        current = self.frames[-1]
        previous = current.get(local)
        if previous is not None and (
            not is_module or not previous.is_module or fqn != previous.name
        ):
            raise CompileError(
                f"conflicting local name '{local}'",
                [(loc, "declared here"), (previous.loc, "also declared here")],
            )
        log.debug("  insert %s := %s", local, fqn)
        current[local] = InScope(name=fqn, loc=loc, is_module=is_module, subtypes=subtypes)

    def resolve_tags(self, tags: ast.Tags) -> None:
        """Make the names referenced by ``static_assert`` tags absolute."""
        values = tags.entries.get("static_assert")
        if not values:
            return
        resolved = {}
        for key, loc in values.items():
            found = self.get(key)
            resolved[str(found.name) if found is not None else key] = loc
        tags.entries["static_assert"] = resolved

    def resolve(self, typed: ast.Typed, inbody: bool) -> None:
        """Replace the type's name by a primitive or an absolute name, in place."""
        for ptr in typed.ptr:
            self.resolve_tags(ptr.tags)

        name = typed.t
        if not isinstance(name, Name) or name.is_absolute():
            return

        text = str(name)
        primitive = _PRIMITIVES.get(text)
        if primitive is not None:
            typed.t = primitive
            return
        if text in _C_BUILTINS:
            typed.t = _STDDEF.child(text)
            log.debug("  %s => %s", name, typed.t)
            return

        lhs, *rhs = name.parts
        found = self.get(lhs)
        if found is None:
            if inbody:
                if len(name) > 1:
                    self.diagnostics.error(
                        f"possibly undefined name '{lhs}'",
                        [(typed.loc, "cannot use :: notation to reference names not tracked by zz")],
                    )
            else:
                self.diagnostics.error(
                    f"undefined name '{lhs}'", [(typed.loc, "used in this scope")]
                )
            return

        if rhs and not found.subtypes:
            self.diagnostics.error(
                f"resolving '{name}' as member is not possible",
                [(typed.loc, f"'{lhs}' is not a module")],
            )
        if not rhs and found.is_module:
            self.diagnostics.error(
                f"cannot use module '{found.name}' as a type",
                [
                    (typed.loc, f"cannot use module '{name}' as a type"),
                    (found.loc, f"if you wanted to import '{name}' as a type, use ::{{{name}}} here"),
                ],
            )
        resolved = Name(found.name.parts + tuple(rhs))
        log.debug("  %s => %s", name, resolved)
        typed.t = resolved


def resolve_import(imported_from: Name, imp: ast.Import, all_modules: Mapping[Name, AnyModule]) -> Name:
    """Find the absolute name of the module an import refers to."""
    name = imp.name
    if name.is_absolute():
        if name in all_modules or name == imported_from:
            return name
        if len(name) > 1 and name.parts[1] == "ext":
            return name
    else:
        candidates = (
            Name(imported_from.parent().parts + name.parts),
            Name(("",) + name.parts),
            Name(imported_from.parts + name.parts),
        )
        for search in candidates:
            if search in all_modules and search != imported_from:
                log.debug("  import %s => %s", name, search)
                return search
        if name.parts and name.parts[0] == "self":
            search = Name(imported_from.parts + name.parts[1:])
            if search != imported_from:
                log.debug("  import self %s => %s", name, search)
                return search

    raise CompileError(f"cannot find module '{name}'", [(imp.loc, "imported here")])


def check_available(
    fqn: Name,
    this_vis: Visibility,
    all_modules: Mapping[Name, AnyModule],
    loc: Location,
    selfname: Name,
    diagnostics: Diagnostics,
) -> Name:
    """Check that ``fqn`` may be used here; return it, following re-exports to their origin."""
    if not fqn.is_absolute() and len(fqn) > 1:
        diagnostics.warn(
            f"relative name {fqn} not resolved. likely due to previous error",
            [(loc, "this type is unresolved")],
        )
        diagnostics.failed = True
        return fqn

    module_name = fqn.parent()
    local_name = fqn.last()

    if len(module_name) < 2 or module_name.parts[1] == "ext" or module_name == selfname:
        return fqn

    if module_name not in all_modules and len(module_name) > 2:
        outer = module_name.parent()
        if outer == selfname:
            return fqn
        if outer in all_modules:
            local_name = module_name.last()
            module_name = outer

    if module_name == selfname:
        return fqn

    module = all_modules.get(module_name)
    if module is None:
        raise CompileError(
            f"cannot find module '{module_name}' during abs of module '{selfname}'",
            [(loc, "expected to be in scope here")],
        )
    if isinstance(module, CModule):
        return fqn

    for other in module.locals:
        if other.name != local_name:
            continue
        if other.vis == Visibility.OBJECT:
            diagnostics.error(
                f"the type '{local_name}' in '{module_name}' is private",
                [(loc, "cannot use private type"), (other.loc, "add 'pub' to share this type")],
            )
        if this_vis == Visibility.EXPORT and other.vis != Visibility.EXPORT:
            diagnostics.error(
                f"the type '{local_name}' in '{module_name}' is not exported",
                [(loc, "cannot use an unexported type here"), (other.loc, "suggestion: export this type")],
            )
        return fqn

    for other_import in module.imports:
        import_name = resolve_import(module.name, other_import, all_modules)
        if other_import.vis == Visibility.OBJECT:
            continue
        for imported, imported_as in other_import.local:
            if imported_as == local_name or imported == local_name:
                target = Name.parse(f"{import_name}::{imported}")
                return check_available(target, this_vis, all_modules, loc, selfname, diagnostics)

    diagnostics.error(
        f"module '{module_name}' does not contain '{local_name}'", [(loc, "imported here")]
    )
    return fqn
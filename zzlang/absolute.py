"""Make every name used in a module absolute and register its C includes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from . import ast
from .ast import CompileError, Location, Name, Primitive, TailKind, Visibility
from .scope import AnyModule, Diagnostics, Ext, Scope, check_available, resolve_import

log = logging.getLogger(__name__)


@dataclass
class _Resolver:
    """Walks expressions, statements and blocks, resolving the names they use."""

    scope: Scope
    all_modules: Mapping[Name, AnyModule]
    selfname: Name
    diagnostics: Diagnostics

    def typed(self, typed: ast.Typed, vis: Visibility, inbody: bool = False) -> None:
        self.scope.resolve(typed, inbody)
        if isinstance(typed.t, Name):
            typed.t = check_available(
                typed.t, vis, self.all_modules, typed.loc, self.selfname, self.diagnostics
            )

    def expr(self, expr: ast.Expression, inbody: bool) -> None:
        match expr:
            case ast.ArrayInit(fields=fields):
                for item in fields:
                    self.expr(item, inbody)
            case ast.StructInit(typed=typed, fields=fields):
                self.scope.resolve(typed, inbody)
                for _, item in fields:
                    self.expr(item, inbody)
            case ast.UnaryPre(expr=inner) | ast.UnaryPost(expr=inner):
                self.expr(inner, inbody)
            case ast.Cast(expr=inner, into=into):
                self.expr(inner, inbody)
                self.scope.resolve(into, inbody)
            case ast.MemberAccess(lhs=lhs):
                self.expr(lhs, inbody)
            case ast.ArrayAccess(lhs=lhs, rhs=rhs) | ast.Infix(lhs=lhs, rhs=rhs):
                self.expr(lhs, inbody)
                self.expr(rhs, inbody)
            case ast.NameExpr(typed=typed):
                self.typed(typed, Visibility.OBJECT, inbody)
            case ast.Call(name=name, args=args):
                self.expr(name, inbody)
                for arg in args:
                    self.expr(arg, inbody)
            case ast.Literal() | ast.LiteralString() | ast.LiteralChar():
                pass

    def statement(self, stm: ast.Statement, inbody: bool) -> None:
        match stm:
            case ast.Mark(lhs=lhs):
                self.expr(lhs, inbody)
            case ast.Label() | ast.Break() | ast.Continue() | ast.CBlock():
                pass
            case ast.BlockStatement(block=block) | ast.Unsafe(block=block):
                self.block(block)
            case ast.For(e1=e1, e2=e2, e3=e3, body=body):
                self.block(body)
                for s in e1:
                    self.statement(s, inbody)
                if e2 is not None:
                    self.expr(e2, inbody)
                for s in e3:
                    self.statement(s, inbody)
            case ast.While(expr=cond, body=body):
                self.expr(cond, inbody)
                self.block(body)
            case ast.If(branches=branches):
                for _, cond, body in branches:
                    if cond is not None:
                        self.expr(cond, inbody)
                    self.block(body)
            case ast.Assign(lhs=lhs, rhs=rhs):
                self.expr(lhs, inbody)
                self.expr(rhs, inbody)
            case ast.Var():
                if stm.assign is not None:
                    self.expr(stm.assign, inbody)
                if stm.is_array and stm.array_len is not None:
                    self.expr(stm.array_len, inbody)
                self.typed(stm.typed, Visibility.OBJECT, False)
            case ast.ExprStatement(expr=inner):
                self.expr(inner, inbody)
            case ast.Return(expr=inner):
                if inner is not None:
                    self.expr(inner, inbody)
            case ast.Switch(expr=cond, cases=cases, default=default):
                self.expr(cond, inbody)
                for conds, body in cases:
                    for c in conds:
                        self.expr(c, inbody)
                    self.block(body)
                if default is not None:
                    self.block(default)

    def block(self, block: ast.Block) -> None:
        for stm in block.statements:
            self.statement(stm, True)

    def ret(self, ret: Optional[ast.AnonArg], vis: Visibility) -> None:
        if ret is not None:
            self.typed(ret.typed, vis)

    def args(self, args: list, vis: Visibility) -> None:
        """Resolve arguments in place, adding a size argument for every bound tail."""
        original = list(args)
        args.clear()
        for arg in original:
            self.scope.resolve(arg.typed, False)
            self.scope.resolve_tags(arg.tags)
            if isinstance(arg.typed.t, Name):
                arg.typed.t = check_available(
                    arg.typed.t, vis, self.all_modules, arg.typed.loc, self.selfname, self.diagnostics
                )
            args.append(arg)

            tail = arg.typed.tail
            if tail.kind is TailKind.DYNAMIC:
                raise CompileError(
                    "missing tail binding ",
                    [(arg.loc, "+ without a name makes no sense in this context")],
                )
            if tail.kind is TailKind.STATIC:
                raise CompileError(
                    "missing tail binding ",
                    [(arg.loc, "+ with static size makes no sense in this context")],
                )
            if tail.kind is TailKind.BIND:
                loc = tail.loc if tail.loc is not None else arg.loc
                tags = ast.Tags()
                tags.insert("tail", "", loc)
                args.append(ast.NamedArg(
                    typed=ast.Typed(t=Primitive.USIZE, loc=loc),
                    name=tail.binding,
                    loc=loc,
                    tags=tags,
                ))

            self.scope.insert(arg.name, Name.parse(arg.name), arg.loc, False, False)


def _absolute_include(imp: ast.Import, fqn: Name) -> Name:
    """Turn a quoted relative include into one quoting its canonical path."""
    expr = imp.name.parts[2]
    if not (expr.startswith('"') and len(expr) > 2):
        return fqn
    path = Path(imp.loc.file).parent / expr[1:-1]
    try:
        path = path.resolve(strict=True)
    except OSError as err:
        raise CompileError("path resolve error", [(imp.loc, f"{err} : {path}")]) from err
    return Name(fqn.parts[:2] + (f'"{path}"',) + fqn.parts[3:])


def _is_ext(name: Name) -> bool:
    return len(name) > 1 and name.parts[1] == "ext"


def _resolve_imports(md: ast.Module, scope: Scope, all_modules, diagnostics: Diagnostics) -> None:
    for imp in md.imports:
        fqn = resolve_import(md.name, imp, all_modules)
        if _is_ext(fqn) and len(imp.name) > 2:
            fqn = _absolute_include(imp, fqn)

        local_module_name = imp.alias if imp.alias is not None else imp.name.last()

        if not imp.local:
            scope.insert(local_module_name, fqn, imp.loc, True, True)
        else:
            kept = []
            for local, import_as in imp.local:
                direct = fqn.child(local)
                found = check_available(direct, imp.vis, all_modules, imp.loc, md.name, diagnostics)
                if found == direct:
                    kept.append((local, import_as))
                localname = import_as if import_as is not None else local
                own = md.name.parts
                if len(own) > len(found) or found.parts[:len(own)] != own:
                    scope.insert(localname, found, imp.loc, False, False)
            imp.local = kept

        imp.name = fqn


def _declare_locals(md: ast.Module, scope: Scope) -> None:
    for local in md.locals:
        ns = md.name.child(local.name)
        definition = local.definition
        if isinstance(definition, ast.EnumDef):
            value = 0
            filled = []
            for name, given in definition.names:
                if given is not None:
                    value = given
                filled.append((name, value))
                value += 1
            definition.names[:] = filled
            for name, _ in filled:
                subname = f"{local.name}::{name}"
                scope.insert(subname, md.name.child(subname), local.loc, False, False)
            scope.insert(local.name, ns, local.loc, False, True)
        else:
            scope.insert(local.name, ns, local.loc, False, False)


def _resolve_local(local: ast.Local, r: _Resolver) -> None:
    definition = local.definition
    vis = local.vis
    match definition:
        case ast.StaticDef() | ast.ConstDef():
            r.expr(definition.expr, False)
            r.typed(definition.typed, vis)
        case ast.FunctionDef():
            r.scope.push()
            r.ret(definition.ret, vis)
            r.args(definition.args, vis)
            for effect in definition.calleffect:
                r.expr(effect, True)
            for cond in definition.callassert:
                r.expr(cond, True)
            r.block(definition.body)
            r.scope.pop()
        case ast.FntypeDef():
            r.ret(definition.ret, vis)
            r.scope.push()
            r.args(definition.args, vis)
            r.scope.pop()
        case ast.TheoryDef():
            r.ret(definition.ret, vis)
            for arg in definition.args:
                r.scope.resolve(arg.typed, False)
                r.scope.resolve_tags(arg.tags)
                if isinstance(arg.typed.t, Name):
                    arg.typed.t = check_available(
                        arg.typed.t, vis, r.all_modules, arg.typed.loc, r.selfname, r.diagnostics
                    )
        case ast.StructDef(fields=fields):
            for index, fld in enumerate(fields):
                r.typed(fld.typed, vis)
                if fld.is_array and fld.array_len is not None:
                    r.expr(fld.array_len, False)
                if fld.typed.tail.kind in (TailKind.BIND, TailKind.DYNAMIC) and index != len(fields) - 1:
                    raise CompileError(
                        "nested tail must be last field",
                        [(fld.loc, f"field {fld.name} is non static tail, but not the last field")],
                    )
        case ast.MacroDef(body=body):
            r.block(body)
        case ast.TestcaseDef(fields=fields):
            for _, expr in fields:
                r.expr(expr, False)
        case ast.IncludeDef(needs=needs):
            for typed, _ in needs:
                r.scope.resolve(typed, False)
        case ast.EnumDef():
            pass


def _register_includes(md: ast.Module, scope: Scope, ext: Ext) -> None:
    for imp in md.imports:
        for typed, _ in imp.needs:
            scope.resolve(typed, False)

        if not _is_ext(imp.name):
            continue

        previous = ext.ext.get(imp.name)
        if previous is not None and isinstance(previous.definition, ast.IncludeDef):
            inline = previous.definition.inline
            if inline != imp.inline:
                mode = "inlined" if inline else "included"
                raise CompileError(
                    "conflicting import modes",
                    [(imp.loc, f"{mode} here"), (previous.loc, f"previously {mode} here")],
                )

        expr = imp.name.parts[2]
        if imp.inline:
            if not expr.startswith('"') or not expr.endswith('"') or len(expr) < 3:
                raise CompileError(
                    "cannot inline non-relative include",
                    [(imp.loc, f"'{expr}' is not a relative include")],
                )
            expr = expr[1:-1]

        ext.ext[imp.name] = ast.Local(
            name=str(imp.name),
            vis=Visibility.OBJECT,
            loc=imp.loc,
            definition=ast.IncludeDef(
                expr=expr,
                loc=imp.loc,
                fqn=imp.name,
                inline=imp.inline,
                needs=list(imp.needs),
            ),
        )


def make_absolute(md: ast.Module, all_modules: Mapping[Name, AnyModule], ext: Ext) -> None:
    """Rewrite every name in ``md`` to its absolute form and record its C includes in ``ext``.

    Raises CompileError on the first fatal problem, or after the pass if any error was seen.
    """
    log.debug("abs %s", md.name)
    diagnostics = Diagnostics()
    scope = Scope(diagnostics)
    scope.push()

    _resolve_imports(md, scope, all_modules, diagnostics)
    _declare_locals(md, scope)

    resolver = _Resolver(scope, all_modules, md.name, diagnostics)
    for local in md.locals:
        _resolve_local(local, resolver)

    _register_includes(md, scope, ext)
    diagnostics.check()
from __future__ import annotations

import ast
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

from loguru import logger

from routegen.repo.scanner import scan_python_files
from routegen.symbols.model import (
    AnnotationRef,
    ClassDecl,
    FunctionDecl,
    ParameterDecl,
    PropertyDecl,
    TypeRef,
)

_BUILTINS = {
    "int", "str", "float", "bool", "bytes", "list", "set", "frozenset",
    "dict", "tuple", "object", "complex",
}

# typing aliases collapse onto their builtin counterparts
_TYPING_ALIASES = {
    "typing.List": "builtins.list",
    "typing.Set": "builtins.set",
    "typing.FrozenSet": "builtins.frozenset",
    "typing.Dict": "builtins.dict",
    "typing.Tuple": "builtins.tuple",
    "typing.Sequence": "builtins.list",
    "typing.Mapping": "builtins.dict",
    "collections.abc.Sequence": "builtins.list",
    "collections.abc.Mapping": "builtins.dict",
    "typing_extensions.Annotated": "typing.Annotated",
    "typing_extensions.Optional": "typing.Optional",
}

NONE_TYPE = "builtins.None"
DEFAULT_PARAM_TYPE = TypeRef("builtins.str")


@dataclass
class _ModuleContext:
    module: str
    is_package: bool
    imports: dict[str, str] = field(default_factory=dict)
    local_classes: dict[str, str] = field(default_factory=dict)


def module_name_for(path: Path, root: Path) -> tuple[str, bool]:
    rel = os.path.relpath(str(path.resolve()), str(root.resolve()))
    parts = Path(rel).with_suffix("").parts
    is_package = bool(parts) and parts[-1] == "__init__"
    if is_package:
        parts = parts[:-1]
    return ".".join(parts), is_package


class AstSymbolSource:
    """
    Symbol source over Python files.

    Uses ast only; does not import/execute code. Classes are kept in load
    order (files in scan order, classes in source order).
    """

    def __init__(self) -> None:
        self._classes: dict[str, ClassDecl] = {}
        self._contexts: dict[str, _ModuleContext] = {}

    @classmethod
    def from_directory(cls, root: Path, files: Optional[Iterable[str]] = None) -> "AstSymbolSource":
        root = root.resolve()
        src = cls()
        for p in files if files is not None else scan_python_files(root):
            fpath = Path(p)
            module, is_package = module_name_for(fpath, root)
            src.add_file(fpath, module, is_package=is_package)
        return src

    def add_file(self, path: Path, module: str, is_package: bool = False) -> None:
        try:
            source = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read {path}: {e}")
            return
        self.add_source(source, module, is_package=is_package, file_path=str(path))

    def add_source(self, source: str, module: str, is_package: bool = False, file_path: str = "") -> None:
        try:
            tree = ast.parse(source, filename=file_path or module)
        except SyntaxError as e:
            logger.warning(f"Skipping {file_path or module}: {e}")
            return

        ctx = _ModuleContext(module=module, is_package=is_package)
        self._contexts[module] = ctx

        for node in tree.body:
            if isinstance(node, ast.ClassDef):
                ctx.local_classes[node.name] = _join(module, node.name)
            elif isinstance(node, ast.Import):
                for alias in node.names:
                    if alias.asname:
                        ctx.imports[alias.asname] = alias.name
                    else:
                        head = alias.name.split(".", 1)[0]
                        ctx.imports[head] = head
            elif isinstance(node, ast.ImportFrom):
                base = _absolute_module(node, ctx)
                for alias in node.names:
                    if alias.name == "*":
                        continue
                    ctx.imports[alias.asname or alias.name] = _join(base, alias.name)

        for node in tree.body:
            if isinstance(node, ast.ClassDef):
                decl = self._class_decl(node, ctx, file_path)
                self._classes[decl.qualname] = decl

    # ----------------------------
    # SymbolSource
    # ----------------------------

    def classes_with_annotation(self, name: str) -> list[ClassDecl]:
        return [c for c in self._classes.values() if c.find_annotations(name)]

    def get_class(self, qualname: str) -> Optional[ClassDecl]:
        seen: set[str] = set()
        while qualname not in self._classes:
            # follow re-exports: pkg.User -> (pkg imports User from pkg.models)
            if qualname in seen or "." not in qualname:
                return None
            seen.add(qualname)
            module, name = qualname.rsplit(".", 1)
            ctx = self._contexts.get(module)
            if ctx is None or name not in ctx.imports:
                return None
            qualname = ctx.imports[name]
        return self._classes[qualname]

    # ----------------------------
    # Declarations
    # ----------------------------

    def _class_decl(self, node: ast.ClassDef, ctx: _ModuleContext, file_path: str) -> ClassDecl:
        functions: list[FunctionDecl] = []
        properties: list[PropertyDecl] = []

        for item in node.body:
            if isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef)):
                functions.append(self._function_decl(item, ctx))
            elif isinstance(item, ast.AnnAssign) and isinstance(item.target, ast.Name):
                tref, _ = self._type_ref(item.annotation, ctx)
                if tref.name == "typing.ClassVar":
                    continue
                properties.append(PropertyDecl(name=item.target.id, type=tref))

        bases = []
        for b in node.bases:
            tref, _ = self._type_ref(b, ctx)
            if tref.name != "builtins.object":
                bases.append(tref)

        return ClassDecl(
            qualname=_join(ctx.module, node.name),
            module=ctx.module,
            name=node.name,
            annotations=tuple(self._annotation(d, ctx) for d in node.decorator_list),
            functions=tuple(functions),
            properties=tuple(properties),
            bases=tuple(bases),
            file_path=file_path,
        )

    def _function_decl(self, node: ast.AST, ctx: _ModuleContext) -> FunctionDecl:
        annotations = tuple(self._annotation(d, ctx) for d in node.decorator_list)
        is_static = any(a.name == "staticmethod" for a in annotations)

        args = list(node.args.posonlyargs) + list(node.args.args)
        if args and not is_static and args[0].arg in ("self", "cls"):
            args = args[1:]
        args += list(node.args.kwonlyargs)

        params = []
        for a in args:
            if a.annotation is None:
                params.append(ParameterDecl(name=a.arg, type=DEFAULT_PARAM_TYPE))
                continue
            tref, markers = self._type_ref(a.annotation, ctx)
            params.append(ParameterDecl(name=a.arg, type=tref, annotations=markers))

        return_type = None
        if node.returns is not None:
            return_type, _ = self._type_ref(node.returns, ctx)

        return FunctionDecl(
            name=node.name,
            annotations=annotations,
            parameters=tuple(params),
            return_type=return_type,
            is_async=isinstance(node, ast.AsyncFunctionDef),
            line=getattr(node, "lineno", 0) or 0,
        )

    def _annotation(self, node: ast.AST, ctx: _ModuleContext) -> AnnotationRef:
        if isinstance(node, ast.Call):
            name = _dotted(node.func).rsplit(".", 1)[-1]
            return AnnotationRef(
                name=name,
                args=tuple(self._literal(a, ctx) for a in node.args),
                kwargs=tuple((kw.arg, self._literal(kw.value, ctx)) for kw in node.keywords if kw.arg),
            )
        return AnnotationRef(name=_dotted(node).rsplit(".", 1)[-1], called=False)

    def _literal(self, node: ast.AST, ctx: _ModuleContext) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, (ast.Name, ast.Attribute)):
            # class references become dotted identifiers
            return self._qualify(_dotted(node), ctx)
        if isinstance(node, (ast.List, ast.Tuple, ast.Set)):
            return tuple(self._literal(e, ctx) for e in node.elts)
        return None

    # ----------------------------
    # Types
    # ----------------------------

    def _qualify(self, dotted: str, ctx: _ModuleContext) -> str:
        head, _, rest = dotted.partition(".")
        if head in ctx.local_classes:
            base = ctx.local_classes[head]
        elif head in ctx.imports:
            base = ctx.imports[head]
        elif head in _BUILTINS or head == "None":
            base = f"builtins.{head}"
        else:
            base = head
        full = _join(base, rest) if rest else base
        return _TYPING_ALIASES.get(full, full)

    def _type_ref(self, node: ast.AST, ctx: _ModuleContext) -> tuple[TypeRef, tuple[AnnotationRef, ...]]:
        if isinstance(node, ast.Constant):
            if node.value is None:
                return TypeRef(NONE_TYPE), ()
            if isinstance(node.value, str):
                try:
                    inner = ast.parse(node.value, mode="eval").body
                except SyntaxError:
                    return TypeRef(node.value), ()
                return self._type_ref(inner, ctx)
            return TypeRef(repr(node.value)), ()

        if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
            members = [self._type_ref(m, ctx)[0] for m in _flatten_union(node)]
            return _union(members), ()

        if isinstance(node, ast.Subscript):
            base = self._qualify(_dotted(node.value), ctx)
            elts = node.slice.elts if isinstance(node.slice, ast.Tuple) else [node.slice]

            if base == "typing.Annotated":
                inner, _ = self._type_ref(elts[0], ctx)
                return inner, tuple(self._annotation(m, ctx) for m in elts[1:])
            if base == "typing.Optional":
                inner, _ = self._type_ref(elts[0], ctx)
                return inner.with_nullable(True), ()
            if base == "typing.Union":
                return _union([self._type_ref(e, ctx)[0] for e in elts]), ()

            args = tuple(self._type_ref(e, ctx)[0] for e in elts if not _is_ellipsis(e))
            return TypeRef(name=base, args=args), ()

        if isinstance(node, (ast.Name, ast.Attribute)):
            return TypeRef(self._qualify(_dotted(node), ctx)), ()

        return TypeRef(ast.unparse(node)), ()


def _absolute_module(node: ast.ImportFrom, ctx: _ModuleContext) -> str:
    if not node.level:
        return node.module or ""
    parts = ctx.module.split(".") if ctx.module else []
    if not ctx.is_package:
        parts = parts[:-1]
    if node.level > 1:
        parts = parts[: len(parts) - (node.level - 1)]
    if node.module:
        parts.append(node.module)
    return ".".join(parts)


def _dotted(node: ast.AST) -> str:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return f"{_dotted(node.value)}.{node.attr}"
    if isinstance(node, ast.Call):
        return _dotted(node.func)
    return ast.unparse(node)


def _join(base: str, name: str) -> str:
    return f"{base}.{name}" if base else name


def _flatten_union(node: ast.AST) -> list[ast.AST]:
    if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
        return _flatten_union(node.left) + _flatten_union(node.right)
    return [node]


def _is_ellipsis(node: ast.AST) -> bool:
    return isinstance(node, ast.Constant) and node.value is Ellipsis


def _union(members: list[TypeRef]) -> TypeRef:
    nullable = any(m.name == NONE_TYPE for m in members)
    rest = [m for m in members if m.name != NONE_TYPE]
    if len(rest) == 1:
        return rest[0].with_nullable(nullable or rest[0].nullable)
    if not rest:
        return TypeRef(NONE_TYPE)
    return TypeRef(name="typing.Union", args=tuple(rest), nullable=nullable)

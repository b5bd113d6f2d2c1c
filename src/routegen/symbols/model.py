from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol


@dataclass(frozen=True)
class TypeRef:
    """
    A resolved type expression.

    name is the dotted identifier of the outermost type (builtins.int,
    myapp.models.User, builtins.list, ...). args hold generic parameters in
    declaration order.
    """

    name: str
    args: tuple["TypeRef", ...] = ()
    nullable: bool = False

    @property
    def simple_name(self) -> str:
        return self.name.rsplit(".", 1)[-1]

    def with_nullable(self, nullable: bool) -> "TypeRef":
        return TypeRef(name=self.name, args=self.args, nullable=nullable)


@dataclass(frozen=True)
class AnnotationRef:
    name: str
    args: tuple[Any, ...] = ()
    kwargs: tuple[tuple[str, Any], ...] = ()
    called: bool = True

    def kwarg(self, key: str, default: Any = None) -> Any:
        for k, v in self.kwargs:
            if k == key:
                return v
        return default

    def first(self, key: str, default: Any = None) -> Any:
        """First positional argument, else keyword `key`."""
        if self.args:
            return self.args[0]
        return self.kwarg(key, default)


@dataclass(frozen=True)
class ParameterDecl:
    name: str
    type: TypeRef
    annotations: tuple[AnnotationRef, ...] = ()


@dataclass(frozen=True)
class PropertyDecl:
    name: str
    type: TypeRef


@dataclass(frozen=True)
class FunctionDecl:
    name: str
    annotations: tuple[AnnotationRef, ...] = ()
    parameters: tuple[ParameterDecl, ...] = ()
    return_type: Optional[TypeRef] = None
    is_async: bool = False
    line: int = 0


@dataclass(frozen=True)
class ClassDecl:
    qualname: str
    module: str
    name: str
    annotations: tuple[AnnotationRef, ...] = ()
    functions: tuple[FunctionDecl, ...] = ()
    properties: tuple[PropertyDecl, ...] = ()
    bases: tuple[TypeRef, ...] = ()
    file_path: str = ""

    def find_annotations(self, name: str) -> list[AnnotationRef]:
        return [a for a in self.annotations if a.name == name]


def find_annotation(annotations: tuple[AnnotationRef, ...], name: str) -> Optional[AnnotationRef]:
    for a in annotations:
        if a.name == name:
            return a
    return None


class SymbolSource(Protocol):
    """What the IR builder and schema emitter need from the host environment."""

    def classes_with_annotation(self, name: str) -> list[ClassDecl]:
        ...

    def get_class(self, qualname: str) -> Optional[ClassDecl]:
        ...


@dataclass
class StaticSymbolSource:
    """In-memory symbol source, handy when declarations come from elsewhere."""

    classes: list[ClassDecl] = field(default_factory=list)

    def classes_with_annotation(self, name: str) -> list[ClassDecl]:
        return [c for c in self.classes if c.find_annotations(name)]

    def get_class(self, qualname: str) -> Optional[ClassDecl]:
        for c in self.classes:
            if c.qualname == qualname:
                return c
        return None

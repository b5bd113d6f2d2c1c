from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Literal, Optional

from routegen.symbols.model import ClassDecl, TypeRef

HttpMethod = Literal["delete", "get", "head", "options", "patch", "post", "put"]

# detection priority when a function carries several method markers
HTTP_METHODS: tuple[HttpMethod, ...] = ("delete", "get", "head", "options", "patch", "post", "put")

NO_CONTENT = "builtins.None"
FILE_TYPE = "routegen.runtime.InMemoryFile"
CONTEXT_TYPES = frozenset({
    "fastapi.Request",
    "fastapi.requests.Request",
    "starlette.requests.Request",
})


class ParameterSource(str, Enum):
    PATH = "path"
    QUERY = "query"
    BODY = "body"
    FORM = "form"
    MULTIPART = "multipart"


@dataclass(frozen=True)
class ArgumentInfo:
    name: str
    type: str
    nullable: bool
    source: ParameterSource = ParameterSource.PATH
    type_ref: Optional[TypeRef] = None

    @property
    def is_context(self) -> bool:
        return self.type in CONTEXT_TYPES


@dataclass(frozen=True)
class EndpointInfo:
    method: HttpMethod
    path: str
    fn_name: str
    arguments: tuple[ArgumentInfo, ...] = ()
    code_on_success: Optional[int] = None
    wrappers: tuple[str, ...] = ()
    removed_wrappers: tuple[str, ...] = ()
    pair_with_code: bool = False
    file_result: bool = False
    return_type: str = NO_CONTENT
    return_ref: Optional[TypeRef] = None

    def has_source(self, source: ParameterSource) -> bool:
        return any(a.source == source for a in self.arguments)

    def arguments_from(self, source: ParameterSource) -> list[ArgumentInfo]:
        return [a for a in self.arguments if a.source == source]


@dataclass(frozen=True)
class RouteBundleInfo:
    path: str
    cls: ClassDecl
    wrappers: tuple[str, ...] = ()
    removed_wrappers: tuple[str, ...] = ()
    endpoints: tuple[EndpointInfo, ...] = ()


@dataclass
class PackageInfo:
    name: str
    bundles: list[RouteBundleInfo] = field(default_factory=list)

    def endpoint_count(self) -> int:
        return sum(len(b.endpoints) for b in self.bundles)


def join_url_parts(*parts: str) -> str:
    """
    "a/" + "/b" -> "a/b". Empty parts are skipped; no leading or trailing
    separator in the result.
    """
    trimmed = (p.strip("/") for p in parts if p)
    return "/".join(p for p in trimmed if p)


def resolve_wrappers(
    defaults: Iterable[str],
    bundle: RouteBundleInfo,
    endpoint: EndpointInfo,
) -> list[str]:
    """
    Final wrapper order, outermost first.

    defaults, then bundle additions minus bundle removals, then endpoint
    additions minus endpoint removals. Additions never duplicate an entry.
    """
    out: list[str] = []

    def add(items: Iterable[str]) -> None:
        for w in items:
            if w and w not in out:
                out.append(w)

    def remove(items: Iterable[str]) -> None:
        gone = set(items)
        out[:] = [w for w in out if w not in gone]

    add(defaults)
    add(bundle.wrappers)
    remove(bundle.removed_wrappers)
    add(endpoint.wrappers)
    remove(endpoint.removed_wrappers)
    return out

from __future__ import annotations

from typing import Optional

from loguru import logger

from routegen.config import FALLBACK_PACKAGE, GeneratorConfig
from routegen.errors import ConfigError
from routegen.ir.model import (
    FILE_TYPE,
    HTTP_METHODS,
    NO_CONTENT,
    ArgumentInfo,
    EndpointInfo,
    PackageInfo,
    ParameterSource,
    RouteBundleInfo,
)
from routegen.symbols.model import (
    AnnotationRef,
    ClassDecl,
    FunctionDecl,
    ParameterDecl,
    SymbolSource,
    TypeRef,
    find_annotation,
)

ROUTES_MARKER = "routes"
PACKAGE_MARKER = "package"
WRAP_MARKER = "wrap"
UNWRAP_MARKER = "unwrap"
SUCCESS_CODE_MARKER = "success_code"

# checked in this order; the first marker present wins
_SOURCE_MARKERS: tuple[tuple[str, ParameterSource], ...] = (
    ("Body", ParameterSource.BODY),
    ("Query", ParameterSource.QUERY),
    ("Form", ParameterSource.FORM),
    ("Multipart", ParameterSource.MULTIPART),
)


def build_packages(source: SymbolSource, config: GeneratorConfig) -> dict[str, PackageInfo]:
    """
    Walk every @routes class and build the IR.

    Enumeration order of classes, functions and parameters is kept as-is;
    it is the emission order downstream.
    """
    packages: dict[str, PackageInfo] = {}

    for cls in source.classes_with_annotation(ROUTES_MARKER):
        name = _package_name(cls, config)
        pkg = packages.get(name)
        if pkg is None:
            pkg = PackageInfo(name=name)
            packages[name] = pkg

        routes_ann = cls.find_annotations(ROUTES_MARKER)[0]
        endpoints = []
        for fn in cls.functions:
            endpoint = build_endpoint(fn)
            if endpoint is None:
                logger.debug(f"{cls.qualname}.{fn.name}: no HTTP method marker, skipped")
                continue
            endpoints.append(endpoint)

        pkg.bundles.append(
            RouteBundleInfo(
                path=_str_or_empty(routes_ann.first("path", "")),
                cls=cls,
                wrappers=_wrapper_ids(cls.annotations, WRAP_MARKER),
                removed_wrappers=_wrapper_ids(cls.annotations, UNWRAP_MARKER),
                endpoints=tuple(endpoints),
            )
        )

    logger.info(
        f"Built IR: {len(packages)} package(s), "
        f"{sum(p.endpoint_count() for p in packages.values())} endpoint(s)"
    )
    return packages


def build_endpoint(fn: FunctionDecl) -> Optional[EndpointInfo]:
    method_ann = None
    for method in HTTP_METHODS:
        method_ann = find_annotation(fn.annotations, method)
        if method_ann is not None:
            break
    if method_ann is None:
        return None

    path = method_ann.first("path") if method_ann.called else None
    if path is None:
        # @get / @get() without a path: the function name is the path
        path = fn.name

    return_ref, pair_with_code = unwrap_return_type(fn.return_type)

    code = _success_code(fn)
    if code is not None and pair_with_code:
        logger.debug(f"{fn.name}: success_code({code}) ignored, status comes from the returned pair")
        code = None

    return EndpointInfo(
        method=method,
        path=str(path),
        fn_name=fn.name,
        arguments=tuple(build_argument(p) for p in fn.parameters),
        code_on_success=code,
        wrappers=_wrapper_ids(fn.annotations, WRAP_MARKER),
        removed_wrappers=_wrapper_ids(fn.annotations, UNWRAP_MARKER),
        pair_with_code=pair_with_code,
        file_result=return_ref is not None and return_ref.name == FILE_TYPE,
        return_type=return_ref.name if return_ref is not None else NO_CONTENT,
        return_ref=return_ref,
    )


def unwrap_return_type(ref: Optional[TypeRef]) -> tuple[Optional[TypeRef], bool]:
    """tuple[int, T] -> (T, True); anything else -> (ref, False)."""
    if (
        ref is not None
        and ref.name == "builtins.tuple"
        and len(ref.args) == 2
        and ref.args[0].name == "builtins.int"
    ):
        return ref.args[1], True
    return ref, False


def build_argument(param: ParameterDecl) -> ArgumentInfo:
    source = ParameterSource.PATH
    for marker, candidate in _SOURCE_MARKERS:
        if find_annotation(param.annotations, marker) is not None:
            source = candidate
            break

    return ArgumentInfo(
        name=param.name,
        type=param.type.name,
        nullable=param.type.nullable,
        source=source,
        type_ref=param.type,
    )


def _package_name(cls: ClassDecl, config: GeneratorConfig) -> str:
    ann = find_annotation(cls.annotations, PACKAGE_MARKER)
    if ann is not None:
        explicit = ann.first("name")
        if isinstance(explicit, str) and explicit:
            return explicit
    return config.default_package or FALLBACK_PACKAGE


def _success_code(fn: FunctionDecl) -> Optional[int]:
    ann = find_annotation(fn.annotations, SUCCESS_CODE_MARKER)
    if ann is None:
        return None
    code = ann.first("code")
    if not isinstance(code, int) or isinstance(code, bool):
        raise ConfigError(f"{fn.name}: success_code expects an integer literal, got {code!r}")
    return code


def _wrapper_ids(annotations: tuple[AnnotationRef, ...], marker: str) -> tuple[str, ...]:
    out: list[str] = []
    for ann in annotations:
        if ann.name != marker:
            continue
        for arg in _flatten(ann.args):
            if isinstance(arg, str) and arg and arg not in out:
                out.append(arg)
    return tuple(out)


def _flatten(values: tuple) -> list:
    out = []
    for v in values:
        if isinstance(v, tuple):
            out.extend(_flatten(v))
        else:
            out.append(v)
    return out


def _str_or_empty(value: object) -> str:
    return value if isinstance(value, str) else ""

from __future__ import annotations

import re
from typing import Iterable, Mapping, Optional

from loguru import logger

from routegen.emit.code import Block, Line, Node, py_str, render
from routegen.ir.model import (
    EndpointInfo,
    PackageInfo,
    ParameterSource,
    RouteBundleInfo,
    resolve_wrappers,
)
from routegen.symbols.model import TypeRef

HEADER = "# Generated by routegen. Do not edit."

_NOT_IDENT = re.compile(r"[^0-9a-zA-Z_]+")

_GETTER_KIND = {
    ParameterSource.PATH: "path",
    ParameterSource.QUERY: "query",
    ParameterSource.FORM: "form",
}


def _ident(text: str) -> str:
    out = _NOT_IDENT.sub("_", text).strip("_") or "x"
    return f"_{out}" if out[0].isdigit() else out


class _Imports:
    """Modules referenced by the generated code, aliased to avoid clashing with locals."""

    def __init__(self) -> None:
        self.modules: dict[str, str] = {}

    def ref(self, dotted: str) -> str:
        if dotted.startswith("builtins."):
            return dotted[len("builtins."):]
        if "." not in dotted:
            logger.warning(f"'{dotted}' is not a dotted name; emitted as-is")
            return dotted
        module, name = dotted.rsplit(".", 1)
        alias = self.modules.setdefault(module, "mod_" + _ident(module))
        return f"{alias}.{name}"

    def type_expr(self, ref: TypeRef) -> str:
        if ref.args:
            inner = ", ".join(self.type_expr(a) for a in ref.args)
            expr = f"{self.ref(ref.name)}[{inner}]"
        else:
            expr = self.ref(ref.name)
        if ref.nullable and ref.name != "builtins.None":
            expr = f"{self.ref('typing.Optional')}[{expr}]"
        return expr

    def lines(self) -> list[Line]:
        return [Line(f"import {m} as {alias}") for m, alias in sorted(self.modules.items())]


def emit_routes(packages: Mapping[str, PackageInfo], default_wrappers: Iterable[str] = ()) -> str:
    """
    Render one FastAPI module with a register_<package>_routes(router)
    function per package. Returns "" when there is nothing to route.
    """
    if not packages:
        return ""

    imports = _Imports()
    defaults = list(default_wrappers)
    functions: list[Node] = []

    for pkg in packages.values():
        functions.append(Line())
        functions.append(Line())
        functions.append(_package_function(pkg, defaults, imports))

    head: list[Node] = [
        Line(HEADER),
        Line("from fastapi import APIRouter, Request"),
        Line("from fastapi.responses import Response"),
        Line(),
        Line("from routegen import runtime"),
    ]
    if imports.modules:
        head.append(Line())
        head.extend(imports.lines())

    return render(head + functions)


def _package_function(pkg: PackageInfo, defaults: list[str], imports: _Imports) -> Block:
    fn = Block(f"def register_{_ident(pkg.name)}_routes(router: APIRouter) -> None:")
    used_names: dict[str, int] = {}

    for index, bundle in enumerate(pkg.bundles):
        var = f"bundle{index}"
        prefix = bundle.path.strip("/")
        if index:
            fn.line()
        fn.line(f"{var} = APIRouter(prefix={py_str('/' + prefix)})" if prefix else f"{var} = APIRouter()")

        for endpoint in bundle.endpoints:
            name = _ident(f"{bundle.cls.name}_{endpoint.fn_name}")
            used_names[name] = used_names.get(name, 0) + 1
            if used_names[name] > 1:
                name = f"{name}_{used_names[name]}"

            fn.line()
            fn.add(*_endpoint(var, name, bool(prefix), bundle, endpoint, defaults, imports))

        fn.line()
        fn.line(f"router.include_router({var})")

    return fn


def _route_path(endpoint_path: str, has_prefix: bool) -> str:
    path = endpoint_path.strip("/")
    if path:
        return "/" + path
    # FastAPI rejects an empty path unless the router has a prefix
    return "" if has_prefix else "/"


def _endpoint(
    router_var: str,
    name: str,
    has_prefix: bool,
    bundle: RouteBundleInfo,
    endpoint: EndpointInfo,
    defaults: list[str],
    imports: _Imports,
) -> list[Node]:
    body = Block(f"async def {name}(request: Request) -> Response:")

    if endpoint.has_source(ParameterSource.FORM):
        body.line("form = await request.form()")
    if endpoint.has_source(ParameterSource.MULTIPART):
        body.line("multipart = await request.form()")

    call_args: list[str] = []
    multipart_locals: list[tuple[str, str, str, bool]] = []

    for index, arg in enumerate(endpoint.arguments):
        if arg.is_context:
            call_args.append("request")
            continue

        local = f"arg{index}"
        call_args.append(local)

        if arg.source == ParameterSource.BODY:
            type_expr = imports.type_expr(arg.type_ref or TypeRef(arg.type, nullable=arg.nullable))
            body.line(f"{local} = await runtime.receive_body(request, {type_expr})")
        elif arg.source == ParameterSource.MULTIPART:
            body.line(f"{local} = None")
            multipart_locals.append((local, arg.name, arg.type, arg.nullable))
        else:
            kind = _GETTER_KIND[arg.source]
            req = "optional" if arg.nullable else "required"
            holder = "form" if arg.source == ParameterSource.FORM else "request"
            body.line(
                f"{local} = runtime.get_{req}_{kind}_parameter({holder}, {py_str(arg.name)}, {py_str(arg.type)})"
            )

    if multipart_locals:
        loop = Block("for part_name, part in multipart.multi_items():")
        for i, (local, arg_name, arg_type, _) in enumerate(multipart_locals):
            keyword = "if" if i == 0 else "elif"
            loop.add(
                Block(f"{keyword} part_name == {py_str(arg_name)}:").line(
                    f"{local} = await runtime.get_multipart_parameter(part, {py_str(arg_name)}, {py_str(arg_type)})"
                )
            )
        loop.line("await runtime.dispose_part(part)")
        body.add(loop)

        for local, arg_name, _, nullable in multipart_locals:
            if nullable:
                continue
            body.add(
                Block(f"if {local} is None:").line(
                    f"raise runtime.ArgumentMissingError(\"form\", {py_str(arg_name)})"
                )
            )

    body.line(f"api = {imports.ref(bundle.cls.qualname)}()")

    call = f"runtime.invoke(api.{endpoint.fn_name}{''.join(', ' + a for a in call_args)})"
    wrappers = resolve_wrappers(defaults, bundle, endpoint)
    body.add(_wrapped_call(wrappers, call, imports))

    body.add(*_respond(endpoint))

    route = f"@{router_var}.{endpoint.method}({py_str(_route_path(endpoint.path, has_prefix))})"
    return [Line(route), body]


def _wrapped_call(wrappers: list[str], call: str, imports: _Imports) -> Node:
    """
    result = await A().wrap(
        lambda: B().wrap(
            lambda: <call>
        )
    )
    """
    if not wrappers:
        return Line(f"result = await {call}")

    inner: Optional[Node] = Line(f"lambda: {call}")
    for wrapper in reversed(wrappers[1:]):
        inner = Block(f"lambda: {imports.ref(wrapper)}().wrap(", [inner], footer=")")
    return Block(f"result = await {imports.ref(wrappers[0])}().wrap(", [inner], footer=")")


def _respond(endpoint: EndpointInfo) -> list[Node]:
    type_id = py_str(endpoint.return_type)
    if endpoint.pair_with_code:
        code, payload = "result[0]", "result[1]"
    else:
        code = str(endpoint.code_on_success or 200)
        payload = "result"

    out: list[Node] = [Line(f"response = await runtime.respond(request, {code}, {payload}, {type_id})")]
    if endpoint.file_result:
        header = Line(f"response.headers[\"Content-Disposition\"] = runtime.content_disposition({payload}.name)")
        out.append(Block(f"if {payload} is not None:", [header]))
    out.append(Line("return response"))
    return out

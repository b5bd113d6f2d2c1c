from __future__ import annotations

import copy
import json
import re
from typing import Any, Mapping, Optional

import yaml
from loguru import logger

from routegen.config import GeneratorConfig
from routegen.ir.model import (
    FILE_TYPE,
    NO_CONTENT,
    EndpointInfo,
    PackageInfo,
    ParameterSource,
    join_url_parts,
)
from routegen.symbols.model import ClassDecl, SymbolSource, TypeRef

OPENAPI_VERSION = "3.0.3"
BEARER_SCHEME = "bearerAuth"

_PRIMITIVES: dict[str, dict[str, str]] = {
    "builtins.str": {"type": "string"},
    "builtins.int": {"type": "integer"},
    "builtins.float": {"type": "number"},
    "builtins.bool": {"type": "boolean"},
    "builtins.bytes": {"type": "string", "format": "byte"},
    "uuid.UUID": {"type": "string", "format": "uuid"},
    "datetime.datetime": {"type": "string", "format": "date-time"},
    "datetime.date": {"type": "string", "format": "date"},
    "decimal.Decimal": {"type": "number"},
}
_ARRAYS = {"builtins.list", "builtins.set", "builtins.frozenset", "builtins.tuple"}
_ANY = {"typing.Any", "builtins.object"}

_NOT_NAME = re.compile(r"[^0-9a-zA-Z_.-]+")


class _NoAliasDumper(yaml.SafeDumper):
    def ignore_aliases(self, data: Any) -> bool:
        return True


class OpenAPIDocument:
    """Thin builder over the plain-dict OpenAPI document."""

    def __init__(self, title: str, version: str) -> None:
        self.info = {"title": title, "version": version}
        self.paths: dict[str, dict[str, Any]] = {}
        self.schemas: dict[str, dict[str, Any]] = {}
        self.security_schemes: dict[str, dict[str, Any]] = {}

    def add_operation(self, path: str, method: str, operation: dict[str, Any]) -> None:
        item = self.paths.setdefault(path, {})
        if method in item:
            logger.warning(f"Duplicate operation {method.upper()} {path}; the later one wins")
        item[method] = operation

    def add_schema(self, name: str, schema: dict[str, Any]) -> None:
        self.schemas[name] = schema

    def add_security_scheme(self, name: str, scheme: dict[str, Any]) -> None:
        self.security_schemes.setdefault(name, scheme)

    def to_dict(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "openapi": OPENAPI_VERSION,
            "info": dict(self.info),
            "paths": self.paths,
        }
        components: dict[str, Any] = {}
        if self.schemas:
            components["schemas"] = self.schemas
        if self.security_schemes:
            components["securitySchemes"] = self.security_schemes
        if components:
            doc["components"] = components
        return doc

    def dump(self, fmt: str = "yaml") -> str:
        data = self.to_dict()
        if fmt == "json":
            return json.dumps(data, indent=2) + "\n"
        return yaml.dump(data, Dumper=_NoAliasDumper, sort_keys=False, allow_unicode=True)


class SchemaResolver:
    """
    TypeRef -> schema.

    Classes become components referenced by $ref. A class is registered
    before its properties are resolved, so self- and mutually-referential
    types stop at the second encounter, and no class is resolved twice.
    Inherited properties are merged once the outermost resolve() returns,
    when every base schema involved is complete.
    """

    def __init__(self, source: SymbolSource, document: OpenAPIDocument) -> None:
        self.source = source
        self.document = document
        self._components: dict[str, str] = {}
        self._unresolved: set[str] = set()
        self._pending: dict[str, ClassDecl] = {}
        self._depth = 0

    def resolve(self, ref: TypeRef) -> dict[str, Any]:
        self._depth += 1
        try:
            schema = self._resolve(ref)
        finally:
            self._depth -= 1
        if self._depth == 0:
            while self._pending:
                self._merge_bases(next(iter(self._pending)))
        return schema

    def _resolve(self, ref: TypeRef) -> dict[str, Any]:
        name = ref.name

        if name in _PRIMITIVES:
            return dict(_PRIMITIVES[name])
        if name == FILE_TYPE:
            return {"type": "string", "format": "binary"}
        if name in _ANY:
            return {}

        if name in _ARRAYS:
            items = self.resolve(ref.args[0]) if ref.args else {"type": "string"}
            return {"type": "array", "items": items}

        if name == "builtins.dict":
            key = ref.args[0] if ref.args else None
            value = ref.args[1] if len(ref.args) > 1 else None
            return {
                "type": "object",
                "additionalProperties": self.resolve(value) if value is not None else {"type": "string"},
                "description": f"Map<{_simple(key)}, {_simple(value)}>",
            }

        if name == "typing.Union":
            return {"oneOf": [self.resolve(a) for a in ref.args]}

        return self._object(name)

    def _object(self, qualname: str) -> dict[str, Any]:
        if qualname in self._components:
            return _ref(self._components[qualname])

        decl = self.source.get_class(qualname)
        if decl is None:
            if qualname not in self._unresolved:
                self._unresolved.add(qualname)
                logger.warning(f"Cannot resolve type '{qualname}'; emitting an empty schema")
            return {}
        if decl.qualname in self._components:
            self._components[qualname] = self._components[decl.qualname]
            return _ref(self._components[qualname])

        component = self._component_name(decl)
        self._components[qualname] = component
        self._components[decl.qualname] = component

        schema: dict[str, Any] = {"type": "object"}
        self.document.add_schema(component, schema)
        self._fill(decl, schema)
        return _ref(component)

    def _fill(self, decl: ClassDecl, schema: dict[str, Any]) -> None:
        properties: dict[str, Any] = {}
        required: list[str] = []

        for prop in decl.properties:
            properties[prop.name] = self.resolve(prop.type)
            if not prop.type.nullable:
                required.append(prop.name)

        if properties:
            schema["properties"] = properties
        if required:
            schema["required"] = required

        bases = False
        for base in decl.bases:
            if self.source.get_class(base.name) is None:
                logger.debug(f"{decl.qualname}: base '{base.name}' not in sources, not merged")
                continue
            self._object(base.name)
            bases = True
        if bases:
            self._pending[decl.qualname] = decl

    def _merge_bases(self, qualname: str) -> None:
        # one level: a base is merged first, so it already carries its own bases
        decl = self._pending.pop(qualname)
        schema = self.document.schemas[self._components[qualname]]
        properties = schema.pop("properties", {})
        required = schema.pop("required", [])

        for base in decl.bases:
            base_decl = self.source.get_class(base.name)
            if base_decl is None:
                continue
            if base_decl.qualname in self._pending:
                self._merge_bases(base_decl.qualname)
            parent = self.document.schemas.get(self._components[base_decl.qualname], {})
            for key, value in parent.get("properties", {}).items():
                if key not in properties:
                    properties[key] = copy.deepcopy(value)
            required.extend(parent.get("required", []))

        if properties:
            schema["properties"] = properties
        if required:
            schema["required"] = list(dict.fromkeys(required))

    def _component_name(self, decl: ClassDecl) -> str:
        taken = set(self.document.schemas)
        if decl.name not in taken:
            return decl.name
        return _NOT_NAME.sub("_", decl.qualname)


def _ref(component: str) -> dict[str, str]:
    return {"$ref": f"#/components/schemas/{component}"}


def _simple(ref: Optional[TypeRef]) -> str:
    return ref.simple_name if ref is not None else "str"


class OpenAPIEmitter:
    def __init__(self, source: SymbolSource, config: GeneratorConfig) -> None:
        self.source = source
        self.config = config

    def build(self, packages: Mapping[str, PackageInfo]) -> OpenAPIDocument:
        document = OpenAPIDocument(self.config.openapi_title, self.config.openapi_version)
        resolver = SchemaResolver(self.source, document)

        for pkg in packages.values():
            opts = self.config.package_options(pkg.name)
            secured = opts.security == "bearer"
            if secured:
                document.add_security_scheme(BEARER_SCHEME, {"type": "http", "scheme": "bearer"})
            elif opts.security:
                logger.warning(f"Package '{pkg.name}': unsupported security type '{opts.security}'")

            for bundle in pkg.bundles:
                for endpoint in bundle.endpoints:
                    operation = self._operation(endpoint, resolver)
                    if secured:
                        operation["security"] = [{BEARER_SCHEME: []}]
                    path = "/" + join_url_parts(opts.path, bundle.path, endpoint.path)
                    document.add_operation(path, endpoint.method, operation)

        return document

    def emit(self, packages: Mapping[str, PackageInfo]) -> str:
        if not packages:
            return ""
        return self.build(packages).dump(self.config.openapi_format)

    def _operation(self, endpoint: EndpointInfo, resolver: SchemaResolver) -> dict[str, Any]:
        operation: dict[str, Any] = {}

        parameters = []
        for arg in endpoint.arguments:
            if arg.source not in (ParameterSource.PATH, ParameterSource.QUERY) or arg.is_context:
                continue
            parameters.append({
                "name": arg.name,
                "in": arg.source.value,
                "required": not arg.nullable,
                "schema": resolver.resolve(arg.type_ref or TypeRef(arg.type)),
            })
        if parameters:
            operation["parameters"] = parameters

        body = self._request_body(endpoint, resolver)
        if body is not None:
            operation["requestBody"] = body

        operation["responses"] = self._responses(endpoint, resolver)
        return operation

    def _request_body(self, endpoint: EndpointInfo, resolver: SchemaResolver) -> Optional[dict[str, Any]]:
        # JSON body beats multipart beats form when several are declared
        body_args = endpoint.arguments_from(ParameterSource.BODY)
        if body_args:
            arg = body_args[-1]
            return {
                "required": not arg.nullable,
                "content": {
                    "application/json": {"schema": resolver.resolve(arg.type_ref or TypeRef(arg.type))},
                },
            }

        for source, media_type in (
            (ParameterSource.MULTIPART, "multipart/form-data"),
            (ParameterSource.FORM, "application/x-www-form-urlencoded"),
        ):
            args = endpoint.arguments_from(source)
            if not args:
                continue
            schema: dict[str, Any] = {
                "type": "object",
                "properties": {a.name: resolver.resolve(a.type_ref or TypeRef(a.type)) for a in args},
            }
            required = [a.name for a in args if not a.nullable]
            if required:
                schema["required"] = required
            return {"content": {media_type: {"schema": schema}}}

        return None

    def _responses(self, endpoint: EndpointInfo, resolver: SchemaResolver) -> dict[str, Any]:
        if endpoint.pair_with_code:
            code = "default"
        else:
            code = str(endpoint.code_on_success or 200)

        response: dict[str, Any] = {"description": "Default response" if endpoint.pair_with_code else "Success"}
        if endpoint.return_type == "builtins.str":
            response["content"] = {"text/plain": {"schema": {"type": "string"}}}
        elif endpoint.return_type != NO_CONTENT:
            schema = resolver.resolve(endpoint.return_ref or TypeRef(endpoint.return_type))
            response["content"] = {"application/json": {"schema": schema}}

        return {code: response}

"""
Helpers imported by generated route modules.

Converters and responders are keyed by stable type identifiers
("builtins.int", "uuid.UUID", "routegen.runtime.InMemoryFile"), the same
dotted names the generator writes into the routing code.
"""

from __future__ import annotations

import inspect
import json
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union
from urllib.parse import quote

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import TypeAdapter, ValidationError
from starlette.datastructures import FormData, UploadFile

T = TypeVar("T")

FromStringConverter = Callable[[str], Any]
FromFileConverter = Callable[[UploadFile], Awaitable[Any]]
Responder = Callable[[Request, int, Any], Awaitable[Response]]

NO_CONTENT = "builtins.None"


class ArgumentMissingError(HTTPException):
    def __init__(self, kind: str, name: str) -> None:
        super().__init__(status_code=400, detail=f"Missing required {kind} parameter '{name}'")
        self.kind = kind
        self.parameter = name


class ConverterMissingError(RuntimeError):
    """No converter registered for a target type. A setup bug, not a bad request."""


@dataclass
class InMemoryFile:
    name: str
    content_type: Optional[str]
    data: bytes


class Wrapper:
    """
    Around-advice for handler calls. Subclasses override wrap() and must
    await block() exactly once to run the inner call.
    """

    async def wrap(self, block: Callable[[], Awaitable[T]]) -> T:
        return await block()


_string_converters: dict[str, FromStringConverter] = {}
_file_converters: dict[str, FromFileConverter] = {}
_responders: dict[str, Responder] = {}


def type_id(type_: Union[type, str]) -> str:
    if isinstance(type_, str):
        return type_
    return f"{type_.__module__}.{type_.__qualname__}"


def register_string_converter(type_: Union[type, str], fn: FromStringConverter) -> None:
    _string_converters[type_id(type_)] = fn


def register_file_converter(type_: Union[type, str], fn: FromFileConverter) -> None:
    _file_converters[type_id(type_)] = fn


def register_responder(type_: Union[type, str], fn: Responder) -> None:
    _responders[type_id(type_)] = fn


# ----------------------------
# Parameter extraction
# ----------------------------

def get_optional_path_parameter(request: Request, name: str, type_: str) -> Any:
    value = _path_value(request, name)
    if value is None:
        return None
    return _convert(value, type_, name)


def get_required_path_parameter(request: Request, name: str, type_: str) -> Any:
    value = _path_value(request, name)
    if value is None:
        raise ArgumentMissingError("path", name)
    return _convert(value, type_, name)


def _path_value(request: Request, name: str) -> Any:
    # names missing from the route template are read from the query string
    if name in request.path_params:
        return request.path_params[name]
    return request.query_params.get(name)


def get_optional_query_parameter(request: Request, name: str, type_: str) -> Any:
    value = request.query_params.get(name)
    if value is None:
        return None
    return _convert(value, type_, name)


def get_required_query_parameter(request: Request, name: str, type_: str) -> Any:
    value = request.query_params.get(name)
    if value is None:
        raise ArgumentMissingError("query", name)
    return _convert(value, type_, name)


def get_optional_form_parameter(form: FormData, name: str, type_: str) -> Any:
    value = form.get(name)
    if value is None:
        return None
    return _convert(value, type_, name)


def get_required_form_parameter(form: FormData, name: str, type_: str) -> Any:
    value = form.get(name)
    if value is None:
        raise ArgumentMissingError("form", name)
    return _convert(value, type_, name)


async def get_multipart_parameter(part: Any, name: str, type_: str) -> Any:
    if isinstance(part, UploadFile):
        converter = _file_converters.get(type_)
        if converter is None:
            raise ConverterMissingError(f"Converter from file part to {type_} is undefined")
        return await converter(part)
    if isinstance(part, str):
        return _convert(part, type_, name)
    return None


async def dispose_part(part: Any) -> None:
    if isinstance(part, UploadFile):
        await part.close()


async def receive_body(request: Request, type_: Any) -> Any:
    try:
        data = await request.json()
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Malformed JSON body: {e}") from e
    try:
        return TypeAdapter(type_).validate_python(data)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=jsonable_encoder(e.errors())) from e


async def invoke(fn: Callable[..., Any], *args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _convert(value: Any, type_: str, name: str) -> Any:
    if not isinstance(value, str):
        # already converted by the router (e.g. {id:int})
        return value
    converter = _string_converters.get(type_)
    if converter is None:
        raise ConverterMissingError(f"Converter from str to {type_} is undefined")
    try:
        return converter(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid value for parameter '{name}': {e}") from e


def _to_bool(value: str) -> bool:
    v = value.strip().lower()
    if v in ("true", "1", "yes", "on"):
        return True
    if v in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


# ----------------------------
# Responses
# ----------------------------

async def respond(request: Request, code: int, value: Any, type_: str) -> Response:
    responder = _responders.get(type_)
    if responder is None:
        return JSONResponse(status_code=code, content=jsonable_encoder(value))
    return await responder(request, code, value)


def content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


async def _respond_text(request: Request, code: int, value: Any) -> Response:
    if value is None:
        return PlainTextResponse("", status_code=code)
    return PlainTextResponse(str(value), status_code=code)


async def _respond_empty(request: Request, code: int, value: Any) -> Response:
    return Response(status_code=code)


async def _respond_file(request: Request, code: int, value: Any) -> Response:
    if value is None:
        return Response(status_code=code)
    return Response(content=value.data, status_code=code, media_type=value.content_type)


async def _read_upload(part: UploadFile) -> InMemoryFile:
    return InMemoryFile(
        name=part.filename or "unnamed",
        content_type=part.content_type,
        data=await part.read(),
    )


register_string_converter(str, lambda s: s)
register_string_converter(int, int)
register_string_converter(float, float)
register_string_converter(bool, _to_bool)
register_string_converter(uuid.UUID, uuid.UUID)

register_file_converter(InMemoryFile, _read_upload)

register_responder(str, _respond_text)
register_responder(NO_CONTENT, _respond_empty)
register_responder(InMemoryFile, _respond_file)

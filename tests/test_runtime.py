import asyncio
import uuid

import pytest
from fastapi import HTTPException
from fastapi.responses import PlainTextResponse
from starlette.requests import Request

from routegen import runtime


def make_request(query: bytes = b"", path_params=None) -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [],
        "query_string": query,
        "path_params": path_params or {},
    })


def test_path_and_query_conversion():
    req = make_request(b"n=5&flag=off&id=" + str(uuid.UUID(int=1)).encode(), {"x": "2.5"})

    assert runtime.get_required_query_parameter(req, "n", "builtins.int") == 5
    assert runtime.get_required_query_parameter(req, "flag", "builtins.bool") is False
    assert runtime.get_required_query_parameter(req, "id", "uuid.UUID") == uuid.UUID(int=1)
    assert runtime.get_required_path_parameter(req, "x", "builtins.float") == 2.5
    assert runtime.get_optional_query_parameter(req, "missing", "builtins.int") is None


def test_missing_required_value_is_400():
    with pytest.raises(runtime.ArgumentMissingError) as info:
        runtime.get_required_query_parameter(make_request(), "page", "builtins.int")
    assert info.value.status_code == 400
    assert info.value.detail == "Missing required query parameter 'page'"


def test_unparsable_value_is_400():
    with pytest.raises(HTTPException) as info:
        runtime.get_required_query_parameter(make_request(b"n=abc"), "n", "builtins.int")
    assert info.value.status_code == 400


def test_missing_converter_is_a_setup_error():
    with pytest.raises(runtime.ConverterMissingError):
        runtime.get_required_query_parameter(make_request(b"d=1.5"), "d", "decimal.Decimal")


def test_custom_converter_and_responder_registration():
    runtime.register_string_converter("units.Celsius", lambda s: float(s.rstrip("C")))
    assert runtime.get_required_query_parameter(make_request(b"t=21C"), "t", "units.Celsius") == 21.0

    async def respond_celsius(request, code, value):
        return PlainTextResponse(f"{value:.1f}C", status_code=code)

    runtime.register_responder("units.Celsius", respond_celsius)
    response = asyncio.run(runtime.respond(make_request(), 202, 3, "units.Celsius"))
    assert response.status_code == 202
    assert response.body == b"3.0C"


def test_respond_falls_back_to_json():
    response = asyncio.run(runtime.respond(make_request(), 201, {"id": uuid.UUID(int=2)}, "app.models.Thing"))
    assert response.status_code == 201
    assert response.headers["content-type"] == "application/json"
    assert b"00000000-0000-0000-0000-000000000002" in response.body


def test_builtin_responders():
    text = asyncio.run(runtime.respond(make_request(), 200, "hi", "builtins.str"))
    assert text.body == b"hi"

    empty = asyncio.run(runtime.respond(make_request(), 204, None, runtime.NO_CONTENT))
    assert empty.status_code == 204
    assert empty.body == b""


def test_invoke_handles_sync_and_async():
    async def twice(x):
        return x * 2

    assert asyncio.run(runtime.invoke(lambda x: x + 1, 1)) == 2
    assert asyncio.run(runtime.invoke(twice, 4)) == 8


def test_content_disposition_quotes_non_ascii():
    assert runtime.content_disposition("report.pdf") == 'attachment; filename="report.pdf"'
    assert runtime.content_disposition("отчёт.pdf").startswith("attachment; filename*=utf-8''")


def test_path_getter_falls_back_to_query_string():
    req = make_request(b"id=7", {"other": "x"})
    assert runtime.get_required_path_parameter(req, "id", "builtins.int") == 7
    assert runtime.get_optional_path_parameter(make_request(), "id", "builtins.int") is None

    # the route template wins over the query string
    req = make_request(b"id=7", {"id": "9"})
    assert runtime.get_required_path_parameter(req, "id", "builtins.int") == 9


def test_none_text_result_has_empty_body():
    response = asyncio.run(runtime.respond(make_request(), 200, None, "builtins.str"))
    assert response.status_code == 200
    assert response.body == b""

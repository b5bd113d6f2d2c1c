from __future__ import annotations

from typing import Any, Callable, TypeVar

T = TypeVar("T")

_META_ATTR = "__routegen__"


def _record(target: T, key: str, value: Any) -> T:
    meta = target.__dict__.get(_META_ATTR)
    if meta is None:
        meta = {}
        setattr(target, _META_ATTR, meta)
    meta.setdefault(key, []).append(value)
    return target


def metadata(target: Any) -> dict[str, list[Any]]:
    return dict(getattr(target, "__dict__", {}).get(_META_ATTR, {}))


# ----------------------------
# Class level
# ----------------------------

def routes(path: str = "") -> Callable[[T], T]:
    """
    Mark a class as a route bundle mounted under `path`.

    routegen reads this statically from source; at runtime it only records
    metadata on the class.
    """
    def deco(cls: T) -> T:
        return _record(cls, "routes", path)
    return deco


def package(name: str) -> Callable[[T], T]:
    def deco(cls: T) -> T:
        return _record(cls, "package", name)
    return deco


# ----------------------------
# Class or function level
# ----------------------------

def wrap(*wrappers: Any) -> Callable[[T], T]:
    def deco(target: T) -> T:
        return _record(target, "wrap", wrappers)
    return deco


def unwrap(*wrappers: Any) -> Callable[[T], T]:
    def deco(target: T) -> T:
        return _record(target, "unwrap", wrappers)
    return deco


# ----------------------------
# Function level
# ----------------------------

def success_code(code: int) -> Callable[[T], T]:
    def deco(fn: T) -> T:
        return _record(fn, "success_code", code)
    return deco


def _http_method(method: str):
    def factory(path: Any = None):
        # bare usage: @get
        if callable(path):
            return _record(path, method, None)

        def deco(fn: T) -> T:
            return _record(fn, method, path)
        return deco

    factory.__name__ = method
    return factory


delete = _http_method("delete")
get = _http_method("get")
head = _http_method("head")
options = _http_method("options")
patch = _http_method("patch")
post = _http_method("post")
put = _http_method("put")


# ----------------------------
# Parameter sources, used as Annotated[T, Query]
# ----------------------------

class _Source:
    def __init__(self, name: str) -> None:
        self.name = name

    def __call__(self) -> "_Source":
        return self

    def __repr__(self) -> str:
        return self.name


Body = _Source("Body")
Query = _Source("Query")
Form = _Source("Form")
Multipart = _Source("Multipart")

import textwrap
from pathlib import Path

from routegen.symbols.ast_source import AstSymbolSource, module_name_for


def load(modules: dict) -> AstSymbolSource:
    src = AstSymbolSource()
    for module, text in modules.items():
        src.add_source(textwrap.dedent(text), module)
    return src


def test_routes_class_functions_and_parameters():
    src = load({
        "app.api": """
            from typing import Annotated, Optional
            from fastapi import Request
            from routegen.markers import routes, get, Query, Body
            from app.models import User

            @routes("users")
            class Users:
                @get("{id}")
                async def get_user(self, request: Request, id: int, active: Annotated[Optional[bool], Query]) -> str:
                    return ""

                def helper(self, x):
                    return x

            class NotRoutes:
                pass
        """,
    })

    classes = src.classes_with_annotation("routes")
    assert [c.qualname for c in classes] == ["app.api.Users"]

    users = classes[0]
    assert users.annotations[0].args == ("users",)
    assert [f.name for f in users.functions] == ["get_user", "helper"]

    fn = users.functions[0]
    assert fn.is_async
    assert fn.annotations[0].name == "get"
    assert fn.annotations[0].args == ("{id}",)
    assert [p.name for p in fn.parameters] == ["request", "id", "active"]
    assert fn.parameters[0].type.name == "fastapi.Request"
    assert fn.parameters[1].type.name == "builtins.int"
    assert fn.parameters[2].type.name == "builtins.bool"
    assert fn.parameters[2].type.nullable is True
    assert [a.name for a in fn.parameters[2].annotations] == ["Query"]
    assert fn.return_type.name == "builtins.str"

    # unannotated parameters default to str
    assert users.functions[1].parameters[0].type.name == "builtins.str"
    assert users.functions[1].return_type is None


def test_union_syntax_tuple_and_string_annotations():
    src = load({
        "m": """
            @routes()
            class A:
                @post
                def f(self, a: int | None, b: "list[B]", c: dict[str, int]) -> tuple[int, B]:
                    ...

            class B:
                pass
        """,
    })
    fn = src.classes_with_annotation("routes")[0].functions[0]
    a, b, c = fn.parameters

    assert a.type.name == "builtins.int" and a.type.nullable
    assert b.type.name == "builtins.list"
    assert b.type.args[0].name == "m.B"
    assert [t.name for t in c.type.args] == ["builtins.str", "builtins.int"]

    assert fn.return_type.name == "builtins.tuple"
    assert [t.name for t in fn.return_type.args] == ["builtins.int", "m.B"]

    # bare decorator
    assert fn.annotations[0].name == "post"
    assert fn.annotations[0].called is False


def test_wrapper_class_references_resolve_through_imports():
    src = load({
        "app.api": """
            from app import wrappers
            from app.wrappers import Audit as Audited

            @routes("x")
            @wrap(Audited, wrappers.Tx, "plain.Name")
            class A:
                pass
        """,
    })
    cls = src.classes_with_annotation("routes")[0]
    wrap_ann = [a for a in cls.annotations if a.name == "wrap"][0]
    assert wrap_ann.args == ("app.wrappers.Audit", "app.wrappers.Tx", "plain.Name")


def test_properties_bases_and_reexports():
    src = load({
        "app.models": """
            from typing import ClassVar, Optional

            class Base:
                id: int

            class User(Base):
                name: str
                email: Optional[str] = None
                registry: ClassVar[dict] = {}
        """,
    })
    src.add_source("from .models import User\n", "app", is_package=True)

    user = src.get_class("app.models.User")
    assert [p.name for p in user.properties] == ["name", "email"]
    assert user.properties[1].type.nullable
    assert [b.name for b in user.bases] == ["app.models.Base"]

    # package re-export
    assert src.get_class("app.User") is user
    assert src.get_class("app.Missing") is None


def test_relative_imports_from_module():
    src = load({})
    src.add_source(
        textwrap.dedent("""
            from ..models import User

            @routes("u")
            class Api:
                @get("")
                def one(self) -> User:
                    ...
        """),
        "app.api.users",
    )
    fn = src.classes_with_annotation("routes")[0].functions[0]
    assert fn.return_type.name == "app.models.User"


def test_syntax_error_file_is_skipped():
    src = load({"broken": "class A(:\n"})
    assert src.classes_with_annotation("routes") == []


def test_module_name_for_paths(tmp_path: Path):
    assert module_name_for(tmp_path / "app" / "api.py", tmp_path) == ("app.api", False)
    assert module_name_for(tmp_path / "app" / "__init__.py", tmp_path) == ("app", True)

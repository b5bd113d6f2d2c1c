import textwrap

from routegen.config import GeneratorConfig
from routegen.emit.routes import emit_routes
from routegen.ir.builder import build_packages
from routegen.symbols.ast_source import AstSymbolSource


def emit(text: str, default_wrappers=()) -> str:
    src = AstSymbolSource()
    src.add_source(textwrap.dedent(text), "app.api")
    packages = build_packages(src, GeneratorConfig())
    out = emit_routes(packages, default_wrappers)
    # generated module must at least be valid Python
    compile(out, "generated_routes.py", "exec")
    return out


def test_get_with_path_and_query_arguments():
    out = emit("""
        from typing import Annotated, Optional
        from routegen.markers import routes, get, Query

        @routes("users")
        class Users:
            @get("")
            def get_user(self, id: int, active: Annotated[Optional[bool], Query]) -> str:
                return ""
    """)

    assert "def register_default_routes(router: APIRouter) -> None:" in out
    assert 'bundle0 = APIRouter(prefix="/users")' in out
    assert '    @bundle0.get("")\n' in out
    assert "async def Users_get_user(request: Request) -> Response:" in out
    assert 'arg0 = runtime.get_required_path_parameter(request, "id", "builtins.int")' in out
    assert 'arg1 = runtime.get_optional_query_parameter(request, "active", "builtins.bool")' in out
    assert "api = mod_app_api.Users()" in out
    assert "result = await runtime.invoke(api.get_user, arg0, arg1)" in out
    assert 'response = await runtime.respond(request, 200, result, "builtins.str")' in out
    assert "router.include_router(bundle0)" in out
    assert "import app.api as mod_app_api" in out


def test_root_bundle_paths():
    out = emit("""
        @routes()
        class Root:
            @get("")
            def index(self) -> str: ...

            @get("/health/")
            def health(self) -> str: ...
    """)
    assert "bundle0 = APIRouter()" in out
    assert '@bundle0.get("/")' in out
    assert '@bundle0.get("/health")' in out


def test_context_argument_is_passed_through():
    out = emit("""
        from fastapi import Request

        @routes("x")
        class A:
            @get("y")
            def f(self, request: Request, n: int) -> str: ...
    """)
    assert "arg0" not in out
    assert "result = await runtime.invoke(api.f, request, arg1)" in out


def test_wrappers_nest_outermost_first():
    out = emit(
        """
        from app.wrappers import Tx, Audit

        @routes("a")
        @wrap(Tx)
        class A:
            @get("x")
            @wrap(Audit)
            def x(self) -> str: ...
        """,
        default_wrappers=["app.wrappers.Timing"],
    )
    expected = textwrap.indent(textwrap.dedent("""\
        result = await mod_app_wrappers.Timing().wrap(
            lambda: mod_app_wrappers.Tx().wrap(
                lambda: mod_app_wrappers.Audit().wrap(
                    lambda: runtime.invoke(api.x)
                )
            )
        )
    """), " " * 8)
    assert expected in out
    assert "import app.wrappers as mod_app_wrappers" in out


def test_form_and_body_extraction():
    out = emit("""
        from typing import Annotated, Optional
        from app.models import User

        @routes("forms")
        class A:
            @post("login")
            def login(self, name: Annotated[str, Form], remember: Annotated[Optional[bool], Form]) -> str: ...

            @post("users")
            @success_code(201)
            def create(self, user: Annotated[User, Body]) -> User: ...

            @put("many")
            def many(self, users: Annotated[list[User], Body]): ...
    """)
    lines = out.splitlines()
    form_line = next(i for i, l in enumerate(lines) if "form = await request.form()" in l)
    name_line = next(i for i, l in enumerate(lines) if 'get_required_form_parameter(form, "name", "builtins.str")' in l)
    assert form_line < name_line
    assert 'runtime.get_optional_form_parameter(form, "remember", "builtins.bool")' in out

    assert "arg0 = await runtime.receive_body(request, mod_app_models.User)" in out
    assert 'response = await runtime.respond(request, 201, result, "app.models.User")' in out
    assert "arg0 = await runtime.receive_body(request, list[mod_app_models.User])" in out
    assert 'response = await runtime.respond(request, 200, result, "builtins.None")' in out


def test_multipart_loop_and_required_check():
    out = emit("""
        from typing import Annotated, Optional
        from routegen.runtime import InMemoryFile

        @routes("files")
        class Files:
            @post("upload")
            def upload(
                self,
                file: Annotated[InMemoryFile, Multipart],
                note: Annotated[Optional[str], Multipart],
            ) -> tuple[int, InMemoryFile]: ...
    """)
    expected = textwrap.indent(textwrap.dedent("""\
        multipart = await request.form()
        arg0 = None
        arg1 = None
        for part_name, part in multipart.multi_items():
            if part_name == "file":
                arg0 = await runtime.get_multipart_parameter(part, "file", "routegen.runtime.InMemoryFile")
            elif part_name == "note":
                arg1 = await runtime.get_multipart_parameter(part, "note", "builtins.str")
            await runtime.dispose_part(part)
        if arg0 is None:
            raise runtime.ArgumentMissingError("form", "file")
        api = mod_app_api.Files()
    """), " " * 8)
    assert expected in out
    assert "if arg1 is None" not in out
    assert (
        'response = await runtime.respond(request, result[0], result[1], "routegen.runtime.InMemoryFile")'
        in out
    )
    guarded = textwrap.indent(textwrap.dedent("""\
        if result[1] is not None:
            response.headers["Content-Disposition"] = runtime.content_disposition(result[1].name)
        return response
    """), " " * 8)
    assert guarded in out


def test_one_function_per_package():
    out = emit("""
        @routes("a")
        class A:
            @get("x")
            def x(self): ...

        @routes("b")
        @package("admin")
        class B:
            @get("y")
            def y(self): ...
    """)
    assert "def register_default_routes(router: APIRouter) -> None:" in out
    assert "def register_admin_routes(router: APIRouter) -> None:" in out
    assert out.index("register_default_routes") < out.index("register_admin_routes")


def test_no_packages_emits_nothing():
    assert emit_routes({}) == ""

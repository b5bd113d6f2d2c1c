from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from loguru import logger

from routegen.config import GENERATOR_OPENAPI, GENERATOR_ROUTES, GeneratorConfig
from routegen.emit.openapi import OpenAPIEmitter
from routegen.emit.routes import emit_routes
from routegen.errors import SourceError
from routegen.ir.builder import build_packages
from routegen.ir.model import PackageInfo, join_url_parts, resolve_wrappers
from routegen.repo.scanner import scan_python_files
from routegen.symbols.ast_source import AstSymbolSource
from routegen.symbols.model import SymbolSource

ROUTES_FILE = "generated_routes.py"
OPENAPI_FILE = "openapi"


@dataclass(frozen=True)
class GenerateResult:
    packages: dict[str, PackageInfo]
    files_scanned: int
    endpoints: int
    generators: list[str]
    written: list[str]


def load_source(src_path: Path, exclude: frozenset[str] = frozenset()) -> tuple[AstSymbolSource, int]:
    src_path = src_path.expanduser().resolve()
    if not src_path.is_dir():
        raise SourceError(f"Source path is not a directory: {src_path}")
    files = scan_python_files(src_path, exclude=exclude)
    return AstSymbolSource.from_directory(src_path, files), len(files)


def generate(source: SymbolSource, config: GeneratorConfig) -> tuple[dict[str, PackageInfo], dict[str, str]]:
    """
    Build the IR once and run each selected emitter over it.

    Returns the packages and {file name: text}; emitters with nothing to
    say contribute no file.
    """
    packages = build_packages(source, config)
    outputs: dict[str, str] = {}

    if config.runs(GENERATOR_ROUTES):
        text = emit_routes(packages, config.default_wrappers)
        if text:
            outputs[ROUTES_FILE] = text

    if config.runs(GENERATOR_OPENAPI):
        text = OpenAPIEmitter(source, config).emit(packages)
        if text:
            outputs[f"{OPENAPI_FILE}.{config.openapi_format}"] = text

    return packages, outputs


def run_generate(src_path: Path, out_dir: Path, options: Mapping[str, str]) -> GenerateResult:
    config = GeneratorConfig.from_options(options)
    out_dir = out_dir.expanduser().resolve()

    # never scan our own output
    exclude = frozenset({out_dir.name}) if out_dir.is_relative_to(src_path.expanduser().resolve()) else frozenset()
    source, files_scanned = load_source(src_path, exclude=exclude)

    packages, outputs = generate(source, config)

    written: list[str] = []
    if outputs:
        out_dir.mkdir(parents=True, exist_ok=True)
    for name, text in outputs.items():
        target = out_dir / name
        with open(target, "w", encoding="utf-8") as fh:
            fh.write(text)
        written.append(str(target))
        logger.info(f"Wrote {target}")

    if not outputs:
        logger.info("No endpoints found; nothing written")

    return GenerateResult(
        packages=packages,
        files_scanned=files_scanned,
        endpoints=sum(p.endpoint_count() for p in packages.values()),
        generators=[g for g in (GENERATOR_ROUTES, GENERATOR_OPENAPI) if config.runs(g)],
        written=written,
    )


def endpoint_rows(packages: Mapping[str, PackageInfo], config: Optional[GeneratorConfig] = None) -> list[dict]:
    """Flat rows for listing; paths include the package base path when configured."""
    config = config or GeneratorConfig()
    rows = []
    for pkg in packages.values():
        base = config.package_options(pkg.name).path
        for bundle in pkg.bundles:
            for ep in bundle.endpoints:
                rows.append({
                    "package": pkg.name,
                    "method": ep.method.upper(),
                    "path": "/" + join_url_parts(base, bundle.path, ep.path),
                    "handler": f"{bundle.cls.qualname}.{ep.fn_name}",
                    "wrappers": resolve_wrappers(config.default_wrappers, bundle, ep),
                    "status": "runtime" if ep.pair_with_code else (ep.code_on_success or 200),
                    "returns": ep.return_type,
                })
    return rows

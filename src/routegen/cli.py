from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from routegen.config import GeneratorConfig, load_options
from routegen.errors import RoutegenError
from routegen.ir.builder import build_packages
from routegen.orchestrator.pipeline import endpoint_rows, load_source, run_generate


app = typer.Typer(no_args_is_help=True, add_completion=False)

console = Console()


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


@app.command()
def generate(
    src: str = typer.Argument(..., help="Directory holding the annotated sources"),
    out: str = typer.Option("generated", help="Output directory"),
    config: Optional[str] = typer.Option(None, help="YAML options file"),
    option: List[str] = typer.Option([], "--option", "-o", help="key=value, repeatable"),
) -> None:
    src_path = Path(src).expanduser().resolve()
    try:
        options = load_options(Path(config).expanduser() if config else None, option)
        result = run_generate(src_path, Path(out), options)
    except RoutegenError as e:
        console.print(f"[bold red]error[/bold red]: {e}")
        raise typer.Exit(code=1)

    console.print(f"[bold green]routegen[/bold green] generate: {src_path}")
    console.print(f"Python files scanned: {result.files_scanned}")
    console.print(f"Packages: {len(result.packages)}  Endpoints: [bold]{result.endpoints}[/bold]")
    console.print(f"Generators: {', '.join(result.generators) or '-'}")
    if not result.written:
        console.print("Nothing written (no endpoints).")
    for path in result.written:
        console.print(f"[bold green]Wrote[/bold green] {path}")


@app.command()
def inspect(
    src: str = typer.Argument(..., help="Directory holding the annotated sources"),
    config: Optional[str] = typer.Option(None, help="YAML options file"),
    option: List[str] = typer.Option([], "--option", "-o", help="key=value, repeatable"),
    format: str = typer.Option("table", help="Output format: table|json"),
) -> None:
    fmt = format.lower().strip()
    if fmt not in ("table", "json"):
        raise typer.BadParameter("format must be one of: table, json")

    try:
        options = load_options(Path(config).expanduser() if config else None, option)
        cfg = GeneratorConfig.from_options(options)
        source, _ = load_source(Path(src))
        packages = build_packages(source, cfg)
    except RoutegenError as e:
        console.print(f"[bold red]error[/bold red]: {e}")
        raise typer.Exit(code=1)

    rows = endpoint_rows(packages, cfg)

    if fmt == "json":
        console.print(json.dumps(rows, indent=2))
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("PACKAGE", no_wrap=True)
    table.add_column("METHOD", no_wrap=True)
    table.add_column("PATH")
    table.add_column("HANDLER")
    table.add_column("STATUS", no_wrap=True)
    table.add_column("WRAPPERS")

    for r in rows:
        table.add_row(
            r["package"],
            r["method"],
            r["path"],
            r["handler"],
            str(r["status"]),
            ", ".join(w.rsplit(".", 1)[-1] for w in r["wrappers"]) or "-",
        )

    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()

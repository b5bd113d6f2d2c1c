from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Literal, Mapping, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field

from routegen.errors import ConfigError

PREFIX = "routegen."
FALLBACK_PACKAGE = "default"

GENERATOR_ROUTES = "fastapi"
GENERATOR_OPENAPI = "openapi"
KNOWN_GENERATORS = (GENERATOR_ROUTES, GENERATOR_OPENAPI)


class PackageDocOptions(BaseModel):
    path: str = ""
    security: Optional[str] = None


class GeneratorConfig(BaseModel):
    default_package: Optional[str] = None
    default_wrappers: list[str] = Field(default_factory=list)
    generators: list[str] = Field(default_factory=list)

    openapi_title: str = "routegen API"
    openapi_version: str = "1.0.0"
    openapi_format: Literal["yaml", "json"] = "yaml"
    packages: dict[str, PackageDocOptions] = Field(default_factory=dict)

    @classmethod
    def from_options(cls, options: Mapping[str, str]) -> "GeneratorConfig":
        def opt(key: str) -> Optional[str]:
            return options.get(PREFIX + key)

        # generators.0, generators.1, ... up to the first missing index
        generators: list[str] = []
        while opt(f"generators.{len(generators)}") is not None:
            generators.append(opt(f"generators.{len(generators)}").strip())

        for g in generators:
            if g not in KNOWN_GENERATORS:
                logger.debug(f"Unknown generator '{g}' ignored")

        wrappers = [w.strip() for w in (opt("defaultWrappers") or "").split(";") if w.strip()]

        packages: dict[str, PackageDocOptions] = {}
        pkg_prefix = PREFIX + "openapi.package."
        for key, value in options.items():
            if not key.startswith(pkg_prefix):
                continue
            name, _, field_name = key[len(pkg_prefix):].rpartition(".")
            if not name or field_name not in ("path", "security"):
                continue
            packages.setdefault(name, PackageDocOptions())
            setattr(packages[name], field_name, value)

        fmt = (opt("openapi.format") or "yaml").strip().lower()
        if fmt not in ("yaml", "json"):
            raise ConfigError(f"openapi.format must be yaml or json, got '{fmt}'")

        return cls(
            default_package=opt("defaultPackage") or None,
            default_wrappers=wrappers,
            generators=generators,
            openapi_title=opt("openapi.title") or "routegen API",
            openapi_version=opt("openapi.version") or "1.0.0",
            openapi_format=fmt,
            packages=packages,
        )

    def runs(self, generator: str) -> bool:
        # empty selection runs everything
        return not self.generators or generator in self.generators

    def package_options(self, name: str) -> PackageDocOptions:
        return self.packages.get(name) or PackageDocOptions()


def flatten_options(data: Any, prefix: str = "") -> dict[str, str]:
    """
    Nested YAML mapping -> flat dotted keys. Lists become indexed keys
    (generators: [a, b] -> generators.0, generators.1).
    """
    out: dict[str, str] = {}
    if isinstance(data, Mapping):
        items: Iterable[tuple[Any, Any]] = data.items()
    elif isinstance(data, (list, tuple)):
        items = enumerate(data)
    else:
        if prefix:
            out[prefix] = "" if data is None else str(data)
        return out

    for k, v in items:
        key = f"{prefix}.{k}" if prefix else str(k)
        out.update(flatten_options(v, key))
    return out


def parse_option_pairs(pairs: Iterable[str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"Expected key=value, got '{pair}'")
        out[key.strip()] = value.strip()
    return out


def load_options(config_file: Optional[Path] = None, pairs: Iterable[str] = ()) -> dict[str, str]:
    options: dict[str, str] = {}
    if config_file is not None:
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Could not load {config_file}: {e}") from e
        if data is not None and not isinstance(data, Mapping):
            raise ConfigError(f"{config_file} must contain a mapping")
        options.update(flatten_options(data or {}))

    # command line wins
    options.update(parse_option_pairs(pairs))
    return options

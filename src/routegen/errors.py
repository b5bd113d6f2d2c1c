from __future__ import annotations


class RoutegenError(Exception):
    """Base class for generator-side failures."""


class ConfigError(RoutegenError):
    pass


class SourceError(RoutegenError):
    pass

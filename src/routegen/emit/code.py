from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

INDENT = "    "


@dataclass(frozen=True)
class Line:
    text: str = ""


@dataclass
class Block:
    """
    A header line, an indented body and an optional closing line at the
    header's level. Nesting depth is the only source of indentation.
    """

    header: str
    body: list["Node"] = field(default_factory=list)
    footer: Optional[str] = None

    def add(self, *nodes: "Node") -> "Block":
        self.body.extend(nodes)
        return self

    def line(self, text: str = "") -> "Block":
        self.body.append(Line(text))
        return self


Node = Union[Line, Block]


def render_lines(nodes: Iterable[Node], level: int = 0) -> list[str]:
    out: list[str] = []
    pad = INDENT * level
    for node in nodes:
        if isinstance(node, Line):
            out.append(pad + node.text if node.text else "")
            continue
        out.append(pad + node.header)
        body = node.body
        if not body and node.footer is None:
            # empty compound statement
            body = [Line("pass")]
        out.extend(render_lines(body, level + 1))
        if node.footer is not None:
            out.append(pad + node.footer)
    return out


def render(nodes: Iterable[Node]) -> str:
    return "\n".join(render_lines(nodes)) + "\n"


def py_str(value: str) -> str:
    """Python string literal, always double quoted."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'

"""ToolRegistry: the namespaced catalog built from upstream connections.

Every upstream tool is exposed as `<server><separator><tool>` with its
description prefixed by `[<server>]`, so tools from different servers
never collide and the client can tell where each comes from.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from mcp import types

if TYPE_CHECKING:
    from riglm.proxy.upstream import UpstreamConnection

DEFAULT_SEPARATOR = "__"


@dataclass(frozen=True)
class ToolEntry:
    namespaced_name: str
    original_name: str
    server_name: str
    definition: types.Tool  # as exposed downstream: namespaced name, decorated description


class ToolRegistry:
    def __init__(self, separator: str = DEFAULT_SEPARATOR) -> None:
        if not separator:
            raise ValueError("separator must be non-empty")
        self._separator = separator
        self._entries: dict[str, ToolEntry] = {}

    @property
    def separator(self) -> str:
        return self._separator

    def build_from_connections(self, connections: Iterable[UpstreamConnection]) -> None:
        """Replace the catalog with the tools of `connections`, in order."""
        entries: dict[str, ToolEntry] = {}
        for conn in connections:
            for tool in conn.tools:
                namespaced = f"{conn.name}{self._separator}{tool.name}"
                description = (
                    f"[{conn.name}] {tool.description}" if tool.description else f"[{conn.name}]"
                )
                definition = tool.model_copy(
                    update={"name": namespaced, "description": description}
                )
                entries[namespaced] = ToolEntry(
                    namespaced_name=namespaced,
                    original_name=tool.name,
                    server_name=conn.name,
                    definition=definition,
                )
        self._entries = entries

    def get_all_tools(self) -> list[types.Tool]:
        return [e.definition for e in self._entries.values()]

    def get_all_entries(self) -> list[ToolEntry]:
        return list(self._entries.values())

    def get_entry(self, namespaced_name: str) -> ToolEntry | None:
        return self._entries.get(namespaced_name)

    def parse_name(self, namespaced_name: str) -> tuple[str, str] | None:
        """Split on the first separator: ("files", "read__raw") for "files__read__raw"."""
        server, sep, tool = namespaced_name.partition(self._separator)
        if not sep:
            return None
        return server, tool

    def search(self, query: str) -> list[ToolEntry]:
        """Case-insensitive substring match on name or description."""
        q = query.lower()
        return [
            e
            for e in self._entries.values()
            if q in e.namespaced_name.lower() or q in (e.definition.description or "").lower()
        ]

    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

"""Tools the proxy itself answers: set_context and search_available_tools."""

from __future__ import annotations

from typing import Any

from mcp import types

from riglm.observe.logging import get_logger
from riglm.proxy.registry import ToolRegistry
from riglm.proxy.session import SessionStore

logger = get_logger(__name__)

SET_CONTEXT = "set_context"
SEARCH_AVAILABLE_TOOLS = "search_available_tools"

META_TOOL_NAMES = (SET_CONTEXT, SEARCH_AVAILABLE_TOOLS)


def get_meta_tool_definitions() -> list[types.Tool]:
    return [
        types.Tool(
            name=SET_CONTEXT,
            description=(
                "Tell the proxy what the user is trying to accomplish. "
                "Call this early in a conversation to improve tool relevance. "
                "The proxy uses this context to surface the most relevant tools."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "What the user is trying to do, in your own words.",
                    },
                    "intent": {
                        "type": "string",
                        "description": (
                            "Optional high-level category "
                            "(e.g., 'file-management', 'code-review')."
                        ),
                    },
                },
                "required": ["query"],
            },
        ),
        types.Tool(
            name=SEARCH_AVAILABLE_TOOLS,
            description=(
                "Search for tools across all connected MCP servers. "
                "Use this when you need a capability that isn't in your current tool list."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Search query to match against tool names and descriptions.",
                    },
                },
                "required": ["query"],
            },
        ),
    ]


def is_meta_tool(name: str) -> bool:
    return name in META_TOOL_NAMES


def _text(text: str) -> types.CallToolResult:
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)])


def _set_context_impl(
    args: dict[str, Any], sessions: SessionStore, session_id: str
) -> types.CallToolResult:
    query = str(args.get("query") or "")
    intent = str(args["intent"]) if args.get("intent") else None
    sessions.set_context(session_id, query, intent)
    logger.debug("context.set", session=session_id, query=query, intent=intent)

    text = f'Context updated. Query: "{query}"'
    if intent:
        text += f', Intent: "{intent}"'
    return _text(text)


def _search_tools_impl(
    args: dict[str, Any], registry: ToolRegistry, sessions: SessionStore, session_id: str
) -> types.CallToolResult:
    query = str(args.get("query") or "")
    results = registry.search(query)
    sessions.set_last_search(session_id, query, [e.namespaced_name for e in results])

    if not results:
        return _text(f'No tools found matching "{query}". Try a broader search term.')

    lines = [
        f"- **{e.namespaced_name}**: {e.definition.description or '(no description)'}"
        for e in results
    ]
    return _text(f'Found {len(results)} tool(s) matching "{query}":\n\n' + "\n".join(lines))


def handle_meta_tool(
    name: str,
    args: dict[str, Any] | None,
    registry: ToolRegistry,
    sessions: SessionStore,
    session_id: str,
) -> types.CallToolResult:
    """Answer a meta-tool call locally.

    Raises:
        ValueError: `name` is not a meta-tool.
    """
    args = args or {}
    if name == SET_CONTEXT:
        return _set_context_impl(args, sessions, session_id)
    if name == SEARCH_AVAILABLE_TOOLS:
        return _search_tools_impl(args, registry, sessions, session_id)
    raise ValueError(f"Unknown meta-tool: {name}")

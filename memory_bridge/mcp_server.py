#!/usr/bin/env python3
"""
MCP Server for Memory Bridge
Exposes store/query/timeline as tools for MCP-capable agents.

Setup:
1. Install:
   pip install memory-bridge
   memory-bridge init --agent MyAgent

2. Add to the agent's MCP config:
   {
     "mcpServers": {
       "memory": {
         "command": "memory-bridge-mcp"
       }
     }
   }
"""

import asyncio
import logging
from functools import partial
from typing import Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .config import MemoryConfig
from .errors import MemoryBridgeError
from .memory import DEFAULT_DAYS, DEFAULT_LIMIT, MemoryStore

logger = logging.getLogger(__name__)


async def run_sync(func, *args, **kwargs):
    """Run a synchronous function in a thread pool to avoid blocking."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(func, *args, **kwargs))


TOOLS = [
    Tool(
        name="memory_store",
        description="Remember a piece of information across sessions",
        inputSchema={
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "What to remember"},
                "type": {
                    "type": "string",
                    "description": "insight, preference, error, goal, decision, conversation or a custom tag",
                },
                "importance": {"type": "integer", "minimum": 1, "maximum": 10, "description": "Computed when omitted"},
                "source": {"type": "string", "description": "Where the information came from"},
            },
            "required": ["content"]
        }
    ),
    Tool(
        name="memory_query",
        description="Find the memories most relevant to a query",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query"},
                "limit": {"type": "integer", "description": "Max results (default 5)"},
                "days": {"type": "integer", "description": "Look back this many days (default 30)"},
                "min_importance": {"type": "integer", "description": "Minimum importance (0-10)"},
            },
            "required": ["query"]
        }
    ),
    Tool(
        name="memory_timeline",
        description="List memories from the last N days grouped by day",
        inputSchema={
            "type": "object",
            "properties": {
                "days": {"type": "integer", "description": "Number of days"}
            },
            "required": ["days"]
        }
    ),
    Tool(
        name="memory_context",
        description="Recent work, preferences and goals to prime a new session",
        inputSchema={"type": "object", "properties": {}}
    ),
]


def handle_tool(store: MemoryStore, name: str, arguments: dict) -> str:
    """Run one tool call against the store and render the reply text."""
    if name == "memory_store":
        memory = store.store_memory(
            arguments["content"],
            content_type=arguments.get("type"),
            importance=arguments.get("importance"),
            source=arguments.get("source", "mcp"),
        )
        return f"✓ Saved {memory.content_type} memory (ID: {memory.id}, importance {memory.importance})"

    elif name == "memory_query":
        results = store.query(
            arguments["query"],
            limit=arguments.get("limit", DEFAULT_LIMIT),
            days=arguments.get("days", DEFAULT_DAYS),
            min_importance=arguments.get("min_importance", 0),
        )
        if not results:
            return "No memories found"
        output = f"Found {len(results)} memories:\n\n"
        for mem in results:
            output += f"[{mem.content_type}] {mem.content}\n  ID: {mem.id} | relevance {mem.relevance:.2f}\n\n"
        return output

    elif name == "memory_timeline":
        grouped = store.timeline(arguments["days"])
        if not grouped:
            return "No memories"
        output = ""
        for day, memories in grouped.items():
            output += f"{day}\n"
            for mem in memories:
                output += f"  - [{mem.content_type}] {mem.content[:80]}\n"
        return output

    elif name == "memory_context":
        context = store.session_context()
        return context.format() or "No stored context"

    return f"Unknown tool: {name}"


def create_server(store: Optional[MemoryStore] = None) -> Server:
    server = Server("memory-bridge")
    store = store or MemoryStore.from_config(MemoryConfig.load())

    @server.list_tools()
    async def list_tools():
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict):
        # Storage calls block, so they run off the event loop
        try:
            text = await run_sync(handle_tool, store, name, arguments or {})
        except MemoryBridgeError as e:
            logger.warning(f"Tool {name} failed: {e}")
            text = f"✗ {type(e).__name__}: {e}"
        return [TextContent(type="text", text=text)]

    return server


async def main():
    server = create_server()
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()

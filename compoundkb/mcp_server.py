"""MCP server for compoundkb.

Exposes past solutions and critical patterns to AI coding agents via the
Model Context Protocol. Agents search before planning and capture after a
session ends.

Usage:
    compoundkb serve
    python -m compoundkb.mcp_server [--db /path/to/compoundkb.db]

Configure in Claude Code (~/.claude.json):
    {
      "mcpServers": {
        "compoundkb": {
          "command": "compoundkb",
          "args": ["serve"]
        }
      }
    }
"""

from __future__ import annotations

import json
import os
import sys
import time
from pathlib import Path

import mcp.server.stdio
import mcp.types as types
from mcp.server import Server

from compoundkb.activity import log_tool_call
from compoundkb.classify.taxonomy import CATEGORIES, OTHER
from compoundkb.config import Config
from compoundkb.pipeline import build_engine
from compoundkb.query.retriever import Retriever, results_to_json
from compoundkb.storage.db import get_connection
from compoundkb.storage.repository import Repository


def _resolve_db_path() -> Path:
    """Find the database, checking CLI args, env var, then current directory."""
    for i, arg in enumerate(sys.argv):
        if arg == "--db" and i + 1 < len(sys.argv):
            return Path(sys.argv[i + 1])

    env_db = os.getenv("COMPOUNDKB_DB_PATH")
    if env_db:
        return Path(env_db)

    return Path("compoundkb.db")


server = Server("compoundkb")


def _get_repo(must_exist: bool = True) -> Repository:
    db_path = _resolve_db_path()
    if must_exist and not db_path.exists():
        raise FileNotFoundError(
            f"Database not found at {db_path}. "
            "Capture a session first, or set COMPOUNDKB_DB_PATH."
        )
    return Repository(get_connection(db_path))


def _text(text: str) -> list[types.TextContent]:
    return [types.TextContent(type="text", text=text)]


@server.list_tools()
async def list_tools() -> list[types.Tool]:
    return [
        types.Tool(
            name="search_solutions",
            description=(
                "Search solutions to problems already solved in this project. "
                "Call this BEFORE planning any non-trivial change. Critical "
                "patterns (problems that keep recurring) come first and must be "
                "honored. Examples: 'dashboard page is slow', 'flaky login test'"
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "What you are about to work on",
                    },
                    "category": {
                        "type": "string",
                        "enum": [*CATEGORIES, OTHER],
                        "description": "Optional: restrict to one category",
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum number of results (default 10)",
                    },
                },
                "required": ["query"],
            },
        ),
        types.Tool(
            name="get_critical_patterns",
            description=(
                "Get the list of active critical patterns: fixes for problems "
                "that recurred often enough to be promoted. Include these in "
                "every plan."
            ),
            inputSchema={
                "type": "object",
                "properties": {},
            },
        ),
        types.Tool(
            name="capture_session",
            description=(
                "Record what was learned in a finished session. Pass the session "
                "transcript as a list of events (messages, tool output). A "
                "symptom and its fix are extracted, filed, and merged with any "
                "earlier occurrence of the same problem. Never fails the caller."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "events": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Ordered transcript events",
                    },
                    "session_id": {
                        "type": "string",
                        "description": "Identifier of the session, kept as provenance",
                    },
                    "category_hint": {
                        "type": "string",
                        "description": "Optional: category the session was about",
                    },
                },
                "required": ["events"],
            },
        ),
        types.Tool(
            name="get_solution",
            description="Get one solution document by id, with its cross references.",
            inputSchema={
                "type": "object",
                "properties": {
                    "id": {
                        "type": "string",
                        "description": "Solution id (e.g. 'performance-issue-3fa2c1d09b7e')",
                    },
                },
                "required": ["id"],
            },
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
    start = time.time()
    result: list[types.TextContent] = []
    error: str | None = None
    try:
        result = _dispatch_tool(name, arguments)
        return result
    except FileNotFoundError as e:
        error = str(e)
        result = _text(f"Setup required: {e}")
        return result
    except Exception as e:
        error = str(e)
        result = _text(f"Error: {e}")
        return result
    finally:
        duration_ms = int((time.time() - start) * 1000)
        result_text = result[0].text if result else ""
        log_tool_call(name, arguments, result_text, error, duration_ms)


def _dispatch_tool(name: str, arguments: dict) -> list[types.TextContent]:
    """Route a tool call to the appropriate handler."""
    if name == "search_solutions":
        return _handle_search(
            arguments["query"],
            arguments.get("category"),
            int(arguments.get("limit", 10)),
        )
    elif name == "get_critical_patterns":
        return _handle_critical_patterns()
    elif name == "capture_session":
        return _handle_capture(
            arguments["events"],
            arguments.get("session_id", ""),
            arguments.get("category_hint"),
        )
    elif name == "get_solution":
        return _handle_get_solution(arguments["id"])
    else:
        return _text(f"Unknown tool: {name}")


def _handle_search(query: str, category: str | None, limit: int) -> list[types.TextContent]:
    repo = _get_repo()
    try:
        results = Retriever(repo).search(query, category=category, limit=limit)
    finally:
        repo.close()
    if not results:
        return _text("No matching solutions. Nothing has been captured for this yet.")
    return _text(results_to_json(query, results))


def _handle_critical_patterns() -> list[types.TextContent]:
    repo = _get_repo()
    try:
        return _text(Retriever(repo).render_critical_patterns())
    finally:
        repo.close()


def _handle_capture(
    events: list, session_id: str, category_hint: str | None
) -> list[types.TextContent]:
    config = Config.load()
    repo = _get_repo(must_exist=False)
    try:
        engine = build_engine(config, repo)
        result = engine.capture_session(
            events, session_id=session_id, category_hint=category_hint
        )
    finally:
        repo.close()
    return _text(result.to_json())


def _handle_get_solution(doc_id: str) -> list[types.TextContent]:
    repo = _get_repo()
    try:
        doc = repo.get(doc_id)
    finally:
        repo.close()
    return _text(json.dumps(doc.to_dict(), indent=2))


async def main() -> None:
    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


if __name__ == "__main__":
    import asyncio
    asyncio.run(main())

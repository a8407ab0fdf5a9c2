"""MCP Index Server.

MCP stdio server exposing a governed, file-backed catalog of instruction
documents. Tools are plain JSON-RPC style methods (``instructions/dispatch``,
``usage/track``, ...) registered in :mod:`mcp_index.registry`.
https://github.com/modelcontextprotocol/python-sdk
"""

import asyncio
import json
import sys
from typing import Any

from mcp import types
from mcp.server import Server
from mcp.server.stdio import stdio_server

from .catalog import get_catalog
from .config import load_config
from .errors import SemanticError, method_not_found
from .handlers import register_all
from .logging_config import configure_logging, get_logger
from .registry import get_handler, invoke
from .tool_registry import mcp_tools
from .version import __version__

# Logs go to file only: stdout carries the MCP protocol
configure_logging(console_output=False)
logger = get_logger("server")

SERVER_NAME = "mcp-index"

SERVER_INSTRUCTIONS = """\
Instruction catalog server. Use instructions/dispatch with an `action`
(list, get, search, query, categories, diff, export, dir, capabilities, batch)
to read the catalog; the same dispatcher performs add/import/remove/groom
and other mutations. Call usage/track when an instruction is applied and
meta/tools to discover every tool with its input schema.
"""


def create_server() -> Server:
    """Build the low-level MCP server wired to the method registry."""
    register_all()
    server = Server(SERVER_NAME, version=__version__, instructions=SERVER_INSTRUCTIONS)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return mcp_tools()

    # Handlers validate their own params and report -32602 with details
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict[str, Any] | None) -> list[types.TextContent]:
        if get_handler(name) is None:
            raise method_not_found(f"Unknown tool: {name}", {"tool": name})
        try:
            result = await asyncio.to_thread(invoke, name, arguments or {})
        except SemanticError as e:
            logger.warning(f"Tool {name} failed: {e.code} {e.message}")
            raise
        return [types.TextContent(type="text", text=json.dumps(result, indent=2, ensure_ascii=False))]

    return server


async def run_stdio(server: Server | None = None) -> None:
    server = server or create_server()
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main():
    """Run the MCP server with stdio transport."""
    if len(sys.argv) > 1:
        if sys.argv[1] in ("--help", "-h"):
            print("""MCP Index Server

Usage: mcp-index [OPTIONS]

Runs an MCP (Model Context Protocol) server over stdio that serves the
instruction catalog in ./instructions (or INSTRUCTIONS_DIR). It is meant to
be launched by MCP-compatible clients.

Options:
  -h, --help     Show this help message
  -V, --version  Show version number

Environment:
  MCP_INDEX_ROOT          Workspace root (default: current directory)
  INSTRUCTIONS_DIR        Instruction JSON directory (default: <root>/instructions)
  MCP_ENABLE_MUTATION=1   Expose direct mutation tools
  MCP_DASHBOARD=1         Also serve the web dashboard from this process
  MCP_LOG_LEVEL           Log level (default: INFO)

Other commands:
  mcp-index-launcher     Run dashboard, MCP server, or both
  mcp-index-dashboard    Start the web dashboard only
  mcp-index-backup       Backup or restore the catalog
""")
            return
        elif sys.argv[1] in ("--version", "-V"):
            print(f"mcp-index {__version__}")
            return

    config = load_config()
    if config.dashboard_enabled:
        from .web_server import start_dashboard_thread

        start_dashboard_thread(config.dashboard_host, config.dashboard_port)

    logger.info(f"Starting MCP Index Server {__version__} (instructions: {config.instructions_dir})")
    try:
        asyncio.run(run_stdio())
    except KeyboardInterrupt:
        pass
    finally:
        get_catalog().flush_usage()
        logger.info("MCP Index Server stopped")


if __name__ == "__main__":
    main()

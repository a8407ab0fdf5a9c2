"""Unified launcher for MCP Index services."""

import argparse
import asyncio
import logging
import threading
import webbrowser

from .config import DEFAULT_DASHBOARD_PORT, load_config

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def run_web_server(host: str, port: int):
    """Run the dashboard web server."""
    import uvicorn

    from .web_server import app

    uvicorn.run(app, host=host, port=port, log_level="warning")


def run_mcp_server():
    """Run the MCP server (stdio transport)."""
    from .server import main as mcp_main

    mcp_main()


def open_dashboard(host: str, port: int, delay: float = 2.0):
    """Open the dashboard in a browser after a delay."""
    import time

    time.sleep(delay)
    url = f"http://{host}:{port}"
    logger.info(f"Opening dashboard: {url}")
    webbrowser.open(url)


def main():
    """Main entry point for the launcher."""
    parser = argparse.ArgumentParser(
        description="MCP Index Server Launcher",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Commands:
  dashboard    Start the web dashboard (default)
  mcp          Start the MCP server (stdio transport)
  all          Start the MCP server with the dashboard in the same process
  status       Show catalog status

Examples:
  mcp-index-launcher dashboard --port {DEFAULT_DASHBOARD_PORT}
  mcp-index-launcher mcp
  mcp-index-launcher all --dashboard-port {DEFAULT_DASHBOARD_PORT}
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Dashboard command
    dash_parser = subparsers.add_parser("dashboard", help="Start web dashboard")
    dash_parser.add_argument("--host", default=None, help="Host to bind to")
    dash_parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    dash_parser.add_argument("--no-browser", action="store_true", help="Don't open browser")

    # MCP command
    subparsers.add_parser("mcp", help="Start MCP server")

    # All command
    all_parser = subparsers.add_parser("all", help="Start MCP server and dashboard")
    all_parser.add_argument("--host", default=None, help="Dashboard host")
    all_parser.add_argument("--dashboard-port", type=int, default=None, help="Dashboard port")

    # Status command
    subparsers.add_parser("status", help="Show catalog status")

    args = parser.parse_args()
    config = load_config()

    if args.command is None:
        # Default to dashboard
        args.command = "dashboard"
        args.host = None
        args.port = None
        args.no_browser = False

    if args.command == "dashboard":
        host = args.host or config.dashboard_host
        port = args.port or config.dashboard_port
        logger.info(f"Starting dashboard on http://{host}:{port}")

        if not args.no_browser:
            browser_thread = threading.Thread(
                target=open_dashboard,
                args=(host, port),
                daemon=True,
            )
            browser_thread.start()

        run_web_server(host, port)

    elif args.command == "mcp":
        logger.info("Starting MCP server (stdio transport)")
        run_mcp_server()

    elif args.command == "all":
        from .web_server import start_dashboard_thread

        host = args.host or config.dashboard_host
        port = args.dashboard_port or config.dashboard_port
        logger.info(f"Dashboard will be available at http://{host}:{port}")

        # Same process: the dashboard sees the MCP server's metrics and events
        start_dashboard_thread(host, port)
        run_mcp_server()

    elif args.command == "status":
        asyncio.run(show_status())


async def show_status():
    """Show current catalog status."""
    from .catalog import get_catalog
    from .telemetry import TelemetryLogger

    config = load_config()
    print("\n" + "=" * 50)
    print("  MCP Index Status")
    print("=" * 50 + "\n")

    ctx = get_catalog()
    diagnosis = ctx.diagnose_instructions_dir()
    print(f"  Instructions directory: {diagnosis['dir']}")
    print(f"    Exists: {diagnosis['exists']}  Writable: {diagnosis['writable']}")
    if diagnosis["error"]:
        print(f"    Error: {diagnosis['error']}")

    try:
        state = ctx.ensure_loaded()
        print(f"\n  Instructions loaded: {len(state.entries)}")
        print(f"  Catalog hash: {state.hash}")
        print(f"  Files scanned: {state.summary.scanned}  skipped: {state.summary.skipped}")
        if state.errors:
            print(f"  Load errors: {len(state.errors)}")
            for err in state.errors[:10]:
                print(f"    {err.file}: {err.error}")

        categories: dict[str, int] = {}
        requirements: dict[str, int] = {}
        for entry in state.entries:
            for cat in entry.categories:
                categories[cat] = categories.get(cat, 0) + 1
            requirements[entry.requirement] = requirements.get(entry.requirement, 0) + 1
        print(f"  Categories: {len(categories)}")
        for requirement, count in sorted(requirements.items()):
            print(f"    {requirement}: {count}")
        used = sum(1 for e in state.entries if (e.usage_count or 0) > 0)
        print(f"  Instructions with usage: {used}")
    except Exception as e:
        print(f"  Catalog: ERROR - {e}")

    # Check telemetry
    try:
        telemetry = TelemetryLogger()
        stats = await telemetry.get_tool_stats()
        print(f"\n  Tools with recorded calls: {len(stats)}")
        print(f"  Total recorded calls: {sum(s['calls'] for s in stats)}")
    except Exception as e:
        print(f"  Telemetry: ERROR - {e}")

    print("\n  Paths:")
    print(f"    Root: {config.root}")
    print(f"    Audit log: {config.audit_log_path}")
    print(f"    Usage snapshot: {config.usage_snapshot_path}")
    print(f"    Manifest: {config.manifest_path}")
    print(f"    Mutation enabled: {config.mutation_enabled}")

    print("\n" + "=" * 50 + "\n")


if __name__ == "__main__":
    main()

# DHIS2 SQL View MCP Server
# File: transports/stdio_server.py
# Version: v1

"""STDIO entrypoint for the DHIS2 SQL View MCP server.

This is the script behind the ``dhis2-sqlview-mcp`` console command.

It:

- configures logging on stderr (stdout carries the MCP protocol),
- creates a FastMCP server,
- registers all SQL view tools, and
- runs the built-in stdio transport.
"""

from __future__ import annotations

import logging

from mcp.server.fastmcp import FastMCP

from ..config import Dhis2Config
from ..tools import register_all_tools


def main() -> None:
    """Synchronous entrypoint for console_scripts."""
    cfg = Dhis2Config.from_env()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    mcp = FastMCP("dhis2-sqlview-mcp")

    # Register SQL view tools.
    register_all_tools(mcp)

    # Let FastMCP handle stdio + event loop setup.
    mcp.run()


if __name__ == "__main__":
    main()

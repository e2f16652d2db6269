from __future__ import annotations

import os

from dotenv import load_dotenv
from fastmcp import FastMCP

from server.lifespan import app_lifespan
from server.resources import register_resources
from server.tools import register_tools
from teamsync.observability.setup import configure_telemetry

load_dotenv()
configure_telemetry()

mcp = FastMCP(
    name="Team Sync Server",
    lifespan=app_lifespan,
)

register_tools(mcp)
register_resources(mcp)


def main() -> None:
    port = int(os.environ.get("TEAMSYNC_SERVER_PORT", "8001"))
    mcp.run(transport="streamable-http", port=port)


if __name__ == "__main__":
    main()

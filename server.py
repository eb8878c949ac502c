"""
WalletSend canonical entrypoint.

This is the single source of truth for:
- MCP server name
- tool registration order
"""

from __future__ import annotations

from fastmcp import FastMCP

from app.tools.send import register_send_tools

mcp = FastMCP("WalletSend")

register_send_tools(mcp)


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()

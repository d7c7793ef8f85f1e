"""Allow ``python -m payware_mcp`` to start the MCP server."""

import sys

from payware_mcp.cli import main

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:] or ["serve"]))

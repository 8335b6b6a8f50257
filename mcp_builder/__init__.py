"""mcp-builder: generate, scan and deploy MCP tool servers from HTTP API descriptions."""

__version__ = "0.1.0"

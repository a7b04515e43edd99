"""MCP server for notegraph."""

# mcpauth: OAuth 2.1 authorization server core for protected MCP APIs.
# Created: 2026-02-20

__version__ = "0.1.0"

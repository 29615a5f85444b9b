"""
Task Manager MCP Server.

This package serves a small task manager over WebSocket using a JSON
envelope protocol: peers send `tool_call` envelopes and receive
`tool_response` envelopes on the same connection. Connections are admitted
with an API key and rate limited per origin; tasks live in SQLite and due
dates may be given in natural language.
"""

__version__ = "0.1.0"

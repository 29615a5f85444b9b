"""
Admission security for the task manager MCP server.

Components:
- ApiKeyAuthenticator: validates the handshake API key
- FixedWindowRateLimiter: bounds admissions per origin
- AuditLogger: structured audit logging of admissions and tool calls
"""

from mcp_tasks.security.audit_logger import AuditLogger
from mcp_tasks.security.auth import ApiKeyAuthenticator
from mcp_tasks.security.rate_limit import FixedWindowRateLimiter

__all__ = [
    "ApiKeyAuthenticator",
    "AuditLogger",
    "FixedWindowRateLimiter",
]

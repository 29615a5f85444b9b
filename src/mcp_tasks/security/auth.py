"""
API key admission check.

Credentials are opaque strings from a static set loaded at startup. A key is
either globally valid or globally invalid: there is no expiry, rotation or
per-key scoping, and the check runs once per connection at admission.
"""

from __future__ import annotations

import hmac
from collections.abc import Iterable
from typing import TYPE_CHECKING

from mcp_tasks.logging import get_logger

if TYPE_CHECKING:
    from mcp_tasks.config import SecurityConfig

logger = get_logger(__name__)


class ApiKeyAuthenticator:
    """
    Membership test against a static set of API keys.

    Example:
        >>> auth = ApiKeyAuthenticator(["k1", "k2"])
        >>> auth.verify("k1")
        True
        >>> auth.verify(None)
        False
    """

    def __init__(self, api_keys: Iterable[str], header_name: str = "X-API-Key") -> None:
        self._keys = frozenset(key for key in api_keys if key)
        self.header_name = header_name
        if not self._keys:
            logger.warning("No API keys configured; every connection will be rejected")

    @classmethod
    def from_config(cls, config: SecurityConfig) -> ApiKeyAuthenticator:
        return cls(config.api_keys, header_name=config.header_name)

    def verify(self, credential: str | None) -> bool:
        """
        Check a presented credential.

        Every configured key is compared, each with hmac.compare_digest.
        """
        if not credential:
            return False
        presented = credential.encode("utf-8")
        matched = False
        for key in self._keys:
            if hmac.compare_digest(presented, key.encode("utf-8")):
                matched = True
        return matched

    def __len__(self) -> int:
        return len(self._keys)

"""API key check for the deployment endpoint.

Deployments are open when no key is configured, matching a single-tenant
setup behind a firewall. Once ``DOXY_API_KEY`` is set every deploy request
must present it.
"""
from __future__ import annotations

import hmac
from typing import Optional


def verify_api_key(key: Optional[str], expected: Optional[str]) -> bool:
    """Return True if ``key`` matches ``expected``, or no key is configured."""
    if not expected:
        return True
    if not key:
        return False
    return hmac.compare_digest(key.encode(), expected.encode())

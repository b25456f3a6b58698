"""
Ledger gateway for the Fair SDK.

This module queries the append-only transaction log that holds every
marketplace listing, payment, request and response.
"""
import logging
import threading
from typing import Dict

from .client import LedgerGateway
from .exceptions import (
    GatewayConnectionError,
    GatewayError,
    GatewayResponseError,
    GatewayTimeoutError,
)
from .stub_transport import InMemoryLedger
from .transport import HttpTransport, LedgerTransport, get_transport

__all__ = [
    "LedgerGateway", "LedgerTransport", "HttpTransport", "InMemoryLedger",
    "get_transport", "get_ledger_gateway", "GatewayError", "GatewayConnectionError",
    "GatewayResponseError", "GatewayTimeoutError",
]

logger = logging.getLogger(__name__)

# Module-level gateway cache with thread safety
_gateway_cache: Dict[str, LedgerGateway] = {}
_cache_lock = threading.RLock()


def get_ledger_gateway(gateway_url: str) -> LedgerGateway:
    """
    Get or create a gateway client for ``gateway_url`` from the module cache.

    Args:
        gateway_url: Base URL of the ledger gateway

    Returns:
        LedgerGateway instance
    """
    with _cache_lock:
        if gateway_url not in _gateway_cache:
            _gateway_cache[gateway_url] = LedgerGateway(gateway_url=gateway_url)
        return _gateway_cache[gateway_url]

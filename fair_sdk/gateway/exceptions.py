"""
Exceptions for the Gateway module.

The classes live in fair_sdk.exceptions so the whole SDK shares one
hierarchy; they are re-exported here for gateway callers.
"""
from ..exceptions import (
    FairSDKError,
    GatewayError,
    GatewayConnectionError,
    GatewayResponseError,
    GatewayTimeoutError,
    OperationCancelledError,
)

__all__ = [
    "FairSDKError",
    "GatewayError",
    "GatewayConnectionError",
    "GatewayResponseError",
    "GatewayTimeoutError",
    "OperationCancelledError",
]

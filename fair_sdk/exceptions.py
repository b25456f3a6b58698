"""
Exceptions for the Fair SDK.

Listing filters never raise for an invalid candidate; they return a
ValidationFailure value instead (see fair_sdk.models). The exceptions below
are for conditions the caller has to see.
"""
from typing import Any, Dict, Optional


class FairSDKError(Exception):
    """Base exception for all Fair SDK errors."""
    pass


class GatewayError(FairSDKError):
    """Base exception for ledger gateway and token oracle failures."""
    pass


class GatewayConnectionError(GatewayError):
    """Raised when the external service cannot be reached."""
    pass


class GatewayResponseError(GatewayError):
    """Raised when the external service returns an error or malformed data."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class GatewayTimeoutError(GatewayError):
    """Raised when a request to the external service times out."""
    pass


class ConfigurationError(FairSDKError):
    """Raised when network or protocol configuration is invalid."""
    pass


class UploadError(FairSDKError):
    """Raised when the storage service does not return a transaction id."""
    pass


class TransferError(FairSDKError):
    """Raised when the token contract rejects or fails a transfer."""
    pass


class PartialPaymentError(TransferError):
    """
    Raised when an inference upload succeeded but not every stakeholder
    transfer went through.

    Completed transfers are not rolled back; callers inspect ``completed``
    to decide how to settle the remainder.
    """

    def __init__(
        self,
        message: str,
        request_id: str,
        completed: Dict[str, str],
        failed_stakeholder: str,
        conversation_id: Optional[int] = None,
    ):
        self.request_id = request_id
        self.completed = dict(completed)
        self.failed_stakeholder = failed_stakeholder
        self.conversation_id = conversation_id
        super().__init__(message)


class InsufficientBalanceError(FairSDKError):
    """Raised when the caller cannot cover the quoted inference fee."""

    def __init__(self, message: str, balance: Any = None, required: Any = None):
        self.balance = balance
        self.required = required
        super().__init__(message)


class InvalidReferenceError(FairSDKError):
    """Raised when a transaction reference does not resolve to the expected operation."""
    pass


class OperationCancelledError(FairSDKError):
    """Raised when a CancellationToken is triggered mid-operation."""
    pass

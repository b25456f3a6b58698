"""
Fair SDK: Python client for the Fair Protocol inference marketplace.
"""
from .client import FairClient
from .config import NetworkConfig, ProtocolConfig
from .entities import Model, Operator, Script
from .exceptions import (
    ConfigurationError,
    FairSDKError,
    GatewayConnectionError,
    GatewayError,
    GatewayResponseError,
    GatewayTimeoutError,
    InsufficientBalanceError,
    InvalidReferenceError,
    OperationCancelledError,
    PartialPaymentError,
    TransferError,
    UploadError,
)
from .gateway import InMemoryLedger, LedgerGateway
from .inference import InferenceOrchestrator
from .models import ByEntity, ByReference, Configuration, LogEntry, PaymentReceipt, Tag, TagFilter
from .utils import CancellationToken
from .version import __version__
from .wallet import JwkWallet, Wallet

__all__ = [
    "FairClient",
    "NetworkConfig",
    "ProtocolConfig",
    "Model",
    "Script",
    "Operator",
    "LedgerGateway",
    "InMemoryLedger",
    "InferenceOrchestrator",
    "ByEntity",
    "ByReference",
    "Configuration",
    "LogEntry",
    "PaymentReceipt",
    "Tag",
    "TagFilter",
    "CancellationToken",
    "JwkWallet",
    "Wallet",
    "FairSDKError",
    "GatewayError",
    "GatewayConnectionError",
    "GatewayResponseError",
    "GatewayTimeoutError",
    "ConfigurationError",
    "UploadError",
    "TransferError",
    "PartialPaymentError",
    "InsufficientBalanceError",
    "InvalidReferenceError",
    "OperationCancelledError",
    "__version__",
]

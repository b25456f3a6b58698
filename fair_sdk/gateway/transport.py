"""
Transport layer for the ledger gateway.

This module provides an abstraction over how GraphQL documents reach the
ledger: over HTTP to a real gateway, or to the in-memory ledger used for
development and tests.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import validate_service_url
from .exceptions import GatewayConnectionError, GatewayResponseError, GatewayTimeoutError

logger = logging.getLogger(__name__)


class LedgerTransport(ABC):
    """
    Abstract base class for ledger transport implementations.

    Implementations execute a GraphQL document and return its ``data``
    object. Every failure is raised as a GatewayError subclass; an
    implementation never returns an empty result in place of an error.
    """

    @abstractmethod
    def execute(
        self,
        query: str,
        variables: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Execute a GraphQL document.

        Args:
            query: GraphQL document
            variables: Query variables
            timeout: Per-call timeout in seconds

        Returns:
            The ``data`` member of the GraphQL response

        Raises:
            GatewayConnectionError: If the service cannot be reached
            GatewayTimeoutError: If the call times out
            GatewayResponseError: For error responses or malformed payloads
        """
        pass

    def close(self) -> None:
        """Close any open connections or resources."""
        pass


class HttpTransport(LedgerTransport):
    """GraphQL over HTTP POST to ``<gateway_url>/graphql``"""

    def __init__(self, gateway_url: str, verify_ssl: bool = True, pool_retries: int = 2):
        self.gateway_url = validate_service_url("Gateway URL", gateway_url)
        self.endpoint = f"{self.gateway_url}/graphql"
        self.verify_ssl = verify_ssl

        # Connection-level retries only; status retries belong to LedgerGateway
        self.session = requests.Session()
        retries = Retry(
            total=pool_retries,
            connect=pool_retries,
            read=0,
            status=0,
            allowed_methods=["GET", "POST"],
            raise_on_status=False,
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))
        logger.debug(f"Initialized HTTP transport for {self.endpoint}")

    def execute(
        self,
        query: str,
        variables: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        try:
            response = self.session.post(
                self.endpoint,
                json={"query": query, "variables": variables},
                timeout=timeout,
                verify=self.verify_ssl,
            )
        except requests.Timeout as e:
            raise GatewayTimeoutError(f"Ledger query timed out after {timeout}s: {e}")
        except requests.ConnectionError as e:
            raise GatewayConnectionError(f"Failed to reach ledger gateway at {self.endpoint}: {e}")
        except requests.RequestException as e:
            raise GatewayConnectionError(f"Ledger request failed: {e}")

        if response.status_code >= 400:
            raise GatewayResponseError(
                f"Ledger gateway returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise GatewayResponseError(f"Ledger gateway returned invalid JSON: {e}")

        if not isinstance(payload, dict):
            raise GatewayResponseError("Ledger gateway returned a non-object payload")
        if payload.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in payload["errors"] if err)
            raise GatewayResponseError(f"Ledger query failed: {messages}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise GatewayResponseError("Ledger gateway response is missing 'data'")
        return data

    def close(self) -> None:
        self.session.close()


def get_transport(gateway_url: Optional[str] = None, verify_ssl: bool = True) -> LedgerTransport:
    """
    Get a transport for the given gateway.

    Args:
        gateway_url: Gateway base URL; None selects a fresh in-memory ledger

    Returns:
        Transport implementation
    """
    if gateway_url:
        logger.info(f"Using HTTP transport for ledger gateway {gateway_url}")
        return HttpTransport(gateway_url, verify_ssl=verify_ssl)

    from .stub_transport import InMemoryLedger
    logger.info("Using in-memory ledger transport")
    return InMemoryLedger()

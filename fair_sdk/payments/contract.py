"""
Token side-contract interface.

Fees are paid through a token contract living beside the ledger. The SDK
only ever asks three things of it: submit a transfer, tell whether a
recorded transfer evaluated as valid, and report a balance.
"""
import json
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import ProtocolConfig, default_timeout, validate_service_url
from ..constants import TRANSFER_FUNCTION
from ..exceptions import (
    GatewayConnectionError,
    GatewayResponseError,
    GatewayTimeoutError,
    TransferError,
)
from ..models import Tag, TransferInstruction
from ..tags import build_tag
from ..wallet import Wallet, b64url_encode

logger = logging.getLogger(__name__)

Quantity = Union[int, Decimal]

# Tags the contract runtime expects on every interaction
INTERACTION_APP_NAME = "SmartWeaveAction"
INTERACTION_APP_VERSION = "0.3.0"


class TokenContract(ABC):
    """Narrow view of the fee token contract"""

    @abstractmethod
    def write_transfer(self, target: str, qty: Quantity, tags: Sequence[Tag]) -> str:
        """
        Submit a transfer of ``qty`` base units to ``target``.

        Args:
            target: Recipient address
            qty: Amount in base units
            tags: Extra tags recorded on the interaction

        Returns:
            Transaction id of the interaction

        Raises:
            TransferError: If the transfer is rejected or cannot be submitted
        """
        pass

    @abstractmethod
    def read_validity(self, transfer_ref: str) -> bool:
        """
        Whether the contract evaluated the interaction ``transfer_ref`` as valid.

        Unknown references are reported as invalid.

        Raises:
            GatewayError: If the contract state service cannot answer
        """
        pass

    @abstractmethod
    def read_balance(self, address: str) -> Decimal:
        """Balance of ``address`` in whole tokens"""
        pass


def interaction_tags(contract_id: str, instruction: TransferInstruction, extra: Sequence[Tag]) -> list:
    """Tags of a contract interaction: runtime tags, then the caller's"""
    return [
        build_tag("app_name", INTERACTION_APP_NAME),
        build_tag("app_version", INTERACTION_APP_VERSION),
        build_tag("contract", contract_id),
        build_tag("input", json.dumps(instruction.to_input(), separators=(",", ":"))),
        *extra,
    ]


class HttpTokenContract(TokenContract):
    """
    Token contract reached over HTTP.

    Reads go to a contract state evaluator (``/validity`` and ``/contract``);
    transfers are signed by the wallet and registered with the sequencer.

    Args:
        state_url: Base URL of the contract state evaluator
        sequencer_url: Base URL of the interaction sequencer
        protocol: Protocol configuration (contract id, token divider)
        wallet: Wallet signing transfers; reads work without one
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        state_url: str,
        sequencer_url: str,
        protocol: ProtocolConfig,
        wallet: Optional[Wallet] = None,
        timeout: Optional[float] = None,
        retry_count: int = 3,
    ):
        self.state_url = validate_service_url("Contract state URL", state_url)
        self.sequencer_url = validate_service_url("Sequencer URL", sequencer_url)
        self.protocol = protocol
        self.wallet = wallet
        self.timeout = timeout if timeout is not None else default_timeout()

        self.session = requests.Session()
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
            connect=retry_count,
            read=retry_count,
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

    def _get_json(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.state_url}{path}"
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise GatewayTimeoutError(f"Contract state request timed out: {e}")
        except requests.RequestException as e:
            raise GatewayConnectionError(f"Failed to reach contract state service at {url}: {e}")
        if response.status_code >= 400:
            raise GatewayResponseError(
                f"Contract state service returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            result = response.json()
        except ValueError as e:
            raise GatewayResponseError(f"Invalid JSON from contract state service: {e}")
        if not isinstance(result, dict):
            raise GatewayResponseError("Contract state service returned a non-object payload")
        return result

    def read_validity(self, transfer_ref: str) -> bool:
        result = self._get_json(
            "/validity", {"id": transfer_ref, "contractId": self.protocol.token_contract_id}
        )
        return result.get("validity") is True

    def read_balance(self, address: str) -> Decimal:
        result = self._get_json("/contract", {"id": self.protocol.token_contract_id})
        try:
            balances = result["state"]["balances"]
        except (KeyError, TypeError):
            raise GatewayResponseError("Contract state is missing balances")
        units = Decimal(str(balances.get(address, 0)))
        return units / self.protocol.token_divider

    def write_transfer(self, target: str, qty: Quantity, tags: Sequence[Tag]) -> str:
        if self.wallet is None:
            raise TransferError("A wallet is required to submit transfers")
        instruction = TransferInstruction(function=TRANSFER_FUNCTION, target=target, qty=Decimal(qty))
        all_tags = interaction_tags(self.protocol.token_contract_id, instruction, tags)
        data = json.dumps({"function": TRANSFER_FUNCTION}).encode("utf-8")
        signature = self.wallet.sign_data_item(data, all_tags)
        body = {
            "data": b64url_encode(data),
            "tags": [{"name": t.name, "value": t.value} for t in all_tags],
            "owner": self.wallet.address,
            "signature": b64url_encode(signature),
        }
        try:
            response = self.session.post(
                f"{self.sequencer_url}/gateway/sequencer/register",
                json=body,
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = response.json()
        except requests.RequestException as e:
            logger.error(f"Transfer of {qty} to {target} failed: {e}")
            raise TransferError(f"Transfer to {target} failed: {e}")
        except ValueError as e:
            raise TransferError(f"Invalid JSON response from sequencer: {e}")

        tx_id = result.get("id") if isinstance(result, dict) else None
        if not tx_id:
            raise TransferError(f"Sequencer returned no interaction id: {result}")
        logger.info(f"Transferred {qty} to {target} in {tx_id}")
        return tx_id

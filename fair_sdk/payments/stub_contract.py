"""
In-memory token contract.

Transfers are recorded as interaction entries on an InMemoryLedger, with the
same tags a sequenced interaction carries on the real ledger, so listing
filters can be exercised end to end without any network.
"""
import logging
import threading
from decimal import Decimal
from typing import Dict, Optional, Sequence

from ..config import ProtocolConfig
from ..constants import TRANSFER_FUNCTION
from ..exceptions import TransferError
from ..gateway.stub_transport import InMemoryLedger, new_tx_id
from ..models import Tag, TransferInstruction
from ..tags import build_tag
from .contract import Quantity, TokenContract, interaction_tags

logger = logging.getLogger(__name__)


class InMemoryTokenContract(TokenContract):
    """
    Token contract kept in memory.

    Args:
        ledger: Ledger the interactions are published to
        caller: Address submitting transfers
        protocol: Protocol configuration; defaults apply when omitted
        balances: Initial balances in base units
        enforce_balances: Reject transfers exceeding the caller's balance
    """

    def __init__(
        self,
        ledger: InMemoryLedger,
        caller: str,
        protocol: Optional[ProtocolConfig] = None,
        balances: Optional[Dict[str, int]] = None,
        enforce_balances: bool = True,
    ):
        self.ledger = ledger
        self.caller = caller
        self.protocol = protocol or ProtocolConfig()
        self.enforce_balances = enforce_balances
        self._balances: Dict[str, Decimal] = {k: Decimal(v) for k, v in (balances or {}).items()}
        self._validity: Dict[str, bool] = {}
        self._lock = threading.RLock()

    def mint(self, address: str, units: Quantity) -> None:
        with self._lock:
            self._balances[address] = self._balances.get(address, Decimal(0)) + Decimal(units)

    def set_validity(self, transfer_ref: str, valid: bool) -> None:
        """Record how the contract evaluated an interaction"""
        with self._lock:
            self._validity[transfer_ref] = valid

    def record_interaction(
        self,
        owner: str,
        target: str,
        qty: Quantity,
        tags: Sequence[Tag],
        valid: bool = True,
        function: str = TRANSFER_FUNCTION,
    ):
        """
        Publish an interaction entry without moving balances.

        Returns:
            The published LogEntry; its ``Sequencer-Tx-Id`` tag is the
            reference ``read_validity`` answers for
        """
        instruction = TransferInstruction(function=function, target=target, qty=Decimal(qty))
        sequencer_tx_id = new_tx_id()
        all_tags = interaction_tags(self.protocol.token_contract_id, instruction, [
            build_tag("sequencer_owner", owner),
            build_tag("sequencer_tx_id", sequencer_tx_id),
            *tags,
        ])
        entry = self.ledger.publish(owner, all_tags)
        self.set_validity(sequencer_tx_id, valid)
        return entry

    def write_transfer(self, target: str, qty: Quantity, tags: Sequence[Tag]) -> str:
        amount = Decimal(qty)
        if amount <= 0:
            raise TransferError(f"Transfer quantity must be positive, got {qty}")
        with self._lock:
            available = self._balances.get(self.caller, Decimal(0))
            if self.enforce_balances and available < amount:
                raise TransferError(
                    f"Insufficient balance for transfer of {amount} to {target}: {available} available"
                )
            if self.enforce_balances:
                self._balances[self.caller] = available - amount
            self._balances[target] = self._balances.get(target, Decimal(0)) + amount
        entry = self.record_interaction(self.caller, target, amount, tags)
        logger.debug(f"Transferred {amount} from {self.caller} to {target} in {entry.id}")
        return entry.id

    def read_validity(self, transfer_ref: str) -> bool:
        with self._lock:
            return self._validity.get(transfer_ref, False)

    def read_balance(self, address: str) -> Decimal:
        with self._lock:
            units = self._balances.get(address, Decimal(0))
        return units / self.protocol.token_divider

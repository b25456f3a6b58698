"""
Payment verification.

A payment entry on the ledger is only a claim: anyone can publish one with
any tags. The verifier checks the transfer it describes against the fee the
protocol requires and asks the token contract whether the transfer actually
went through.
"""
import logging
from typing import List, Optional

from ..config import ProtocolConfig
from ..constants import INFERENCE_PAYMENT
from ..entities import ScriptContext
from ..gateway.client import LedgerGateway
from ..models import FailureReason, LogEntry, ValidationFailure
from ..tags import find_tag, parse_int_tag, tag_filter
from .contract import TokenContract
from .rules import InferenceShareRule, Stakeholders, flat_fee_rules, scaled_fee

logger = logging.getLogger(__name__)


class PaymentVerifier:
    """
    Checks creation, registration and inference payments.

    Args:
        gateway: Ledger gateway used to find inference payments
        contract: Token contract answering validity queries
        protocol: Fee schedule and addresses
        logger: Optional logger instance
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        contract: TokenContract,
        protocol: ProtocolConfig,
        logger: Optional[logging.Logger] = None,
    ):
        self.gateway = gateway
        self.contract = contract
        self.protocol = protocol
        self.logger = logger or logging.getLogger(__name__)
        self.flat_rules = flat_fee_rules(protocol)
        self.share_rule = InferenceShareRule(protocol)

    def is_transfer_valid(self, transfer_ref: Optional[str]) -> bool:
        """
        Ask the token contract whether a transfer is valid.

        A missing reference is invalid. Contract service failures propagate
        as GatewayError.
        """
        if not transfer_ref:
            return False
        return self.contract.read_validity(transfer_ref)

    def check_fee_split(self, entry: LogEntry, operation_kind: str) -> Optional[ValidationFailure]:
        """
        Compare the transfer embedded in ``entry`` with the flat fee for ``operation_kind``.

        Returns:
            None if function, target and quantity all match exactly

        Raises:
            ValueError: If ``operation_kind`` has no flat fee
        """
        rule = self.flat_rules.get(operation_kind)
        if rule is None:
            raise ValueError(f"No flat fee is defined for {operation_kind!r}")
        failure = rule.check(entry)
        if failure is not None:
            self.logger.info(f"Payment mismatch: {failure}")
        return failure

    def has_valid_fee_split(self, entry: LogEntry, operation_kind: str) -> bool:
        return self.check_fee_split(entry, operation_kind) is None

    def verify_creation_payment(self, entry: LogEntry, operation_kind: str) -> Optional[ValidationFailure]:
        """Fee split and contract validity of a creation or registration payment"""
        failure = self.check_fee_split(entry, operation_kind)
        if failure is not None:
            return failure
        if not self.is_transfer_valid(find_tag(entry, "sequencer_tx_id")):
            return ValidationFailure(
                FailureReason.PAYMENT_INVALID, entry.id, "token contract reports the transfer invalid"
            )
        return None

    def inference_payments(self, request_id: str, user: str, script_id: str) -> List[LogEntry]:
        """Payment entries a user published for one inference request"""
        filters = [
            tag_filter("protocol_name", self.protocol.protocol_name),
            tag_filter("operation_name", INFERENCE_PAYMENT),
            tag_filter("script_transaction", script_id),
            tag_filter("inference_transaction", request_id),
            tag_filter("contract", self.protocol.token_contract_id),
            tag_filter("sequencer_owner", user),
        ]
        return self.gateway.drain_all(filters, page_size=self.protocol.page_size)

    def is_inference_paid(
        self,
        request: LogEntry,
        operator_fee: int,
        script: ScriptContext,
        operator: str,
    ) -> bool:
        """
        Whether every stakeholder was paid at least its share for ``request``.

        Image scripts charge the operator fee per requested image. Each
        stakeholder needs its own valid transfer; one transfer never covers
        two shares.
        """
        fee = scaled_fee(operator_fee, script.is_stable_diffusion, parse_int_tag(request, "n_images"))
        stakeholders = Stakeholders(
            operator=operator,
            curator=script.curator,
            creator=script.model_creator or "",
            marketplace=self.protocol.vault_address,
        )
        payments = self.inference_payments(request.id, request.owner.address, script.script_id)
        matched = self.share_rule.match_transfers(
            payments,
            fee,
            stakeholders,
            is_valid=lambda entry: self.is_transfer_valid(find_tag(entry, "sequencer_tx_id")),
        )
        if matched is None:
            self.logger.debug(f"Request {request.id} is not fully paid (fee {fee})")
            return False
        return True

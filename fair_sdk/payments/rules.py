"""
Payment rules: what a correct payment looks like for each operation.

Flat fees (model creation, script creation, operator registration) must be
paid exactly. Inference fees are split between four stakeholders and each
share is a floor: paying more is accepted, paying less is not.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Callable, Dict, List, Optional, Sequence

from ..config import ProtocolConfig
from ..constants import (
    DEFAULT_N_IMAGES,
    MODEL_CREATION_PAYMENT,
    REGISTER_OPERATION,
    SCRIPT_CREATION_PAYMENT,
    TRANSFER_FUNCTION,
)
from ..models import FailureReason, LogEntry, ValidationFailure, parse_transfer_instruction
from ..tags import find_tag

STAKEHOLDERS = ("operator", "curator", "creator", "marketplace")


class PaymentRule(ABC):
    """Decides whether the transfer embedded in an entry is a correct payment"""

    @abstractmethod
    def check(self, entry: LogEntry) -> Optional[ValidationFailure]:
        """Return None when the payment is correct, else why it is not"""
        pass


class FlatFeeRule(PaymentRule):
    """Exact transfer of a fixed fee to a fixed target"""

    def __init__(self, operation_kind: str, expected_qty: Decimal, target: str):
        self.operation_kind = operation_kind
        self.expected_qty = Decimal(expected_qty)
        self.target = target

    def check(self, entry: LogEntry) -> Optional[ValidationFailure]:
        parsed = parse_transfer_instruction(find_tag(entry, "input"))
        if not parsed.ok:
            return ValidationFailure(FailureReason.PAYMENT_MISMATCH, entry.id, parsed.error)
        instruction = parsed.instruction
        if instruction.function != TRANSFER_FUNCTION:
            return ValidationFailure(
                FailureReason.PAYMENT_MISMATCH, entry.id, f"function is {instruction.function!r}"
            )
        if instruction.target != self.target:
            return ValidationFailure(
                FailureReason.PAYMENT_MISMATCH, entry.id, f"target {instruction.target} is not {self.target}"
            )
        if instruction.qty != self.expected_qty:
            return ValidationFailure(
                FailureReason.PAYMENT_MISMATCH,
                entry.id,
                f"{self.operation_kind} paid {instruction.qty}, expected {self.expected_qty}",
            )
        return None


def flat_fee_rules(protocol: ProtocolConfig) -> Dict[str, FlatFeeRule]:
    """Flat fee rule per payment operation name"""
    return {
        MODEL_CREATION_PAYMENT: FlatFeeRule(
            MODEL_CREATION_PAYMENT, protocol.model_creation_qty, protocol.vault_address
        ),
        SCRIPT_CREATION_PAYMENT: FlatFeeRule(
            SCRIPT_CREATION_PAYMENT, protocol.script_creation_qty, protocol.vault_address
        ),
        REGISTER_OPERATION: FlatFeeRule(
            REGISTER_OPERATION, protocol.operator_registration_qty, protocol.vault_address
        ),
    }


def scaled_fee(base_fee: int, is_stable_diffusion: bool = False, n_images: Optional[int] = None) -> int:
    """Fee for one request; image scripts charge per image, DEFAULT_N_IMAGES when unspecified"""
    if not is_stable_diffusion:
        return base_fee
    if n_images is None or n_images <= 0:
        n_images = DEFAULT_N_IMAGES
    return base_fee * n_images


def compute_share(fee: int, percentage: float) -> int:
    """ceil(fee * percentage), computed in decimal to avoid float drift"""
    exact = Decimal(fee) * Decimal(str(percentage))
    return int(exact.to_integral_value(rounding=ROUND_CEILING))


@dataclass(frozen=True)
class Stakeholders:
    """Who gets paid for an inference"""
    operator: str
    curator: str
    creator: str
    marketplace: str

    def target(self, stakeholder: str) -> str:
        return getattr(self, stakeholder)


class InferenceShareRule:
    """Four-way split of an operator fee"""

    def __init__(self, protocol: ProtocolConfig):
        self.protocol = protocol

    def shares(self, fee: int) -> Dict[str, int]:
        """Minimum amount each stakeholder must receive, in payment order"""
        return {
            "operator": compute_share(fee, self.protocol.operator_share),
            "curator": compute_share(fee, self.protocol.curator_share),
            "creator": compute_share(fee, self.protocol.creator_share),
            "marketplace": compute_share(fee, self.protocol.marketplace_share),
        }

    @staticmethod
    def accepts(observed: Decimal, share: int) -> bool:
        return observed >= share

    def match_transfers(
        self,
        payments: Sequence[LogEntry],
        fee: int,
        stakeholders: Stakeholders,
        is_valid: Callable[[LogEntry], bool] = lambda entry: True,
    ) -> Optional[Dict[str, str]]:
        """
        Assign a distinct payment entry to every stakeholder.

        Larger shares are matched first and each takes the smallest
        sufficient transfer, so stakeholders sharing an address are still
        matched when possible.

        Returns:
            Mapping of stakeholder to payment entry id, or None if any share
            is uncovered
        """
        parsed: List[tuple] = []
        for entry in payments:
            result = parse_transfer_instruction(find_tag(entry, "input"))
            if result.ok and result.instruction.function == TRANSFER_FUNCTION:
                parsed.append((entry, result.instruction))

        shares = self.shares(fee)
        used = set()
        matched: Dict[str, str] = {}
        for stakeholder in sorted(STAKEHOLDERS, key=lambda s: shares[s], reverse=True):
            target = stakeholders.target(stakeholder)
            candidates = [
                (instruction.qty, index)
                for index, (entry, instruction) in enumerate(parsed)
                if index not in used
                and instruction.target == target
                and self.accepts(instruction.qty, shares[stakeholder])
            ]
            chosen = None
            for _, index in sorted(candidates):
                if is_valid(parsed[index][0]):
                    chosen = index
                    break
            if chosen is None:
                return None
            used.add(chosen)
            matched[stakeholder] = parsed[chosen][0].id
        return matched

"""
Liveness rules: is an operator actually serving the script it registered for?

Exactly one rule is active per session, picked by
``ProtocolConfig.liveness_policy``:

* ``sla`` (default): the operator must have answered each of its last N
  paid inference requests.
* ``proof-of-life``: the operator must have published an active proof
  within the proof window.
"""
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from ..config import ProtocolConfig
from ..constants import OPERATOR_ACTIVE_PROOF, SCRIPT_INFERENCE_REQUEST, SCRIPT_INFERENCE_RESPONSE
from ..entities import ScriptContext
from ..gateway.client import LedgerGateway
from ..models import FailureReason, LogEntry, ValidationFailure
from ..payments.verifier import PaymentVerifier
from ..tags import default_tag_filters, find_tag, parse_float_tag, tag_filter
from ..utils import now_unix

logger = logging.getLogger(__name__)


class LivenessRule(ABC):
    """Decides whether a registered operator is live"""

    @abstractmethod
    def check(
        self,
        operator: str,
        registration: LogEntry,
        operator_fee: int,
        script: ScriptContext,
    ) -> Optional[ValidationFailure]:
        """
        Args:
            operator: Operator address
            registration: The operator's registration entry
            operator_fee: Quoted fee in base units
            script: Script the operator serves

        Returns:
            None if the operator is live, else the reason it is not
        """
        pass


class SlaWindowRule(LivenessRule):
    """Every paid request among the operator's last N must have a response"""

    def __init__(self, gateway: LedgerGateway, verifier: PaymentVerifier, protocol: ProtocolConfig):
        self.gateway = gateway
        self.verifier = verifier
        self.protocol = protocol

    def last_requests(self, operator: str, script: ScriptContext) -> list:
        filters = default_tag_filters(self.protocol.protocol_name, self.protocol.protocol_version) + [
            tag_filter("operation_name", SCRIPT_INFERENCE_REQUEST),
            tag_filter("script_name", script.name),
            tag_filter("script_curator", script.curator),
            tag_filter("script_operator", operator),
        ]
        return self.gateway.find_latest(filters, first=self.protocol.n_previous_requests)

    def has_answered(self, request: LogEntry, operator: str) -> bool:
        """
        Whether a response to ``request`` exists from the operator it named.

        Responses point at the request's ``Inference-Transaction`` tag when
        present, else at the request id.
        """
        request_id = find_tag(request, "inference_transaction") or request.id
        addressed_to = find_tag(request, "script_operator") or operator
        if addressed_to != operator:
            return False
        filters = default_tag_filters(self.protocol.protocol_name, self.protocol.protocol_version) + [
            tag_filter("request_transaction", request_id),
            tag_filter("operation_name", SCRIPT_INFERENCE_RESPONSE),
        ]
        return self.gateway.find_first(filters, owners=[addressed_to]) is not None

    def check(
        self,
        operator: str,
        registration: LogEntry,
        operator_fee: int,
        script: ScriptContext,
    ) -> Optional[ValidationFailure]:
        for request in self.last_requests(operator, script):
            if not self.verifier.is_inference_paid(request, operator_fee, script, operator):
                # Unpaid requests do not count against the operator
                continue
            if not self.has_answered(request, operator):
                return ValidationFailure(
                    FailureReason.SLA_UNANSWERED,
                    registration.id,
                    f"paid request {request.id} has no response from {operator}",
                )
        return None


class ProofOfLifeRule(LivenessRule):
    """The operator's newest active proof must fall inside the proof window"""

    def __init__(
        self,
        gateway: LedgerGateway,
        protocol: ProtocolConfig,
        clock: Callable[[], float] = now_unix,
    ):
        self.gateway = gateway
        self.protocol = protocol
        self.clock = clock

    def latest_proof(self, operator: str) -> Optional[LogEntry]:
        filters = [
            tag_filter("protocol_name", self.protocol.protocol_name),
            tag_filter("operation_name", OPERATOR_ACTIVE_PROOF),
        ]
        return self.gateway.find_first(filters, owners=[operator])

    def check(
        self,
        operator: str,
        registration: LogEntry,
        operator_fee: int,
        script: ScriptContext,
    ) -> Optional[ValidationFailure]:
        proof = self.latest_proof(operator)
        if proof is None:
            return ValidationFailure(FailureReason.NO_LIVENESS_PROOF, registration.id, "no active proof")
        timestamp = parse_float_tag(proof, "unix_time")
        now = self.clock()
        if timestamp is None or not (now - self.protocol.proof_window_seconds < timestamp <= now):
            return ValidationFailure(
                FailureReason.NO_LIVENESS_PROOF,
                registration.id,
                f"latest proof {proof.id} at {timestamp} is outside the window",
            )
        return None


def liveness_rule_for(
    protocol: ProtocolConfig,
    gateway: LedgerGateway,
    verifier: PaymentVerifier,
    clock: Callable[[], float] = now_unix,
) -> LivenessRule:
    """The rule selected by ``protocol.liveness_policy``"""
    if protocol.liveness_policy == "proof-of-life":
        return ProofOfLifeRule(gateway, protocol, clock=clock)
    return SlaWindowRule(gateway, verifier, protocol)

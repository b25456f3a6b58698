"""
Inference orchestration: one paid request to an operator.

A call moves through ``IDLE -> CONVERSATION_RESOLVED -> UPLOADED -> PAID``.
The prompt upload and the four stakeholder transfers are separate external
side effects and cannot be made atomic. If a transfer fails after the
upload, the call ends in ``PARTIALLY_PAID`` and raises PartialPaymentError
listing the transfers that did go through; nothing is rolled back or
retried.
"""
import json
import logging
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence

from .config import ProtocolConfig
from .constants import (
    ATOMIC_ASSET_CONTRACT_SOURCE_ID,
    CONVERSATION_START,
    INFERENCE_PAYMENT,
    MAX_MESSAGE_SIZE,
    SCRIPT_INFERENCE_REQUEST,
    SCRIPT_INFERENCE_RESPONSE,
    TX_ORIGIN,
    UDL_ID,
)
from .entities import Model, Operator, Script
from .exceptions import (
    InsufficientBalanceError,
    InvalidReferenceError,
    PartialPaymentError,
    TransferError,
    UploadError,
)
from .gateway.client import LedgerGateway
from .models import Configuration, InferenceState, LogEntry, PaymentReceipt, Tag
from .payments.contract import TokenContract
from .payments.rules import STAKEHOLDERS, InferenceShareRule, scaled_fee
from .storage import StorageUploader
from .tags import build_tag, default_tag_filters, find_tag, parse_int_tag, tag_filter
from .utils import now_unix

logger = logging.getLogger(__name__)

ATOMIC_ASSET_NAME = "Fair Protocol Prompt Atomic Asset"
ATOMIC_ASSET_TICKER = "FPPAA"


def atomic_asset_tags(owner: str, name: str = ATOMIC_ASSET_NAME, ticker: str = ATOMIC_ASSET_TICKER) -> List[Tag]:
    """Tags that make an upload an atomic asset owned by ``owner``"""
    manifest = {
        "evaluationOptions": {
            "sourceType": "redstone-sequencer",
            "allowBigInt": True,
            "internalWrites": True,
            "unsafeClient": "skip",
            "useConstructor": False,
        }
    }
    init_state = {
        "firstOwner": owner,
        "canEvolve": False,
        "balances": {owner: 1},
        "name": name,
        "ticker": ticker,
    }
    return [
        build_tag("app_name", "SmartWeaveContract"),
        build_tag("app_version", "0.3.0"),
        build_tag("contract_src", ATOMIC_ASSET_CONTRACT_SOURCE_ID),
        build_tag("contract_manifest", json.dumps(manifest)),
        build_tag("init_state", json.dumps(init_state)),
    ]


def configuration_tags(configuration: Configuration) -> List[Tag]:
    tags = []
    if configuration.asset_names:
        tags.append(build_tag("asset_names", json.dumps(configuration.asset_names)))
    if configuration.negative_prompt:
        tags.append(build_tag("negative_prompt", configuration.negative_prompt))
    if configuration.description:
        tags.append(build_tag("description", configuration.description))
    if configuration.custom_tags:
        custom = [{"name": t.name, "value": t.value} for t in configuration.custom_tags]
        tags.append(build_tag("user_custom_tags", json.dumps(custom)))
    if configuration.n_images is not None and configuration.n_images > 0:
        tags.append(build_tag("n_images", configuration.n_images))
    return tags


class InferenceOrchestrator:
    """
    Drives inference requests.

    Args:
        gateway: Ledger gateway, for conversation lookups and history
        contract: Token contract the fee transfers go through
        uploader: Storage service receiving the prompt
        protocol: Fee split and protocol tags
        origin: Value of the ``Transaction-Origin`` tag
        clock: Source of ``Unix-Time`` values
        logger: Optional logger instance
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        contract: TokenContract,
        uploader: StorageUploader,
        protocol: ProtocolConfig,
        origin: str = TX_ORIGIN,
        clock: Callable[[], float] = now_unix,
        logger: Optional[logging.Logger] = None,
    ):
        self.gateway = gateway
        self.contract = contract
        self.uploader = uploader
        self.protocol = protocol
        self.origin = origin
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.share_rule = InferenceShareRule(protocol)
        self.state = InferenceState.IDLE

    def _set_state(self, state: InferenceState) -> None:
        self.logger.debug(f"Inference state {self.state.value} -> {state.value}")
        self.state = state

    def _protocol_tags(self) -> List[Tag]:
        return [
            build_tag("protocol_name", self.protocol.protocol_name),
            build_tag("protocol_version", self.protocol.protocol_version),
        ]

    def resolve_conversation_id(self, user: str, script: Script) -> int:
        """
        Current conversation of ``user`` with ``script``.

        The newest ``Conversation Start`` the user published for the script
        decides; with none, the conversation is 1.
        """
        filters = default_tag_filters(self.protocol.protocol_name, self.protocol.protocol_version) + [
            tag_filter("operation_name", CONVERSATION_START),
            tag_filter("script_transaction", script.txid),
            tag_filter("script_name", script.name),
            tag_filter("script_curator", script.owner),
        ]
        entry = self.gateway.find_first(filters, owners=[user])
        conversation_id = parse_int_tag(entry, "conversation_identifier")
        if conversation_id is None or conversation_id < 1:
            return 1
        return conversation_id

    def start_conversation(self, user: str, script: Script) -> int:
        """Publish a ``Conversation Start`` for the next conversation id and return it"""
        next_id = self.resolve_conversation_id(user, script) + 1
        tags = self._protocol_tags() + [
            build_tag("operation_name", CONVERSATION_START),
            build_tag("script_transaction", script.txid),
            build_tag("script_name", script.name),
            build_tag("script_curator", script.owner),
            build_tag("conversation_identifier", next_id),
            build_tag("unix_time", self.clock()),
            build_tag("tx_origin", self.origin),
        ]
        self.uploader.upload(str(next_id), tags)
        self.logger.info(f"Started conversation {next_id} with script {script.txid}")
        return next_id

    def build_upload_tags(
        self,
        script: Script,
        operator: str,
        user: str,
        conversation_id: int,
        configuration: Configuration,
    ) -> List[Tag]:
        """Tags of the uploaded prompt, which becomes the inference request"""
        tags = self._protocol_tags() + [
            build_tag("script_name", script.name),
            build_tag("script_curator", script.owner),
            build_tag("script_transaction", script.txid),
            build_tag("script_operator", operator),
            build_tag("operation_name", SCRIPT_INFERENCE_REQUEST),
            build_tag("conversation_identifier", conversation_id),
        ]
        if configuration.file_name:
            tags.append(build_tag("file_name", configuration.file_name))
        tags += [
            build_tag("unix_time", self.clock()),
            build_tag("content_type", configuration.content_type),
            build_tag("tx_origin", self.origin),
        ]
        tags += configuration_tags(configuration)
        if configuration.create_atomic_assets:
            tags += atomic_asset_tags(user)
        tags += [
            build_tag("license", UDL_ID),
            build_tag("derivation", "Allowed-With-License-Passthrough"),
            build_tag("commercial_use", "Allowed"),
        ]
        return tags

    def build_payment_tags(
        self,
        script: Script,
        operator: str,
        model_creator: str,
        conversation_id: int,
        request_id: str,
        content_type: str,
    ) -> List[Tag]:
        """Provenance attached to every stakeholder transfer"""
        return self._protocol_tags() + [
            build_tag("operation_name", INFERENCE_PAYMENT),
            build_tag("script_name", script.name),
            build_tag("script_curator", script.owner),
            build_tag("script_transaction", script.txid),
            build_tag("script_operator", operator),
            build_tag("model_creator", model_creator),
            build_tag("conversation_identifier", conversation_id),
            build_tag("inference_transaction", request_id),
            build_tag("unix_time", self.clock()),
            build_tag("content_type", content_type),
            build_tag("tx_origin", self.origin),
        ]

    def quote(self, script: Script, operator: Operator, configuration: Optional[Configuration] = None) -> Dict[str, int]:
        """Share per stakeholder for one request, in base units"""
        if operator.fee is None or operator.fee <= 0:
            raise InvalidReferenceError(f"Operator {operator.txid} does not quote a valid fee")
        configuration = configuration or Configuration()
        fee = scaled_fee(operator.fee, script.is_stable_diffusion, configuration.n_images)
        return self.share_rule.shares(fee)

    def run_inference(
        self,
        model: Model,
        script: Script,
        operator: Operator,
        prompt: str,
        user_addr: str,
        configuration: Optional[Configuration] = None,
    ) -> PaymentReceipt:
        """
        Upload a prompt and pay the operator, curator, model creator and marketplace.

        Args:
            model: Model the script runs
            script: Script to run
            operator: Operator that will answer
            prompt: Prompt content
            user_addr: Address paying for the request
            configuration: Per-request options

        Returns:
            PaymentReceipt with the request id and the four transfer ids

        Raises:
            ValueError: If the prompt exceeds MAX_MESSAGE_SIZE
            InsufficientBalanceError: If the user cannot cover the fee (nothing was sent)
            UploadError: If the storage service returned no id
            PartialPaymentError: If a transfer failed after the upload
        """
        configuration = configuration or Configuration()
        self._set_state(InferenceState.IDLE)

        size = len(prompt.encode("utf-8"))
        if size > MAX_MESSAGE_SIZE:
            raise ValueError(f"Prompt is {size} bytes; the limit is {MAX_MESSAGE_SIZE}")

        shares = self.quote(script, operator, configuration)
        total = sum(shares.values())
        balance = self.contract.read_balance(user_addr)
        if balance * self.protocol.token_divider < total:
            raise InsufficientBalanceError(
                f"Balance of {balance} does not cover the fee of {Decimal(total) / self.protocol.token_divider}",
                balance=balance,
                required=Decimal(total) / self.protocol.token_divider,
            )

        conversation_id = self.resolve_conversation_id(user_addr, script)
        self._set_state(InferenceState.CONVERSATION_RESOLVED)

        upload_tags = self.build_upload_tags(script, operator.owner, user_addr, conversation_id, configuration)
        request_id = self.uploader.upload(prompt, upload_tags)
        if not request_id:
            raise UploadError("No transaction id returned from the storage service")
        self.logger.debug(f"Inference request uploaded as {request_id}")
        self._set_state(InferenceState.UPLOADED)

        payment_tags = self.build_payment_tags(
            script, operator.owner, model.owner, conversation_id, request_id, configuration.content_type
        )
        targets = {
            "operator": operator.owner,
            "curator": script.owner,
            "creator": model.owner,
            "marketplace": self.protocol.vault_address,
        }
        completed: Dict[str, str] = {}
        for stakeholder in STAKEHOLDERS:
            try:
                completed[stakeholder] = self.contract.write_transfer(
                    targets[stakeholder], shares[stakeholder], payment_tags
                )
            except TransferError as e:
                self._set_state(InferenceState.PARTIALLY_PAID)
                self.logger.error(
                    f"Payment to {stakeholder} failed for request {request_id} "
                    f"after {len(completed)} of {len(STAKEHOLDERS)} transfers: {e}"
                )
                raise PartialPaymentError(
                    f"Transfer to {stakeholder} failed: {e}",
                    request_id=request_id,
                    completed=completed,
                    failed_stakeholder=stakeholder,
                    conversation_id=conversation_id,
                ) from e

        self._set_state(InferenceState.PAID)
        self.logger.info(f"Payment successful for request {request_id}")
        fee = scaled_fee(operator.fee, script.is_stable_diffusion, configuration.n_images)
        return PaymentReceipt(
            request_id=request_id,
            conversation_id=conversation_id,
            operator_payment_tx=completed["operator"],
            curator_payment_tx=completed["curator"],
            creator_payment_tx=completed["creator"],
            marketplace_payment_tx=completed["marketplace"],
            total_fee=fee,
            total_u_cost=Decimal(fee) / self.protocol.token_divider,
        )

    def get_requests(
        self,
        user: Optional[str] = None,
        script: Optional[Script] = None,
        operator: Optional[str] = None,
        conversation_id: Optional[int] = None,
        first: Optional[int] = None,
    ) -> List[LogEntry]:
        """Newest inference requests matching the given scope"""
        filters = default_tag_filters(self.protocol.protocol_name, self.protocol.protocol_version) + [
            tag_filter("operation_name", SCRIPT_INFERENCE_REQUEST),
        ]
        if script is not None:
            filters.append(tag_filter("script_name", script.name))
            filters.append(tag_filter("script_curator", script.owner))
        if operator:
            filters.append(tag_filter("script_operator", operator))
        if conversation_id:
            filters.append(tag_filter("conversation_identifier", conversation_id))
        owners = [user] if user else None
        return self.gateway.find_latest(filters, owners=owners, first=first or self.protocol.page_size)

    def get_responses(
        self,
        requests: Sequence[LogEntry],
        conversation_id: Optional[int] = None,
    ) -> List[LogEntry]:
        """
        Responses to ``requests``, keeping only those published by the
        operator each request was addressed to.
        """
        if not requests:
            return []
        addressed: Dict[str, str] = {}
        for request in requests:
            request_id = find_tag(request, "inference_transaction") or request.id
            addressed[request_id] = find_tag(request, "script_operator") or ""
        filters = default_tag_filters(self.protocol.protocol_name, self.protocol.protocol_version) + [
            tag_filter("operation_name", SCRIPT_INFERENCE_RESPONSE),
            tag_filter("request_transaction", *addressed),
        ]
        if conversation_id:
            filters.append(tag_filter("conversation_identifier", conversation_id))
        operators = sorted({op for op in addressed.values() if op})
        responses = self.gateway.drain_all(filters, owners=operators or None, page_size=self.protocol.page_size)
        return [
            response
            for response in responses
            if addressed.get(find_tag(response, "request_transaction")) == response.owner.address
        ]

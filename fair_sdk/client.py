"""
FairClient: the session object most callers start from.

A client owns its collaborators (ledger gateway, token contract, uploader)
and the model, script and operator selected with ``use``. Several clients
can live side by side; nothing here is global.
"""
import logging
from decimal import Decimal
from typing import List, Optional, Sequence, Union

from .config import NetworkConfig, ProtocolConfig, default_network, default_timeout
from .constants import MODEL_CREATION_PAYMENT, REGISTER_OPERATION, SCRIPT_CREATION_PAYMENT
from .entities import Model, Operator, Script
from .exceptions import ConfigurationError, InvalidReferenceError
from .gateway.client import LedgerGateway
from .gateway.stub_transport import InMemoryLedger
from .gateway.transport import HttpTransport
from .inference import InferenceOrchestrator
from .listing.liveness import liveness_rule_for
from .listing.models import ModelFilter
from .listing.operators import OperatorFilter
from .listing.scripts import ScriptFilter
from .listing.search import SearchResult, Searcher
from .models import ByEntity, ByReference, Configuration, LogEntry, PaymentReceipt, TxRef
from .payments.contract import HttpTokenContract, TokenContract
from .payments.stub_contract import InMemoryTokenContract
from .payments.verifier import PaymentVerifier
from .storage import HttpUploader, InMemoryUploader, StorageUploader
from .tags import find_tag
from .utils import CancellationToken
from .wallet import Wallet

logger = logging.getLogger(__name__)

USE_KINDS = {
    "model": (MODEL_CREATION_PAYMENT, Model),
    "script": (SCRIPT_CREATION_PAYMENT, Script),
    "operator": (REGISTER_OPERATION, Operator),
}

Reference = Union[TxRef, Model, Script, Operator, str]


class FairClient:
    """
    Session against one Fair Protocol deployment.

    Args:
        gateway: Ledger gateway
        contract: Token contract
        protocol: Protocol configuration
        uploader: Storage uploader; needed only for ``prompt``
        address: Address of the session's user; taken from ``wallet`` if omitted
        wallet: Wallet signing uploads and transfers
        logger: Optional logger instance
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        contract: TokenContract,
        protocol: Optional[ProtocolConfig] = None,
        uploader: Optional[StorageUploader] = None,
        address: Optional[str] = None,
        wallet: Optional[Wallet] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.gateway = gateway
        self.contract = contract
        self.protocol = protocol or ProtocolConfig()
        self.uploader = uploader
        self.wallet = wallet
        self._address = address or (wallet.address if wallet is not None else None)
        self.logger = logger or logging.getLogger(__name__)

        self.verifier = PaymentVerifier(gateway, contract, self.protocol, logger=self.logger)
        liveness = liveness_rule_for(self.protocol, gateway, self.verifier)
        self.operators = OperatorFilter(gateway, self.verifier, self.protocol, liveness, logger=self.logger)
        self.models = ModelFilter(gateway, self.verifier, self.protocol, logger=self.logger)
        self.scripts = ScriptFilter(gateway, self.verifier, self.protocol, self.operators, logger=self.logger)
        self.searcher = Searcher(self.models, self.scripts, self.operators)

        self.model: Optional[Model] = None
        self.script: Optional[Script] = None
        self.operator: Optional[Operator] = None

    @classmethod
    def from_network(
        cls,
        network: Optional[str] = None,
        wallet: Optional[Wallet] = None,
        timeout: Optional[float] = None,
        **protocol_overrides,
    ) -> "FairClient":
        """
        Build a client for a network described in networks.json.

        Args:
            network: Network name (default FAIR_NETWORK or ``mainnet``)
            wallet: Wallet for uploads and transfers; read-only without one
            timeout: Per-request timeout (default FAIR_GATEWAY_TIMEOUT)
            **protocol_overrides: ProtocolConfig fields to override

        Raises:
            ValueError: If the network is unknown or a URL is insecure
            ConfigurationError: If the protocol configuration is invalid
        """
        network = network or default_network()
        config = NetworkConfig.get_network(network)
        protocol = NetworkConfig.get_protocol(network, **protocol_overrides)
        timeout = timeout if timeout is not None else default_timeout()

        gateway = LedgerGateway(
            transport=HttpTransport(NetworkConfig.get_gateway_url(network)), timeout=timeout
        )
        contract = HttpTokenContract(
            config["contractState"], config["sequencer"], protocol, wallet=wallet, timeout=timeout
        )
        uploader = HttpUploader(config["upload"], wallet, timeout=timeout) if wallet is not None else None
        logger.info(f"Connected to {network}")
        return cls(gateway, contract, protocol=protocol, uploader=uploader, wallet=wallet)

    @classmethod
    def in_memory(
        cls,
        address: str,
        ledger: Optional[InMemoryLedger] = None,
        protocol: Optional[ProtocolConfig] = None,
        balance: int = 0,
    ) -> "FairClient":
        """
        Client backed by an in-memory ledger, contract and uploader.

        Args:
            address: Address of the session's user
            ledger: Ledger to share with other clients; a new one by default
            protocol: Protocol configuration
            balance: Initial balance of ``address`` in base units
        """
        ledger = ledger if ledger is not None else InMemoryLedger()
        protocol = protocol or ProtocolConfig()
        contract = InMemoryTokenContract(ledger, address, protocol=protocol, balances={address: balance})
        return cls(
            LedgerGateway(transport=ledger),
            contract,
            protocol=protocol,
            uploader=InMemoryUploader(ledger, address),
            address=address,
        )

    @property
    def address(self) -> str:
        """
        Address of the session's user.

        Raises:
            ConfigurationError: If neither an address nor a wallet was given
        """
        if not self._address:
            raise ConfigurationError("No wallet or address configured")
        return self._address

    def list_models(self, cancel_token: Optional[CancellationToken] = None):
        return self.models.list_models(cancel_token)

    def list_scripts(self, model_ref: Optional[Reference] = None, cancel_token: Optional[CancellationToken] = None):
        return self.scripts.list_scripts(self._as_ref(model_ref), cancel_token)

    def list_operators(self, script_ref: Optional[Reference] = None, cancel_token: Optional[CancellationToken] = None):
        return self.operators.list_operators(self._as_ref(script_ref), cancel_token)

    def search(
        self,
        type_filter: Optional[Sequence[str]] = None,
        model_category: Optional[Sequence[str]] = None,
        owners: Optional[Sequence[str]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SearchResult:
        return self.searcher.search(type_filter, model_category, owners, cancel_token)

    @staticmethod
    def _as_ref(ref: Optional[Reference]) -> Optional[TxRef]:
        if ref is None or isinstance(ref, (ByReference, ByEntity)):
            return ref
        if isinstance(ref, str):
            return ByReference(ref)
        if isinstance(ref, (Model, Script, Operator)):
            return ByEntity(ref.raw)
        raise TypeError(f"Unsupported reference type: {type(ref).__name__}")

    def _resolve_entry(self, ref: TxRef) -> LogEntry:
        if isinstance(ref, ByEntity):
            return ref.entry
        entry = self.gateway.get_by_id(ref.txid)
        if entry is None:
            raise InvalidReferenceError(f"Transaction {ref.txid} was not found")
        return entry

    def use(self, kind: str, ref: Reference) -> "FairClient":
        """
        Select the model, script or operator used by ``prompt``.

        Args:
            kind: ``model``, ``script`` or ``operator``
            ref: Payment or registration transaction, by id or by entry

        Returns:
            self, for chaining

        Raises:
            ValueError: For an unknown kind
            InvalidReferenceError: If the transaction is missing or of the wrong operation
        """
        if kind not in USE_KINDS:
            raise ValueError(f"Invalid type {kind!r}; expected one of {', '.join(USE_KINDS)}")
        operation_name, wrapper = USE_KINDS[kind]
        entry = self._resolve_entry(self._as_ref(ref))
        actual = find_tag(entry, "operation_name")
        if actual != operation_name:
            raise InvalidReferenceError(
                f"Invalid {kind} transaction {entry.id}: expected a '{operation_name}' transaction, got {actual!r}"
            )
        try:
            selected = wrapper.from_entry(entry)
        except ValueError as e:
            raise InvalidReferenceError(str(e))
        setattr(self, kind, selected)
        self.logger.debug(f"Using {kind} {selected.txid}")
        return self

    def get_balance(self, address: Optional[str] = None) -> Decimal:
        """Token balance in whole tokens, of the session's user by default"""
        return self.contract.read_balance(address or self.address)

    def orchestrator(self) -> InferenceOrchestrator:
        if self.uploader is None:
            raise ConfigurationError("An uploader (wallet) is required to send prompts")
        return InferenceOrchestrator(self.gateway, self.contract, self.uploader, self.protocol, logger=self.logger)

    def prompt(self, content: str, configuration: Optional[Configuration] = None) -> PaymentReceipt:
        """
        Send a paid prompt using the selected model, script and operator.

        Raises:
            ConfigurationError: If no model, script or operator is selected
            (plus everything InferenceOrchestrator.run_inference raises)
        """
        if self.model is None or self.script is None or self.operator is None:
            raise ConfigurationError("Select a model, script and operator with use() before prompting")
        receipt = self.orchestrator().run_inference(
            self.model, self.script, self.operator, content, self.address, configuration
        )
        self.logger.info(f"Inference request {receipt.request_id} paid")
        return receipt

    def _require_script(self) -> Script:
        if self.script is None:
            raise ConfigurationError("Select a script with use() first")
        return self.script

    def start_conversation(self) -> int:
        """Open a new conversation with the selected script"""
        return self.orchestrator().start_conversation(self.address, self._require_script())

    def get_requests(self, conversation_id: Optional[int] = None, first: Optional[int] = None) -> List[LogEntry]:
        """The session user's newest requests to the selected script and operator"""
        operator = self.operator.owner if self.operator is not None else None
        history = InferenceOrchestrator(self.gateway, self.contract, self.uploader, self.protocol, logger=self.logger)
        return history.get_requests(self.address, self._require_script(), operator, conversation_id, first)

    def get_responses(self, requests: Sequence[LogEntry], conversation_id: Optional[int] = None) -> List[LogEntry]:
        history = InferenceOrchestrator(self.gateway, self.contract, self.uploader, self.protocol, logger=self.logger)
        return history.get_responses(requests, conversation_id)

    def close(self) -> None:
        self.gateway.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

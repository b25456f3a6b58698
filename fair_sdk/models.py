"""
Data models for the Fair SDK.
"""
import json
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError


class Tag(BaseModel):
    """A single (name, value) tag attached to a log entry"""
    name: str
    value: str

    class Config:
        frozen = True


class Owner(BaseModel):
    """Cryptographic owner of a log entry"""
    address: str
    key: Optional[str] = None

    class Config:
        frozen = True


class LogEntry(BaseModel):
    """
    Immutable view of one transaction from the ledger.

    Tags keep their wire order; names are not unique.
    """
    id: str
    owner: Owner
    tags: Tuple[Tag, ...] = ()
    cursor: Optional[str] = None

    class Config:
        frozen = True

    @classmethod
    def from_edge(cls, edge: Dict[str, Any]) -> "LogEntry":
        """Build an entry from a GraphQL ``{cursor, node}`` edge"""
        node = edge["node"]
        return cls(
            id=node["id"],
            owner=node["owner"],
            tags=node.get("tags") or (),
            cursor=edge.get("cursor"),
        )


class TagFilter(BaseModel):
    """Query-side tag filter: entry must carry ``name`` with one of ``values``"""
    name: str
    values: List[str]

    class Config:
        frozen = True

    def to_wire(self) -> Dict[str, Any]:
        return {"name": self.name, "values": list(self.values)}


@dataclass
class Page:
    """One page of query results, in ledger order (height descending)"""
    edges: List[LogEntry]
    has_next_page: bool = False

    @property
    def last_cursor(self) -> Optional[str]:
        if not self.edges:
            return None
        return self.edges[-1].cursor


class TransferInstruction(BaseModel):
    """Token contract ``Input`` payload for a transfer"""
    function: str
    target: str
    qty: Decimal

    def to_input(self) -> Dict[str, Any]:
        qty = int(self.qty) if self.qty == self.qty.to_integral_value() else str(self.qty)
        return {"function": self.function, "target": self.target, "qty": str(qty)}


@dataclass(frozen=True)
class InstructionParseResult:
    """Outcome of parsing an ``Input`` tag; exactly one of the fields is set"""
    instruction: Optional[TransferInstruction] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.instruction is not None


def parse_transfer_instruction(raw: Optional[str]) -> InstructionParseResult:
    """
    Parse a JSON-encoded transfer instruction.

    Args:
        raw: Value of the ``Input`` tag, possibly None

    Returns:
        InstructionParseResult with either the instruction or an error message
    """
    if raw is None:
        return InstructionParseResult(error="missing Input tag")
    try:
        data = json.loads(raw)
    except ValueError as e:
        return InstructionParseResult(error=f"Input is not valid JSON: {e}")
    if not isinstance(data, dict):
        return InstructionParseResult(error=f"Input must be an object, got {type(data).__name__}")
    try:
        return InstructionParseResult(instruction=TransferInstruction.model_validate(data))
    except ValidationError as e:
        return InstructionParseResult(error=f"Input does not match transfer schema: {e.error_count()} error(s)")


class FailureReason(str, Enum):
    """Why a candidate was excluded from a listing"""
    PAYMENT_INVALID = "PAYMENT_INVALID"
    PAYMENT_MISMATCH = "PAYMENT_MISMATCH"
    MISSING_TAGS = "MISSING_TAGS"
    DELETED = "DELETED"
    SUPERSEDED = "SUPERSEDED"
    CANCELLED = "CANCELLED"
    SLA_UNANSWERED = "SLA_UNANSWERED"
    NO_LIVENESS_PROOF = "NO_LIVENESS_PROOF"
    NO_VALID_OPERATOR = "NO_VALID_OPERATOR"
    UNRESOLVED_SCRIPT = "UNRESOLVED_SCRIPT"
    INCOMPATIBLE = "INCOMPATIBLE"


@dataclass(frozen=True)
class ValidationFailure:
    """A filter predicate that did not hold for ``entry_id``"""
    reason: FailureReason
    entry_id: str
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.entry_id}: {self.reason.value} {self.detail}".rstrip()


@dataclass(frozen=True)
class ByReference:
    """Refer to an on-ledger transaction by id"""
    txid: str


@dataclass(frozen=True)
class ByEntity:
    """Refer to an on-ledger transaction by its already-fetched entry"""
    entry: LogEntry


TxRef = Union[ByReference, ByEntity]


class Configuration(BaseModel):
    """Per-inference options that end up as upload tags"""
    content_type: str = "text/plain"
    n_images: Optional[int] = None
    negative_prompt: Optional[str] = None
    description: Optional[str] = None
    asset_names: Optional[List[str]] = None
    custom_tags: Optional[List[Tag]] = None
    create_atomic_assets: bool = True
    file_name: Optional[str] = None


class InferenceState(str, Enum):
    """Progress of a single inference call"""
    IDLE = "IDLE"
    CONVERSATION_RESOLVED = "CONVERSATION_RESOLVED"
    UPLOADED = "UPLOADED"
    PAID = "PAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"


class PaymentReceipt(BaseModel):
    """Result of a fully paid inference request"""
    request_id: str = Field(..., alias="requestId")
    conversation_id: int = Field(..., alias="conversationId")
    operator_payment_tx: str = Field(..., alias="operatorPaymentTx")
    curator_payment_tx: str = Field(..., alias="curatorPaymentTx")
    creator_payment_tx: str = Field(..., alias="creatorPaymentTx")
    marketplace_payment_tx: str = Field(..., alias="marketplacePaymentTx")
    total_fee: int = Field(..., alias="totalFee")
    total_u_cost: Decimal = Field(..., alias="totalUCost")

    class Config:
        populate_by_name = True

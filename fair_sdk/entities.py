"""
Read-only views of marketplace listings.

Each wrapper projects the fields callers care about out of the payment or
registration entry the listing was discovered through, and keeps the raw
entry for anything else.
"""
import json
from dataclasses import dataclass, field
from typing import List, Optional

from .constants import STABLE_DIFFUSION_OUTPUT
from .models import LogEntry
from .tags import effective_owner, find_tag, parse_float_tag, parse_int_tag

NAME_NOT_AVAILABLE = "Name Not available"


def parse_previous_versions(entry: LogEntry) -> List[str]:
    """Ids listed in the ``Previous-Versions`` JSON array; anything malformed yields []"""
    raw = find_tag(entry, "previous_versions")
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError:
        return []
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


@dataclass(frozen=True)
class Model:
    """A model listing, discovered through its creation payment"""
    txid: str
    owner: str
    name: str
    payment_id: str
    raw: LogEntry = field(repr=False, compare=False)
    timestamp: Optional[float] = None
    category: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: LogEntry) -> "Model":
        """
        Build a Model from a ``Model Creation Payment`` entry.

        Raises:
            ValueError: If the entry does not reference a model
        """
        txid = find_tag(entry, "model_transaction")
        if not txid:
            raise ValueError(f"Entry {entry.id} is not a model payment")
        return cls(
            txid=txid,
            owner=effective_owner(entry),
            name=find_tag(entry, "model_name") or NAME_NOT_AVAILABLE,
            payment_id=entry.id,
            raw=entry,
            timestamp=parse_float_tag(entry, "unix_time"),
            category=find_tag(entry, "model_category"),
            description=find_tag(entry, "description"),
        )


@dataclass(frozen=True)
class ScriptContext:
    """What operator validation needs to know about the script served"""
    script_id: str
    name: str
    curator: str
    model_creator: Optional[str] = None
    is_stable_diffusion: bool = False


@dataclass(frozen=True)
class Script:
    """A script listing, discovered through its creation payment"""
    txid: str
    owner: str
    name: str
    payment_id: str
    raw: LogEntry = field(repr=False, compare=False)
    timestamp: Optional[float] = None
    model_txid: Optional[str] = None
    model_name: Optional[str] = None
    model_creator: Optional[str] = None
    output_configuration: Optional[str] = None
    category: Optional[str] = None
    previous_versions: tuple = ()

    @classmethod
    def from_entry(cls, entry: LogEntry) -> "Script":
        """
        Build a Script from a ``Script Creation Payment`` entry.

        Raises:
            ValueError: If the entry does not reference a script
        """
        txid = find_tag(entry, "script_transaction")
        if not txid:
            raise ValueError(f"Entry {entry.id} is not a script payment")
        return cls(
            txid=txid,
            owner=effective_owner(entry),
            name=find_tag(entry, "script_name") or NAME_NOT_AVAILABLE,
            payment_id=entry.id,
            raw=entry,
            timestamp=parse_float_tag(entry, "unix_time"),
            model_txid=find_tag(entry, "model_transaction"),
            model_name=find_tag(entry, "model_name"),
            model_creator=find_tag(entry, "model_creator"),
            output_configuration=find_tag(entry, "output_configuration"),
            category=find_tag(entry, "model_category"),
            previous_versions=tuple(parse_previous_versions(entry)),
        )

    @property
    def curator(self) -> str:
        return self.owner

    @property
    def is_stable_diffusion(self) -> bool:
        return self.output_configuration == STABLE_DIFFUSION_OUTPUT

    def context(self) -> ScriptContext:
        return ScriptContext(
            script_id=self.txid,
            name=self.name,
            curator=self.owner,
            model_creator=self.model_creator,
            is_stable_diffusion=self.is_stable_diffusion,
        )


@dataclass(frozen=True)
class Operator:
    """An operator registration"""
    txid: str
    owner: str
    name: str
    fee: Optional[int]
    raw: LogEntry = field(repr=False, compare=False)
    timestamp: Optional[float] = None
    script_txid: Optional[str] = None
    script_name: Optional[str] = None
    script_curator: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: LogEntry) -> "Operator":
        """Build an Operator from an ``Operator Registration`` entry"""
        return cls(
            txid=entry.id,
            owner=effective_owner(entry),
            name=find_tag(entry, "operator_name") or NAME_NOT_AVAILABLE,
            fee=parse_int_tag(entry, "operator_fee"),
            raw=entry,
            timestamp=parse_float_tag(entry, "unix_time"),
            script_txid=find_tag(entry, "script_transaction"),
            script_name=find_tag(entry, "script_name"),
            script_curator=find_tag(entry, "script_curator"),
        )

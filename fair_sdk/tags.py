"""
Tag vocabulary and helpers for reading and writing log entry tags.

Every lookup here is total: a missing or unknown tag is reported as None,
never as an exception, because optional tags are routine on the ledger.
"""
import math
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from .models import LogEntry, Tag, TagFilter

TAG_NAMES: Dict[str, str] = {
    "protocol_name": "Protocol-Name",
    "protocol_version": "Protocol-Version",
    "app_name": "App-Name",
    "app_version": "App-Version",
    "content_type": "Content-Type",
    "unix_time": "Unix-Time",
    "model_name": "Model-Name",
    "model_creator": "Model-Creator",
    "model_transaction": "Model-Transaction",
    "model_category": "Category",
    "operation_name": "Operation-Name",
    "description": "Description",
    "operator_name": "Operator-Name",
    "operator_fee": "Operator-Fee",
    "conversation_identifier": "Conversation-Identifier",
    "inference_transaction": "Inference-Transaction",
    "request_transaction": "Request-Transaction",
    "response_transaction": "Response-Transaction",
    "script_transaction": "Script-Transaction",
    "script_name": "Script-Name",
    "script_curator": "Script-Curator",
    "script_operator": "Script-Operator",
    "script_user": "Script-User",
    "registration_transaction": "Registration-Transaction",
    "file_name": "File-Name",
    "input": "Input",
    "contract": "Contract",
    "sequencer_owner": "Sequencer-Owner",
    "sequencer_tx_id": "Sequencer-Tx-Id",
    "previous_versions": "Previous-Versions",
    "tx_origin": "Transaction-Origin",
    "asset_names": "Asset-Names",
    "negative_prompt": "Negative-Prompt",
    "user_custom_tags": "User-Custom-Tags",
    "n_images": "N-Images",
    "output_configuration": "Output-Configuration",
    "contract_src": "Contract-Src",
    "contract_manifest": "Contract-Manifest",
    "init_state": "Init-State",
    "license": "License",
    "derivation": "Derivation",
    "commercial_use": "Commercial-Use",
}


def wire_name(name: str) -> str:
    """Map a canonical name to its wire name; wire names pass through unchanged"""
    return TAG_NAMES.get(name, name)


def build_tag(name: str, value: Any) -> Tag:
    """
    Build a tag from a canonical or wire name.

    Args:
        name: Canonical name (``script_transaction``) or wire name
        value: Tag value; non-strings are converted with ``str``

    Returns:
        Tag instance
    """
    return Tag(name=wire_name(name), value=value if isinstance(value, str) else str(value))


def find_tag(entry: Optional[LogEntry], name: str) -> Optional[str]:
    """Return the value of the first tag called ``name``, or None"""
    if entry is None:
        return None
    wanted = wire_name(name)
    for tag in entry.tags:
        if tag.name == wanted:
            return tag.value
    return None


def find_tags(entry: Optional[LogEntry], name: str) -> List[str]:
    """Return every value carried under ``name``, in wire order"""
    if entry is None:
        return []
    wanted = wire_name(name)
    return [tag.value for tag in entry.tags if tag.name == wanted]


def effective_owner(entry: LogEntry) -> str:
    """Sequencer-Owner if a relay submitted the entry, else the signing address"""
    return find_tag(entry, "sequencer_owner") or entry.owner.address


def tag_filter(name: str, *values: Any) -> TagFilter:
    """Build a query filter matching any of ``values`` under ``name``"""
    return TagFilter(name=wire_name(name), values=[str(v) for v in values])


def default_tag_filters(protocol_name: str, protocol_version: str) -> List[TagFilter]:
    """Filters every protocol query starts with"""
    return [
        tag_filter("protocol_name", protocol_name),
        tag_filter("protocol_version", protocol_version),
    ]


def parse_int_tag(entry: Optional[LogEntry], name: str) -> Optional[int]:
    """Read a whole-number tag; fractional, non-finite or garbage values give None"""
    raw = find_tag(entry, name)
    if raw is None:
        return None
    try:
        value = Decimal(raw)
    except (TypeError, ValueError, InvalidOperation):
        return None
    if not value.is_finite() or value != value.to_integral_value():
        return None
    return int(value)


def parse_float_tag(entry: Optional[LogEntry], name: str) -> Optional[float]:
    """Read a numeric tag; non-finite values count as absent"""
    raw = find_tag(entry, name)
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None

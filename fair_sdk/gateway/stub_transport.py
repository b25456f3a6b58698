"""
In-memory ledger transport.

This module provides an append-only, in-process ledger that answers the
same GraphQL variables as a real gateway: tag filters, owner filters, id
lookups and cursor pagination, newest entry first. It is used for local
development and throughout the test suite.
"""
import logging
import secrets
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..models import LogEntry, Owner, Tag
from .exceptions import GatewayResponseError
from .transport import LedgerTransport

logger = logging.getLogger(__name__)

TagLike = Union[Tag, Tuple[str, Any], Dict[str, Any]]


def _to_tag(tag: TagLike) -> Tag:
    if isinstance(tag, Tag):
        return tag
    if isinstance(tag, dict):
        return Tag(name=tag["name"], value=str(tag["value"]))
    name, value = tag
    return Tag(name=name, value=str(value))


def new_tx_id() -> str:
    """Random 43-character base64url id, shaped like a ledger transaction id"""
    return secrets.token_urlsafe(32)[:43]


class InMemoryLedger(LedgerTransport):
    """
    Append-only ledger held in memory.

    Entries are returned newest first. The cursor of an edge is the id of
    its entry; ``after`` resumes right below that entry.
    """

    def __init__(self):
        self._entries: List[LogEntry] = []
        self._lock = threading.RLock()
        self.executed: List[Dict[str, Any]] = []

    def publish(
        self,
        owner: str,
        tags: Iterable[TagLike],
        tx_id: Optional[str] = None,
        key: Optional[str] = None,
    ) -> LogEntry:
        """
        Append an entry to the ledger.

        Args:
            owner: Signing address of the entry
            tags: Tags in wire order, as Tag objects, pairs or dicts
            tx_id: Explicit id; a random one is generated when omitted
            key: Owner public key

        Returns:
            The stored entry
        """
        entry = LogEntry(
            id=tx_id or new_tx_id(),
            owner=Owner(address=owner, key=key),
            tags=tuple(_to_tag(t) for t in tags),
        )
        with self._lock:
            if any(existing.id == entry.id for existing in self._entries):
                raise ValueError(f"Entry {entry.id} already exists; the ledger is append-only")
            self._entries.append(entry)
        logger.debug(f"Published entry {entry.id} from {owner}")
        return entry

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> List[LogEntry]:
        """Snapshot of all entries, newest first"""
        with self._lock:
            return list(reversed(self._entries))

    @staticmethod
    def _matches(entry: LogEntry, tag_filters: Sequence[Dict[str, Any]], owners: Optional[Sequence[str]]) -> bool:
        if owners and entry.owner.address not in owners:
            return False
        for flt in tag_filters:
            wanted = set(flt.get("values") or [])
            if not any(tag.name == flt["name"] and tag.value in wanted for tag in entry.tags):
                return False
        return True

    def execute(
        self,
        query: str,
        variables: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        self.executed.append(dict(variables))
        try:
            first = int(variables.get("first", 10))
        except (TypeError, ValueError):
            raise GatewayResponseError(f"Invalid 'first' value: {variables.get('first')!r}")
        after = variables.get("after")
        ids = variables.get("ids")
        owners = variables.get("owners")
        tag_filters = variables.get("tags") or []

        candidates = self.entries()
        if ids:
            id_set = set(ids)
            candidates = [e for e in candidates if e.id in id_set]
        candidates = [e for e in candidates if self._matches(e, tag_filters, owners)]

        if after:
            positions = [i for i, e in enumerate(candidates) if e.id == after]
            if not positions:
                raise GatewayResponseError(f"Unknown cursor: {after}")
            candidates = candidates[positions[0] + 1:]

        page = candidates[:first]
        edges = [
            {
                "cursor": entry.id,
                "node": {
                    "id": entry.id,
                    "tags": [{"name": t.name, "value": t.value} for t in entry.tags],
                    "owner": {"address": entry.owner.address, "key": entry.owner.key},
                },
            }
            for entry in page
        ]
        return {
            "transactions": {
                "pageInfo": {"hasNextPage": len(candidates) > first},
                "edges": edges,
            }
        }

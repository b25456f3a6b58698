"""
Shared machinery of the listing filters.

Every listing follows the same shape: drain candidate entries from the
ledger, run per-candidate checks that either pass or produce a
ValidationFailure, and keep the survivors in ledger order. Failures are
values; only gateway errors and cancellation escape.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterable, List, Optional, Sequence, TypeVar

from ..config import ProtocolConfig
from ..gateway.client import LedgerGateway
from ..models import ByEntity, ByReference, FailureReason, LogEntry, TagFilter, TxRef, ValidationFailure
from ..payments.verifier import PaymentVerifier
from ..tags import default_tag_filters, effective_owner, find_tag, tag_filter
from ..utils import CancellationToken, check_cancelled, run_bounded

logger = logging.getLogger(__name__)

T = TypeVar("T")

Check = Callable[[LogEntry], Optional[ValidationFailure]]


@dataclass
class ListingResult(Generic[T]):
    """Listed items plus the reason every other candidate was dropped"""
    items: List[T] = field(default_factory=list)
    failures: List[ValidationFailure] = field(default_factory=list)

    def failure_for(self, entry_id: str) -> Optional[ValidationFailure]:
        for failure in self.failures:
            if failure.entry_id == entry_id:
                return failure
        return None


def dedup_by(entries: Iterable[LogEntry], key: Callable[[LogEntry], str]) -> List[LogEntry]:
    """Keep the first entry seen for each key, preserving order"""
    seen = set()
    unique = []
    for entry in entries:
        k = key(entry)
        if k in seen:
            continue
        seen.add(k)
        unique.append(entry)
    return unique


def first_failure(entry: LogEntry, checks: Sequence[Check]) -> Optional[ValidationFailure]:
    """Run checks in order, stopping at the first that fails"""
    for check in checks:
        failure = check(entry)
        if failure is not None:
            return failure
    return None


class ListingPipeline:
    """
    Base class for the model, script and operator filters.

    Args:
        gateway: Ledger gateway
        verifier: Payment verifier
        protocol: Protocol configuration
        logger: Optional logger instance
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        verifier: PaymentVerifier,
        protocol: ProtocolConfig,
        logger: Optional[logging.Logger] = None,
    ):
        self.gateway = gateway
        self.verifier = verifier
        self.protocol = protocol
        self.logger = logger or logging.getLogger(__name__)

    def base_filters(self) -> List[TagFilter]:
        return default_tag_filters(self.protocol.protocol_name, self.protocol.protocol_version)

    def payment_filters(self, operation_name: str) -> List[TagFilter]:
        """Filters for sequenced payment entries of one operation"""
        return self.base_filters() + [
            tag_filter("operation_name", operation_name),
            tag_filter("contract", self.protocol.token_contract_id),
        ]

    def drain(
        self,
        filters: Sequence[TagFilter],
        cancel_token: Optional[CancellationToken] = None,
        owners: Optional[Sequence[str]] = None,
    ) -> List[LogEntry]:
        """Drain candidates, dropping entries repeated across pages"""
        entries = self.gateway.drain_all(
            filters, owners=owners, page_size=self.protocol.page_size, cancel_token=cancel_token
        )
        return dedup_by(entries, lambda e: e.id)

    def is_deleted(self, subject_id: str, owner: str, operation_name: str, subject_tag: str) -> bool:
        """
        Whether the owner or the marketplace published a deletion for ``subject_id``.
        """
        filters = self.base_filters() + [
            tag_filter("operation_name", operation_name),
            tag_filter(subject_tag, subject_id),
        ]
        owners = [self.protocol.marketplace_address, owner]
        return self.gateway.find_first(filters, owners=owners) is not None

    @staticmethod
    def require_tags(*names: str) -> Check:
        """Check that every named tag is present and that the entry has an owner"""
        def check(entry: LogEntry) -> Optional[ValidationFailure]:
            missing = [name for name in names if not find_tag(entry, name)]
            if missing:
                return ValidationFailure(FailureReason.MISSING_TAGS, entry.id, f"missing {', '.join(missing)}")
            if not effective_owner(entry):
                return ValidationFailure(FailureReason.MISSING_TAGS, entry.id, "no resolvable owner")
            return None
        return check

    def evaluate(
        self,
        candidates: Sequence[LogEntry],
        checks: Sequence[Check],
        cancel_token: Optional[CancellationToken] = None,
    ) -> ListingResult[LogEntry]:
        """
        Run ``checks`` over every candidate, concurrently up to
        ``protocol.max_concurrency``. Survivors keep ledger order.
        """
        outcomes = run_bounded(
            lambda entry: first_failure(entry, checks),
            candidates,
            max_workers=self.protocol.max_concurrency,
            cancel_token=cancel_token,
        )
        result: ListingResult[LogEntry] = ListingResult()
        for entry, failure in zip(candidates, outcomes):
            if failure is None:
                result.items.append(entry)
            else:
                self.logger.debug(f"Excluded {failure}")
                result.failures.append(failure)
        check_cancelled(cancel_token)
        return result


def ref_subject_id(ref: TxRef, id_tag: str) -> str:
    """Id a reference points at: the txid, or the id tag of the referenced entry"""
    if isinstance(ref, ByReference):
        return ref.txid
    if isinstance(ref, ByEntity):
        return find_tag(ref.entry, id_tag) or ref.entry.id
    raise TypeError(f"Expected ByReference or ByEntity, got {type(ref).__name__}")

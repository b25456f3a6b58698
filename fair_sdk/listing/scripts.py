"""
Script listing.

Beyond the model checks, scripts are versioned and must be served:

* version collapse: among payments for the same script id only the newest
  by ``Unix-Time`` survives, ties going to the entry seen first;
* supersession: an entry whose id or script id is named in another entry's
  ``Previous-Versions`` list is dropped;
* liveness gate: a script is listed only if at least one operator serving
  it validates.

Collapse and supersession consider only entries whose payment checks
passed, so an unpaid entry cannot hide a paid one.
"""
import logging
from typing import Dict, List, Optional, Tuple

from ..constants import SCRIPT_CREATION_PAYMENT, SCRIPT_DELETION
from ..entities import Script, parse_previous_versions
from ..models import ByEntity, FailureReason, LogEntry, TagFilter, TxRef, ValidationFailure
from ..tags import effective_owner, find_tag, parse_float_tag, tag_filter
from ..utils import CancellationToken
from .operators import OperatorFilter
from .pipeline import ListingPipeline, ListingResult, ref_subject_id

logger = logging.getLogger(__name__)


def script_id_of(entry: LogEntry) -> str:
    return find_tag(entry, "script_transaction") or entry.id


def collapse_versions(entries: List[LogEntry]) -> Tuple[List[LogEntry], List[ValidationFailure]]:
    """
    Keep the newest entry per script id.

    Entries without a usable ``Unix-Time`` rank below any timestamped one.
    Survivors keep ledger order.
    """
    newest: Dict[str, Tuple[float, int]] = {}
    for index, entry in enumerate(entries):
        timestamp = parse_float_tag(entry, "unix_time")
        rank = timestamp if timestamp is not None else float("-inf")
        key = script_id_of(entry)
        if key not in newest or rank > newest[key][0]:
            newest[key] = (rank, index)

    winners = {index for _, index in newest.values()}
    kept, dropped = [], []
    for index, entry in enumerate(entries):
        if index in winners:
            kept.append(entry)
        else:
            winner = entries[newest[script_id_of(entry)][1]]
            dropped.append(
                ValidationFailure(FailureReason.SUPERSEDED, entry.id, f"newer version {winner.id} exists")
            )
    return kept, dropped


def drop_previous_versions(entries: List[LogEntry]) -> Tuple[List[LogEntry], List[ValidationFailure]]:
    """Drop entries named in another entry's ``Previous-Versions`` list"""
    listed_by: Dict[str, List[str]] = {}
    for entry in entries:
        for version in parse_previous_versions(entry):
            listed_by.setdefault(version, []).append(entry.id)

    kept, dropped = [], []
    for entry in entries:
        superseding = [
            lister
            for key in {entry.id, script_id_of(entry)}
            for lister in listed_by.get(key, [])
            if lister != entry.id
        ]
        if superseding:
            dropped.append(
                ValidationFailure(FailureReason.SUPERSEDED, entry.id, f"listed as previous version by {superseding[0]}")
            )
        else:
            kept.append(entry)
    return kept, dropped


class ScriptFilter(ListingPipeline):
    """
    Args:
        operators: Operator filter used for the liveness gate
        (remaining arguments as ListingPipeline)
    """

    def __init__(self, gateway, verifier, protocol, operators: OperatorFilter, logger=None):
        super().__init__(gateway, verifier, protocol, logger=logger)
        self.operators = operators

    def script_filters(self, model_ref: Optional[TxRef] = None) -> List[TagFilter]:
        filters = self.payment_filters(SCRIPT_CREATION_PAYMENT)
        if model_ref is None:
            return filters
        filters.append(tag_filter("model_transaction", ref_subject_id(model_ref, "model_transaction")))
        if isinstance(model_ref, ByEntity):
            model_name = find_tag(model_ref.entry, "model_name")
            if model_name:
                filters.append(tag_filter("model_name", model_name))
            filters.append(tag_filter("model_creator", effective_owner(model_ref.entry)))
        return filters

    def check_payment(self, entry: LogEntry) -> Optional[ValidationFailure]:
        return self.verifier.verify_creation_payment(entry, SCRIPT_CREATION_PAYMENT)

    def check_not_deleted(self, entry: LogEntry) -> Optional[ValidationFailure]:
        script_id = script_id_of(entry)
        if self.is_deleted(script_id, effective_owner(entry), SCRIPT_DELETION, "script_transaction"):
            return ValidationFailure(FailureReason.DELETED, entry.id, f"script {script_id} was deleted")
        return None

    def check_has_operator(self, entry: LogEntry) -> Optional[ValidationFailure]:
        script = Script.from_entry(entry)
        if self.operators.first_valid_operator(script.context()) is None:
            return ValidationFailure(
                FailureReason.NO_VALID_OPERATOR, entry.id, f"no valid operator serves {script.txid}"
            )
        return None

    def run(
        self,
        model_ref: Optional[TxRef] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ListingResult[Script]:
        """
        List valid, current, served scripts, optionally for one model.

        Raises:
            GatewayError: If the ledger or token contract cannot be queried
            OperationCancelledError: If ``cancel_token`` is cancelled
        """
        candidates = self.drain(self.script_filters(model_ref), cancel_token)
        checked = self.evaluate(
            candidates,
            [self.require_tags("script_transaction", "script_name"), self.check_payment, self.check_not_deleted],
            cancel_token=cancel_token,
        )
        current, collapsed = collapse_versions(checked.items)
        current, superseded = drop_previous_versions(current)
        served = self.evaluate(current, [self.check_has_operator], cancel_token=cancel_token)

        scripts = [Script.from_entry(entry) for entry in served.items]
        failures = checked.failures + collapsed + superseded + served.failures
        self.logger.info(f"Listed {len(scripts)} of {len(candidates)} script payment(s)")
        return ListingResult(items=scripts, failures=failures)

    def list_scripts(
        self,
        model_ref: Optional[TxRef] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[Script]:
        return self.run(model_ref, cancel_token).items

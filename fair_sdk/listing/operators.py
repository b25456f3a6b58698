"""
Operator listing.

An operator is listed when its registration was paid for, it has not
cancelled the registration, and the session's liveness rule passes.
Cancellation is checked before liveness, so a cancelled registration never
lists whatever its service record.
"""
import logging
import threading
from typing import Dict, List, Optional, Tuple

from ..constants import CANCEL_OPERATION, REGISTER_OPERATION, SCRIPT_CREATION_PAYMENT
from ..entities import Operator, Script, ScriptContext
from ..models import ByEntity, FailureReason, LogEntry, TagFilter, TxRef, ValidationFailure
from ..tags import effective_owner, find_tag, parse_int_tag, tag_filter
from ..utils import CancellationToken, check_cancelled
from .liveness import LivenessRule
from .pipeline import ListingPipeline, ListingResult, ref_subject_id

logger = logging.getLogger(__name__)


class OperatorFilter(ListingPipeline):
    """
    Args:
        liveness: Liveness rule applied to every registration
        (remaining arguments as ListingPipeline)
    """

    def __init__(self, gateway, verifier, protocol, liveness: LivenessRule, logger=None):
        super().__init__(gateway, verifier, protocol, logger=logger)
        self.liveness = liveness
        self._scripts: Dict[Tuple[str, Optional[str]], Optional[ScriptContext]] = {}
        self._scripts_lock = threading.RLock()

    def registration_filters(
        self,
        script_id: Optional[str] = None,
        script_name: Optional[str] = None,
        script_curator: Optional[str] = None,
    ) -> List[TagFilter]:
        filters = self.payment_filters(REGISTER_OPERATION)
        if script_id:
            filters.append(tag_filter("script_transaction", script_id))
        if script_name and script_curator:
            filters.append(tag_filter("script_name", script_name))
            filters.append(tag_filter("script_curator", script_curator))
        return filters

    def resolve_script(self, script_id: str, curator: Optional[str] = None) -> Optional[ScriptContext]:
        """
        Look up the script a registration points at, via its creation payment.

        Only payments that pass verification count, newest first. When the
        registration names a curator, the payment must also come from that
        curator.

        Lookups are cached for the lifetime of the filter; entries on the
        ledger never change.
        """
        key = (script_id, curator)
        with self._scripts_lock:
            if key in self._scripts:
                return self._scripts[key]
        filters = self.payment_filters(SCRIPT_CREATION_PAYMENT) + [
            tag_filter("script_transaction", script_id),
        ]
        context = None
        for entry in self.drain(filters):
            if curator and effective_owner(entry) != curator:
                continue
            failure = self.verifier.verify_creation_payment(entry, SCRIPT_CREATION_PAYMENT)
            if failure is not None:
                self.logger.debug(f"Ignoring script payment {entry.id}: {failure}")
                continue
            try:
                context = Script.from_entry(entry).context()
            except ValueError as e:
                self.logger.debug(f"Ignoring script payment {entry.id}: {e}")
                continue
            break
        with self._scripts_lock:
            self._scripts[key] = context
        return context

    def is_cancelled(self, registration_id: str, operator: str) -> bool:
        filters = self.base_filters() + [
            tag_filter("operation_name", CANCEL_OPERATION),
            tag_filter("registration_transaction", registration_id),
        ]
        return self.gateway.find_first(filters, owners=[operator]) is not None

    def check_registration(
        self,
        entry: LogEntry,
        script: Optional[ScriptContext] = None,
    ) -> Optional[ValidationFailure]:
        """
        Run every operator check on one registration entry.

        Args:
            entry: Registration payment entry
            script: Script context when already known; resolved from the
                registration's ``Script-Transaction`` tag otherwise
        """
        failure = self.require_tags("script_transaction", "operator_fee")(entry)
        if failure is not None:
            return failure
        fee = parse_int_tag(entry, "operator_fee")
        if fee is None or fee <= 0:
            return ValidationFailure(FailureReason.MISSING_TAGS, entry.id, "Operator-Fee is not a positive number")

        failure = self.verifier.verify_creation_payment(entry, REGISTER_OPERATION)
        if failure is not None:
            return failure

        script_id = find_tag(entry, "script_transaction")
        if script is None:
            script = self.resolve_script(script_id, find_tag(entry, "script_curator"))
            if script is None:
                return ValidationFailure(
                    FailureReason.UNRESOLVED_SCRIPT, entry.id, f"script {script_id} has no verified creation payment"
                )
        if script_id != script.script_id:
            return ValidationFailure(
                FailureReason.INCOMPATIBLE, entry.id, f"registered for {script_id}, not {script.script_id}"
            )
        for tag_name, expected in (("script_name", script.name), ("script_curator", script.curator)):
            value = find_tag(entry, tag_name)
            if value is not None and value != expected:
                return ValidationFailure(
                    FailureReason.INCOMPATIBLE, entry.id, f"{tag_name} {value!r} does not match script"
                )

        operator = effective_owner(entry)
        if self.is_cancelled(entry.id, operator):
            return ValidationFailure(FailureReason.CANCELLED, entry.id, f"cancelled by {operator}")

        return self.liveness.check(operator, entry, fee, script)

    def _script_from_ref(self, script_ref: Optional[TxRef]) -> Optional[ScriptContext]:
        if isinstance(script_ref, ByEntity):
            return Script.from_entry(script_ref.entry).context()
        return None

    def run(
        self,
        script_ref: Optional[TxRef] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ListingResult[Operator]:
        """
        List valid operators, optionally only those serving one script.

        Raises:
            GatewayError: If the ledger or token contract cannot be queried
            OperationCancelledError: If ``cancel_token`` is cancelled
        """
        script = self._script_from_ref(script_ref)
        if script is not None:
            filters = self.registration_filters(script.script_id, script.name, script.curator)
        elif script_ref is not None:
            filters = self.registration_filters(ref_subject_id(script_ref, "script_transaction"))
        else:
            filters = self.registration_filters()

        candidates = self.drain(filters, cancel_token)
        checked = self.evaluate(
            candidates, [lambda entry: self.check_registration(entry, script)], cancel_token=cancel_token
        )
        operators = [Operator.from_entry(entry) for entry in checked.items]
        self.logger.info(f"Listed {len(operators)} of {len(candidates)} operator registration(s)")
        return ListingResult(items=operators, failures=checked.failures)

    def list_operators(
        self,
        script_ref: Optional[TxRef] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[Operator]:
        return self.run(script_ref, cancel_token).items

    def first_valid_operator(
        self,
        script: ScriptContext,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Optional[Operator]:
        """
        First registration for ``script`` that validates, in ledger order.

        Stops at the first success, so scripts with many operators stay cheap
        to check.
        """
        filters = self.registration_filters(script.script_id, script.name, script.curator)
        for entry in self.drain(filters, cancel_token):
            check_cancelled(cancel_token)
            failure = self.check_registration(entry, script)
            if failure is None:
                return Operator.from_entry(entry)
            self.logger.debug(f"Operator candidate excluded: {failure}")
        return None

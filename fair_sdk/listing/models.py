"""
Model listing.
"""
import logging
from typing import List, Optional

from ..constants import MODEL_CREATION_PAYMENT, MODEL_DELETION
from ..entities import Model
from ..models import FailureReason, LogEntry, ValidationFailure
from ..tags import effective_owner, find_tag
from ..utils import CancellationToken
from .pipeline import ListingPipeline, ListingResult, dedup_by

logger = logging.getLogger(__name__)


class ModelFilter(ListingPipeline):
    """Models whose creation was paid for and that have not been deleted"""

    def check_payment(self, entry: LogEntry) -> Optional[ValidationFailure]:
        return self.verifier.verify_creation_payment(entry, MODEL_CREATION_PAYMENT)

    def check_not_deleted(self, entry: LogEntry) -> Optional[ValidationFailure]:
        model_id = find_tag(entry, "model_transaction")
        if self.is_deleted(model_id, effective_owner(entry), MODEL_DELETION, "model_transaction"):
            return ValidationFailure(FailureReason.DELETED, entry.id, f"model {model_id} was deleted")
        return None

    def validate(
        self,
        candidates: List[LogEntry],
        cancel_token: Optional[CancellationToken] = None,
    ) -> ListingResult[LogEntry]:
        """Run the model checks over already-fetched payment entries"""
        return self.evaluate(
            candidates,
            [self.require_tags("model_transaction"), self.check_payment, self.check_not_deleted],
            cancel_token=cancel_token,
        )

    def run(self, cancel_token: Optional[CancellationToken] = None) -> ListingResult[Model]:
        """
        List valid models with the reasons other candidates were dropped.

        Several payments may reference the same model; the first valid one
        in ledger order is kept.

        Raises:
            GatewayError: If the ledger or token contract cannot be queried
            OperationCancelledError: If ``cancel_token`` is cancelled
        """
        candidates = self.drain(self.payment_filters(MODEL_CREATION_PAYMENT), cancel_token)
        checked = self.validate(candidates, cancel_token)
        unique = dedup_by(checked.items, lambda e: find_tag(e, "model_transaction"))
        models = [Model.from_entry(entry) for entry in unique]
        self.logger.info(f"Listed {len(models)} of {len(candidates)} model payment(s)")
        return ListingResult(items=models, failures=checked.failures)

    def list_models(self, cancel_token: Optional[CancellationToken] = None) -> List[Model]:
        return self.run(cancel_token).items

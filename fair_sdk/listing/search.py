"""
Search across models, scripts and operators.

Results go through the same validation as the individual listings. A
category filter cascades: scripts are kept only if their model matched,
operators only if their script was kept.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..entities import Model, Operator, Script
from ..utils import CancellationToken
from .models import ModelFilter
from .operators import OperatorFilter
from .scripts import ScriptFilter

logger = logging.getLogger(__name__)

ENTITY_TYPES = ("model", "script", "operator")
MODEL_CATEGORIES = ("image", "text", "video", "audio", "other")


@dataclass
class SearchResult:
    models: List[Model] = field(default_factory=list)
    scripts: List[Script] = field(default_factory=list)
    operators: List[Operator] = field(default_factory=list)


def _check_choices(name: str, values: Optional[Sequence[str]], allowed: Sequence[str]) -> List[str]:
    values = list(values or [])
    unknown = [v for v in values if v not in allowed]
    if unknown:
        raise ValueError(f"Unknown {name}: {', '.join(unknown)}. Expected any of {', '.join(allowed)}")
    return values


class Searcher:
    """Combined search over the three listings"""

    def __init__(self, models: ModelFilter, scripts: ScriptFilter, operators: OperatorFilter):
        self.models = models
        self.scripts = scripts
        self.operators = operators

    def search(
        self,
        type_filter: Optional[Sequence[str]] = None,
        model_category: Optional[Sequence[str]] = None,
        owners: Optional[Sequence[str]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SearchResult:
        """
        Search listings.

        Args:
            type_filter: Kinds to return (``model``, ``script``, ``operator``); all when empty
            model_category: Only models in these categories, and what builds on them
            owners: Only listings owned by these addresses

        Returns:
            SearchResult with the kinds requested

        Raises:
            ValueError: For unknown kinds or categories
        """
        kinds = _check_choices("entity type", type_filter, ENTITY_TYPES) or list(ENTITY_TYPES)
        categories = _check_choices("model category", model_category, MODEL_CATEGORIES)
        owner_set = set(owners or [])

        def owned(items):
            return [item for item in items if not owner_set or item.owner in owner_set]

        result = SearchResult()
        if categories:
            models = [m for m in self.models.list_models(cancel_token) if m.category in categories]
            model_ids = {m.txid for m in models}
            scripts = [s for s in self.scripts.list_scripts(cancel_token=cancel_token) if s.model_txid in model_ids]
            script_ids = {s.txid for s in scripts}
            operators = [
                o for o in self.operators.list_operators(cancel_token=cancel_token) if o.script_txid in script_ids
            ]
        else:
            models = self.models.list_models(cancel_token) if "model" in kinds else []
            scripts = self.scripts.list_scripts(cancel_token=cancel_token) if "script" in kinds else []
            operators = self.operators.list_operators(cancel_token=cancel_token) if "operator" in kinds else []

        if "model" in kinds:
            result.models = owned(models)
        if "script" in kinds:
            result.scripts = owned(scripts)
        if "operator" in kinds:
            result.operators = owned(operators)
        logger.debug(
            f"Search found {len(result.models)} model(s), {len(result.scripts)} script(s), "
            f"{len(result.operators)} operator(s)"
        )
        return result

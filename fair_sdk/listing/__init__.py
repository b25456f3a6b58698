"""
Listing filters: rebuild trustworthy marketplace state from the ledger.
"""
from .liveness import LivenessRule, ProofOfLifeRule, SlaWindowRule, liveness_rule_for
from .models import ModelFilter
from .operators import OperatorFilter
from .pipeline import ListingPipeline, ListingResult
from .scripts import ScriptFilter
from .search import SearchResult, Searcher

__all__ = [
    "ListingPipeline", "ListingResult", "ModelFilter", "ScriptFilter", "OperatorFilter",
    "LivenessRule", "SlaWindowRule", "ProofOfLifeRule", "liveness_rule_for",
    "Searcher", "SearchResult",
]

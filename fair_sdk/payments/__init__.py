"""
Fee payments for the Fair SDK: the token contract seam and payment checks.
"""
from .contract import HttpTokenContract, TokenContract
from .rules import FlatFeeRule, InferenceShareRule, PaymentRule, Stakeholders, compute_share, scaled_fee
from .stub_contract import InMemoryTokenContract
from .verifier import PaymentVerifier

__all__ = [
    "TokenContract", "HttpTokenContract", "InMemoryTokenContract", "PaymentVerifier",
    "PaymentRule", "FlatFeeRule", "InferenceShareRule", "Stakeholders", "compute_share", "scaled_fee",
]

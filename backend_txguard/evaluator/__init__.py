"""
Transaction risk evaluator: pre-signing validation of outgoing transfers.

Classifies the recipient, consults reputation, balance, history and a chain
dry run, and aggregates the per-check outcomes into a Verdict.
"""

from backend_txguard.evaluator.aggregator import aggregate, timed_out_verdict
from backend_txguard.evaluator.models import (
    Asset,
    CanonicalAddress,
    ChainKind,
    CheckId,
    CheckOutcome,
    CheckStatus,
    RiskLevel,
    Severity,
    ValidationRequest,
    Verdict,
)
from backend_txguard.evaluator.runner import CheckRunner
from backend_txguard.evaluator.service import TransactionRiskEvaluator

__all__ = [
    "Asset",
    "CanonicalAddress",
    "ChainKind",
    "CheckId",
    "CheckOutcome",
    "CheckRunner",
    "CheckStatus",
    "RiskLevel",
    "Severity",
    "TransactionRiskEvaluator",
    "ValidationRequest",
    "Verdict",
    "aggregate",
    "timed_out_verdict",
]

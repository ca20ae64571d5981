"""
Address reputation: persistent scam/suspicious records and the report ingestor.
"""

from backend_txguard.reputation.ingestor import ReportIngestor
from backend_txguard.reputation.store import ReputationStore

__all__ = ["ReportIngestor", "ReputationStore"]

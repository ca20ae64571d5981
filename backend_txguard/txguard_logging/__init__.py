"""
Structured logging for Backend TxGuard.

JSON logs with timestamp, wallet_id, event_type and check context.
Use get_logger() in all modules for aggregation-friendly output.
"""

from backend_txguard.txguard_logging.logger import bind_wallet, get_logger

__all__ = ["bind_wallet", "get_logger"]

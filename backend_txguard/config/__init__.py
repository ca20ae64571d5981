"""
Configuration management for Backend TxGuard.

Loads and validates settings from environment variables and optional
.env files. Exposes a single source of truth for evaluator tunables.
"""

from backend_txguard.config.settings import EvaluatorSettings, get_settings  # noqa: F401

__all__ = ["EvaluatorSettings", "get_settings"]

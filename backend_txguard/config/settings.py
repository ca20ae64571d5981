"""
Evaluator settings and environment configuration.

Responsibilities:
- Hold every tunable of the risk evaluator with its default.
- Load overrides from environment variables (TXGUARD_*) or from a mapping
  using the camelCase option names (perCheckTimeoutMs, ...).
- Validate values so a bad deployment fails at startup, not mid-request.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from backend_txguard.config.env import load_txguard_env

MAX_HISTORY_SAMPLE_COUNT = 20
SCAM_LIST_CAP = 1000


@dataclass(frozen=True)
class EvaluatorSettings:
    """Thresholds, windows and timeouts for validation and reporting."""

    per_check_timeout_ms: int = 5000
    """Bound for each Phase-B check."""
    overall_timeout_ms: int = 15000
    """Bound for the whole validation."""
    fee_spike_gwei_threshold: Decimal = Decimal("100")
    """EVM gas price (gwei) above which FeeAdvisory warns."""
    history_window_days: int = 30
    """Span for recent counterparties."""
    history_sample_count: int = 20
    """Number of most recent confirmed sends averaged by AmountSanity."""
    report_dedupe_window_hours: int = 24
    """Repeat reports from one reporter inside this window do not count."""
    balance_buffer_factor: Decimal = Decimal("1.10")
    """Balance below factor x required triggers a low-severity warning."""
    btc_dust_threshold: Decimal = Decimal("0.00001")
    """BTC amounts below this are flagged as dust."""
    probe_timeout_ms: int = 5000
    """Per-call timeout applied by ChainProbe."""
    max_concurrent_checks: int = 4
    """Phase-B concurrency bound."""
    scam_list_cap: int = SCAM_LIST_CAP

    def __post_init__(self) -> None:
        for name in ("per_check_timeout_ms", "overall_timeout_ms", "probe_timeout_ms"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.history_window_days <= 0:
            raise ValueError("history_window_days must be positive")
        if not (1 <= self.history_sample_count <= MAX_HISTORY_SAMPLE_COUNT):
            raise ValueError(f"history_sample_count must be between 1 and {MAX_HISTORY_SAMPLE_COUNT}")
        if self.report_dedupe_window_hours < 0:
            raise ValueError("report_dedupe_window_hours must be >= 0")
        if self.balance_buffer_factor < 1:
            raise ValueError("balance_buffer_factor must be >= 1")
        if self.btc_dust_threshold < 0 or self.fee_spike_gwei_threshold < 0:
            raise ValueError("thresholds must be non-negative")
        if self.max_concurrent_checks < 1:
            raise ValueError("max_concurrent_checks must be >= 1")
        if not (1 <= self.scam_list_cap <= SCAM_LIST_CAP):
            raise ValueError(f"scam_list_cap must be between 1 and {SCAM_LIST_CAP}")

    @property
    def per_check_timeout_sec(self) -> float:
        return self.per_check_timeout_ms / 1000.0

    @property
    def overall_timeout_sec(self) -> float:
        return self.overall_timeout_ms / 1000.0

    @property
    def probe_timeout_sec(self) -> float:
        return self.probe_timeout_ms / 1000.0

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> EvaluatorSettings:
        """
        Build settings from a mapping keyed by camelCase option names
        (perCheckTimeoutMs, btcDustThreshold, ...) or attribute names.
        Unknown keys raise ValueError.
        """
        by_name = {f.name: f for f in fields(cls)}
        by_camel = {_camel(name): name for name in by_name}
        values: dict[str, Any] = {}
        for key, raw in options.items():
            name = key if key in by_name else by_camel.get(key)
            if name is None:
                raise ValueError(f"unknown evaluator option: {key}")
            values[name] = _coerce(name, raw, by_name[name].type)
        return cls(**values)

    @classmethod
    def from_env(cls) -> EvaluatorSettings:
        """Read TXGUARD_* overrides from the environment (after loading .env)."""
        load_txguard_env()
        values: dict[str, Any] = {}
        by_name = {f.name: f for f in fields(cls)}
        for name, env_var in _ENV_VARS.items():
            raw = (os.getenv(env_var) or "").strip()
            if raw:
                values[name] = _coerce(name, raw, by_name[name].type)
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> EvaluatorSettings:
        return replace(self, **overrides)


_ENV_VARS = {
    "per_check_timeout_ms": "TXGUARD_PER_CHECK_TIMEOUT_MS",
    "overall_timeout_ms": "TXGUARD_OVERALL_TIMEOUT_MS",
    "fee_spike_gwei_threshold": "TXGUARD_FEE_SPIKE_GWEI",
    "history_window_days": "TXGUARD_HISTORY_WINDOW_DAYS",
    "history_sample_count": "TXGUARD_HISTORY_SAMPLE_COUNT",
    "report_dedupe_window_hours": "TXGUARD_REPORT_DEDUPE_HOURS",
    "balance_buffer_factor": "TXGUARD_BALANCE_BUFFER_FACTOR",
    "btc_dust_threshold": "TXGUARD_BTC_DUST_THRESHOLD",
    "probe_timeout_ms": "TXGUARD_PROBE_TIMEOUT_MS",
    "max_concurrent_checks": "TXGUARD_MAX_CONCURRENT_CHECKS",
}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.capitalize() for p in rest)


def _coerce(name: str, raw: Any, annotation: Any) -> Any:
    kind = annotation if isinstance(annotation, str) else getattr(annotation, "__name__", "")
    try:
        if kind == "Decimal":
            value = Decimal(str(raw).strip())
            if not value.is_finite():
                raise ValueError
            return value
        if kind == "int":
            if isinstance(raw, bool):
                raise ValueError
            return int(str(raw).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"invalid value for {name}: {raw!r}") from e
    return raw


_settings: EvaluatorSettings | None = None


def get_settings() -> EvaluatorSettings:
    """Return the process-wide settings (read from env on first call)."""
    global _settings
    if _settings is None:
        _settings = EvaluatorSettings.from_env()
    return _settings


def reset_settings_for_test() -> None:
    global _settings
    _settings = None

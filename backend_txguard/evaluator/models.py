"""
Data models for the transaction risk evaluator.

Chain-qualified addresses, assets, reputation records, history summaries,
per-check outcomes and the aggregated verdict. Plain dataclasses and str
enums; no ORM coupling so the store and readers stay swappable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from backend_txguard.core.exceptions import InputMalformed


class ChainKind(str, Enum):
    """Address families; EVM covers mainnet, testnets, L2s and sidechains."""

    EVM_LIKE = "evm"
    BITCOIN_LIKE = "bitcoin"


@dataclass(frozen=True)
class CanonicalAddress:
    """
    Chain-qualified, normalized address. Equality and hashing use (chain, value) only.

    network: Bitcoin network the address parsed under (mainnet | testnet); None for EVM.
    checksum_valid: EVM only; False when a mixed-case address fails EIP-55, None when
        the input carried no checksum (all lower or all upper case).
    """

    chain: ChainKind
    value: str
    network: str | None = field(default=None, compare=False)
    checksum_valid: bool | None = field(default=None, compare=False)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Asset:
    """Asset being sent. contract is set for tokens (ERC-20); None for the native coin."""

    symbol: str
    chain: ChainKind
    decimals: int
    contract: str | None = None

    @property
    def is_native(self) -> bool:
        return self.contract is None


class Classification(str, Enum):
    SCAM = "scam"
    SUSPICIOUS = "suspicious"
    CLEAN = "clean"


class Severity(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def parse(cls, raw: str | Severity) -> Severity:
        if isinstance(raw, Severity):
            return raw
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            raise InputMalformed(f"unknown severity: {raw!r}", field="severity") from None


_SEVERITY_ORDER = (Severity.NONE, Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    UNKNOWN = "unknown"

    @classmethod
    def from_severity(cls, severity: Severity) -> RiskLevel:
        if severity is Severity.NONE:
            return cls.LOW
        return cls(severity.value)

    @property
    def severity(self) -> Severity | None:
        """Ordinal counterpart; None for UNKNOWN."""
        if self is RiskLevel.UNKNOWN:
            return None
        return Severity(self.value)


# -----------------------------------------------------------------------------
# Reputation, address book, history
# -----------------------------------------------------------------------------


@dataclass
class ReputationRecord:
    """Persistent judgement about an address. Clean addresses have no record."""

    address: CanonicalAddress
    classification: Classification
    severity: Severity
    description: str | None
    report_count: int
    first_reported_at: int
    """Unix timestamp (seconds) of the first report."""
    last_reported_at: int
    """Unix timestamp (seconds) of the most recent report; >= first_reported_at."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address.value,
            "chain": self.address.chain.value,
            "classification": self.classification.value,
            "severity": self.severity.value,
            "description": self.description,
            "report_count": self.report_count,
            "first_reported_at": self.first_reported_at,
            "last_reported_at": self.last_reported_at,
        }


@dataclass
class ReportReceipt:
    """Result of a report: counted=False when deduplicated inside the window."""

    address: CanonicalAddress
    counted: bool
    record: ReputationRecord


@dataclass(frozen=True)
class AddressBookMatch:
    label: str
    trusted: bool


@dataclass(frozen=True)
class OutgoingSend:
    """One outgoing transfer as returned by a TransactionHistoryReader."""

    to: str
    amount: Decimal
    timestamp: int
    status: str


@dataclass(frozen=True)
class OutgoingStats:
    mean: Decimal
    count: int


@dataclass
class HistorySummary:
    """Recent counterparties and rolling send statistics; mean is None when send_count < 1."""

    recent_counterparties: set[CanonicalAddress]
    send_amount_mean: Decimal | None
    send_count: int
    window_days: int


# -----------------------------------------------------------------------------
# Chain probe results
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class FeeQuote:
    """Raw fee data from a chain client, before threshold evaluation."""

    per_unit_price: Decimal
    """gwei per gas (EVM) or sat per vbyte (Bitcoin)."""
    units: int
    """Gas limit (EVM) or virtual size in vbytes (Bitcoin)."""
    total: Decimal
    """Total fee in the chain's native unit (ETH, BTC)."""
    unit: str


@dataclass(frozen=True)
class FeeEstimate:
    per_unit_price: Decimal
    units: int
    total: Decimal
    unit: str
    fee_advisory_spike: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "per_unit_price": str(self.per_unit_price),
            "units": self.units,
            "total": str(self.total),
            "unit": self.unit,
            "advisory": self.fee_advisory_spike,
        }


class RevertReason(str, Enum):
    INSUFFICIENT_FUNDS = "insufficient_funds"
    GAS_TOO_LOW = "gas_too_low"
    OTHER = "other"


@dataclass(frozen=True)
class SimulationOutcome:
    ok: bool
    reason: RevertReason | None = None
    message: str = ""

    @classmethod
    def success(cls) -> SimulationOutcome:
        return cls(ok=True)

    @classmethod
    def revert(cls, reason: RevertReason, message: str = "") -> SimulationOutcome:
        return cls(ok=False, reason=reason, message=message)


# -----------------------------------------------------------------------------
# Request, outcomes, verdict
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationRequest:
    """
    Proposed transfer. to_address_raw and amount_raw are parsed by the evaluator;
    everything else is already typed. Caller-provided flags beyond these are ignored.
    """

    wallet_id: str
    from_address: CanonicalAddress
    to_address_raw: str
    amount_raw: str
    asset: Asset
    network: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ValidationRequest:
        """
        Build a request from a JSON-like mapping:
        {wallet_id, from, to, amount, asset: {symbol, chain, decimals, contract?}, network?}.
        Raises InputMalformed on missing or ill-typed fields.
        """
        from backend_txguard.core.exceptions import ClassificationError
        from backend_txguard.evaluator.addresses import classify

        if not isinstance(payload, Mapping):
            raise InputMalformed("request body must be an object")
        missing = [k for k in ("wallet_id", "from", "to", "amount", "asset") if payload.get(k) in (None, "")]
        if missing:
            raise InputMalformed(f"missing required fields: {', '.join(missing)}", field=missing[0])

        asset_raw = payload["asset"]
        if not isinstance(asset_raw, Mapping):
            raise InputMalformed("asset must be an object", field="asset")
        try:
            chain = ChainKind(str(asset_raw.get("chain") or "").strip().lower())
        except ValueError:
            raise InputMalformed(f"unknown chain: {asset_raw.get('chain')!r}", field="asset.chain") from None
        symbol = str(asset_raw.get("symbol") or "").strip().upper()
        if not symbol:
            raise InputMalformed("asset.symbol is required", field="asset.symbol")
        decimals = asset_raw.get("decimals")
        if isinstance(decimals, bool) or not isinstance(decimals, int) or not (0 <= decimals <= 77):
            raise InputMalformed("asset.decimals must be an integer between 0 and 77", field="asset.decimals")
        contract = (str(asset_raw.get("contract") or "").strip() or None)

        network = str(payload.get("network") or "mainnet").strip().lower()
        try:
            from_address = classify(str(payload["from"]), chain, network=network)
        except ClassificationError as e:
            raise InputMalformed(f"invalid from address: {e.kind.value}", field="from") from e
        if contract is not None:
            try:
                contract = classify(contract, chain).value
            except ClassificationError as e:
                raise InputMalformed(f"invalid asset contract: {e.kind.value}", field="asset.contract") from e

        return cls(
            wallet_id=str(payload["wallet_id"]).strip(),
            from_address=from_address,
            to_address_raw=str(payload["to"]),
            amount_raw=str(payload["amount"]),
            asset=Asset(symbol=symbol, chain=chain, decimals=decimals, contract=contract),
            network=network,
        )


class CheckId(str, Enum):
    """Check identifiers in execution order; verdicts report checks in this order."""

    ADDRESS_PARSE = "address_parse"
    REPUTATION_BLOCK = "reputation_block"
    REPUTATION_SUSPICION = "reputation_suspicion"
    BALANCE_COVERAGE = "balance_coverage"
    AMOUNT_SANITY = "amount_sanity"
    RECIPIENT_FAMILIARITY = "recipient_familiarity"
    FEE_ADVISORY = "fee_advisory"
    DRY_RUN = "dry_run"

    @property
    def order(self) -> int:
        return list(CheckId).index(self)


class CheckStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
    SKIP = "skip"


@dataclass(frozen=True)
class CheckOutcome:
    """
    Typed result of one check. Invariants: fail => severity >= high;
    pass/skip => severity none; warn => severity >= low.
    evidence is free-form diagnostics and excluded from verdict determinism.
    """

    id: CheckId
    status: CheckStatus
    severity: Severity
    message: str
    evidence: dict[str, Any] = field(default_factory=dict, compare=False)
    fee_estimate: FeeEstimate | None = None

    def __post_init__(self) -> None:
        if self.status is CheckStatus.FAIL and self.severity < Severity.HIGH:
            raise ValueError(f"{self.id.value}: fail outcome requires severity >= high")
        if self.status in (CheckStatus.PASS, CheckStatus.SKIP) and self.severity is not Severity.NONE:
            raise ValueError(f"{self.id.value}: {self.status.value} outcome requires severity none")
        if self.status is CheckStatus.WARN and self.severity is Severity.NONE:
            raise ValueError(f"{self.id.value}: warn outcome requires severity >= low")

    @classmethod
    def passed(cls, check_id: CheckId, message: str, **evidence: Any) -> CheckOutcome:
        return cls(check_id, CheckStatus.PASS, Severity.NONE, message, dict(evidence))

    @classmethod
    def warn(cls, check_id: CheckId, severity: Severity, message: str, **evidence: Any) -> CheckOutcome:
        return cls(check_id, CheckStatus.WARN, severity, message, dict(evidence))

    @classmethod
    def fail(cls, check_id: CheckId, severity: Severity, message: str, **evidence: Any) -> CheckOutcome:
        return cls(check_id, CheckStatus.FAIL, severity, message, dict(evidence))

    @classmethod
    def skip(cls, check_id: CheckId, reason: str, **evidence: Any) -> CheckOutcome:
        return cls(check_id, CheckStatus.SKIP, Severity.NONE, f"skipped: {reason}", {"reason": reason, **evidence})

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "severity": self.severity.value,
            "detail": self.message,
            "evidence": self.evidence,
        }


@dataclass
class Verdict:
    """
    Terminal output of a validation. valid is False iff some check failed
    (the overall-timeout verdict is the one exception: valid=False, risk unknown).
    """

    valid: bool
    risk_level: RiskLevel
    errors: list[str]
    warnings: list[str]
    checks: dict[CheckId, CheckOutcome]
    fee_estimate: FeeEstimate | None = None

    def to_dict(self, include_evidence: bool = True) -> dict[str, Any]:
        checks: dict[str, Any] = {}
        for check_id, outcome in self.checks.items():
            entry = outcome.to_dict()
            if not include_evidence:
                entry.pop("evidence", None)
            checks[check_id.value] = entry
        return {
            "valid": self.valid,
            "risk_level": self.risk_level.value,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "checks": checks,
            "fee_estimate": self.fee_estimate.to_dict() if self.fee_estimate else None,
        }

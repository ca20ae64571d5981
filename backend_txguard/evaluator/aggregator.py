"""
VerdictAggregator: pure reduction of check outcomes into a Verdict.

Rules, in order:
1. valid = no outcome failed.
2. Base risk = max severity over all outcomes (none is reported as low).
3. Three or more warnings with base <= medium escalate one level.
4. An invalid verdict is at least high.
5. errors / warnings keep check order; checks are keyed by check id.
6. The fee estimate produced by balance_coverage is attached.
"""

from __future__ import annotations

from typing import Iterable

from backend_txguard.evaluator.models import (
    CheckId,
    CheckOutcome,
    CheckStatus,
    RiskLevel,
    Severity,
    Verdict,
)

ESCALATION_WARN_COUNT = 3
TIMEOUT_ERROR = "validation timed out"
REASON_OVERALL_TIMEOUT = "overall_timeout"

_ESCALATE = {Severity.LOW: Severity.MEDIUM, Severity.MEDIUM: Severity.HIGH}


def aggregate(outcomes: Iterable[CheckOutcome]) -> Verdict:
    ordered = sorted(outcomes, key=lambda o: o.id.order)

    valid = not any(o.status is CheckStatus.FAIL for o in ordered)
    base = max((o.severity for o in ordered), key=lambda s: s.rank, default=Severity.NONE)

    warn_count = sum(1 for o in ordered if o.status is CheckStatus.WARN)
    if warn_count >= ESCALATION_WARN_COUNT and base <= Severity.MEDIUM:
        base = _ESCALATE.get(base, base)
    if not valid and base < Severity.HIGH:
        base = Severity.HIGH

    balance = next((o for o in ordered if o.id is CheckId.BALANCE_COVERAGE), None)
    return Verdict(
        valid=valid,
        risk_level=RiskLevel.from_severity(base),
        errors=[o.message for o in ordered if o.status is CheckStatus.FAIL],
        warnings=[o.message for o in ordered if o.status is CheckStatus.WARN],
        checks={o.id: o for o in ordered},
        fee_estimate=balance.fee_estimate if balance is not None else None,
    )


def timed_out_verdict() -> Verdict:
    """Verdict for a validation that exceeded the overall timeout; no partial outcomes are reported."""
    return Verdict(
        valid=False,
        risk_level=RiskLevel.UNKNOWN,
        errors=[TIMEOUT_ERROR],
        warnings=[],
        checks={cid: CheckOutcome.skip(cid, REASON_OVERALL_TIMEOUT) for cid in CheckId},
    )

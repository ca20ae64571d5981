"""
End-to-end tests for TransactionRiskEvaluator over fake chain, address book
and history collaborators and a real SQLite reputation store.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import httpx
import pytest

from backend_txguard.config.settings import EvaluatorSettings
from backend_txguard.core.exceptions import ReputationUnavailable
from backend_txguard.evaluator.addresses import any_similarity, classify, is_near_duplicate, is_visually_similar
from backend_txguard.evaluator.models import (
    ChainKind,
    CheckId,
    CheckStatus,
    Classification,
    RevertReason,
    RiskLevel,
    Severity,
    SimulationOutcome,
    ValidationRequest,
)

from fakes import BTC_FROM, BTC_TO, EVM_FROM, EVM_TO

SCAM_TO = "0xbad0" + "0" * 32 + "0001"
USDC_CONTRACT = "0x" + "a0" * 20


def _validate(evaluator, request):
    return asyncio.run(evaluator.validate(request))


def _status(verdict, check_id):
    return verdict.checks[check_id].status


# -----------------------------------------------------------------------------
# Seed scenarios
# -----------------------------------------------------------------------------


def test_scam_recipient_is_blocked_before_any_chain_call(harness):
    """Known scam recipient: invalid, critical, and the chain is never touched."""
    harness.store.report_scam(classify(SCAM_TO, ChainKind.EVM_LIKE), Severity.CRITICAL, "drainer")
    verdict = _validate(harness.evaluator(), harness.eth_request(to=SCAM_TO.upper().replace("0X", "0x")))
    assert verdict.valid is False
    assert verdict.risk_level is RiskLevel.CRITICAL
    assert verdict.errors == ["address flagged as scam"]
    assert _status(verdict, CheckId.REPUTATION_BLOCK) is CheckStatus.FAIL
    assert verdict.checks[CheckId.REPUTATION_BLOCK].evidence["report_count"] == 1
    assert harness.evm.calls == []
    assert _status(verdict, CheckId.BALANCE_COVERAGE) is CheckStatus.SKIP


def test_typosquat_of_recent_counterparty(harness):
    """Recipient sharing prefix and suffix with a recent counterparty is a possible typosquat."""
    known = "0xcdcdcd" + "1" * 30 + "cdcd"
    lookalike = "0xcdcdcd" + "2" * 30 + "cdcd"
    harness.history.add_counterparty(known, days_ago=3)
    verdict = _validate(harness.evaluator(), harness.eth_request(to=lookalike, amount="1"))
    assert verdict.valid is True
    assert "possible typosquat" in verdict.warnings
    assert verdict.risk_level is RiskLevel.HIGH
    assert verdict.checks[CheckId.RECIPIENT_FAMILIARITY].evidence["similar_to"] == [known]


def test_typosquat_one_char_off_with_near_duplicate_hook(harness):
    """Addresses differing only in the last digit are caught by the near-duplicate heuristic."""
    known = "0x1234567890abcdef1234567890abcdef12345678"
    lookalike = "0x1234567890abcdef1234567890abcdef12345679"
    harness.history.add_counterparty(known, days_ago=3)
    request = harness.eth_request(to=lookalike, amount="1")

    default = _validate(harness.evaluator(), request)
    assert "possible typosquat" not in default.warnings
    assert "first-time recipient" in default.warnings

    combined = any_similarity(is_visually_similar, is_near_duplicate)
    verdict = _validate(harness.evaluator(similarity=combined), request)
    assert verdict.valid is True
    assert "possible typosquat" in verdict.warnings
    assert verdict.risk_level is RiskLevel.HIGH


def test_insufficient_balance_including_fee(harness):
    """Balance equal to the amount cannot also pay the fee."""
    harness.evm.balances["ETH"] = Decimal("1.0")
    harness.evm.fee_total = Decimal("0.001")
    verdict = _validate(harness.evaluator(), harness.eth_request(amount="1.0"))
    assert _status(verdict, CheckId.BALANCE_COVERAGE) is CheckStatus.FAIL
    assert verdict.valid is False
    assert verdict.risk_level is RiskLevel.CRITICAL
    assert "insufficient balance to cover amount and fee" in verdict.errors


def test_balance_inside_buffer_warns_but_stays_valid(harness):
    """Balance above required but below the 1.10 buffer is a low warning."""
    harness.evm.balances["ETH"] = Decimal("1.005")
    harness.book.add("W1", EVM_TO, label="savings")
    verdict = _validate(harness.evaluator(), harness.eth_request(amount="1.0"))
    balance = verdict.checks[CheckId.BALANCE_COVERAGE]
    assert balance.status is CheckStatus.WARN
    assert balance.severity is Severity.LOW
    assert verdict.valid is True
    assert verdict.risk_level is RiskLevel.LOW
    assert verdict.fee_estimate.total == Decimal("0.001")


def test_dust_bitcoin_amount(harness):
    """BTC below the dust threshold warns low; fee advisory and dry run do not apply."""
    harness.history.add_counterparty(BTC_TO, days_ago=2)
    verdict = _validate(harness.evaluator(), harness.btc_request(amount="0.000001"))
    sanity = verdict.checks[CheckId.AMOUNT_SANITY]
    assert sanity.status is CheckStatus.WARN
    assert sanity.severity is Severity.LOW
    assert verdict.valid is True
    assert verdict.risk_level is RiskLevel.LOW
    assert verdict.checks[CheckId.FEE_ADVISORY].evidence["reason"] == "not_applicable"
    assert verdict.checks[CheckId.DRY_RUN].evidence["reason"] == "not_applicable"
    assert "simulate" not in harness.btc.calls
    assert harness.evm.calls == []


def test_three_warnings_escalate_to_high(harness):
    """Fee spike (low) + first-time recipient (medium) + 3x mean (medium) => high."""
    harness.evm.per_unit_price = Decimal("150")
    for _ in range(3):
        harness.history.add_send("0x" + "11" * 20, "0.1", days_ago=5)
    verdict = _validate(harness.evaluator(), harness.eth_request(amount="0.35"))
    assert verdict.checks[CheckId.FEE_ADVISORY].severity is Severity.LOW
    assert verdict.checks[CheckId.RECIPIENT_FAMILIARITY].severity is Severity.MEDIUM
    assert verdict.checks[CheckId.AMOUNT_SANITY].severity is Severity.MEDIUM
    assert verdict.valid is True
    assert verdict.risk_level is RiskLevel.HIGH
    assert verdict.warnings == [
        "amount is higher than your usual transactions",
        "first-time recipient",
        "network fees are unusually high",
    ]


# -----------------------------------------------------------------------------
# Boundaries
# -----------------------------------------------------------------------------


def test_zero_amount_fails_without_chain_calls(harness):
    verdict = _validate(harness.evaluator(), harness.eth_request(amount="0"))
    assert verdict.valid is False
    assert verdict.risk_level is RiskLevel.HIGH
    assert verdict.errors == ["amount must be greater than 0"]
    assert harness.evm.calls == []


def test_malformed_amount_fails(harness):
    verdict = _validate(harness.evaluator(), harness.eth_request(amount="1.2.3"))
    assert verdict.errors == ["invalid amount"]
    assert _status(verdict, CheckId.AMOUNT_SANITY) is CheckStatus.FAIL


@pytest.mark.parametrize(
    "balance,status",
    [
        ("1.001", CheckStatus.PASS),
        ("1.1011", CheckStatus.PASS),
        ("1.1", CheckStatus.WARN),
        ("1.0009", CheckStatus.FAIL),
    ],
)
def test_balance_coverage_boundaries(harness, balance, status):
    """Exactly enough passes; at or above 1.10 x required passes; in between warns."""
    harness.evm.balances["ETH"] = Decimal(balance)
    verdict = _validate(harness.evaluator(), harness.eth_request(amount="1.0"))
    assert _status(verdict, CheckId.BALANCE_COVERAGE) is status


def test_token_transfer_checks_token_and_native_balances(harness):
    """Token amount is covered by the token balance; the fee by the native balance."""
    request = ValidationRequest.from_payload(
        {
            "wallet_id": "W1",
            "from": EVM_FROM,
            "to": EVM_TO,
            "amount": "10",
            "asset": {"symbol": "USDC", "chain": "evm", "decimals": 6, "contract": USDC_CONTRACT},
        }
    )
    harness.evm.balances[USDC_CONTRACT] = Decimal("50")
    harness.evm.balances["ETH"] = Decimal("0.0001")
    verdict = _validate(harness.evaluator(), request)
    balance = verdict.checks[CheckId.BALANCE_COVERAGE]
    assert balance.status is CheckStatus.FAIL
    assert balance.evidence["native_balance"] == "0.0001"

    harness.evm.balances["ETH"] = Decimal("1")
    verdict = _validate(harness.evaluator(), request)
    assert _status(verdict, CheckId.BALANCE_COVERAGE) is CheckStatus.PASS


def test_malformed_recipient_is_critical_without_chain_calls(harness):
    verdict = _validate(harness.evaluator(), harness.eth_request(to="0x123"))
    assert verdict.valid is False
    assert verdict.risk_level is RiskLevel.CRITICAL
    assert verdict.errors == ["invalid recipient address"]
    assert harness.evm.calls == []
    assert all(
        o.status is CheckStatus.SKIP for cid, o in verdict.checks.items() if cid is not CheckId.ADDRESS_PARSE
    )


def test_bitcoin_recipient_on_evm_is_wrong_chain(harness):
    verdict = _validate(harness.evaluator(), harness.eth_request(to=BTC_TO))
    assert verdict.errors == ["recipient address belongs to a different chain"]
    assert verdict.checks[CheckId.ADDRESS_PARSE].evidence["kind"] == "wrong_chain"


def test_checksum_mismatch_warns(harness):
    bad = "0x5aaeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
    verdict = _validate(harness.evaluator(), harness.eth_request(to=bad))
    parse = verdict.checks[CheckId.ADDRESS_PARSE]
    assert parse.status is CheckStatus.WARN
    assert parse.severity is Severity.LOW
    assert verdict.valid is True


def test_suspicious_recipient_warns_high(harness):
    harness.store.report_suspicious(classify(EVM_TO, ChainKind.EVM_LIKE), "phishing link")
    harness.book.add("W1", EVM_TO)
    verdict = _validate(harness.evaluator(), harness.eth_request())
    assert verdict.valid is True
    assert verdict.risk_level is RiskLevel.HIGH
    assert verdict.warnings == ["address flagged as suspicious"]


def test_dry_run_revert_fails(harness):
    harness.evm.outcome = SimulationOutcome.revert(RevertReason.INSUFFICIENT_FUNDS, "insufficient funds for gas")
    harness.evm.contract = True
    verdict = _validate(harness.evaluator(), harness.eth_request())
    dry = verdict.checks[CheckId.DRY_RUN]
    assert dry.status is CheckStatus.FAIL
    assert dry.severity is Severity.CRITICAL
    assert verdict.valid is False
    assert "would revert: insufficient funds" in verdict.errors


def test_fee_is_fetched_once_per_validation(harness):
    """balance_coverage and fee_advisory share one fee quote."""
    _validate(harness.evaluator(), harness.eth_request())
    assert harness.evm.calls.count("fee_quote") == 1


def test_per_check_timeout_becomes_skip(harness):
    """A slow simulation is skipped; the rest of the verdict still stands."""
    harness.evm.delays["simulate"] = 1.0
    harness.book.add("W1", EVM_TO)
    settings = EvaluatorSettings(per_check_timeout_ms=100)
    verdict = _validate(harness.evaluator(settings), harness.eth_request())
    dry = verdict.checks[CheckId.DRY_RUN]
    assert dry.status is CheckStatus.SKIP
    assert dry.evidence["reason"] == "Timeout"
    assert verdict.valid is True
    assert _status(verdict, CheckId.BALANCE_COVERAGE) is CheckStatus.PASS


def test_overall_timeout_returns_timed_out_verdict(harness):
    harness.evm.delays["balance"] = 1.0
    settings = EvaluatorSettings(overall_timeout_ms=100)
    verdict = _validate(harness.evaluator(settings), harness.eth_request())
    assert verdict.valid is False
    assert verdict.risk_level is RiskLevel.UNKNOWN
    assert verdict.errors == ["validation timed out"]
    assert all(o.evidence["reason"] == "overall_timeout" for o in verdict.checks.values())


def test_cancellation_propagates(harness):
    """A cancelled validation raises CancelledError and produces no verdict."""
    harness.evm.delays["balance"] = 5.0
    evaluator = harness.evaluator()

    async def main():
        task = asyncio.create_task(evaluator.validate(harness.eth_request()))
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(main())


def test_chain_failure_skips_only_affected_check(harness):
    harness.evm.errors["balance"] = httpx.ConnectError("node down")
    verdict = _validate(harness.evaluator(), harness.eth_request())
    balance = verdict.checks[CheckId.BALANCE_COVERAGE]
    assert balance.status is CheckStatus.SKIP
    assert balance.evidence["reason"] == "chain_unavailable"
    assert verdict.valid is True
    assert _status(verdict, CheckId.DRY_RUN) is CheckStatus.PASS


def test_reputation_store_error_skips_reputation_checks(harness, monkeypatch):
    def broken(addr):
        raise ReputationUnavailable("database is locked")

    monkeypatch.setattr(harness.store, "lookup", broken)
    verdict = _validate(harness.evaluator(), harness.eth_request())
    for check_id in (CheckId.REPUTATION_BLOCK, CheckId.REPUTATION_SUSPICION):
        assert verdict.checks[check_id].status is CheckStatus.SKIP
        assert verdict.checks[check_id].evidence["reason"] == "reputation_unavailable"
    assert _status(verdict, CheckId.BALANCE_COVERAGE) is CheckStatus.PASS


def test_history_error_skips_unless_recipient_known(harness):
    harness.history.error = RuntimeError("history service down")
    verdict = _validate(harness.evaluator(), harness.eth_request())
    assert verdict.checks[CheckId.AMOUNT_SANITY].evidence["reason"] == "history_unavailable"
    assert verdict.checks[CheckId.RECIPIENT_FAMILIARITY].evidence["reason"] == "history_unavailable"

    harness.book.add("W1", EVM_TO, label="mom")
    verdict = _validate(harness.evaluator(), harness.eth_request())
    familiarity = verdict.checks[CheckId.RECIPIENT_FAMILIARITY]
    assert familiarity.status is CheckStatus.PASS
    assert familiarity.evidence["label"] == "mom"


def test_address_book_is_wallet_scoped(harness):
    harness.book.add("W2", EVM_TO)
    verdict = _validate(harness.evaluator(), harness.eth_request(wallet_id="W1"))
    assert "first-time recipient" in verdict.warnings


def test_validation_is_deterministic(harness):
    harness.evm.per_unit_price = Decimal("150")
    evaluator = harness.evaluator()
    first = _validate(evaluator, harness.eth_request())
    second = _validate(evaluator, harness.eth_request())
    assert first == second


# -----------------------------------------------------------------------------
# Payload handling, reports and sync wrappers
# -----------------------------------------------------------------------------


def _payload(**overrides):
    payload = {
        "wallet_id": "W1",
        "from": EVM_FROM,
        "to": EVM_TO,
        "amount": "0.1",
        "asset": {"symbol": "ETH", "chain": "evm", "decimals": 18},
    }
    payload.update(overrides)
    return payload


def test_validate_payload_missing_recipient(harness):
    verdict = asyncio.run(harness.evaluator().validate_payload(_payload(to="")))
    assert verdict.valid is False
    assert verdict.risk_level is RiskLevel.CRITICAL
    assert verdict.errors == ["recipient address is empty"]
    assert harness.evm.calls == []


def test_validate_payload_missing_amount(harness):
    verdict = asyncio.run(harness.evaluator().validate_payload(_payload(amount=None)))
    assert verdict.valid is False
    assert verdict.errors == ["invalid amount"]
    assert _status(verdict, CheckId.AMOUNT_SANITY) is CheckStatus.FAIL


def test_validate_payload_bad_shape_yields_verdict(harness):
    """Ill-typed fields fail the request with a critical verdict and no chain traffic."""
    evaluator = harness.evaluator()
    cases = [
        (_payload(asset={"symbol": "ETH", "chain": "solana"}), "invalid request: asset.chain"),
        (_payload(**{"from": "nope"}), "invalid request: from"),
        (["not", "an", "object"], "invalid request: body"),
    ]
    for payload, error in cases:
        verdict = asyncio.run(evaluator.validate_payload(payload))
        assert verdict.valid is False
        assert verdict.risk_level is RiskLevel.CRITICAL
        assert verdict.errors == [error]
    assert harness.evm.calls == []


def test_amount_overflowing_decimal_context_fails_cleanly(harness):
    """An amount with a huge exponent is an invalid amount, not an internal error."""
    verdict = _validate(harness.evaluator(), harness.eth_request(amount="1e1000000"))
    assert verdict.valid is False
    assert verdict.errors == ["invalid amount"]
    assert _status(verdict, CheckId.AMOUNT_SANITY) is CheckStatus.FAIL
    assert harness.evm.calls == []


def test_reported_address_is_blocked_on_next_validation(harness):
    evaluator = harness.evaluator()
    receipt = asyncio.run(evaluator.report_scam_address(EVM_TO.upper().replace("0X", "0x"), "user:7", "high"))
    assert receipt.counted is True
    assert receipt.record.classification is Classification.SCAM

    verdict = _validate(evaluator, harness.eth_request())
    assert verdict.errors == ["address flagged as scam"]


def test_sync_wrappers(harness):
    evaluator = harness.evaluator()
    verdict = evaluator.validate_sync(harness.eth_request())
    assert verdict.valid is True

    evaluator.report_scam_address_sync(BTC_FROM, "user:1", description="fake exchange")
    evaluator.report_scam_address_sync(SCAM_TO, "user:1")
    evaluator.report_scam_address_sync(SCAM_TO, "user:2")
    records = evaluator.scam_list_sync(10)
    assert [r.address.value for r in records] == [SCAM_TO, BTC_FROM]
    assert records[1].address.chain is ChainKind.BITCOIN_LIKE
    assert records[1].description == "fake exchange"

    payload_verdict = evaluator.validate_payload_sync(_payload(to=SCAM_TO))
    assert payload_verdict.valid is False

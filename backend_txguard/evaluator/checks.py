"""
Individual risk checks.

Every check takes the request-scoped CheckContext and returns one
CheckOutcome. Collaborator failures are raised as CollaboratorUnavailable
subclasses and turned into skips by CheckRunner; checks themselves only
decide pass/warn/fail.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, TypeVar

from backend_txguard.config.settings import EvaluatorSettings
from backend_txguard.core.exceptions import (
    ClassificationError,
    ClassificationErrorKind,
    CollaboratorUnavailable,
    InputMalformed,
)
from backend_txguard.evaluator.address_book import AddressBookLookup
from backend_txguard.evaluator.addresses import SimilarityFn, classify
from backend_txguard.evaluator.amounts import format_amount, parse_amount
from backend_txguard.evaluator.chain_probe import ChainProbe
from backend_txguard.evaluator.history import HistoryOracle
from backend_txguard.evaluator.models import (
    AddressBookMatch,
    Asset,
    CanonicalAddress,
    ChainKind,
    CheckId,
    CheckOutcome,
    Classification,
    FeeEstimate,
    ReputationRecord,
    RevertReason,
    Severity,
    ValidationRequest,
)
from backend_txguard.reputation.store import ReputationStore

T = TypeVar("T")

MSG_SCAM = "address flagged as scam"
MSG_SUSPICIOUS = "address flagged as suspicious"
MSG_CHECKSUM = "address checksum mismatch"
MSG_INSUFFICIENT = "insufficient balance to cover amount and fee"
MSG_TIGHT_BALANCE = "balance is close to minimum required (including fees)"
MSG_NON_POSITIVE = "amount must be greater than 0"
MSG_INVALID_AMOUNT = "invalid amount"
MSG_INVALID_REQUEST = "invalid request"
MSG_DUST = "amount is very small (dust)"
MSG_AMOUNT_FAR_ABOVE = "amount is significantly higher than your usual transactions"
MSG_AMOUNT_ABOVE = "amount is higher than your usual transactions"
MSG_TYPOSQUAT = "possible typosquat"
MSG_FIRST_TIME = "first-time recipient"
MSG_FEE_SPIKE = "network fees are unusually high"

ADDRESS_ERROR_MESSAGES = {
    ClassificationErrorKind.EMPTY: "recipient address is empty",
    ClassificationErrorKind.MALFORMED_SYNTAX: "invalid recipient address",
    ClassificationErrorKind.WRONG_CHAIN: "recipient address belongs to a different chain",
    ClassificationErrorKind.UNKNOWN_CHAIN: "unsupported chain",
}

REVERT_MESSAGES = {
    RevertReason.INSUFFICIENT_FUNDS: ("would revert: insufficient funds", Severity.CRITICAL),
    RevertReason.GAS_TOO_LOW: ("would revert: gas too low", Severity.HIGH),
}

HIGH_MULTIPLE = Decimal(10)
MEDIUM_MULTIPLE = Decimal(3)

NATIVE_ASSETS = {
    ChainKind.EVM_LIKE: Asset(symbol="ETH", chain=ChainKind.EVM_LIKE, decimals=18),
    ChainKind.BITCOIN_LIKE: Asset(symbol="BTC", chain=ChainKind.BITCOIN_LIKE, decimals=8),
}


@dataclass
class CheckContext:
    """
    State shared by the checks of one validation. Holds no state across
    requests; the fee estimate is fetched at most once and shared by
    balance_coverage and fee_advisory.
    """

    request: ValidationRequest
    settings: EvaluatorSettings
    store: ReputationStore
    address_book: AddressBookLookup
    history: HistoryOracle
    probe: ChainProbe
    similarity: SimilarityFn
    recipient: CanonicalAddress | None = None
    amount: Decimal | None = None
    reputation: ReputationRecord | None = None
    _fee_task: asyncio.Future[FeeEstimate] | None = field(default=None, repr=False)

    @property
    def asset(self) -> Asset:
        return self.request.asset

    @property
    def chain(self) -> ChainKind:
        return self.request.asset.chain

    @property
    def network(self) -> str:
        return self.request.network

    async def fee(self) -> FeeEstimate:
        """Shared fee estimate; a waiter being cancelled does not cancel the fetch for the other waiter."""
        if self._fee_task is None:
            self._fee_task = asyncio.ensure_future(
                self.probe.estimate_fee(
                    self.chain, self.network, self.request.from_address, self.recipient, self.amount, self.asset
                )
            )
        return await asyncio.shield(self._fee_task)

    def close(self) -> None:
        """Cancel any shared fetch still running once the request is done."""
        task = self._fee_task
        if task is None:
            return
        if not task.done():
            task.cancel()
        elif not task.cancelled():
            # consume a stored exception no waiter picked up
            task.exception()


async def _settle(awaitable: Awaitable[T]) -> tuple[T | None, CollaboratorUnavailable | None]:
    """Await one collaborator read; an unavailability error is returned instead of raised."""
    try:
        return await awaitable, None
    except CollaboratorUnavailable as e:
        return None, e


# -----------------------------------------------------------------------------
# Phase A
# -----------------------------------------------------------------------------


def address_parse(ctx: CheckContext) -> CheckOutcome:
    """Canonicalize the recipient; sets ctx.recipient on success."""
    req = ctx.request
    try:
        recipient = classify(req.to_address_raw, req.asset.chain, network=req.network)
    except ClassificationError as e:
        return CheckOutcome.fail(
            CheckId.ADDRESS_PARSE,
            Severity.CRITICAL,
            ADDRESS_ERROR_MESSAGES[e.kind],
            kind=e.kind.value,
            error=str(e),
        )
    ctx.recipient = recipient
    evidence: dict[str, Any] = {"address": recipient.value, "chain": recipient.chain.value}
    if recipient.network:
        evidence["network"] = recipient.network
    if recipient.checksum_valid is False:
        return CheckOutcome.warn(CheckId.ADDRESS_PARSE, Severity.LOW, MSG_CHECKSUM, **evidence)
    return CheckOutcome.passed(CheckId.ADDRESS_PARSE, "recipient address is valid", **evidence)


def amount_syntax(ctx: CheckContext) -> CheckOutcome | None:
    """Parse the amount; returns a fail outcome, or None and sets ctx.amount."""
    try:
        amount = parse_amount(ctx.request.amount_raw, ctx.asset.decimals)
    except InputMalformed as e:
        return CheckOutcome.fail(CheckId.AMOUNT_SANITY, Severity.HIGH, MSG_INVALID_AMOUNT, error=str(e))
    if amount <= 0:
        return CheckOutcome.fail(CheckId.AMOUNT_SANITY, Severity.HIGH, MSG_NON_POSITIVE, amount=format_amount(amount))
    ctx.amount = amount
    return None


async def reputation_block(ctx: CheckContext) -> CheckOutcome:
    """
    Fresh store read (no cache). The record is kept on the context for
    reputation_suspicion.
    """
    record = await asyncio.to_thread(ctx.store.lookup, ctx.recipient)
    ctx.reputation = record
    if record is not None and record.classification is Classification.SCAM:
        return CheckOutcome.fail(
            CheckId.REPUTATION_BLOCK,
            Severity.CRITICAL,
            MSG_SCAM,
            report_count=record.report_count,
            reported_severity=record.severity.value,
            description=record.description,
        )
    return CheckOutcome.passed(CheckId.REPUTATION_BLOCK, "address not flagged as scam")


# -----------------------------------------------------------------------------
# Phase B
# -----------------------------------------------------------------------------


async def reputation_suspicion(ctx: CheckContext) -> CheckOutcome:
    record = ctx.reputation
    if record is not None and record.classification is Classification.SUSPICIOUS:
        return CheckOutcome.warn(
            CheckId.REPUTATION_SUSPICION,
            Severity.HIGH,
            MSG_SUSPICIOUS,
            report_count=record.report_count,
            description=record.description,
        )
    return CheckOutcome.passed(CheckId.REPUTATION_SUSPICION, "address not flagged as suspicious")


def _coverage(balance: Decimal, required: Decimal, buffer: Decimal) -> str:
    if balance < required:
        return "short"
    if balance == required or balance >= required * buffer:
        return "ok"
    return "tight"


async def balance_coverage(ctx: CheckContext) -> CheckOutcome:
    """
    Native asset: balance >= amount + fee. Token: token balance >= amount and
    native balance >= fee. Exactly enough passes; inside the buffer warns.
    """
    req = ctx.request
    buffer = ctx.settings.balance_buffer_factor
    fee = await ctx.fee()
    if ctx.asset.is_native:
        balance = await ctx.probe.balance(ctx.chain, ctx.network, req.from_address, ctx.asset)
        required = ctx.amount + fee.total
        states = [_coverage(balance, required, buffer)]
        evidence = {
            "balance": format_amount(balance),
            "required": format_amount(required),
            "fee": format_amount(fee.total),
        }
    else:
        native = NATIVE_ASSETS[ctx.chain]
        token_balance, native_balance = await asyncio.gather(
            ctx.probe.balance(ctx.chain, ctx.network, req.from_address, ctx.asset),
            ctx.probe.balance(ctx.chain, ctx.network, req.from_address, native),
        )
        states = [
            _coverage(token_balance, ctx.amount, buffer),
            _coverage(native_balance, fee.total, buffer),
        ]
        evidence = {
            "balance": format_amount(token_balance),
            "required": format_amount(ctx.amount),
            "native_balance": format_amount(native_balance),
            "fee": format_amount(fee.total),
        }

    if "short" in states:
        outcome = CheckOutcome.fail(CheckId.BALANCE_COVERAGE, Severity.CRITICAL, MSG_INSUFFICIENT, **evidence)
    elif "tight" in states:
        outcome = CheckOutcome.warn(CheckId.BALANCE_COVERAGE, Severity.LOW, MSG_TIGHT_BALANCE, **evidence)
    else:
        outcome = CheckOutcome.passed(CheckId.BALANCE_COVERAGE, "balance covers amount and fee", **evidence)
    return CheckOutcome(
        outcome.id, outcome.status, outcome.severity, outcome.message, outcome.evidence, fee_estimate=fee
    )


async def amount_sanity(ctx: CheckContext) -> CheckOutcome:
    """Dust (Bitcoin) and deviation from the wallet's recent mean send."""
    amount = ctx.amount
    dust = ctx.chain is ChainKind.BITCOIN_LIKE and amount < ctx.settings.btc_dust_threshold
    stats, error = await _settle(
        ctx.history.outgoing_stats(ctx.request.wallet_id, ctx.asset, ctx.settings.history_sample_count)
    )
    evidence: dict[str, Any] = {"amount": format_amount(amount)}
    if stats is not None:
        evidence.update(mean=format_amount(stats.mean), sample_count=stats.count)
        if stats.mean > 0:
            if amount > stats.mean * HIGH_MULTIPLE:
                return CheckOutcome.warn(CheckId.AMOUNT_SANITY, Severity.HIGH, MSG_AMOUNT_FAR_ABOVE, **evidence)
            if amount > stats.mean * MEDIUM_MULTIPLE:
                return CheckOutcome.warn(CheckId.AMOUNT_SANITY, Severity.MEDIUM, MSG_AMOUNT_ABOVE, **evidence)
    if dust:
        if error is not None:
            evidence["history_error"] = error.reason
        return CheckOutcome.warn(CheckId.AMOUNT_SANITY, Severity.LOW, MSG_DUST, **evidence)
    if error is not None:
        raise error
    return CheckOutcome.passed(CheckId.AMOUNT_SANITY, "amount is within normal range", **evidence)


async def recipient_familiarity(ctx: CheckContext) -> CheckOutcome:
    """
    Known (address book or recent counterparty) passes. Unknown recipients
    resembling a recent counterparty are a possible typosquat.
    """
    req = ctx.request
    (match, book_error), (counterparties, history_error) = await asyncio.gather(
        _settle(ctx.address_book.is_known(req.wallet_id, ctx.recipient)),
        _settle(
            ctx.history.recent_counterparties(req.wallet_id, ctx.chain, window_days=ctx.settings.history_window_days)
        ),
    )
    if isinstance(match, AddressBookMatch):
        return CheckOutcome.passed(
            CheckId.RECIPIENT_FAMILIARITY,
            "recipient is in the address book",
            source="address_book",
            label=match.label,
            trusted=match.trusted,
        )
    if counterparties and ctx.recipient in counterparties:
        return CheckOutcome.passed(
            CheckId.RECIPIENT_FAMILIARITY, "recipient used recently", source="history"
        )
    failed = book_error or history_error
    if failed is not None:
        raise failed

    lookalikes = sorted(c.value for c in counterparties or () if ctx.similarity(ctx.recipient.value, c.value))
    if lookalikes:
        return CheckOutcome.warn(
            CheckId.RECIPIENT_FAMILIARITY, Severity.HIGH, MSG_TYPOSQUAT, similar_to=lookalikes
        )
    return CheckOutcome.warn(CheckId.RECIPIENT_FAMILIARITY, Severity.MEDIUM, MSG_FIRST_TIME)


async def fee_advisory(ctx: CheckContext) -> CheckOutcome:
    if ctx.chain is not ChainKind.EVM_LIKE:
        return CheckOutcome.skip(CheckId.FEE_ADVISORY, "not_applicable")
    fee = await ctx.fee()
    evidence = {
        "gas_price_gwei": str(fee.per_unit_price),
        "threshold_gwei": str(ctx.settings.fee_spike_gwei_threshold),
    }
    if fee.fee_advisory_spike:
        return CheckOutcome.warn(CheckId.FEE_ADVISORY, Severity.LOW, MSG_FEE_SPIKE, **evidence)
    return CheckOutcome.passed(CheckId.FEE_ADVISORY, "network fees are normal", **evidence)


async def dry_run(ctx: CheckContext) -> CheckOutcome:
    """Side-effect-free simulation; the recipient's contract status is evidence only."""
    if ctx.chain is not ChainKind.EVM_LIKE:
        return CheckOutcome.skip(CheckId.DRY_RUN, "not_applicable")
    req = ctx.request
    (outcome, sim_error), (is_contract, _) = await asyncio.gather(
        _settle(ctx.probe.simulate(ctx.chain, ctx.network, req.from_address, ctx.recipient, ctx.amount, ctx.asset)),
        _settle(ctx.probe.is_contract(ctx.chain, ctx.network, ctx.recipient)),
    )
    if sim_error is not None:
        raise sim_error
    evidence = {"recipient_is_contract": is_contract}
    if outcome.ok:
        return CheckOutcome.passed(CheckId.DRY_RUN, "dry run succeeded", **evidence)
    message, severity = REVERT_MESSAGES.get(
        outcome.reason, (f"would revert: {outcome.message or 'execution reverted'}", Severity.HIGH)
    )
    return CheckOutcome.fail(
        CheckId.DRY_RUN, severity, message, revert_reason=outcome.reason.value, node_message=outcome.message
    )


CheckFn = Callable[[CheckContext], Awaitable[CheckOutcome]]

PHASE_B_CHECKS: tuple[tuple[CheckId, CheckFn], ...] = (
    (CheckId.REPUTATION_SUSPICION, reputation_suspicion),
    (CheckId.BALANCE_COVERAGE, balance_coverage),
    (CheckId.AMOUNT_SANITY, amount_sanity),
    (CheckId.RECIPIENT_FAMILIARITY, recipient_familiarity),
    (CheckId.FEE_ADVISORY, fee_advisory),
    (CheckId.DRY_RUN, dry_run),
)


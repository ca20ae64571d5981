"""
CheckRunner: two-phase execution of the risk checks for one request.

Phase A (sequential, fail-fast): address_parse, amount syntax, reputation_block.
A Phase-A fail returns immediately; no chain call has been issued at that point.

Phase B (concurrent, bounded by a semaphore): the advisory checks, each under
the per-check timeout. Timeouts and collaborator errors become skip outcomes,
so nothing in Phase B can veto Phase A or abort the run. Every check slot is
always present in the result, sorted by check order.
"""

from __future__ import annotations

import asyncio
from typing import Iterable

from backend_txguard.config.settings import EvaluatorSettings, get_settings
from backend_txguard.core.exceptions import CollaboratorUnavailable
from backend_txguard.evaluator.address_book import AddressBookLookup
from backend_txguard.evaluator.addresses import SimilarityFn, is_visually_similar
from backend_txguard.evaluator.chain_probe import ChainProbe
from backend_txguard.evaluator.checks import (
    PHASE_B_CHECKS,
    CheckContext,
    CheckFn,
    address_parse,
    amount_syntax,
    reputation_block,
)
from backend_txguard.evaluator.history import HistoryOracle
from backend_txguard.evaluator.models import CheckId, CheckOutcome, CheckStatus, ValidationRequest
from backend_txguard.reputation.store import ReputationStore
from backend_txguard.txguard_logging import get_logger

logger = get_logger(__name__)

REASON_TIMEOUT = "Timeout"
REASON_NOT_EVALUATED = "not_evaluated"
REASON_INTERNAL = "internal_error"


def complete(outcomes: dict[CheckId, CheckOutcome], reason: str = REASON_NOT_EVALUATED) -> list[CheckOutcome]:
    """Fill absent slots with skip(reason) and return outcomes in check order."""
    for check_id in CheckId:
        if check_id not in outcomes:
            outcomes[check_id] = CheckOutcome.skip(check_id, reason)
    return sorted(outcomes.values(), key=lambda o: o.id.order)


class CheckRunner:
    def __init__(
        self,
        store: ReputationStore,
        address_book: AddressBookLookup,
        history: HistoryOracle,
        probe: ChainProbe,
        settings: EvaluatorSettings | None = None,
        *,
        similarity: SimilarityFn = is_visually_similar,
    ) -> None:
        self._store = store
        self._address_book = address_book
        self._history = history
        self._probe = probe
        self._settings = settings or get_settings()
        self._similarity = similarity

    def _context(self, request: ValidationRequest) -> CheckContext:
        return CheckContext(
            request=request,
            settings=self._settings,
            store=self._store,
            address_book=self._address_book,
            history=self._history,
            probe=self._probe,
            similarity=self._similarity,
        )

    async def run(self, request: ValidationRequest) -> list[CheckOutcome]:
        ctx = self._context(request)
        outcomes: dict[CheckId, CheckOutcome] = {}
        try:
            parsed = address_parse(ctx)
            outcomes[parsed.id] = parsed
            if parsed.status is CheckStatus.FAIL:
                logger.info("phase_a_rejected", wallet_id=request.wallet_id, check=parsed.id.value)
                return complete(outcomes)

            bad_amount = amount_syntax(ctx)
            if bad_amount is not None:
                outcomes[bad_amount.id] = bad_amount
                logger.info("phase_a_rejected", wallet_id=request.wallet_id, check=bad_amount.id.value)
                return complete(outcomes)

            semaphore = asyncio.Semaphore(self._settings.max_concurrent_checks)
            block = await self._guarded(CheckId.REPUTATION_BLOCK, reputation_block, ctx, semaphore)
            outcomes[block.id] = block
            if block.status is CheckStatus.FAIL:
                logger.info("phase_a_rejected", wallet_id=request.wallet_id, check=block.id.value)
                return complete(outcomes)

            phase_b: Iterable[tuple[CheckId, CheckFn]] = PHASE_B_CHECKS
            if block.status is CheckStatus.SKIP:
                # suspicion depends on the same read
                reason = block.evidence.get("reason", REASON_NOT_EVALUATED)
                outcomes[CheckId.REPUTATION_SUSPICION] = CheckOutcome.skip(CheckId.REPUTATION_SUSPICION, reason)
                phase_b = [(cid, fn) for cid, fn in PHASE_B_CHECKS if cid is not CheckId.REPUTATION_SUSPICION]

            results = await asyncio.gather(*(self._guarded(cid, fn, ctx, semaphore) for cid, fn in phase_b))
            for outcome in results:
                outcomes[outcome.id] = outcome
            return complete(outcomes)
        finally:
            ctx.close()

    async def _guarded(
        self, check_id: CheckId, fn: CheckFn, ctx: CheckContext, semaphore: asyncio.Semaphore
    ) -> CheckOutcome:
        """Run one check under the semaphore and per-check timeout; never raises except on cancellation."""
        timeout = self._settings.per_check_timeout_sec
        async with semaphore:
            try:
                return await asyncio.wait_for(fn(ctx), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "check_skipped", check=check_id.value, reason=REASON_TIMEOUT, timeout_sec=timeout
                )
                return CheckOutcome.skip(check_id, REASON_TIMEOUT)
            except CollaboratorUnavailable as e:
                logger.warning("check_skipped", check=check_id.value, reason=e.reason, error=str(e))
                return CheckOutcome.skip(check_id, e.reason, error=str(e))
            except Exception as e:
                logger.exception("check_crashed", check=check_id.value, error=str(e))
                return CheckOutcome.skip(check_id, REASON_INTERNAL, error=str(e))

    async def aclose(self) -> None:
        await self._probe.aclose()

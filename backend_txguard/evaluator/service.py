"""
TransactionRiskEvaluator: facade used by the wallet backend's HTTP handlers.

- validate(request) -> Verdict, bounded by the overall timeout.
- validate_payload(dict) -> Verdict for JSON-shaped input.
- report_scam_address(...) -> ReportReceipt (durable before it returns).
- scam_list(limit) -> top scam records.

Async API plus *_sync wrappers for synchronous callers. The evaluator keeps
no per-request state of its own.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Mapping, TypeVar

from backend_txguard.config.settings import EvaluatorSettings, get_settings
from backend_txguard.core.exceptions import ClassificationErrorKind, InputMalformed
from backend_txguard.evaluator.aggregator import aggregate, timed_out_verdict
from backend_txguard.evaluator.checks import ADDRESS_ERROR_MESSAGES, MSG_INVALID_AMOUNT, MSG_INVALID_REQUEST
from backend_txguard.evaluator.models import (
    CheckId,
    CheckOutcome,
    ChainKind,
    ReportReceipt,
    ReputationRecord,
    Severity,
    ValidationRequest,
    Verdict,
)
from backend_txguard.evaluator.runner import CheckRunner, complete
from backend_txguard.reputation.ingestor import ReportIngestor
from backend_txguard.txguard_logging import bind_wallet, get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class TransactionRiskEvaluator:
    def __init__(
        self,
        runner: CheckRunner,
        ingestor: ReportIngestor,
        settings: EvaluatorSettings | None = None,
    ) -> None:
        self._runner = runner
        self._ingestor = ingestor
        self._settings = settings or get_settings()

    async def validate(self, request: ValidationRequest) -> Verdict:
        """
        Run all checks and aggregate. On overall timeout returns the
        timed-out verdict (valid=False, risk unknown). Cancellation propagates
        without a partial verdict.
        """
        log = bind_wallet(request.wallet_id)
        log.info(
            "validation_started",
            to=request.to_address_raw,
            asset=request.asset.symbol,
            chain=request.asset.chain.value,
            network=request.network,
        )
        started = time.monotonic()
        try:
            outcomes = await asyncio.wait_for(
                self._runner.run(request), timeout=self._settings.overall_timeout_sec
            )
        except asyncio.TimeoutError:
            log.warning("validation_timed_out", timeout_sec=self._settings.overall_timeout_sec)
            return timed_out_verdict()
        verdict = aggregate(outcomes)
        log.info(
            "verdict_ready",
            valid=verdict.valid,
            risk_level=verdict.risk_level.value,
            errors=len(verdict.errors),
            warnings=len(verdict.warnings),
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )
        return verdict

    async def validate_payload(self, payload: Mapping[str, Any]) -> Verdict:
        """
        Validate a JSON-like request. Malformed input never raises: a missing
        recipient or amount fails address_parse / amount_sanity, and any other
        shape error fails address_parse with "invalid request: <field>".
        No external call is made for a malformed request.
        """
        try:
            request = ValidationRequest.from_payload(payload)
        except InputMalformed as e:
            logger.info("validation_rejected_input", field=e.field, error=str(e))
            return _malformed_verdict(e)
        return await self.validate(request)

    async def report_scam_address(
        self,
        raw: str,
        reporter: str,
        severity: Severity | str | None = None,
        description: str | None = None,
        chain: ChainKind | str | None = None,
    ) -> ReportReceipt:
        """Canonicalize and record a scam report; chain is detected from the address when omitted."""
        receipt = await self._ingestor.report_scam(
            raw, reporter, severity or Severity.MEDIUM, description, chain=chain
        )
        logger.info(
            "scam_report_recorded",
            address=receipt.address.value,
            counted=receipt.counted,
            report_count=receipt.record.report_count,
        )
        return receipt

    async def scam_list(self, limit: int = 1000) -> list[ReputationRecord]:
        return await self._ingestor.list_scam(limit)

    async def aclose(self) -> None:
        """Release chain client connections."""
        await self._runner.aclose()

    def _run_sync(self, awaitable: Awaitable[T]) -> T:
        async def _main() -> T:
            try:
                return await awaitable
            finally:
                # HTTP clients are bound to the loop asyncio.run is about to close
                await self.aclose()

        return asyncio.run(_main())

    def validate_sync(self, request: ValidationRequest) -> Verdict:
        return self._run_sync(self.validate(request))

    def validate_payload_sync(self, payload: Mapping[str, Any]) -> Verdict:
        return self._run_sync(self.validate_payload(payload))

    def report_scam_address_sync(
        self,
        raw: str,
        reporter: str,
        severity: Severity | str | None = None,
        description: str | None = None,
        chain: ChainKind | str | None = None,
    ) -> ReportReceipt:
        return self._run_sync(self.report_scam_address(raw, reporter, severity, description, chain))

    def scam_list_sync(self, limit: int = 1000) -> list[ReputationRecord]:
        return self._run_sync(self.scam_list(limit))


def _malformed_verdict(error: InputMalformed) -> Verdict:
    if error.field == "to":
        outcome = CheckOutcome.fail(
            CheckId.ADDRESS_PARSE,
            Severity.CRITICAL,
            ADDRESS_ERROR_MESSAGES[ClassificationErrorKind.EMPTY],
            kind=ClassificationErrorKind.EMPTY.value,
        )
    elif error.field == "amount":
        outcome = CheckOutcome.fail(CheckId.AMOUNT_SANITY, Severity.HIGH, MSG_INVALID_AMOUNT, error=str(error))
    else:
        outcome = CheckOutcome.fail(
            CheckId.ADDRESS_PARSE,
            Severity.CRITICAL,
            f"{MSG_INVALID_REQUEST}: {error.field or 'body'}",
            field=error.field,
            error=str(error),
        )
    return aggregate(complete({outcome.id: outcome}))

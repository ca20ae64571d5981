"""
Report ingestor: the only write path into the reputation store.

Canonicalizes the reported address, applies per-reporter deduplication
(one counted report per reporter, address and classification inside the
dedupe window) and waits for the write to be durable before acknowledging.
Once a write has been handed to the store it is shielded from cancellation.

Reporter identity comes from the caller's auth layer; rate limiting against
reputation poisoning is also the caller's responsibility.
"""

from __future__ import annotations

import asyncio

from backend_txguard.config.settings import EvaluatorSettings, get_settings
from backend_txguard.core.exceptions import ClassificationError, ClassificationErrorKind
from backend_txguard.evaluator.addresses import classify, detect_chain
from backend_txguard.evaluator.models import (
    CanonicalAddress,
    ChainKind,
    Classification,
    ReportReceipt,
    ReputationRecord,
    Severity,
)
from backend_txguard.reputation.store import ReputationStore
from backend_txguard.txguard_logging import get_logger

logger = get_logger(__name__)

MAX_DESCRIPTION_LENGTH = 500


def _canonicalize(addr_raw: str, chain: ChainKind | str | None, network: str | None) -> CanonicalAddress:
    kind = chain if chain is not None else detect_chain(addr_raw)
    if kind is None:
        text = (addr_raw or "").strip()
        raise ClassificationError(
            ClassificationErrorKind.EMPTY if not text else ClassificationErrorKind.MALFORMED_SYNTAX,
            "address does not parse for any supported chain",
        )
    return classify(addr_raw, kind, network=network)


def _truncate(description: str | None) -> str | None:
    text = (description or "").strip()
    if not text:
        return None
    if len(text) <= MAX_DESCRIPTION_LENGTH:
        return text
    return text[: MAX_DESCRIPTION_LENGTH - 3] + "..."


class ReportIngestor:
    """User-submitted scam/suspicious reports with idempotent increment semantics."""

    def __init__(self, store: ReputationStore, settings: EvaluatorSettings | None = None) -> None:
        self._store = store
        self._settings = settings or get_settings()

    @property
    def dedupe_window_sec(self) -> int:
        return self._settings.report_dedupe_window_hours * 3600

    async def report_scam(
        self,
        addr_raw: str,
        reporter: str,
        severity: Severity | str = Severity.MEDIUM,
        description: str | None = None,
        *,
        chain: ChainKind | str | None = None,
        network: str | None = None,
        now: int | None = None,
    ) -> ReportReceipt:
        """
        Report addr_raw as scam. A second report from the same reporter inside the
        dedupe window is acknowledged (counted=False) without incrementing report_count.
        Raises ClassificationError for an unparseable address, ReputationUnavailable on storage errors.
        """
        return await self._report(
            addr_raw, reporter, Classification.SCAM, Severity.parse(severity), description, chain, network, now
        )

    async def report_suspicious(
        self,
        addr_raw: str,
        reporter: str,
        reason: str | None = None,
        severity: Severity | str = Severity.MEDIUM,
        *,
        chain: ChainKind | str | None = None,
        network: str | None = None,
        now: int | None = None,
    ) -> ReportReceipt:
        """Report addr_raw as suspicious; never downgrades an existing scam record."""
        return await self._report(
            addr_raw, reporter, Classification.SUSPICIOUS, Severity.parse(severity), reason, chain, network, now
        )

    async def list_scam(self, n: int = 1000) -> list[ReputationRecord]:
        """Top scam records by report count; n is capped at the configured list cap."""
        if n < 1:
            raise ValueError("n must be >= 1")
        limit = min(n, self._settings.scam_list_cap)
        return await asyncio.to_thread(self._store.list_top, limit, Classification.SCAM)

    async def _report(
        self,
        addr_raw: str,
        reporter: str,
        classification: Classification,
        severity: Severity,
        description: str | None,
        chain: ChainKind | str | None,
        network: str | None,
        now: int | None,
    ) -> ReportReceipt:
        reporter_id = (reporter or "").strip()
        if not reporter_id:
            raise ValueError("reporter identity is required")
        if severity is Severity.NONE:
            raise ValueError("report severity must be at least low")
        addr = _canonicalize(addr_raw, chain, network)
        write = asyncio.to_thread(
            self._store.record_report,
            addr,
            classification,
            severity,
            _truncate(description),
            reporter=reporter_id,
            dedupe_window_sec=self.dedupe_window_sec,
            now=now,
        )
        counted, record = await asyncio.shield(write)
        if not counted:
            logger.info(
                "reputation_report_deduplicated",
                address=addr.value,
                classification=classification.value,
                reporter=reporter_id,
            )
        return ReportReceipt(address=addr, counted=counted, record=record)

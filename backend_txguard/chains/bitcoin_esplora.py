"""
Bitcoin chain client over an Esplora REST API (blockstream.info, mempool.space).

Balance is the confirmed chain balance minus outputs already spent in the
mempool. Fees come from /fee-estimates at a 6-block target, priced for a
one-input two-output P2WPKH transfer. Bitcoin has no token transfers and no
contracts.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable

import httpx

from backend_txguard.config.env import get_esplora_url, mask_url
from backend_txguard.core.exceptions import ChainProbeError, ChainProbeErrorKind
from backend_txguard.evaluator.amounts import from_base_units
from backend_txguard.evaluator.chain_probe import ChainClient
from backend_txguard.evaluator.models import Asset, CanonicalAddress, FeeQuote, SimulationOutcome
from backend_txguard.txguard_logging import get_logger

logger = get_logger(__name__)

BTC_DECIMALS = 8
FEE_TARGET_BLOCKS = "6"
TYPICAL_TX_VBYTES = 141


class EsploraClient(ChainClient):
    def __init__(
        self,
        url_for_network: Callable[[str], str | None] = get_esplora_url,
        *,
        request_timeout_sec: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url_for_network = url_for_network
        self._request_timeout = request_timeout_sec
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._request_timeout),
                transport=self._transport,
            )
        return self._client

    async def _get(self, network: str, path: str) -> Any:
        base = self._url_for_network(network)
        if not base:
            raise ChainProbeError(ChainProbeErrorKind.UNSUPPORTED, f"no Esplora endpoint for network {network!r}")
        url = f"{base.rstrip('/')}{path}"
        resp = await self._http().get(url)
        resp.raise_for_status()
        logger.debug("esplora_get", network=network, url=mask_url(url))
        return resp.json()

    @staticmethod
    def _require_native(asset: Asset) -> None:
        if not asset.is_native:
            raise ChainProbeError(ChainProbeErrorKind.UNSUPPORTED, "Bitcoin has no token transfers")

    async def balance(self, network: str, addr: CanonicalAddress, asset: Asset) -> Decimal:
        self._require_native(asset)
        data = await self._get(network, f"/address/{addr.value}")
        chain = data.get("chain_stats") or {}
        mempool = data.get("mempool_stats") or {}
        sats = int(chain.get("funded_txo_sum", 0)) - int(chain.get("spent_txo_sum", 0))
        sats -= int(mempool.get("spent_txo_sum", 0))
        return from_base_units(max(sats, 0), BTC_DECIMALS)

    async def fee_quote(
        self, network: str, from_: CanonicalAddress, to: CanonicalAddress, amount: Decimal, asset: Asset
    ) -> FeeQuote:
        self._require_native(asset)
        estimates = await self._get(network, "/fee-estimates")
        rate = estimates.get(FEE_TARGET_BLOCKS)
        if rate is None:
            if not estimates:
                raise ChainProbeError(ChainProbeErrorKind.RPC_ERROR, "empty fee estimates")
            # closest confirmation target when the 6-block bucket is missing
            rate = estimates[min(estimates, key=lambda k: abs(int(k) - int(FEE_TARGET_BLOCKS)))]
        sat_per_vb = Decimal(str(rate))
        total_sats = int((sat_per_vb * TYPICAL_TX_VBYTES).to_integral_value())
        return FeeQuote(
            per_unit_price=sat_per_vb,
            units=TYPICAL_TX_VBYTES,
            total=from_base_units(total_sats, BTC_DECIMALS),
            unit="sat/vB",
        )

    async def is_contract(self, network: str, addr: CanonicalAddress) -> bool:
        return False

    async def simulate(
        self, network: str, from_: CanonicalAddress, to: CanonicalAddress, amount: Decimal, asset: Asset
    ) -> SimulationOutcome:
        return SimulationOutcome.success()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

"""
Chain probe: timeout-bounded wrapper over the per-chain clients.

Each operation returns a value or raises ChainProbeError(kind). The probe
never retries; a timed-out or failed read is the caller's skip. Bitcoin has
no dry run, so simulate() is a no-op Ok there.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Awaitable, Mapping, TypeVar

import httpx

from backend_txguard.core.exceptions import ChainProbeError, ChainProbeErrorKind
from backend_txguard.evaluator.models import (
    Asset,
    CanonicalAddress,
    ChainKind,
    FeeEstimate,
    FeeQuote,
    SimulationOutcome,
)
from backend_txguard.txguard_logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_PROBE_TIMEOUT_SEC = 5.0
DEFAULT_FEE_SPIKE_GWEI = Decimal("100")


class ChainClient(ABC):
    """
    Collaborator contract for one chain family. Implementations wrap an EVM
    JSON-RPC node or a Bitcoin explorer API. Raise ChainProbeError (or let
    httpx errors propagate) on failure.
    """

    @abstractmethod
    async def balance(self, network: str, addr: CanonicalAddress, asset: Asset) -> Decimal:
        ...

    @abstractmethod
    async def fee_quote(
        self, network: str, from_: CanonicalAddress, to: CanonicalAddress, amount: Decimal, asset: Asset
    ) -> FeeQuote:
        ...

    @abstractmethod
    async def is_contract(self, network: str, addr: CanonicalAddress) -> bool:
        ...

    @abstractmethod
    async def simulate(
        self, network: str, from_: CanonicalAddress, to: CanonicalAddress, amount: Decimal, asset: Asset
    ) -> SimulationOutcome:
        ...

    async def aclose(self) -> None:
        return None


class ChainProbe:
    def __init__(
        self,
        clients: Mapping[ChainKind, ChainClient],
        *,
        fee_spike_gwei_threshold: Decimal = DEFAULT_FEE_SPIKE_GWEI,
        timeout_sec: float = DEFAULT_PROBE_TIMEOUT_SEC,
    ) -> None:
        if timeout_sec <= 0:
            raise ValueError("timeout_sec must be positive")
        self._clients = dict(clients)
        self._spike_threshold = fee_spike_gwei_threshold
        self._timeout = timeout_sec

    def _client(self, chain: ChainKind) -> ChainClient:
        client = self._clients.get(chain)
        if client is None:
            raise ChainProbeError(ChainProbeErrorKind.UNSUPPORTED, f"no chain client configured for {chain.value}")
        return client

    async def _call(self, op: str, chain: ChainKind, network: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except ChainProbeError as e:
            logger.warning("chain_probe_failed", op=op, chain=chain.value, network=network, kind=e.kind.value, error=str(e))
            raise
        except asyncio.TimeoutError as e:
            logger.warning("chain_probe_timeout", op=op, chain=chain.value, network=network, timeout_sec=self._timeout)
            raise ChainProbeError(ChainProbeErrorKind.TIMEOUT, f"{op} timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            logger.warning("chain_probe_unavailable", op=op, chain=chain.value, network=network, error=str(e))
            raise ChainProbeError(ChainProbeErrorKind.UNAVAILABLE, f"{op}: {e}") from e
        except Exception as e:
            logger.warning("chain_probe_error", op=op, chain=chain.value, network=network, error=str(e))
            raise ChainProbeError(ChainProbeErrorKind.RPC_ERROR, f"{op}: {e}") from e

    async def balance(self, chain: ChainKind, network: str, addr: CanonicalAddress, asset: Asset) -> Decimal:
        client = self._client(chain)
        return await self._call("balance", chain, network, client.balance(network, addr, asset))

    async def estimate_fee(
        self,
        chain: ChainKind,
        network: str,
        from_: CanonicalAddress,
        to: CanonicalAddress,
        amount: Decimal,
        asset: Asset,
    ) -> FeeEstimate:
        """Fee quote plus the advisory spike bit (EVM: gas price above the gwei threshold)."""
        client = self._client(chain)
        quote = await self._call("estimate_fee", chain, network, client.fee_quote(network, from_, to, amount, asset))
        spike = chain is ChainKind.EVM_LIKE and quote.per_unit_price > self._spike_threshold
        return FeeEstimate(
            per_unit_price=quote.per_unit_price,
            units=quote.units,
            total=quote.total,
            unit=quote.unit,
            fee_advisory_spike=spike,
        )

    async def is_contract(self, chain: ChainKind, network: str, addr: CanonicalAddress) -> bool:
        if chain is ChainKind.BITCOIN_LIKE:
            return False
        client = self._client(chain)
        return bool(await self._call("is_contract", chain, network, client.is_contract(network, addr)))

    async def simulate(
        self,
        chain: ChainKind,
        network: str,
        from_: CanonicalAddress,
        to: CanonicalAddress,
        amount: Decimal,
        asset: Asset,
    ) -> SimulationOutcome:
        """Side-effect-free dry run; Bitcoin returns Ok without a network call."""
        if chain is ChainKind.BITCOIN_LIKE:
            return SimulationOutcome.success()
        client = self._client(chain)
        return await self._call("simulate", chain, network, client.simulate(network, from_, to, amount, asset))

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()

    def describe(self) -> dict[str, Any]:
        return {
            "chains": sorted(c.value for c in self._clients),
            "timeout_sec": self._timeout,
            "fee_spike_gwei_threshold": str(self._spike_threshold),
        }

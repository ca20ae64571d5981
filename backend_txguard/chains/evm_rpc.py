"""
EVM JSON-RPC chain client.

Responsibilities:
- Balance reads (eth_getBalance for the native coin, ERC-20 balanceOf via eth_call).
- Fee quotes: eth_gasPrice in gwei times a gas limit (21000 native, eth_estimateGas
  for token transfers with a 65000 fallback).
- Contract detection via eth_getCode.
- Dry runs via eth_call; JSON-RPC errors are classified into revert reasons.

One httpx.AsyncClient is shared across calls; endpoint per network comes from
config.env.get_evm_rpc_url.
"""

from __future__ import annotations

import itertools
from decimal import Decimal
from typing import Any, Callable

import httpx

from backend_txguard.config.env import get_evm_rpc_url, mask_url
from backend_txguard.core.exceptions import ChainProbeError, ChainProbeErrorKind
from backend_txguard.evaluator.amounts import from_base_units, to_base_units
from backend_txguard.evaluator.chain_probe import ChainClient
from backend_txguard.evaluator.models import (
    Asset,
    CanonicalAddress,
    FeeQuote,
    RevertReason,
    SimulationOutcome,
)
from backend_txguard.txguard_logging import get_logger

logger = get_logger(__name__)

NATIVE_TRANSFER_GAS = 21000
TOKEN_TRANSFER_GAS = 65000
ETH_DECIMALS = 18
GWEI = Decimal(10) ** 9

SELECTOR_BALANCE_OF = "0x70a08231"
SELECTOR_TRANSFER = "0xa9059cbb"

_request_ids = itertools.count(1)


class EvmRpcError(RuntimeError):
    """JSON-RPC level error (the node answered with an error object)."""

    def __init__(self, message: str, code: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


def _build_rpc_body(method: str, params: list[Any]) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": next(_request_ids),
        "method": method,
        "params": params,
    }


def _pad_word(hex_value: str) -> str:
    return hex_value.lower().removeprefix("0x").rjust(64, "0")


def encode_balance_of(owner: str) -> str:
    return SELECTOR_BALANCE_OF + _pad_word(owner)


def encode_transfer(to: str, value: int) -> str:
    return SELECTOR_TRANSFER + _pad_word(to) + _pad_word(hex(value))


def _hex_to_int(value: Any) -> int:
    if not isinstance(value, str) or not value.startswith("0x"):
        raise EvmRpcError(f"expected hex quantity, got {value!r}")
    if value in ("0x", "0x0"):
        return 0
    return int(value, 16)


def classify_revert(message: str) -> SimulationOutcome:
    """Map a node error message onto a revert reason."""
    text = (message or "").lower()
    if "insufficient funds" in text or "transfer amount exceeds balance" in text:
        return SimulationOutcome.revert(RevertReason.INSUFFICIENT_FUNDS, message)
    if "gas required exceeds" in text or "intrinsic gas too low" in text or "out of gas" in text:
        return SimulationOutcome.revert(RevertReason.GAS_TOO_LOW, message)
    return SimulationOutcome.revert(RevertReason.OTHER, message or "execution reverted")


class EvmRpcClient(ChainClient):
    def __init__(
        self,
        url_for_network: Callable[[str], str | None] = get_evm_rpc_url,
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

    def _endpoint(self, network: str) -> str:
        url = self._url_for_network(network)
        if not url:
            raise ChainProbeError(ChainProbeErrorKind.UNSUPPORTED, f"no EVM RPC endpoint for network {network!r}")
        return url

    async def _rpc(self, network: str, method: str, params: list[Any]) -> Any:
        """Perform one JSON-RPC call; raise httpx errors on transport failure, EvmRpcError on RPC error."""
        url = self._endpoint(network)
        resp = await self._http().post(url, json=_build_rpc_body(method, params))
        resp.raise_for_status()
        data = resp.json()
        if "error" in data and data["error"] is not None:
            err = data["error"]
            if isinstance(err, dict):
                raise EvmRpcError(str(err.get("message", err)), code=err.get("code"), data=err.get("data"))
            raise EvmRpcError(str(err))
        if "result" not in data:
            raise EvmRpcError(f"EVM RPC returned no result for {method}")
        logger.debug("evm_rpc_call", method=method, network=network, endpoint=mask_url(url))
        return data["result"]

    async def balance(self, network: str, addr: CanonicalAddress, asset: Asset) -> Decimal:
        if asset.is_native:
            wei = _hex_to_int(await self._rpc(network, "eth_getBalance", [addr.value, "latest"]))
            return from_base_units(wei, ETH_DECIMALS)
        call = {"to": asset.contract, "data": encode_balance_of(addr.value)}
        raw = _hex_to_int(await self._rpc(network, "eth_call", [call, "latest"]))
        return from_base_units(raw, asset.decimals)

    async def fee_quote(
        self, network: str, from_: CanonicalAddress, to: CanonicalAddress, amount: Decimal, asset: Asset
    ) -> FeeQuote:
        gas_price_wei = _hex_to_int(await self._rpc(network, "eth_gasPrice", []))
        if asset.is_native:
            units = NATIVE_TRANSFER_GAS
        else:
            units = await self._estimate_token_gas(network, from_, to, amount, asset)
        return FeeQuote(
            per_unit_price=Decimal(gas_price_wei) / GWEI,
            units=units,
            total=from_base_units(gas_price_wei * units, ETH_DECIMALS),
            unit="gwei",
        )

    async def _estimate_token_gas(
        self, network: str, from_: CanonicalAddress, to: CanonicalAddress, amount: Decimal, asset: Asset
    ) -> int:
        call = {
            "from": from_.value,
            "to": asset.contract,
            "data": encode_transfer(to.value, to_base_units(amount, asset.decimals)),
        }
        try:
            return _hex_to_int(await self._rpc(network, "eth_estimateGas", [call]))
        except EvmRpcError as e:
            logger.info("evm_estimate_gas_fallback", network=network, token=asset.symbol, error=str(e))
            return TOKEN_TRANSFER_GAS

    async def is_contract(self, network: str, addr: CanonicalAddress) -> bool:
        code = await self._rpc(network, "eth_getCode", [addr.value, "latest"])
        return isinstance(code, str) and code not in ("", "0x", "0x0")

    async def simulate(
        self, network: str, from_: CanonicalAddress, to: CanonicalAddress, amount: Decimal, asset: Asset
    ) -> SimulationOutcome:
        if asset.is_native:
            call = {"from": from_.value, "to": to.value, "value": hex(to_base_units(amount, ETH_DECIMALS))}
        else:
            call = {
                "from": from_.value,
                "to": asset.contract,
                "data": encode_transfer(to.value, to_base_units(amount, asset.decimals)),
            }
        try:
            await self._rpc(network, "eth_call", [call, "latest"])
        except EvmRpcError as e:
            return classify_revert(str(e))
        return SimulationOutcome.success()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

"""
Tests for the EVM JSON-RPC and Esplora clients against httpx.MockTransport.
"""

from __future__ import annotations

import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from backend_txguard.chains.bitcoin_esplora import EsploraClient
from backend_txguard.chains.evm_rpc import (
    NATIVE_TRANSFER_GAS,
    SELECTOR_BALANCE_OF,
    SELECTOR_TRANSFER,
    TOKEN_TRANSFER_GAS,
    EvmRpcClient,
    classify_revert,
    encode_transfer,
)
from backend_txguard.core.exceptions import ChainProbeError, ChainProbeErrorKind
from backend_txguard.evaluator.addresses import classify
from backend_txguard.evaluator.chain_probe import ChainProbe
from backend_txguard.evaluator.models import Asset, ChainKind, RevertReason

from fakes import BTC, BTC_FROM, BTC_TO, ETH, EVM_FROM, EVM_TO

RPC_URL = "https://rpc.test"
ESPLORA_URL = "https://esplora.test/api"
USDC = Asset(symbol="USDC", chain=ChainKind.EVM_LIKE, decimals=6, contract="0x" + "a0" * 20)
FROM = classify(EVM_FROM, ChainKind.EVM_LIKE)
TO = classify(EVM_TO, ChainKind.EVM_LIKE)
BTC_SENDER = classify(BTC_FROM, ChainKind.BITCOIN_LIKE)
BTC_RECIPIENT = classify(BTC_TO, ChainKind.BITCOIN_LIKE)


def _rpc_transport(results: dict, seen: list | None = None) -> httpx.MockTransport:
    """JSON-RPC responder: results maps method -> result value or {"error": {...}}."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if seen is not None:
            seen.append(body)
        answer = results[body["method"]]
        if callable(answer):
            answer = answer(body)
        if isinstance(answer, dict) and "error" in answer:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": answer["error"]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": answer})

    return httpx.MockTransport(handler)


def _evm(results: dict, seen: list | None = None) -> EvmRpcClient:
    return EvmRpcClient(
        lambda network: RPC_URL if network == "mainnet" else None,
        transport=_rpc_transport(results, seen),
    )


def _run(client, coro):
    async def _main():
        try:
            return await coro
        finally:
            await client.aclose()

    return asyncio.run(_main())


def test_evm_native_balance():
    """eth_getBalance wei is converted to ETH."""
    seen: list = []
    client = _evm({"eth_getBalance": hex(1_500_000_000_000_000_000)}, seen)
    assert _run(client, client.balance("mainnet", FROM, ETH)) == Decimal("1.5")
    assert seen[0]["params"] == [FROM.value, "latest"]


def test_evm_token_balance_uses_balance_of():
    """ERC-20 balances come from balanceOf via eth_call, scaled by token decimals."""
    seen: list = []
    client = _evm({"eth_call": hex(2_500_000)}, seen)
    assert _run(client, client.balance("mainnet", FROM, USDC)) == Decimal("2.5")
    call = seen[0]["params"][0]
    assert call["to"] == USDC.contract
    assert call["data"].startswith(SELECTOR_BALANCE_OF)
    assert call["data"].endswith(FROM.value[2:])


def test_evm_native_fee_quote():
    """Native transfers use 21000 gas at eth_gasPrice."""
    client = _evm({"eth_gasPrice": hex(30_000_000_000)})
    quote = _run(client, client.fee_quote("mainnet", FROM, TO, Decimal("1"), ETH))
    assert quote.per_unit_price == Decimal("30")
    assert quote.units == NATIVE_TRANSFER_GAS
    assert quote.total == Decimal("0.00063")
    assert quote.unit == "gwei"


def test_evm_token_fee_quote_estimates_or_falls_back():
    """Token transfers use eth_estimateGas, falling back to 65000 when the node refuses."""
    client = _evm({"eth_gasPrice": hex(10**9), "eth_estimateGas": hex(52_000)})
    assert _run(client, client.fee_quote("mainnet", FROM, TO, Decimal("1"), USDC)).units == 52_000

    client = _evm(
        {"eth_gasPrice": hex(10**9), "eth_estimateGas": {"error": {"code": 3, "message": "execution reverted"}}}
    )
    assert _run(client, client.fee_quote("mainnet", FROM, TO, Decimal("1"), USDC)).units == TOKEN_TRANSFER_GAS


def test_evm_is_contract():
    """Non-empty code means contract."""
    client = _evm({"eth_getCode": "0x"})
    assert _run(client, client.is_contract("mainnet", TO)) is False
    client = _evm({"eth_getCode": "0x6080604052"})
    assert _run(client, client.is_contract("mainnet", TO)) is True


def test_evm_simulate_ok_and_reverts():
    """eth_call success is Ok; node errors are classified into revert reasons."""
    seen: list = []
    client = _evm({"eth_call": "0x"}, seen)
    assert _run(client, client.simulate("mainnet", FROM, TO, Decimal("0.5"), ETH)).ok
    assert seen[0]["params"][0]["value"] == hex(500_000_000_000_000_000)

    client = _evm({"eth_call": {"error": {"code": -32000, "message": "insufficient funds for gas * price + value"}}})
    outcome = _run(client, client.simulate("mainnet", FROM, TO, Decimal("0.5"), ETH))
    assert outcome.reason is RevertReason.INSUFFICIENT_FUNDS

    seen = []
    client = _evm({"eth_call": {"error": {"code": 3, "message": "execution reverted: Pausable: paused"}}}, seen)
    outcome = _run(client, client.simulate("mainnet", FROM, TO, Decimal("1"), USDC))
    assert outcome.reason is RevertReason.OTHER
    assert "paused" in outcome.message
    assert seen[0]["params"][0]["data"] == encode_transfer(TO.value, 1_000_000)
    assert seen[0]["params"][0]["data"].startswith(SELECTOR_TRANSFER)


@pytest.mark.parametrize(
    "message,reason",
    [
        ("gas required exceeds allowance (30000000)", RevertReason.GAS_TOO_LOW),
        ("intrinsic gas too low", RevertReason.GAS_TOO_LOW),
        ("out of gas", RevertReason.GAS_TOO_LOW),
        ("ERC20: transfer amount exceeds balance", RevertReason.INSUFFICIENT_FUNDS),
        ("execution reverted", RevertReason.OTHER),
    ],
)
def test_classify_revert(message, reason):
    assert classify_revert(message).reason is reason


def test_evm_http_error_maps_to_unavailable():
    """HTTP failures propagate from the client and become ChainProbeError(unavailable) in the probe."""
    client = EvmRpcClient(lambda n: RPC_URL, transport=httpx.MockTransport(lambda r: httpx.Response(503)))
    probe = ChainProbe({ChainKind.EVM_LIKE: client}, timeout_sec=1)
    with pytest.raises(ChainProbeError) as exc:
        _run(client, probe.balance(ChainKind.EVM_LIKE, "mainnet", FROM, ETH))
    assert exc.value.kind is ChainProbeErrorKind.UNAVAILABLE


def test_evm_unknown_network_is_unsupported():
    client = _evm({})
    with pytest.raises(ChainProbeError) as exc:
        _run(client, client.balance("holesky", FROM, ETH))
    assert exc.value.kind is ChainProbeErrorKind.UNSUPPORTED


def _esplora(routes: dict) -> EsploraClient:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api")
        if path not in routes:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, json=routes[path])

    return EsploraClient(lambda network: ESPLORA_URL, transport=httpx.MockTransport(handler))


def test_esplora_balance():
    """Confirmed balance minus outputs already spent in the mempool."""
    client = _esplora(
        {
            f"/address/{BTC_SENDER.value}": {
                "chain_stats": {"funded_txo_sum": 150_000_000, "spent_txo_sum": 50_000_000},
                "mempool_stats": {"funded_txo_sum": 0, "spent_txo_sum": 10_000_000},
            }
        }
    )
    assert _run(client, client.balance("mainnet", BTC_SENDER, BTC)) == Decimal("0.9")


def test_esplora_fee_quote():
    """sat/vB at the 6-block target times a typical transaction size."""
    client = _esplora({"/fee-estimates": {"1": 30.5, "6": 12.0, "144": 1.0}})
    quote = _run(client, client.fee_quote("mainnet", BTC_SENDER, BTC_RECIPIENT, Decimal("0.1"), BTC))
    assert quote.per_unit_price == Decimal("12.0")
    assert quote.units == 141
    assert quote.total == Decimal("0.00001692")
    assert quote.unit == "sat/vB"


def test_esplora_fee_quote_nearest_target():
    """Without a 6-block bucket the closest target is used."""
    client = _esplora({"/fee-estimates": {"3": 20, "25": 5}})
    quote = _run(client, client.fee_quote("mainnet", BTC_SENDER, BTC_RECIPIENT, Decimal("0.1"), BTC))
    assert quote.per_unit_price == Decimal("20")


def test_esplora_rejects_tokens_and_is_never_contract():
    client = _esplora({})
    token = Asset(symbol="XYZ", chain=ChainKind.BITCOIN_LIKE, decimals=8, contract="x")
    with pytest.raises(ChainProbeError) as exc:
        _run(client, client.balance("mainnet", BTC_SENDER, token))
    assert exc.value.kind is ChainProbeErrorKind.UNSUPPORTED
    assert _run(client, client.is_contract("mainnet", BTC_RECIPIENT)) is False


def test_esplora_http_error_raises():
    client = _esplora({})
    with pytest.raises(httpx.HTTPStatusError):
        _run(client, client.balance("mainnet", BTC_SENDER, BTC))

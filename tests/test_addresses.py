"""
Tests for address classification (EVM / Bitcoin) and the similarity heuristics.
"""

from __future__ import annotations

import pytest

from backend_txguard.core.exceptions import ClassificationError, ClassificationErrorKind
from backend_txguard.evaluator.addresses import (
    any_similarity,
    classify,
    detect_chain,
    is_near_duplicate,
    is_visually_similar,
)
from backend_txguard.evaluator.models import ChainKind

# EIP-55 example address
CHECKSUMMED = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
BAD_CHECKSUM = "0x5aaeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
GENESIS = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
SEGWIT = "bc1qxy2kgdygjrsqtzq2n0yrf2493p83kkfjhx0wlh"


def _kind(raw, chain, network=None):
    with pytest.raises(ClassificationError) as exc:
        classify(raw, chain, network=network)
    return exc.value.kind


def test_evm_is_lowercased():
    """EVM canonical form is lower-case hex; equality ignores checksum metadata."""
    addr = classify(CHECKSUMMED, ChainKind.EVM_LIKE)
    assert addr.value == CHECKSUMMED.lower()
    assert addr.chain is ChainKind.EVM_LIKE
    assert addr.checksum_valid is True
    assert addr == classify(CHECKSUMMED.lower(), "evm")


def test_evm_checksum_flags():
    """Mixed case with a wrong checksum is flagged; single-case input carries no checksum."""
    assert classify(BAD_CHECKSUM, ChainKind.EVM_LIKE).checksum_valid is False
    assert classify(CHECKSUMMED.lower(), ChainKind.EVM_LIKE).checksum_valid is None
    assert classify("  " + CHECKSUMMED + "\n", ChainKind.EVM_LIKE).value == CHECKSUMMED.lower()


def test_classification_errors():
    """Each failure mode maps to its error kind."""
    assert _kind("", ChainKind.EVM_LIKE) is ClassificationErrorKind.EMPTY
    assert _kind("   ", ChainKind.BITCOIN_LIKE) is ClassificationErrorKind.EMPTY
    assert _kind("0x1234", ChainKind.EVM_LIKE) is ClassificationErrorKind.MALFORMED_SYNTAX
    assert _kind("0x" + "zz" * 20, ChainKind.EVM_LIKE) is ClassificationErrorKind.MALFORMED_SYNTAX
    assert _kind(GENESIS, ChainKind.EVM_LIKE) is ClassificationErrorKind.WRONG_CHAIN
    assert _kind(CHECKSUMMED, ChainKind.BITCOIN_LIKE) is ClassificationErrorKind.WRONG_CHAIN
    assert _kind(GENESIS, "solana") is ClassificationErrorKind.UNKNOWN_CHAIN


def test_bitcoin_base58_and_bech32():
    """Base58check addresses are kept exact; bech32 is lower-cased; network is recorded."""
    legacy = classify(GENESIS, ChainKind.BITCOIN_LIKE)
    assert legacy.value == GENESIS
    assert legacy.network == "mainnet"
    segwit = classify(SEGWIT.upper(), ChainKind.BITCOIN_LIKE, network="mainnet")
    assert segwit.value == SEGWIT
    assert segwit == classify(SEGWIT, ChainKind.BITCOIN_LIKE)


def test_bitcoin_bad_checksum_and_network():
    """A corrupted checksum or a mainnet address on testnet is malformed."""
    assert _kind(GENESIS[:-1] + "b", ChainKind.BITCOIN_LIKE) is ClassificationErrorKind.MALFORMED_SYNTAX
    assert _kind(SEGWIT[:-1] + "q", ChainKind.BITCOIN_LIKE) is ClassificationErrorKind.MALFORMED_SYNTAX
    assert _kind(GENESIS, ChainKind.BITCOIN_LIKE, network="testnet") is ClassificationErrorKind.MALFORMED_SYNTAX


@pytest.mark.parametrize(
    "raw,chain",
    [(CHECKSUMMED, ChainKind.EVM_LIKE), (GENESIS, ChainKind.BITCOIN_LIKE), (SEGWIT.upper(), ChainKind.BITCOIN_LIKE)],
)
def test_classify_is_idempotent(raw, chain):
    """Classifying the canonical form yields the same canonical form."""
    once = classify(raw, chain)
    assert classify(once.value, chain) == once


def test_detect_chain():
    """Chain kind is inferred from syntax alone."""
    assert detect_chain(CHECKSUMMED) is ChainKind.EVM_LIKE
    assert detect_chain(GENESIS) is ChainKind.BITCOIN_LIKE
    assert detect_chain(SEGWIT) is ChainKind.BITCOIN_LIKE
    assert detect_chain("not-an-address") is None
    assert detect_chain("") is None


def test_is_visually_similar_prefix_suffix():
    """Same first 6 and last 4 characters after the 0x prefix, but different addresses."""
    a = "0x123456" + "0" * 30 + "5678"
    b = "0x123456" + "f" * 30 + "5678"
    assert is_visually_similar(a, b)
    assert not is_visually_similar(a, a)
    assert not is_visually_similar(a, "0x123457" + "f" * 30 + "5678")
    assert not is_visually_similar(a, "0x123456" + "f" * 30 + "5679")


def test_near_duplicate_and_combination():
    """is_near_duplicate catches single-character edits that prefix/suffix misses."""
    a = "0x1234567890abcdef1234567890abcdef12345678"
    b = "0x1234567890abcdef1234567890abcdef12345679"
    assert not is_visually_similar(a, b)
    assert is_near_duplicate(a, b)
    assert not is_near_duplicate(a, a)
    combined = any_similarity(is_visually_similar, is_near_duplicate)
    assert combined(a, b)
    assert not combined(a, "0x" + "ee" * 20)

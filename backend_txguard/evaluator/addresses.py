"""
Address classifier: parse and canonicalize an address for a chain kind.

Pure functions, no I/O. EVM addresses are lower-cased hex with EIP-55
checksum checked as a warning signal (web3); Bitcoin addresses are decoded
as base58check (base58) or bech32/bech32m segwit (bech32) and kept bit-exact.

Also hosts the typosquat similarity heuristics used by RecipientFamiliarity.
They work on plain strings and know nothing about canonicalization.
"""

from __future__ import annotations

import re
from typing import Callable

import base58
from bech32 import decode as bech32_decode
from web3 import Web3

from backend_txguard.core.exceptions import ClassificationError, ClassificationErrorKind
from backend_txguard.evaluator.models import CanonicalAddress, ChainKind

EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

# base58check version bytes: P2PKH, P2SH
BTC_BASE58_VERSIONS = {
    "mainnet": (0x00, 0x05),
    "testnet": (0x6F, 0xC4),
}
BTC_BECH32_HRP = {
    "mainnet": "bc",
    "testnet": "tb",
}

SIMILARITY_PREFIX_LEN = 6
SIMILARITY_SUFFIX_LEN = 4

SimilarityFn = Callable[[str, str], bool]


def bitcoin_network_for(network: str | None) -> str | None:
    """Map a request network name onto mainnet | testnet; None means either."""
    if network is None:
        return None
    net = network.strip().lower()
    if net in ("mainnet", "main", "bitcoin"):
        return "mainnet"
    return "testnet"


def _coerce_chain(chain: ChainKind | str | None) -> ChainKind:
    if isinstance(chain, ChainKind):
        return chain
    try:
        return ChainKind(str(chain or "").strip().lower())
    except ValueError:
        raise ClassificationError(ClassificationErrorKind.UNKNOWN_CHAIN, f"unknown chain: {chain!r}") from None


def _decode_bitcoin(raw: str) -> str | None:
    """Return the network a Bitcoin address decodes under, or None."""
    for network, hrp in BTC_BECH32_HRP.items():
        if raw.lower().startswith(hrp + "1"):
            witver, _ = bech32_decode(hrp, raw)
            return network if witver is not None else None
    try:
        payload = base58.b58decode_check(raw)
    except ValueError:
        return None
    if len(payload) != 21:
        return None
    for network, versions in BTC_BASE58_VERSIONS.items():
        if payload[0] in versions:
            return network
    return None


def _classify_evm(raw: str) -> CanonicalAddress:
    if not EVM_ADDRESS_RE.match(raw):
        if _decode_bitcoin(raw) is not None:
            raise ClassificationError(ClassificationErrorKind.WRONG_CHAIN, "bitcoin address submitted for an EVM chain")
        raise ClassificationError(ClassificationErrorKind.MALFORMED_SYNTAX, "expected 0x followed by 40 hex digits")
    digits = raw[2:]
    checksum_valid: bool | None = None
    if digits != digits.lower() and digits != digits.upper():
        checksum_valid = bool(Web3.is_checksum_address(raw))
    return CanonicalAddress(ChainKind.EVM_LIKE, "0x" + digits.lower(), checksum_valid=checksum_valid)


def _classify_bitcoin(raw: str, network: str | None) -> CanonicalAddress:
    if EVM_ADDRESS_RE.match(raw):
        raise ClassificationError(ClassificationErrorKind.WRONG_CHAIN, "EVM address submitted for bitcoin")
    parsed_network = _decode_bitcoin(raw)
    if parsed_network is None:
        raise ClassificationError(ClassificationErrorKind.MALFORMED_SYNTAX, "not a valid base58check or bech32 address")
    wanted = bitcoin_network_for(network)
    if wanted is not None and parsed_network != wanted:
        raise ClassificationError(
            ClassificationErrorKind.MALFORMED_SYNTAX,
            f"address belongs to bitcoin {parsed_network}, not {wanted}",
        )
    value = raw
    if raw.lower().startswith(BTC_BECH32_HRP[parsed_network] + "1"):
        # bech32 is case-insensitive; the lower-case form is canonical
        value = raw.lower()
    return CanonicalAddress(ChainKind.BITCOIN_LIKE, value, network=parsed_network)


def classify(raw: str | None, chain: ChainKind | str | None, network: str | None = None) -> CanonicalAddress:
    """
    Canonicalize raw for chain. network only matters for Bitcoin (mainnet vs testnet);
    None accepts either and records which one the address parses under.

    Raises ClassificationError(kind) with kind in empty | malformed_syntax | wrong_chain | unknown_chain.
    """
    chain_kind = _coerce_chain(chain)
    text = (raw or "").strip()
    if not text:
        raise ClassificationError(ClassificationErrorKind.EMPTY, "address is empty")
    if chain_kind is ChainKind.EVM_LIKE:
        return _classify_evm(text)
    return _classify_bitcoin(text, network)


def detect_chain(raw: str | None) -> ChainKind | None:
    """Infer the chain kind from address syntax; None if nothing parses."""
    text = (raw or "").strip()
    if EVM_ADDRESS_RE.match(text):
        return ChainKind.EVM_LIKE
    if text and _decode_bitcoin(text) is not None:
        return ChainKind.BITCOIN_LIKE
    return None


# -----------------------------------------------------------------------------
# Similarity heuristics (typosquat / clipboard hijack)
# -----------------------------------------------------------------------------


def _strip_prefix(addr: str) -> str:
    text = addr.strip()
    lowered = text.lower()
    if lowered.startswith("0x"):
        return text[2:]
    for hrp in BTC_BECH32_HRP.values():
        if lowered.startswith(hrp + "1"):
            return text[len(hrp) + 1:]
    return text


def is_visually_similar(a: str | CanonicalAddress, b: str | CanonicalAddress) -> bool:
    """
    True iff a != b and, after any canonical prefix (0x, bc1, tb1), the first 6
    and the last 4 characters match.
    """
    left, right = str(a), str(b)
    if not left or not right or left == right:
        return False
    left, right = _strip_prefix(left), _strip_prefix(right)
    if min(len(left), len(right)) < SIMILARITY_PREFIX_LEN + SIMILARITY_SUFFIX_LEN:
        return False
    return (
        left[:SIMILARITY_PREFIX_LEN] == right[:SIMILARITY_PREFIX_LEN]
        and left[-SIMILARITY_SUFFIX_LEN:] == right[-SIMILARITY_SUFFIX_LEN:]
    )


def is_near_duplicate(a: str | CanonicalAddress, b: str | CanonicalAddress, max_differences: int = 2) -> bool:
    """True iff a and b have the same length and differ in 1..max_differences positions."""
    left, right = str(a), str(b)
    if not left or len(left) != len(right):
        return False
    diff = sum(1 for x, y in zip(left, right) if x != y)
    return 0 < diff <= max_differences


def any_similarity(*heuristics: SimilarityFn) -> SimilarityFn:
    """Combine heuristics: similar if any of them says so."""

    def _similar(a: str, b: str) -> bool:
        return any(h(a, b) for h in heuristics)

    return _similar

"""
Application-level exceptions.

Every collaborator failure is converted into one of these at the component
boundary; CheckRunner turns the unavailability errors into skip outcomes.
"""

from __future__ import annotations

from enum import Enum


class TxGuardError(Exception):
    """Base class for all TxGuard errors."""


class InputMalformed(TxGuardError):
    """Request shape or a field failed parsing. No external call was made."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class ClassificationErrorKind(str, Enum):
    EMPTY = "empty"
    MALFORMED_SYNTAX = "malformed_syntax"
    WRONG_CHAIN = "wrong_chain"
    UNKNOWN_CHAIN = "unknown_chain"


class ClassificationError(TxGuardError):
    """Address could not be canonicalized for the requested chain."""

    def __init__(self, kind: ClassificationErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind


class CollaboratorUnavailable(TxGuardError):
    """A read-side collaborator (store, reader, chain) could not answer."""

    reason = "unavailable"


class ReputationUnavailable(CollaboratorUnavailable):
    reason = "reputation_unavailable"


class LookupUnavailable(CollaboratorUnavailable):
    reason = "address_book_unavailable"


class HistoryUnavailable(CollaboratorUnavailable):
    reason = "history_unavailable"


class ChainProbeErrorKind(str, Enum):
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    UNSUPPORTED = "unsupported"
    RPC_ERROR = "rpc_error"


class ChainProbeError(CollaboratorUnavailable):
    """Chain read failed; never retried by the probe."""

    def __init__(self, kind: ChainProbeErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind

    @property
    def reason(self) -> str:  # type: ignore[override]
        return f"chain_{self.kind.value}"

"""
Address book lookup: read-only view over a wallet's trusted addresses.

Membership is wallet-scoped. Reader failures surface as LookupUnavailable,
which CheckRunner records as a skip.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from backend_txguard.core.exceptions import LookupUnavailable
from backend_txguard.evaluator.models import AddressBookMatch, CanonicalAddress
from backend_txguard.txguard_logging import get_logger

logger = get_logger(__name__)


class AddressBookReader(ABC):
    """Collaborator contract implemented by the address-book subsystem."""

    @abstractmethod
    def find(self, wallet_id: str, address: CanonicalAddress) -> AddressBookMatch | None:
        """Return label/trusted for an active entry, or None."""
        ...


class AddressBookLookup:
    def __init__(self, reader: AddressBookReader) -> None:
        self._reader = reader

    async def is_known(self, wallet_id: str, addr: CanonicalAddress) -> AddressBookMatch | None:
        """None means "not known to this wallet"."""
        try:
            return await asyncio.to_thread(self._reader.find, wallet_id, addr)
        except Exception as e:
            logger.warning("address_book_lookup_failed", wallet_id=wallet_id, address=addr.value, error=str(e))
            raise LookupUnavailable(str(e)) from e

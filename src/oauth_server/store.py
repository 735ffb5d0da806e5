"""In-memory keyed store with lazy expiry.

Holds pending authorization codes and live refresh tokens. All state is
process-lifetime only.
"""

from datetime import datetime
from typing import Callable, Generic, Optional, TypeVar

from shared.logging import get_logger

logger = get_logger(__name__)

V = TypeVar("V")


class TTLStore(Generic[V]):
    """
    Dict-backed map whose values know their own expiry.

    Redemption goes through ``pop`` only: a single ``dict.pop`` removes and
    returns the value, so two concurrent redeemers can never both receive it.
    There is no separate exists-check anywhere in this class.
    """

    def __init__(self, name: str, expires_at: Callable[[V], datetime]) -> None:
        self.name = name
        self._expires_at = expires_at
        self._entries: dict[str, V] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def put(self, key: str, value: V) -> None:
        self._entries[key] = value

    def pop(self, key: str) -> Optional[V]:
        """Atomically remove and return the value for ``key``, if any."""
        return self._entries.pop(key, None)

    def purge_expired(self, now: datetime) -> int:
        """
        Drop every entry whose expiry is before ``now``.

        Iterates over a snapshot so concurrent puts and pops are safe.

        Returns:
            Number of entries removed
        """
        removed = 0
        for key, value in list(self._entries.items()):
            if self._expires_at(value) < now and self._entries.pop(key, None) is not None:
                removed += 1

        if removed:
            logger.debug("Expired entries purged", store=self.name, removed=removed)
        return removed

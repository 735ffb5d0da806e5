"""Catalog store interface.

The bridge never sorts, filters or counts on its own. Every browse and search
becomes one ``CatalogQuery`` answered by a store implementation:
- Filtering by kind, parent, artist and search term
- Ordering by the requested sort keys
- Windowing by start index and limit, with the full count
"""

from abc import ABC, abstractmethod
from typing import Optional

from shared.models import CatalogItem, CatalogQuery, QueryResult


class CatalogStore(ABC):
    """Query engine over the music library."""

    @abstractmethod
    def query(self, query: CatalogQuery) -> QueryResult:
        """
        Run a catalog query.

        Args:
            query: Filters, ordering and window

        Returns:
            The requested window and the total number of matches
        """
        pass

    @abstractmethod
    def get_item(self, item_id: str) -> Optional[CatalogItem]:
        """Look up a single entity by native id."""
        pass

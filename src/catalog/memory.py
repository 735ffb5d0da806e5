"""In-memory catalog store.

Reference implementation of ``CatalogStore`` used for local runs and tests.
The library is read from a YAML file::

    artists:
      - {id: ar1, name: Nina Simone}
    albums:
      - {id: al1, name: Pastel Blues, artist_ids: [ar1], production_year: 1965}
    tracks:
      - {id: t1, name: Be My Husband, album_id: al1, index_number: 1, path: /music/t1.flac}
"""

from pathlib import Path
from typing import Any, Iterable, Optional

from shared.config import load_yaml_config
from shared.logging import get_logger
from shared.models import (
    CatalogItem,
    CatalogQuery,
    ItemKind,
    QueryResult,
    SortField,
    SortOrder,
)
from catalog.base import CatalogStore

logger = get_logger(__name__)


def _sort_value(item: CatalogItem, field: SortField) -> Any:
    if field is SortField.SORT_NAME:
        return item.effective_sort_name
    if field is SortField.PRODUCTION_YEAR:
        return item.production_year
    return item.index_number


def _sorted(items: list[CatalogItem], field: SortField, order: SortOrder) -> list[CatalogItem]:
    """Stable sort on one key; items missing the key go last in either direction."""
    present = [i for i in items if _sort_value(i, field) is not None]
    missing = [i for i in items if _sort_value(i, field) is None]
    present.sort(key=lambda i: _sort_value(i, field), reverse=order is SortOrder.DESCENDING)
    return present + missing


class InMemoryCatalogStore(CatalogStore):
    """Catalog held in a dict keyed by native id."""

    def __init__(self, items: Optional[Iterable[CatalogItem]] = None) -> None:
        self._items: dict[str, CatalogItem] = {}
        for item in items or []:
            self.add(item)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InMemoryCatalogStore":
        """Build a store from the ``artists``/``albums``/``tracks`` layout."""
        store = cls()

        for artist in data.get("artists", []):
            store.add(CatalogItem(kind=ItemKind.ARTIST, **artist))

        albums: dict[str, CatalogItem] = {}
        for album in data.get("albums", []):
            item = CatalogItem(kind=ItemKind.ALBUM, **album)
            if item.album_artist is None and item.artist_ids:
                artist = store.get_item(item.artist_ids[0])
                if artist is not None:
                    item = item.model_copy(update={"album_artist": artist.name})
            albums[item.id] = item
            store.add(item)

        for track in data.get("tracks", []):
            track = dict(track)
            album = albums.get(track.get("album_id", ""))
            track["parent_id"] = track.pop("album_id", None)
            if album is not None:
                track.setdefault("album", album.name)
                track.setdefault("album_artist", album.album_artist)
                track.setdefault("artist_ids", list(album.artist_ids))
            store.add(CatalogItem(kind=ItemKind.TRACK, **track))

        return store

    @classmethod
    def from_yaml(cls, path: str | Path) -> "InMemoryCatalogStore":
        """Load a library file; a missing file yields an empty catalog."""
        store = cls.from_dict(load_yaml_config(path))
        logger.info("Catalog loaded", path=str(path), items=len(store))
        return store

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item: CatalogItem) -> None:
        self._items[item.id] = item

    def get_item(self, item_id: str) -> Optional[CatalogItem]:
        return self._items.get(item_id)

    def _matches(self, item: CatalogItem, query: CatalogQuery) -> bool:
        if item.kind not in query.kinds:
            return False
        if query.parent_id is not None and item.parent_id != query.parent_id:
            return False
        if query.artist_id is not None and query.artist_id not in item.artist_ids:
            return False
        if query.search_term and query.search_term.casefold() not in item.name.casefold():
            return False
        return True

    def query(self, query: CatalogQuery) -> QueryResult:
        matches = [item for item in self._items.values() if self._matches(item, query)]

        # Apply the least significant key first so earlier keys win
        for field, order in reversed(query.order_by):
            matches = _sorted(matches, field, order)

        start = query.start_index
        end = None if query.limit is None else start + query.limit
        return QueryResult(items=matches[start:end], total_count=len(matches))

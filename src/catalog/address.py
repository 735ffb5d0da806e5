"""Catalog addressing.

Every id handed to Sonos is a ``CatalogAddress``: a namespace prefix,
optionally followed by ``:`` and a native catalog id. The prefix alone decides
how the id is browsed, so an id returned in one response can be sent back
verbatim to go one level deeper.
"""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from shared.models import NATIVE_ID_PATTERN, CatalogItem, ItemKind

NATIVE_ID_RE = re.compile(NATIVE_ID_PATTERN)
SEPARATOR = ":"


class AddressKind(str, Enum):
    """Known address prefixes."""
    ROOT = "root"
    ARTISTS = "artists"
    ALBUMS = "albums"
    TRACKS = "tracks"
    SEARCH = "search"
    ARTIST = "artist"
    ALBUM = "album"
    TRACK = "track"


ENTITY_KINDS = {
    AddressKind.ARTIST: ItemKind.ARTIST,
    AddressKind.ALBUM: ItemKind.ALBUM,
    AddressKind.TRACK: ItemKind.TRACK,
}


def is_valid_native_id(native_id: Optional[str]) -> bool:
    return bool(native_id) and NATIVE_ID_RE.match(native_id) is not None


class CatalogAddress(BaseModel):
    """
    Parsed form of an SMAPI id.

    ``prefix`` is kept as sent, even when it is not a known ``AddressKind``,
    so unknown ids can be logged and answered with an empty page.
    """
    model_config = ConfigDict(frozen=True)

    prefix: str
    native_id: Optional[str] = None

    @classmethod
    def parse(cls, value: Optional[str]) -> "CatalogAddress":
        """
        Parse an id sent by the player.

        Empty ids mean root. Text after the first ``:`` must be a valid native id.

        Raises:
            ValueError: If the native id part is empty or malformed
        """
        if not value:
            return cls(prefix=AddressKind.ROOT.value)

        prefix, separator, native_id = value.partition(SEPARATOR)
        if not separator:
            return cls(prefix=prefix)

        if not is_valid_native_id(native_id):
            raise ValueError(f"Malformed catalog id: {value!r}")

        return cls(prefix=prefix, native_id=native_id)

    @classmethod
    def for_item(cls, item: CatalogItem) -> "CatalogAddress":
        """Composite address for a catalog entity, e.g. ``album:{id}``."""
        return cls(prefix=item.kind.value, native_id=item.id)

    @property
    def kind(self) -> Optional[AddressKind]:
        try:
            return AddressKind(self.prefix)
        except ValueError:
            return None

    @property
    def is_root(self) -> bool:
        return self.kind is AddressKind.ROOT

    def require_entity(self, kind: AddressKind) -> str:
        """
        Native id of an entity address of the given kind.

        Raises:
            ValueError: If the address is not ``{kind}:{id}``
        """
        if self.kind is not kind or self.native_id is None:
            raise ValueError(f"Expected a {kind.value} id, got {str(self)!r}")
        return self.native_id

    def __str__(self) -> str:
        if self.native_id is None:
            return self.prefix
        return f"{self.prefix}{SEPARATOR}{self.native_id}"

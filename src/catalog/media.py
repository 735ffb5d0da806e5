"""Media helpers: MIME detection and track file resolution."""

from abc import ABC, abstractmethod
from pathlib import Path, PurePath
from typing import Optional

from pydantic import BaseModel

from shared.logging import get_logger
from shared.models import ItemKind
from catalog.base import CatalogStore

logger = get_logger(__name__)

DEFAULT_MIME_TYPE = "audio/mpeg"

MIME_TYPES = {
    ".mp3": "audio/mpeg",
    ".flac": "audio/flac",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
    ".ogg": "audio/ogg",
    ".wav": "audio/wav",
    ".wma": "audio/x-ms-wma",
}


def guess_mime_type(path: Optional[str]) -> str:
    """MIME type from the file extension, audio/mpeg when unknown."""
    if not path:
        return DEFAULT_MIME_TYPE
    return MIME_TYPES.get(PurePath(path).suffix.lower(), DEFAULT_MIME_TYPE)


class ResolvedMedia(BaseModel):
    path: str
    mime_type: str
    title: str


class MediaResolver(ABC):
    """Native track id → playable file."""

    @abstractmethod
    def resolve(self, track_id: str) -> Optional[ResolvedMedia]:
        """Return the file for a track, or None when it cannot be served."""
        pass


class CatalogMediaResolver(MediaResolver):
    """Serves the ``path`` recorded on catalog tracks from the local filesystem."""

    def __init__(self, store: CatalogStore) -> None:
        self.store = store

    def resolve(self, track_id: str) -> Optional[ResolvedMedia]:
        item = self.store.get_item(track_id)
        if item is None or item.kind is not ItemKind.TRACK:
            logger.warning("Track not found", track_id=track_id)
            return None

        if not item.path or not Path(item.path).is_file():
            logger.warning("Audio file not found", track_id=track_id, path=item.path)
            return None

        return ResolvedMedia(
            path=item.path,
            mime_type=guess_mime_type(item.path),
            title=item.name,
        )

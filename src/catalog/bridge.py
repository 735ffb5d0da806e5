"""Catalog Bridge.

Translates SMAPI browse, search and playback requests into catalog store
queries and back into SMAPI result types.

Rules:
- Root is a fixed virtual collection and needs no credential
- Everything else needs a valid access token; without one the answer is an
  empty page, never an error
- Entities are returned with composite ids (``artist:{id}``, ``album:{id}``,
  ``track:{id}``) that can be browsed directly
- Search returns a single unpaginated page
"""

from typing import Callable, Optional
from urllib.parse import urlencode

from shared.config import BridgeSettings
from shared.logging import get_logger
from shared.models import (
    AppLinkResult,
    AuthorizeAccount,
    BrowsePage,
    CatalogItem,
    CatalogQuery,
    DeviceLink,
    HttpHeader,
    ItemKind,
    MediaCollection,
    MediaMetadata,
    MediaMetadataResult,
    MediaURIResult,
    OAuthPrincipal,
    SortField,
    SortOrder,
)
from oauth_server.tokens import TokenService
from catalog.address import AddressKind, CatalogAddress
from catalog.base import CatalogStore
from catalog.media import guess_mime_type

logger = get_logger(__name__)


ROOT_COLLECTIONS = [
    MediaCollection(id=AddressKind.ARTISTS.value, title="Artists", item_type="collection"),
    MediaCollection(id=AddressKind.ALBUMS.value, title="Albums", item_type="collection"),
    MediaCollection(id=AddressKind.SEARCH.value, title="Search", item_type="search"),
]

SEARCH_KINDS = {
    AddressKind.ARTISTS: ItemKind.ARTIST,
    AddressKind.ALBUMS: ItemKind.ALBUM,
    AddressKind.TRACKS: ItemKind.TRACK,
}

BY_SORT_NAME = [(SortField.SORT_NAME, SortOrder.ASCENDING)]
BY_YEAR_THEN_NAME = [
    (SortField.PRODUCTION_YEAR, SortOrder.DESCENDING),
    (SortField.SORT_NAME, SortOrder.ASCENDING),
]
BY_TRACK_NUMBER = [(SortField.INDEX_NUMBER, SortOrder.ASCENDING)]


class CatalogBridge:
    """
    Answers SMAPI operations from a catalog store.

    Holds no state of its own; the store and token service are injected.
    """

    def __init__(
        self,
        store: CatalogStore,
        tokens: TokenService,
        settings: Optional[BridgeSettings] = None
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.settings = settings or BridgeSettings()

        self._browse_handlers: dict[AddressKind, Callable[[CatalogAddress, int, int], BrowsePage]] = {
            AddressKind.ARTISTS: self._browse_artists,
            AddressKind.ALBUMS: self._browse_albums,
            AddressKind.ARTIST: self._browse_artist,
            AddressKind.ALBUM: self._browse_album,
        }

    # -- helpers ------------------------------------------------------------

    def _authenticate(self, credential: Optional[str], operation: str) -> Optional[OAuthPrincipal]:
        principal = self.tokens.validate_access_token(credential)
        if principal is None:
            logger.warning("No valid user context", operation=operation)
        return principal

    def image_url(self, item_id: str) -> str:
        return self.settings.image_url_template.format(
            base_url=self.settings.base_url,
            item_id=item_id,
        )

    def _artist_collection(self, artist: CatalogItem) -> MediaCollection:
        return MediaCollection(
            id=str(CatalogAddress.for_item(artist)),
            title=artist.name,
            item_type="artist",
            album_art_uri=self.image_url(artist.id),
            can_play=False,
        )

    def _album_collection(self, album: CatalogItem) -> MediaCollection:
        return MediaCollection(
            id=str(CatalogAddress.for_item(album)),
            title=album.name,
            item_type="album",
            artist=album.album_artist,
            album_art_uri=self.image_url(album.id),
            can_play=True,
        )

    def _track_metadata(self, track: CatalogItem) -> MediaMetadata:
        return MediaMetadata(
            id=str(CatalogAddress.for_item(track)),
            title=track.name,
            mime_type=guess_mime_type(track.path),
            item_type="track",
            track_number=track.index_number,
            artist=track.album_artist,
            album=track.album,
            album_art_uri=self.image_url(track.parent_id) if track.parent_id else None,
            duration=track.duration_seconds,
            can_play=True,
        )

    def _to_page(self, items: list[CatalogItem], index: int, total: int) -> BrowsePage:
        collections = [
            self._artist_collection(i) if i.kind is ItemKind.ARTIST else self._album_collection(i)
            for i in items
            if i.kind is not ItemKind.TRACK
        ]
        tracks = [self._track_metadata(i) for i in items if i.kind is ItemKind.TRACK]

        return BrowsePage(
            index=index,
            count=len(items),
            total=total,
            media_collection=collections or None,
            media_metadata=tracks or None,
        )

    # -- getMetadata --------------------------------------------------------

    def root_page(self) -> BrowsePage:
        return BrowsePage(
            index=0,
            count=len(ROOT_COLLECTIONS),
            total=len(ROOT_COLLECTIONS),
            media_collection=[c.model_copy() for c in ROOT_COLLECTIONS],
        )

    def get_metadata(
        self,
        id: str,
        index: int = 0,
        count: int = 100,
        recursive: bool = False,
        credential: Optional[str] = None
    ) -> BrowsePage:
        """
        Browse one node of the library.

        Args:
            id: SMAPI id; empty or ``root`` for the top level
            index: First entry of the window
            count: Maximum entries to return
            recursive: Accepted for protocol compatibility, not used
            credential: Bearer access token

        Returns:
            The requested page; empty when unauthenticated or unrecognized
        """
        logger.debug("getMetadata", id=id, index=index, count=count, recursive=recursive)

        try:
            address = CatalogAddress.parse(id)
        except ValueError as e:
            logger.warning("Unparsable metadata id", id=id, error=str(e))
            return BrowsePage.empty()

        if address.is_root:
            return self.root_page()

        if self._authenticate(credential, "getMetadata") is None:
            return BrowsePage.empty()

        handler = self._browse_handlers.get(address.kind) if address.kind else None
        if handler is None:
            logger.warning("Unknown metadata type", prefix=address.prefix)
            return BrowsePage.empty()

        try:
            return handler(address, index, count)
        except ValueError as e:
            logger.warning("Invalid metadata id", id=id, error=str(e))
            return BrowsePage.empty()

    def _browse_artists(self, address: CatalogAddress, index: int, count: int) -> BrowsePage:
        result = self.store.query(CatalogQuery(
            kinds=[ItemKind.ARTIST],
            start_index=index,
            limit=count,
            order_by=BY_SORT_NAME,
        ))
        return self._to_page(result.items, index, result.total_count)

    def _browse_albums(self, address: CatalogAddress, index: int, count: int) -> BrowsePage:
        result = self.store.query(CatalogQuery(
            kinds=[ItemKind.ALBUM],
            start_index=index,
            limit=count,
            order_by=BY_SORT_NAME,
        ))
        return self._to_page(result.items, index, result.total_count)

    def _browse_artist(self, address: CatalogAddress, index: int, count: int) -> BrowsePage:
        artist_id = address.require_entity(AddressKind.ARTIST)
        result = self.store.query(CatalogQuery(
            kinds=[ItemKind.ALBUM],
            artist_id=artist_id,
            start_index=index,
            limit=count,
            order_by=BY_YEAR_THEN_NAME,
        ))
        return self._to_page(result.items, index, result.total_count)

    def _browse_album(self, address: CatalogAddress, index: int, count: int) -> BrowsePage:
        # Albums are short; the whole track list is returned regardless of the window
        album_id = address.require_entity(AddressKind.ALBUM)
        result = self.store.query(CatalogQuery(
            kinds=[ItemKind.TRACK],
            parent_id=album_id,
            order_by=BY_TRACK_NUMBER,
        ))
        return self._to_page(result.items, 0, len(result.items))

    # -- search -------------------------------------------------------------

    def search(
        self,
        id: str,
        term: str,
        index: int = 0,
        count: int = 100,
        credential: Optional[str] = None
    ) -> BrowsePage:
        """
        Search one category (``artists``, ``albums`` or ``tracks``).

        Results are always a single page starting at 0 whose total equals the
        number of items returned; ``index`` is ignored.
        """
        logger.debug("search", id=id, term=term, count=count)

        if self._authenticate(credential, "search") is None:
            return BrowsePage.empty()

        try:
            kind = SEARCH_KINDS.get(AddressKind(id))
        except ValueError:
            kind = None

        if kind is None:
            logger.warning("Unknown search type", id=id)
            return BrowsePage.empty()

        result = self.store.query(CatalogQuery(
            kinds=[kind],
            search_term=term,
            limit=count,
        ))
        return self._to_page(result.items, 0, len(result.items))

    # -- playback -----------------------------------------------------------

    def get_media_metadata(self, id: str, credential: Optional[str] = None) -> MediaMetadataResult:
        """Metadata for a single ``track:{id}``; empty when unavailable."""
        try:
            track_id = CatalogAddress.parse(id).require_entity(AddressKind.TRACK)
        except ValueError as e:
            logger.warning("Invalid track id", id=id, error=str(e))
            return MediaMetadataResult()

        if self._authenticate(credential, "getMediaMetadata") is None:
            return MediaMetadataResult()

        track = self.store.get_item(track_id)
        if track is None or track.kind is not ItemKind.TRACK:
            logger.info("Track not found", track_id=track_id)
            return MediaMetadataResult()

        return MediaMetadataResult(media_metadata=self._track_metadata(track))

    def stream_url(self, track_id: str) -> str:
        return f"{self.settings.base_url}/sonos/stream/{track_id}"

    def get_media_uri(self, id: str, credential: Optional[str] = None) -> MediaURIResult:
        """
        Streaming URL for ``track:{id}``.

        When the request carried a credential, the player is told to send it
        back as a bearer header on the stream fetch.
        """
        try:
            track_id = CatalogAddress.parse(id).require_entity(AddressKind.TRACK)
        except ValueError as e:
            logger.warning("Invalid track id", id=id, error=str(e))
            return MediaURIResult()

        headers = []
        if credential:
            headers.append(HttpHeader(header="Authorization", value=f"Bearer {credential}"))

        return MediaURIResult(media_uri=self.stream_url(track_id), http_headers=headers)

    # -- account ------------------------------------------------------------

    def authorize_url(self) -> str:
        query = urlencode({
            "response_type": "code",
            "client_id": str(self.settings.service_id),
        })
        return f"{self.settings.base_url}/sonos/oauth/authorize?{query}"

    def get_app_link(self, household_id: str) -> AppLinkResult:
        """Point the Sonos app at the OAuth sign-in page."""
        logger.info("App link requested", household_id=household_id)
        return AppLinkResult(
            authorize_account=AuthorizeAccount(
                app_url_string_id="AppLinkMessage",
                device_link=DeviceLink(reg_url=self.authorize_url(), show_link_code=False),
            )
        )

    def report_account_action(self, type: str) -> None:
        logger.info("Account action", type=type)

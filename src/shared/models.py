"""Core data models for the SMAPI bridge.

This module defines the shared data structures: catalog items and queries,
OAuth records, SMAPI result types, and audit entries.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


# Characters a native catalog id may use; anything else cannot be addressed
NATIVE_ID_PATTERN = r"^[A-Za-z0-9._-]+$"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class ItemKind(str, Enum):
    """Kind of a catalog entity."""
    ARTIST = "artist"
    ALBUM = "album"
    TRACK = "track"


class SortField(str, Enum):
    """Fields the catalog store can order by."""
    SORT_NAME = "sort_name"
    PRODUCTION_YEAR = "production_year"
    INDEX_NUMBER = "index_number"


class SortOrder(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


class CatalogItem(BaseModel):
    """A single artist, album or track as the catalog store sees it."""
    id: str = Field(..., pattern=NATIVE_ID_PATTERN, description="Native id, opaque to the bridge")
    kind: ItemKind
    name: str
    sort_name: Optional[str] = None

    artist_ids: list[str] = Field(default_factory=list)
    album_artist: Optional[str] = None
    album: Optional[str] = None
    parent_id: Optional[str] = Field(default=None, description="Album id for tracks")

    index_number: Optional[int] = None
    production_year: Optional[int] = None
    duration_seconds: Optional[int] = None
    path: Optional[str] = None

    @property
    def effective_sort_name(self) -> str:
        return (self.sort_name or self.name).casefold()


class CatalogQuery(BaseModel):
    """
    Query sent to the catalog store.

    Filters are combined with AND. ``limit`` of None means no paging.
    """
    kinds: list[ItemKind]
    parent_id: Optional[str] = None
    artist_id: Optional[str] = None
    search_term: Optional[str] = None
    start_index: int = Field(default=0, ge=0)
    limit: Optional[int] = Field(default=None, ge=0)
    order_by: list[tuple[SortField, SortOrder]] = Field(default_factory=list)


class QueryResult(BaseModel):
    """Items for the requested window plus the full count at that node."""
    items: list[CatalogItem] = Field(default_factory=list)
    total_count: int = 0


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------

class UserIdentity(BaseModel):
    """A user as resolved by the user directory."""
    user_id: str
    username: str


class AuthorizationCode(BaseModel):
    """Pending authorization code, consumed exactly once."""
    code: str
    user_id: str
    username: str
    client_id: str
    redirect_uri: str
    code_challenge: Optional[str] = None
    code_challenge_method: str = "plain"
    scope: Optional[str] = Field(default=None, description="Scope consented to at sign-in")
    expires_at: datetime


class RefreshTokenRecord(BaseModel):
    """Server-side state for an opaque refresh token."""
    token: str
    user_id: str
    username: str
    scope: str = "smapi"
    expires_at: datetime


class AccessTokenResult(BaseModel):
    token: str
    expires_at: datetime
    expires_in: int
    scope: str


class RefreshTokenResult(BaseModel):
    token: str
    expires_at: datetime
    scope: str


class OAuthPrincipal(BaseModel):
    """Identity recovered from a valid access token."""
    user_id: str
    username: str
    scope: str
    expires_at: datetime


class TokenResponse(BaseModel):
    """Body of a successful token endpoint call."""
    token_type: str = "Bearer"
    access_token: str
    expires_in: int
    refresh_token: str
    scope: str


# ---------------------------------------------------------------------------
# SMAPI results
# ---------------------------------------------------------------------------

class MediaCollection(BaseModel):
    """Browsable container: root entries, artists, albums."""
    id: str
    title: str
    item_type: str = "collection"
    artist: Optional[str] = None
    album_art_uri: Optional[str] = None
    can_play: bool = False


class MediaMetadata(BaseModel):
    """Playable leaf entity (track)."""
    id: str
    title: str
    mime_type: str = "audio/mpeg"
    item_type: str = "track"
    track_number: Optional[int] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    album_art_uri: Optional[str] = None
    duration: Optional[int] = None
    can_play: bool = True


class BrowsePage(BaseModel):
    """
    One window of a browse or search result.

    ``count`` is the number of entries returned, ``total`` the size of the
    whole node.
    """
    index: int = 0
    count: int = 0
    total: int = 0
    media_collection: Optional[list[MediaCollection]] = None
    media_metadata: Optional[list[MediaMetadata]] = None

    @classmethod
    def empty(cls) -> "BrowsePage":
        return cls(index=0, count=0, total=0)


class MediaMetadataResult(BaseModel):
    media_metadata: Optional[MediaMetadata] = None


class HttpHeader(BaseModel):
    header: str
    value: str


class MediaURIResult(BaseModel):
    media_uri: Optional[str] = None
    http_headers: list[HttpHeader] = Field(default_factory=list)


class DeviceLink(BaseModel):
    reg_url: str
    link_code: Optional[str] = None
    show_link_code: bool = False


class AuthorizeAccount(BaseModel):
    app_url_string_id: str = "AppLinkMessage"
    device_link: Optional[DeviceLink] = None


class AppLinkResult(BaseModel):
    authorize_account: Optional[AuthorizeAccount] = None


# ---------------------------------------------------------------------------
# Protocol plumbing
# ---------------------------------------------------------------------------

class SmapiRequest(BaseModel):
    """A parsed SOAP request: operation, raw parameter text and credential."""
    operation: str
    parameters: dict[str, str] = Field(default_factory=dict)
    credential: Optional[str] = None


class OperationDefinition(BaseModel):
    """
    Declarative description of one SMAPI operation.

    ``defaults`` fill in missing optional parameters before the typed values
    are validated against ``input_schema``.
    """
    name: str
    description: str
    input_schema: dict[str, Any] = Field(default_factory=dict)
    defaults: dict[str, Any] = Field(default_factory=dict)
    deprecated: bool = False


class AuditStatus(str, Enum):
    SUCCESS = "success"
    CLIENT_FAULT = "client_fault"
    SERVER_FAULT = "server_fault"
    UNSUPPORTED = "unsupported"


class AuditEntry(BaseModel):
    """
    Audit log entry for a dispatched SMAPI call.

    Parameters are stored with credentials redacted.
    """
    id: str
    timestamp: datetime = Field(default_factory=utcnow)
    request_id: str

    operation: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    credential_present: bool = False

    status: AuditStatus
    error: Optional[str] = None
    execution_time_ms: float = 0

"""SMAPI Bridge - FastAPI Application.

Serves the Sonos music service endpoints: the SOAP SMAPI endpoint, the OAuth
account link, audio streaming and the customization documents.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, PlainTextResponse, Response
from pydantic import BaseModel

from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging
from shared.models import utcnow
from catalog.address import is_valid_native_id
from catalog.base import CatalogStore
from catalog.bridge import CatalogBridge
from catalog.media import CatalogMediaResolver, MediaResolver
from catalog.memory import InMemoryCatalogStore
from oauth_server.endpoints import OAuthError, oauth_error_handler, router as oauth_router
from oauth_server.tokens import TokenService
from oauth_server.users import InMemoryUserDirectory, UserDirectory
from smapi_server.audit import AuditLogger
from smapi_server.dispatcher import SmapiDispatcher
from smapi_server.envelope import extract_bearer_token
from smapi_server.registry import build_default_registry
from smapi_server.resources import presentation_map_xml, strings_xml

logger = get_logger(__name__)

VERSION = "0.1.0"


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    service_name: str
    operations: list[str]


def get_dispatcher(request: Request) -> SmapiDispatcher:
    return request.app.state.dispatcher


def get_media_resolver(request: Request) -> MediaResolver:
    return request.app.state.media_resolver


def get_tokens(request: Request) -> TokenService:
    return request.app.state.token_service


def create_app(
    settings: Optional[Settings] = None,
    *,
    user_directory: Optional[UserDirectory] = None,
    catalog_store: Optional[CatalogStore] = None,
    media_resolver: Optional[MediaResolver] = None,
    clock: Callable[[], datetime] = utcnow
) -> FastAPI:
    """
    Build the application.

    Collaborators not passed in are loaded from the paths in ``settings``.
    """
    settings = settings or get_settings()

    if user_directory is None:
        user_directory = InMemoryUserDirectory.from_yaml(settings.server.users_path)
    if catalog_store is None:
        catalog_store = InMemoryCatalogStore.from_yaml(settings.server.library_path)
    if media_resolver is None:
        media_resolver = CatalogMediaResolver(catalog_store)

    token_service = TokenService(
        secret_key=settings.bridge.secret_key,
        settings=settings.oauth,
        clock=clock,
    )
    bridge = CatalogBridge(catalog_store, token_service, settings.bridge)
    audit_logger = AuditLogger(
        log_path=settings.server.audit_log_path,
        enabled=settings.server.enable_audit,
    )
    dispatcher = SmapiDispatcher(
        bridge=bridge,
        registry=build_default_registry(),
        audit_logger=audit_logger,
        timeout_seconds=settings.bridge.request_timeout_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        setup_logging(settings.log_level, json_output=settings.environment == "production")
        logger.info(
            "SMAPI bridge started",
            service_name=settings.bridge.service_name,
            external_url=settings.bridge.base_url,
            operations=dispatcher.operations,
        )

        yield

        logger.info("Shutting down SMAPI bridge")
        await audit_logger.flush()

    app = FastAPI(
        title="SMAPI Bridge",
        description="Sonos music service bridge for a media library",
        version=VERSION,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.token_service = token_service
    app.state.user_directory = user_directory
    app.state.bridge = bridge
    app.state.dispatcher = dispatcher
    app.state.audit_logger = audit_logger
    app.state.media_resolver = media_resolver

    app.add_exception_handler(OAuthError, oauth_error_handler)
    app.include_router(oauth_router)

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            version=VERSION,
            service_name=settings.bridge.service_name,
            operations=dispatcher.operations,
        )

    @app.post("/sonos/smapi", tags=["SMAPI"])
    async def smapi(
        request: Request,
        authorization: Optional[str] = Header(default=None),
        smapi_dispatcher: SmapiDispatcher = Depends(get_dispatcher)
    ):
        """
        SOAP endpoint for every SMAPI operation.

        Faults are returned as SOAP envelopes; unknown operations as plain text.
        """
        body = await request.body()
        result = await smapi_dispatcher.dispatch(body, authorization)
        return Response(
            content=result.content,
            status_code=result.status_code,
            media_type=result.media_type,
        )

    @app.get("/sonos/strings.xml", tags=["Sonos"])
    async def sonos_strings():
        return Response(content=strings_xml(settings.bridge.service_name), media_type="application/xml")

    @app.get("/sonos/presentationMap.xml", tags=["Sonos"])
    async def sonos_presentation_map():
        return Response(content=presentation_map_xml(), media_type="application/xml")

    @app.get("/sonos/stream/{track_id}", tags=["Sonos"])
    async def stream(
        track_id: str,
        authorization: Optional[str] = Header(default=None),
        access_token: Optional[str] = Query(default=None),
        tokens: TokenService = Depends(get_tokens),
        resolver: MediaResolver = Depends(get_media_resolver)
    ):
        """
        Serve the audio file for a track.

        The access token comes from the bearer header, or the ``access_token``
        query parameter when the header is absent.
        """
        credential = extract_bearer_token(authorization) or access_token
        principal = tokens.validate_access_token(credential)
        if principal is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Valid access token required",
                headers={"WWW-Authenticate": "Bearer"},
            )

        if not is_valid_native_id(track_id):
            logger.warning("Invalid track id", track_id=track_id)
            return PlainTextResponse("Invalid track ID", status_code=status.HTTP_400_BAD_REQUEST)

        media = resolver.resolve(track_id)
        if media is None:
            return PlainTextResponse("Track not found", status_code=status.HTTP_404_NOT_FOUND)

        logger.info(
            "Streaming track",
            track_id=track_id,
            user=principal.username
        )
        return FileResponse(media.path, media_type=media.mime_type)

    return app


def main():
    """Run the SMAPI bridge."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "smapi_server.main:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.environment == "development"
    )


if __name__ == "__main__":
    main()

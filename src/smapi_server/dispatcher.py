"""SOAP Dispatcher for the SMAPI server.

Routes parsed SOAP calls to the catalog bridge.
Handles parameter validation, the per-request deadline, fault mapping
and auditing.
"""

import asyncio
import time
import uuid
from typing import Any, Callable, Optional
from xml.etree.ElementTree import Element

from pydantic import BaseModel

from shared.logging import bind_context, clear_context, get_logger
from shared.models import AuditStatus, SmapiRequest
from catalog.bridge import CatalogBridge
from smapi_server.audit import AuditLogger
from smapi_server.envelope import (
    ClientProtocolError,
    SmapiFault,
    UnsupportedOperation,
    app_link_elements,
    browse_page_element,
    build_fault,
    build_response,
    media_metadata_result_elements,
    media_uri_elements,
    parse_request,
)
from smapi_server.registry import OperationRegistry, build_default_registry

logger = get_logger(__name__)

XML_MEDIA_TYPE = "text/xml; charset=utf-8"

DEVICE_AUTH_MESSAGE = (
    "OAuth is used for this service. Tokens are issued via /sonos/oauth/token."
)
INTERNAL_ERROR_MESSAGE = "Internal server error"
TIMEOUT_MESSAGE = "Request timed out"


# Handlers take validated parameters and the caller's credential and return
# the children of the ``{operation}Response`` element.
OperationHandler = Callable[[dict[str, Any], Optional[str]], list[Element]]


class SmapiResponse(BaseModel):
    """What the HTTP layer sends back for one SOAP POST."""
    status_code: int = 200
    content: str
    media_type: str = XML_MEDIA_TYPE


class SmapiDispatcher:
    """
    Dispatches SOAP calls to bridge operations.

    Responsibilities:
    - Parse the envelope and resolve the operation
    - Validate parameters against the operation registry
    - Run the bridge call under a deadline
    - Map failures to SOAP faults
    - Audit every call
    """

    def __init__(
        self,
        bridge: CatalogBridge,
        registry: Optional[OperationRegistry] = None,
        audit_logger: Optional[AuditLogger] = None,
        timeout_seconds: float = 10.0
    ) -> None:
        self.bridge = bridge
        self.registry = registry or build_default_registry()
        self.audit_logger = audit_logger or AuditLogger(enabled=False)
        self.timeout_seconds = timeout_seconds

        self._handlers: dict[str, OperationHandler] = {
            "getAppLink": self._get_app_link,
            "getMetadata": self._get_metadata,
            "getMediaMetadata": self._get_media_metadata,
            "getMediaURI": self._get_media_uri,
            "search": self._search,
            "reportAccountAction": self._report_account_action,
        }

    @property
    def operations(self) -> list[str]:
        return [o.name for o in self.registry.list_operations() if o.name in self._handlers]

    # -- handlers -----------------------------------------------------------

    def _get_app_link(self, params: dict[str, Any], credential: Optional[str]) -> list[Element]:
        return app_link_elements(self.bridge.get_app_link(params["householdId"]))

    def _get_metadata(self, params: dict[str, Any], credential: Optional[str]) -> list[Element]:
        page = self.bridge.get_metadata(
            params["id"],
            index=params["index"],
            count=params["count"],
            recursive=params.get("recursive", False),
            credential=credential,
        )
        return [browse_page_element(page, "getMetadataResult")]

    def _get_media_metadata(self, params: dict[str, Any], credential: Optional[str]) -> list[Element]:
        return media_metadata_result_elements(
            self.bridge.get_media_metadata(params["id"], credential=credential)
        )

    def _get_media_uri(self, params: dict[str, Any], credential: Optional[str]) -> list[Element]:
        return media_uri_elements(self.bridge.get_media_uri(params["id"], credential=credential))

    def _search(self, params: dict[str, Any], credential: Optional[str]) -> list[Element]:
        page = self.bridge.search(
            params["id"],
            params["term"],
            index=params["index"],
            count=params["count"],
            credential=credential,
        )
        return [browse_page_element(page, "searchResult")]

    def _report_account_action(self, params: dict[str, Any], credential: Optional[str]) -> list[Element]:
        self.bridge.report_account_action(params["type"])
        return []

    # -- dispatch -----------------------------------------------------------

    def _resolve(self, request: SmapiRequest) -> OperationHandler:
        operation = self.registry.get(request.operation)
        if operation is None:
            raise UnsupportedOperation(request.operation)

        if operation.deprecated:
            raise ClientProtocolError(DEVICE_AUTH_MESSAGE)

        handler = self._handlers.get(operation.name)
        if handler is None:
            raise UnsupportedOperation(request.operation)
        return handler

    async def dispatch(self, body: bytes | str, authorization: Optional[str] = None) -> SmapiResponse:
        """
        Handle one SOAP POST.

        Args:
            body: Raw request body
            authorization: Value of the HTTP ``Authorization`` header

        Returns:
            Status, body and media type for the HTTP response
        """
        start_time = time.time()
        request_id = str(uuid.uuid4())
        bind_context(request_id=request_id)

        request: Optional[SmapiRequest] = None
        error: Optional[str] = None

        try:
            request = parse_request(body, authorization)
            bind_context(operation=request.operation)
            logger.debug(
                "SOAP request",
                operation=request.operation,
                authenticated=request.credential is not None
            )

            handler = self._resolve(request)
            params = self.registry.prepare_parameters(request.operation, request.parameters)

            children = await asyncio.wait_for(
                asyncio.to_thread(handler, params, request.credential),
                timeout=self.timeout_seconds,
            )
            response = SmapiResponse(content=build_response(request.operation, children))
            status = AuditStatus.SUCCESS

        except UnsupportedOperation as e:
            logger.warning("Unsupported SOAP operation", operation=e.operation)
            error = str(e)
            response = SmapiResponse(status_code=400, content=error, media_type="text/plain")
            status = AuditStatus.UNSUPPORTED

        except SmapiFault as e:
            logger.warning("SOAP fault", fault_code=e.fault_code, error=e.message)
            error = e.message
            response = SmapiResponse(
                status_code=e.status_code,
                content=build_fault(e.fault_code, e.message),
            )
            status = (
                AuditStatus.CLIENT_FAULT if isinstance(e, ClientProtocolError)
                else AuditStatus.SERVER_FAULT
            )

        except asyncio.TimeoutError:
            logger.error("SOAP request timed out", timeout_seconds=self.timeout_seconds)
            error = TIMEOUT_MESSAGE
            response = SmapiResponse(status_code=500, content=build_fault("Server", TIMEOUT_MESSAGE))
            status = AuditStatus.SERVER_FAULT

        except Exception as e:
            logger.error("SOAP request failed", error=str(e), exc_info=True)
            error = str(e)
            response = SmapiResponse(
                status_code=500,
                content=build_fault("Server", INTERNAL_ERROR_MESSAGE),
            )
            status = AuditStatus.SERVER_FAULT

        try:
            await self.audit_logger.record(
                request_id,
                request,
                status,
                error,
                (time.time() - start_time) * 1000,
            )
        finally:
            clear_context()

        return response

"""SOAP envelope handling for SMAPI.

Parses an inbound envelope into a ``SmapiRequest`` and renders typed results
back into ``<ns:{operation}Response>`` envelopes or SOAP faults. Optional
fields that are absent are left out of the response entirely.
"""

from typing import Optional
from xml.etree import ElementTree
from xml.etree.ElementTree import Element, SubElement

from shared.models import (
    AppLinkResult,
    BrowsePage,
    MediaCollection,
    MediaMetadata,
    MediaMetadataResult,
    MediaURIResult,
    SmapiRequest,
)

SOAP_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SONOS_NS = "http://www.sonos.com/Services/1.1"
XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>\n'

ElementTree.register_namespace("soap", SOAP_NS)
ElementTree.register_namespace("ns", SONOS_NS)


class SmapiFault(Exception):
    """A failure reported to the player as a SOAP fault."""

    fault_code = "Server"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ClientProtocolError(SmapiFault):
    """Malformed envelope, bad parameter shape, or a rejected operation."""

    fault_code = "Client"
    status_code = 400


class UnsupportedOperation(Exception):
    """The Body names an operation this service does not implement."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"Unsupported method: {operation}")
        self.operation = operation


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def local_name(tag: str) -> str:
    """Tag without its ``{namespace}`` part."""
    return tag.rsplit("}", 1)[-1]


def _find_child(parent: Element, name: str) -> Optional[Element]:
    for child in parent:
        if local_name(child.tag) == name:
            return child
    return None


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Token from an ``Authorization: Bearer ...`` header value."""
    if not authorization or not authorization.strip():
        return None

    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def extract_header_token(header: Optional[Element]) -> Optional[str]:
    """
    Token from the SOAP header.

    Looks for ``credentials/loginToken/token`` first, then any ``authToken``.
    """
    if header is None:
        return None

    for element in header.iter():
        if local_name(element.tag) == "loginToken":
            token = _find_child(element, "token")
            if token is not None and token.text and token.text.strip():
                return token.text.strip()

    for element in header.iter():
        if local_name(element.tag) == "authToken" and element.text and element.text.strip():
            return element.text.strip()

    return None


def parse_request(body: bytes | str, authorization: Optional[str] = None) -> SmapiRequest:
    """
    Parse a SOAP request.

    The HTTP bearer token, when present, wins over any header credential.

    Raises:
        ClientProtocolError: If the XML is malformed or has no operation
    """
    try:
        root = ElementTree.fromstring(body)
    except ElementTree.ParseError as e:
        raise ClientProtocolError(f"Invalid SOAP request: {e}") from e

    if local_name(root.tag) != "Envelope":
        raise ClientProtocolError("Invalid SOAP request: missing Envelope")

    soap_body = _find_child(root, "Body")
    if soap_body is None or len(soap_body) == 0:
        raise ClientProtocolError("Invalid SOAP request: empty Body")

    operation = soap_body[0]
    parameters = {
        local_name(child.tag): (child.text or "").strip()
        for child in operation
    }

    credential = (
        extract_bearer_token(authorization)
        or extract_header_token(_find_child(root, "Header"))
    )

    return SmapiRequest(
        operation=local_name(operation.tag),
        parameters=parameters,
        credential=credential,
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _soap(name: str) -> str:
    return f"{{{SOAP_NS}}}{name}"


def _ns(name: str) -> str:
    return f"{{{SONOS_NS}}}{name}"


def _bool(value: bool) -> str:
    return "true" if value else "false"


def _text(parent: Element, name: str, value: object) -> None:
    """Append ``<ns:name>value</ns:name>`` unless value is None."""
    if value is None:
        return
    if isinstance(value, bool):
        value = _bool(value)
    SubElement(parent, _ns(name)).text = str(value)


def _envelope() -> tuple[Element, Element]:
    envelope = Element(_soap("Envelope"))
    body = SubElement(envelope, _soap("Body"))
    return envelope, body


def _render(envelope: Element) -> str:
    return XML_DECLARATION + ElementTree.tostring(envelope, encoding="unicode")


def build_response(operation: str, children: list[Element]) -> str:
    """Wrap result elements in ``<ns:{operation}Response>``."""
    envelope, body = _envelope()
    response = SubElement(body, _ns(f"{operation}Response"))
    response.extend(children)
    return _render(envelope)


def build_fault(fault_code: str, fault_string: str) -> str:
    envelope, body = _envelope()
    fault = SubElement(body, _soap("Fault"))
    SubElement(fault, "faultcode").text = f"soap:{fault_code}"
    SubElement(fault, "faultstring").text = fault_string
    return _render(envelope)


def media_collection_element(collection: MediaCollection) -> Element:
    element = Element(_ns("mediaCollection"))
    _text(element, "id", collection.id)
    _text(element, "itemType", collection.item_type)
    _text(element, "title", collection.title)
    _text(element, "artist", collection.artist)
    _text(element, "albumArtURI", collection.album_art_uri)
    _text(element, "canPlay", collection.can_play)
    return element


def media_metadata_element(metadata: MediaMetadata) -> Element:
    element = Element(_ns("mediaMetadata"))
    _text(element, "id", metadata.id)
    _text(element, "itemType", metadata.item_type)
    _text(element, "title", metadata.title)
    _text(element, "mimeType", metadata.mime_type)

    track = SubElement(element, _ns("trackMetadata"))
    _text(track, "artist", metadata.artist)
    _text(track, "album", metadata.album)
    _text(track, "duration", metadata.duration)
    _text(track, "albumArtURI", metadata.album_art_uri)
    _text(track, "trackNumber", metadata.track_number)
    _text(track, "canPlay", metadata.can_play)
    return element


def browse_page_element(page: BrowsePage, result_name: str) -> Element:
    """``getMetadataResult`` / ``searchResult``: window counters then entries."""
    element = Element(_ns(result_name))
    _text(element, "index", page.index)
    _text(element, "count", page.count)
    _text(element, "total", page.total)

    for collection in page.media_collection or []:
        element.append(media_collection_element(collection))
    for metadata in page.media_metadata or []:
        element.append(media_metadata_element(metadata))
    return element


def media_metadata_result_elements(result: MediaMetadataResult) -> list[Element]:
    element = Element(_ns("getMediaMetadataResult"))
    if result.media_metadata is not None:
        element.append(media_metadata_element(result.media_metadata))
    return [element]


def media_uri_elements(result: MediaURIResult) -> list[Element]:
    """``getMediaURIResult`` plus an optional sibling ``httpHeaders`` block."""
    if result.media_uri is None:
        return []

    elements = []
    uri = Element(_ns("getMediaURIResult"))
    uri.text = result.media_uri
    elements.append(uri)

    if result.http_headers:
        headers = Element(_ns("httpHeaders"))
        for item in result.http_headers:
            header = SubElement(headers, _ns("httpHeader"))
            _text(header, "header", item.header)
            _text(header, "value", item.value)
        elements.append(headers)

    return elements


def app_link_elements(result: AppLinkResult) -> list[Element]:
    element = Element(_ns("getAppLinkResult"))
    account = result.authorize_account
    if account is not None:
        authorize = SubElement(element, _ns("authorizeAccount"))
        _text(authorize, "appUrlStringId", account.app_url_string_id)
        if account.device_link is not None:
            link = SubElement(authorize, _ns("deviceLink"))
            _text(link, "regUrl", account.device_link.reg_url)
            _text(link, "linkCode", account.device_link.link_code)
            _text(link, "showLinkCode", account.device_link.show_link_code)
    return [element]

"""SMAPI Server - SOAP endpoint, operation registry and dispatch.

Parses Sonos SOAP envelopes, validates parameters against the operation
registry, runs the catalog bridge and renders responses or faults.
"""

from smapi_server.audit import AuditLogger
from smapi_server.dispatcher import SmapiDispatcher, SmapiResponse
from smapi_server.registry import OperationRegistry, build_default_registry

__all__ = [
    "AuditLogger",
    "SmapiDispatcher",
    "SmapiResponse",
    "OperationRegistry",
    "build_default_registry",
]

"""Catalog - addressing, store interface and the SMAPI catalog bridge.

The bridge is stateless: every call becomes a query against an injected
catalog store.
"""

from catalog.address import AddressKind, CatalogAddress
from catalog.base import CatalogStore
from catalog.bridge import CatalogBridge
from catalog.memory import InMemoryCatalogStore

__all__ = [
    "AddressKind",
    "CatalogAddress",
    "CatalogStore",
    "CatalogBridge",
    "InMemoryCatalogStore",
]

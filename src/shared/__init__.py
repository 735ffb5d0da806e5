"""Shared configuration, logging and models for the SMAPI bridge."""

from shared.models import (
    AuditEntry,
    BrowsePage,
    CatalogItem,
    CatalogQuery,
    OAuthPrincipal,
    QueryResult,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "AuditEntry",
    "BrowsePage",
    "CatalogItem",
    "CatalogQuery",
    "OAuthPrincipal",
    "QueryResult",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]

"""Read-only catalog access."""

from tourquote.catalog.repository import CatalogLookup, SqlCatalogLookup

__all__ = ["CatalogLookup", "SqlCatalogLookup"]

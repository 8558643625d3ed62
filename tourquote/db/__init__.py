"""Database layer for tourquote with async SQLAlchemy."""

from tourquote.db.connection import get_session, init_db
from tourquote.db.models import (
    Base,
    CatalogItemModel,
    ChatSessionModel,
    EstimateModel,
    GenerationSettingsModel,
    ReferenceRecordModel,
)

__all__ = [
    "Base",
    "CatalogItemModel",
    "ChatSessionModel",
    "EstimateModel",
    "GenerationSettingsModel",
    "ReferenceRecordModel",
    "get_session",
    "init_db",
]

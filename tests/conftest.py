"""Pytest configuration and fixtures for tourquote tests.

Provides environment setup, a file-backed SQLite database per test and a
seeded catalog.
"""

from __future__ import annotations

import os
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from tourquote.config import reset_config  # noqa: E402
from tourquote.db.connection import make_session_scope  # noqa: E402
from tourquote.db.models import Base, CatalogItemModel, ChatSessionModel  # noqa: E402


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Deterministic configuration: no API keys, notifications off."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("NOTIFICATIONS_ENABLED", "false")
    reset_config()
    yield
    reset_config()


@pytest_asyncio.fixture()
async def engine(tmp_path):
    """File-backed SQLite so concurrent sessions use separate connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tourquote.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def session_scope(session_factory):
    return make_session_scope(session_factory)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


CATALOG_ROWS: list[dict[str, Any]] = [
    {
        "name_en": "Gyeongbokgung Palace",
        "name_local": "경복궁",
        "region": "seoul",
        "price": Decimal("3000"),
        "categories": ["history", "palace"],
    },
    {
        "name_en": "Bukchon Hanok Village",
        "name_local": "북촌한옥마을",
        "region": "seoul",
        "price": Decimal("0"),
        "categories": ["culture", "history"],
    },
    {
        "name_en": "N Seoul Tower",
        "name_local": "N서울타워",
        "region": "서울",
        "price": Decimal("16000"),
        "categories": ["view"],
    },
    {
        "name_en": "Haeundae Beach",
        "name_local": "해운대해수욕장",
        "region": "busan",
        "price": Decimal("0"),
        "categories": ["beach"],
    },
    {
        "name_en": "Myeongdong Street Food Alley",
        "name_local": "명동 먹자골목",
        "region": None,
        "price": Decimal("20000"),
        "categories": ["food", "shopping"],
    },
    {
        "name_en": "Secret Garden Night Tour",
        "name_local": "창덕궁 달빛기행",
        "region": "seoul",
        "price": Decimal("30000"),
        "categories": ["history"],
        "ai_enabled": False,
    },
    {
        "name_en": "Gwangjang Market",
        "name_local": "광장시장",
        "region": "seoul",
        "price": Decimal("15000"),
        "categories": ["food", "market"],
    },
]


@pytest_asyncio.fixture()
async def catalog(session_scope) -> dict[str, int]:
    """Seed the catalog; returns English name -> id."""
    async with session_scope() as session:
        rows = [CatalogItemModel(**row) for row in CATALOG_ROWS]
        session.add_all(rows)
        await session.flush()
        return {row.name_en: row.id for row in rows}


@pytest.fixture
def make_chat_session(session_scope):
    """Factory creating a chat session with survey answers."""

    async def _make(
        survey: dict[str, Any] | None = None,
        customer_name: str | None = "Kim",
        customer_email: str | None = "kim@example.com",
        user_id: str | None = None,
    ) -> str:
        async with session_scope() as session:
            chat = ChatSessionModel(
                survey=survey or {"region": "seoul", "days": 3, "adults": 2},
                customer_name=customer_name,
                customer_email=customer_email,
                user_id=user_id,
            )
            session.add(chat)
            await session.flush()
            return chat.id

    return _make


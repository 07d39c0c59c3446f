"""Shared fixtures: an in-memory SQLite database and small factories."""

from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pricescan.db.models import Base
from pricescan.db.repository import SqlAlchemyRepository
from pricescan.domain import NormalizedProduct, PriceScrapingSource, SourceConfig, Supplier


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def repository(session_factory):
    return SqlAlchemyRepository(session_factory)


@pytest.fixture
async def supplier(repository):
    return await repository.create_supplier(Supplier(name="Parfum Groothandel"))


@pytest.fixture
async def products(repository, supplier):
    return await repository.save_products(
        supplier.id,
        [
            NormalizedProduct(
                brand="Chanel",
                product_name="No 5 Eau De Parfum",
                variant_size="100ml",
                wholesale_price=Decimal("80.00"),
                currency="EUR",
            ),
            NormalizedProduct(
                brand="Dior",
                product_name="Sauvage Eau De Toilette",
                variant_size="60ml",
                wholesale_price=Decimal("55.00"),
                currency="EUR",
            ),
        ],
    )


@pytest.fixture
async def source(repository):
    return await repository.create_source(
        PriceScrapingSource(
            id="src-bol",
            name="Bol.com",
            base_url="https://www.bol.com",
            country="NL",
            priority=2,
            config=SourceConfig(delay_ms=0),
        )
    )


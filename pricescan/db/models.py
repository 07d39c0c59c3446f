"""SQLAlchemy database models."""

from datetime import date as date_type, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from pricescan.domain import new_id

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Supplier(Base):
    """Wholesale supplier whose price lists are imported."""

    __tablename__ = "suppliers"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    country: Mapped[str] = mapped_column(String(8), default="NL", nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="EUR", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    products: Mapped[list["NormalizedProduct"]] = relationship(
        "NormalizedProduct", back_populates="supplier", cascade="all, delete-orphan"
    )


class NormalizedProduct(Base):
    """Canonical supplier product produced by the import normalizer."""

    __tablename__ = "normalized_products"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    supplier_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    brand: Mapped[str] = mapped_column(String(255), nullable=False)
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    variant_size: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    ean: Mapped[Optional[str]] = mapped_column(String(14), nullable=True, index=True)
    wholesale_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="EUR", nullable=False)
    pack_size: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    supplier_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    last_purchase_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    availability: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    import_session_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    supplier: Mapped["Supplier"] = relationship("Supplier", back_populates="products")
    results: Mapped[list["PriceScrapingResult"]] = relationship(
        "PriceScrapingResult", back_populates="product", cascade="all, delete-orphan"
    )


class PriceScrapingSource(Base):
    """External price source and its scraper configuration."""

    __tablename__ = "price_scraping_sources"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    base_url: Mapped[str] = mapped_column(Text, default="", nullable=False)
    country: Mapped[str] = mapped_column(String(8), default="", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    rate_limit: Mapped[int] = mapped_column(Integer, default=1000, nullable=False)  # ms
    config: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class PriceScrapingJob(Base):
    """Tracks scraping job progress."""

    __tablename__ = "price_scraping_jobs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="PENDING", nullable=False, index=True)
    supplier_id: Mapped[Optional[str]] = mapped_column(
        String(32), ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True
    )

    # Progress tracking
    total_products: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_products: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful_products: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_products: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    config: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    results: Mapped[list["PriceScrapingResult"]] = relationship(
        "PriceScrapingResult", back_populates="job", cascade="all, delete-orphan"
    )

    @property
    def progress_percent(self) -> float:
        """Calculate progress percentage."""
        if self.total_products == 0:
            return 0.0
        return (self.processed_products / self.total_products) * 100


class PriceScrapingResult(Base):
    """One scraped price observation. Rows are never updated."""

    __tablename__ = "price_scraping_results"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    normalized_product_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("normalized_products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("price_scraping_sources.id", ondelete="CASCADE"), nullable=False
    )
    job_id: Mapped[Optional[str]] = mapped_column(
        String(32), ForeignKey("price_scraping_jobs.id", ondelete="CASCADE"), nullable=True, index=True
    )
    product_title: Mapped[str] = mapped_column(Text, nullable=False)
    merchant: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    url: Mapped[str] = mapped_column(Text, default="", nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="EUR", nullable=False)
    price_incl_vat: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    shipping_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    availability: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    is_lowest_price: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    scraped_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )

    product: Mapped["NormalizedProduct"] = relationship("NormalizedProduct", back_populates="results")
    job: Mapped[Optional["PriceScrapingJob"]] = relationship("PriceScrapingJob", back_populates="results")
    source: Mapped["PriceScrapingSource"] = relationship("PriceScrapingSource")


class ScrapingAlert(Base):
    """Margin opportunity raised for a normalized product."""

    __tablename__ = "scraping_alerts"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    normalized_product_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("normalized_products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    alert_type: Mapped[str] = mapped_column(String(32), default="MARGIN_OPPORTUNITY", nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    current_margin: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    target_margin: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class CurrencyRate(Base):
    """Exchange rate for a currency pair on a given day."""

    __tablename__ = "currency_rates"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    from_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    to_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(18, 8), nullable=False)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    source: Mapped[str] = mapped_column(String(64), default="manual", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("from_currency", "to_currency", "date", name="uq_currency_pair_date"),
    )

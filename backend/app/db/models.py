"""SQLAlchemy database models."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    DateTime,
    Float,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Company(Base):
    """Company whose physical assets have been discovered."""

    __tablename__ = "companies"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    isin: Mapped[str] = mapped_column(String(12), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sector: Mapped[Optional[str]] = mapped_column(String(100))
    total_assets: Mapped[Optional[float]] = mapped_column(Float)  # Sum of asset values (USD)
    asset_count: Mapped[int] = mapped_column(Integer, default=0)


class Asset(Base):
    """A single physical asset (facility) owned or operated by a company."""

    __tablename__ = "assets"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    company_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    isin: Mapped[Optional[str]] = mapped_column(String(12), index=True)
    facility_name: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text)
    city: Mapped[Optional[str]] = mapped_column(String(255))
    country: Mapped[Optional[str]] = mapped_column(String(255))
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    coordinate_certainty: Mapped[Optional[int]] = mapped_column(Integer)  # 1-100
    asset_type: Mapped[Optional[str]] = mapped_column(String(100))
    value_usd: Mapped[Optional[float]] = mapped_column(Float)
    size_factor: Mapped[Optional[float]] = mapped_column(Float)
    geo_factor: Mapped[Optional[float]] = mapped_column(Float)
    type_weight: Mapped[Optional[float]] = mapped_column(Float)
    industry_factor: Mapped[Optional[float]] = mapped_column(Float)
    valuation_confidence: Mapped[Optional[int]] = mapped_column(Integer)  # 1-100
    ownership_share: Mapped[float] = mapped_column(Float, default=100.0)  # Percent
    sector: Mapped[Optional[str]] = mapped_column(String(100))
    data_source: Mapped[Optional[str]] = mapped_column(Text)  # e.g. "AI Discovery (DeepSeek)"


class DiscoveryJob(Base):
    """Background discovery job over a batch of company entries."""

    __tablename__ = "discovery_jobs"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid4
    )
    status: Mapped[str] = mapped_column(
        String(20), default="pending", index=True
    )  # pending, running, complete, failed, cancelled, interrupted

    primary_provider: Mapped[str] = mapped_column(String(50), default="openai")
    supplementary_provider: Mapped[Optional[str]] = mapped_column(String(50))

    # Progress counters
    total_companies: Mapped[int] = mapped_column(Integer, default=0)
    completed_companies: Mapped[int] = mapped_column(Integer, default=0)
    failed_companies: Mapped[int] = mapped_column(Integer, default=0)

    # Each entry: {"name": "...", "isin": "...", "total_value": 1.0e9}
    entries: Mapped[list] = mapped_column(JSONB, default=list)
    # Each result: {"name": "...", "status": "success", "assets_found": 12, ...}
    results: Mapped[list] = mapped_column(JSONB, default=list)

    # Usage
    total_input_tokens: Mapped[int] = mapped_column(Integer, default=0)
    total_output_tokens: Mapped[int] = mapped_column(Integer, default=0)
    total_cost_usd: Mapped[float] = mapped_column(Float, default=0.0)

    error_message: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    # Platform-issued subdomain served until a custom domain is active.
    subdomain: Mapped[str] = mapped_column(String, unique=True)
    custom_domain: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    canonical_preference: Mapped[str] = mapped_column(String, default="apex", nullable=False)
    # Only DomainStatusStore writes this column.
    domain_status: Mapped[str] = mapped_column(String, default="none", nullable=False, index=True)
    domain_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    monitoring_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    domain_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Diagnostics for self-service troubleshooting; not part of the status machine.
    domain_check_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_verdict_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    last_checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    registrar_domain_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class DomainStatusEvent(Base):
    __tablename__ = "domain_status_events"
    __table_args__ = (
        Index("ix_domain_status_events_tenant_created", "tenant_id", "created_at"),
    )

    # Append-only transition log for support and audit.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    hostname: Mapped[str | None] = mapped_column(String, nullable=True)
    from_status: Mapped[str] = mapped_column(String)
    to_status: Mapped[str] = mapped_column(String)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    session_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

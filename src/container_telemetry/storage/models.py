"""SQLAlchemy models.

Container-owned rows reference ``containers.id`` with ON DELETE CASCADE. The
store also deletes dependent rows explicitly before removing a container, so
no orphan survives on databases that do not enforce foreign keys. The ORM
relationships use ``passive_deletes`` so a delete never loads a container's
full history into memory.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from container_telemetry.core.schemas import utcnow


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware datetime stored as UTC.

    SQLite keeps no offset, so values read back naive; they are restored to
    aware UTC on load. Aware values are converted to UTC before they are bound.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class Base(DeclarativeBase):
    """Declarative base for telemetry DB models."""


class ContainerRecord(Base):
    __tablename__ = "containers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    runtime_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    ports: Mapped[str | None] = mapped_column(Text, nullable=True)
    runtime_created_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    metrics: Mapped[list[ContainerMetric]] = relationship(
        back_populates="container", cascade="all, delete-orphan", passive_deletes=True
    )
    alerts: Mapped[list[Alert]] = relationship(
        back_populates="container", cascade="all, delete-orphan", passive_deletes=True
    )
    scans: Mapped[list[Scan]] = relationship(
        back_populates="container", cascade="all, delete-orphan", passive_deletes=True
    )
    logs: Mapped[list[ContainerLog]] = relationship(
        back_populates="container", cascade="all, delete-orphan", passive_deletes=True
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "runtime_id": self.runtime_id,
            "name": self.name,
            "image": self.image,
            "status": self.status,
            "ports": self.ports,
            "runtime_created_at": _iso(self.runtime_created_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class ContainerMetric(Base):
    __tablename__ = "container_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    container_id: Mapped[int] = mapped_column(
        ForeignKey("containers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    cpu_usage: Mapped[float] = mapped_column(Float, nullable=False)
    mem_usage: Mapped[float] = mapped_column(Float, nullable=False)
    mem_limit: Mapped[float | None] = mapped_column(Float, nullable=True)
    net_in: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    net_out: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    disk_read: Mapped[float | None] = mapped_column(Float, nullable=True)
    disk_write: Mapped[float | None] = mapped_column(Float, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, index=True
    )

    container: Mapped[ContainerRecord] = relationship(back_populates="metrics")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "container_id": self.container_id,
            "cpu_usage": self.cpu_usage,
            "mem_usage": self.mem_usage,
            "mem_limit": self.mem_limit,
            "net_in": self.net_in,
            "net_out": self.net_out,
            "disk_read": self.disk_read,
            "disk_write": self.disk_write,
            "timestamp": _iso(self.timestamp),
        }


class SystemMetric(Base):
    __tablename__ = "system_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cpu_usage: Mapped[float] = mapped_column(Float, nullable=False)
    cpu_load_1: Mapped[float] = mapped_column(Float, nullable=False)
    cpu_load_5: Mapped[float] = mapped_column(Float, nullable=False)
    cpu_load_15: Mapped[float] = mapped_column(Float, nullable=False)
    ram_used: Mapped[float] = mapped_column(Float, nullable=False)
    ram_free: Mapped[float] = mapped_column(Float, nullable=False)
    ram_total: Mapped[float] = mapped_column(Float, nullable=False)
    ram_usage_percent: Mapped[float] = mapped_column(Float, nullable=False)
    disk_used: Mapped[float] = mapped_column(Float, nullable=False)
    disk_free: Mapped[float] = mapped_column(Float, nullable=False)
    disk_total: Mapped[float] = mapped_column(Float, nullable=False)
    disk_usage_percent: Mapped[float] = mapped_column(Float, nullable=False)
    network_in: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    network_out: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, index=True
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "cpu_usage": self.cpu_usage,
            "cpu_load_1": self.cpu_load_1,
            "cpu_load_5": self.cpu_load_5,
            "cpu_load_15": self.cpu_load_15,
            "ram_used": self.ram_used,
            "ram_free": self.ram_free,
            "ram_total": self.ram_total,
            "ram_usage_percent": self.ram_usage_percent,
            "disk_used": self.disk_used,
            "disk_free": self.disk_free,
            "disk_total": self.disk_total,
            "disk_usage_percent": self.disk_usage_percent,
            "network_in": self.network_in,
            "network_out": self.network_out,
            "timestamp": _iso(self.timestamp),
        }


class Alert(Base):
    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    container_id: Mapped[int | None] = mapped_column(
        ForeignKey("containers.id", ondelete="CASCADE"), nullable=True, index=True
    )
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, index=True
    )

    container: Mapped[ContainerRecord | None] = relationship(back_populates="alerts")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity,
            "message": self.message,
            "source": self.source,
            "container_id": self.container_id,
            "resolved": self.resolved,
            "timestamp": _iso(self.timestamp),
        }


class Scan(Base):
    __tablename__ = "scans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    container_id: Mapped[int] = mapped_column(
        ForeignKey("containers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    scan_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, index=True
    )

    container: Mapped[ContainerRecord] = relationship(back_populates="scans")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "container_id": self.container_id,
            "scan_type": self.scan_type,
            "status": self.status,
            "summary": self.summary,
            "duration_ms": self.duration_ms,
            "timestamp": _iso(self.timestamp),
        }


class ContainerLog(Base):
    __tablename__ = "container_logs"
    __table_args__ = (Index("ix_container_logs_container_timestamp", "container_id", "timestamp"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    container_id: Mapped[int] = mapped_column(
        ForeignKey("containers.id", ondelete="CASCADE"), nullable=False
    )
    log_level: Mapped[str] = mapped_column(String(8), nullable=False, index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str | None] = mapped_column(String(16), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    container: Mapped[ContainerRecord] = relationship(back_populates="logs")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "container_id": self.container_id,
            "level": self.log_level,
            "message": self.message,
            "source": self.source,
            "timestamp": _iso(self.timestamp),
        }

"""SQLAlchemy models for the NID Verification Service.

Two tables:
- allowed_ips: client systems permitted to call the API, keyed by source IP
- request_logs: one immutable audit row per verification request
"""
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class AllowedIp(Base):
    """Allowlisted client system."""
    __tablename__ = "allowed_ips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ip_address = Column(String(45), nullable=False, unique=True)
    system_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_is_active", "is_active"),
    )


class RequestLog(Base):
    """Audit record for a single verification request. Written once."""
    __tablename__ = "request_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(String(36), nullable=False, unique=True)
    client_ip = Column(String(45), nullable=False)
    system_name = Column(String(255), nullable=True)
    nid = Column(String(20), nullable=False)
    request_data = Column(JSON, nullable=False)
    response_data = Column(JSON, nullable=True)  # sanitized, no photo payloads
    status = Column(Enum("SUCCESS", "ERROR", name="request_status"), nullable=False)
    error_message = Column(Text, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_client_ip", "client_ip"),
        Index("idx_nid", "nid"),
        Index("idx_status", "status"),
        Index("idx_created_at", "created_at"),
    )

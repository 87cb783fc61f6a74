"""Row-level persistence operations for the NID Verification Service.

Plain functions over short-lived sessions; each call is its own
transaction. Results are returned as dicts so callers never hold
detached ORM instances.
"""

import logging
from typing import Any, Optional

from sqlalchemy import func, select

from nidservice.db.models import AllowedIp, RequestLog
from nidservice.db.session import get_db_session

log = logging.getLogger(__name__)

_REQUEST_LOG_COLUMNS = frozenset(c.name for c in RequestLog.__table__.columns) - {"id"}


def _allowed_ip_to_dict(row: AllowedIp) -> dict:
    return {
        "ip_address": row.ip_address,
        "system_name": row.system_name,
        "description": row.description,
        "is_active": row.is_active,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


# =============================================================================
# Request log
# =============================================================================


def insert_request_log(row: dict[str, Any]) -> None:
    """Insert one audit row. Unknown keys are rejected."""
    unknown = set(row) - _REQUEST_LOG_COLUMNS
    if unknown:
        raise ValueError(f"Unknown request_logs columns: {sorted(unknown)}")
    with get_db_session() as db:
        db.add(RequestLog(**row))


def request_log_statistics() -> dict[str, Any]:
    """Aggregate counts and mean processing time over all audit rows."""
    with get_db_session() as db:
        total = db.scalar(select(func.count()).select_from(RequestLog)) or 0
        success = db.scalar(
            select(func.count()).select_from(RequestLog).where(RequestLog.status == "SUCCESS")
        ) or 0
        error = db.scalar(
            select(func.count()).select_from(RequestLog).where(RequestLog.status == "ERROR")
        ) or 0
        avg_time = db.scalar(
            select(func.avg(RequestLog.processing_time_ms)).where(
                RequestLog.processing_time_ms.is_not(None)
            )
        )
    return {
        "total_requests": total,
        "success_requests": success,
        "error_requests": error,
        "success_rate": round(success / total * 100, 2) if total else 0.0,
        "average_processing_time_ms": round(float(avg_time)) if avg_time is not None else None,
    }


# =============================================================================
# Allowlist
# =============================================================================


def find_allowed_ip(ip_address: str) -> Optional[dict]:
    """Return the active allowlist entry for *ip_address*, if any."""
    with get_db_session() as db:
        row = db.scalar(
            select(AllowedIp).where(
                AllowedIp.ip_address == ip_address,
                AllowedIp.is_active.is_(True),
            )
        )
        return _allowed_ip_to_dict(row) if row else None


def add_allowed_ip(
    ip_address: str,
    system_name: str,
    description: Optional[str] = None,
) -> dict:
    """Add or reactivate an allowlist entry."""
    with get_db_session() as db:
        row = db.scalar(select(AllowedIp).where(AllowedIp.ip_address == ip_address))
        if row is None:
            row = AllowedIp(
                ip_address=ip_address,
                system_name=system_name,
                description=description,
                is_active=True,
            )
            db.add(row)
        else:
            row.system_name = system_name
            row.description = description
            row.is_active = True
        db.flush()
        log.info(f"Allowlisted {ip_address} ({system_name})")
        return _allowed_ip_to_dict(row)


def deactivate_allowed_ip(ip_address: str) -> bool:
    """Deactivate an entry. Returns False if it does not exist."""
    with get_db_session() as db:
        row = db.scalar(select(AllowedIp).where(AllowedIp.ip_address == ip_address))
        if row is None:
            return False
        row.is_active = False
        log.info(f"Removed {ip_address} from allowlist")
        return True


def list_allowed_ips(include_inactive: bool = False) -> list[dict]:
    with get_db_session() as db:
        query = select(AllowedIp).order_by(AllowedIp.ip_address)
        if not include_inactive:
            query = query.where(AllowedIp.is_active.is_(True))
        return [_allowed_ip_to_dict(row) for row in db.scalars(query)]


def seed_allowed_ips(ip_addresses: list[str]) -> int:
    """Insert default local entries that are not yet present. Returns count added."""
    added = 0
    with get_db_session() as db:
        for ip_address in ip_addresses:
            exists = db.scalar(select(AllowedIp.id).where(AllowedIp.ip_address == ip_address))
            if exists is not None:
                continue
            db.add(
                AllowedIp(
                    ip_address=ip_address,
                    system_name="Local Development",
                    description="Default local development entry",
                    is_active=True,
                )
            )
            added += 1
    if added:
        log.info(f"Seeded {added} default allowlist entries")
    return added

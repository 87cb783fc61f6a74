"""IP allowlist dependency.

Resolves the caller's address and admits only active rows in
``allowed_ips``. ``X-Forwarded-For`` is honored only when the direct peer
is one of the configured trusted proxies; otherwise the peer address is
used as-is.
"""
import ipaddress
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from nidservice.api.errors import ApiError
from nidservice.config import TRUSTED_PROXIES
from nidservice.db.repository import find_allowed_ip

log = logging.getLogger(__name__)


def _parse_networks(entries: list[str]) -> list:
    networks = []
    for entry in entries:
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            log.warning(f"Ignoring invalid trusted proxy entry: {entry!r}")
    return networks


TRUSTED_NETWORKS = _parse_networks(TRUSTED_PROXIES)


@dataclass
class ClientSystem:
    """Allowlisted caller."""

    ip: str
    system_name: str
    description: Optional[str] = None


def is_trusted_proxy(host: str, networks: Optional[list] = None) -> bool:
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    return any(addr in net for net in (networks if networks is not None else TRUSTED_NETWORKS))


def resolve_client_ip(request: Request) -> str:
    peer = request.client.host if request.client else None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and peer and is_trusted_proxy(peer):
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return peer or "unknown"


def require_allowed_client(request: Request) -> ClientSystem:
    """FastAPI dependency: 403 unless the caller's IP is allowlisted.

    Declared sync so FastAPI runs the database lookup in its threadpool.
    """
    client_ip = resolve_client_ip(request)

    try:
        entry = find_allowed_ip(client_ip)
    except Exception as e:
        log.error(f"Allowlist lookup failed for {client_ip}: {e}")
        raise ApiError(500, "IP_VALIDATION_ERROR", "Internal server error during IP validation")

    if entry is None:
        log.warning(f"Access denied for IP: {client_ip}")
        raise ApiError(
            403,
            "IP_NOT_AUTHORIZED",
            "Access denied. Your IP address is not authorized to access this service.",
        )

    system = ClientSystem(
        ip=client_ip,
        system_name=entry["system_name"],
        description=entry.get("description"),
    )
    request.state.client_system = system
    log.info(f"Access granted for IP: {client_ip} ({system.system_name})")
    return system

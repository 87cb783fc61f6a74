# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""NID Verification Service configuration.

Registry wire constants are fixed. Configurable defaults may be
overridden via environment variables.
"""

import os

SERVICE_NAME: str = "NID Verification Service"
SERVICE_VERSION: str = "1.0.0"

# =============================================================================
# REGISTRY WIRE CONSTANTS (fixed by the registry API)
# =============================================================================

LOGIN_PATH: str = "/auth/login"
VERIFICATION_PATH: str = "/voter/demographic/verification"
REGISTRY_STATUS_OK: str = "OK"

# =============================================================================
# REGISTRY CONNECTION
# =============================================================================

NID_SERVICE_BASE_URL: str = os.getenv(
    "NID_SERVICE_BASE_URL",
    "https://prportal.nidw.gov.bd/partner-service/rest",
)
NID_SERVICE_USERNAME: str = os.getenv("NID_SERVICE_USERNAME", "")
NID_SERVICE_PASSWORD: str = os.getenv("NID_SERVICE_PASSWORD", "")
REGISTRY_TIMEOUT_SECONDS: float = float(os.getenv("NID_REGISTRY_TIMEOUT_SECONDS", "30"))

# =============================================================================
# CREDENTIALS
# =============================================================================

# The registry never reports a token lifetime; one hour is an assumption.
# A 401 from the registry always wins over this window.
CREDENTIAL_TTL_SECONDS: float = float(os.getenv("NID_CREDENTIAL_TTL_SECONDS", "3600"))
CREDENTIAL_REFRESH_MARGIN_SECONDS: float = float(
    os.getenv("NID_CREDENTIAL_REFRESH_MARGIN_SECONDS", "60")
)

# =============================================================================
# PHOTO INLINING
# =============================================================================

ASSET_FETCH_TIMEOUT_SECONDS: float = float(os.getenv("NID_ASSET_FETCH_TIMEOUT_SECONDS", "30"))
ASSET_MAX_BYTES: int = int(os.getenv("NID_ASSET_MAX_BYTES", str(5 * 1024 * 1024)))
ASSET_USER_AGENT: str = f"NID-Verification-Service/{SERVICE_VERSION}"

# =============================================================================
# PERSISTENCE
# =============================================================================

DATA_DIR: str = os.getenv("NID_DATA_DIR", "./data")
DATABASE_URL: str = os.getenv("NID_DATABASE_URL", f"sqlite:///{DATA_DIR}/nid_service.db")
AUDIT_QUEUE_MAX: int = int(os.getenv("NID_AUDIT_QUEUE_MAX", "1000"))

# =============================================================================
# ACCESS CONTROL
# =============================================================================


def _parse_csv(env_name: str, default: str) -> list[str]:
    env_value = os.getenv(env_name, default)
    return [item.strip() for item in env_value.split(",") if item.strip()]


DEFAULT_ALLOWED_IPS: list[str] = _parse_csv("NID_DEFAULT_ALLOWED_IPS", "127.0.0.1,::1")

# Direct peers whose X-Forwarded-For header is honored.
TRUSTED_PROXIES: list[str] = _parse_csv(
    "NID_TRUSTED_PROXIES",
    "127.0.0.1/32,::1/128,10.0.0.0/8,172.16.0.0/12,192.168.0.0/16",
)

# =============================================================================
# NETWORK
# =============================================================================

HTTP_HOST: str = os.getenv("NID_HTTP_HOST", "0.0.0.0")
HTTP_PORT: int = int(os.getenv("NID_HTTP_PORT", "3000"))

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL: str = os.getenv("NID_LOG_LEVEL", "INFO")
LOG_FORMAT: str = os.getenv("NID_LOG_FORMAT", "json")

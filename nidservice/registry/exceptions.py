# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Registry client exceptions mapped to service error codes."""

from typing import Optional

# Upstream bodies are truncated before they reach logs or callers.
UPSTREAM_BODY_LIMIT = 200


def _truncate(body: Optional[str]) -> Optional[str]:
    if body is None:
        return None
    return body[:UPSTREAM_BODY_LIMIT]


class RegistryError(Exception):
    """Base exception for NID registry interaction errors."""

    code: str = "REGISTRY_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.body = _truncate(body)
        super().__init__(message)

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.message} (upstream status {self.status_code})"


class AuthenticationError(RegistryError):
    """Credential exchange with the registry failed."""

    code = "AUTHENTICATION_FAILED"

    @classmethod
    def rejected(cls, status_code: int, body: str) -> "AuthenticationError":
        return cls(
            f"Authentication failed: registry returned HTTP {status_code}",
            status_code=status_code,
            body=body,
        )

    @classmethod
    def malformed(cls, status_code: int, body: str) -> "AuthenticationError":
        return cls(
            "Authentication failed: invalid response format",
            status_code=status_code,
            body=body,
        )

    @classmethod
    def unreachable(cls, reason: str) -> "AuthenticationError":
        return cls(f"Authentication failed: {reason}")


class ServiceUnavailableError(RegistryError):
    """Registry unreachable, timed out, or repeatedly unauthorized."""

    code = "SERVICE_UNAVAILABLE"

    @classmethod
    def unreachable(cls, reason: str) -> "ServiceUnavailableError":
        return cls(f"NID registry unreachable: {reason}")

    @classmethod
    def unauthorized_after_retry(cls, body: str) -> "ServiceUnavailableError":
        return cls(
            "NID registry rejected a freshly issued credential",
            status_code=401,
            body=body,
        )


class VerificationFailedError(RegistryError):
    """Registry rejected the request for reasons other than field mismatch."""

    code = "VERIFICATION_FAILED"

    @classmethod
    def rejected(cls, status_code: int, body: str, reason: Optional[str] = None) -> "VerificationFailedError":
        detail = reason or f"HTTP {status_code}"
        return cls(
            f"Verification failed: {detail}",
            status_code=status_code,
            body=body,
        )


class AssetFetchError(RegistryError):
    """Photo asset could not be fetched or encoded. Never surfaced to callers."""

    code = "ASSET_FETCH_FAILED"


class InvalidAssetUrl(AssetFetchError):
    """Photo reference is not an http(s) image URL."""

    code = "ASSET_URL_INVALID"


class AuditWriteError(Exception):
    """Audit record could not be persisted. Logged only."""

    code = "AUDIT_WRITE_FAILED"

    def __init__(self, request_id: str, reason: str):
        self.request_id = request_id
        self.reason = reason
        super().__init__(f"Failed to persist audit record {request_id}: {reason}")

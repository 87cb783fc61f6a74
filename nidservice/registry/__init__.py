# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""NID registry integration.

Credential caching, photo inlining and the verification client for the
external national-identity registry.
"""

from .assets import AssetInliner, is_inlinable_url
from .client import VerificationClient, build_verification_client, classify_response
from .credentials import CredentialCache, RegistryAuthenticator
from .exceptions import (
    AssetFetchError,
    AuditWriteError,
    AuthenticationError,
    InvalidAssetUrl,
    RegistryError,
    ServiceUnavailableError,
    VerificationFailedError,
)
from .models import (
    Credential,
    EncodedAsset,
    FieldMatch,
    IdentifierChannel,
    VerificationRequest,
    VerificationResult,
)

__all__ = [
    # Exceptions
    "RegistryError",
    "AuthenticationError",
    "ServiceUnavailableError",
    "VerificationFailedError",
    "AssetFetchError",
    "InvalidAssetUrl",
    "AuditWriteError",
    # Models
    "Credential",
    "EncodedAsset",
    "FieldMatch",
    "IdentifierChannel",
    "VerificationRequest",
    "VerificationResult",
    # Components
    "AssetInliner",
    "CredentialCache",
    "RegistryAuthenticator",
    "VerificationClient",
    "build_verification_client",
    "classify_response",
    "is_inlinable_url",
]

# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Domain models for NID registry verification."""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Credential
# =============================================================================


@dataclass(frozen=True)
class Credential:
    """Registry bearer token with its assumed expiry (epoch seconds)."""

    token: str
    expires_at: float

    def is_valid(self, now: float, margin: float = 0.0) -> bool:
        """True while ``now`` is before expiry minus the refresh margin."""
        return now < self.expires_at - margin

    def __repr__(self) -> str:
        return f"Credential(token=<redacted>, expires_at={self.expires_at:.0f})"


# =============================================================================
# Identification channel
# =============================================================================


class IdentifierChannel(str, Enum):
    """Registry identification field, selected by identifier digit count."""

    NID_10 = "nid10Digit"
    NID_17 = "nid17Digit"

    @classmethod
    def for_identifier(cls, identifier: str) -> "IdentifierChannel":
        if len(identifier) == 10:
            return cls.NID_10
        if len(identifier) == 17:
            return cls.NID_17
        raise ValueError(f"identifier must be 10 or 17 digits, got {len(identifier)}")

    @property
    def label(self) -> str:
        return "10-digit" if self is IdentifierChannel.NID_10 else "17-digit"


# =============================================================================
# Request / Result
# =============================================================================


class VerificationRequest(BaseModel):
    """Already-validated verification input. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str
    date_of_birth: date
    name_en: str

    @field_validator("id")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        if not (value.isascii() and value.isdigit()):
            raise ValueError("identifier must contain only ASCII digits")
        IdentifierChannel.for_identifier(value)
        return value

    @property
    def channel(self) -> IdentifierChannel:
        return IdentifierChannel.for_identifier(self.id)

    def to_registry_payload(self) -> Dict[str, Any]:
        """Outbound body for the registry verification endpoint."""
        return {
            "identify": {self.channel.value: self.id},
            "verify": {
                "nameEn": self.name_en,
                "dateOfBirth": self.date_of_birth.isoformat(),
            },
        }


class FieldMatch(BaseModel):
    name_en: bool = False
    date_of_birth: bool = False

    @classmethod
    def from_registry(cls, raw: Any) -> "FieldMatch":
        """Absent or malformed match data yields both flags false."""
        if not isinstance(raw, dict):
            return cls()
        return cls(
            name_en=bool(raw.get("nameEn", False)),
            date_of_birth=bool(raw.get("dateOfBirth", False)),
        )

    def mismatched_fields(self) -> list[str]:
        fields = []
        if not self.name_en:
            fields.append("nameEn")
        if not self.date_of_birth:
            fields.append("dateOfBirth")
        return fields


class VerificationResult(BaseModel):
    verified: bool
    field_match: FieldMatch = Field(default_factory=FieldMatch)
    person_details: Dict[str, Any] = Field(default_factory=dict)
    advisory_message: Optional[str] = None


# =============================================================================
# Encoded asset
# =============================================================================


@dataclass(frozen=True)
class EncodedAsset:
    """Self-describing inlined image: content type plus base64 payload."""

    content_type: str
    data: str
    size_bytes: int = 0

    def to_data_url(self) -> str:
        return f"data:{self.content_type};base64,{self.data}"


# =============================================================================
# Registry outcomes
# =============================================================================


@dataclass
class Matched:
    person_details: Dict[str, Any]
    field_match: FieldMatch


@dataclass
class Mismatched:
    """Record found but the supplied fields did not (all) match."""

    person_details: Dict[str, Any]
    field_match: FieldMatch
    status_code: int = 200


@dataclass
class Rejected:
    status_code: int
    body: str
    reason: Optional[str] = None


@dataclass
class Unauthorized:
    body: str = ""


RegistryOutcome = Union[Matched, Mismatched, Rejected, Unauthorized]


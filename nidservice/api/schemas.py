"""Request and response models for the /api/nid endpoints.

Field names follow the wire format clients already use (camelCase).
Input rules:
- nid: whitespace removed, then exactly 10 or 17 ASCII digits
- dateOfBirth: YYYY-MM-DD, not in the future, holder at least 18 years old
- nameEn: trimmed, 2-100 characters of English letters, spaces, dots,
  hyphens and apostrophes
"""
import re
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from nidservice.registry.models import VerificationRequest, VerificationResult

MIN_AGE_YEARS = 18
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NAME = re.compile(r"^[a-zA-Z\s.\-']+$")
_WHITESPACE = re.compile(r"\s")


def _years_before(today: date, years: int) -> date:
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        # Feb 29 on a non-leap target year
        return today.replace(year=today.year - years, day=28)


class VerifyRequestBody(BaseModel):
    nid: str
    dateOfBirth: str
    nameEn: str

    @field_validator("nid")
    @classmethod
    def _clean_nid(cls, value: str) -> str:
        clean = _WHITESPACE.sub("", value)
        if len(clean) not in (10, 17):
            raise ValueError("NID must be either 10 or 17 digits")
        if not (clean.isascii() and clean.isdigit()):
            raise ValueError("NID must contain only digits")
        return clean

    @field_validator("dateOfBirth")
    @classmethod
    def _check_date_of_birth(cls, value: str) -> str:
        value = value.strip()
        if not _ISO_DATE.match(value):
            raise ValueError("Date of birth must be in YYYY-MM-DD format")
        try:
            born = date.fromisoformat(value)
        except ValueError:
            raise ValueError("Date of birth must be in YYYY-MM-DD format")
        today = date.today()
        if born > today:
            raise ValueError("Date of birth cannot be in the future")
        if born > _years_before(today, MIN_AGE_YEARS):
            raise ValueError(f"Person must be at least {MIN_AGE_YEARS} years old")
        return value

    @field_validator("nameEn")
    @classmethod
    def _check_name(cls, value: str) -> str:
        clean = value.strip()
        if not NAME_MIN_LENGTH <= len(clean) <= NAME_MAX_LENGTH:
            raise ValueError(
                f"Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters"
            )
        if not _NAME.match(clean):
            raise ValueError(
                "Name contains invalid characters. Only English letters, spaces, "
                "dots, hyphens, and apostrophes are allowed"
            )
        return clean

    def to_verification_request(self) -> VerificationRequest:
        return VerificationRequest(
            id=self.nid,
            date_of_birth=date.fromisoformat(self.dateOfBirth),
            name_en=self.nameEn,
        )


def validation_details(error: ValidationError) -> List[Dict[str, Any]]:
    """Flatten pydantic errors into [{field, message}] for the error envelope."""
    details = []
    for item in error.errors():
        loc = ".".join(str(part) for part in item.get("loc", ())) or "body"
        message = item.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        details.append({"field": loc, "message": message})
    return details


class VerificationDetails(BaseModel):
    nameEn: bool
    dateOfBirth: bool


class VerifyData(BaseModel):
    nid: str
    nidType: str
    verified: bool
    verificationDetails: VerificationDetails
    personDetails: Dict[str, Any] = Field(default_factory=dict)


class VerifyResponse(BaseModel):
    success: bool = True
    requestId: str
    data: VerifyData
    message: Optional[str] = None
    timestamp: str
    system: Optional[str] = None

    @classmethod
    def from_result(
        cls,
        request: VerificationRequest,
        result: VerificationResult,
        request_id: str,
        timestamp: str,
        system: Optional[str],
    ) -> "VerifyResponse":
        return cls(
            requestId=request_id,
            data=VerifyData(
                nid=request.id,
                nidType=request.channel.label,
                verified=result.verified,
                verificationDetails=VerificationDetails(
                    nameEn=result.field_match.name_en,
                    dateOfBirth=result.field_match.date_of_birth,
                ),
                personDetails=result.person_details,
            ),
            message=result.advisory_message,
            timestamp=timestamp,
            system=system,
        )

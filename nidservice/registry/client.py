# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Async client for the NID registry's demographic verification API.

Flow for a single :meth:`VerificationClient.verify` call:

1. Obtain a bearer credential from the :class:`CredentialCache`.
2. Build the payload; the identifier's digit count selects the
   ``nid10Digit`` / ``nid17Digit`` identification channel.
3. ``POST {base_url}/voter/demographic/verification``.
4. Classify the HTTP response into a tagged outcome
   (``Matched | Mismatched | Rejected | Unauthorized``).
5. On ``Unauthorized`` invalidate the credential and run the flow once
   more.  A second 401 raises :class:`ServiceUnavailableError`.
6. Inline ``person_details.photo`` when it is an image URL.  Inlining
   failures keep the original reference.

A mismatch (record found, supplied fields differ) is a normal result with
``verified=False``, not an error.  The registry reports it either as
``status: "OK"`` with ``verified: false``, or on a distinct non-200
status with ``verified`` / ``fieldVerificationResult`` / ``data`` at the
top level of the body.
"""

import logging
from typing import Any, Optional

import httpx

from nidservice.config import (
    ASSET_FETCH_TIMEOUT_SECONDS,
    CREDENTIAL_REFRESH_MARGIN_SECONDS,
    CREDENTIAL_TTL_SECONDS,
    NID_SERVICE_BASE_URL,
    NID_SERVICE_PASSWORD,
    NID_SERVICE_USERNAME,
    REGISTRY_STATUS_OK,
    REGISTRY_TIMEOUT_SECONDS,
    VERIFICATION_PATH,
)
from nidservice.registry.assets import AssetInliner, is_inlinable_url
from nidservice.registry.credentials import CredentialCache, RegistryAuthenticator
from nidservice.registry.exceptions import (
    AssetFetchError,
    ServiceUnavailableError,
    VerificationFailedError,
)
from nidservice.registry.models import (
    Credential,
    FieldMatch,
    Matched,
    Mismatched,
    RegistryOutcome,
    Rejected,
    Unauthorized,
    VerificationRequest,
    VerificationResult,
)

log = logging.getLogger(__name__)

# Initial attempt plus exactly one retry after re-authentication.
MAX_AUTH_ATTEMPTS = 2

PHOTO_FIELD = "photo"


def mask_identifier(identifier: str) -> str:
    """Keep the last four digits of an identifier for log lines."""
    if len(identifier) <= 4:
        return "*" * len(identifier)
    return "*" * (len(identifier) - 4) + identifier[-4:]


# =============================================================================
# Response classification
# =============================================================================


def _is_mismatch_body(body: Any) -> bool:
    return (
        isinstance(body, dict)
        and "verified" in body
        and ("fieldVerificationResult" in body or "data" in body)
    )


def _verdict(payload: dict, status_code: int) -> RegistryOutcome:
    details = payload.get("data")
    if not isinstance(details, dict):
        details = {}
    field_match = FieldMatch.from_registry(payload.get("fieldVerificationResult"))
    if status_code == 200 and payload.get("verified") is True:
        return Matched(person_details=details, field_match=field_match)
    return Mismatched(
        person_details=details,
        field_match=field_match,
        status_code=status_code,
    )


def classify_response(response: httpx.Response) -> RegistryOutcome:
    """Map a registry verification response to a tagged outcome."""
    status_code = response.status_code
    if status_code == 401:
        return Unauthorized(body=response.text)

    try:
        body = response.json()
    except ValueError:
        body = None

    if status_code == 200:
        if not isinstance(body, dict):
            return Rejected(status_code, response.text, "invalid response format")
        if body.get("status") != REGISTRY_STATUS_OK:
            upstream = body.get("statusCode") or body.get("status") or "unknown error"
            return Rejected(status_code, response.text, f"registry status {upstream}")
        success = body.get("success")
        return _verdict(success if isinstance(success, dict) else {}, status_code)

    if _is_mismatch_body(body):
        return _verdict(body, status_code)

    return Rejected(status_code, response.text)


# =============================================================================
# Client
# =============================================================================


class VerificationClient:
    """Verifies identity records against the NID registry.

    The credential cache is injected rather than held as module state, so
    tests and alternate deployments can share or isolate it explicitly.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        credentials: CredentialCache,
        inliner: Optional[AssetInliner] = None,
        base_url: str = NID_SERVICE_BASE_URL,
        timeout: float = REGISTRY_TIMEOUT_SECONDS,
    ):
        self._http = http
        self._credentials = credentials
        self._inliner = inliner
        self._url = base_url.rstrip("/") + VERIFICATION_PATH
        self._timeout = timeout

    @property
    def credentials(self) -> CredentialCache:
        return self._credentials

    async def verify(self, request: VerificationRequest) -> VerificationResult:
        """Verify *request* and return the normalized result.

        Raises:
            AuthenticationError: Login exchange failed.
            ServiceUnavailableError: Registry unreachable, timed out, or
                rejected a freshly issued credential.
            VerificationFailedError: Registry rejected the request.
        """
        masked = mask_identifier(request.id)
        log.info(f"Verifying NID {masked} via {request.channel.value}")

        outcome: RegistryOutcome = Unauthorized()
        for attempt in range(MAX_AUTH_ATTEMPTS):
            credential = await self._credentials.get_valid_credential()
            outcome = await self._submit(request, credential)
            if not isinstance(outcome, Unauthorized):
                break
            self._credentials.invalidate(credential)
            if attempt < MAX_AUTH_ATTEMPTS - 1:
                log.info(
                    f"Registry returned 401 for NID {masked}, "
                    f"re-authenticating (retry {attempt + 1}/{MAX_AUTH_ATTEMPTS - 1})"
                )

        if isinstance(outcome, Unauthorized):
            log.error(f"Registry rejected a fresh credential for NID {masked}")
            raise ServiceUnavailableError.unauthorized_after_retry(outcome.body)

        if isinstance(outcome, Rejected):
            log.error(
                f"NID verification failed for {masked}: HTTP {outcome.status_code}"
            )
            raise VerificationFailedError.rejected(
                outcome.status_code, outcome.body, outcome.reason
            )

        result = self._to_result(outcome)
        result.person_details = await self._inline_photo(result.person_details)

        log.info(f"NID verification complete for {masked}: verified={result.verified}")
        return result

    async def check_connectivity(self) -> None:
        """Ensure a registry credential can be obtained."""
        await self._credentials.get_valid_credential()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    async def _submit(
        self, request: VerificationRequest, credential: Credential
    ) -> RegistryOutcome:
        try:
            response = await self._http.post(
                self._url,
                json=request.to_registry_payload(),
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {credential.token}",
                },
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise ServiceUnavailableError.unreachable(f"request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ServiceUnavailableError.unreachable(str(e)) from e
        return classify_response(response)

    def _to_result(self, outcome: RegistryOutcome) -> VerificationResult:
        if isinstance(outcome, Matched):
            return VerificationResult(
                verified=True,
                field_match=outcome.field_match,
                person_details=dict(outcome.person_details),
            )

        mismatched = outcome.field_match.mismatched_fields()
        if mismatched:
            message = (
                "NID record found but the supplied "
                f"{' and '.join(mismatched)} did not match"
            )
        else:
            message = "NID record found but verification did not succeed"
        return VerificationResult(
            verified=False,
            field_match=outcome.field_match,
            person_details=dict(outcome.person_details),
            advisory_message=message,
        )

    async def _inline_photo(self, details: dict) -> dict:
        photo = details.get(PHOTO_FIELD)
        if not photo or self._inliner is None:
            return details
        if not is_inlinable_url(photo):
            log.debug("Photo reference is not an image URL; leaving as-is")
            return details
        try:
            asset = await self._inliner.inline(photo)
        except AssetFetchError as e:
            log.warning(f"Photo inlining failed, keeping original reference: {e}")
            return details
        return {**details, PHOTO_FIELD: asset.to_data_url()}


# =============================================================================
# Factory
# =============================================================================


def build_verification_client(http: httpx.AsyncClient) -> VerificationClient:
    """Wire a client, credential cache and inliner from configuration."""
    authenticator = RegistryAuthenticator(
        http,
        base_url=NID_SERVICE_BASE_URL,
        username=NID_SERVICE_USERNAME,
        password=NID_SERVICE_PASSWORD,
        timeout=REGISTRY_TIMEOUT_SECONDS,
    )
    credentials = CredentialCache(
        authenticator,
        ttl_seconds=CREDENTIAL_TTL_SECONDS,
        refresh_margin_seconds=CREDENTIAL_REFRESH_MARGIN_SECONDS,
    )
    inliner = AssetInliner(http, timeout=ASSET_FETCH_TIMEOUT_SECONDS)
    return VerificationClient(http, credentials, inliner=inliner)

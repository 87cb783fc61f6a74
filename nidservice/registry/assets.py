# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Photo inlining: fetch a remote image and encode it as a data URL.

The registry returns person photos as URLs on its own asset host.  The
inliner fetches the image once and produces a self-describing payload
(content type plus base64 bytes) so callers can render it without a
second request.

Only ``http``/``https`` URLs whose path ends in a known image extension
are fetched; anything else raises :class:`InvalidAssetUrl` before any
network I/O.  All other failures raise :class:`AssetFetchError`; the
verification client treats them as non-fatal.
"""

import base64
import logging
from pathlib import PurePosixPath
from urllib.parse import urlparse

import httpx

from nidservice.config import ASSET_MAX_BYTES, ASSET_USER_AGENT
from nidservice.registry.exceptions import AssetFetchError, InvalidAssetUrl
from nidservice.registry.models import EncodedAsset

log = logging.getLogger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})
IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp"})
DEFAULT_CONTENT_TYPE = "image/jpeg"


def is_inlinable_url(url: object) -> bool:
    """Whether *url* is an http(s) URL pointing at an image file."""
    if not isinstance(url, str) or not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme.lower() not in ALLOWED_SCHEMES or not parsed.netloc:
        return False
    return PurePosixPath(parsed.path).suffix.lower() in IMAGE_EXTENSIONS


class AssetInliner:
    """Fetches images with a bounded timeout and size."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        timeout: float = 30.0,
        max_bytes: int = ASSET_MAX_BYTES,
    ):
        self._http = http
        self._timeout = timeout
        self._max_bytes = max_bytes

    async def inline(self, url: str) -> EncodedAsset:
        """Fetch *url* and return it as an :class:`EncodedAsset`.

        The body is streamed and reading stops as soon as it passes
        ``max_bytes``, so an oversized image is never held in memory.

        Raises:
            InvalidAssetUrl: URL is not an http(s) image URL.
            AssetFetchError: Fetch failed, timed out, the HTTP client
                refused the URL, or the response was non-image / empty /
                oversized.
        """
        if not is_inlinable_url(url):
            raise InvalidAssetUrl(f"Not an inlinable image URL: {str(url)[:100]}")

        try:
            async with self._http.stream(
                "GET",
                url,
                headers={"User-Agent": ASSET_USER_AGENT},
                timeout=self._timeout,
            ) as response:
                content_type = self._check_response(response)
                content = await self._read_bounded(response)
        except httpx.TimeoutException as e:
            raise AssetFetchError(f"Image fetch timed out: {e}") from e
        except httpx.HTTPError as e:
            raise AssetFetchError(f"Image fetch failed: {e}") from e
        except (httpx.InvalidURL, UnicodeError) as e:
            # Bad IDNA hosts and control characters pass urlparse but not httpx
            raise AssetFetchError(f"Image URL rejected: {e}") from e

        encoded = base64.b64encode(content).decode("ascii")
        log.info(f"Inlined image ({content_type}, {len(content)} bytes)")
        return EncodedAsset(content_type=content_type, data=encoded, size_bytes=len(content))

    def _check_response(self, response: httpx.Response) -> str:
        if response.status_code != 200:
            raise AssetFetchError(
                f"Image fetch returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        if not content_type:
            content_type = DEFAULT_CONTENT_TYPE
        if not content_type.startswith("image/"):
            raise AssetFetchError(f"Unexpected content type for image: {content_type}")

        declared = response.headers.get("content-length", "").strip()
        if declared.isdigit() and int(declared) > self._max_bytes:
            raise AssetFetchError(
                f"Image is {declared} bytes, exceeds limit of {self._max_bytes}"
            )
        return content_type

    async def _read_bounded(self, response: httpx.Response) -> bytes:
        content = bytearray()
        async for chunk in response.aiter_bytes():
            content.extend(chunk)
            if len(content) > self._max_bytes:
                raise AssetFetchError(
                    f"Image exceeds limit of {self._max_bytes} bytes"
                )
        if not content:
            raise AssetFetchError("Image fetch returned an empty body")
        return bytes(content)

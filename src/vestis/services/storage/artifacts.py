"""Artifact store contract and helpers shared by the orchestrator and adapters."""

import secrets
import time
from typing import Optional, Protocol
from uuid import UUID

import httpx
import structlog

from vestis.services.exceptions import ArtifactDownloadError

logger = structlog.get_logger(__name__)


class ArtifactStore(Protocol):
    """Durable blob storage keyed by (bucket, path)."""

    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: str = "image/png"
    ) -> str: ...

    async def create_signed_url(self, bucket: str, path: str, expires_in: int = 3600) -> str: ...

    def get_public_url(self, bucket: str, path: str) -> str: ...

    async def delete(self, bucket: str, paths: list[str]) -> None: ...


def unique_filename(extension: str = "png") -> str:
    """Millisecond timestamp plus random suffix, e.g. "1718000000000-1a2b3c4d.png"."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}.{extension}"


def build_storage_path(generation_id: UUID, extension: str = "png") -> str:
    """Artifact path for a generation: always namespaced by the generation id.

    Every call returns a fresh name, so concurrent uploads for the same
    generation land on different objects.
    """
    return f"{generation_id}/{unique_filename(extension)}"


async def download_artifact(
    url: str,
    timeout: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bytes:
    """Download the provider's output image.

    Args:
        url: HTTP/HTTPS URL of the generated image (provider CDN)
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests use httpx.MockTransport)

    Returns:
        Image bytes

    Raises:
        ArtifactDownloadError: Network error, timeout, non-2xx response or empty body
    """
    try:
        async with httpx.AsyncClient(
            timeout=timeout, transport=transport, follow_redirects=True
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.TimeoutException as e:
        raise ArtifactDownloadError(f"Download timeout after {timeout}s: {str(e)}") from e
    except httpx.HTTPError as e:
        raise ArtifactDownloadError(f"Download failed: {str(e)}") from e

    if not response.content:
        raise ArtifactDownloadError(f"Downloaded artifact is empty: {url}")
    return response.content


async def signed_or_public_url(
    store: ArtifactStore, bucket: str, path: str, expires_in: int = 3600
) -> str:
    """Signed URL for an object, falling back to its public URL if signing fails.

    Availability wins over strict access control here: a failed signing call
    never surfaces to the client.
    """
    try:
        return await store.create_signed_url(bucket, path, expires_in)
    except Exception as e:
        logger.warning(
            "storage.signed_url.fallback_to_public",
            bucket=bucket,
            path=path,
            error=str(e),
            error_type=type(e).__name__,
        )
        return store.get_public_url(bucket, path)

"""Supabase Storage client for generated and staged images."""

from typing import Optional
from urllib.parse import quote

import httpx
import structlog

from vestis.services.exceptions import (
    ArtifactUploadError,
    StorageConfigurationError,
    StorageError,
)

logger = structlog.get_logger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Extract the most useful message from a Supabase Storage error response."""
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("error") or payload)
    return str(payload)


def _is_bucket_problem(message: str) -> bool:
    lowered = message.lower()
    return "bucket" in lowered or "does not exist" in lowered


class SupabaseStorageClient:
    """Blob storage client using the Supabase Storage REST API.

    Objects are addressed by (bucket, path). Uploads never overwrite: callers
    pick unique paths, so concurrent writers cannot clobber each other.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Supabase Storage client.

        Args:
            base_url: Supabase project URL (e.g., "https://abc.supabase.co")
            service_key: Service role key (from SUPABASE_SERVICE_KEY env var)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.storage_url = f"{self.base_url}/storage/v1"
        self.timeout = timeout
        self._transport = transport
        self.headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _object_url(self, bucket: str, path: str) -> str:
        return f"{self.storage_url}/object/{quote(bucket)}/{quote(path)}"

    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: str = "image/png"
    ) -> str:
        """Upload bytes to bucket/path.

        Args:
            bucket: Destination bucket name
            path: Object path inside the bucket
            data: Object bytes
            content_type: MIME type stored with the object

        Returns:
            The object path (unchanged)

        Raises:
            StorageConfigurationError: Destination bucket missing or misconfigured
            ArtifactUploadError: Any other upload failure (auth, network, 5xx)
        """
        headers = {
            **self.headers,
            "Content-Type": content_type,
            "cache-control": "max-age=3600",
            "x-upsert": "false",
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    self._object_url(bucket, path), headers=headers, content=data
                )
        except httpx.HTTPError as e:
            logger.warning("storage.upload.network_error", bucket=bucket, path=path, error=str(e))
            raise ArtifactUploadError(f"Network error: {str(e)}") from e

        if response.is_success:
            logger.info("storage.upload.succeeded", bucket=bucket, path=path, size=len(data))
            return path

        message = _error_message(response)
        logger.warning(
            "storage.upload.failed",
            bucket=bucket,
            path=path,
            status_code=response.status_code,
            error=message,
        )

        if _is_bucket_problem(message):
            raise StorageConfigurationError(
                f"Storage configuration issue: {message}. "
                f'Please ensure the "{bucket}" bucket exists in your Supabase project '
                "and has proper permissions.",
                bucket=bucket,
            )
        if response.status_code in (401, 403):
            raise ArtifactUploadError(
                f"Unauthorized ({response.status_code}): {message}. "
                "Check SUPABASE_SERVICE_KEY configuration in .env file."
            )
        raise ArtifactUploadError(message)

    async def create_signed_url(self, bucket: str, path: str, expires_in: int = 3600) -> str:
        """Create a time-limited signed URL for an object.

        Args:
            bucket: Bucket name
            path: Object path inside the bucket
            expires_in: Lifetime of the URL in seconds

        Returns:
            Absolute signed URL

        Raises:
            StorageError: If the signing call fails for any reason
        """
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.storage_url}/object/sign/{quote(bucket)}/{quote(path)}",
                    headers=self.headers,
                    json={"expiresIn": expires_in},
                )
        except httpx.HTTPError as e:
            raise StorageError(f"Network error: {str(e)}") from e

        if not response.is_success:
            raise StorageError(
                f"Signing failed ({response.status_code}): {_error_message(response)}"
            )

        signed = response.json().get("signedURL")
        if not signed:
            raise StorageError("Signing response did not include a signedURL")
        if signed.startswith("http"):
            return signed
        return f"{self.storage_url}{signed}"

    def get_public_url(self, bucket: str, path: str) -> str:
        """Build the conventional public URL for an object (no network call)."""
        return f"{self.storage_url}/object/public/{bucket}/{path}"

    async def delete(self, bucket: str, paths: list[str]) -> None:
        """Delete objects from a bucket.

        Raises:
            StorageError: If the delete call fails
        """
        if not paths:
            return
        try:
            async with self._client() as client:
                response = await client.request(
                    "DELETE",
                    f"{self.storage_url}/object/{quote(bucket)}",
                    headers=self.headers,
                    json={"prefixes": paths},
                )
        except httpx.HTTPError as e:
            raise StorageError(f"Network error: {str(e)}") from e

        if not response.is_success:
            raise StorageError(f"Delete failed ({response.status_code}): {_error_message(response)}")

        logger.info("storage.delete.succeeded", bucket=bucket, paths=paths)

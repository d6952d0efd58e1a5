"""Client-facing view of a generation record."""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from vestis.models.generation import Generation, GenerationStatus
from vestis.services.storage.artifacts import ArtifactStore, signed_or_public_url


@dataclass(frozen=True)
class GenerationProjection:
    """Read-only status view: id, status, progress, imageUrl, error."""

    id: UUID
    status: GenerationStatus
    progress: int
    image_url: Optional[str] = None
    error: Optional[str] = None


async def project_generation(
    generation: Generation,
    artifact_store: ArtifactStore,
    bucket: str,
    signed_url_ttl_seconds: int = 3600,
) -> GenerationProjection:
    """Build the projection of a persisted generation.

    Only completed generations get an image URL (signed, or public on signing
    failure). Terminal generations always report progress 100.
    """
    image_url = None
    if generation.status == GenerationStatus.COMPLETED and generation.storage_path:
        image_url = await signed_or_public_url(
            artifact_store, bucket, generation.storage_path, signed_url_ttl_seconds
        )

    return GenerationProjection(
        id=generation.id,
        status=generation.status,
        progress=100 if generation.is_terminal else generation.progress,
        image_url=image_url,
        error=generation.error if generation.status == GenerationStatus.FAILED else None,
    )

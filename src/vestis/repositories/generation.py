"""Generation repository for Vestis backend.

Provides data access methods for Generation entities, including the
compare-and-swap update that guards every state transition.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vestis.models.generation import Generation, GenerationStatus, GenerationType


class GenerationRepository:
    """Repository for Generation entities.

    State changes go through save_if_version() so that two status checks racing
    on the same processing generation cannot both commit a transition.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, generation: Generation) -> Generation:
        """Persist new generation to database.

        Args:
            generation: Generation entity to persist

        Returns:
            Persisted generation
        """
        self.session.add(generation)
        await self.session.flush()
        return generation

    async def get_by_id(self, generation_id: UUID) -> Generation | None:
        """Retrieve generation by UUID.

        Args:
            generation_id: Generation's unique identifier

        Returns:
            Generation if found, None otherwise
        """
        result = await self.session.execute(
            select(Generation).where(Generation.id == generation_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_id_and_type(
        self, generation_id: UUID, generation_type: GenerationType
    ) -> Generation | None:
        """Retrieve generation by UUID, only if it has the given type.

        Status endpoints are per type; a try-on id looked up through the
        composite endpoint is treated as unknown.
        """
        result = await self.session.execute(
            select(Generation).where(
                Generation.id == generation_id,  # type: ignore[arg-type]
                Generation.type == generation_type,  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def save_if_version(self, generation: Generation, expected_version: int) -> bool:
        """Write the mutable lifecycle fields if the stored version still matches.

        Query:
            UPDATE generations
            SET status, progress, storage_path, error, updated_at, version = version + 1
            WHERE id = :id AND version = :expected_version

        On success the in-memory entity's version is advanced to match the row.

        Args:
            generation: Entity carrying the new field values
            expected_version: Version the caller read before making its changes

        Returns:
            True if the row was updated, False if another writer got there first
        """
        result = await self.session.execute(
            update(Generation)
            .where(
                Generation.id == generation.id,  # type: ignore[arg-type]
                Generation.version == expected_version,  # type: ignore[arg-type]
            )
            .values(
                status=generation.status,
                progress=generation.progress,
                storage_path=generation.storage_path,
                error=generation.error,
                updated_at=generation.updated_at,
                version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        updated = result.rowcount == 1  # type: ignore[attr-defined]
        if updated:
            generation.version = expected_version + 1
        return updated

    async def get_processing(self, limit: int = 10) -> list[Generation]:
        """Retrieve generations still processing, least recently updated first.

        Used by the sweeper so that every open generation is eventually polled
        even when no client is asking for it.

        Args:
            limit: Maximum number of generations to retrieve (default: 10)

        Returns:
            List of processing generations ordered by updated_at ascending
        """
        result = await self.session.execute(
            select(Generation)
            .where(Generation.status == GenerationStatus.PROCESSING)  # type: ignore[arg-type]
            .order_by(Generation.updated_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_processing_older_than(self, cutoff: datetime) -> int:
        """Count processing generations created before the cutoff."""
        result = await self.session.execute(
            select(func.count()).select_from(Generation).where(
                Generation.status == GenerationStatus.PROCESSING,  # type: ignore[arg-type]
                Generation.created_at < cutoff,  # type: ignore[arg-type]
            )
        )
        return result.scalar_one()

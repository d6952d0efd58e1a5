"""Generation lifecycle orchestrator.

State machine:

    processing -> completed
    processing -> failed

create() submits a provider job and records it as processing. get_status()
returns terminal generations straight from the record store; for processing
ones it calls advance(), which polls the provider once, applies the outcome
and persists it. advance() has no HTTP dependency so the sweeper worker and
CLI drive generations exactly like a client status check does.

The download-and-upload step runs only on a processing record, and every
transition is a compare-and-swap on Generation.version. A status check that
loses a race deletes the artifact it uploaded and returns the winner's record.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Awaitable, Callable, Mapping, Optional
from uuid import UUID

import structlog

from vestis.core.timezone import as_utc, utcnow
from vestis.models.generation import Generation, GenerationStatus, GenerationType
from vestis.services.exceptions import (
    GenerationNotFoundError,
    InvalidSourceGenerationError,
    ProviderPollError,
    StorageConfigurationError,
    StorageError,
)
from vestis.services.generation.projection import GenerationProjection, project_generation
from vestis.services.providers.base import (
    GenerationInput,
    PollResult,
    ProviderAdapter,
    ProviderStatus,
    describe_output,
    resolve_output_url,
)
from vestis.services.storage.artifacts import (
    ArtifactStore,
    build_storage_path,
    download_artifact,
)

logger = structlog.get_logger(__name__)

PROGRESS_PROCESSING = 50
PROGRESS_WAITING = 25

DOWNLOAD_FAILED_MESSAGE = "Failed to download or process the generated image"
PROVIDER_FAILED_MESSAGE = "Generation failed"


def estimate_progress(poll: PollResult) -> int:
    """Coarse progress estimate for an in-progress provider job."""
    if poll.provider_status.strip().lower() == "processing":
        return PROGRESS_PROCESSING
    return PROGRESS_WAITING


@dataclass
class SweepResult:
    """Outcome of one sweep over processing generations."""

    checked: int = 0
    completed: int = 0
    failed: int = 0
    still_processing: int = 0
    errors: list[str] = field(default_factory=list)


class GenerationOrchestrator:
    """Owns every Generation record and drives it through its lifecycle."""

    def __init__(
        self,
        uow_factory: Callable,
        adapters: Mapping[GenerationType, ProviderAdapter],
        artifact_store: ArtifactStore,
        buckets: Mapping[GenerationType, str],
        download: Callable[[str], Awaitable[bytes]] = download_artifact,
        signed_url_ttl_seconds: int = 3600,
        stale_after: Optional[timedelta] = None,
    ):
        """Initialize orchestrator.

        Args:
            uow_factory: Factory returning UnitOfWork instances (see create_uow_factory)
            adapters: Provider adapter per generation type
            artifact_store: Store for output artifacts
            buckets: Destination bucket per generation type
            download: Coroutine fetching output bytes from a provider URL
            signed_url_ttl_seconds: Lifetime of image URLs handed to clients
            stale_after: Fail processing generations older than this (None disables)
        """
        self._uow_factory = uow_factory
        self._adapters = dict(adapters)
        self._artifact_store = artifact_store
        self._buckets = dict(buckets)
        self._download = download
        self._signed_url_ttl_seconds = signed_url_ttl_seconds
        self._stale_after = stale_after

    def bucket_for(self, generation_type: GenerationType) -> str:
        return self._buckets[generation_type]

    async def create(
        self,
        generation_type: GenerationType,
        payload: GenerationInput,
        metadata: Optional[dict] = None,
        user_id: str = "anonymous",
        source_generation_id: Optional[UUID] = None,
    ) -> UUID:
        """Submit a provider job and record it as processing.

        Returns as soon as the provider accepted the job. Nothing is written
        when submission fails.

        Args:
            generation_type: try-on or composite
            payload: Provider input (images and prompt)
            metadata: Input ids and prompt, stored for audit only
            user_id: Opaque owner id
            source_generation_id: Try-on generation a composite builds on

        Returns:
            The new generation id

        Raises:
            InvalidSourceGenerationError: source_generation_id is unusable
            ProviderSubmissionError: The provider rejected the job
        """
        if source_generation_id is not None:
            await self._check_source(source_generation_id)

        adapter = self._adapters[generation_type]
        generation = Generation(
            type=generation_type,
            user_id=user_id,
            input_metadata=dict(metadata or {}),
            source_generation_id=source_generation_id,
        )
        log = logger.bind(generation_id=str(generation.id), generation_type=generation_type.value)
        log.info("generation.submitting", provider=adapter.name)

        external_id = await adapter.submit(payload)
        generation.mark_processing(external_id)

        async with await self._uow_factory() as uow:
            await uow.generations.add(generation)

        log.info("generation.created", external_id=external_id)
        return generation.id

    async def _check_source(self, source_generation_id: UUID) -> None:
        async with await self._uow_factory() as uow:
            source = await uow.generations.get_by_id(source_generation_id)

        if source is None:
            raise InvalidSourceGenerationError(
                f"Source generation {source_generation_id} not found"
            )
        if source.type != GenerationType.TRY_ON:
            raise InvalidSourceGenerationError(
                f"Source generation {source_generation_id} is a {source.type.value} generation, "
                "expected try-on"
            )
        if source.status != GenerationStatus.COMPLETED:
            raise InvalidSourceGenerationError(
                f"Source generation {source_generation_id} is {source.status.value}, "
                "expected completed"
            )

    async def get_status(
        self, generation_id: UUID, generation_type: Optional[GenerationType] = None
    ) -> GenerationProjection:
        """Return the freshest known state of a generation.

        Terminal generations are answered from the record store without any
        provider call. Processing generations are advanced by one poll first.

        Raises:
            GenerationNotFoundError: No generation with this id (and type)
            ProviderPollError: The provider could not be polled; record unchanged
        """
        async with await self._uow_factory() as uow:
            if generation_type is None:
                generation = await uow.generations.get_by_id(generation_id)
            else:
                generation = await uow.generations.get_by_id_and_type(
                    generation_id, generation_type
                )

        if generation is None:
            raise GenerationNotFoundError(f"Generation {generation_id} not found")

        if not generation.is_terminal:
            generation = await self.advance(generation)

        return await self.project(generation)

    async def project(self, generation: Generation) -> GenerationProjection:
        return await project_generation(
            generation,
            self._artifact_store,
            self.bucket_for(generation.type),
            self._signed_url_ttl_seconds,
        )

    async def advance(self, generation: Generation) -> Generation:
        """Poll the provider once and persist the resulting state.

        Args:
            generation: A generation as loaded from the record store

        Returns:
            The persisted generation (another writer's version if this call lost a race)

        Raises:
            ProviderPollError: Poll failed; nothing was written
        """
        if generation.is_terminal:
            return generation

        log = logger.bind(generation_id=str(generation.id), generation_type=generation.type.value)
        expected_version = generation.version
        adapter = self._adapters[generation.type]

        try:
            poll = await adapter.poll(generation.external_id or "")
        except ProviderPollError as e:
            log.warning("generation.poll.failed", error=str(e), status_code=e.status_code)
            raise

        uploaded_path = None
        if poll.status is ProviderStatus.IN_PROGRESS:
            if self._is_stale(generation):
                hours = self._stale_after.total_seconds() / 3600  # type: ignore[union-attr]
                generation.mark_failed(
                    f"Generation timed out: no result from the provider after {hours:g} hours"
                )
                log.warning("generation.expired", provider_status=poll.provider_status)
            else:
                generation.mark_progress(estimate_progress(poll))
                log.debug(
                    "generation.poll.in_progress",
                    provider_status=poll.provider_status,
                    progress=generation.progress,
                )
        elif poll.status is ProviderStatus.FAILED:
            generation.mark_failed(poll.error or PROVIDER_FAILED_MESSAGE)
            log.info("generation.provider_failed", error=generation.error)
        else:
            uploaded_path = await self._store_output(generation, poll, log)

        return await self._persist(generation, expected_version, uploaded_path, log)

    def _is_stale(self, generation: Generation) -> bool:
        if not self._stale_after:
            return False
        return utcnow() - as_utc(generation.created_at) > self._stale_after

    async def _store_output(self, generation: Generation, poll: PollResult, log) -> Optional[str]:
        """Download the provider output and upload it to the type's bucket.

        Every failure is written into the generation as a failed transition.

        Returns:
            The uploaded storage path, or None if the generation failed
        """
        url = resolve_output_url(poll.output)
        if not url:
            generation.mark_failed(
                "No output image received from the API. "
                f"Output format: {describe_output(poll.output)}"
            )
            log.warning("generation.output.missing", output_format=describe_output(poll.output))
            return None

        try:
            data = await self._download(url)
        except Exception as e:
            log.error(
                "generation.download.failed",
                output_url=url,
                error=str(e),
                error_type=type(e).__name__,
            )
            generation.mark_failed(DOWNLOAD_FAILED_MESSAGE)
            return None

        bucket = self.bucket_for(generation.type)
        storage_path = build_storage_path(generation.id)
        try:
            await self._artifact_store.upload(bucket, storage_path, data, content_type="image/png")
        except StorageConfigurationError as e:
            log.error("generation.upload.misconfigured", bucket=bucket, error=str(e))
            generation.mark_failed(str(e))
            return None
        except Exception as e:
            log.error(
                "generation.upload.failed",
                bucket=bucket,
                error=str(e),
                error_type=type(e).__name__,
            )
            generation.mark_failed(f"Failed to store the generated image: {e}")
            return None

        generation.mark_completed(storage_path)
        log.info("generation.output.stored", bucket=bucket, storage_path=storage_path)
        return storage_path

    async def _persist(
        self,
        generation: Generation,
        expected_version: int,
        uploaded_path: Optional[str],
        log,
    ) -> Generation:
        current = None
        async with await self._uow_factory() as uow:
            saved = await uow.generations.save_if_version(generation, expected_version)
            if not saved:
                current = await uow.generations.get_by_id(generation.id)

        if saved:
            log.info(
                "generation.persisted",
                status=generation.status.value,
                progress=generation.progress,
                version=generation.version,
            )
            return generation

        log.warning("generation.transition.conflict", expected_version=expected_version)
        if uploaded_path and (current is None or current.storage_path != uploaded_path):
            await self._discard(generation.type, uploaded_path, log)
        if current is None:
            raise GenerationNotFoundError(f"Generation {generation.id} not found")
        return current

    async def _discard(self, generation_type: GenerationType, storage_path: str, log) -> None:
        bucket = self.bucket_for(generation_type)
        try:
            await self._artifact_store.delete(bucket, [storage_path])
            log.info("generation.output.discarded", bucket=bucket, storage_path=storage_path)
        except StorageError as e:
            log.error(
                "generation.output.discard_failed",
                bucket=bucket,
                storage_path=storage_path,
                error=str(e),
            )

    async def sweep(self, limit: int = 10) -> SweepResult:
        """Advance up to `limit` processing generations, least recently updated first.

        A poll failure on one generation is recorded and does not stop the batch.
        """
        async with await self._uow_factory() as uow:
            generations = await uow.generations.get_processing(limit=limit)

        result = SweepResult()
        for generation in generations:
            result.checked += 1
            try:
                advanced = await self.advance(generation)
            except ProviderPollError as e:
                result.errors.append(f"{generation.id}: {e}")
                result.still_processing += 1
                continue

            if advanced.status == GenerationStatus.COMPLETED:
                result.completed += 1
            elif advanced.status == GenerationStatus.FAILED:
                result.failed += 1
            else:
                result.still_processing += 1

        if result.checked:
            logger.info(
                "generation.sweep.finished",
                checked=result.checked,
                completed=result.completed,
                failed=result.failed,
                still_processing=result.still_processing,
                errors=len(result.errors),
            )
        return result

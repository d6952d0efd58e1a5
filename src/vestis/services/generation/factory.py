"""Builds the production GenerationOrchestrator from Settings."""

from datetime import timedelta
from typing import Optional

from vestis.core.config import Settings
from vestis.models.generation import GenerationType
from vestis.services.generation.orchestrator import GenerationOrchestrator
from vestis.services.providers.image_combiner import ImageCombinerAdapter
from vestis.services.providers.replicate_tryon import ReplicateTryOnAdapter
from vestis.services.storage.supabase_client import SupabaseStorageClient


def build_orchestrator(settings: Settings, uow_factory) -> GenerationOrchestrator:
    """Wire storage, provider adapters and buckets into an orchestrator.

    Used by the app lifespan and the sweep CLI so both drive generations
    with identical configuration.
    """
    storage = SupabaseStorageClient(
        base_url=settings.supabase_url,
        service_key=settings.supabase_service_key,
    )

    adapters = {
        GenerationType.TRY_ON: ReplicateTryOnAdapter(
            api_token=settings.replicate_api_token,
            model_version=settings.tryon_model_version,
        ),
        GenerationType.COMPOSITE: ImageCombinerAdapter(
            api_key=settings.api_market_key,
            artifact_store=storage,
            base_url=settings.image_combiner_base_url,
            model_version=settings.image_combiner_version,
            temp_bucket=settings.temp_bucket,
            poll_interval_seconds=settings.image_combiner_poll_interval_seconds,
            timeout_seconds=settings.image_combiner_timeout_seconds,
            staging_hold_seconds=settings.image_combiner_staging_hold_seconds,
            blocking_poll=settings.image_combiner_blocking_poll,
            signed_url_ttl_seconds=settings.signed_url_ttl_seconds,
        ),
    }

    stale_after: Optional[timedelta] = None
    if settings.stale_generation_hours > 0:
        stale_after = timedelta(hours=settings.stale_generation_hours)

    return GenerationOrchestrator(
        uow_factory=uow_factory,
        adapters=adapters,
        artifact_store=storage,
        buckets={
            GenerationType.TRY_ON: settings.tryon_bucket,
            GenerationType.COMPOSITE: settings.composite_bucket,
        },
        signed_url_ttl_seconds=settings.signed_url_ttl_seconds,
        stale_after=stale_after,
    )

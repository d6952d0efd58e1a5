"""Generation sweeper worker.

Advances processing generations that no client is polling anymore, so
abandoned jobs still reach a terminal state (completed, failed, or expired
once older than STALE_GENERATION_HOURS).

The sweeper uses the same GenerationOrchestrator.advance() path as the status
endpoints. Concurrent status checks are safe: every transition is a
compare-and-swap on the generation version.
"""

import asyncio

import structlog

from vestis.core.config import Settings
from vestis.services.generation.orchestrator import GenerationOrchestrator

logger = structlog.get_logger(__name__)

ERROR_BACKOFF_SECONDS = 5


async def run_generation_sweeper(
    orchestrator: GenerationOrchestrator,
    settings: Settings,
) -> None:
    """Main worker loop for the generation sweeper.

    Polls at SWEEPER_INTERVAL_SECONDS and advances up to SWEEPER_BATCH_SIZE
    generations per pass, least recently updated first.

    Args:
        orchestrator: Orchestrator shared with the HTTP layer
        settings: Application settings (interval, batch size)
    """
    logger.info(
        "worker.started",
        worker="generation_sweeper",
        poll_interval=settings.sweeper_interval_seconds,
        batch_size=settings.sweeper_batch_size,
    )

    try:
        while True:
            try:
                await orchestrator.sweep(limit=settings.sweeper_batch_size)
                await asyncio.sleep(settings.sweeper_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    worker="generation_sweeper",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(ERROR_BACKOFF_SECONDS)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker="generation_sweeper")
        raise

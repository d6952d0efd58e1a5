"""Replicate IDM-VTON adapter for virtual try-on generation.

Model: cuuupid/idm-vton on Replicate. Source images are passed through
unchanged; Replicate accepts both data URLs and fetchable URLs.
"""

import asyncio
from typing import Any, Optional

import httpx
import replicate
import structlog
from replicate.exceptions import ReplicateError as ReplicateAPIError

from vestis.services.exceptions import ProviderPollError, ProviderSubmissionError
from vestis.services.providers.base import GenerationInput, PollResult

logger = structlog.get_logger(__name__)

DEFAULT_TRYON_PROMPT = "A person wearing clothing"

DEFAULT_TRYON_PARAMETERS: dict[str, Any] = {
    "aspect_ratio": "match_input_image",
    "output_format": "png",
    "safety_tolerance": 2,
}


def _upstream_details(exception: Exception) -> tuple[Optional[int], str]:
    """Pull the upstream HTTP status and message out of an SDK/network error."""
    status_code = getattr(exception, "status", None)
    if status_code is None and isinstance(exception, httpx.HTTPStatusError):
        status_code = exception.response.status_code
    message = getattr(exception, "detail", None) or str(exception)
    return status_code, str(message)


def _preview(image: str) -> str:
    """Loggable form of an image reference (never log inline image data)."""
    return f"{image[:30]}..." if image.startswith("data:") else image


class ReplicateTryOnAdapter:
    """Try-on provider adapter backed by the Replicate predictions API.

    One upstream round trip per poll. The Replicate SDK is synchronous, so
    calls run in a worker thread.
    """

    name = "replicate-idm-vton"

    def __init__(self, api_token: str, model_version: str, client: Any = None):
        """Initialize adapter.

        Args:
            api_token: Replicate API token (from REPLICATE_API_TOKEN env var)
            model_version: IDM-VTON model version hash
            client: Optional pre-built replicate.Client (tests pass a fake)
        """
        self.model_version = model_version
        self.client = client or replicate.Client(api_token=api_token)

    async def submit(self, payload: GenerationInput) -> str:
        """Create a try-on prediction.

        Args:
            payload: model image (first_image), clothing image (second_image), prompt

        Returns:
            Replicate prediction id

        Raises:
            ProviderSubmissionError: Upstream rejected the request or was unreachable
        """
        prompt = payload.prompt or DEFAULT_TRYON_PROMPT
        model_input = {
            **DEFAULT_TRYON_PARAMETERS,
            **payload.parameters,
            "prompt": prompt,
            "input_image_1": payload.first_image,
            "input_image_2": payload.second_image,
        }

        logger.info(
            "provider.submit.started",
            provider=self.name,
            model_image=_preview(payload.first_image),
            clothing_image=_preview(payload.second_image),
        )

        try:
            prediction = await asyncio.to_thread(
                self.client.predictions.create, version=self.model_version, input=model_input
            )
        except (ReplicateAPIError, httpx.HTTPError, ConnectionError, OSError) as e:
            status_code, message = _upstream_details(e)
            logger.warning(
                "provider.submit.failed",
                provider=self.name,
                status_code=status_code,
                error=message,
            )
            raise ProviderSubmissionError(
                f"IDM-VTON API error: {message}", status_code=status_code
            ) from e

        logger.info("provider.submit.succeeded", provider=self.name, external_id=prediction.id)
        return prediction.id

    async def poll(self, external_id: str) -> PollResult:
        """Fetch the current state of a prediction.

        Raises:
            ProviderPollError: The status request itself failed
        """
        try:
            prediction = await asyncio.to_thread(self.client.predictions.get, external_id)
        except (ReplicateAPIError, httpx.HTTPError, ConnectionError, OSError) as e:
            status_code, message = _upstream_details(e)
            logger.warning(
                "provider.poll.failed",
                provider=self.name,
                external_id=external_id,
                status_code=status_code,
                error=message,
            )
            raise ProviderPollError(
                f"IDM-VTON API error: {message}", status_code=status_code
            ) from e

        result = PollResult.from_provider(
            getattr(prediction, "status", None),
            output=getattr(prediction, "output", None),
            error=getattr(prediction, "error", None),
        )
        logger.debug(
            "provider.poll.received",
            provider=self.name,
            external_id=external_id,
            provider_status=result.provider_status,
            has_output=result.output is not None,
        )
        return result

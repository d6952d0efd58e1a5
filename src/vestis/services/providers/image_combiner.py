"""api.market AI Image Combiner adapter for scene composite generation.

API: https://prod.api.market/api/v1/magicapi/ai-image-combiner-api
Docs: https://api.market/store/magicapi/ai-image-combiner-api

The combiner cannot take inline image data, so data URLs are staged into the
temp bucket first and the provider receives fetchable URLs. Staged objects
are always deleted before submit() returns, at most staging_hold_seconds
after the provider accepted the job.
"""

import asyncio
import base64
import binascii
import time
import uuid
from typing import Any, Callable, Optional

import httpx
import structlog

from vestis.services.exceptions import (
    ProviderPollError,
    ProviderSubmissionError,
    StorageError,
)
from vestis.services.providers.base import (
    GenerationInput,
    PollResult,
    ProviderStatus,
)
from vestis.services.storage.artifacts import ArtifactStore, signed_or_public_url

logger = structlog.get_logger(__name__)

DEFAULT_COMPOSITE_PARAMETERS: dict[str, Any] = {
    "negative_prompt": "distorted, blurry, low quality, unrealistic positioning",
    "guidance_scale": 7.5,
    "num_inference_steps": 30,
}

# Provider statuses reported before the job has fetched its inputs.
_WAITING_STATUSES = frozenset({"", "starting", "queued", "pending"})

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


def is_inline_image(value: str) -> bool:
    """True for data URLs and bare base64; False for fetchable http(s) URLs."""
    return not value.startswith(("http://", "https://"))


def decode_inline_image(value: str) -> tuple[bytes, str]:
    """Decode a data URL (or bare base64 string) into bytes and a MIME type.

    Raises:
        ValueError: If the payload is not valid base64
    """
    mime_type = "image/jpeg"
    data = value
    if value.startswith("data:"):
        header, _, data = value.partition(",")
        mime_type = header[len("data:") :].split(";")[0] or mime_type
    try:
        return base64.b64decode(data, validate=True), mime_type
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 image data: {e}") from e


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"{response.reason_phrase} - {response.text}"
    if isinstance(payload, dict):
        for key in ("message", "error", "title", "detail"):
            if payload.get(key):
                return str(payload[key])
    return response.reason_phrase


def _json_object(response: httpx.Response) -> Optional[dict]:
    try:
        payload = response.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _inputs_consumed(result: PollResult) -> bool:
    return (
        result.status is not ProviderStatus.IN_PROGRESS
        or result.provider_status.lower() not in _WAITING_STATUSES
    )


def _is_settled(result: PollResult) -> bool:
    return result.status is not ProviderStatus.IN_PROGRESS


class ImageCombinerAdapter:
    """Composite provider adapter backed by the AI Image Combiner predictions API.

    poll() is a single round trip by default. With blocking_poll=True it runs
    the internal polling loop (fixed interval, hard timeout) and only returns
    once the job succeeded or failed.
    """

    name = "image-combiner"

    def __init__(
        self,
        api_key: str,
        artifact_store: ArtifactStore,
        base_url: str,
        model_version: str,
        temp_bucket: str = "temp-bucket",
        poll_interval_seconds: float = 2.0,
        timeout_seconds: float = 600.0,
        staging_hold_seconds: float = 5.0,
        blocking_poll: bool = False,
        signed_url_ttl_seconds: int = 3600,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize adapter.

        Args:
            api_key: api.market key (from API_MARKET_KEY env var)
            artifact_store: Store used to stage inline images
            base_url: Combiner API base URL
            model_version: Combiner model version hash
            temp_bucket: Bucket for staged inputs
            poll_interval_seconds: Delay between polls in the internal loop
            timeout_seconds: Hard wall-clock bound of the internal loop
            staging_hold_seconds: How long submit() keeps staged inputs alive while
                the provider is still starting
            blocking_poll: Make poll() wait for a terminal status
            signed_url_ttl_seconds: Lifetime of staged-input URLs
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.artifact_store = artifact_store
        self.base_url = base_url.rstrip("/")
        self.model_version = model_version
        self.temp_bucket = temp_bucket
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds
        self.staging_hold_seconds = staging_hold_seconds
        self.blocking_poll = blocking_poll
        self.signed_url_ttl_seconds = signed_url_ttl_seconds
        self._transport = transport
        self.headers = {"x-magicapi-key": api_key}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=30.0, transport=self._transport)

    async def _stage(self, image: str, label: str, staging_id: str, staged: list[str]) -> str:
        """Upload an inline image to the temp bucket and return a fetchable URL.

        The path is appended to `staged` before the upload so the caller's
        cleanup covers partially completed staging too.
        """
        data, mime_type = decode_inline_image(image)
        path = f"temp/{staging_id}-{label}.{_EXTENSIONS.get(mime_type, 'jpg')}"
        staged.append(path)
        await self.artifact_store.upload(self.temp_bucket, path, data, content_type=mime_type)
        return await signed_or_public_url(
            self.artifact_store, self.temp_bucket, path, self.signed_url_ttl_seconds
        )

    async def _cleanup(self, staged: list[str]) -> None:
        try:
            await self.artifact_store.delete(self.temp_bucket, staged)
            logger.info("provider.staging.cleaned", provider=self.name, paths=staged)
        except StorageError as e:
            logger.error(
                "provider.staging.cleanup_failed",
                provider=self.name,
                paths=staged,
                error=str(e),
            )

    async def submit(self, payload: GenerationInput) -> str:
        """Create a composite prediction.

        Inline images are staged first. When anything was staged, the adapter
        waits (bounded by staging_hold_seconds) until the provider has left
        its starting state before deleting the staged objects.

        Args:
            payload: figure image (first_image), scene image (second_image), prompt

        Returns:
            Combiner prediction id

        Raises:
            ProviderSubmissionError: Staging failed, or upstream rejected the request
        """
        staged: list[str] = []
        staging_id = str(uuid.uuid4())
        try:
            try:
                figure_url = payload.first_image
                scene_url = payload.second_image
                if is_inline_image(figure_url):
                    figure_url = await self._stage(figure_url, "figure", staging_id, staged)
                if is_inline_image(scene_url):
                    scene_url = await self._stage(scene_url, "scene", staging_id, staged)
            except (StorageError, ValueError) as e:
                logger.warning("provider.staging.failed", provider=self.name, error=str(e))
                raise ProviderSubmissionError(f"Failed to stage input images: {e}") from e

            body = {
                "version": self.model_version,
                "input": {
                    **DEFAULT_COMPOSITE_PARAMETERS,
                    **payload.parameters,
                    "input_image_1": figure_url,
                    "input_image_2": scene_url,
                    "prompt": payload.prompt,
                },
            }

            logger.info(
                "provider.submit.started",
                provider=self.name,
                staged_inputs=len(staged),
            )

            try:
                async with self._client() as client:
                    response = await client.post(
                        f"{self.base_url}/predictions", headers=self.headers, json=body
                    )
            except httpx.HTTPError as e:
                raise ProviderSubmissionError(
                    f"AI Image Combiner API error: Network error: {str(e)}"
                ) from e

            if not response.is_success:
                message = _error_message(response)
                logger.warning(
                    "provider.submit.failed",
                    provider=self.name,
                    status_code=response.status_code,
                    error=message,
                )
                raise ProviderSubmissionError(
                    f"AI Image Combiner API error: {message}", status_code=response.status_code
                )

            prediction = _json_object(response)
            if prediction is None:
                raise ProviderSubmissionError(
                    "AI Image Combiner API error: response was not a JSON object",
                    status_code=response.status_code,
                )
            external_id = prediction.get("id")
            if not external_id:
                raise ProviderSubmissionError(
                    "AI Image Combiner API error: response did not include a prediction id",
                    status_code=response.status_code,
                )

            logger.info("provider.submit.succeeded", provider=self.name, external_id=external_id)

            if staged:
                try:
                    await self.wait_for_result(
                        external_id,
                        settled=_inputs_consumed,
                        timeout_seconds=self.staging_hold_seconds,
                    )
                except ProviderPollError as e:
                    # The job exists; status checks will report what became of it.
                    logger.warning(
                        "provider.staging.wait_failed",
                        provider=self.name,
                        external_id=external_id,
                        error=str(e),
                    )

            return external_id
        finally:
            if staged:
                await self._cleanup(staged)

    async def _poll_once(self, external_id: str) -> PollResult:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.base_url}/predictions/{external_id}", headers=self.headers
                )
        except httpx.HTTPError as e:
            raise ProviderPollError(f"Network error: {str(e)}") from e

        if not response.is_success:
            logger.warning(
                "provider.poll.failed",
                provider=self.name,
                external_id=external_id,
                status_code=response.status_code,
                error=response.text,
            )
            raise ProviderPollError(
                f"API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        prediction = _json_object(response)
        if prediction is None:
            logger.warning(
                "provider.poll.malformed",
                provider=self.name,
                external_id=external_id,
                body=response.text[:200],
            )
            raise ProviderPollError(
                "API error: response was not a JSON object", status_code=response.status_code
            )
        return PollResult.from_provider(
            prediction.get("status"),
            output=prediction.get("output"),
            error=prediction.get("error"),
        )

    async def wait_for_result(
        self,
        external_id: str,
        settled: Callable[[PollResult], bool] = _is_settled,
        timeout_seconds: Optional[float] = None,
    ) -> PollResult:
        """Poll at a fixed interval until `settled` holds or the timeout elapses.

        Raises:
            ProviderPollError: On a failed status request, or after the timeout
                (timeout_seconds, defaulting to the adapter's own)
        """
        if timeout_seconds is None:
            timeout_seconds = self.timeout_seconds
        started = time.monotonic()
        while time.monotonic() - started < timeout_seconds:
            result = await self._poll_once(external_id)
            if settled(result):
                return result
            logger.debug(
                "provider.poll.waiting",
                provider=self.name,
                external_id=external_id,
                provider_status=result.provider_status,
                elapsed_seconds=round(time.monotonic() - started),
            )
            remaining = timeout_seconds - (time.monotonic() - started)
            await asyncio.sleep(max(0.0, min(self.poll_interval_seconds, remaining)))

        raise ProviderPollError(f"Prediction timed out after {timeout_seconds:g} seconds")

    async def poll(self, external_id: str) -> PollResult:
        """Fetch the current state of a prediction (or wait for it, if blocking).

        Raises:
            ProviderPollError: The status request failed or the wait timed out
        """
        if self.blocking_poll:
            return await self.wait_for_result(external_id)
        return await self._poll_once(external_id)

"""Tests for the Replicate IDM-VTON try-on adapter (fake SDK client)."""

from types import SimpleNamespace

import httpx
import pytest
from replicate.exceptions import ReplicateError

from vestis.services.exceptions import ProviderPollError, ProviderSubmissionError
from vestis.services.providers.base import GenerationInput, ProviderStatus
from vestis.services.providers.replicate_tryon import (
    DEFAULT_TRYON_PROMPT,
    ReplicateTryOnAdapter,
)


class FakePredictions:
    def __init__(self):
        self.created = []
        self.create_error = None
        self.get_error = None
        self.prediction = SimpleNamespace(id="pred-1", status="starting", output=None, error=None)

    def create(self, version, input):
        if self.create_error is not None:
            raise self.create_error
        self.created.append({"version": version, "input": input})
        return SimpleNamespace(id="pred-1", status="starting")

    def get(self, prediction_id):
        if self.get_error is not None:
            raise self.get_error
        return self.prediction


@pytest.fixture
def predictions():
    return FakePredictions()


@pytest.fixture
def adapter(predictions):
    client = SimpleNamespace(predictions=predictions)
    return ReplicateTryOnAdapter(api_token="r8_test", model_version="v-hash", client=client)


@pytest.mark.asyncio
async def test_submit_passes_images_through(adapter, predictions):
    payload = GenerationInput(
        first_image="data:image/png;base64,AAAA",
        second_image="https://cdn.test/shirt.png",
        prompt="A person wearing a red jacket",
    )

    external_id = await adapter.submit(payload)

    assert external_id == "pred-1"
    call = predictions.created[0]
    assert call["version"] == "v-hash"
    assert call["input"]["input_image_1"] == "data:image/png;base64,AAAA"
    assert call["input"]["input_image_2"] == "https://cdn.test/shirt.png"
    assert call["input"]["prompt"] == "A person wearing a red jacket"
    assert call["input"]["output_format"] == "png"


@pytest.mark.asyncio
async def test_submit_uses_default_prompt_when_empty(adapter, predictions):
    await adapter.submit(GenerationInput(first_image="a", second_image="b", prompt=""))

    assert predictions.created[0]["input"]["prompt"] == DEFAULT_TRYON_PROMPT


@pytest.mark.asyncio
async def test_submit_error_carries_upstream_status_and_message(adapter, predictions):
    predictions.create_error = ReplicateError(status=422, detail="Invalid image input")

    with pytest.raises(ProviderSubmissionError) as exc_info:
        await adapter.submit(GenerationInput(first_image="a", second_image="b", prompt="hello"))

    assert exc_info.value.status_code == 422
    assert exc_info.value.message == "IDM-VTON API error: Invalid image input"


@pytest.mark.asyncio
async def test_submit_network_error(adapter, predictions):
    predictions.create_error = httpx.ConnectError("connection refused")

    with pytest.raises(ProviderSubmissionError, match="connection refused"):
        await adapter.submit(GenerationInput(first_image="a", second_image="b", prompt="hello"))


@pytest.mark.asyncio
async def test_poll_maps_prediction(adapter, predictions):
    predictions.prediction = SimpleNamespace(
        id="pred-1", status="succeeded", output=["https://replicate.delivery/out.png"], error=None
    )

    result = await adapter.poll("pred-1")

    assert result.status is ProviderStatus.SUCCEEDED
    assert result.output == ["https://replicate.delivery/out.png"]
    assert result.error is None


@pytest.mark.asyncio
async def test_poll_reports_provider_failure(adapter, predictions):
    predictions.prediction = SimpleNamespace(
        id="pred-1", status="failed", output=None, error="NSFW content detected"
    )

    result = await adapter.poll("pred-1")

    assert result.status is ProviderStatus.FAILED
    assert result.error == "NSFW content detected"


@pytest.mark.asyncio
async def test_poll_transport_failure_raises(adapter, predictions):
    predictions.get_error = httpx.ReadTimeout("timed out")

    with pytest.raises(ProviderPollError):
        await adapter.poll("pred-1")

"""Tests for the Supabase Storage client and artifact helpers."""

import json
import re
from uuid import uuid4

import httpx
import pytest

from vestis.services.exceptions import (
    ArtifactDownloadError,
    ArtifactUploadError,
    StorageConfigurationError,
    StorageError,
)
from vestis.services.storage.artifacts import (
    build_storage_path,
    download_artifact,
    signed_or_public_url,
)
from vestis.services.storage.supabase_client import SupabaseStorageClient

SUPABASE_URL = "https://project.supabase.test"


def _client(handler) -> SupabaseStorageClient:
    return SupabaseStorageClient(
        base_url=SUPABASE_URL + "/",
        service_key="service-key",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_upload_posts_object_without_upsert():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Key": "try-on-images/gen/1.png"})

    path = await _client(handler).upload("try-on-images", "gen/1.png", b"png", "image/png")

    assert path == "gen/1.png"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/storage/v1/object/try-on-images/gen/1.png"
    assert request.headers["authorization"] == "Bearer service-key"
    assert request.headers["apikey"] == "service-key"
    assert request.headers["x-upsert"] == "false"
    assert request.headers["content-type"] == "image/png"
    assert request.content == b"png"


@pytest.mark.asyncio
async def test_upload_missing_bucket_is_configuration_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"statusCode": "404", "message": "Bucket not found"})

    with pytest.raises(StorageConfigurationError) as exc_info:
        await _client(handler).upload("composite-images", "gen/1.png", b"png")

    message = str(exc_info.value)
    assert message.startswith("Storage configuration issue: Bucket not found")
    assert 'Please ensure the "composite-images" bucket exists' in message
    assert exc_info.value.bucket == "composite-images"


@pytest.mark.asyncio
async def test_upload_unauthorized_is_upload_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"message": "invalid signature"})

    with pytest.raises(ArtifactUploadError, match="SUPABASE_SERVICE_KEY"):
        await _client(handler).upload("try-on-images", "gen/1.png", b"png")


@pytest.mark.asyncio
async def test_upload_network_error_is_upload_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ArtifactUploadError, match="Network error"):
        await _client(handler).upload("try-on-images", "gen/1.png", b"png")


@pytest.mark.asyncio
async def test_create_signed_url_prefixes_storage_url():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/storage/v1/object/sign/try-on-images/gen/1.png"
        assert json.loads(request.content) == {"expiresIn": 3600}
        return httpx.Response(
            200, json={"signedURL": "/object/sign/try-on-images/gen/1.png?token=abc"}
        )

    url = await _client(handler).create_signed_url("try-on-images", "gen/1.png")

    assert url == f"{SUPABASE_URL}/storage/v1/object/sign/try-on-images/gen/1.png?token=abc"


@pytest.mark.asyncio
async def test_create_signed_url_failure_raises_storage_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "Object not found"})

    with pytest.raises(StorageError, match="Object not found"):
        await _client(handler).create_signed_url("try-on-images", "gen/missing.png")


def test_public_url():
    client = _client(lambda request: httpx.Response(500))

    assert (
        client.get_public_url("try-on-images", "gen/1.png")
        == f"{SUPABASE_URL}/storage/v1/object/public/try-on-images/gen/1.png"
    )


@pytest.mark.asyncio
async def test_delete_sends_prefixes():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    await _client(handler).delete("temp-bucket", ["temp/a-figure.png", "temp/a-scene.jpg"])

    assert seen[0].method == "DELETE"
    assert seen[0].url.path == "/storage/v1/object/temp-bucket"
    assert json.loads(seen[0].content) == {"prefixes": ["temp/a-figure.png", "temp/a-scene.jpg"]}


@pytest.mark.asyncio
async def test_delete_nothing_makes_no_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    await _client(handler).delete("temp-bucket", [])


@pytest.mark.asyncio
async def test_signed_or_public_url_falls_back_to_public():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="internal error")

    url = await signed_or_public_url(_client(handler), "try-on-images", "gen/1.png")

    assert url == f"{SUPABASE_URL}/storage/v1/object/public/try-on-images/gen/1.png"


def test_storage_paths_are_unique_and_namespaced():
    generation_id = uuid4()

    first = build_storage_path(generation_id)
    second = build_storage_path(generation_id)

    assert first != second
    assert re.fullmatch(rf"{generation_id}/\d{{13}}-[0-9a-f]{{8}}\.png", first)


@pytest.mark.asyncio
async def test_download_artifact_returns_bytes():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"\x89PNG data")

    data = await download_artifact(
        "https://cdn.test/out.png", transport=httpx.MockTransport(handler)
    )

    assert data == b"\x89PNG data"


@pytest.mark.asyncio
async def test_download_artifact_http_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    with pytest.raises(ArtifactDownloadError):
        await download_artifact("https://cdn.test/gone.png", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_download_artifact_empty_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"")

    with pytest.raises(ArtifactDownloadError, match="empty"):
        await download_artifact("https://cdn.test/empty.png", transport=httpx.MockTransport(handler))

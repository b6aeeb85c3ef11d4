from __future__ import annotations

import pytest

from app.core.settings import Settings
from app.services.blob_store import BlobStoreError, LocalBlobStore, S3BlobStore, build_blob_store


class FakeS3Client:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.put_calls: list[dict] = []

    def put_object(self, **kwargs) -> dict:
        if self.fail:
            raise ConnectionError("s3 unreachable")
        self.put_calls.append(kwargs)
        return {"ETag": '"abc"'}


@pytest.mark.asyncio
async def test_local_blob_store_writes_file_and_returns_public_url(tmp_path) -> None:
    store = LocalBlobStore(root_dir=str(tmp_path / "artifacts"), public_base_url="http://localhost:8000/artifacts/")

    url = await store.put("../swot-acme-1.md", b"# SWOT", "text/markdown; charset=utf-8")

    assert url == "http://localhost:8000/artifacts/swot-acme-1.md"
    assert (tmp_path / "artifacts" / "swot-acme-1.md").read_bytes() == b"# SWOT"


@pytest.mark.asyncio
async def test_local_blob_store_wraps_filesystem_failures(tmp_path) -> None:
    occupied = tmp_path / "artifacts"
    occupied.write_text("not a directory", encoding="utf-8")
    store = LocalBlobStore(root_dir=str(occupied), public_base_url="http://localhost:8000/artifacts")

    with pytest.raises(BlobStoreError) as excinfo:
        await store.put("swot-acme-1.pptx", b"PK", "application/octet-stream")

    assert isinstance(excinfo.value.__cause__, OSError)


@pytest.mark.asyncio
async def test_s3_blob_store_uploads_with_content_type() -> None:
    client = FakeS3Client()
    store = S3BlobStore(bucket_name="artifacts", region="eu-west-1", client=client)

    url = await store.put("memo-acme-1.md", b"# Memo", "text/markdown; charset=utf-8")

    assert url == "https://artifacts.s3.eu-west-1.amazonaws.com/memo-acme-1.md"
    assert client.put_calls == [
        {
            "Bucket": "artifacts",
            "Key": "memo-acme-1.md",
            "Body": b"# Memo",
            "ContentType": "text/markdown; charset=utf-8",
        }
    ]


@pytest.mark.asyncio
async def test_s3_blob_store_uses_path_style_url_for_custom_endpoint() -> None:
    store = S3BlobStore(bucket_name="artifacts", endpoint_url="http://localhost:4566/", client=FakeS3Client())

    assert await store.put("a.md", b"x", "text/markdown") == "http://localhost:4566/artifacts/a.md"


@pytest.mark.asyncio
async def test_s3_blob_store_wraps_upload_failures() -> None:
    store = S3BlobStore(bucket_name="artifacts", client=FakeS3Client(fail=True))

    with pytest.raises(BlobStoreError) as exc_info:
        await store.put("a.md", b"x", "text/markdown")

    assert isinstance(exc_info.value.__cause__, ConnectionError)


def test_build_blob_store_selects_backend() -> None:
    assert isinstance(build_blob_store(Settings(BLOB_STORE_BACKEND="local")), LocalBlobStore)
    assert isinstance(build_blob_store(Settings(BLOB_STORE_BACKEND="s3", S3_BUCKET_NAME="artifacts")), S3BlobStore)

    with pytest.raises(ValueError):
        build_blob_store(Settings(BLOB_STORE_BACKEND="s3"))

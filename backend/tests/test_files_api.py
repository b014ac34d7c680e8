"""HTTP surface: status codes, camelCase payloads and error rendering."""
import asyncio
import io
import os

from PIL import Image
from starlette.datastructures import UploadFile

from filekeeper.dependencies import get_file_validator
from filekeeper.errors import MetadataStoreError, StorageDeleteFailed
from filekeeper.main import app
from filekeeper.services.file_validation import FileValidationService


def _upload(client, filename, data, content_type="application/octet-stream", **params):
    return client.post("/api/files", files={"file": (filename, data, content_type)}, params=params)


def test_upload_png(api, png_bytes):
    client, _ = api

    response = _upload(client, "photo.png", png_bytes, "image/png")

    assert response.status_code == 201
    body = response.json()
    assert body["displayName"] == "photo.png"
    assert body["mediaType"] == "image/png"
    assert body["byteSize"] == len(png_bytes)
    assert body["url"] == f"/uploads/{body['name']}"
    assert body["name"].endswith(".png")


def test_photo_round_trip(api):
    client, _ = api
    # Noise does not compress, so 200x200 RGB comes out at roughly 120 KB
    out = io.BytesIO()
    Image.frombytes("RGB", (200, 200), os.urandom(200 * 200 * 3)).save(out, format="PNG")
    photo = out.getvalue()

    uploaded = _upload(client, "photo.png", photo, "image/png")
    assert uploaded.status_code == 201
    name = uploaded.json()["name"]
    assert uploaded.json()["byteSize"] == len(photo)

    download = client.get(f"/api/files/{name}/download")
    assert download.content == photo

    assert client.delete(f"/api/files/{name}").json()["displayName"] == "photo.png"
    assert client.get(f"/api/files/{name}/download").status_code == 404


def test_upload_with_conversion(api, png_bytes):
    client, _ = api

    response = _upload(client, "photo.png", png_bytes, convert="jpg", resize="200")

    assert response.status_code == 201
    assert response.json()["mediaType"] == "image/jpeg"
    assert response.json()["name"].endswith(".jpg")


def test_declared_content_type_is_ignored(api, png_bytes):
    client, _ = api

    response = _upload(client, "photo.png", png_bytes, "text/html")

    assert response.status_code == 201
    assert response.json()["mediaType"] == "image/png"


def test_double_extension_is_rejected(api, png_bytes):
    client, service = api

    response = _upload(client, "evil.png.js", png_bytes)

    assert response.status_code == 400
    assert "File extension not allowed" in response.json()["detail"]
    assert service.storage.list_names() == []


def test_text_with_png_signature_is_rejected(api, png_bytes):
    client, _ = api

    response = _upload(client, "notes.txt", png_bytes, "text/plain")

    assert response.status_code == 400
    assert response.json() == {"detail": "File content is not trusted"}


def test_bad_transform_parameter_is_rejected(api, png_bytes):
    client, _ = api

    response = _upload(client, "photo.png", png_bytes, resize="50x50")

    assert response.status_code == 400
    assert "Minimum dimension" in response.json()["detail"]


def test_get_list_and_download(api, png_bytes):
    client, _ = api
    name = _upload(client, "photo.png", png_bytes).json()["name"]

    meta = client.get(f"/api/files/{name}")
    assert meta.status_code == 200
    assert meta.json()["displayName"] == "photo.png"
    assert meta.json()["storagePath"] == f"/uploads/{name}"

    listing = client.get("/api/files").json()
    assert [f["name"] for f in listing["files"]] == [name]
    assert listing["pagination"] == {"total": 1, "limit": 50, "offset": 0, "hasMore": False}

    download = client.get(f"/api/files/{name}/download")
    assert download.status_code == 200
    assert download.content == png_bytes


def test_delete_echoes_display_name(api, png_bytes):
    client, service = api
    name = _upload(client, "vacation.png", png_bytes).json()["name"]

    response = client.delete(f"/api/files/{name}")

    assert response.status_code == 200
    assert response.json()["name"] == name
    assert response.json()["displayName"] == "vacation.png"
    assert "deletedAt" in response.json()
    assert client.get(f"/api/files/{name}").status_code == 404
    assert service.storage.list_names() == []


def test_delete_unknown_is_404(api):
    client, _ = api

    response = client.delete("/api/files/1700000000000_nothing.png")

    assert response.status_code == 404
    assert "No file found" in response.json()["detail"]


def test_server_errors_hide_details(api, png_bytes, monkeypatch):
    client, service = api

    async def broken_create(**kwargs):
        raise MetadataStoreError("connection refused to 10.0.0.5")

    monkeypatch.setattr(service.metadata, "create", broken_create)

    response = _upload(client, "photo.png", png_bytes)

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}
    assert service.storage.list_names() == []


def test_critical_inconsistency_is_flagged(api, png_bytes, monkeypatch):
    client, service = api
    name = _upload(client, "photo.png", png_bytes).json()["name"]

    async def refuse_delete(name):
        raise StorageDeleteFailed("disk unavailable")

    async def broken_create(**kwargs):
        raise MetadataStoreError("database unavailable")

    monkeypatch.setattr(service.storage, "delete", refuse_delete)
    monkeypatch.setattr(service.metadata, "create", broken_create)

    response = client.delete(f"/api/files/{name}")

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error", "severity": "critical"}
    queued = client.get("/api/cleanup", params={"pendingOnly": "true"}).json()
    assert [e["name"] for e in queued] == [name]


def test_storage_stats(api, png_bytes):
    client, _ = api
    _upload(client, "a.png", png_bytes)
    _upload(client, "b.txt", b"plain text", "text/plain")

    body = client.get("/api/files/stats").json()

    assert body["summary"]["totalFiles"] == 2
    assert {t["mediaType"] for t in body["byType"]} == {"image/png", "text/plain"}
    assert body["cleanup"]["pendingItems"] == 0


def test_cleanup_endpoints(api):
    client, service = api
    asyncio.run(service.storage.save("stray.txt", b"data"))
    asyncio.run(service.cleanup_queue.add("stray.txt"))

    assert client.get("/api/cleanup/stats").json()["pendingItems"] == 1

    processed = client.post("/api/cleanup/process", params={"batchSize": 10})
    assert processed.json() == {"processed": 1}
    assert service.storage.list_names() == []

    archived = client.post("/api/cleanup/archive", params={"daysOld": 0})
    assert archived.json() == {"archived": 1, "daysOld": 0}


def test_orphan_sweep_defaults_to_dry_run(api):
    client, service = api
    asyncio.run(service.storage.save("stray.txt", b"data"))

    report = client.post("/api/cleanup/orphans").json()
    assert report == {"orphans": ["stray.txt"], "deleted": 0, "dryRun": True}
    assert service.storage.list_names() == ["stray.txt"]

    report = client.post("/api/cleanup/orphans", params={"dryRun": "false"}).json()
    assert report["deleted"] == 1
    assert service.storage.list_names() == []


def test_oversized_upload_is_refused_before_reading(api, monkeypatch):
    client, service = api

    async def unexpected_read(self, size=-1):
        raise AssertionError("body was read")

    monkeypatch.setattr(UploadFile, "read", unexpected_read)
    app.dependency_overrides[get_file_validator] = lambda: FileValidationService(max_file_size=100)

    response = _upload(client, "notes.txt", b"x" * 1000, "text/plain")

    assert response.status_code == 413
    assert "exceeds maximum allowed size" in response.json()["detail"]
    assert service.storage.list_names() == []

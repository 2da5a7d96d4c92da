import zipfile

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from webpify import __version__
from webpify.main import create_app
from webpify.storage import StorageRole

from conftest import make_image_bytes


@pytest.fixture
def scheduled(storage, monkeypatch):
    calls = []
    monkeypatch.setattr(storage, "schedule_deletion", lambda path, delay: calls.append((path, delay)))
    return calls


@pytest.fixture
def client(storage, scheduled):
    app = create_app(storage=storage, max_workers=4, purge_on_shutdown=False)
    return TestClient(app)


def _png(name="photo.png", size=(400, 800)):
    return (name, make_image_bytes(size=size), "image/png")


def test_convert_single_image(client, storage):
    response = client.post("/api/convert", files={"image": _png()}, data={"quality": "150", "width": "200"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    data = body["data"]
    assert data["originalFilename"] == "photo.png"
    assert data["originalDimensions"] == {"width": 400, "height": 800}
    assert data["quality"] == 100
    assert data["filename"].endswith(".webp")
    assert data["downloadUrl"] == f"/api/download/{data['filename']}"
    assert data["compressionRatio"] == round(
        (data["originalSize"] - data["convertedSize"]) / data["originalSize"] * 100, 2
    )
    assert (storage.path_for(StorageRole.SINGLE_OUTPUT) / data["filename"]).is_file()
    assert list(storage.path_for(StorageRole.STAGING).iterdir()) == []


def test_convert_requires_exactly_one_file(client):
    response = client.post("/api/convert", data={"quality": "80"})
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "No file uploaded"}

    response = client.post("/api/convert", files=[("image", _png("a.png")), ("image", _png("b.png"))])
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_convert_rejects_disallowed_type(client, storage):
    response = client.post("/api/convert", files={"image": ("notes.txt", b"hello", "text/plain")})
    assert response.status_code == 400
    assert "notes.txt" in response.json()["error"]
    assert list(storage.path_for(StorageRole.STAGING).iterdir()) == []


def test_convert_rejects_bad_dimension(client):
    response = client.post("/api/convert", files={"image": _png()}, data={"width": "wide"})
    assert response.status_code == 400
    assert "width" in response.json()["error"]


def test_convert_zero_width_means_no_resize(client, storage):
    response = client.post("/api/convert", files={"image": _png(size=(120, 60))}, data={"width": "0", "height": "0"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["originalDimensions"] == {"width": 120, "height": 60}
    with Image.open(storage.path_for(StorageRole.SINGLE_OUTPUT) / data["filename"]) as img:
        assert img.size == (120, 60)


def test_convert_corrupt_image_returns_500_and_cleans_staging(client, storage):
    response = client.post("/api/convert", files={"image": ("broken.png", b"not an image", "image/png")})
    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["details"]
    assert list(storage.path_for(StorageRole.STAGING).iterdir()) == []


def test_batch_convert_with_one_disallowed_file(client, storage, scheduled):
    names = ["a.png", "b.png", "c.txt", "d.png", "e.png"]
    files = [
        ("images", (n, b"text", "text/plain") if n.endswith(".txt") else _png(n, size=(60, 40)))
        for n in names
    ]
    response = client.post("/api/batch-convert", files=files, data={"quality": "70"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["totalFiles"] == 5
    assert data["successfulConversions"] == 4
    assert data["failedConversions"] == 1
    assert [r["originalFilename"] for r in data["results"]] == names
    assert "error" in data["results"][2]
    successes = [r for r in data["results"] if "error" not in r]
    total_original = sum(r["originalSize"] for r in successes)
    total_converted = sum(r["convertedSize"] for r in successes)
    assert data["totalOriginalSize"] == total_original
    assert data["totalConvertedSize"] == total_converted
    assert data["overallCompressionRatio"] == round((total_original - total_converted) / total_original * 100, 2)
    assert data["downloadUrl"] == f"/api/download-batch/{data['zipFilename']}"

    zip_path = storage.path_for(StorageRole.BATCH_OUTPUT) / data["zipFilename"]
    assert data["zipSize"] == zip_path.stat().st_size
    with zipfile.ZipFile(zip_path) as zf:
        assert sorted(zf.namelist()) == sorted(r["convertedFilename"] for r in successes)

    work_dir = storage.path_for(StorageRole.BATCH_OUTPUT) / data["batchId"]
    assert (work_dir, 5) in scheduled


def test_batch_convert_rejects_too_many_files(client, storage):
    files = [("images", _png(f"{i}.png", size=(4, 4))) for i in range(21)]
    response = client.post("/api/batch-convert", files=files)
    assert response.status_code == 400
    assert list(storage.path_for(StorageRole.STAGING).iterdir()) == []


def test_batch_convert_all_failed_still_completes(client, storage):
    files = [("images", ("x.txt", b"x", "text/plain")), ("images", ("y.png", b"junk", "image/png"))]
    response = client.post("/api/batch-convert", files=files)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Successfully converted 0 out of 2 images"
    data = body["data"]
    assert data["successfulConversions"] == 0
    assert data["failedConversions"] == 2
    assert all("error" in r for r in data["results"])
    assert data["totalOriginalSize"] == 0
    assert data["overallCompressionRatio"] == 0.0
    with zipfile.ZipFile(storage.path_for(StorageRole.BATCH_OUTPUT) / data["zipFilename"]) as zf:
        assert zf.namelist() == []


@pytest.mark.parametrize(
    "path",
    [
        "/api/download/..%2F..%2Fetc%2Fpasswd.webp",
        "/api/download/x%3Brm.webp",
        "/api/download/image.png",
        "/api/download/.webp",
        "/api/download-batch/..%2Fsecret.zip",
        "/api/download-batch/archive.webp",
    ],
)
def test_download_rejects_unsafe_names(client, path):
    response = client.get(path)
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid filename"}


def test_download_missing_file(client):
    response = client.get("/api/download/converted-nope.webp")
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_download_schedules_delayed_deletion(client, storage, scheduled):
    target = storage.path_for(StorageRole.SINGLE_OUTPUT) / "converted-1-a.webp"
    target.write_bytes(b"RIFFdata")

    response = client.get("/api/download/converted-1-a.webp")

    assert response.status_code == 200
    assert response.content == b"RIFFdata"
    assert response.headers["content-type"] == "image/webp"
    assert response.headers["content-disposition"].startswith("attachment")
    assert scheduled == [(target, 30)]


def test_download_batch_zip(client, storage, scheduled):
    target = storage.path_for(StorageRole.BATCH_OUTPUT) / "converted-images-1-a.zip"
    target.write_bytes(b"PK")

    response = client.get("/api/download-batch/converted-images-1-a.zip")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert scheduled == [(target, 60)]


def test_storage_and_cleanup(client, storage):
    (storage.path_for(StorageRole.STAGING) / "upload-1.png").write_bytes(b"x" * 100)

    info = client.get("/api/storage").json()
    assert info["success"] is True
    assert info["storage"]["uploads"] == {"count": 1, "size": "100 Bytes", "sizeBytes": 100}
    assert info["storage"]["total"]["sizeBytes"] == 100

    result = client.post("/api/cleanup").json()
    assert result["success"] is True
    assert set(result["cleaned"]) == {"uploads", "converted", "batch", "total"}


def test_health_and_index(client):
    health = client.get("/api/health").json()
    assert health["status"] == "OK"
    assert health["uptime"] >= 0
    assert "total" in health["storage"]

    index = client.get("/").json()
    assert index["endpoints"]["convert"] == "POST /api/convert"
    assert index["version"] == __version__


def test_unknown_endpoint_uses_envelope(client):
    response = client.get("/api/nope")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Endpoint not found"}

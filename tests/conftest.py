from __future__ import annotations

import io
import os
import tempfile
from pathlib import Path

import pytest
from PIL import Image

# Keep module-level app/config away from the source tree.
_RUNTIME_DIR = Path(tempfile.mkdtemp(prefix="webpify-tests-"))
os.environ.setdefault("UPLOAD_DIR", str(_RUNTIME_DIR / "uploads"))
os.environ.setdefault("OUTPUT_DIR", str(_RUNTIME_DIR / "converted"))
os.environ.setdefault("BATCH_DIR", str(_RUNTIME_DIR / "batch"))
os.environ.setdefault("PURGE_ON_SHUTDOWN", "false")

from webpify.intake import UploadIntake  # noqa: E402
from webpify.storage import RetentionPolicy, StorageLifecycleManager, StorageRole  # noqa: E402

NOW = 1_700_000_000.0


def make_image_bytes(fmt: str = "PNG", size: tuple[int, int] = (400, 800), mode: str = "RGB") -> bytes:
    color = (200, 30, 90) if mode == "RGB" else 128
    img = Image.new(mode, size, color)
    # Some structure so encoders have something to do.
    for x in range(0, size[0], 7):
        for y in range(0, size[1], 11):
            img.putpixel((x, y), (x % 256, y % 256, (x + y) % 256) if mode == "RGB" else (x + y) % 256)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def clock():
    class Clock:
        def __init__(self) -> None:
            self.now = NOW

        def __call__(self) -> float:
            return self.now

    return Clock()


@pytest.fixture
def storage(tmp_path, clock) -> StorageLifecycleManager:
    manager = StorageLifecycleManager(
        roots={
            StorageRole.STAGING: tmp_path / "uploads",
            StorageRole.SINGLE_OUTPUT: tmp_path / "converted",
            StorageRole.BATCH_OUTPUT: tmp_path / "batch",
        },
        policies=[
            RetentionPolicy(StorageRole.STAGING, 1800),
            RetentionPolicy(StorageRole.SINGLE_OUTPUT, 3600),
            RetentionPolicy(StorageRole.BATCH_OUTPUT, 3600),
        ],
        sweep_interval=900,
        forced_max_age=300,
        clock=clock,
    )
    manager.ensure_dirs()
    yield manager
    manager.stop()


@pytest.fixture
def intake(storage) -> UploadIntake:
    return UploadIntake(storage.path_for(StorageRole.STAGING))


@pytest.fixture
def stage_image(intake):
    def _stage(name: str = "photo.png", fmt: str = "PNG", size: tuple[int, int] = (400, 800)):
        return intake.stage(io.BytesIO(make_image_bytes(fmt, size)), name, f"image/{fmt.lower()}")

    return _stage

"""Image codec capability backed by Pillow: decode, metadata, resize, encode WebP."""
from pathlib import Path
from typing import Protocol, Tuple

from PIL import Image

from webpify.conversion.models import Dimensions


class ImageCodec(Protocol):
    def decode(self, path: Path) -> Image.Image: ...

    def metadata(self, image: Image.Image) -> Dimensions: ...

    def resize(self, image: Image.Image, size: Tuple[int, int]) -> Image.Image: ...

    def encode_webp(self, image: Image.Image, path: Path, quality: int, effort: int) -> None: ...


class PillowCodec:
    """Default codec. Caller closes images returned by decode()."""

    def decode(self, path: Path) -> Image.Image:
        img = Image.open(path)
        try:
            # Image.open is lazy; load now so corrupt data fails here.
            img.load()
        except Exception:
            img.close()
            raise
        return img

    def metadata(self, image: Image.Image) -> Dimensions:
        return Dimensions(width=image.width, height=image.height)

    def resize(self, image: Image.Image, size: Tuple[int, int]) -> Image.Image:
        return image.resize(size, Image.Resampling.LANCZOS)

    def encode_webp(self, image: Image.Image, path: Path, quality: int, effort: int) -> None:
        if image.mode in ("RGB", "RGBA"):
            out_img = image
        elif image.mode in ("P", "LA", "PA") or "transparency" in image.info:
            out_img = image.convert("RGBA")
        else:
            out_img = image.convert("RGB")
        out_img.save(str(path), format="WEBP", quality=quality, method=effort)

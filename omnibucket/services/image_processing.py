"""
Default image compression and blurhash placeholder generation.

The upload orchestrator treats these as black boxes with the contract
``compress(bytes, preset_id, filename) -> CompressionResult`` and
``blurhash(bytes) -> BlurHashResult``. Pillow work is CPU bound and runs in
the default executor.
"""

import asyncio
from io import BytesIO
from typing import Dict, List, Optional

import structlog
from PIL import Image, ImageFilter, ImageOps

from omnibucket.models.upload_models import BlurHashResult, CompressionPreset, CompressionResult, ImageInfo

logger = structlog.get_logger(__name__)

BUILTIN_PRESETS: Dict[str, CompressionPreset] = {
    preset.id: preset
    for preset in (
        CompressionPreset(
            id="cover", name="cover", max_width=1920, max_height=1080, quality=80,
            format="webp", fit="cover", aspect_ratio="16:9",
        ),
        CompressionPreset(
            id="card", name="card", max_width=800, max_height=600, quality=80,
            format="webp", fit="cover", aspect_ratio="4:3",
        ),
        CompressionPreset(
            id="thumbnail", name="thumbnail", max_width=300, max_height=300, quality=75,
            format="webp", fit="cover", aspect_ratio="1:1",
        ),
        CompressionPreset(
            id="content", name="content", max_width=1600, max_height=1600, quality=82,
            format="webp", fit="inside",
        ),
        CompressionPreset(
            id="original", name="original", max_width=10000, max_height=10000, quality=90,
            format="original", fit="inside",
        ),
    )
}

# Pillow format names keyed by the preset/extension spelling
PIL_FORMATS = {"webp": "WEBP", "jpeg": "JPEG", "jpg": "JPEG", "png": "PNG", "gif": "GIF"}

BLURHASH_WIDTH = 32
BLURHASH_QUALITY = 50


def _parse_aspect_ratio(value: Optional[str]) -> Optional[float]:
    if not value or ":" not in value:
        return None
    width, height = value.split(":", 1)
    try:
        return float(width) / float(height)
    except (ValueError, ZeroDivisionError):
        return None


def _crop_to_ratio(image: Image.Image, ratio: float) -> Image.Image:
    """Center-crop to a width/height ratio."""
    width, height = image.size
    if width / height > ratio:
        new_width = int(round(height * ratio))
        left = (width - new_width) // 2
        return image.crop((left, 0, left + new_width, height))
    new_height = int(round(width / ratio))
    top = (height - new_height) // 2
    return image.crop((0, top, width, top + new_height))


def _resize(image: Image.Image, preset: CompressionPreset) -> Image.Image:
    box = (preset.max_width, preset.max_height)
    if preset.fit == "cover":
        return ImageOps.fit(image, box, method=Image.LANCZOS)
    if preset.fit == "contain":
        return ImageOps.contain(image, box, method=Image.LANCZOS)
    if preset.fit == "fill":
        return image.resize(box, Image.LANCZOS)
    if preset.fit == "outside":
        scale = max(box[0] / image.width, box[1] / image.height)
        if scale >= 1:
            return image
        return image.resize((max(1, round(image.width * scale)), max(1, round(image.height * scale))), Image.LANCZOS)
    # inside: shrink to fit, never enlarge
    resized = image.copy()
    resized.thumbnail(box, Image.LANCZOS)
    return resized


def _encode(image: Image.Image, image_format: str, quality: int) -> bytes:
    pil_format = PIL_FORMATS.get(image_format, image_format.upper())
    if pil_format == "JPEG" and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    buffer = BytesIO()
    save_kwargs = {"optimize": True}
    if pil_format in ("JPEG", "WEBP"):
        save_kwargs["quality"] = quality
    image.save(buffer, format=pil_format, **save_kwargs)
    return buffer.getvalue()


class ImageProcessor:
    """Compression presets plus the Pillow implementations of compress and blurhash."""

    def __init__(self, presets: Optional[List[CompressionPreset]] = None):
        self.presets: Dict[str, CompressionPreset] = dict(BUILTIN_PRESETS)
        for preset in presets or []:
            self.presets[preset.id] = preset

    def get_preset(self, preset_id: str) -> Optional[CompressionPreset]:
        return self.presets.get(preset_id)

    def get_preset_name(self, preset_id: str) -> Optional[str]:
        preset = self.presets.get(preset_id)
        return preset.name if preset else None

    def register_preset(self, preset: CompressionPreset) -> None:
        self.presets[preset.id] = preset

    def get_image_info_sync(self, content: bytes) -> ImageInfo:
        with Image.open(BytesIO(content)) as image:
            width, height = ImageOps.exif_transpose(image).size
            return ImageInfo(width=width, height=height, format=(image.format or "").lower() or None, size=len(content))

    def compress_sync(self, content: bytes, preset_id: str, filename: str) -> CompressionResult:
        preset = self.get_preset(preset_id)
        if preset is None:
            return CompressionResult(success=False, error=f"Unknown compression preset: {preset_id}")
        try:
            with Image.open(BytesIO(content)) as source:
                source_format = (source.format or "png").lower()
                image = ImageOps.exif_transpose(source)
                ratio = _parse_aspect_ratio(preset.aspect_ratio)
                if ratio:
                    image = _crop_to_ratio(image, ratio)
                image = _resize(image, preset)
                output_format = source_format if preset.format == "original" else preset.format
                data = _encode(image, output_format, preset.quality)
        except Exception as e:
            logger.error(f"Compression failed for {filename}: {e}", preset_id=preset_id)
            return CompressionResult(success=False, error=str(e))

        logger.debug(
            f"Compressed {filename}",
            preset_id=preset_id,
            original_size=len(content),
            compressed_size=len(data),
        )
        return CompressionResult(
            success=True,
            content=data,
            width=image.width,
            height=image.height,
            format=output_format,
            compressed_size=len(data),
        )

    def blurhash_sync(self, content: bytes) -> BlurHashResult:
        """Resize to 32 px wide, blur and encode as low-quality WebP."""
        with Image.open(BytesIO(content)) as source:
            image = ImageOps.exif_transpose(source)
            height = max(1, round(image.height * BLURHASH_WIDTH / image.width))
            small = image.resize((BLURHASH_WIDTH, height), Image.LANCZOS)
            if small.mode not in ("RGB", "RGBA"):
                small = small.convert("RGBA")
            blurred = small.filter(ImageFilter.GaussianBlur(1))
            data = _encode(blurred, "webp", BLURHASH_QUALITY)
        return BlurHashResult(content=data, width=BLURHASH_WIDTH, height=height)

    async def get_image_info(self, content: bytes) -> ImageInfo:
        return await asyncio.get_running_loop().run_in_executor(None, self.get_image_info_sync, content)

    async def compress_image(self, content: bytes, preset_id: str, filename: str) -> CompressionResult:
        return await asyncio.get_running_loop().run_in_executor(None, self.compress_sync, content, preset_id, filename)

    async def generate_blurhash(self, content: bytes) -> BlurHashResult:
        return await asyncio.get_running_loop().run_in_executor(None, self.blurhash_sync, content)

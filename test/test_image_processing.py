from io import BytesIO

import pytest
from conftest import make_image_bytes
from PIL import Image

from omnibucket.models.upload_models import CompressionPreset
from omnibucket.services.image_processing import BUILTIN_PRESETS, ImageProcessor


@pytest.fixture
def processor() -> ImageProcessor:
    return ImageProcessor()


class TestImageProcessor:
    """Pillow-backed compression and placeholders."""

    def test_builtin_presets(self, processor: ImageProcessor) -> None:
        assert set(BUILTIN_PRESETS) == {"cover", "card", "thumbnail", "content", "original"}
        assert processor.get_preset("thumbnail").aspect_ratio == "1:1"
        assert processor.get_preset("missing") is None
        assert processor.get_preset_name("card") == "card"
        assert processor.get_preset_name("missing") is None

    def test_image_info(self, processor: ImageProcessor) -> None:
        content = make_image_bytes(320, 200)
        info = processor.get_image_info_sync(content)
        assert (info.width, info.height) == (320, 200)
        assert info.format == "jpeg"
        assert info.size == len(content)

    def test_inside_fit_never_enlarges(self, processor: ImageProcessor) -> None:
        result = processor.compress_sync(make_image_bytes(640, 480), "content", "photo.jpg")
        assert result.success
        assert (result.width, result.height) == (640, 480)
        assert result.format == "webp"
        assert result.compressed_size == len(result.content)

    def test_cover_fit_crops_to_aspect_ratio(self, processor: ImageProcessor) -> None:
        result = processor.compress_sync(make_image_bytes(2000, 2000), "card", "square.jpg")
        assert (result.width, result.height) == (800, 600)
        with Image.open(BytesIO(result.content)) as image:
            assert image.format == "WEBP"

    def test_original_format_is_kept(self, processor: ImageProcessor) -> None:
        result = processor.compress_sync(make_image_bytes(100, 100, "PNG"), "original", "icon.png")
        assert result.format == "png"

    def test_custom_jpeg_preset(self, processor: ImageProcessor) -> None:
        processor.register_preset(
            CompressionPreset(id="small-jpeg", name="small", max_width=50, max_height=50, quality=60, format="jpeg")
        )
        result = processor.compress_sync(make_image_bytes(200, 100, "PNG"), "small-jpeg", "wide.png")
        assert result.format == "jpeg"
        assert (result.width, result.height) == (50, 25)

    def test_unknown_preset_fails(self, processor: ImageProcessor) -> None:
        result = processor.compress_sync(make_image_bytes(10, 10), "nope", "a.jpg")
        assert result.success is False
        assert "nope" in result.error

    def test_corrupt_input_fails(self, processor: ImageProcessor) -> None:
        result = processor.compress_sync(b"not an image", "content", "a.jpg")
        assert result.success is False

    @pytest.mark.asyncio
    async def test_blurhash_placeholder(self, processor: ImageProcessor) -> None:
        result = await processor.generate_blurhash(make_image_bytes(640, 320))
        assert (result.width, result.height) == (32, 16)
        with Image.open(BytesIO(result.content)) as image:
            assert image.format == "WEBP"
            assert image.size == (32, 16)

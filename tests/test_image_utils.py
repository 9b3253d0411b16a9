"""Unit tests for the Pillow transformation pipeline."""

from __future__ import annotations

import io

import pytest
from PIL import Image, features

from media_lambda.errors import TransformError
from media_lambda.image_utils import ORIENTATION_TAG, resolve_output, transform_image
from media_lambda.operations import parse_operations


def _open(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))


def test_width_only_keeps_aspect_ratio(make_image) -> None:
    art = transform_image(make_image(size=(3000, 2000)), "image/jpeg", parse_operations("width=100"))
    assert (art.width, art.height) == (100, 67)
    assert _open(art.body).size == (100, 67)


def test_height_only_keeps_aspect_ratio(make_image) -> None:
    art = transform_image(make_image(size=(300, 200)), "image/jpeg", parse_operations("height=50"))
    assert (art.width, art.height) == (75, 50)


def test_both_dimensions_cover_and_crop(make_image) -> None:
    art = transform_image(make_image(size=(300, 200)), "image/jpeg", parse_operations("width=50,height=50"))
    assert _open(art.body).size == (50, 50)


def test_non_numeric_dimension_is_ignored(make_image) -> None:
    art = transform_image(make_image(size=(30, 20)), "image/jpeg", parse_operations("width=abc"))
    assert (art.width, art.height) == (30, 20)


def test_webp_at_quality(make_image) -> None:
    ops = parse_operations("width=100,format=webp,quality=50")
    art = transform_image(make_image(size=(3000, 2000)), "image/jpeg", ops)
    assert art.content_type == "image/webp"
    out = _open(art.body)
    assert out.format == "WEBP"
    assert out.width == 100
    assert out.height <= 67
    assert resolve_output(ops, "image/jpeg", "JPEG").quality == 50


def test_png_ignores_quality(make_image) -> None:
    ops = parse_operations("format=png,quality=10")
    output = resolve_output(ops, "image/jpeg", "JPEG")
    assert output.content_type == "image/png"
    assert output.quality is None
    assert not output.lossy
    art = transform_image(make_image(fmt="GIF", mode="P", color=3), "image/gif", ops)
    assert art.content_type == "image/png"
    assert _open(art.body).format == "PNG"


@pytest.mark.parametrize("source_type", ["image/jpeg", "image/gif", "image/webp", None])
def test_png_content_type_regardless_of_source(source_type) -> None:
    output = resolve_output(parse_operations("format=png"), source_type, "JPEG")
    assert output.content_type == "image/png"


def test_unknown_format_falls_back_to_jpeg(make_image) -> None:
    art = transform_image(make_image(fmt="PNG"), "image/png", parse_operations("format=tiff"))
    assert art.content_type == "image/jpeg"
    assert _open(art.body).format == "JPEG"


def test_svg_without_format_resolves_to_png() -> None:
    output = resolve_output(parse_operations("width=10"), "image/svg+xml", None)
    assert output.content_type == "image/png"
    assert output.pil_format == "PNG"


def test_format_absent_keeps_source_format(make_image) -> None:
    art = transform_image(make_image(fmt="PNG"), "image/png", parse_operations("width=10"))
    assert art.content_type == "image/png"
    assert _open(art.body).format == "PNG"


def test_format_without_value_is_absent(make_image) -> None:
    art = transform_image(make_image(fmt="PNG"), "image/png", parse_operations("format"))
    assert art.content_type == "image/png"


def test_quality_out_of_range_is_transform_error(make_image) -> None:
    with pytest.raises(TransformError):
        transform_image(make_image(), "image/jpeg", parse_operations("format=webp,quality=150"))


def test_rgba_to_jpeg(make_image) -> None:
    data = make_image(fmt="PNG", mode="RGBA", color=(255, 0, 0, 128))
    art = transform_image(data, "image/png", parse_operations("format=jpeg"))
    assert _open(art.body).mode == "RGB"


def test_exif_orientation_is_normalized(make_image) -> None:
    exif = Image.Exif()
    exif[ORIENTATION_TAG] = 6
    data = make_image(size=(40, 20), exif=exif.tobytes())
    assert _open(data).getexif().get(ORIENTATION_TAG) == 6

    art = transform_image(data, "image/jpeg", parse_operations(""))
    out = _open(art.body)
    assert out.size == (20, 40)
    assert out.getexif().get(ORIENTATION_TAG) in (None, 1)


def test_orientation_runs_before_resize(make_image) -> None:
    exif = Image.Exif()
    exif[ORIENTATION_TAG] = 6
    data = make_image(size=(400, 200), exif=exif.tobytes())
    art = transform_image(data, "image/jpeg", parse_operations("width=100"))
    assert (art.width, art.height) == (100, 200)


def test_animated_gif_keeps_all_frames() -> None:
    frames = [Image.new("RGB", (40, 40), color=c) for c in ("red", "green", "blue")]
    buf = io.BytesIO()
    frames[0].save(buf, format="GIF", save_all=True, append_images=frames[1:], duration=100, loop=0)

    art = transform_image(buf.getvalue(), "image/gif", parse_operations("width=20"))
    assert art.frames == 3
    out = _open(art.body)
    assert out.n_frames == 3
    assert out.size == (20, 20)


def test_truncated_image_is_salvaged() -> None:
    img = Image.linear_gradient("L").resize((256, 256)).convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=95)
    data = buf.getvalue()
    truncated = data[: int(len(data) * 0.6)]

    art = transform_image(truncated, "image/jpeg", parse_operations("format=png"))
    assert _open(art.body).size == (256, 256)


def test_undecodable_bytes_raise_transform_error() -> None:
    with pytest.raises(TransformError) as excinfo:
        transform_image(b"definitely not an image", "image/jpeg", parse_operations(""))
    assert excinfo.value.stage == "img-transform"


@pytest.mark.skipif(not features.check("avif"), reason="Pillow built without AVIF support")
def test_avif_output(make_image) -> None:
    art = transform_image(make_image(), "image/jpeg", parse_operations("format=avif,quality=40"))
    assert art.content_type == "image/avif"


SVG_DOCUMENT = (
    b'<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10">'
    b'<rect width="10" height="10" fill="red"/></svg>'
)


def test_svg_is_rasterized_to_png() -> None:
    art = transform_image(SVG_DOCUMENT, "image/svg+xml", parse_operations(""))
    assert art.content_type == "image/png"
    out = _open(art.body)
    assert out.format == "PNG"
    assert out.size == (10, 10)


def test_svg_resize_and_reformat() -> None:
    art = transform_image(SVG_DOCUMENT, "image/svg+xml", parse_operations("width=40,format=webp"))
    assert art.content_type == "image/webp"
    assert _open(art.body).size == (40, 40)


def test_unwritable_source_format_reports_png() -> None:
    output = resolve_output(parse_operations("width=10"), "image/vnd.adobe.photoshop", "PSD")
    assert output.pil_format == "PNG"
    assert output.content_type == "image/png"


@pytest.mark.parametrize("quality", ["0", "-5"])
def test_non_positive_quality_is_transform_error(make_image, quality) -> None:
    with pytest.raises(TransformError):
        transform_image(make_image(), "image/jpeg", parse_operations(f"format=webp,quality={quality}"))

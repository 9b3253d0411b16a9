"""
Image transformation helpers built on Pillow.

This module turns the bytes of an original image and an
:class:`~operations.OperationSet` into a single encoded output buffer. The
steps always run in the same order:

1. decode permissively, keeping every frame of animated sources;
2. normalize EXIF orientation so the output is stored upright;
3. resize when ``width`` and/or ``height`` are requested;
4. pick the output format, content type and quality;
5. encode.

The functions are pure: no S3 or network access happens here, which keeps
them trivially testable with in-memory images.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cairosvg
from PIL import Image, ImageFile, ImageOps, ImageSequence

from .errors import TransformError
from .operations import OperationSet

logger = logging.getLogger(__name__)

# Salvage what can be decoded from truncated uploads instead of failing.
ImageFile.LOAD_TRUNCATED_IMAGES = True

ORIENTATION_TAG = 0x0112
DEFAULT_FORMAT = "jpeg"
SVG_CONTENT_TYPE = "image/svg+xml"


@dataclass(frozen=True)
class OutputFormat:
    """Encoder settings resolved from the requested operations."""

    pil_format: str
    content_type: str
    lossy: bool
    quality: Optional[int] = None


# Requested format name -> (Pillow format, content type, lossy)
FORMATS = {
    "jpeg": ("JPEG", "image/jpeg", True),
    "gif": ("GIF", "image/gif", False),
    "webp": ("WEBP", "image/webp", True),
    "png": ("PNG", "image/png", False),
    "avif": ("AVIF", "image/avif", True),
}

ANIMATED_FORMATS = frozenset({"GIF", "WEBP", "PNG", "AVIF"})

# Source formats Pillow reports that are written with a plainer encoder.
_SOURCE_FORMAT_ALIASES = {"MPO": "JPEG"}


@dataclass(frozen=True)
class TransformedArtifact:
    """Encoded output of one transformation."""

    body: bytes
    content_type: str
    width: int
    height: int
    frames: int = 1

    @property
    def size(self) -> int:
        return len(self.body)


def resolve_output(
    operations: OperationSet,
    original_content_type: Optional[str],
    source_format: Optional[str] = None,
) -> OutputFormat:
    """Decide the encoder format, response content type and quality.

    Parameters
    ----------
    operations:
        Parsed operations of the request.
    original_content_type:
        Content type stored with the original object, if any.
    source_format:
        Pillow format name of the decoded original, e.g. ``"PNG"``.

    Returns
    -------
    OutputFormat
        With an explicit ``format`` the mapping of :data:`FORMATS` applies,
        unknown names falling back to JPEG, and ``quality`` is kept only for
        lossy formats. Without one the source format is kept and the original
        content type is reported, except that SVG originals and source formats
        Pillow cannot write become PNG.

    Raises
    ------
    TransformError
        A quality was given for a lossy format but lies outside 1..100.
    """
    requested = operations.format
    if requested:
        pil_format, content_type, lossy = FORMATS.get(requested, FORMATS[DEFAULT_FORMAT])
        quality = operations.quality if lossy else None
        if quality is not None and not 1 <= quality <= 100:
            raise TransformError(f"Quality {quality} is outside 1..100", stage="img-transform")
        return OutputFormat(pil_format, content_type, lossy, quality)

    if original_content_type == SVG_CONTENT_TYPE:
        return OutputFormat("PNG", "image/png", False)

    pil_format = _SOURCE_FORMAT_ALIASES.get(source_format or "", source_format)
    Image.init()
    if not pil_format or pil_format not in Image.SAVE:
        return OutputFormat("PNG", "image/png", False)
    content_type = original_content_type or Image.MIME.get(pil_format, "application/octet-stream")
    lossy = pil_format in ("JPEG", "WEBP", "AVIF")
    return OutputFormat(pil_format, content_type, lossy)


def decode(
    body: bytes, content_type: Optional[str] = None
) -> Tuple[Image.Image, List[Image.Image], List[int]]:
    """Open ``body`` and return the source image, its frames and durations.

    SVG documents are rasterized to PNG first, at their intrinsic size.
    """
    if content_type == SVG_CONTENT_TYPE:
        body = cairosvg.svg2png(bytestring=body)
    img = Image.open(io.BytesIO(body))
    img.load()
    if getattr(img, "n_frames", 1) <= 1:
        return img, [img.copy()], [int(img.info.get("duration", 0))]
    frames: List[Image.Image] = []
    durations: List[int] = []
    for frame in ImageSequence.Iterator(img):
        durations.append(int(frame.info.get("duration", 0)))
        frames.append(frame.copy())
    return img, frames, durations


def orientation_of(img: Image.Image) -> Optional[int]:
    try:
        return img.getexif().get(ORIENTATION_TAG)
    except Exception:  # noqa: BLE001 - unreadable EXIF is treated as absent
        logger.warning("Ignoring unreadable EXIF block")
        return None


def resize_frame(frame: Image.Image, width: Optional[int], height: Optional[int]) -> Image.Image:
    """Resize one frame.

    Both dimensions given: cover, i.e. scale to fill and centre crop to
    exactly ``width`` x ``height``. One dimension given: scale on that axis
    and keep the aspect ratio. Upscaling is allowed.
    """
    if width and height:
        return ImageOps.fit(frame, (width, height), Image.Resampling.LANCZOS)
    if width:
        height = max(1, round(frame.height * width / frame.width))
    elif height:
        width = max(1, round(frame.width * height / frame.height))
    else:
        return frame
    return frame.resize((width, height), Image.Resampling.LANCZOS)


def _has_alpha(frame: Image.Image) -> bool:
    return "A" in frame.getbands() or "transparency" in frame.info


def prepare_mode(frame: Image.Image, pil_format: str) -> Image.Image:
    """Convert pixel modes the target encoder cannot write."""
    if pil_format == "JPEG":
        if frame.mode in ("RGB", "L", "CMYK"):
            return frame
        if _has_alpha(frame):
            frame = frame.convert("RGBA")
        return frame.convert("RGB")
    if pil_format in ("WEBP", "AVIF") and frame.mode not in ("RGB", "RGBA"):
        return frame.convert("RGBA" if _has_alpha(frame) else "RGB")
    if pil_format == "PNG" and frame.mode == "CMYK":
        return frame.convert("RGB")
    return frame


def encode(
    frames: List[Image.Image],
    durations: List[int],
    output: OutputFormat,
    loop: int = 0,
) -> bytes:
    """Encode ``frames`` into a single buffer in ``output.pil_format``."""
    prepared = [prepare_mode(frame, output.pil_format) for frame in frames]
    save_kwargs = {}
    if output.quality is not None:
        save_kwargs["quality"] = output.quality
    if len(prepared) > 1 and output.pil_format in ANIMATED_FORMATS:
        save_kwargs.update(
            save_all=True,
            append_images=prepared[1:],
            duration=durations,
            loop=loop,
        )
    buffer = io.BytesIO()
    prepared[0].save(buffer, format=output.pil_format, **save_kwargs)
    return buffer.getvalue()


def transform_image(
    body: bytes,
    original_content_type: Optional[str],
    operations: OperationSet,
) -> TransformedArtifact:
    """Apply the requested operations to an original image.

    Parameters
    ----------
    body:
        Raw bytes of the original object.
    original_content_type:
        Content type stored with the original, used when no ``format`` is
        requested.
    operations:
        Parsed operations of the request.

    Returns
    -------
    TransformedArtifact
        The encoded output and its resolved content type.

    Raises
    ------
    TransformError
        Decoding, resizing or encoding failed.
    """
    try:
        source, frames, durations = decode(body, original_content_type)
        orientation = orientation_of(source)
        if orientation and orientation != 1:
            frames = [ImageOps.exif_transpose(frame) for frame in frames]
        width, height = operations.width, operations.height
        if width or height:
            frames = [resize_frame(frame, width, height) for frame in frames]
        output = resolve_output(operations, original_content_type, source.format)
        data = encode(frames, durations, output, loop=int(source.info.get("loop", 0)))
    except TransformError:
        raise
    except Exception as exc:
        raise TransformError(f"{type(exc).__name__}: {exc}", stage="img-transform") from exc

    logger.info(
        "Transformed %s image (%d frame(s)) to %s %dx%d, %d bytes",
        source.format,
        len(frames),
        output.content_type,
        frames[0].width,
        frames[0].height,
        len(data),
    )
    return TransformedArtifact(
        body=data,
        content_type=output.content_type,
        width=frames[0].width,
        height=frames[0].height,
        frames=len(frames),
    )

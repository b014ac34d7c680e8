"""Image transformations applied before an upload is stored.

Supports format conversion, fit-inside resizing (never enlarging) and quality
adjustment. Pillow is synchronous, so the work runs in a thread.
"""
import asyncio
import io
import logging
import re
from typing import Optional

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel

from filekeeper.config import settings
from filekeeper.errors import TransformFailed, ValidationRejected

logger = logging.getLogger(__name__)

TRANSFORMABLE_EXTENSIONS = {".jpg", ".jpeg", ".png"}

_RESIZE_PATTERN = re.compile(r"^(\d+)?x?(\d+)?$", re.IGNORECASE)

# Pillow format names by target format / source extension
_PILLOW_FORMATS = {"jpg": "JPEG", "jpeg": "JPEG", "png": "PNG", "webp": "WEBP"}


class TransformOptions(BaseModel):
    format: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    quality: Optional[int] = None
    # Set when the deprecated `type` query parameter was used instead of `convert`
    legacy_format_param: bool = False

    @property
    def has_transformation(self) -> bool:
        return any(v is not None for v in (self.format, self.width, self.height, self.quality))

    @classmethod
    def from_query(
        cls,
        convert: Optional[str] = None,
        type_: Optional[str] = None,
        resize: Optional[str] = None,
        quality: Optional[str] = None,
    ) -> "TransformOptions":
        """Parse and bound-check the upload query parameters."""
        format_param = convert or type_
        width, height = parse_resize(resize) if resize else (None, None)
        return cls(
            format=parse_format(format_param) if format_param else None,
            width=width,
            height=height,
            quality=parse_quality(quality) if quality else None,
            legacy_format_param=bool(type_ and not convert),
        )


def parse_format(value: str) -> str:
    fmt = value.strip().lower()
    if fmt == "jpeg":
        fmt = "jpg"
    if fmt not in settings.IMAGE_SUPPORTED_FORMATS:
        raise ValidationRejected(
            f"Unsupported format: {fmt}. Supported: {', '.join(settings.IMAGE_SUPPORTED_FORMATS)}"
        )
    return fmt


def parse_resize(value: str) -> tuple[int | None, int | None]:
    """Accepts WIDTHxHEIGHT, WIDTH or xHEIGHT."""
    match = _RESIZE_PATTERN.match(value.strip())
    if not match:
        raise ValidationRejected("Invalid resize format. Use: WIDTHxHEIGHT, WIDTH, or xHEIGHT")

    width = int(match.group(1)) if match.group(1) else None
    height = int(match.group(2)) if match.group(2) else None
    if not width and not height:
        raise ValidationRejected("At least width or height must be specified")

    for dim in (width, height):
        if dim is None:
            continue
        if dim > settings.IMAGE_MAX_DIMENSION:
            raise ValidationRejected(f"Maximum dimension is {settings.IMAGE_MAX_DIMENSION}px")
        if dim < settings.IMAGE_MIN_DIMENSION:
            raise ValidationRejected(
                f"Dimensions too small. Minimum dimension: {settings.IMAGE_MIN_DIMENSION}px"
            )
    return width, height


def parse_quality(value: str) -> int:
    try:
        quality = int(value)
    except (TypeError, ValueError):
        raise ValidationRejected("Quality must be a number between 1 and 100")
    if quality < 1 or quality > settings.IMAGE_MAX_QUALITY:
        raise ValidationRejected(f"Quality must be a number between 1 and {settings.IMAGE_MAX_QUALITY}")
    if quality < settings.IMAGE_MIN_QUALITY:
        raise ValidationRejected(f"Quality too low. Minimum quality: {settings.IMAGE_MIN_QUALITY}%")
    return quality


def is_transformable(extension: str) -> bool:
    """GIF, PDF and text uploads are stored as-is."""
    return extension.lower() in TRANSFORMABLE_EXTENSIONS


def _render(data: bytes, extension: str, options: TransformOptions) -> tuple[bytes, str]:
    source_format = _PILLOW_FORMATS[extension.lstrip(".").lower()]
    target_format = _PILLOW_FORMATS[options.format] if options.format else source_format
    new_extension = f".{options.format}" if options.format else extension

    with Image.open(io.BytesIO(data)) as img:
        img.load()
        if options.width or options.height:
            bound = settings.IMAGE_MAX_DIMENSION
            # thumbnail keeps the aspect ratio and never enlarges
            img.thumbnail((options.width or bound, options.height or bound))
        if target_format == "JPEG" and img.mode not in ("RGB", "L"):
            img = img.convert("RGB")

        save_args: dict = {}
        if options.quality is not None:
            if target_format == "PNG":
                # PNG is lossless; map quality onto zlib effort (0-9)
                save_args["compress_level"] = min(9, max(0, round((100 - options.quality) / 10)))
            else:
                save_args["quality"] = options.quality

        out = io.BytesIO()
        img.save(out, format=target_format, **save_args)
    return out.getvalue(), new_extension


async def transform_image(data: bytes, extension: str, options: TransformOptions | None) -> tuple[bytes, str]:
    """Apply `options` and return the new bytes and extension. No-op without options."""
    if options is None or not options.has_transformation:
        return data, extension
    if not is_transformable(extension):
        raise ValidationRejected(f"Files of type {extension} do not support transformations")

    logger.info(f"Applying transformations: {options.model_dump(exclude_none=True)}")
    try:
        result, new_extension = await asyncio.to_thread(_render, data, extension, options)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        logger.error(f"Image transformation failed: {e}")
        raise TransformFailed(f"Image transformation failed: {e}") from e

    logger.info(f"Image transformed: {len(data)} -> {len(result)} bytes ({new_extension})")
    return result, new_extension

"""Pre-render LARGE and SMALL image variants with Pillow.

This runs before an image set is handed to the reconciler, which only stores
the variants it is given.
"""

from __future__ import annotations

import io

from PIL import Image

from catalog_assets.lib.storage.models import SizeVariant

# Maximum width per variant; height follows the aspect ratio.
VARIANT_WIDTHS: dict[SizeVariant, int] = {
    SizeVariant.LARGE: 900,
    SizeVariant.SMALL: 150,
}

_FORMAT_TO_CONTENT_TYPE = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}


def detect_image_content_type(data: bytes) -> str | None:
    """Detect image content type from magic bytes.

    Returns ``None`` if the data does not match a known image signature.
    """
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return None


def render_variant(data: bytes, size_variant: SizeVariant) -> tuple[bytes, str]:
    """Resize an image to the variant's width, keeping format and aspect ratio.

    Never upscales: an image already narrower than the target comes back
    unchanged. ``ORIGINAL`` always returns the input.

    Returns:
        A tuple of ``(image_bytes, content_type)``.
    """
    img = Image.open(io.BytesIO(data))
    orig_format = img.format or "PNG"
    content_type = _FORMAT_TO_CONTENT_TYPE.get(orig_format, "image/png")

    max_width = VARIANT_WIDTHS.get(size_variant)
    orig_w, orig_h = img.size
    if max_width is None or orig_w <= max_width:
        return data, content_type

    new_h = max(1, int(orig_h * max_width / orig_w))
    img = img.resize((max_width, new_h), Image.LANCZOS)

    buf = io.BytesIO()
    save_kwargs: dict = {}
    if orig_format == "JPEG":
        save_kwargs["quality"] = 85
        save_kwargs["optimize"] = True
    elif orig_format == "PNG":
        save_kwargs["optimize"] = True
    elif orig_format == "WEBP":
        save_kwargs["quality"] = 85

    img.save(buf, format=orig_format, **save_kwargs)
    return buf.getvalue(), content_type


def render_variants(data: bytes) -> dict[SizeVariant, tuple[bytes, str]]:
    """Render every non-original variant of one image."""
    return {variant: render_variant(data, variant) for variant in VARIANT_WIDTHS}

"""Album artwork shrunk to a menu-bar icon."""

from io import BytesIO

from PIL import Image, UnidentifiedImageError

from ..core.errors import ParseError


def resize_artwork(image_bytes: bytes, size: int = 16) -> bytes:
    """Return ``image_bytes`` resized to a ``size`` x ``size`` PNG.

    Raises:
        ParseError: The bytes are not a decodable image
    """
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            resized = img.convert("RGBA").resize((size, size), Image.Resampling.LANCZOS)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ParseError(f"artwork not decodable: {e}") from e

    out = BytesIO()
    resized.save(out, format="PNG")
    return out.getvalue()

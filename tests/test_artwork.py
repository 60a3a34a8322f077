from io import BytesIO

import pytest
from PIL import Image

from spotiswitch.core.errors import ParseError
from spotiswitch.utils.artwork import resize_artwork

from .fakes import png_bytes


def test_artwork_is_resized_to_png():
    art = resize_artwork(png_bytes(300), size=16)

    with Image.open(BytesIO(art)) as img:
        assert img.format == "PNG"
        assert img.size == (16, 16)


def test_undecodable_artwork():
    with pytest.raises(ParseError):
        resize_artwork(b"definitely not an image")

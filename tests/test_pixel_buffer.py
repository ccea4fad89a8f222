from __future__ import annotations

import numpy as np
import pytest
from PIL import Image

from pixel_buffer import (
    PIXEL_DTYPE,
    image_from_pixels,
    make_pixels,
    pixel_view,
    pixels_from_image,
    reference_luma,
)


def test_pixel_dtype_matches_uchar4_layout():
    assert PIXEL_DTYPE.itemsize == 4
    assert [PIXEL_DTYPE.fields[name][1] for name in ("r", "g", "b", "gray")] == [0, 1, 2, 3]


def test_pixel_view_shares_memory():
    pixels = np.zeros((2, 3), dtype=PIXEL_DTYPE)
    view = pixel_view(pixels)
    assert view.shape == (6,)
    view["gray"][4] = 9
    assert pixels["gray"][1, 1] == 9


def test_pixel_view_accepts_rgba_bytes():
    raw = np.zeros((5, 4), dtype=np.uint8)
    view = pixel_view(raw)
    assert view.dtype == PIXEL_DTYPE
    assert view.shape == (5,)
    view["gray"][2] = 7
    assert raw[2, 3] == 7


@pytest.mark.parametrize(
    "data",
    [
        None,
        [(1, 2, 3, 0)],
        np.zeros((4, 3), dtype=np.uint8),
        np.zeros(4, dtype=np.float32),
        np.zeros(8, dtype=PIXEL_DTYPE)[::2],
    ],
)
def test_pixel_view_rejects_unaddressable_buffers(data):
    assert pixel_view(data) is None


def test_pixel_view_rejects_read_only_buffer():
    pixels = np.zeros(4, dtype=PIXEL_DTYPE)
    pixels.flags.writeable = False
    assert pixel_view(pixels) is None


def test_make_pixels_copies_channels():
    rgb = np.array([[10, 20, 30], [40, 50, 60]], dtype=np.uint8)
    pixels = make_pixels(rgb)
    assert pixels.shape == (2,)
    assert pixels["r"].tolist() == [10, 40]
    assert pixels["g"].tolist() == [20, 50]
    assert pixels["b"].tolist() == [30, 60]
    assert pixels["gray"].tolist() == [0, 0]


def test_make_pixels_rejects_wrong_channel_count():
    with pytest.raises(ValueError):
        make_pixels(np.zeros((3, 4), dtype=np.uint8))


@pytest.mark.parametrize(
    "rgb, expected",
    [
        ((0, 0, 0), 0),
        ((255, 255, 255), 255),
        ((255, 0, 0), 76),
        ((0, 255, 0), 150),
        ((0, 0, 255), 29),
        ((128, 128, 128), 128),
        # 0.299 + 0.587 + 0.114 * 251 == 29.5 exactly
        ((1, 1, 251), 30),
    ],
)
def test_reference_luma_rounds_half_away_from_zero(rgb, expected):
    assert reference_luma(make_pixels([rgb])).tolist() == [expected]


def test_reference_luma_is_identity_on_gray_input():
    levels = np.arange(256, dtype=np.uint8)
    pixels = make_pixels(np.stack([levels, levels, levels], axis=-1))
    assert np.array_equal(reference_luma(pixels), levels)


def test_pixels_from_image_drops_alpha():
    image = Image.new("RGBA", (3, 2), (255, 10, 20, 0))
    pixels = pixels_from_image(image)
    assert pixels.shape == (2, 3)
    assert set(pixels["r"].ravel().tolist()) == {255}
    assert set(pixels["b"].ravel().tolist()) == {20}


def test_image_from_pixels_uses_gray_channel():
    pixels = np.zeros((2, 3), dtype=PIXEL_DTYPE)
    pixels["gray"] = [[1, 2, 3], [4, 5, 6]]
    image = image_from_pixels(pixels)
    assert image.mode == "L"
    assert image.size == (3, 2)
    assert image.getpixel((2, 1)) == 6


def test_image_from_pixels_needs_two_dimensions():
    with pytest.raises(ValueError):
        image_from_pixels(np.zeros(4, dtype=PIXEL_DTYPE))

"""
Pixel Buffer layout shared by the host code and the OpenCL kernel.

A pixel is four unsigned bytes, r, g, b and gray, which is the same layout as an
OpenCL ``uchar4`` (x=r, y=g, z=b, w=gray).
"""
import numpy
from PIL import Image

PIXEL_DTYPE = numpy.dtype([("r", numpy.uint8),
                           ("g", numpy.uint8),
                           ("b", numpy.uint8),
                           ("gray", numpy.uint8)])

# BT.601 luma weights in thousandths
LUMA_WEIGHTS = (299, 587, 114)


def pixel_view(data):
    """
    Return a flat PIXEL_DTYPE view sharing memory with ``data``, or None when
    ``data`` cannot be rewritten in place.

    Accepts arrays of PIXEL_DTYPE of any shape and uint8 arrays whose last axis
    holds the four channels.
    """
    if not isinstance(data, numpy.ndarray):
        return None
    if not data.flags.c_contiguous or not data.flags.writeable:
        return None

    if data.dtype == PIXEL_DTYPE:
        return data.reshape(-1)
    if data.dtype == numpy.uint8 and data.ndim >= 1 and data.shape[-1] == 4:
        return data.view(PIXEL_DTYPE).reshape(-1)
    return None


def make_pixels(rgb):
    """Build a Pixel Buffer from an array of shape (..., 3); gray starts at 0."""
    rgb = numpy.asarray(rgb).astype(numpy.uint8)
    if rgb.ndim < 1 or rgb.shape[-1] != 3:
        raise ValueError("expected an array of shape (..., 3), got %r" % (rgb.shape,))

    pixels = numpy.zeros(rgb.shape[:-1], dtype=PIXEL_DTYPE)
    pixels["r"] = rgb[..., 0]
    pixels["g"] = rgb[..., 1]
    pixels["b"] = rgb[..., 2]
    return pixels


def pixels_from_image(image):
    """(height, width) Pixel Buffer holding the RGB channels of a PIL image."""
    return make_pixels(numpy.asarray(image.convert("RGB")))


def image_from_pixels(pixels):
    """Mode "L" PIL image of the gray channel of a 2-D Pixel Buffer."""
    if pixels.ndim != 2:
        raise ValueError("expected a 2-D pixel buffer, got %d dimension(s)" % pixels.ndim)
    return Image.fromarray(numpy.ascontiguousarray(pixels["gray"]))


def reference_luma(pixels):
    """
    Host-side luma of every pixel, rounded half away from zero and clamped to
    [0, 255]. This is the exact value the kernel writes into ``gray``.
    """
    wr, wg, wb = LUMA_WEIGHTS
    r = pixels["r"].astype(numpy.uint32)
    g = pixels["g"].astype(numpy.uint32)
    b = pixels["b"].astype(numpy.uint32)

    luma = (wr * r + wg * g + wb * b + 500) // 1000
    return numpy.minimum(luma, 255).astype(numpy.uint8)

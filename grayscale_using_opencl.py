"""
In-place grayscale conversion of a Pixel Buffer on an OpenCL device.

``grayscale`` returns a ``pyopencl.status_code`` value instead of raising: every
failing step goes through ``cl_fail``, which releases the device copy of the
buffer, logs what went wrong and hands the status back unchanged.
"""
import functools
import logging

import numpy
import pyopencl as cl

import opencl_settings
from pixel_buffer import PIXEL_DTYPE, image_from_pixels, pixel_view, pixels_from_image

logger = logging.getLogger(__name__)

GRAYSCALE_KERNEL = """
    __kernel void grayscale(__global uchar4 *pixels, const uint count)
    {
        uint i = get_global_id(0);

        // last group may run past the end of the buffer
        if (i >= count)
            return;

        uchar4 p = pixels[i];

        // 0.299 r + 0.587 g + 0.114 b, rounded half away from zero
        uint luma = (299u * p.x + 587u * p.y + 114u * p.z + 500u) / 1000u;

        p.w = (uchar)min(luma, 255u);
        pixels[i] = p;
    }
    """


class GrayscaleError(RuntimeError):
    def __init__(self, status):
        super().__init__("grayscale conversion failed: %s (%d)" % (_status_name(status), status))
        self.status = status


class DeviceMirror:
    """Device-side copy of a Pixel Buffer, owned by a single grayscale call."""

    def __init__(self, buffer, count):
        self.buffer = buffer
        self.count = count

    @classmethod
    def allocate(cls, context, count):
        mf = cl.mem_flags
        return cls(cl.Buffer(context, mf.READ_WRITE, count * PIXEL_DTYPE.itemsize), count)

    @property
    def live(self):
        return self.buffer is not None

    def release(self):
        # safe to call more than once
        if self.buffer is None:
            return
        buffer, self.buffer = self.buffer, None
        buffer.release()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.release()


def _status_name(status):
    return cl.status_code.to_string(status, "<unknown status %d>")


def _status_of(exc):
    try:
        return exc.code
    except AttributeError:
        # pyopencl raised without an OpenCL status, e.g. no platform at all
        return cl.status_code.DEVICE_NOT_FOUND


def cl_fail(message, mirror, status):
    """
    Release ``mirror`` (if any), report ``message`` with the status and return
    ``status`` untouched.
    """
    if mirror is not None:
        mirror.release()

    logger.error("%s: %s (%d)", message, _status_name(status), status)
    return status


def launch_geometry(count, group_size):
    """(global_size, local_size) covering ``count`` work-items in whole groups."""
    groups = (count + group_size - 1) // group_size
    return groups * group_size, group_size


@functools.lru_cache(maxsize=8)
def _program(context):
    return cl.Program(context, GRAYSCALE_KERNEL).build()


def work_group_size(group_size, device):
    """
    ``group_size`` as given, or the configured default capped at what
    ``device`` can run in one work-group.
    """
    if group_size is not None:
        return group_size
    return min(opencl_settings.group_size(), device.max_work_group_size)


def grayscale(data, size=None, queue=None, group_size=None):
    """
    Write the luma of every pixel of ``data`` into its ``gray`` field.

    ``data`` is a C-contiguous, writeable array of PIXEL_DTYPE (or uint8 with a
    last axis of 4), ``size`` the number of leading pixels to convert (all of
    them by default). Without ``group_size`` the configured work-group size is
    capped at the device's ``max_work_group_size``; an explicit one is used as
    is. Returns ``cl.status_code.SUCCESS`` or the status of the step that
    failed; ``gray`` is unreliable whenever the status is not SUCCESS.
    """
    pixels = pixel_view(data)
    if pixels is None:
        return cl_fail("grayscale: pixel buffer is missing or not addressable",
                       None, cl.status_code.INVALID_VALUE)

    if size is None:
        size = len(pixels)
    if size < 0 or size > len(pixels):
        return cl_fail("grayscale: size %d outside a buffer of %d pixels" % (size, len(pixels)),
                       None, cl.status_code.INVALID_VALUE)
    if size == 0:
        return cl.status_code.SUCCESS

    if group_size is not None and group_size <= 0:
        return cl_fail("grayscale: group size must be positive, got %d" % group_size,
                       None, cl.status_code.INVALID_VALUE)

    host_arr = pixels[:size]

    try:
        if queue is None:
            queue = opencl_settings.default_queue()
        prg = _program(queue.context)
    except cl.Error as exc:
        return cl_fail("grayscale: could not prepare the OpenCL program", None, _status_of(exc))

    group_size = work_group_size(group_size, queue.device)

    try:
        mirror = DeviceMirror.allocate(queue.context, size)
    except cl.Error as exc:
        return cl_fail("grayscale: device allocation failed", None, _status_of(exc))

    with mirror:
        try:
            cl.enqueue_copy(queue, mirror.buffer, host_arr, is_blocking=True)
        except cl.Error as exc:
            return cl_fail("grayscale: copy to device failed", mirror, _status_of(exc))

        global_size, local_size = launch_geometry(size, group_size)
        logger.debug("grayscale: %d pixels, global size %d, local size %d",
                     size, global_size, local_size)

        try:
            kernel = cl.Kernel(prg, "grayscale")
            event = kernel(queue, (global_size,), (local_size,),
                           mirror.buffer, numpy.uint32(size))
        except cl.Error as exc:
            return cl_fail("grayscale: kernel launch failed", mirror, _status_of(exc))

        try:
            event.wait()
        except cl.Error as exc:
            return cl_fail("grayscale: kernel synchronization failed", mirror, _status_of(exc))

        # stage the result so a failed copy never leaves a half-written buffer
        result = numpy.empty_like(host_arr)
        try:
            cl.enqueue_copy(queue, result, mirror.buffer, is_blocking=True)
        except cl.Error as exc:
            return cl_fail("grayscale: copy from device failed", mirror, _status_of(exc))

        host_arr[...] = result

    return cl.status_code.SUCCESS


def convert_image(image, queue=None, group_size=None):
    """Grayscale a PIL image on the device; returns a mode "L" image."""
    pixels = pixels_from_image(image)

    status = grayscale(pixels, queue=queue, group_size=group_size)
    if status != cl.status_code.SUCCESS:
        raise GrayscaleError(status)

    return image_from_pixels(pixels)

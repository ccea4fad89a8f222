import functools
import logging
import os

import pyopencl as cl

logger = logging.getLogger(__name__)

DEFAULT_CTX = "0"
DEFAULT_GROUP_SIZE = 256


def group_size():
    """Work-group size from GRAYSCALE_GROUP_SIZE, 256 when unset."""
    raw = os.environ.get("GRAYSCALE_GROUP_SIZE")
    if raw is None:
        return DEFAULT_GROUP_SIZE

    try:
        value = int(raw)
    except ValueError:
        raise ValueError("GRAYSCALE_GROUP_SIZE must be an integer, got %r" % raw) from None
    if value <= 0:
        raise ValueError("GRAYSCALE_GROUP_SIZE must be positive, got %d" % value)
    return value


@functools.lru_cache(maxsize=None)
def default_queue():
    """
    Command queue on the device selected by PYOPENCL_CTX (first device of the
    first platform when unset). Created once per process.
    """
    os.environ.setdefault("PYOPENCL_CTX", DEFAULT_CTX)

    ctx = cl.create_some_context(interactive=False)
    logger.debug("using OpenCL device(s): %s",
                 ", ".join(device.name for device in ctx.devices))
    return cl.CommandQueue(ctx)

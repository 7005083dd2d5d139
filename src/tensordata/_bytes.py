"""
Byte reinterpretation boundary.

All conversions between raw byte buffers and typed numpy arrays go through the
functions below, which check the buffer width against the element width
before handing out a view.
"""

from typing import Union

import numpy as np

from .exceptions import CastError

Buffer = Union[bytes, bytearray, memoryview]


def cast_slice(buf: Buffer, dtype: np.dtype, writable: bool = False) -> np.ndarray:
    """Zero-copy view of ``buf`` as a 1-D array of ``dtype``.

    Parameters
    ----------
    buf : bytes, bytearray or memoryview
        Source buffer. Must be writable when ``writable`` is set.
    dtype : np.dtype
        Element type of the view.
    writable : bool, default False
        Whether the returned view may be written through.

    Returns
    -------
    np.ndarray
        The view, sharing memory with ``buf``.

    Raises
    ------
    CastError
        If the buffer length is not a multiple of the element width, or if a
        boolean view would expose bytes other than 0 and 1.
    """
    dtype = np.dtype(dtype)
    nbytes = memoryview(buf).nbytes
    if nbytes % dtype.itemsize != 0:
        raise CastError(
            f"Buffer of {nbytes} bytes is not a multiple of {dtype} width "
            f"({dtype.itemsize})",
            nbytes=nbytes,
            itemsize=dtype.itemsize,
        )
    if dtype == np.bool_:
        raw = np.frombuffer(buf, dtype=np.uint8)
        if raw.size and raw.max() > 1:
            raise CastError(
                "Buffer holds bytes that are not valid booleans",
                nbytes=nbytes,
                itemsize=1,
            )
    arr = np.frombuffer(buf, dtype=dtype)
    if writable:
        if not arr.flags.writeable:
            raise CastError("Buffer is read-only", nbytes=nbytes)
    else:
        arr.flags.writeable = False
    return arr


def bytes_of(values, dtype: np.dtype) -> bytearray:
    """Raw bytes of ``values`` laid out as contiguous ``dtype`` elements."""
    arr = np.ascontiguousarray(values, dtype=dtype)
    return bytearray(arr.tobytes())


def read_unaligned(buf: Buffer, start: int, dtype: np.dtype):
    """Read one ``dtype`` scalar at an arbitrary byte offset.

    The bytes are copied first, so ``start`` need not honour the alignment of
    ``dtype``.
    """
    dtype = np.dtype(dtype)
    end = start + dtype.itemsize
    if start < 0 or end > memoryview(buf).nbytes:
        raise CastError(
            f"Cannot read {dtype} at byte offset {start}",
            nbytes=memoryview(buf).nbytes,
            itemsize=dtype.itemsize,
        )
    chunk = bytes(memoryview(buf)[start:end])
    return np.frombuffer(chunk, dtype=dtype)[0]

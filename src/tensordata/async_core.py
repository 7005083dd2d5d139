"""
Async I/O Support for tensordata.
"""

import asyncio
from typing import Optional

from .config import FLAG_COMPRESSION, FLAG_INTEGRITY
from .core import (
    _FOOTER,
    _HEADER,
    _check_digest,
    _decompress,
    _meta_len,
    _padding,
    _parse_header,
    _parse_meta,
    iter_dumps,
)
from .data import TensorData


async def aread_stream(reader: asyncio.StreamReader) -> Optional[TensorData]:
    """Asynchronously read a packet from a StreamReader.

    Parameters
    ----------
    reader : asyncio.StreamReader
        The stream reader to read from.

    Returns
    -------
    Optional[TensorData]
        The deserialized data, or None if stream is empty.
    """
    try:
        header = await reader.readexactly(_HEADER.size)
    except asyncio.IncompleteReadError as e:
        if len(e.partial) == 0:
            return None
        raise
    flags, dtype, ndim = _parse_header(header)

    meta = await reader.readexactly(_meta_len(ndim))
    shape, body_len = _parse_meta(meta, ndim, dtype, flags)

    pad_len = _padding(_HEADER.size + len(meta))
    if pad_len > 0:
        await reader.readexactly(pad_len)

    body = await reader.readexactly(body_len)
    if flags & FLAG_INTEGRITY:
        footer = await reader.readexactly(_FOOTER.size)
        _check_digest(body, footer)
    if flags & FLAG_COMPRESSION:
        body = _decompress(body)
    return TensorData.from_bytes(body, shape, dtype)


async def awrite_stream(
    data: TensorData,
    writer: asyncio.StreamWriter,
    check_integrity: bool = False,
) -> None:
    """Asynchronously write tensor data to a StreamWriter.

    Parameters
    ----------
    data : TensorData
        The data to serialize.
    writer : asyncio.StreamWriter
        The stream writer to write to.
    check_integrity : bool, optional
        Whether to include integrity check. Default is False.
    """
    for chunk in iter_dumps(data, check_integrity=check_integrity):
        writer.write(chunk)
        await writer.drain()

"""Core streaming layer: ring buffers, named streams and windowed views.

Streams are created in a :class:`StreamRegistry`, fed through
:meth:`StreamHandle.append`, and read either ad hoc via :func:`peek` or
incrementally by pipeline leaves.
"""

from .models import Chunk, Marker
from .ringbuffer import RingBuffer
from .stream import StreamHandle, StreamRegistry, new_stream
from .peek import peek
from .concat import concat_chunks

__all__ = [
    "Chunk",
    "Marker",
    "RingBuffer",
    "StreamHandle",
    "StreamRegistry",
    "new_stream",
    "peek",
    "concat_chunks",
]

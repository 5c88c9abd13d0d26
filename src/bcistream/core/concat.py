"""Concatenate chunks across time."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from ..errors import InvalidArgumentError, ShapeError
from .models import Chunk, Marker


def concat_chunks(chunks: Sequence[Chunk]) -> Chunk:
    """
    Join ``chunks`` along the sample axis.

    Meta-data (srate, labels, locations, ``xmin``, ``start_index``) comes
    from the first chunk; event latencies of later chunks are shifted by the
    number of samples that precede them. No consistency checks beyond the
    channel count are made.
    """
    if not chunks:
        raise InvalidArgumentError("chunks", "concat_chunks needs at least one chunk")
    first = chunks[0]
    if len(chunks) == 1:
        return first

    counts = {chunk.n_channels for chunk in chunks}
    if len(counts) > 1:
        raise ShapeError(
            f"All chunks must have the same number of channels to be concatenated, got {sorted(counts)}"
        )

    events: list[Marker] = []
    offset = 0
    for chunk in chunks:
        events.extend(marker.shifted(offset) for marker in chunk.events)
        offset += chunk.n_samples

    data = np.concatenate([chunk.data for chunk in chunks], axis=1)
    n_samples = data.shape[1]
    return Chunk(
        data=data,
        srate=first.srate,
        channel_labels=first.channel_labels,
        channel_locations=first.channel_locations,
        events=tuple(events),
        xmin=first.xmin,
        xmax=first.xmin + (n_samples - 1) / first.srate,
        start_index=first.start_index,
        smax=first.start_index + n_samples - 1,
    )

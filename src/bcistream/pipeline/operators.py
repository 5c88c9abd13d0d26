"""
Filter operators that can sit at pipeline nodes.

Operators come in two capabilities: :class:`PureTransform` (output depends
only on the current inputs) and :class:`StatefulTransform` (threads an opaque
state from one block to the next). Both receive their node's parts with node
inputs replaced by the :class:`Chunk` of samples that input produced this
tick. Operators must treat the incoming state as their own (the evaluator
hands them a private copy) and return the new state instead of relying on
in-place mutation.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, Callable, ClassVar, Dict, Mapping, Optional, Sequence

import numpy as np

from ..analysis.filters import butter_design, causal_filter
from ..core.concat import concat_chunks
from ..core.models import Chunk, Marker
from ..core.stream import DEFAULT_BUFFER_SECONDS
from ..errors import InvalidArgumentError, ShapeError

logger = logging.getLogger(__name__)

__all__ = [
    "Operator",
    "PureTransform",
    "StatefulTransform",
    "FunctionOperator",
    "SelectChannels",
    "Rereference",
    "Scale",
    "IIRFilter",
    "BandpassFilter",
    "FIRFilter",
    "Standardize",
    "Merge",
    "OPERATORS",
    "register_operator",
    "get_operator",
]


class Operator(abc.ABC):
    """Common interface of all node operators."""

    name: ClassVar[str] = ""
    stateful: ClassVar[bool] = False
    # Output channel k depends only on input channel k.
    channel_wise: ClassVar[bool] = True
    # Operator only picks a subset of its input channels.
    selects_channels: ClassVar[bool] = False

    @abc.abstractmethod
    def invoke(self, parts: Sequence[Any], state: Any) -> tuple[Chunk, Any]:
        """Run the operator on resolved ``parts`` and return ``(output, new_state)``."""

    def output_labels(self, parts: Sequence[Any]) -> tuple[str, ...]:
        """
        Statically derive output channel labels.

        ``parts`` holds label tuples where the node has node inputs and the
        constants otherwise.
        """
        for part in parts:
            if isinstance(part, LabelSet):
                return part.labels
        raise InvalidArgumentError(self.name, f"operator {self.name!r} has no node input")

    def bounded(self, capacity: int) -> "Operator":
        """Return the operator to use in a graph whose output ring holds ``capacity`` samples."""
        return self

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class LabelSet:
    """Stand-in for a node input during static label propagation."""

    __slots__ = ("labels",)

    def __init__(self, labels: Sequence[str]) -> None:
        self.labels = tuple(labels)


class PureTransform(Operator):
    stateful = False

    @abc.abstractmethod
    def apply(self, *parts: Any) -> Chunk:
        ...

    def invoke(self, parts: Sequence[Any], state: Any) -> tuple[Chunk, Any]:
        return self.apply(*parts), state


class StatefulTransform(Operator):
    stateful = True

    @abc.abstractmethod
    def apply(self, *parts: Any, state: Any) -> tuple[Chunk, Any]:
        ...

    def invoke(self, parts: Sequence[Any], state: Any) -> tuple[Chunk, Any]:
        return self.apply(*parts, state=state)


class FunctionOperator(Operator):
    """Wrap a plain callable; stateful callables take ``state=`` and return ``(chunk, state)``."""

    def __init__(
        self,
        name: str,
        func: Callable[..., Any],
        *,
        stateful: bool = False,
        channel_wise: bool = True,
    ) -> None:
        self.name = name  # type: ignore[misc]
        self.func = func
        self.stateful = stateful  # type: ignore[misc]
        self.channel_wise = channel_wise  # type: ignore[misc]

    def invoke(self, parts: Sequence[Any], state: Any) -> tuple[Chunk, Any]:
        if self.stateful:
            return self.func(*parts, state=state)
        return self.func(*parts), state


def _require_chunk(name: str, value: Any) -> Chunk:
    if not isinstance(value, Chunk):
        raise InvalidArgumentError(name, f"{name} expects a data input first, got {type(value).__name__}")
    return value


def _check_state_channels(name: str, chunk: Chunk, zi: Optional[np.ndarray]) -> None:
    if zi is not None and zi.shape[0] != chunk.n_channels:
        raise ShapeError(
            f"{name}: carried state is for {zi.shape[0]} channels but the input has {chunk.n_channels}"
        )


# --------------------------------------------------------------------- pure
class SelectChannels(PureTransform):
    """``selchans(data, labels)``: keep the listed channels, in that order."""

    name = "selchans"
    selects_channels = True

    def apply(self, chunk: Chunk, labels: Sequence[str]) -> Chunk:  # type: ignore[override]
        chunk = _require_chunk(self.name, chunk)
        lookup = {label: idx for idx, label in enumerate(chunk.channel_labels)}
        missing = [label for label in labels if label not in lookup]
        if missing:
            raise ShapeError(f"selchans: channels {missing} are not present in the input {chunk.channel_labels}")
        indices = [lookup[label] for label in labels]
        locations = None
        if chunk.channel_locations is not None:
            locations = [chunk.channel_locations[i] for i in indices]
        return chunk.with_data(
            chunk.data[indices, :],
            channel_labels=[chunk.channel_labels[i] for i in indices],
            channel_locations=locations,
        )

    def output_labels(self, parts: Sequence[Any]) -> tuple[str, ...]:
        return tuple(parts[1])


class Rereference(PureTransform):
    """``rereference(data, ref=None)``: subtract the mean of ``ref`` channels (default: all)."""

    name = "rereference"
    channel_wise = False

    def apply(self, chunk: Chunk, ref: Optional[Sequence[str]] = None) -> Chunk:  # type: ignore[override]
        chunk = _require_chunk(self.name, chunk)
        if ref:
            lookup = {label: idx for idx, label in enumerate(chunk.channel_labels)}
            missing = [label for label in ref if label not in lookup]
            if missing:
                raise ShapeError(f"rereference: reference channels {missing} are not in the input")
            reference = chunk.data[[lookup[label] for label in ref], :].mean(axis=0)
        else:
            reference = chunk.data.mean(axis=0)
        return chunk.with_data(chunk.data - reference[np.newaxis, :])


class Scale(PureTransform):
    """``scale(data, factor)``."""

    name = "scale"

    def apply(self, chunk: Chunk, factor: Any) -> Chunk:  # type: ignore[override]
        chunk = _require_chunk(self.name, chunk)
        factor_arr = np.asarray(factor, dtype=float)
        if factor_arr.ndim == 1:
            if factor_arr.size != chunk.n_channels:
                raise ShapeError(f"scale: got {factor_arr.size} factors for {chunk.n_channels} channels")
            factor_arr = factor_arr[:, np.newaxis]
        return chunk.with_data(chunk.data * factor_arr)


# ----------------------------------------------------------------- stateful
class IIRFilter(StatefulTransform):
    """``iir(data, b, a)``: causal IIR filter; state is ``{"zi": channels x order}``."""

    name = "iir"

    def apply(self, chunk: Chunk, b: Sequence[float], a: Sequence[float], *, state: Any) -> tuple[Chunk, Any]:  # type: ignore[override]
        chunk = _require_chunk(self.name, chunk)
        zi = None
        if state and state.get("zi") is not None:
            zi = np.asarray(state["zi"], dtype=float)
        _check_state_channels(self.name, chunk, zi)
        filtered, zf = causal_filter(b, a, chunk.data, zi)
        return chunk.with_data(filtered), {"zi": zf}


class BandpassFilter(StatefulTransform):
    """
    ``bandpass(data, low, high, order=4)``: Butterworth filter designed for the
    input's sampling rate on first use. ``low``/``high`` may be ``None`` for
    high-/low-pass operation.
    """

    name = "bandpass"

    def apply(  # type: ignore[override]
        self,
        chunk: Chunk,
        low: Optional[float],
        high: Optional[float],
        order: int = 4,
        *,
        state: Any,
    ) -> tuple[Chunk, Any]:
        chunk = _require_chunk(self.name, chunk)
        state = dict(state or {})
        if state.get("b") is None or state.get("srate") != chunk.srate:
            b, a = butter_design(chunk.srate, low, high, int(order))
            state = {"b": b, "a": a, "srate": chunk.srate, "zi": None}
        zi = np.asarray(state["zi"], dtype=float) if state.get("zi") is not None else None
        _check_state_channels(self.name, chunk, zi)
        filtered, zf = causal_filter(state["b"], state["a"], chunk.data, zi)
        state["zi"] = zf
        return chunk.with_data(filtered), state


class FIRFilter(StatefulTransform):
    """``fir(data, taps)``: causal FIR filter."""

    name = "fir"

    def apply(self, chunk: Chunk, taps: Sequence[float], *, state: Any) -> tuple[Chunk, Any]:  # type: ignore[override]
        chunk = _require_chunk(self.name, chunk)
        zi = None
        if state and state.get("zi") is not None:
            zi = np.asarray(state["zi"], dtype=float)
        _check_state_channels(self.name, chunk, zi)
        filtered, zf = causal_filter(taps, [1.0], chunk.data, zi)
        return chunk.with_data(filtered), {"zi": zf}


class Standardize(StatefulTransform):
    """``standardize(data, halflife_s=5.0)``: exponentially weighted running z-score."""

    name = "standardize"

    def apply(self, chunk: Chunk, halflife_s: float = 5.0, *, state: Any) -> tuple[Chunk, Any]:  # type: ignore[override]
        chunk = _require_chunk(self.name, chunk)
        if halflife_s <= 0:
            raise InvalidArgumentError("halflife_s", f"halflife_s must be positive, got {halflife_s}")
        if chunk.is_empty:
            return chunk, state
        alpha = 1.0 - 0.5 ** (1.0 / (float(halflife_s) * chunk.srate))
        data = chunk.data
        if state and state.get("mean") is not None:
            mean = np.array(state["mean"], dtype=float)
            var = np.array(state["var"], dtype=float)
            if mean.shape[0] != chunk.n_channels:
                raise ShapeError(
                    f"standardize: carried state is for {mean.shape[0]} channels, input has {chunk.n_channels}"
                )
        else:
            mean = data[:, 0].copy()
            var = np.zeros(chunk.n_channels)
        out = np.empty_like(data)
        for t in range(data.shape[1]):
            x = data[:, t]
            mean = (1.0 - alpha) * mean + alpha * x
            var = (1.0 - alpha) * var + alpha * (x - mean) ** 2
            out[:, t] = (x - mean) / np.sqrt(var + 1e-12)
        return chunk.with_data(out), {"mean": mean, "var": var}


class Merge(StatefulTransform):
    """
    ``merge(a, b, ...)``: stack the channels of several inputs.

    Inputs may deliver different numbers of samples per tick; the surplus of
    the faster inputs is carried in the state until the slower ones catch up.
    At most ``max_pending`` samples are held per input (default: the
    ``max_pending_seconds`` worth at the input's sampling rate); older ones
    are dropped with a warning.
    """

    name = "merge"
    channel_wise = False

    def __init__(self, max_pending: Optional[int] = None, max_pending_seconds: float = DEFAULT_BUFFER_SECONDS) -> None:
        if max_pending is not None and max_pending < 1:
            raise InvalidArgumentError("max_pending", f"max_pending must be >= 1 sample, got {max_pending}")
        self.max_pending = max_pending
        self.max_pending_seconds = float(max_pending_seconds)

    def bounded(self, capacity: int) -> "Merge":
        if self.max_pending is not None:
            return self
        return Merge(max_pending=capacity, max_pending_seconds=self.max_pending_seconds)

    def _limit(self, chunk: Chunk) -> int:
        if self.max_pending is not None:
            return self.max_pending
        return max(1, int(round(self.max_pending_seconds * chunk.srate)))

    def apply(self, *chunks: Any, state: Any) -> tuple[Chunk, Any]:  # type: ignore[override]
        if not chunks:
            raise InvalidArgumentError(self.name, "merge needs at least one input")
        inputs = [_require_chunk(self.name, chunk) for chunk in chunks]
        pending = list((state or {}).get("pending") or [None] * len(inputs))
        if len(pending) != len(inputs):
            raise ShapeError(f"merge: state holds {len(pending)} inputs, got {len(inputs)}")

        combined = [
            concat_chunks([held, new]) if held is not None and not held.is_empty else new
            for held, new in zip(pending, inputs)
        ]
        labels: list[str] = []
        for chunk in combined:
            labels.extend(chunk.channel_labels)
        if len(set(labels)) != len(labels):
            raise ShapeError(f"merge: inputs share channel labels {labels}")

        count = min(chunk.n_samples for chunk in combined)
        heads = [chunk.slice_samples(0, count) for chunk in combined]
        tails = []
        for pos, chunk in enumerate(combined):
            tail = chunk.slice_samples(count, chunk.n_samples)
            limit = self._limit(chunk)
            if tail.n_samples > limit:
                logger.warning(
                    "merge: input %d is %d sample(s) ahead of the others; dropping the oldest %d",
                    pos,
                    tail.n_samples,
                    tail.n_samples - limit,
                )
                tail = tail.slice_samples(tail.n_samples - limit, tail.n_samples)
            tails.append(tail)

        events: list[Marker] = []
        for head in heads:
            events.extend(head.events)
        events.sort(key=lambda marker: marker.latency)
        base = heads[0]
        locations = None
        if all(head.channel_locations is not None for head in heads):
            locations = [loc for head in heads for loc in head.channel_locations]  # type: ignore[union-attr]
        merged = base.with_data(
            np.vstack([head.data for head in heads]),
            channel_labels=labels,
            channel_locations=locations,
            events=events,
        )
        return merged, {"pending": tails}

    def output_labels(self, parts: Sequence[Any]) -> tuple[str, ...]:
        labels: list[str] = []
        for part in parts:
            if isinstance(part, LabelSet):
                labels.extend(part.labels)
        return tuple(labels)


OPERATORS: Dict[str, Operator] = {
    op.name: op
    for op in (
        SelectChannels(),
        Rereference(),
        Scale(),
        IIRFilter(),
        BandpassFilter(),
        FIRFilter(),
        Standardize(),
        Merge(),
    )
}


def register_operator(
    operator: Operator | str,
    func: Optional[Callable[..., Any]] = None,
    *,
    stateful: bool = False,
    channel_wise: bool = True,
    registry: Optional[Dict[str, Operator]] = None,
) -> Operator:
    """Register an operator instance, or wrap ``func`` under the name ``operator``."""
    target = OPERATORS if registry is None else registry
    if isinstance(operator, str):
        if func is None:
            raise InvalidArgumentError("func", f"registering {operator!r} by name needs a callable")
        op: Operator = FunctionOperator(operator, func, stateful=stateful, channel_wise=channel_wise)
    else:
        op = operator
    if not op.name:
        raise InvalidArgumentError("operator", "operators need a non-empty name")
    if op.name in target:
        logger.info("Replacing registered operator %r", op.name)
    target[op.name] = op
    return op


def get_operator(name: str, operators: Optional[Mapping[str, Operator]] = None) -> Operator:
    table = OPERATORS if operators is None else operators
    try:
        return table[name]
    except KeyError:
        raise InvalidArgumentError(
            "expression", f"Unknown filter operator {name!r}; known operators: {sorted(table)}"
        ) from None

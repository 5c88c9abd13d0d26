"""
Filter expressions: the calibrated description a pipeline is built from.

An expression is a tree of :class:`FilterExpression` applications whose
leaves are :class:`RawData` placeholders for live streams. Offline
calibration produces the tree (including any calibrated operator state);
:func:`bcistream.pipeline.graph.new_pipeline` turns it into a graph bound to
live streams.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional, Sequence, Union

import yaml

from ..errors import InvalidArgumentError

RAWDATA = "rawdata"


@dataclass(frozen=True, eq=False)
class RawData:
    """Placeholder for raw stream data required by an expression.

    Leaves are matched to streams by ``channel_labels`` (the stream must carry
    all of them); label-free leaves match streams with exactly
    ``channel_count`` channels.
    """

    channel_labels: Optional[tuple[str, ...]] = None
    channel_count: Optional[int] = None

    def __post_init__(self) -> None:
        if self.channel_labels is not None:
            object.__setattr__(self, "channel_labels", tuple(str(c) for c in self.channel_labels))
        if self.channel_labels is None and self.channel_count is None:
            raise InvalidArgumentError("rawdata", "RawData needs channel_labels or channel_count")

    @property
    def head(self) -> str:
        return RAWDATA


@dataclass(eq=False)
class FilterExpression:
    """One filter application: ``head(*parts)``.

    ``stateful`` overrides the operator's own statefulness; ``state`` carries
    calibrated state to resume from.
    """

    head: str
    parts: tuple[Any, ...] = field(default_factory=tuple)
    stateful: Optional[bool] = None
    state: Any = None

    def __post_init__(self) -> None:
        self.parts = tuple(self.parts)


Expression = Union[FilterExpression, RawData]


def flt(head: str, *parts: Any, stateful: Optional[bool] = None, state: Any = None) -> FilterExpression:
    """Shorthand for building expressions in code."""
    return FilterExpression(head, parts, stateful=stateful, state=state)


def is_expression(value: Any) -> bool:
    return isinstance(value, (FilterExpression, RawData))


def iter_leaves(expr: Expression) -> Iterator[RawData]:
    """Yield every :class:`RawData` leaf (shared leaves once)."""
    seen: set[int] = set()
    stack: list[Any] = [expr]
    while stack:
        node = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        if isinstance(node, RawData):
            yield node
        elif isinstance(node, FilterExpression):
            stack.extend(reversed([p for p in node.parts if is_expression(p)]))


def _convert(value: Any) -> Any:
    if isinstance(value, Mapping):
        if RAWDATA in value:
            entry = value[RAWDATA] or {}
            if not isinstance(entry, Mapping):
                raise InvalidArgumentError("expression", f"rawdata entry must be a mapping, got {entry!r}")
            labels = entry.get("channels")
            count = entry.get("channel_count")
            return RawData(
                channel_labels=tuple(labels) if labels is not None else None,
                channel_count=int(count) if count is not None else None,
            )
        if "head" in value:
            return expression_from_mapping(value)
        return dict(value)
    if isinstance(value, list):
        return tuple(_convert(item) for item in value)
    return value


def expression_from_mapping(data: Mapping[str, Any]) -> Expression:
    """
    Build an expression from nested mappings (e.g. parsed YAML)::

        head: bandpass
        parts:
          - rawdata: {channels: [C3, C4, Cz]}
          - 8.0
          - 30.0
    """
    if not isinstance(data, Mapping):
        raise InvalidArgumentError("expression", f"Expected a mapping, got {type(data).__name__}")
    if RAWDATA in data:
        return _convert(data)
    head = data.get("head")
    if not isinstance(head, str) or not head:
        raise InvalidArgumentError("expression", f"Filter expressions need a non-empty 'head', got {head!r}")
    parts: Sequence[Any] = data.get("parts") or ()
    if not isinstance(parts, (list, tuple)):
        raise InvalidArgumentError("expression", f"'parts' of {head!r} must be a list, got {parts!r}")
    stateful = data.get("stateful")
    return FilterExpression(
        head=head,
        parts=tuple(_convert(p) for p in parts),
        stateful=bool(stateful) if stateful is not None else None,
        state=data.get("state"),
    )


def load_expression(path: str | Path) -> Expression:
    """Load an expression from a YAML file (optionally under an ``expression:`` key)."""
    expr_path = Path(path)
    with expr_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"Expected mapping in {expr_path}, got {type(raw).__name__}")
    if "expression" in raw and isinstance(raw["expression"], Mapping):
        raw = raw["expression"]
    return expression_from_mapping(raw)

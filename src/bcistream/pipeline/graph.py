"""
Pipeline graphs: calibrated filter expressions bound to live streams.

:func:`new_pipeline` flattens a :class:`FilterExpression` tree into an arena
of :class:`Node` objects referenced by index, binds every raw-data leaf to
exactly one registered stream, and allocates the bounded output ring that
incremental evaluation appends to.
"""

from __future__ import annotations

import copy
import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..core.models import Chunk
from ..core.peek import UNITS, samples_to_get
from ..core.ringbuffer import RingBuffer
from ..core.stream import StreamHandle, StreamRegistry
from ..errors import (
    AmbiguousBindingError,
    InvalidArgumentError,
    NotFoundError,
    ShapeError,
)
from .expression import Expression, FilterExpression, RawData, is_expression, iter_leaves
from .operators import LabelSet, Operator, get_operator

logger = logging.getLogger(__name__)


class NodeKind(enum.Enum):
    LEAF = "leaf"
    STATELESS = "stateless"
    STATEFUL = "stateful"


@dataclass(frozen=True)
class NodeRef:
    """Reference to another node of the same graph, by arena index."""

    index: int


@dataclass
class Node:
    index: int
    kind: NodeKind
    head: str
    output_labels: tuple[str, ...]
    srate: float
    operator: Optional[Operator] = None
    parts: tuple[Any, ...] = ()
    # positions in `parts` that hold a NodeRef
    subnodes: tuple[int, ...] = ()
    state: Any = None
    # leaf binding
    stream_name: Optional[str] = None
    stream_id: Optional[str] = None
    channel_indices: tuple[int, ...] = ()
    smax_seen: int = 0

    @property
    def is_leaf(self) -> bool:
        return self.kind is NodeKind.LEAF

    @property
    def input_indices(self) -> tuple[int, ...]:
        return tuple(self.parts[pos].index for pos in self.subnodes)


@dataclass(frozen=True)
class GraphSnapshot:
    """Deep copy of all mutable per-node values (states and leaf cursors)."""

    states: Dict[int, Any] = field(default_factory=dict)
    cursors: Dict[int, int] = field(default_factory=dict)


class PipelineGraph:
    """A DAG of filter nodes whose leaves read from named streams."""

    def __init__(
        self,
        nodes: List[Node],
        root: int,
        registry: StreamRegistry,
        *,
        output_capacity: int,
    ) -> None:
        self.pipeline_id = uuid.uuid4().hex
        self.nodes = nodes
        self.root = root
        self.registry = registry
        self.leaves = tuple(node.index for node in nodes if node.is_leaf)
        root_node = nodes[root]
        if not root_node.output_labels:
            raise ShapeError("The pipeline produces no output channels.")
        self.srate = root_node.srate
        self.output = RingBuffer(output_capacity, len(root_node.output_labels))
        self.ticks = 0

    def __repr__(self) -> str:
        return (
            f"PipelineGraph(nodes={len(self.nodes)}, leaves={len(self.leaves)}, "
            f"streams={sorted(self.stream_names)}, output_smax={self.output.smax})"
        )

    @property
    def output_labels(self) -> tuple[str, ...]:
        return self.nodes[self.root].output_labels

    @property
    def stream_names(self) -> set[str]:
        return {self.nodes[i].stream_name for i in self.leaves if self.nodes[i].stream_name}

    def snapshot(self) -> GraphSnapshot:
        return GraphSnapshot(
            states={n.index: copy.deepcopy(n.state) for n in self.nodes if n.kind is NodeKind.STATEFUL},
            cursors={i: self.nodes[i].smax_seen for i in self.leaves},
        )

    def peek_output(self, length: float, unit: str = "samples") -> Chunk:
        """Most recent pipeline output, analogous to :func:`~bcistream.core.peek.peek`."""
        if unit not in UNITS:
            raise InvalidArgumentError("unit", f"Unrecognized length unit {unit!r}; expected one of {UNITS}.")
        smax = self.output.smax
        count = samples_to_get(self.srate, self.output.capacity, float(length), unit, smax)
        start = smax - count + 1
        xmax = (smax - 1) / self.srate
        return Chunk(
            data=self.output.read_window(start, smax),
            srate=self.srate,
            channel_labels=self.output_labels,
            events=tuple(self.output.read_markers(start, smax)),
            xmin=xmax - (count - 1) / self.srate,
            xmax=xmax,
            start_index=start,
            smax=smax,
        )


# ---------------------------------------------------------------- construction
@dataclass
class _Requirement:
    channels: Optional[frozenset[str]] = None  # None: everything the node provides
    narrowed: bool = False


class _Builder:
    def __init__(
        self,
        registry: StreamRegistry,
        candidates: Sequence[str],
        operators: Optional[Mapping[str, Operator]],
    ) -> None:
        self.registry = registry
        self.candidates = list(candidates)
        self.operators = operators
        self.requirements: Dict[int, _Requirement] = {}
        self.selections: Dict[int, tuple[str, ...]] = {}
        self.nodes: List[Node] = []
        self.memo: Dict[int, int] = {}
        # arena indices whose output channels differ from what calibration saw
        self.narrowed: set[int] = set()

    # requirement propagation (root -> leaves)
    def propagate(self, expr: Expression, required: Optional[frozenset[str]], narrowed: bool) -> None:
        previous = self.requirements.get(id(expr))
        if previous is not None:
            if previous.channels is None or required is None:
                required = None
            else:
                required = previous.channels | required
            narrowed = narrowed and previous.narrowed
        self.requirements[id(expr)] = _Requirement(required, narrowed)
        if isinstance(expr, RawData):
            return

        op = get_operator(expr.head, self.operators)
        if op.selects_channels:
            if len(expr.parts) < 2:
                raise InvalidArgumentError("expression", f"{expr.head} needs a channel list")
            selection = tuple(expr.parts[1])
            if required is not None:
                pruned = tuple(label for label in selection if label in required)
                if pruned != selection:
                    logger.debug("Pruning %s selection %s -> %s", expr.head, selection, pruned)
                    narrowed = True
                self.selections[id(expr)] = pruned
                child_required: Optional[frozenset[str]] = frozenset(pruned)
            else:
                self.selections.pop(id(expr), None)
                child_required = None
        elif op.channel_wise:
            child_required = required
        else:
            child_required, narrowed = None, False

        for part in expr.parts:
            if is_expression(part):
                self.propagate(part, child_required, narrowed)

    # arena construction (leaves -> root)
    def build(self, expr: Expression) -> int:
        key = id(expr)
        if key in self.memo:
            return self.memo[key]
        if isinstance(expr, RawData):
            node = self._bind_leaf(expr)
        else:
            node = self._build_filter(expr)
        self.nodes.append(node)
        self.memo[key] = node.index
        return node.index

    def _build_filter(self, expr: FilterExpression) -> Node:
        op = get_operator(expr.head, self.operators)
        parts: List[Any] = []
        label_parts: List[Any] = []
        subnodes: List[int] = []
        srate: Optional[float] = None
        for pos, part in enumerate(expr.parts):
            if is_expression(part):
                child = self.nodes[self.build(part)]
                parts.append(NodeRef(child.index))
                label_parts.append(LabelSet(child.output_labels))
                subnodes.append(pos)
                srate = srate if srate is not None else child.srate
            else:
                parts.append(part)
                label_parts.append(part)
        if not subnodes:
            raise InvalidArgumentError("expression", f"Filter {expr.head!r} has no data input.")

        requirement = self.requirements.get(id(expr), _Requirement())
        pruned = False
        if id(expr) in self.selections:
            pruned = tuple(self.selections[id(expr)]) != tuple(expr.parts[1])
            parts[1] = self.selections[id(expr)]
            label_parts[1] = parts[1]
        if op.selects_channels:
            # a selection's output depends only on its own channel list
            narrowed = pruned
            available = label_parts[subnodes[0]].labels
            missing = [label for label in parts[1] if label not in available]
            if missing:
                raise ShapeError(
                    f"{expr.head} selects channels {missing} that the bound data does not provide; "
                    "pass needed_channels to bind to streams lacking them."
                )
        else:
            narrowed = requirement.narrowed or any(parts[pos].index in self.narrowed for pos in subnodes)

        stateful = op.stateful if expr.stateful is None else bool(expr.stateful)
        state = None
        if stateful and not narrowed:
            state = copy.deepcopy(expr.state)
        elif stateful and expr.state is not None:
            logger.debug("Dropping calibrated state of %s: its channels were narrowed", expr.head)
        index = len(self.nodes)
        if narrowed:
            self.narrowed.add(index)
        return Node(
            index=index,
            kind=NodeKind.STATEFUL if stateful else NodeKind.STATELESS,
            head=expr.head,
            output_labels=tuple(op.output_labels(label_parts)),
            srate=float(srate or 0.0),
            operator=op,
            parts=tuple(parts),
            subnodes=tuple(subnodes),
            state=state,
        )

    def _bind_leaf(self, leaf: RawData) -> Node:
        requirement = self.requirements.get(id(leaf), _Requirement())
        labels = leaf.channel_labels
        if labels is not None and requirement.narrowed and requirement.channels is not None:
            labels = tuple(label for label in labels if label in requirement.channels)

        matches: List[StreamHandle] = []
        for name in self.candidates:
            if name not in self.registry:
                continue
            handle = self.registry.get(name)
            if labels is not None:
                if set(labels).issubset(handle.channel_labels):
                    matches.append(handle)
            elif len(handle.channel_labels) == leaf.channel_count:
                matches.append(handle)

        wanted = f"channels {list(labels)}" if labels is not None else f"{leaf.channel_count} channels"
        if not matches:
            raise NotFoundError(
                f"None of the streams {self.candidates} provides the {wanted} required by the pipeline; "
                "check the stream names or pass needed_channels."
            )
        if len(matches) > 1:
            raise AmbiguousBindingError(
                f"Streams {[h.name for h in matches]} all provide the {wanted} required by the pipeline; "
                "pass stream_names to pick one."
            )
        handle = matches[0]
        bound = labels if labels is not None else handle.channel_labels
        logger.debug("Bound raw data leaf %s to stream %r", wanted, handle.name)
        if leaf.channel_labels is not None and tuple(bound) != tuple(leaf.channel_labels):
            self.narrowed.add(len(self.nodes))
        return Node(
            index=len(self.nodes),
            kind=NodeKind.LEAF,
            head="rawdata",
            output_labels=tuple(bound),
            srate=handle.srate,
            stream_name=handle.name,
            stream_id=handle.stream_id,
            channel_indices=tuple(handle.channel_indices(bound)),
            smax_seen=0,
        )


def _normalize_names(stream_names: Optional[Iterable[str] | str], registry: StreamRegistry) -> List[str]:
    if stream_names is None:
        return registry.names()
    if isinstance(stream_names, str):
        stream_names = [stream_names]
    names = list(stream_names)
    for name in names:
        if not isinstance(name, str) or not name:
            raise InvalidArgumentError(
                "stream_names",
                "stream_names must be passed as the names under which the streams were registered, "
                f"got {name!r}",
            )
    return names


def new_pipeline(
    expression: Expression,
    registry: StreamRegistry,
    stream_names: Optional[Iterable[str] | str] = None,
    needed_channels: Optional[Sequence[str]] = None,
    *,
    operators: Optional[Mapping[str, Operator]] = None,
    output_capacity: Optional[int] = None,
) -> PipelineGraph:
    """
    Create a pipeline graph from a calibrated filter expression.

    Parameters
    ----------
    expression:
        Filter expression tree with :class:`RawData` leaves.
    registry:
        Registry holding the candidate live streams.
    stream_names:
        Names of streams to consider as data sources (default: all registered).
        Each leaf must match exactly one of them.
    needed_channels:
        Channel labels that must be present in the pipeline output. Channel
        selections are pruned to these so the pipeline can bind to streams
        lacking channels that calibration used but the consumer does not need.
    operators:
        Operator table to resolve heads against (default: the global table).
    output_capacity:
        Length of the output ring in samples (default: largest bound stream
        buffer).
    """
    if not is_expression(expression):
        raise InvalidArgumentError(
            "expression", f"Please pass a filter expression to wrap into a pipeline, got {type(expression).__name__}"
        )
    if next(iter_leaves(expression), None) is None:
        raise InvalidArgumentError("expression", "The filter expression does not reference any raw data.")
    candidates = _normalize_names(stream_names, registry)
    needed = None
    if needed_channels:
        needed = frozenset(str(label) for label in needed_channels)

    builder = _Builder(registry, candidates, operators)
    builder.propagate(expression, needed, False)
    root = builder.build(expression)
    nodes = builder.nodes

    root_labels = nodes[root].output_labels
    if needed is not None:
        missing = sorted(needed.difference(root_labels))
        if missing:
            raise ShapeError(
                f"The pipeline output {list(root_labels)} lacks the needed channels {missing}."
            )

    if output_capacity is None:
        capacities = [registry.get(nodes[i].stream_name).capacity for i in range(len(nodes)) if nodes[i].is_leaf]
        output_capacity = max(capacities)
    for node in nodes:
        if node.operator is not None:
            node.operator = node.operator.bounded(int(output_capacity))
    graph = PipelineGraph(nodes, root, registry, output_capacity=int(output_capacity))
    logger.info(
        "Created pipeline %s with %d node(s) bound to %s",
        graph.pipeline_id,
        len(nodes),
        sorted(graph.stream_names),
    )
    return graph

"""Incremental re-evaluation of a pipeline graph on newly arrived samples."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict

from ..core.models import Chunk
from ..core.peek import peek
from ..errors import OperatorFailure, ShapeError
from ..tools.debug import time_block
from .graph import Node, NodeKind, NodeRef, PipelineGraph

logger = logging.getLogger(__name__)


class IncrementalEvaluator:
    """
    Pull only the samples each leaf has not seen yet and push them through
    the graph, threading operator state from tick to tick.

    New node states and leaf cursors are staged during a tick and committed
    only after every node succeeded, so a failing tick leaves the graph
    exactly as it was.
    """

    def __init__(self, graph: PipelineGraph) -> None:
        self.graph = graph
        # per-node milliseconds, filled only while BCISTREAM_DEBUG is on
        self.timings: Dict[str, float] = {}

    def evaluate(self) -> Chunk:
        """Run one tick and return the root's newly produced samples."""
        graph = self.graph
        outputs: Dict[int, Chunk] = {}
        staged_states: Dict[int, Any] = {}
        staged_cursors: Dict[int, int] = {}

        with time_block(f"pipeline {graph.pipeline_id[:8]} tick {graph.ticks}"):
            result = self._evaluate_node(graph.root, outputs, staged_states, staged_cursors)

        if result.n_channels != graph.output.channel_count:
            raise ShapeError(
                f"Pipeline produced {result.n_channels} channels but its output holds "
                f"{graph.output.channel_count}; an operator changed the channel layout."
            )

        for index, state in staged_states.items():
            graph.nodes[index].state = state
        for index, cursor in staged_cursors.items():
            graph.nodes[index].smax_seen = cursor
        if not result.is_empty:
            graph.output.append(result.data, result.events)
        graph.ticks += 1
        return result

    __call__ = evaluate

    def _evaluate_node(
        self,
        index: int,
        outputs: Dict[int, Chunk],
        staged_states: Dict[int, Any],
        staged_cursors: Dict[int, int],
    ) -> Chunk:
        if index in outputs:
            return outputs[index]
        node = self.graph.nodes[index]
        if node.is_leaf:
            result = self._read_leaf(node, staged_cursors)
        else:
            inputs = [
                self._evaluate_node(node.parts[pos].index, outputs, staged_states, staged_cursors)
                for pos in node.subnodes
            ]
            if all(chunk.is_empty for chunk in inputs):
                # idle: nothing new reached this node
                result = Chunk.empty(node.output_labels, node.srate, smax=inputs[0].smax)
            else:
                result = self._apply(node, outputs, staged_states)
        outputs[index] = result
        return result

    def _read_leaf(self, node: Node, staged_cursors: Dict[int, int]) -> Chunk:
        chunk = peek(
            self.graph.registry,
            node.stream_name or "",
            node.smax_seen,
            "index",
            list(node.channel_indices),
            expected_id=node.stream_id,
        )
        dropped = chunk.start_index - 1 - node.smax_seen
        if dropped > 0 and node.smax_seen > 0:
            logger.warning(
                "Pipeline %s fell %d sample(s) behind stream %r; they were overwritten before being read",
                self.graph.pipeline_id[:8],
                dropped,
                node.stream_name,
            )
        staged_cursors[node.index] = chunk.smax
        return chunk

    def _apply(self, node: Node, outputs: Dict[int, Chunk], staged_states: Dict[int, Any]) -> Chunk:
        args = [outputs[part.index] if isinstance(part, NodeRef) else part for part in node.parts]
        stateful = node.kind is NodeKind.STATEFUL
        state = copy.deepcopy(node.state) if stateful else None
        if node.operator is None:
            raise OperatorFailure(node.index, node.head, f"Node {node.index} ({node.head!r}) has no operator to run")
        try:
            with time_block(f"node {node.index} ({node.head})", timings=self.timings):
                result, new_state = node.operator.invoke(args, state)
        except Exception as exc:
            raise OperatorFailure(
                node.index,
                node.head,
                f"Filter {node.head!r} (node {node.index}) failed: {exc}",
            ) from exc
        if not isinstance(result, Chunk):
            raise OperatorFailure(
                node.index,
                node.head,
                f"Filter {node.head!r} (node {node.index}) returned {type(result).__name__} instead of a Chunk",
            )
        if stateful:
            staged_states[node.index] = new_state
        return result


def evaluate(graph: PipelineGraph) -> Chunk:
    """Run one incremental tick of ``graph``."""
    return IncrementalEvaluator(graph).evaluate()

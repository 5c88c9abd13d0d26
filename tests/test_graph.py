from __future__ import annotations

import numpy as np
import pytest
from scipy import signal

from bcistream.core.stream import StreamRegistry, new_stream
from bcistream.errors import AmbiguousBindingError, InvalidArgumentError, NotFoundError, ShapeError
from bcistream.pipeline.evaluator import evaluate
from bcistream.pipeline.expression import RawData, flt
from bcistream.pipeline.graph import NodeKind, new_pipeline


def _registry(**streams: tuple) -> StreamRegistry:
    registry = StreamRegistry()
    for name, labels in streams.items():
        new_stream(registry, name, 100.0, labels, capacity=50)
    return registry


def test_leaf_binds_to_stream_providing_labels() -> None:
    registry = _registry(eeg=("C3", "Cz", "C4"), emg=("EMG1",))
    expr = flt("scale", RawData(channel_labels=("C4", "C3")), 2.0)

    graph = new_pipeline(expr, registry)

    leaf = graph.nodes[graph.leaves[0]]
    assert leaf.kind is NodeKind.LEAF
    assert leaf.stream_name == "eeg"
    assert leaf.stream_id == registry.get("eeg").stream_id
    assert leaf.channel_indices == (2, 0)
    assert leaf.smax_seen == 0
    assert graph.output_labels == ("C4", "C3")
    assert graph.nodes[graph.root].kind is NodeKind.STATELESS


def test_leaf_binds_by_channel_count() -> None:
    registry = _registry(eeg=("C3", "Cz", "C4"), emg=("EMG1", "EMG2"))
    graph = new_pipeline(flt("scale", RawData(channel_count=2), 1.0), registry)
    assert graph.stream_names == {"emg"}


def test_ambiguous_binding_raises() -> None:
    registry = _registry(left=("C3", "C4"), right=("C3", "C4", "Pz"))
    expr = flt("scale", RawData(channel_labels=("C3", "C4")), 1.0)

    with pytest.raises(AmbiguousBindingError):
        new_pipeline(expr, registry)

    graph = new_pipeline(expr, registry, stream_names="right")
    assert graph.stream_names == {"right"}


def test_missing_stream_raises_not_found() -> None:
    registry = _registry(eeg=("C3", "C4"))
    with pytest.raises(NotFoundError):
        new_pipeline(flt("scale", RawData(channel_labels=("O1",)), 1.0), registry)
    with pytest.raises(NotFoundError):
        new_pipeline(flt("scale", RawData(channel_labels=("C3",)), 1.0), registry, ["nope"])


def test_shared_subexpressions_become_one_node() -> None:
    registry = _registry(eeg=("C3", "C4"))
    raw = RawData(channel_labels=("C3", "C4"))
    filtered = flt("scale", raw, 3.0)
    expr = flt("merge", flt("selchans", filtered, ("C3",)), flt("selchans", filtered, ("C4",)))

    graph = new_pipeline(expr, registry)

    assert len(graph.nodes) == 5
    assert len(graph.leaves) == 1
    root = graph.nodes[graph.root]
    assert root.kind is NodeKind.STATEFUL
    assert graph.output_labels == ("C3", "C4")
    # every input index precedes its consumer
    for node in graph.nodes:
        assert all(child < node.index for child in node.input_indices)


def test_needed_channels_prune_selection() -> None:
    registry = _registry(eeg=("C3", "C4"))
    expr = flt("selchans", RawData(channel_labels=("C3", "C4", "Pz")), ("C3", "C4", "Pz"))

    with pytest.raises(NotFoundError):
        new_pipeline(expr, registry)

    graph = new_pipeline(expr, registry, needed_channels=["C3"])
    assert graph.output_labels == ("C3",)
    assert graph.nodes[graph.leaves[0]].output_labels == ("C3",)


def test_mixing_operator_stops_pruning() -> None:
    registry = _registry(eeg=("C3", "C4"))
    raw = RawData(channel_labels=("C3", "C4", "Pz"))
    expr = flt("selchans", flt("rereference", raw), ("C3", "C4", "Pz"))

    with pytest.raises(NotFoundError):
        new_pipeline(expr, registry, needed_channels=["C3"])


def test_narrowed_stateful_node_drops_calibrated_state() -> None:
    registry = _registry(eeg=("C3", "C4"))
    b, a = signal.butter(2, 0.3)
    calibrated = {"zi": np.ones((3, 2))}
    raw = RawData(channel_labels=("C3", "C4", "Pz"))
    expr = flt("selchans", flt("iir", raw, b, a, state=calibrated), ("C3", "C4", "Pz"))

    graph = new_pipeline(expr, registry, needed_channels=["C3", "C4"])

    iir = next(node for node in graph.nodes if node.head == "iir")
    assert iir.kind is NodeKind.STATEFUL
    assert iir.state is None


def test_stateful_node_above_pruned_selection_drops_state_and_runs() -> None:
    registry = _registry(eeg=("C3", "C4"))
    b, a = signal.butter(2, [8.0 / 50.0, 30.0 / 50.0], btype="bandpass")
    calibrated = {"b": b, "a": a, "srate": 100.0, "zi": np.zeros((3, 4))}
    raw = RawData(channel_labels=("C3", "C4", "Cz"))
    expr = flt("bandpass", flt("selchans", raw, ("C3", "C4", "Cz")), 8.0, 30.0, 2, state=calibrated)

    graph = new_pipeline(expr, registry, needed_channels=["C3", "C4"])

    root = graph.nodes[graph.root]
    assert root.kind is NodeKind.STATEFUL
    assert root.state is None
    registry.get("eeg").append(np.random.default_rng(0).standard_normal((2, 20)))
    out = evaluate(graph)
    assert out.channel_labels == ("C3", "C4")
    assert out.n_samples == 20
    assert graph.nodes[graph.root].state["zi"].shape == (2, 4)


def test_unpruned_pipeline_keeps_state_above_selection() -> None:
    registry = _registry(eeg=("C3", "C4"))
    b, a = signal.butter(2, 0.3)
    calibrated = {"zi": np.ones((2, 2))}
    expr = flt("iir", flt("selchans", RawData(channel_labels=("C3", "C4")), ("C3", "C4")), b, a, state=calibrated)

    graph = new_pipeline(expr, registry, needed_channels=["C3", "C4"])

    np.testing.assert_array_equal(graph.nodes[graph.root].state["zi"], calibrated["zi"])


def test_calibrated_state_is_copied_into_graph() -> None:
    registry = _registry(eeg=("C3", "C4"))
    b, a = signal.butter(2, 0.3)
    calibrated = {"zi": np.ones((2, 2))}
    expr = flt("iir", RawData(channel_labels=("C3", "C4")), b, a, state=calibrated)

    graph = new_pipeline(expr, registry)

    node = graph.nodes[graph.root]
    np.testing.assert_array_equal(node.state["zi"], calibrated["zi"])
    assert node.state["zi"] is not calibrated["zi"]


def test_stateful_override() -> None:
    registry = _registry(eeg=("C3",))
    graph = new_pipeline(flt("scale", RawData(channel_labels=("C3",)), 1.0, stateful=True), registry)
    assert graph.nodes[graph.root].kind is NodeKind.STATEFUL


def test_needed_channels_missing_from_output() -> None:
    registry = _registry(eeg=("C3", "C4"))
    with pytest.raises(ShapeError):
        new_pipeline(flt("scale", RawData(channel_labels=("C3", "C4")), 1.0), registry, needed_channels=["O1"])


def test_invalid_expressions() -> None:
    registry = _registry(eeg=("C3",))
    with pytest.raises(InvalidArgumentError):
        new_pipeline("not an expression", registry)
    with pytest.raises(InvalidArgumentError):
        new_pipeline(flt("no-such-filter", RawData(channel_labels=("C3",))), registry)
    with pytest.raises(InvalidArgumentError):
        new_pipeline(flt("scale", 1.0), registry)


def test_peek_output_and_capacity_default() -> None:
    registry = _registry(eeg=("C3",))
    graph = new_pipeline(flt("scale", RawData(channel_labels=("C3",)), 2.0), registry)
    assert graph.output.capacity == 50

    registry.get("eeg").append(np.arange(1, 8, dtype=float)[np.newaxis, :])
    evaluate(graph)

    chunk = graph.peek_output(3)
    np.testing.assert_array_equal(chunk.data, [[10.0, 12.0, 14.0]])
    assert chunk.start_index == 5
    assert chunk.smax == 7


def test_merge_surplus_is_bounded_by_output_capacity(caplog: pytest.LogCaptureFixture) -> None:
    registry = _registry(a=("A",), b=("B",))
    expr = flt("merge", RawData(channel_labels=("A",)), RawData(channel_labels=("B",)))
    graph = new_pipeline(expr, registry)

    with caplog.at_level("WARNING", logger="bcistream.pipeline.operators"):
        for block in range(20):
            registry.get("a").append(np.full((1, 50), float(block)))
            out = evaluate(graph)
            assert out.is_empty

    pending = graph.nodes[graph.root].state["pending"]
    assert pending[0].n_samples == 50
    np.testing.assert_array_equal(pending[0].data, np.full((1, 50), 19.0))
    assert pending[1].is_empty
    assert any("dropping the oldest" in message for message in caplog.messages)

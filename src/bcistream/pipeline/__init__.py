"""Filter pipelines: calibrated expressions, operators, graphs and evaluation.

A calibrated :class:`FilterExpression` is turned into a :class:`PipelineGraph`
by :func:`new_pipeline`; :class:`IncrementalEvaluator` then advances it tick
by tick on whatever new samples its bound streams received.
"""

from .expression import (
    FilterExpression,
    RawData,
    expression_from_mapping,
    flt,
    iter_leaves,
    load_expression,
)
from .operators import (
    OPERATORS,
    Operator,
    PureTransform,
    StatefulTransform,
    get_operator,
    register_operator,
)
from .graph import Node, NodeKind, NodeRef, PipelineGraph, new_pipeline
from .evaluator import IncrementalEvaluator, evaluate

__all__ = [
    "FilterExpression",
    "RawData",
    "expression_from_mapping",
    "flt",
    "iter_leaves",
    "load_expression",
    "OPERATORS",
    "Operator",
    "PureTransform",
    "StatefulTransform",
    "get_operator",
    "register_operator",
    "Node",
    "NodeKind",
    "NodeRef",
    "PipelineGraph",
    "new_pipeline",
    "IncrementalEvaluator",
    "evaluate",
]

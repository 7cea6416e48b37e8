"""Execution context for decision evaluation.

This module provides the per-call state of one evaluate() call: node results,
traces, timing and the merging rules used to combine predecessor results.
Nothing here is shared between calls.
"""

import copy
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from rotalabs_decision.core.errors import EvaluationError, MergeConflictError
from rotalabs_decision.core.values import values_equal


def set_path(target: Dict[str, Any], path: str, value: Any) -> None:
    """Set value in a dictionary using dot notation.

    Intermediate objects are created as needed.

    Raises:
        EvaluationError: If an intermediate segment exists and is not an object.

    Examples:
        >>> out = {}
        >>> set_path(out, "user.settings.theme", "dark")
        >>> out
        {'user': {'settings': {'theme': 'dark'}}}
    """
    parts = path.split(".")
    node = target
    for part in parts[:-1]:
        if part not in node or node[part] is None:
            node[part] = {}
        node = node[part]
        if not isinstance(node, dict):
            raise EvaluationError(f"Cannot set {path}: {part} is not an object")
    node[parts[-1]] = value


def _merge_into(
    target: Dict[str, Any],
    value: Mapping[str, Any],
    source_id: str,
    owners: Dict[str, str],
    prefix: str,
) -> None:
    for key, incoming in value.items():
        path = f"{prefix}{key}"
        if key not in target:
            target[key] = detach(incoming)
            owners[path] = source_id
            continue

        existing = target[key]
        if isinstance(existing, dict) and isinstance(incoming, Mapping):
            _merge_into(existing, incoming, source_id, owners, f"{path}.")
            continue
        if values_equal(existing, incoming):
            continue
        raise MergeConflictError(path, [_owner(owners, path), source_id])


def _owner(owners: Dict[str, str], path: str) -> str:
    # Nested keys copied in whole belong to the node that set their parent
    while path not in owners and "." in path:
        path = path.rsplit(".", 1)[0]
    return owners.get(path, "?")


def merge_results(sources: Sequence[Tuple[str, Any]], node_id: Optional[str] = None) -> Any:
    """Merge the results of several nodes into one value.

    A single source passes through unchanged. Several sources must all be
    mappings; they are deep-merged in the given order, and a key that
    receives unequal non-object values from two sources is a conflict.

    Args:
        sources: ``(node_id, value)`` pairs in topological order.
        node_id: Node receiving the merge, for error reporting.

    Returns:
        The merged value.

    Raises:
        MergeConflictError: On conflicting keys or non-object sources.
    """
    if not sources:
        return {}
    if len(sources) == 1:
        return sources[0][1]

    merged: Dict[str, Any] = {}
    owners: Dict[str, str] = {}
    for source_id, value in sources:
        if not isinstance(value, Mapping):
            raise MergeConflictError(
                "",
                [source_id],
                node_id=node_id,
                message=f"Cannot merge non-object result of node '{source_id}' with other results",
            )
        try:
            _merge_into(merged, value, source_id, owners, "")
        except MergeConflictError as e:
            e.node_id = node_id
            raise
    return merged


def detach(value: Any) -> Any:
    """Deep copy a value so the caller owns it exclusively.

    Any mapping, read-only views included, comes back as a plain dict.
    """
    if isinstance(value, Mapping):
        return {key: detach(item) for key, item in value.items()}
    if isinstance(value, list):
        return [detach(item) for item in value]
    if isinstance(value, tuple):
        return tuple(detach(item) for item in value)
    return copy.deepcopy(value)


class NodeTrace:
    """Diagnostics for one executed node.

    Uses __slots__ for memory efficiency.

    Attributes:
        id: Node id.
        name: Node display name.
        kind: Node type tag.
        input: Merged input the node received.
        output: Value the node produced.
        time_ms: Execution time in milliseconds.
        trace_data: Kind-specific extra diagnostics.
    """

    __slots__ = ("id", "name", "kind", "input", "output", "time_ms", "trace_data")

    def __init__(
        self,
        id: str,
        name: str,
        kind: str,
        input: Any = None,
        output: Any = None,
        time_ms: float = 0.0,
        trace_data: Optional[Dict[str, Any]] = None,
    ):
        self.id = id
        self.name = name
        self.kind = kind
        self.input = input
        self.output = output
        self.time_ms = time_ms
        self.trace_data = trace_data or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert trace to dictionary."""
        result = {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "input": self.input,
            "output": self.output,
            "performance": f"{self.time_ms:.3f}ms",
        }
        if self.trace_data:
            result["traceData"] = self.trace_data
        return result

    def __repr__(self) -> str:
        return f"NodeTrace(id={self.id!r}, kind={self.kind!r}, time_ms={self.time_ms:.3f})"


@dataclass
class EvaluationResult:
    """Result of one evaluate() call.

    Attributes:
        result: Value assembled from the output node(s).
        trace: Per-node traces keyed by node id, when tracing was on.
        performance_ms: Total evaluation time, when tracing was on.
    """

    result: Any
    trace: Optional[Dict[str, NodeTrace]] = None
    performance_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to its JSON-compatible form."""
        data: Dict[str, Any] = {"result": self.result}
        if self.trace is not None:
            data["trace"] = {node_id: t.to_dict() for node_id, t in self.trace.items()}
        if self.performance_ms is not None:
            data["performance"] = f"{self.performance_ms:.3f}ms"
        return data


class ExecutionContext:
    """Per-call state of a decision evaluation.

    Holds a zero-copy reference to the caller's input, the results produced so
    far (NodeResult), and optional traces. Created fresh for every evaluate()
    call and discarded afterwards.

    Attributes:
        _data: Reference to caller input (never mutated).
        _results: Node id to produced value.
        _traces: Node id to trace, in execution order.
        _trace_enabled: Whether traces are collected.
        _depth: Decision reference nesting depth of this evaluation.
        _start_time: Evaluation start (perf counter).
    """

    __slots__ = ("_data", "_results", "_traces", "_trace_enabled", "_depth", "_start_time")

    def __init__(self, data: Any, trace: bool = False, depth: int = 0):
        self._data = data
        self._results: Dict[str, Any] = {}
        self._traces: Dict[str, NodeTrace] = {}
        self._trace_enabled = trace
        self._depth = depth
        self._start_time = time.perf_counter()

    @property
    def data(self) -> Any:
        """Get reference to caller input."""
        return self._data

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def trace_enabled(self) -> bool:
        return self._trace_enabled

    @property
    def elapsed_ms(self) -> float:
        """Get elapsed evaluation time in milliseconds."""
        return (time.perf_counter() - self._start_time) * 1000

    @property
    def results(self) -> Mapping[str, Any]:
        """Read-only view of results produced so far."""
        return MappingProxyType(self._results)

    def has_result(self, node_id: str) -> bool:
        return node_id in self._results

    def set_result(self, node_id: str, value: Any) -> None:
        """Record the value produced by a node.

        Raises:
            EvaluationError: If the node already produced a result.
        """
        if node_id in self._results:
            raise EvaluationError("Node produced more than one result", node_id=node_id)
        self._results[node_id] = value

    def get_result(self, node_id: str) -> Any:
        """Get the result of an executed node.

        Raises:
            EvaluationError: If the node has not executed yet.
        """
        if node_id not in self._results:
            raise EvaluationError(f"Result of node '{node_id}' requested before it executed")
        return self._results[node_id]

    def collect(self, node_ids: Sequence[str]) -> List[Tuple[str, Any]]:
        """Results of the given nodes as ``(node_id, value)`` pairs."""
        return [(node_id, self.get_result(node_id)) for node_id in node_ids]

    def add_trace(self, trace: NodeTrace) -> None:
        if self._trace_enabled:
            self._traces[trace.id] = trace

    @property
    def traces(self) -> Dict[str, NodeTrace]:
        return dict(self._traces)

    def __repr__(self) -> str:
        return (
            f"ExecutionContext(nodes_executed={len(self._results)}, "
            f"depth={self._depth}, elapsed_ms={self.elapsed_ms:.2f})"
        )

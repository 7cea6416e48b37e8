"""Decision graph model and validation.

validate() turns a DecisionModel into a CompiledGraph: an immutable view of
the live nodes, their parsed content, adjacency, and the precomputed
execution order. A CompiledGraph is built once per engine and shared by every
evaluation without synchronization.
"""

import logging
from collections import deque
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from rotalabs_decision.core.config import DecisionModel, Node, NodeKind
from rotalabs_decision.core.errors import ValidationError
from rotalabs_decision.core.scheduler import topological_levels, topological_order

logger = logging.getLogger(__name__)


class CompiledGraph:
    """Validated, ordered, immutable decision graph.

    Uses __slots__ and read-only mappings; instances are never mutated after
    construction.

    Attributes:
        name: Model name.
        nodes: Node id to Node, for live nodes.
        contents: Node id to parsed kind-specific content.
        predecessors: Node id to direct live predecessors, in execution order.
        successors: Node id to direct live successors, in execution order.
        order: Live node ids in execution order.
        levels: Execution order grouped into dependency levels.
        input_ids: Live input nodes in execution order.
        output_ids: Live output nodes in execution order.
        pruned: Declared nodes that are never executed.
    """

    __slots__ = (
        "name",
        "nodes",
        "contents",
        "predecessors",
        "successors",
        "order",
        "levels",
        "input_ids",
        "output_ids",
        "pruned",
    )

    def __init__(
        self,
        name: str,
        nodes: Dict[str, Node],
        contents: Dict[str, Any],
        predecessors: Dict[str, Tuple[str, ...]],
        successors: Dict[str, Tuple[str, ...]],
        order: List[str],
        levels: List[List[str]],
        pruned: List[str],
    ):
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "nodes", MappingProxyType(dict(nodes)))
        object.__setattr__(self, "contents", MappingProxyType(dict(contents)))
        object.__setattr__(self, "predecessors", MappingProxyType(dict(predecessors)))
        object.__setattr__(self, "successors", MappingProxyType(dict(successors)))
        object.__setattr__(self, "order", tuple(order))
        object.__setattr__(self, "levels", tuple(tuple(level) for level in levels))
        object.__setattr__(
            self, "input_ids", tuple(n for n in order if nodes[n].kind == NodeKind.INPUT)
        )
        object.__setattr__(
            self, "output_ids", tuple(n for n in order if nodes[n].kind == NodeKind.OUTPUT)
        )
        object.__setattr__(self, "pruned", tuple(pruned))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("CompiledGraph is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError("CompiledGraph is immutable")

    def node(self, node_id: str) -> Node:
        return self.nodes[node_id]

    def content(self, node_id: str) -> Any:
        return self.contents.get(node_id)

    def __len__(self) -> int:
        return len(self.order)

    def __repr__(self) -> str:
        return f"CompiledGraph(name={self.name!r}, nodes={len(self.order)}, pruned={len(self.pruned)})"


def _reachable(starts: Iterable[str], adjacency: Mapping[str, List[str]]) -> Set[str]:
    seen = set(starts)
    queue = deque(seen)
    while queue:
        node = queue.popleft()
        for neighbor in adjacency.get(node, ()):
            if neighbor not in seen:
                seen.add(neighbor)
                queue.append(neighbor)
    return seen


def validate(model: Union[DecisionModel, Dict[str, Any]], strict: bool = False) -> CompiledGraph:
    """Validate a decision model and compile it.

    Checks, in order: node id uniqueness, node kinds (strict mode only), node
    content, edge ids and endpoints, input/output presence and shape,
    acyclicity, and reachability. Nodes not on a path from an input node to
    an output node are pruned.

    Args:
        model: DecisionModel or its decoded JSON document.
        strict: Reject unknown node kinds instead of deferring them.

    Returns:
        Compiled graph.

    Raises:
        ValidationError: If any structural check fails.
    """
    if not isinstance(model, DecisionModel):
        model = DecisionModel.from_dict(model)

    nodes: Dict[str, Node] = {}
    declared: List[str] = []
    for node in model.nodes:
        if node.id in nodes:
            raise ValidationError(f"Duplicate node id: {node.id}", node_id=node.id)
        nodes[node.id] = node
        declared.append(node.id)

    contents: Dict[str, Any] = {}
    for node_id in declared:
        node = nodes[node_id]
        if node.kind is None:
            if strict:
                raise ValidationError(f"Unknown node type '{node.type}'", node_id=node_id)
            logger.info(f"Node {node_id} has unknown type '{node.type}'; it fails only if reached")
            continue
        try:
            contents[node_id] = node.parse_content()
        except ValidationError as e:
            if e.node_id is None:
                e.node_id = node_id
            raise

    edge_ids: Set[str] = set()
    forward: Dict[str, List[str]] = {n: [] for n in declared}
    backward: Dict[str, List[str]] = {n: [] for n in declared}
    pairs: List[Tuple[str, str]] = []

    for edge in model.edges:
        if edge.id in edge_ids:
            raise ValidationError(f"Duplicate edge id: {edge.id}")
        edge_ids.add(edge.id)

        for endpoint in (edge.source_id, edge.target_id):
            if endpoint not in nodes:
                raise ValidationError(
                    f"Edge {edge.id} references unknown node: {endpoint}", node_id=endpoint
                )
        if edge.source_id == edge.target_id:
            raise ValidationError(
                f"Edge {edge.id} is a self-loop on node {edge.source_id}", node_id=edge.source_id
            )
        if nodes[edge.target_id].kind == NodeKind.INPUT:
            raise ValidationError(
                f"Input node {edge.target_id} cannot have incoming edges", node_id=edge.target_id
            )
        if nodes[edge.source_id].kind == NodeKind.OUTPUT:
            raise ValidationError(
                f"Output node {edge.source_id} cannot have outgoing edges", node_id=edge.source_id
            )

        # Parallel duplicate edges carry no extra meaning
        if edge.target_id in forward[edge.source_id]:
            continue
        forward[edge.source_id].append(edge.target_id)
        backward[edge.target_id].append(edge.source_id)
        pairs.append((edge.source_id, edge.target_id))

    inputs = [n for n in declared if nodes[n].kind == NodeKind.INPUT]
    outputs = [n for n in declared if nodes[n].kind == NodeKind.OUTPUT]
    if not inputs:
        raise ValidationError("Decision model must contain at least one input node")
    if not outputs:
        raise ValidationError("Decision model must contain at least one output node")

    full_order = topological_order(declared, pairs)

    live = _reachable(inputs, forward) & _reachable(outputs, backward)
    if not any(o in live for o in outputs):
        raise ValidationError("No output node is reachable from an input node", node_ids=outputs)

    order = [n for n in full_order if n in live]
    position = {n: i for i, n in enumerate(order)}
    pruned = [n for n in declared if n not in live]
    if pruned:
        logger.warning(f"Pruning nodes not on an input-to-output path: {pruned}")

    predecessors = {
        n: tuple(sorted((p for p in backward[n] if p in live), key=position.__getitem__))
        for n in order
    }
    successors = {
        n: tuple(sorted((s for s in forward[n] if s in live), key=position.__getitem__))
        for n in order
    }
    levels = topological_levels(order, predecessors)

    graph = CompiledGraph(
        name=model.name,
        nodes={n: nodes[n] for n in order},
        contents={n: contents[n] for n in order if n in contents},
        predecessors=predecessors,
        successors=successors,
        order=order,
        levels=levels,
        pruned=pruned,
    )
    logger.info(f"Compiled decision graph {model.name}: {len(order)} nodes, {len(pruned)} pruned")
    return graph


def compile_model(
    model: Union[DecisionModel, Dict[str, Any], str],
    strict: bool = False,
    name: Optional[str] = None,
) -> CompiledGraph:
    """Validate a model given as DecisionModel, dict, or JSON text."""
    if isinstance(model, (str, bytes)):
        model = DecisionModel.from_json(model, name=name)
    elif isinstance(model, dict):
        model = DecisionModel.from_dict(model, name=name)
    elif not isinstance(model, DecisionModel):
        raise ValidationError(f"Unsupported decision model type: {type(model).__name__}")
    return validate(model, strict=strict)

"""Topological scheduling of decision graph nodes.

Orders nodes so that every node comes after all of its predecessors. Ties
are broken by declaration order, which makes the order (and therefore every
evaluation) deterministic for a given model.
"""

import heapq
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from rotalabs_decision.core.errors import ValidationError

logger = logging.getLogger(__name__)


def find_cycle(node_ids: Iterable[str], successors: Mapping[str, Sequence[str]]) -> List[str]:
    """Return one cycle as a list of node ids, or an empty list.

    Uses an iterative depth-first search with three-color marking.
    """
    WHITE, GREY, BLACK = 0, 1, 2
    color: Dict[str, int] = defaultdict(int)
    parent: Dict[str, str] = {}

    for root in node_ids:
        if color[root] != WHITE:
            continue
        stack = [(root, iter(successors.get(root, ())))]
        color[root] = GREY
        while stack:
            node, children = stack[-1]
            advanced = False
            for child in children:
                if color[child] == WHITE:
                    color[child] = GREY
                    parent[child] = node
                    stack.append((child, iter(successors.get(child, ()))))
                    advanced = True
                    break
                if color[child] == GREY:
                    cycle = [node]
                    while cycle[-1] != child:
                        cycle.append(parent[cycle[-1]])
                    cycle.reverse()
                    return cycle
            if not advanced:
                color[node] = BLACK
                stack.pop()
    return []


def topological_order(node_ids: Sequence[str], edges: Iterable[Tuple[str, str]]) -> List[str]:
    """Order nodes so every node follows all of its predecessors.

    Kahn's algorithm with a priority queue on declaration index, so nodes
    without a relative dependency keep their declaration order.

    Args:
        node_ids: Node ids in declaration order.
        edges: ``(source_id, target_id)`` pairs.

    Returns:
        Node ids in execution order.

    Raises:
        ValidationError: If the edges contain a cycle; ``node_ids`` on the
            error lists the nodes of one offending cycle.
    """
    index = {node_id: i for i, node_id in enumerate(node_ids)}
    in_degree = {node_id: 0 for node_id in node_ids}
    successors: Dict[str, List[str]] = defaultdict(list)

    for source, target in edges:
        successors[source].append(target)
        in_degree[target] += 1

    heap = [index[n] for n, degree in in_degree.items() if degree == 0]
    heapq.heapify(heap)
    order: List[str] = []

    while heap:
        node = node_ids[heapq.heappop(heap)]
        order.append(node)
        for child in successors[node]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                heapq.heappush(heap, index[child])

    if len(order) != len(node_ids):
        remaining = [n for n in node_ids if in_degree[n] > 0]
        cycle = find_cycle(remaining, successors) or remaining
        raise ValidationError(
            f"Circular dependency detected between nodes: {' -> '.join(cycle + cycle[:1])}",
            node_ids=cycle,
        )

    return order


def topological_levels(
    order: Sequence[str], predecessors: Mapping[str, Sequence[str]]
) -> List[List[str]]:
    """Group ordered nodes by dependency depth.

    Nodes on the same level have no path between them and may execute
    concurrently. Within a level the topological order is kept.

    Returns:
        Levels, starting with nodes that have no predecessors.
    """
    depths: Dict[str, int] = {}
    levels: List[List[str]] = []

    for node in order:
        preds = predecessors.get(node, ())
        depth = 1 + max(depths[p] for p in preds) if preds else 0
        depths[node] = depth
        if depth == len(levels):
            levels.append([])
        levels[depth].append(node)

    logger.debug(
        "Identified parallel levels",
        extra={"num_levels": len(levels), "widths": [len(level) for level in levels]},
    )
    return levels

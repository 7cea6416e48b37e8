"""Decision engine.

This module provides the engine instance: it owns one validated, compiled
decision graph and evaluates it against caller contexts. The compiled graph
is immutable and shared by every evaluate() call; all per-call state lives in
an ExecutionContext that is discarded when the call returns.
"""

import asyncio
import inspect
import logging
import time
from collections import defaultdict
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, Optional, Union

from rotalabs_decision.core.config import DecisionModel, EngineOptions
from rotalabs_decision.core.context import (
    EvaluationResult,
    ExecutionContext,
    NodeTrace,
    detach,
    merge_results,
)
from rotalabs_decision.core.errors import (
    DecisionError,
    EngineReleasedError,
    EvaluationError,
    MergeConflictError,
    ValidationError,
)
from rotalabs_decision.core.graph import CompiledGraph, compile_model
from rotalabs_decision.evaluation.evaluator import ExpressionEvaluator
from rotalabs_decision.evaluation.table import DecisionTableEvaluator
from rotalabs_decision.nodes.base import ExecutionEnvironment, NodeRun
from rotalabs_decision.nodes.executors import execute_node
from rotalabs_decision.plugins.registry import HandlerRegistry

logger = logging.getLogger(__name__)

ModelSource = Union[DecisionModel, Dict[str, Any], str, bytes]


class DecisionEngine:
    """Evaluates one decision model.

    Construction validates and compiles the model; an invalid model raises
    ValidationError and no engine is produced. evaluate() may be called any
    number of times, concurrently, until release() is called.

    Uses __slots__ for memory efficiency.

    Attributes:
        _graph: Compiled, immutable decision graph.
        _registry: Handlers for custom and function nodes.
        _options: Engine options.
        _evaluator: Expression evaluator with compile cache.
        _tables: Decision table evaluator sharing the expression cache.
        _subgraphs: Compiled graphs of referenced decisions, by key.
        _statistics: Per-node execution statistics.
        _released: Whether release() has been called.

    Examples:
        >>> engine = DecisionEngine(model)
        >>> response = await engine.evaluate({"input": 5})
        >>> response.result
        {'output': 15}
        >>> engine.release()
    """

    __slots__ = (
        "_graph",
        "_registry",
        "_options",
        "_evaluator",
        "_tables",
        "_subgraphs",
        "_statistics",
        "_evaluations",
        "_released",
    )

    def __init__(
        self,
        model: ModelSource,
        registry: Optional[HandlerRegistry] = None,
        options: Optional[EngineOptions] = None,
    ):
        """Initialize decision engine.

        Args:
            model: DecisionModel, decoded JSON document, or JSON text.
            registry: Handler registry (default: a new, empty registry).
            options: Engine options (default: EngineOptions()).

        Raises:
            ValidationError: If the model is malformed, dangling or cyclic.
        """
        self._options = options or EngineOptions()
        self._graph = compile_model(model, strict=self._options.strict)
        self._registry = registry if registry is not None else HandlerRegistry()
        self._evaluator = ExpressionEvaluator(cache_size=self._options.expression_cache_size)
        self._tables = DecisionTableEvaluator(self._evaluator)
        self._subgraphs: Dict[str, CompiledGraph] = {}
        self._statistics = defaultdict(lambda: {"count": 0, "total_time_ms": 0.0, "errors": 0})
        self._evaluations = 0
        self._released = False

        logger.info(f"Initialized DecisionEngine: {self._graph.name}")
        logger.info(f"Execution order: {list(self._graph.order)}")

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        registry: Optional[HandlerRegistry] = None,
        options: Optional[EngineOptions] = None,
    ) -> "DecisionEngine":
        """Create an engine from a JSON or YAML model file."""
        return cls(DecisionModel.from_file(path), registry=registry, options=options)

    @property
    def graph(self) -> CompiledGraph:
        return self._graph

    @property
    def name(self) -> str:
        return self._graph.name

    @property
    def options(self) -> EngineOptions:
        return self._options

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def released(self) -> bool:
        return self._released

    def _ensure_active(self) -> None:
        if self._released:
            raise EngineReleasedError()

    async def evaluate(self, context: Optional[Mapping] = None, trace: Optional[bool] = None) -> EvaluationResult:
        """Evaluate the decision model against a context.

        Main entry point. Nodes execute in the precomputed topological order
        (level by level when parallel execution is enabled). The caller's
        context is never mutated and the returned result shares no state with
        the engine.

        Args:
            context: Input mapping (None is treated as empty).
            trace: Collect per-node traces (default: options.trace).

        Returns:
            EvaluationResult with the merged output node result.

        Raises:
            EngineReleasedError: If the engine has been released.
            EvaluationError: If a node fails; the engine stays usable.
            UnsupportedNodeError: If a reached node cannot be executed.
            EvaluationCancelledError: If a handler invocation was cancelled.
        """
        self._ensure_active()
        if context is None:
            context = {}
        if not isinstance(context, Mapping):
            raise EvaluationError(
                f"Evaluation context must be an object, got {type(context).__name__}"
            )

        trace = self._options.trace if trace is None else trace
        exec_ctx = ExecutionContext(context, trace=trace)
        self._evaluations += 1
        logger.debug(f"Starting evaluation of {self._graph.name} (trace={trace})")

        result = await self._run(self._graph, exec_ctx)

        response = EvaluationResult(result=detach(result))
        if trace:
            traces = exec_ctx.traces
            response.trace = {node_id: traces[node_id] for node_id in self._graph.order if node_id in traces}
            response.performance_ms = exec_ctx.elapsed_ms

        logger.debug(f"Evaluation of {self._graph.name} completed in {exec_ctx.elapsed_ms:.2f}ms")
        return response

    async def _run(self, graph: CompiledGraph, ctx: ExecutionContext) -> Any:
        """Execute every node of a graph and assemble the output result."""
        env = ExecutionEnvironment(
            evaluator=self._evaluator,
            tables=self._tables,
            registry=self._registry,
            options=self._options,
            context=ctx,
            resolve_decision=self._resolve_decision,
        )

        if self._options.parallel:
            semaphore = asyncio.Semaphore(self._options.max_parallel_nodes)
            for level in graph.levels:
                if len(level) == 1:
                    await self._execute_node(graph, level[0], env)
                else:
                    await self._execute_level(graph, level, env, semaphore)
        else:
            for node_id in graph.order:
                await self._execute_node(graph, node_id, env)

        try:
            return merge_results(ctx.collect(graph.output_ids))
        except MergeConflictError as e:
            # Blame the later of the two output nodes that disagree
            e.node_id = e.sources[-1]
            logger.error(f"Output nodes {e.sources} produced conflicting results: {e}")
            raise

    async def _execute_level(
        self,
        graph: CompiledGraph,
        level: tuple,
        env: ExecutionEnvironment,
        semaphore: asyncio.Semaphore,
    ) -> None:
        """Execute independent nodes concurrently, bounded by the semaphore."""

        async def bounded(node_id: str) -> None:
            async with semaphore:
                await self._execute_node(graph, node_id, env)

        tasks = [asyncio.ensure_future(bounded(node_id)) for node_id in level]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _execute_node(self, graph: CompiledGraph, node_id: str, env: ExecutionEnvironment) -> None:
        """Execute a single node and record its result.

        Args:
            graph: Graph the node belongs to.
            node_id: Node to execute.
            env: Services of the current evaluation.
        """
        ctx = env.context
        node = graph.nodes[node_id]
        stats = self._statistics[node_id] if graph is self._graph else None
        start = time.perf_counter()

        try:
            predecessors = graph.predecessors[node_id]
            node_input = merge_results(ctx.collect(predecessors), node_id=node_id) if predecessors else None
            run = NodeRun(node, graph.content(node_id), node_input)
            output = await execute_node(run, env)
        except DecisionError as e:
            if e.node_id is None:
                e.node_id = node_id
            if stats is not None:
                stats["errors"] += 1
            logger.error(f"Node {node_id} ({node.type}) failed: {e}", exc_info=True)
            raise

        elapsed_ms = (time.perf_counter() - start) * 1000
        ctx.set_result(node_id, output)
        if stats is not None:
            stats["count"] += 1
            stats["total_time_ms"] += elapsed_ms

        if ctx.trace_enabled:
            ctx.add_trace(
                NodeTrace(
                    id=node_id,
                    name=node.name,
                    kind=node.type,
                    input=detach(node_input),
                    output=detach(output),
                    time_ms=elapsed_ms,
                    trace_data=dict(run.trace_data),
                )
            )
        logger.debug(f"Node {node_id} ({node.type}) completed in {elapsed_ms:.2f}ms")

    async def _resolve_decision(self, key: str, node_input: Any, depth: int) -> Any:
        """Evaluate a referenced decision model with ``node_input`` as context."""
        graph = await self._load_subgraph(key)
        ctx = ExecutionContext(node_input if node_input is not None else {}, depth=depth)
        logger.debug(f"Evaluating referenced decision {key} at depth {depth}")
        return await self._run(graph, ctx)

    async def _load_subgraph(self, key: str) -> CompiledGraph:
        graph = self._subgraphs.get(key)
        if graph is not None:
            logger.debug(f"Using cached decision graph: {key}")
            return graph

        try:
            model = self._options.loader(key)
            if inspect.isawaitable(model):
                model = await model
        except DecisionError:
            raise
        except Exception as e:
            raise EvaluationError(f"Failed to load decision '{key}': {type(e).__name__}: {e}") from e

        if model is None:
            raise EvaluationError(f"Decision '{key}' not found")
        try:
            graph = compile_model(model, strict=self._options.strict, name=key)
        except ValidationError as e:
            raise EvaluationError(f"Referenced decision '{key}' is invalid: {e}") from e

        self._subgraphs[key] = graph
        logger.info(f"Loaded referenced decision: {key}")
        return graph

    def get_statistics(self) -> Dict[str, Any]:
        """Get execution statistics.

        Returns:
            Evaluation count and per-node count, total time and errors.
        """
        return {
            "evaluations": self._evaluations,
            "nodes": {node_id: dict(stats) for node_id, stats in self._statistics.items()},
        }

    def clear_cache(self) -> None:
        """Clear compiled expression and referenced decision caches."""
        self._evaluator.clear_cache()
        self._subgraphs.clear()
        logger.info("Caches cleared")

    def release(self) -> None:
        """Release the engine.

        Idempotent. Afterwards evaluate() raises EngineReleasedError.
        """
        if self._released:
            return
        self._released = True
        self._subgraphs.clear()
        self._evaluator.clear_cache()
        logger.info(f"Released DecisionEngine: {self._graph.name}")

    def __enter__(self) -> "DecisionEngine":
        self._ensure_active()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    async def __aenter__(self) -> "DecisionEngine":
        self._ensure_active()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "active"
        return f"DecisionEngine(name={self._graph.name!r}, nodes={len(self._graph)}, {state})"

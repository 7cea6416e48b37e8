"""Base types shared by node executors."""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

from rotalabs_decision.core.config import EngineOptions, Node, NodeKind
from rotalabs_decision.core.context import ExecutionContext
from rotalabs_decision.evaluation.evaluator import ExpressionEvaluator
from rotalabs_decision.evaluation.table import DecisionTableEvaluator
from rotalabs_decision.plugins.registry import HandlerRegistry


class NodeRun:
    """One execution of one node within an evaluation.

    Uses __slots__ for memory efficiency.

    Attributes:
        node: Node being executed.
        content: Parsed kind-specific content (None for unknown kinds).
        input: Merged results of the node's predecessors.
        trace_data: Kind-specific diagnostics filled in by the executor.
    """

    __slots__ = ("node", "content", "input", "trace_data")

    def __init__(self, node: Node, content: Any, input: Any):
        self.node = node
        self.content = content
        self.input = input
        self.trace_data: Dict[str, Any] = {}

    @property
    def node_id(self) -> str:
        return self.node.id


class ExecutionEnvironment:
    """Services available to executors during one evaluation.

    Attributes:
        evaluator: Shared expression evaluator (compile cache included).
        tables: Shared decision table evaluator.
        registry: Handler registry of the owning engine.
        options: Options of the owning engine.
        context: Per-call execution context.
        resolve_decision: Coroutine function evaluating a referenced model,
            called as ``resolve_decision(key, input, depth)``.
    """

    __slots__ = ("evaluator", "tables", "registry", "options", "context", "resolve_decision")

    def __init__(
        self,
        evaluator: ExpressionEvaluator,
        tables: DecisionTableEvaluator,
        registry: HandlerRegistry,
        options: EngineOptions,
        context: ExecutionContext,
        resolve_decision: Optional[Callable[[str, Any, int], Awaitable[Any]]] = None,
    ):
        self.evaluator = evaluator
        self.tables = tables
        self.registry = registry
        self.options = options
        self.context = context
        self.resolve_decision = resolve_decision


class NodeExecutor(ABC):
    """Abstract base class for node executors.

    There is one executor per node kind. Executors are stateless and shared
    by all evaluations of all engines.
    """

    kind: NodeKind

    @abstractmethod
    async def execute(self, run: NodeRun, env: ExecutionEnvironment) -> Any:
        """Produce the node's result.

        Args:
            run: Node, parsed content and merged input.
            env: Services of the current evaluation.

        Returns:
            The node's result (JSON-compatible).

        Raises:
            DecisionError: If the node cannot produce a result.
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value})"

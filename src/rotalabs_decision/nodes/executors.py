"""Node executors, one per node kind.

Dispatch is a single lookup in EXECUTORS keyed by NodeKind; the kind set is
closed and versioned with the model format. Only executors that call out to
handlers or referenced decisions ever suspend.
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional

from rotalabs_decision.core.config import (
    CustomContent,
    DecisionReferenceContent,
    DecisionTableContent,
    ExpressionContent,
    FunctionContent,
    InputContent,
    NodeKind,
)
from rotalabs_decision.core.context import detach, set_path
from rotalabs_decision.core.errors import (
    DecisionError,
    DepthLimitError,
    EvaluationCancelledError,
    EvaluationError,
    HandlerError,
    UnsupportedNodeError,
)
from rotalabs_decision.nodes.base import ExecutionEnvironment, NodeExecutor, NodeRun
from rotalabs_decision.plugins.builtin import HandlerRequest, invoke_handler

logger = logging.getLogger(__name__)

_MISSING = object()


def _own(value: Any) -> Any:
    """Copy containers so writing into a node output never reaches its source."""
    if isinstance(value, (Mapping, list)):
        return detach(value)
    return value


def _overlay(base: Dict[str, Any], extra: Mapping) -> Dict[str, Any]:
    """Recursively write ``extra`` over ``base``; values of ``extra`` win."""
    for key, value in extra.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _overlay(current, value)
        else:
            base[key] = value
    return base


def _with_pass_through(node_input: Any, output: Any) -> Any:
    if isinstance(node_input, Mapping) and isinstance(output, Mapping):
        return _overlay(detach(node_input), output)
    return output


def _lookup_field(data: Any, path: str) -> Any:
    value = data
    for part in path.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return _MISSING
        value = value[part]
    return value


async def _call_handler(handler: Callable, request: HandlerRequest) -> Any:
    """Invoke a handler, normalizing cancellation and foreign exceptions."""
    try:
        return await invoke_handler(handler, request)
    except asyncio.CancelledError:
        logger.warning(f"Node {request.node_id}: cancelled while awaiting handler '{request.handler_id}'")
        raise EvaluationCancelledError(
            f"Evaluation cancelled while awaiting handler '{request.handler_id}'",
            node_id=request.node_id,
        )
    except DecisionError:
        raise
    except Exception as e:
        raise HandlerError(
            f"Handler '{request.handler_id}' failed: {type(e).__name__}: {e}",
            node_id=request.node_id,
        ) from e


class InputExecutor(NodeExecutor):
    """Passes the caller's context through, checking declared required fields."""

    kind = NodeKind.INPUT

    async def execute(self, run: NodeRun, env: ExecutionEnvironment) -> Any:
        data = env.context.data
        content: Optional[InputContent] = run.content
        if env.options.validate_inputs and content is not None and content.required:
            missing = [f for f in content.required if _lookup_field(data, f) is _MISSING]
            if missing:
                raise EvaluationError(
                    f"Missing required input field(s): {', '.join(missing)}",
                    node_id=run.node_id,
                )
        return data


class ExpressionExecutor(NodeExecutor):
    """Evaluates ``key = expression`` entries in declaration order.

    ``$`` is bound to the output built so far, so later entries can use
    earlier ones. Any failing entry fails the whole node.
    """

    kind = NodeKind.EXPRESSION

    async def execute(self, run: NodeRun, env: ExecutionEnvironment) -> Any:
        content: ExpressionContent = run.content
        output: Dict[str, Any] = {}
        for entry in content.expressions:
            value = env.evaluator.evaluate(entry.value, run.input, node_id=run.node_id, dollar=output)
            set_path(output, entry.key, _own(value))

        if content.pass_through:
            return _with_pass_through(run.input, output)
        return output


class DecisionTableExecutor(NodeExecutor):
    """Delegates to the decision table evaluator."""

    kind = NodeKind.DECISION_TABLE

    async def execute(self, run: NodeRun, env: ExecutionEnvironment) -> Any:
        content: DecisionTableContent = run.content
        run.trace_data["hitPolicy"] = content.hit_policy.value
        result = env.tables.evaluate(content, run.input, node_id=run.node_id)
        if content.pass_through:
            return _with_pass_through(run.input, result)
        return result


class OutputExecutor(NodeExecutor):
    """Emits the merged incoming results unchanged."""

    kind = NodeKind.OUTPUT

    async def execute(self, run: NodeRun, env: ExecutionEnvironment) -> Any:
        return run.input


class FunctionExecutor(NodeExecutor):
    """Runs a function node through its registered handler.

    Nodes naming a ``handler`` use it directly; nodes carrying only
    ``source`` are handed to the handler registered as "function".
    """

    kind = NodeKind.FUNCTION

    async def execute(self, run: NodeRun, env: ExecutionEnvironment) -> Any:
        if not env.options.enable_functions:
            raise UnsupportedNodeError("Function nodes are disabled", node_id=run.node_id)

        content: FunctionContent = run.content
        handler_id = content.handler_id
        handler = env.registry.lookup(handler_id)
        if handler is None:
            raise UnsupportedNodeError(
                f"No handler registered for function node (handler '{handler_id}')",
                node_id=run.node_id,
            )

        run.trace_data["handler"] = handler_id
        request = HandlerRequest(
            node_id=run.node_id,
            node_name=run.node.name,
            handler_id=handler_id,
            input=detach(run.input),
            source=content.source,
        )
        return await _call_handler(handler, request)


class CustomExecutor(NodeExecutor):
    """Runs a custom node through the handler named by ``content.kind``."""

    kind = NodeKind.CUSTOM

    async def execute(self, run: NodeRun, env: ExecutionEnvironment) -> Any:
        content: CustomContent = run.content
        handler = env.registry.lookup(content.kind)
        if handler is None:
            raise UnsupportedNodeError(
                f"No handler registered for custom node kind '{content.kind}'",
                node_id=run.node_id,
            )

        run.trace_data["handler"] = content.kind
        request = HandlerRequest(
            node_id=run.node_id,
            node_name=run.node.name,
            handler_id=content.kind,
            input=detach(run.input),
            config=detach(content.config),
        )
        return await _call_handler(handler, request)


class DecisionReferenceExecutor(NodeExecutor):
    """Evaluates another decision model with the node input as its context."""

    kind = NodeKind.DECISION

    async def execute(self, run: NodeRun, env: ExecutionEnvironment) -> Any:
        content: DecisionReferenceContent = run.content
        if env.options.loader is None or env.resolve_decision is None:
            raise UnsupportedNodeError(
                f"No decision loader configured to resolve '{content.key}'",
                node_id=run.node_id,
            )

        depth = env.context.depth + 1
        if depth > env.options.max_depth:
            raise DepthLimitError(
                f"Decision nesting exceeds max_depth={env.options.max_depth} at '{content.key}'",
                node_id=run.node_id,
            )

        run.trace_data["key"] = content.key
        try:
            return await env.resolve_decision(content.key, run.input, depth)
        except asyncio.CancelledError:
            raise EvaluationCancelledError(
                f"Evaluation cancelled while resolving decision '{content.key}'",
                node_id=run.node_id,
            )


EXECUTORS: Dict[NodeKind, NodeExecutor] = {
    executor.kind: executor
    for executor in (
        InputExecutor(),
        ExpressionExecutor(),
        DecisionTableExecutor(),
        OutputExecutor(),
        FunctionExecutor(),
        CustomExecutor(),
        DecisionReferenceExecutor(),
    )
}


def get_executor(run: NodeRun) -> NodeExecutor:
    """Executor for the run's node kind.

    Raises:
        UnsupportedNodeError: For node types this engine does not know.
    """
    kind = run.node.kind
    executor = EXECUTORS.get(kind) if kind is not None else None
    if executor is None:
        raise UnsupportedNodeError(f"Unsupported node type '{run.node.type}'", node_id=run.node_id)
    return executor


async def execute_node(run: NodeRun, env: ExecutionEnvironment) -> Any:
    """Dispatch a node run to its executor."""
    return await get_executor(run).execute(run, env)

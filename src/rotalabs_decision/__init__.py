"""
rotalabs-decision - Decision model graph engine.

Evaluates declarative decision models (graphs of input, expression, decision
table, custom and output nodes) against caller-supplied contexts.

https://rotalabs.ai
"""

__version__ = "0.1.0"

from rotalabs_decision.core.config import (
    DecisionModel,
    Edge,
    EngineOptions,
    HitPolicy,
    Node,
    NodeKind,
)
from rotalabs_decision.core.context import EvaluationResult, ExecutionContext, NodeTrace
from rotalabs_decision.core.engine import DecisionEngine
from rotalabs_decision.core.errors import (
    DecisionError,
    DepthLimitError,
    DivisionByZeroError,
    EngineReleasedError,
    EvaluationCancelledError,
    EvaluationError,
    ExpressionSyntaxError,
    ExpressionTypeError,
    HandlerError,
    MergeConflictError,
    TableHitPolicyError,
    UnknownFunctionError,
    UnknownIdentifierError,
    UnsupportedNodeError,
    ValidationError,
)
from rotalabs_decision.core.graph import CompiledGraph, compile_model, validate
from rotalabs_decision.evaluation.evaluator import ExpressionEvaluator, evaluate
from rotalabs_decision.evaluation.table import DecisionTableEvaluator
from rotalabs_decision.plugins.builtin import (
    HandlerPlugin,
    HandlerRequest,
    MetricsPlugin,
    PluginFactory,
    RetryPlugin,
)
from rotalabs_decision.plugins.registry import (
    HandlerRegistry,
    default_registry,
    register_handler,
)

__all__ = [
    # Version
    "__version__",
    # Core
    "DecisionEngine",
    "DecisionModel",
    "Node",
    "Edge",
    "NodeKind",
    "HitPolicy",
    "EngineOptions",
    "CompiledGraph",
    "validate",
    "compile_model",
    # Context
    "ExecutionContext",
    "EvaluationResult",
    "NodeTrace",
    # Evaluation
    "ExpressionEvaluator",
    "DecisionTableEvaluator",
    "evaluate",
    # Plugins
    "HandlerRegistry",
    "HandlerRequest",
    "HandlerPlugin",
    "RetryPlugin",
    "MetricsPlugin",
    "PluginFactory",
    "default_registry",
    "register_handler",
    # Errors
    "DecisionError",
    "ValidationError",
    "EvaluationError",
    "ExpressionSyntaxError",
    "UnknownIdentifierError",
    "UnknownFunctionError",
    "ExpressionTypeError",
    "DivisionByZeroError",
    "TableHitPolicyError",
    "MergeConflictError",
    "HandlerError",
    "DepthLimitError",
    "UnsupportedNodeError",
    "EvaluationCancelledError",
    "EngineReleasedError",
]

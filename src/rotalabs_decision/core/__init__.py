"""Core module for rotalabs-decision.

This module provides the decision model, graph validation and scheduling,
per-call execution state, and the engine instance.
"""

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
from rotalabs_decision.core.graph import CompiledGraph, compile_model, validate

__all__ = [
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
    "ExecutionContext",
    "EvaluationResult",
    "NodeTrace",
]

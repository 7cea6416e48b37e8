"""Pytest fixtures for rotalabs-decision tests.

This module provides reusable decision models, handlers and registries.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from rotalabs_decision.core.config import DecisionModel, EngineOptions
from rotalabs_decision.core.context import ExecutionContext
from rotalabs_decision.plugins.builtin import HandlerRequest
from rotalabs_decision.plugins.registry import HandlerRegistry

DATA_DIR = Path(__file__).parent / "data"


def load_model(name: str) -> Dict[str, Any]:
    """Load a decision model document from tests/data."""
    with open(DATA_DIR / name, "r", encoding="utf-8") as f:
        return json.load(f)


def build_model(
    nodes: List[Dict[str, Any]],
    edges: List[tuple],
) -> Dict[str, Any]:
    """Build a model document from node dicts and (source, target) pairs."""
    return {
        "nodes": nodes,
        "edges": [
            {"id": f"e{i}", "sourceId": source, "targetId": target}
            for i, (source, target) in enumerate(edges, start=1)
        ],
    }


def input_node(node_id: str = "input", **content: Any) -> Dict[str, Any]:
    node = {"id": node_id, "type": "inputNode", "name": node_id}
    if content:
        node["content"] = content
    return node


def output_node(node_id: str = "output") -> Dict[str, Any]:
    return {"id": node_id, "type": "outputNode", "name": node_id}


def expression_node(node_id: str, expressions: Dict[str, str], **options: Any) -> Dict[str, Any]:
    return {
        "id": node_id,
        "type": "expressionNode",
        "name": node_id,
        "content": {
            "expressions": [
                {"id": f"{node_id}-{i}", "key": key, "value": value}
                for i, (key, value) in enumerate(expressions.items())
            ],
            **options,
        },
    }


def table_node(
    node_id: str,
    inputs: List[Dict[str, Any]],
    outputs: List[Dict[str, Any]],
    rules: List[Dict[str, Any]],
    hit_policy: Optional[str] = None,
) -> Dict[str, Any]:
    content: Dict[str, Any] = {"inputs": inputs, "outputs": outputs, "rules": rules}
    if hit_policy is not None:
        content["hitPolicy"] = hit_policy
    return {"id": node_id, "type": "decisionTableNode", "name": node_id, "content": content}


def custom_node(node_id: str, kind: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "id": node_id,
        "type": "customNode",
        "name": node_id,
        "content": {"kind": kind, "config": config or {}},
    }


@pytest.fixture
def expression_model() -> Dict[str, Any]:
    """Input -> ``output = input + 10`` -> output."""
    return load_model("expression.json")


@pytest.fixture
def table_model() -> Dict[str, Any]:
    """Input -> threshold table (``< 10`` -> 0, ``>= 10`` -> 10) -> output."""
    return load_model("table.json")


@pytest.fixture
def custom_model() -> Dict[str, Any]:
    """Input -> custom node of kind ``scale`` (factor 3) -> output."""
    return load_model("custom.json")


@pytest.fixture
def function_model() -> Dict[str, Any]:
    """Input -> function node carrying script source -> output."""
    return load_model("function.json")


@pytest.fixture
def credit_model() -> Dict[str, Any]:
    """Two parallel branches merged into one output, plus a pruned node."""
    return load_model("credit-analysis.json")


@pytest.fixture
def scaling_model() -> Dict[str, Any]:
    """Input -> ``output = input * 2`` -> output."""
    return build_model(
        [input_node(), expression_node("double", {"output": "input * 2"}), output_node()],
        [("input", "double"), ("double", "output")],
    )


@pytest.fixture
def credit_application() -> Dict[str, Any]:
    return {"applicant": {"income": 5000, "debt": 1500, "score": 780}}


@pytest.fixture
def scale_handler():
    """Async handler multiplying ``input`` by the node's ``factor`` config."""

    async def handler(request: HandlerRequest) -> Dict[str, Any]:
        await asyncio.sleep(0)
        return {"output": request.input["input"] * request.config.get("factor", 1)}

    return handler


@pytest.fixture
def registry(scale_handler) -> HandlerRegistry:
    """Registry with the ``scale`` handler registered."""
    registry = HandlerRegistry()
    registry.register("scale", scale_handler)
    return registry


@pytest.fixture
def flaky_handler():
    """Factory for sync handlers that fail a given number of times first."""

    def create(failures: int = 1, result: Any = None):
        calls = {"count": 0}

        def handler(request: HandlerRequest) -> Any:
            calls["count"] += 1
            if calls["count"] <= failures:
                raise RuntimeError(f"failure {calls['count']}")
            return result if result is not None else {"ok": True}

        handler.calls = calls
        return handler

    return create


@pytest.fixture
def handler_request() -> HandlerRequest:
    return HandlerRequest(
        node_id="custom-1",
        node_name="Scale",
        handler_id="scale",
        input={"input": 4},
        config={"factor": 2},
    )


@pytest.fixture
def options() -> EngineOptions:
    return EngineOptions()


@pytest.fixture
def execution_context() -> ExecutionContext:
    return ExecutionContext({"customer": {"tier": "gold"}, "amount": 150}, trace=True)


@pytest.fixture
def decision_model(expression_model) -> DecisionModel:
    return DecisionModel.from_dict(expression_model, name="expression")

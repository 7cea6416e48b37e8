"""Node executors for rotalabs-decision."""

from rotalabs_decision.nodes.base import ExecutionEnvironment, NodeExecutor, NodeRun
from rotalabs_decision.nodes.executors import EXECUTORS, execute_node, get_executor

__all__ = [
    "NodeExecutor",
    "NodeRun",
    "ExecutionEnvironment",
    "EXECUTORS",
    "execute_node",
    "get_executor",
]

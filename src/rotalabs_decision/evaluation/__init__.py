"""
Evaluation module for rotalabs-decision.

This module provides the expression language and decision table evaluation.
"""

from rotalabs_decision.evaluation.evaluator import ExpressionEvaluator, evaluate
from rotalabs_decision.evaluation.table import DecisionTableEvaluator

__all__ = ["ExpressionEvaluator", "DecisionTableEvaluator", "evaluate"]

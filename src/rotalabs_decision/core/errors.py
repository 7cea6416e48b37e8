"""Error taxonomy for decision model construction and evaluation.

Construction-time problems raise ValidationError and never produce an engine.
Everything raised while a single evaluate() call runs is scoped to that call;
the engine stays usable afterwards.
"""

from typing import Any, Dict, List, Optional


class DecisionError(Exception):
    """Base class for all decision engine errors.

    Attributes:
        message: Human readable description.
        node_id: Id of the node that owns the failure, when known.
        expression: Offending expression text, when applicable.
    """

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        expression: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.node_id = node_id
        self.expression = expression

    def __str__(self) -> str:
        parts = [self.message]
        if self.node_id is not None:
            parts.append(f"node={self.node_id!r}")
        if self.expression is not None:
            parts.append(f"expression={self.expression!r}")
        return " | ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        result: Dict[str, Any] = {"type": type(self).__name__, "message": self.message}
        if self.node_id is not None:
            result["node_id"] = self.node_id
        if self.expression is not None:
            result["expression"] = self.expression
        return result


class ValidationError(DecisionError):
    """Malformed, dangling or cyclic decision model. Raised at construction only."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        node_ids: Optional[List[str]] = None,
    ):
        super().__init__(message, node_id=node_id)
        self.node_ids = list(node_ids or [])

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.node_ids:
            result["node_ids"] = self.node_ids
        return result


class EvaluationError(DecisionError):
    """Failure scoped to a single evaluate() call."""


class ExpressionSyntaxError(EvaluationError):
    """Expression text could not be tokenized or parsed."""

    def __init__(
        self,
        message: str,
        expression: Optional[str] = None,
        position: Optional[int] = None,
        node_id: Optional[str] = None,
    ):
        super().__init__(message, node_id=node_id, expression=expression)
        self.position = position


class UnknownIdentifierError(EvaluationError):
    """Expression referenced a name that is not in scope."""

    def __init__(
        self,
        name: str,
        expression: Optional[str] = None,
        node_id: Optional[str] = None,
    ):
        super().__init__(f"Unknown identifier: {name}", node_id=node_id, expression=expression)
        self.name = name


class UnknownFunctionError(UnknownIdentifierError):
    """Expression called a function that is not a registered built-in."""

    def __init__(
        self,
        name: str,
        expression: Optional[str] = None,
        node_id: Optional[str] = None,
    ):
        super().__init__(name, expression=expression, node_id=node_id)
        self.message = f"Unknown function: {name}"
        self.args = (self.message,)


class ExpressionTypeError(EvaluationError):
    """Operator or built-in applied to values of the wrong type."""


class DivisionByZeroError(EvaluationError):
    """Division or modulo by zero."""


class TableHitPolicyError(EvaluationError):
    """Decision table rows violated the table's hit policy."""


class MergeConflictError(EvaluationError):
    """Two predecessors produced different values for the same key."""

    def __init__(
        self,
        path: str,
        sources: List[str],
        node_id: Optional[str] = None,
        message: Optional[str] = None,
    ):
        super().__init__(
            message or f"Conflicting values for key '{path}' from nodes {sources}",
            node_id=node_id,
        )
        self.path = path
        self.sources = list(sources)


class HandlerError(EvaluationError):
    """Custom or function handler failed or returned an unusable value."""


class DepthLimitError(EvaluationError):
    """Decision reference nesting exceeded the configured maximum depth."""


class UnsupportedNodeError(DecisionError):
    """Node kind has no executor, no registered handler, or is disabled."""


class EvaluationCancelledError(DecisionError):
    """Evaluation was aborted by the host while a handler was suspended."""


class EngineReleasedError(DecisionError):
    """Operation attempted on an engine that has been released."""

    def __init__(self, message: str = "Decision engine has been released"):
        super().__init__(message)

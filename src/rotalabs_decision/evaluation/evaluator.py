"""
Expression evaluator for decision models.

This module compiles expression text into immutable ASTs (cached per text) and
evaluates them against a context mapping. It supports:
- Arithmetic (+, -, *, /, %, ^) with int/float promotion
- Comparisons (==, !=, <, <=, >, >=) and membership (in, not in)
- Boolean logic (and, or, not) with short-circuit evaluation
- Null coalescing (??) and ternaries (c ? a : b)
- Field access (a.b, a[0], a["key"]) into the context
- String concatenation and backtick templates
- Built-in functions, including closures over '#'
- Unary tests for decision table cells ('< 10', '[1..5]', "'a', 'b'")
"""

import logging
from functools import lru_cache
from typing import Any, Mapping, Optional

from rotalabs_decision.core.errors import (
    DivisionByZeroError,
    EvaluationError,
    ExpressionTypeError,
    UnknownFunctionError,
    UnknownIdentifierError,
)
from rotalabs_decision.evaluation import ast
from rotalabs_decision.evaluation.builtins import (
    BUILTIN_FUNCTIONS,
    CLOSURE_FUNCTIONS,
    Interval,
    is_number,
    to_display_string,
    type_name,
    values_equal,
)
from rotalabs_decision.evaluation.parser import parse

logger = logging.getLogger(__name__)

MISSING = object()

_EMPTY: Mapping[str, Any] = {}


class Scope:
    """Name bindings visible to one expression evaluation.

    Attributes:
        variables: Context mapping for plain identifiers.
        dollar: Value of ``$`` (MISSING when unbound).
        hash: Value of ``#`` inside closures (MISSING when unbound).
    """

    __slots__ = ("variables", "dollar", "hash")

    def __init__(self, variables: Any, dollar: Any = MISSING, hash: Any = MISSING):
        self.variables = variables if isinstance(variables, Mapping) else _EMPTY
        self.dollar = dollar
        self.hash = hash

    def with_hash(self, value: Any) -> "Scope":
        return Scope(self.variables, self.dollar, value)

    def lookup(self, name: str) -> Any:
        if name == "$":
            if self.dollar is MISSING:
                raise UnknownIdentifierError("$")
            return self.dollar
        if name == "#":
            if self.hash is MISSING:
                raise UnknownIdentifierError("#")
            return self.hash
        if name in self.variables:
            return self.variables[name]
        raise UnknownIdentifierError(name)


def _truth(value: Any, what: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    raise ExpressionTypeError(f"{what} expects a boolean, got {type_name(value)}")


def _numeric_pair(op: str, left: Any, right: Any) -> None:
    if not (is_number(left) and is_number(right)):
        raise ExpressionTypeError(
            f"Operator '{op}' expects numbers, got {type_name(left)} and {type_name(right)}"
        )


class ExpressionEvaluator:
    """
    Evaluates decision expressions with compilation caching.

    Compiled ASTs are immutable and cached by (text, mode), so a single
    evaluator can be shared by concurrent evaluations without locking.

    Examples:
        >>> evaluator = ExpressionEvaluator()
        >>> evaluator.evaluate("input + 10", {"input": 5})
        15
        >>> evaluator.evaluate_unary("< 10", 2, {})
        True
    """

    def __init__(self, cache_size: int = 1024):
        """Initialize the evaluator.

        Args:
            cache_size: Maximum number of compiled expressions to keep.
        """
        self._compile = lru_cache(maxsize=cache_size)(self._parse)
        logger.debug(f"ExpressionEvaluator initialized (cache_size={cache_size})")

    @staticmethod
    def _parse(text: str, unary: bool) -> Any:
        return parse(text, unary=unary)

    def compile(self, text: str, unary: bool = False) -> Any:
        """
        Compile expression text into an AST.

        Args:
            text: Expression source.
            unary: Parse as a decision table cell.

        Returns:
            Immutable AST node.

        Raises:
            ExpressionSyntaxError: If the text cannot be parsed.
        """
        return self._compile(text, unary)

    def cache_info(self):
        """Return compile cache statistics."""
        return self._compile.cache_info()

    def clear_cache(self) -> None:
        self._compile.cache_clear()

    def evaluate(
        self,
        text: str,
        context: Any,
        node_id: Optional[str] = None,
        dollar: Any = MISSING,
    ) -> Any:
        """
        Evaluate expression text against a context mapping.

        Args:
            text: Expression source.
            context: Mapping of identifiers to values.
            node_id: Owning node id, attached to raised errors.
            dollar: Optional value bound to ``$``.

        Returns:
            The expression's value.

        Raises:
            EvaluationError: Syntax, unknown identifier, type or division
                errors, each carrying the expression text and node id.
        """
        try:
            tree = self.compile(text)
            return self._eval(tree, Scope(context, dollar=dollar))
        except EvaluationError as e:
            raise self._annotate(e, text, node_id)

    def evaluate_unary(
        self,
        text: str,
        subject: Any,
        context: Any,
        node_id: Optional[str] = None,
    ) -> bool:
        """
        Evaluate a decision table cell against a column value.

        ``$`` is bound to ``subject``. A cell matches when it is a boolean
        expression over ``$`` that is true, an interval containing the
        subject, or a value equal to the subject. Comma separated
        alternatives match if any alternative matches.

        Returns:
            True if the cell matches.
        """
        try:
            tree = self.compile(text, unary=True)
            scope = Scope(context, dollar=subject)
            if isinstance(tree, ast.AlternativeList):
                return any(self._match(item, subject, scope) for item in tree.items)
            return self._match(tree, subject, scope)
        except EvaluationError as e:
            raise self._annotate(e, text, node_id)

    def is_truthy(self, text: str, context: Any, node_id: Optional[str] = None) -> bool:
        """Evaluate a boolean expression; null counts as false."""
        value = self.evaluate(text, context, node_id=node_id)
        try:
            return _truth(value, "Condition")
        except EvaluationError as e:
            raise self._annotate(e, text, node_id)

    @staticmethod
    def _annotate(error: EvaluationError, text: str, node_id: Optional[str]) -> EvaluationError:
        if error.expression is None:
            error.expression = text
        if error.node_id is None and node_id is not None:
            error.node_id = node_id
        return error

    def _match(self, node: Any, subject: Any, scope: Scope) -> bool:
        value = self._eval(node, scope)
        if isinstance(value, Interval):
            return value.contains(subject)
        if ast.references(node, "$"):
            return _truth(value, "Table cell")
        return values_equal(subject, value)

    # Tree walking

    def _eval(self, node: Any, scope: Scope) -> Any:
        if isinstance(node, ast.Literal):
            return node.value
        if isinstance(node, ast.Identifier):
            return scope.lookup(node.name)
        if isinstance(node, ast.Binary):
            return self._eval_binary(node, scope)
        if isinstance(node, ast.Unary):
            return self._eval_unary(node, scope)
        if isinstance(node, ast.Member):
            return self._access(self._eval(node.target, scope), node.name)
        if isinstance(node, ast.Index):
            return self._access(self._eval(node.target, scope), self._eval(node.index, scope))
        if isinstance(node, ast.Call):
            return self._eval_call(node, scope)
        if isinstance(node, ast.Ternary):
            if _truth(self._eval(node.condition, scope), "Ternary condition"):
                return self._eval(node.then, scope)
            return self._eval(node.otherwise, scope)
        if isinstance(node, ast.ArrayLiteral):
            return [self._eval(item, scope) for item in node.items]
        if isinstance(node, ast.ObjectLiteral):
            return {key: self._eval(value, scope) for key, value in node.entries}
        if isinstance(node, ast.IntervalLiteral):
            return Interval(
                self._eval(node.start, scope),
                self._eval(node.end, scope),
                node.left_closed,
                node.right_closed,
            )
        if isinstance(node, ast.Template):
            return "".join(
                part if isinstance(part, str) else to_display_string(self._eval(part, scope))
                for part in node.parts
            )
        if isinstance(node, ast.AlternativeList):
            raise ExpressionTypeError("Comma separated alternatives are only allowed in table cells")
        raise ExpressionTypeError(f"Unsupported expression node: {type(node).__name__}")

    def _eval_unary(self, node: ast.Unary, scope: Scope) -> Any:
        value = self._eval(node.operand, scope)
        if node.op == "not":
            return not _truth(value, "'not'")
        if not is_number(value):
            raise ExpressionTypeError(f"Unary '{node.op}' expects a number, got {type_name(value)}")
        return -value if node.op == "-" else value

    def _eval_binary(self, node: ast.Binary, scope: Scope) -> Any:
        op = node.op

        # Short-circuit operators evaluate the right side lazily
        if op == "and":
            if not _truth(self._eval(node.left, scope), "'and'"):
                return False
            return _truth(self._eval(node.right, scope), "'and'")
        if op == "or":
            if _truth(self._eval(node.left, scope), "'or'"):
                return True
            return _truth(self._eval(node.right, scope), "'or'")
        if op == "??":
            try:
                left = self._eval(node.left, scope)
            except UnknownIdentifierError as e:
                if isinstance(e, UnknownFunctionError):
                    raise
                left = None
            return left if left is not None else self._eval(node.right, scope)

        left = self._eval(node.left, scope)
        right = self._eval(node.right, scope)

        if op == "==":
            return values_equal(left, right)
        if op == "!=":
            return not values_equal(left, right)
        if op in ("<", "<=", ">", ">="):
            return self._compare(op, left, right)
        if op == "in":
            return self._contains(right, left)
        if op == "not in":
            return not self._contains(right, left)
        try:
            return self._arithmetic(op, left, right)
        except OverflowError as e:
            raise ExpressionTypeError(f"Numeric overflow in '{op}': {e}") from e

    @staticmethod
    def _compare(op: str, left: Any, right: Any) -> bool:
        if not (
            (is_number(left) and is_number(right))
            or (isinstance(left, str) and isinstance(right, str))
        ):
            raise ExpressionTypeError(
                f"Cannot compare {type_name(left)} and {type_name(right)} with '{op}'"
            )
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        return left >= right

    @staticmethod
    def _contains(container: Any, item: Any) -> bool:
        if isinstance(container, Interval):
            return container.contains(item)
        if isinstance(container, (list, tuple)):
            return any(values_equal(item, element) for element in container)
        if isinstance(container, str):
            if not isinstance(item, str):
                raise ExpressionTypeError(f"Cannot test {type_name(item)} 'in' string")
            return item in container
        if isinstance(container, Mapping):
            return item in container
        raise ExpressionTypeError(f"Operator 'in' expects an array, interval, string or object, got {type_name(container)}")

    @staticmethod
    def _arithmetic(op: str, left: Any, right: Any) -> Any:
        if op == "+" and isinstance(left, str) and isinstance(right, str):
            return left + right
        _numeric_pair(op, left, right)

        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if op == "/":
            if right == 0:
                raise DivisionByZeroError("Division by zero")
            if isinstance(left, int) and isinstance(right, int) and left % right == 0:
                return left // right
            return left / right
        if op == "%":
            if right == 0:
                raise DivisionByZeroError("Modulo by zero")
            return left % right
        if op == "^":
            if left == 0 and right < 0:
                raise DivisionByZeroError("Zero raised to a negative power")
            try:
                result = left ** right
            except OverflowError:
                raise ExpressionTypeError("Numeric overflow in '^'")
            if isinstance(result, complex):
                raise ExpressionTypeError("'^' produced a complex number")
            return result
        raise ExpressionTypeError(f"Unknown operator '{op}'")

    @staticmethod
    def _access(target: Any, key: Any) -> Any:
        if target is None:
            return None
        if isinstance(target, Mapping):
            if not isinstance(key, str):
                raise ExpressionTypeError(f"Object key must be a string, got {type_name(key)}")
            return target.get(key)
        if isinstance(target, (list, tuple, str)):
            if not (isinstance(key, int) and not isinstance(key, bool)):
                raise ExpressionTypeError(f"{type_name(target).capitalize()} index must be an integer, got {type_name(key)}")
            if -len(target) <= key < len(target):
                return target[key]
            return None
        raise ExpressionTypeError(f"Cannot access {key!r} on {type_name(target)}")

    def _eval_call(self, node: ast.Call, scope: Scope) -> Any:
        if node.name in CLOSURE_FUNCTIONS:
            return self._eval_closure(node, scope)

        builtin = BUILTIN_FUNCTIONS.get(node.name)
        if builtin is None:
            raise UnknownFunctionError(node.name)
        return builtin([self._eval(arg, scope) for arg in node.args])

    def _eval_closure(self, node: ast.Call, scope: Scope) -> Any:
        if len(node.args) != 2:
            raise ExpressionTypeError(f"{node.name}() takes 2 arguments, got {len(node.args)}")

        items = self._eval(node.args[0], scope)
        if isinstance(items, Interval) and all(
            isinstance(v, int) and not isinstance(v, bool) for v in (items.start, items.end)
        ):
            start = items.start if items.left_closed else items.start + 1
            end = items.end + 1 if items.right_closed else items.end
            items = list(range(start, end))
        if not isinstance(items, (list, tuple)):
            raise ExpressionTypeError(f"{node.name}() expects an array, got {type_name(items)}")

        body = node.args[1]
        name = node.name

        if name == "map":
            return [self._eval(body, scope.with_hash(item)) for item in items]
        if name == "filter":
            return [
                item for item in items
                if _truth(self._eval(body, scope.with_hash(item)), "filter()")
            ]

        def test(item: Any) -> bool:
            return _truth(self._eval(body, scope.with_hash(item)), f"{name}()")

        if name == "some":
            return any(test(item) for item in items)
        if name == "all":
            return all(test(item) for item in items)
        if name == "none":
            return not any(test(item) for item in items)
        if name == "count":
            return sum(1 for item in items if test(item))
        # one
        return sum(1 for item in items if test(item)) == 1


default_evaluator = ExpressionEvaluator()


def evaluate(text: str, context: Any) -> Any:
    """Evaluate expression text with the shared module-level evaluator."""
    return default_evaluator.evaluate(text, context)

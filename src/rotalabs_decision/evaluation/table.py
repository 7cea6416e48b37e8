"""Decision table evaluation.

A table is an ordered list of rules. Each rule has one condition cell per
input column and one output cell per output column. Conditions are checked
left to right and a row is abandoned at its first non-matching cell, so
later cells (and the column values they need) are never evaluated for that
row. The hit policy decides how matching rows combine into the result.
"""

import logging
from typing import Any, Dict, List, Optional

from rotalabs_decision.core.config import DecisionTableContent, HitPolicy, TableColumn, TableRule
from rotalabs_decision.core.context import set_path
from rotalabs_decision.core.errors import TableHitPolicyError
from rotalabs_decision.core.values import values_equal
from rotalabs_decision.evaluation.evaluator import ExpressionEvaluator

logger = logging.getLogger(__name__)

WILDCARDS = frozenset({"", "-"})

_UNSET = object()


class _ColumnValues:
    """Lazily resolved input column values for one table evaluation."""

    __slots__ = ("_evaluator", "_context", "_node_id", "_values")

    def __init__(self, evaluator: ExpressionEvaluator, context: Any, node_id: Optional[str]):
        self._evaluator = evaluator
        self._context = context
        self._node_id = node_id
        self._values: Dict[str, Any] = {}

    def get(self, column: TableColumn) -> Any:
        value = self._values.get(column.id, _UNSET)
        if value is _UNSET:
            value = self._evaluator.evaluate(column.field, self._context, node_id=self._node_id)
            self._values[column.id] = value
        return value


class DecisionTableEvaluator:
    """Evaluates decision table content against a context.

    Attributes:
        evaluator: Expression evaluator used for every cell.
    """

    def __init__(self, evaluator: Optional[ExpressionEvaluator] = None):
        self.evaluator = evaluator or ExpressionEvaluator()

    def evaluate(
        self,
        table: DecisionTableContent,
        context: Any,
        node_id: Optional[str] = None,
    ) -> Any:
        """Evaluate a table.

        Args:
            table: Parsed table content.
            context: Node input the cells are evaluated against.
            node_id: Owning node id for error reporting.

        Returns:
            Output mapping (first, unique, any) or list of mappings (collect).

        Raises:
            EvaluationError: If a cell fails to evaluate.
            TableHitPolicyError: If matching rows violate the hit policy.
        """
        columns = _ColumnValues(self.evaluator, context, node_id)
        policy = table.hit_policy
        matches: List[Dict[str, Any]] = []
        matched_rules: List[str] = []

        for rule in table.rules:
            if not self._rule_matches(table, rule, columns, context, node_id):
                continue

            output = self._rule_output(table, rule, context, node_id)
            logger.debug(
                "Table rule matched",
                extra={"node_id": node_id, "rule_id": rule.id, "hit_policy": policy.value},
            )

            if policy == HitPolicy.FIRST:
                return output

            if policy == HitPolicy.UNIQUE and matches:
                raise TableHitPolicyError(
                    f"Hit policy 'unique' violated: rules {matched_rules[0]!r} and {rule.id!r} both match",
                    node_id=node_id,
                )
            if policy == HitPolicy.ANY and matches and not values_equal(matches[0], output):
                raise TableHitPolicyError(
                    f"Hit policy 'any' violated: rules {matched_rules[0]!r} and {rule.id!r} "
                    f"produce different outputs",
                    node_id=node_id,
                )

            matches.append(output)
            matched_rules.append(rule.id)

        if policy == HitPolicy.COLLECT:
            return matches
        return matches[0] if matches else {}

    def _rule_matches(
        self,
        table: DecisionTableContent,
        rule: TableRule,
        columns: _ColumnValues,
        context: Any,
        node_id: Optional[str],
    ) -> bool:
        for column in table.inputs:
            cell = rule.cell(column.id).strip()
            if cell in WILDCARDS:
                continue

            if column.field:
                matched = self.evaluator.evaluate_unary(
                    cell, columns.get(column), context, node_id=node_id
                )
            else:
                matched = self.evaluator.is_truthy(cell, context, node_id=node_id)

            if not matched:
                return False
        return True

    def _rule_output(
        self,
        table: DecisionTableContent,
        rule: TableRule,
        context: Any,
        node_id: Optional[str],
    ) -> Dict[str, Any]:
        output: Dict[str, Any] = {}
        for column in table.outputs:
            cell = rule.cell(column.id).strip()
            value = None if not cell else self.evaluator.evaluate(cell, context, node_id=node_id)
            set_path(output, column.field, value)
        return output

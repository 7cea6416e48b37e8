"""Tests for decision table evaluation in rotalabs-decision.

Tests cover:
- Threshold tables with the 'first' hit policy
- 'collect', 'unique' and 'any' hit policies
- Wildcards, field-less columns and nested output fields
- Left-to-right short-circuit of condition cells
"""

import pytest

from rotalabs_decision.core.config import DecisionTableContent, HitPolicy
from rotalabs_decision.core.errors import (
    ExpressionTypeError,
    TableHitPolicyError,
    UnknownIdentifierError,
)
from rotalabs_decision.evaluation.table import DecisionTableEvaluator


def make_table(rules, hit_policy=None, inputs=None, outputs=None) -> DecisionTableContent:
    data = {
        "inputs": inputs if inputs is not None else [{"id": "amount", "field": "amount"}],
        "outputs": outputs if outputs is not None else [{"id": "band", "field": "band"}],
        "rules": rules,
    }
    if hit_policy:
        data["hitPolicy"] = hit_policy
    return DecisionTableContent.from_dict(data, "table")


@pytest.fixture
def tables() -> DecisionTableEvaluator:
    return DecisionTableEvaluator()


@pytest.fixture
def threshold_table() -> DecisionTableContent:
    return make_table(
        [
            {"_id": "low", "amount": "< 10", "band": "0"},
            {"_id": "high", "amount": ">= 10", "band": "10"},
        ],
        outputs=[{"id": "band", "field": "output"}],
    )


class TestFirstPolicy:
    """Tests for the default 'first' hit policy."""

    def test_threshold_bands(self, tables, threshold_table):
        """Test the two-band threshold table."""
        assert tables.evaluate(threshold_table, {"amount": 2}) == {"output": 0}
        assert tables.evaluate(threshold_table, {"amount": 12}) == {"output": 10}

    def test_first_matching_row_wins(self, tables):
        table = make_table(
            [
                {"_id": "r1", "amount": "> 100", "band": "'large'"},
                {"_id": "r2", "amount": "> 10", "band": "'medium'"},
                {"_id": "r3", "amount": "", "band": "'small'"},
            ]
        )

        assert tables.evaluate(table, {"amount": 500}) == {"band": "large"}
        assert tables.evaluate(table, {"amount": 50}) == {"band": "medium"}
        assert tables.evaluate(table, {"amount": 5}) == {"band": "small"}

    def test_no_match_is_empty_object(self, tables):
        table = make_table([{"_id": "r1", "amount": "> 100", "band": "'large'"}])

        assert tables.evaluate(table, {"amount": 1}) == {}

    def test_default_policy(self, threshold_table):
        assert threshold_table.hit_policy == HitPolicy.FIRST


class TestOtherPolicies:
    """Tests for collect, unique and any."""

    def test_collect(self, tables):
        """Test that collect returns every matching row in order."""
        table = make_table(
            [
                {"_id": "r1", "amount": "> 0", "band": "'a'"},
                {"_id": "r2", "amount": "> 100", "band": "'b'"},
                {"_id": "r3", "amount": "-", "band": "'c'"},
            ],
            hit_policy="collect",
        )

        assert tables.evaluate(table, {"amount": 5}) == [{"band": "a"}, {"band": "c"}]
        assert tables.evaluate(table, {"amount": -5}) == [{"band": "c"}]

    def test_collect_no_match_is_empty_list(self, tables):
        table = make_table([{"_id": "r1", "amount": "> 0", "band": "'a'"}], hit_policy="collect")

        assert tables.evaluate(table, {"amount": 0}) == []

    def test_unique(self, tables):
        """Test that unique accepts one match and rejects several."""
        table = make_table(
            [
                {"_id": "r1", "amount": "< 10", "band": "'low'"},
                {"_id": "r2", "amount": "< 100", "band": "'mid'"},
            ],
            hit_policy="unique",
        )

        assert tables.evaluate(table, {"amount": 50}) == {"band": "mid"}
        with pytest.raises(TableHitPolicyError, match="'unique' violated") as exc_info:
            tables.evaluate(table, {"amount": 5}, node_id="table-1")
        assert exc_info.value.node_id == "table-1"

    def test_any(self, tables):
        """Test that any accepts agreeing matches and rejects disagreeing ones."""
        table = make_table(
            [
                {"_id": "r1", "amount": "> 0", "band": "'positive'"},
                {"_id": "r2", "amount": "> 10", "band": "'positive'"},
                {"_id": "r3", "amount": "> 100", "band": "'huge'"},
            ],
            hit_policy="any",
        )

        assert tables.evaluate(table, {"amount": 50}) == {"band": "positive"}
        with pytest.raises(TableHitPolicyError, match="'any' violated"):
            tables.evaluate(table, {"amount": 500})


class TestCells:
    """Tests for cell semantics."""

    def test_multiple_inputs_and_nested_outputs(self, tables):
        table = make_table(
            [
                {"_id": "r1", "tier": "'gold'", "amount": "> 100", "rate": "0.2", "label": "`gold-${amount}`"},
                {"_id": "r2", "tier": "'gold', 'silver'", "amount": "", "rate": "0.1", "label": ""},
            ],
            inputs=[
                {"id": "tier", "field": "customer.tier"},
                {"id": "amount", "field": "amount"},
            ],
            outputs=[
                {"id": "rate", "field": "discount.rate"},
                {"id": "label", "field": "discount.label"},
            ],
        )

        gold = tables.evaluate(table, {"customer": {"tier": "gold"}, "amount": 150})
        silver = tables.evaluate(table, {"customer": {"tier": "silver"}, "amount": 150})

        assert gold == {"discount": {"rate": 0.2, "label": "gold-150"}}
        assert silver == {"discount": {"rate": 0.1, "label": None}}

    def test_column_without_field(self, tables):
        """Test that a column without a field evaluates cells as conditions."""
        table = make_table(
            [
                {"_id": "r1", "cond": "amount > 10 and vip", "band": "'vip'"},
                {"_id": "r2", "cond": "", "band": "'regular'"},
            ],
            inputs=[{"id": "cond", "name": "Condition"}],
        )

        assert tables.evaluate(table, {"amount": 20, "vip": True}) == {"band": "vip"}
        assert tables.evaluate(table, {"amount": 20, "vip": False}) == {"band": "regular"}

    def test_short_circuit_skips_later_cells(self, tables):
        """Test that a failing cell stops the row before later columns are read."""
        table = make_table(
            [
                {"_id": "r1", "kind": "'a'", "ghost": "> 1", "band": "'one'"},
                {"_id": "r2", "kind": "'b'", "ghost": "", "band": "'two'"},
            ],
            inputs=[
                {"id": "kind", "field": "kind"},
                {"id": "ghost", "field": "ghost"},
            ],
        )

        # 'ghost' is not in the context; r1 fails on 'kind' so it is never read
        assert tables.evaluate(table, {"kind": "b"}) == {"band": "two"}

        with pytest.raises(UnknownIdentifierError, match="ghost"):
            tables.evaluate(table, {"kind": "a"})

    def test_output_cells_only_for_matching_rows(self, tables):
        """Test that output cells of non-matching rows are never evaluated."""
        table = make_table(
            [
                {"_id": "r1", "amount": "< 0", "band": "1 / 0"},
                {"_id": "r2", "amount": "", "band": "'ok'"},
            ]
        )

        assert tables.evaluate(table, {"amount": 5}) == {"band": "ok"}

    def test_cell_type_error_names_node(self, tables, threshold_table):
        with pytest.raises(ExpressionTypeError) as exc_info:
            tables.evaluate(threshold_table, {"amount": "lots"}, node_id="table-1")

        assert exc_info.value.node_id == "table-1"
        assert exc_info.value.expression == "< 10"

"""Tests for configuration classes in rotalabs-decision.

Tests cover:
- NodeKind and HitPolicy parsing
- Node, Edge and DecisionModel loading (dict, JSON, YAML, files)
- Kind-specific content parsing and validation
- EngineOptions defaults, validation and serialization
"""

import json

import pytest

from rotalabs_decision.core.config import (
    FUNCTION_HANDLER_ID,
    CustomContent,
    DecisionModel,
    DecisionTableContent,
    Edge,
    EngineOptions,
    ExpressionContent,
    FunctionContent,
    HitPolicy,
    InputContent,
    Node,
    NodeKind,
)
from rotalabs_decision.core.errors import ValidationError


class TestNodeKind:
    """Tests for NodeKind parsing."""

    def test_known_kinds(self):
        """Test that JSON type tags map onto node kinds."""
        assert NodeKind.parse("inputNode") == NodeKind.INPUT
        assert NodeKind.parse("decisionTableNode") == NodeKind.DECISION_TABLE
        assert NodeKind.parse("customNode") == NodeKind.CUSTOM

    def test_unknown_kind_is_none(self):
        """Test that unrecognised type tags parse to None instead of failing."""
        assert NodeKind.parse("switchNode") is None
        assert Node(id="n", type="switchNode").kind is None


class TestNodeAndEdge:
    """Tests for Node and Edge."""

    def test_node_from_dict(self):
        """Test creating a node from its JSON form."""
        node = Node.from_dict(
            {
                "id": "expr-1",
                "type": "expressionNode",
                "name": "Add",
                "position": {"x": 1, "y": 2},
                "content": {"expressions": []},
            }
        )

        assert node.id == "expr-1"
        assert node.kind == NodeKind.EXPRESSION
        assert node.position == {"x": 1, "y": 2}

    def test_node_requires_id_and_type(self):
        """Test that a node without id or type is rejected."""
        with pytest.raises(ValidationError, match="missing 'id'"):
            Node.from_dict({"type": "inputNode"})
        with pytest.raises(ValidationError, match="missing 'type'"):
            Node.from_dict({"id": "n1"})

    def test_edge_from_dict(self):
        """Test creating an edge from its JSON form."""
        edge = Edge.from_dict({"id": "e1", "sourceId": "a", "targetId": "b"})

        assert edge.source_id == "a"
        assert edge.target_id == "b"
        assert edge.to_dict() == {"id": "e1", "sourceId": "a", "targetId": "b"}

    def test_edge_requires_endpoints(self):
        """Test that an edge without targetId is rejected."""
        with pytest.raises(ValidationError, match="targetId"):
            Edge.from_dict({"id": "e1", "sourceId": "a"})


class TestContent:
    """Tests for kind-specific content parsing."""

    def test_expression_content(self):
        """Test parsing expression node content."""
        content = ExpressionContent.from_dict(
            {
                "expressions": [
                    {"id": "a", "key": "total", "value": "price * qty"},
                    {"id": "b", "key": "meta.discounted", "value": "$.total > 100"},
                ],
                "passThrough": True,
            },
            "expr",
        )

        assert [e.key for e in content.expressions] == ["total", "meta.discounted"]
        assert content.pass_through is True

    def test_expression_content_requires_expressions(self):
        """Test that expression content must list expressions."""
        with pytest.raises(ValidationError, match="expressions"):
            ExpressionContent.from_dict({}, "expr")

    def test_expression_value_must_be_text(self):
        """Test that expression values must be strings."""
        with pytest.raises(ValidationError, match="expression text"):
            ExpressionContent.from_dict({"expressions": [{"key": "a", "value": 5}]}, "expr")

    def test_table_content_defaults_to_first(self):
        """Test that a table without hitPolicy uses 'first'."""
        content = DecisionTableContent.from_dict(
            {
                "inputs": [{"id": "i1", "field": "age"}],
                "outputs": [{"id": "o1", "field": "band"}],
                "rules": [{"_id": "r1", "i1": "< 18", "o1": "'minor'"}],
            },
            "table",
        )

        assert content.hit_policy == HitPolicy.FIRST
        assert content.rules[0].id == "r1"
        assert content.rules[0].cell("i1") == "< 18"
        assert content.rules[0].cell("missing") == ""

    def test_table_content_stringifies_literal_cells(self):
        """Test that numeric and boolean cells are kept as expression text."""
        content = DecisionTableContent.from_dict(
            {
                "inputs": [{"id": "i1", "field": "x"}],
                "outputs": [{"id": "o1", "field": "y"}],
                "rules": [{"_id": "r1", "i1": 5, "o1": True}],
            },
            "table",
        )

        assert content.rules[0].cell("i1") == "5"
        assert content.rules[0].cell("o1") == "true"

    def test_table_unknown_hit_policy(self):
        """Test that an unknown hit policy is rejected."""
        with pytest.raises(ValidationError, match="unknown hit policy"):
            DecisionTableContent.from_dict(
                {"hitPolicy": "priority", "inputs": [], "outputs": [], "rules": []},
                "table",
            )

    def test_table_output_requires_field(self):
        """Test that output columns must name a field."""
        with pytest.raises(ValidationError, match="requires a field"):
            DecisionTableContent.from_dict(
                {"inputs": [], "outputs": [{"id": "o1"}], "rules": []},
                "table",
            )

    def test_function_content(self):
        """Test parsing function content with source or handler."""
        scripted = FunctionContent.from_dict("return input;", "fn")
        named = FunctionContent.from_dict({"handler": "pricing"}, "fn")

        assert scripted.source == "return input;"
        assert scripted.handler_id == FUNCTION_HANDLER_ID
        assert named.handler_id == "pricing"

    def test_function_content_requires_source_or_handler(self):
        """Test that empty function content is rejected."""
        with pytest.raises(ValidationError, match="requires 'source' or 'handler'"):
            FunctionContent.from_dict({}, "fn")

    def test_custom_content(self):
        """Test parsing custom node content."""
        content = CustomContent.from_dict({"kind": "scale", "config": {"factor": 2}}, "c")

        assert content.kind == "scale"
        assert content.config == {"factor": 2}

    def test_custom_content_requires_kind(self):
        """Test that custom content must name its handler."""
        with pytest.raises(ValidationError, match="kind"):
            CustomContent.from_dict({"config": {}}, "c")

    def test_input_schema(self):
        """Test parsing required fields declared on an input node."""
        content = InputContent.from_dict({"schema": {"required": ["a", "b.c"]}}, "in")

        assert content.required == ("a", "b.c")
        assert InputContent.from_dict(None, "in").required == ()


class TestDecisionModel:
    """Tests for DecisionModel loading and serialization."""

    def test_from_dict(self, expression_model):
        """Test loading a model document."""
        model = DecisionModel.from_dict(expression_model)

        assert [n.id for n in model.nodes] == ["input-1", "expr-1", "output-1"]
        assert [e.id for e in model.edges] == ["edge-1", "edge-2"]

    @pytest.mark.parametrize(
        "document",
        [
            {},
            {"nodes": []},
            {"edges": []},
            {"nodes": {}, "edges": []},
            ["not", "an", "object"],
        ],
    )
    def test_rejects_documents_without_nodes_and_edges(self, document):
        """Test that documents lacking nodes/edges fail with ValidationError."""
        with pytest.raises(ValidationError):
            DecisionModel.from_dict(document)

    def test_from_json(self, expression_model):
        """Test loading a model from JSON text."""
        model = DecisionModel.from_json(json.dumps(expression_model), name="expr")

        assert model.name == "expr"
        assert len(model.nodes) == 3

    def test_from_invalid_json(self):
        """Test that malformed JSON is a ValidationError."""
        with pytest.raises(ValidationError, match="not valid JSON"):
            DecisionModel.from_json("{nodes: ")

    def test_from_json_file(self, tmp_path, expression_model):
        """Test loading a model from a JSON file."""
        path = tmp_path / "pricing.json"
        path.write_text(json.dumps(expression_model))

        model = DecisionModel.from_file(path)

        assert model.name == "pricing"
        assert len(model.edges) == 2

    def test_from_yaml_file(self, tmp_path, expression_model):
        """Test loading a model from a YAML file."""
        yaml = pytest.importorskip("yaml")
        path = tmp_path / "pricing.yaml"
        path.write_text(yaml.safe_dump(expression_model))

        model = DecisionModel.from_file(path)

        assert [n.id for n in model.nodes] == ["input-1", "expr-1", "output-1"]

    def test_unsupported_file_format(self, tmp_path):
        """Test that unknown file suffixes are rejected."""
        path = tmp_path / "model.toml"
        path.write_text("")

        with pytest.raises(ValueError, match="Unsupported file format"):
            DecisionModel.from_file(path)

    def test_round_trip_json(self, expression_model):
        """Test that to_json output loads back to the same model."""
        original = DecisionModel.from_dict(expression_model)

        restored = DecisionModel.from_json(original.to_json())

        assert restored.to_dict() == original.to_dict()

    def test_to_yaml(self, expression_model):
        """Test converting a model to YAML."""
        pytest.importorskip("yaml")
        model = DecisionModel.from_dict(expression_model)

        yaml_str = model.to_yaml()

        assert "expressionNode" in yaml_str
        assert "sourceId: input-1" in yaml_str


class TestEngineOptions:
    """Tests for EngineOptions."""

    def test_defaults(self):
        """Test default option values."""
        options = EngineOptions()

        assert options.trace is False
        assert options.max_depth == 5
        assert options.strict is False
        assert options.parallel is False
        assert options.enable_functions is True
        assert options.validate_inputs is True
        assert options.loader is None

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"max_depth": 0}, "max_depth"),
            ({"max_parallel_nodes": 0}, "max_parallel_nodes"),
            ({"expression_cache_size": -1}, "expression_cache_size"),
            ({"loader": "not callable"}, "loader"),
        ],
    )
    def test_validation(self, kwargs, message):
        """Test that invalid options raise ValueError."""
        with pytest.raises(ValueError, match=message):
            EngineOptions(**kwargs)

    def test_round_trip(self):
        """Test options serialization."""
        options = EngineOptions(trace=True, max_depth=3, parallel=True, max_parallel_nodes=2)

        restored = EngineOptions.from_dict(options.to_dict())

        assert restored == options
        assert "loader" not in options.to_dict()

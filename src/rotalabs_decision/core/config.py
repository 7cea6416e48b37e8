"""Configuration classes for decision models and the engine.

This module defines the in-memory schema of a decision model (nodes, edges and
their kind-specific content) together with engine options. Models can be
loaded from dictionaries, JSON strings, or JSON/YAML files.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from rotalabs_decision.core.errors import ValidationError

try:
    import yaml

    YAML_AVAILABLE = True
except ImportError:
    YAML_AVAILABLE = False


class NodeKind(str, Enum):
    """Recognised node kinds (the JSON ``type`` tag)."""

    INPUT = "inputNode"
    OUTPUT = "outputNode"
    EXPRESSION = "expressionNode"
    DECISION_TABLE = "decisionTableNode"
    FUNCTION = "functionNode"
    CUSTOM = "customNode"
    DECISION = "decisionNode"

    @classmethod
    def parse(cls, value: Any) -> Optional["NodeKind"]:
        """Return the matching kind, or None for unrecognised type tags."""
        try:
            return cls(value)
        except ValueError:
            return None


class HitPolicy(str, Enum):
    """Decision table hit policies."""

    FIRST = "first"
    COLLECT = "collect"
    UNIQUE = "unique"
    ANY = "any"


DEFAULT_HIT_POLICY = HitPolicy.FIRST


def _require(data: Any, key: str, expected: type, where: str) -> Any:
    if not isinstance(data, dict) or key not in data:
        raise ValidationError(f"{where} is missing '{key}'")
    value = data[key]
    if not isinstance(value, expected):
        raise ValidationError(f"{where} '{key}' must be of type {expected.__name__}")
    return value


@dataclass(frozen=True)
class ExpressionEntry:
    """One ``key = expression`` assignment of an expression node."""

    id: str
    key: str
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "key": self.key, "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], where: str = "expression") -> "ExpressionEntry":
        key = _require(data, "key", str, where)
        value = data.get("value", "")
        if not isinstance(value, str):
            raise ValidationError(f"{where} 'value' must be expression text")
        if not key:
            raise ValidationError(f"{where} has an empty key")
        return cls(id=str(data.get("id", key)), key=key, value=value)


@dataclass(frozen=True)
class ExpressionContent:
    """Content of an expression node.

    Attributes:
        expressions: Assignments evaluated in declaration order.
        pass_through: Merge the node input into its output.
    """

    expressions: tuple = ()
    pass_through: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expressions": [e.to_dict() for e in self.expressions],
            "passThrough": self.pass_through,
        }

    @classmethod
    def from_dict(cls, data: Any, node_id: str = "") -> "ExpressionContent":
        where = f"Expression node '{node_id}' content"
        expressions = _require(data, "expressions", list, where)
        entries = tuple(ExpressionEntry.from_dict(e, f"{where} expression") for e in expressions)
        return cls(expressions=entries, pass_through=bool(data.get("passThrough", False)))


@dataclass(frozen=True)
class TableColumn:
    """Input or output column of a decision table.

    Attributes:
        id: Column id, used as key in rule cells.
        name: Display name.
        field: Dotted path read from the input (input columns) or written
            to the output (output columns). Optional for input columns.
    """

    id: str
    name: str = ""
    field: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"id": self.id, "name": self.name}
        if self.field is not None:
            result["field"] = self.field
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any], where: str) -> "TableColumn":
        column_id = _require(data, "id", str, where)
        column_field = data.get("field")
        if column_field is not None and not isinstance(column_field, str):
            raise ValidationError(f"{where} '{column_id}' field must be a string")
        return cls(id=column_id, name=str(data.get("name", "")), field=column_field or None)


@dataclass(frozen=True)
class TableRule:
    """One row of a decision table; cells are keyed by column id."""

    id: str
    cells: Dict[str, str] = field(default_factory=dict)

    def cell(self, column_id: str) -> str:
        return self.cells.get(column_id, "")

    def to_dict(self) -> Dict[str, Any]:
        return {"_id": self.id, **self.cells}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int, where: str) -> "TableRule":
        if not isinstance(data, dict):
            raise ValidationError(f"{where} rule {index} must be an object")
        cells = {}
        for key, value in data.items():
            if key.startswith("_"):
                continue
            if value is None:
                value = ""
            if not isinstance(value, (str, int, float, bool)):
                raise ValidationError(f"{where} rule {index} cell '{key}' must be expression text")
            cells[key] = value if isinstance(value, str) else json.dumps(value)
        return cls(id=str(data.get("_id", index)), cells=cells)


@dataclass(frozen=True)
class DecisionTableContent:
    """Content of a decision table node."""

    hit_policy: HitPolicy = DEFAULT_HIT_POLICY
    inputs: tuple = ()
    outputs: tuple = ()
    rules: tuple = ()
    pass_through: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hitPolicy": self.hit_policy.value,
            "inputs": [c.to_dict() for c in self.inputs],
            "outputs": [c.to_dict() for c in self.outputs],
            "rules": [r.to_dict() for r in self.rules],
            "passThrough": self.pass_through,
        }

    @classmethod
    def from_dict(cls, data: Any, node_id: str = "") -> "DecisionTableContent":
        where = f"Decision table '{node_id}'"
        if not isinstance(data, dict):
            raise ValidationError(f"{where} content must be an object")

        raw_policy = data.get("hitPolicy") or DEFAULT_HIT_POLICY.value
        try:
            hit_policy = HitPolicy(raw_policy)
        except ValueError:
            raise ValidationError(
                f"{where} has unknown hit policy '{raw_policy}'. "
                f"Must be one of {[p.value for p in HitPolicy]}"
            )

        inputs = tuple(
            TableColumn.from_dict(c, f"{where} input column")
            for c in _require(data, "inputs", list, where)
        )
        outputs = tuple(
            TableColumn.from_dict(c, f"{where} output column")
            for c in _require(data, "outputs", list, where)
        )
        for column in outputs:
            if not column.field:
                raise ValidationError(f"{where} output column '{column.id}' requires a field")

        rules = tuple(
            TableRule.from_dict(r, i, where)
            for i, r in enumerate(_require(data, "rules", list, where))
        )
        return cls(
            hit_policy=hit_policy,
            inputs=inputs,
            outputs=outputs,
            rules=rules,
            pass_through=bool(data.get("passThrough", False)),
        )


# Handler id under which script source of function nodes is executed.
FUNCTION_HANDLER_ID = "function"


@dataclass(frozen=True)
class FunctionContent:
    """Content of a function node: inline script source or a named handler."""

    source: Optional[str] = None
    handler: Optional[str] = None

    @property
    def handler_id(self) -> str:
        return self.handler or FUNCTION_HANDLER_ID

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        if self.source is not None:
            result["source"] = self.source
        if self.handler is not None:
            result["handler"] = self.handler
        return result

    @classmethod
    def from_dict(cls, data: Any, node_id: str = "") -> "FunctionContent":
        if isinstance(data, str):
            return cls(source=data)
        if not isinstance(data, dict):
            raise ValidationError(f"Function node '{node_id}' content must be source text or an object")
        source = data.get("source")
        handler = data.get("handler")
        if source is None and handler is None:
            raise ValidationError(f"Function node '{node_id}' requires 'source' or 'handler'")
        return cls(source=source, handler=handler)


@dataclass(frozen=True)
class CustomContent:
    """Content of a custom node: handler identifier plus static config."""

    kind: str
    config: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "config": self.config}

    @classmethod
    def from_dict(cls, data: Any, node_id: str = "") -> "CustomContent":
        where = f"Custom node '{node_id}' content"
        kind = _require(data, "kind", str, where)
        config = data.get("config") or {}
        if not isinstance(config, dict):
            raise ValidationError(f"{where} 'config' must be an object")
        return cls(kind=kind, config=config)


@dataclass(frozen=True)
class DecisionReferenceContent:
    """Content of a decision reference node."""

    key: str

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key}

    @classmethod
    def from_dict(cls, data: Any, node_id: str = "") -> "DecisionReferenceContent":
        return cls(key=_require(data, "key", str, f"Decision node '{node_id}' content"))


@dataclass(frozen=True)
class InputContent:
    """Optional content of an input node declaring required fields."""

    required: tuple = ()

    @classmethod
    def from_dict(cls, data: Any, node_id: str = "") -> "InputContent":
        if not data:
            return cls()
        schema = data.get("schema") if isinstance(data, dict) else None
        if not schema:
            return cls()
        required = schema.get("required", []) if isinstance(schema, dict) else None
        if not isinstance(required, list) or not all(isinstance(f, str) for f in required):
            raise ValidationError(f"Input node '{node_id}' schema 'required' must be a list of field names")
        return cls(required=tuple(required))


CONTENT_TYPES = {
    NodeKind.INPUT: InputContent,
    NodeKind.EXPRESSION: ExpressionContent,
    NodeKind.DECISION_TABLE: DecisionTableContent,
    NodeKind.FUNCTION: FunctionContent,
    NodeKind.CUSTOM: CustomContent,
    NodeKind.DECISION: DecisionReferenceContent,
}


@dataclass
class Node:
    """A node of a decision model.

    Attributes:
        id: Unique node identifier.
        type: Raw type tag from the model document.
        name: Display name (non-normative).
        content: Kind-specific payload as found in the document.
        position: Presentational metadata, ignored by evaluation.
    """

    id: str
    type: str
    name: str = ""
    content: Any = None
    position: Optional[Dict[str, Any]] = None

    @property
    def kind(self) -> Optional[NodeKind]:
        """Node kind, or None if the type tag is not recognised."""
        return NodeKind.parse(self.type)

    def parse_content(self) -> Any:
        """Parse raw content into the typed content for this node's kind.

        Returns:
            Typed content, or None for kinds without content.

        Raises:
            ValidationError: If the content is malformed.
        """
        content_type = CONTENT_TYPES.get(self.kind)
        if content_type is None:
            return None
        return content_type.from_dict(self.content, self.id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert node to dictionary."""
        result = {"id": self.id, "type": self.type, "name": self.name}
        if self.position is not None:
            result["position"] = self.position
        if self.content is not None:
            result["content"] = self.content
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Node":
        """Create node from dictionary."""
        node_id = _require(data, "id", str, "Node")
        node_type = _require(data, "type", str, f"Node '{node_id}'")
        return cls(
            id=node_id,
            type=node_type,
            name=str(data.get("name") or ""),
            content=data.get("content"),
            position=data.get("position"),
        )


@dataclass
class Edge:
    """A directed edge from ``source_id`` to ``target_id``."""

    id: str
    source_id: str
    target_id: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert edge to dictionary."""
        return {"id": self.id, "sourceId": self.source_id, "targetId": self.target_id}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Edge":
        """Create edge from dictionary."""
        edge_id = _require(data, "id", str, "Edge")
        return cls(
            id=edge_id,
            source_id=_require(data, "sourceId", str, f"Edge '{edge_id}'"),
            target_id=_require(data, "targetId", str, f"Edge '{edge_id}'"),
        )


@dataclass
class DecisionModel:
    """Ordered collection of nodes and edges.

    Attributes:
        nodes: Nodes in declaration order.
        edges: Edges in declaration order.
        name: Optional model name, used in log messages.
    """

    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    name: str = "decision"

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }

    @classmethod
    def from_dict(cls, data: Any, name: Optional[str] = None) -> "DecisionModel":
        """Create model from a decoded JSON document.

        Raises:
            ValidationError: If the document has no recognisable nodes/edges.
        """
        if not isinstance(data, dict):
            raise ValidationError("Decision model must be a JSON object")
        nodes = _require(data, "nodes", list, "Decision model")
        edges = _require(data, "edges", list, "Decision model")

        return cls(
            nodes=[Node.from_dict(n) for n in nodes],
            edges=[Edge.from_dict(e) for e in edges],
            name=name or str(data.get("name") or "decision"),
        )

    @classmethod
    def from_json(cls, text: Union[str, bytes], name: Optional[str] = None) -> "DecisionModel":
        """Create model from a JSON string."""
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ValidationError(f"Decision model is not valid JSON: {e}")
        return cls.from_dict(data, name=name)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "DecisionModel":
        """Load a decision model from a JSON or YAML file.

        Args:
            path: Path to model file (.json or .yaml/.yml).

        Returns:
            Loaded decision model, named after the file stem.

        Raises:
            ValueError: If file format is unsupported.
            ImportError: If YAML file provided but PyYAML not installed.
        """
        path = Path(path)
        suffix = path.suffix.lower()

        with open(path, "r", encoding="utf-8") as f:
            if suffix == ".json":
                return cls.from_json(f.read(), name=path.stem)
            elif suffix in (".yaml", ".yml"):
                if not YAML_AVAILABLE:
                    raise ImportError("PyYAML is required to load YAML files. Install with: pip install pyyaml")
                data = yaml.safe_load(f)
            else:
                raise ValueError(f"Unsupported file format: {suffix}. Use .json, .yaml, or .yml")

        return cls.from_dict(data, name=path.stem)

    def to_json(self, indent: int = 2) -> str:
        """Convert model to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    def to_yaml(self) -> str:
        """Convert model to YAML string.

        Raises:
            ImportError: If PyYAML is not installed.
        """
        if not YAML_AVAILABLE:
            raise ImportError("PyYAML is required to export to YAML. Install with: pip install pyyaml")
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)


@dataclass
class EngineOptions:
    """Options for a decision engine instance.

    Attributes:
        trace: Collect per-node traces on every evaluation.
        max_depth: Maximum nesting of decision reference nodes.
        strict: Reject unknown node kinds at construction instead of
            failing when such a node is reached.
        parallel: Execute independent nodes of a topological level
            concurrently.
        max_parallel_nodes: Upper bound on concurrently executing nodes.
        enable_functions: Whether function nodes may execute at all.
        validate_inputs: Check required fields declared on input nodes.
        expression_cache_size: Number of compiled expressions kept.
        loader: Callable resolving a decision reference key to a model
            (DecisionModel or dict); may be sync or async.
    """

    trace: bool = False
    max_depth: int = 5
    strict: bool = False
    parallel: bool = False
    max_parallel_nodes: int = 5
    enable_functions: bool = True
    validate_inputs: bool = True
    expression_cache_size: int = 1024
    loader: Optional[Any] = None

    def __post_init__(self):
        """Validate options."""
        if self.max_depth < 1:
            raise ValueError(f"max_depth must be at least 1, got {self.max_depth}")
        if self.max_parallel_nodes < 1:
            raise ValueError(f"max_parallel_nodes must be at least 1, got {self.max_parallel_nodes}")
        if self.expression_cache_size < 0:
            raise ValueError("expression_cache_size must not be negative")
        if self.loader is not None and not callable(self.loader):
            raise ValueError("loader must be callable")

    def to_dict(self) -> Dict[str, Any]:
        """Convert options to dictionary (the loader is not serialisable)."""
        return {
            "trace": self.trace,
            "max_depth": self.max_depth,
            "strict": self.strict,
            "parallel": self.parallel,
            "max_parallel_nodes": self.max_parallel_nodes,
            "enable_functions": self.enable_functions,
            "validate_inputs": self.validate_inputs,
            "expression_cache_size": self.expression_cache_size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineOptions":
        """Create options from dictionary."""
        return cls(
            trace=data.get("trace", False),
            max_depth=data.get("max_depth", 5),
            strict=data.get("strict", False),
            parallel=data.get("parallel", False),
            max_parallel_nodes=data.get("max_parallel_nodes", 5),
            enable_functions=data.get("enable_functions", True),
            validate_inputs=data.get("validate_inputs", True),
            expression_cache_size=data.get("expression_cache_size", 1024),
            loader=data.get("loader"),
        )

"""AST node types for the decision expression language.

Nodes are immutable so that compiled expressions can be cached and shared by
concurrent evaluations.
"""

from dataclasses import dataclass
from typing import Any, Tuple, Union


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Identifier:
    name: str


@dataclass(frozen=True)
class Member:
    target: "Expr"
    name: str


@dataclass(frozen=True)
class Index:
    target: "Expr"
    index: "Expr"


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple["Expr", ...]


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Expr"


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class Ternary:
    condition: "Expr"
    then: "Expr"
    otherwise: "Expr"


@dataclass(frozen=True)
class ArrayLiteral:
    items: Tuple["Expr", ...]


@dataclass(frozen=True)
class ObjectLiteral:
    entries: Tuple[Tuple[str, "Expr"], ...]


@dataclass(frozen=True)
class IntervalLiteral:
    start: "Expr"
    end: "Expr"
    left_closed: bool
    right_closed: bool


@dataclass(frozen=True)
class Template:
    """Backtick template; parts are literal strings or sub-expressions."""

    parts: Tuple[Union[str, "Expr"], ...]


@dataclass(frozen=True)
class AlternativeList:
    """Top-level comma list of a table cell (``'a', 'b'``)."""

    items: Tuple["Expr", ...]


Expr = Union[
    Literal,
    Identifier,
    Member,
    Index,
    Call,
    Unary,
    Binary,
    Ternary,
    ArrayLiteral,
    ObjectLiteral,
    IntervalLiteral,
    Template,
    AlternativeList,
]


def references(node: Any, name: str) -> bool:
    """Return True if the tree references identifier ``name`` anywhere."""
    if isinstance(node, Identifier):
        return node.name == name
    if isinstance(node, Literal):
        return False
    if isinstance(node, (Member,)):
        return references(node.target, name)
    if isinstance(node, Index):
        return references(node.target, name) or references(node.index, name)
    if isinstance(node, Call):
        return any(references(a, name) for a in node.args)
    if isinstance(node, Unary):
        return references(node.operand, name)
    if isinstance(node, Binary):
        return references(node.left, name) or references(node.right, name)
    if isinstance(node, Ternary):
        return any(references(n, name) for n in (node.condition, node.then, node.otherwise))
    if isinstance(node, (ArrayLiteral, AlternativeList)):
        return any(references(i, name) for i in node.items)
    if isinstance(node, ObjectLiteral):
        return any(references(v, name) for _, v in node.entries)
    if isinstance(node, IntervalLiteral):
        return references(node.start, name) or references(node.end, name)
    if isinstance(node, Template):
        return any(references(p, name) for p in node.parts if not isinstance(p, str))
    return False

"""
Data model for fuzzy interpretation evaluation.

Catalog entries (Property, Evaluation, InterpretationTree) are immutable
snapshots built once by the catalog loader. Per-call outputs
(InterpretationResult) are frozen as well so they can be cached by value.

Node vocabulary:
- Operator: combines several child values (and, or, product, sum, times, average,
  plus, minus, divide, not_null_and)
- Hedge: unary modifier of one child value (not, power, multiply, limit, null handling)
- NodeKind: what a normalized tree node is (root, rule, operator, hedge, evaluation)
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Union

from src.interpretation.errors import ConfigurationError

# Property values as supplied by the caller for one evaluation subject
PropertyValue = Union[float, int, str, None]
PropertyData = Mapping[str, PropertyValue]

INTERPOLATIONS = ("linear", "spline", "step", "sigmoid")


class _NotRated:
    """Marker that forces "not rated" through the rest of the tree."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOT_RATED"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self):
        return "NOT_RATED"


NOT_RATED = _NotRated()


def is_not_rated(value: Any) -> bool:
    """True for None and for the forced not-rated marker."""
    return value is None or value is NOT_RATED


class Operator(str, Enum):
    """Fuzzy aggregation operators."""

    AND = "and"
    OR = "or"
    PRODUCT = "product"
    SUM = "sum"
    TIMES = "times"
    AVERAGE = "average"
    PLUS = "plus"
    MINUS = "minus"
    DIVIDE = "divide"
    NOT_NULL_AND = "not_null_and"

    @classmethod
    def parse(cls, name: str) -> Optional["Operator"]:
        """Resolve an operator name (case-insensitive, with aliases) or None."""
        key = name.strip().lower().replace(" ", "_").replace("-", "_")
        return _OPERATOR_ALIASES.get(key)


class Hedge(str, Enum):
    """Unary fuzzy modifiers."""

    NOT = "not"
    POWER = "power"
    MULTIPLY = "multiply"
    LIMIT = "limit"
    NULL_OR = "null_or"
    NOT_NULL_AND = "not_null_and"
    NULL_NOT_RATED = "null_not_rated"

    @property
    def requires_param(self) -> bool:
        return self in (Hedge.POWER, Hedge.MULTIPLY)

    @classmethod
    def parse(cls, name: str) -> Optional[tuple["Hedge", Optional[float]]]:
        """
        Resolve a hedge name to (hedge, default parameter) or None.

        "very" and "somewhat" are the classic concentration/dilation hedges
        and resolve to POWER with exponents 2 and 0.5.
        """
        key = name.strip().lower().replace(" ", "_").replace("-", "_")
        return _HEDGE_ALIASES.get(key)


_OPERATOR_ALIASES = {op.value: op for op in Operator}
_OPERATOR_ALIASES.update({
    "min": Operator.AND,
    "max": Operator.OR,
    "prod": Operator.PRODUCT,
    "multiply": Operator.PRODUCT,
    "alpha": Operator.PRODUCT,
    "add": Operator.PLUS,
    "addition": Operator.PLUS,
    "subtract": Operator.MINUS,
    "subtraction": Operator.MINUS,
    "division": Operator.DIVIDE,
    "notnulland": Operator.NOT_NULL_AND,
    "avg": Operator.AVERAGE,
    "mean": Operator.AVERAGE,
})

_HEDGE_ALIASES = {h.value: (h, None) for h in Hedge}
_HEDGE_ALIASES.update({
    "mult": (Hedge.MULTIPLY, None),
    "nullor": (Hedge.NULL_OR, None),
    "notnulland": (Hedge.NOT_NULL_AND, None),
    "nullnotrated": (Hedge.NULL_NOT_RATED, None),
    "very": (Hedge.POWER, 2.0),
    "somewhat": (Hedge.POWER, 0.5),
})


class NodeKind(str, Enum):
    ROOT = "root"
    RULE = "rule"
    OPERATOR = "operator"
    HEDGE = "hedge"
    EVALUATION = "evaluation"


# =============================================================================
# CATALOG ENTRIES
# =============================================================================


@dataclass(frozen=True)
class Property:
    """
    A measurable (or categorical) soil property.

    Attributes:
        id: Catalog identifier
        name: Property name, used as the key in caller-supplied data
        unit_of_measure: Unit string; None for categorical properties
        min: Lower bound of the physical domain, if known
        max: Upper bound of the physical domain, if known
        modifier: Free-form property modifier from the source catalog
        is_categorical: True for choice-valued properties
        description: Human-readable description
        choices: Valid values for categorical properties
    """

    id: str
    name: str
    unit_of_measure: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    modifier: Optional[str] = None
    is_categorical: bool = False
    description: Optional[str] = None
    choices: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "unit_of_measure": self.unit_of_measure,
            "min": self.min,
            "max": self.max,
            "modifier": self.modifier,
            "is_categorical": self.is_categorical,
            "description": self.description,
            "choices": list(self.choices),
        }


@dataclass(frozen=True)
class EvaluationPoint:
    """Control point of a membership curve (x = property value, y = membership)."""

    x: float
    y: float


@dataclass(frozen=True)
class Evaluation:
    """
    A membership curve (or crisp predicate) over one property.

    Points are stored sorted by x. A crisp expression is compiled once
    here, so an unparseable expression fails when the catalog is built
    rather than in the middle of an evaluation.

    Attributes:
        id: Catalog identifier (referenced by rule tree leaves)
        name: Evaluation name
        property_name: Name of the property this curve reads
        type: Source evaluation type ("crisp", "fuzzy", "arbitrarycurve", ...)
        invert: Map y -> 1 - y after evaluating
        points: Curve control points (at least 2 when present)
        interpolation: "linear", "spline", "step" or "sigmoid"
        crisp_expression: Boolean predicate source for crisp evaluations
        categories: Membership per categorical value
        description: Human-readable description
    """

    id: str
    name: str
    property_name: str
    type: str = "fuzzy"
    invert: bool = False
    points: Optional[tuple[EvaluationPoint, ...]] = None
    interpolation: str = "linear"
    crisp_expression: Optional[str] = None
    categories: Optional[Mapping[str, float]] = None
    description: Optional[str] = None
    predicate: Optional[Callable[[PropertyValue], bool]] = field(
        default=None, repr=False, compare=False
    )

    def __post_init__(self):
        """Validate and normalize the curve definition."""
        interpolation = (self.interpolation or "linear").lower()
        if interpolation not in INTERPOLATIONS:
            raise ConfigurationError(
                f"Evaluation '{self.name}' has unknown interpolation '{self.interpolation}'. "
                f"Available: {list(INTERPOLATIONS)}"
            )
        object.__setattr__(self, "interpolation", interpolation)

        if self.points is not None:
            points = tuple(
                p if isinstance(p, EvaluationPoint) else EvaluationPoint(float(p["x"]), float(p["y"]))
                for p in self.points
            )
            if len(points) < 2:
                raise ConfigurationError(
                    f"Evaluation '{self.name}' needs at least 2 points, got {len(points)}"
                )
            if not all(math.isfinite(p.x) and math.isfinite(p.y) for p in points):
                raise ConfigurationError(f"Evaluation '{self.name}' has non-finite points")
            points = tuple(sorted(points, key=lambda p: p.x))
            if interpolation == "spline" and any(a.x == b.x for a, b in zip(points, points[1:])):
                raise ConfigurationError(
                    f"Evaluation '{self.name}': spline points need strictly increasing x values"
                )
            object.__setattr__(self, "points", points)

        if self.categories is not None:
            object.__setattr__(
                self, "categories", MappingProxyType({str(k): float(v) for k, v in self.categories.items()})
            )

        if self.crisp_expression and self.predicate is None:
            from src.interpretation.crisp import compile_expression

            try:
                predicate = compile_expression(self.crisp_expression)
            except ConfigurationError as e:
                raise ConfigurationError(
                    f"Evaluation '{self.name}': {e.message}",
                    {"evaluation": self.name, "expression": self.crisp_expression},
                ) from e
            object.__setattr__(self, "predicate", predicate)

    @property
    def is_crisp(self) -> bool:
        return self.type.lower() == "crisp" and self.predicate is not None

    @property
    def is_usable(self) -> bool:
        """True when the evaluation can produce a value for some input."""
        return self.predicate is not None or self.points is not None or bool(self.categories)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "property_name": self.property_name,
            "type": self.type,
            "invert": self.invert,
            "points": [{"x": p.x, "y": p.y} for p in self.points] if self.points else None,
            "interpolation": self.interpolation,
            "crisp_expression": self.crisp_expression,
            "categories": dict(self.categories) if self.categories is not None else None,
            "description": self.description,
        }


# =============================================================================
# RULE TREES
# =============================================================================


@dataclass(frozen=True)
class RuleNode:
    """
    A rule tree node as loaded from the catalog (flat, indentation-encoded).

    Attributes:
        level_name: Node label; its leading whitespace/markers encode depth
        node_kind: Operator or hedge name, if any
        value: Hedge parameter text (e.g. "0.5" or "power 2")
        ref_id: Evaluation reference for leaf nodes
        children: Nested children, for catalogs stored in nested form
    """

    level_name: str
    node_kind: Optional[str] = None
    value: Optional[str] = None
    ref_id: Optional[str] = None
    children: tuple["RuleNode", ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RuleNode":
        """Deserialize from a catalog dictionary (original or snake_case keys)."""
        ref_id = data.get("ref_id", data.get("RefId", data.get("rule_refid")))
        value = data.get("value", data.get("Value"))
        return cls(
            level_name=str(data.get("level_name", data.get("levelName", "")) or ""),
            node_kind=data.get("node_kind", data.get("Type")) or None,
            value=str(value) if value not in (None, "") else None,
            ref_id=str(ref_id) if ref_id not in (None, "") else None,
            children=tuple(cls.from_dict(c) for c in data.get("children") or ()),
        )


@dataclass(frozen=True)
class HierarchicalRuleNode:
    """
    A normalized rule tree node.

    Operator and hedge names are resolved to enums at normalization time so
    evaluation never dispatches on strings.
    """

    name: str
    kind: NodeKind
    depth: int
    key: str
    operator: Optional[Operator] = None
    hedge: Optional[Hedge] = None
    hedge_param: Optional[float] = None
    ref_id: Optional[str] = None
    children: tuple["HierarchicalRuleNode", ...] = ()

    def iter_nodes(self):
        """Yield this node and all descendants in pre-order."""
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "depth": self.depth,
            "key": self.key,
            "operator": self.operator.value if self.operator else None,
            "hedge": self.hedge.value if self.hedge else None,
            "hedge_param": self.hedge_param,
            "ref_id": self.ref_id,
            "children": [c.to_dict() for c in self.children],
        }


@dataclass(frozen=True)
class InterpretationTree:
    """A named, normalized interpretation with the properties it reads."""

    id: str
    name: str
    root: tuple[HierarchicalRuleNode, ...]
    required_properties: tuple[Property, ...] = ()

    def iter_nodes(self):
        for node in self.root:
            yield from node.iter_nodes()

    def evaluation_refs(self) -> list[str]:
        """Unique leaf references in tree order."""
        seen = {}
        for node in self.iter_nodes():
            if node.kind == NodeKind.EVALUATION and node.ref_id not in seen:
                seen[node.ref_id] = None
        return list(seen)


# =============================================================================
# RESULTS
# =============================================================================


@dataclass(frozen=True)
class InterpretationResult:
    """
    Outcome of evaluating one interpretation for one subject.

    Mappings are exposed read-only; a result may be shared through the
    result cache.

    Attributes:
        interpretation: Interpretation name
        rating: Fuzzy rating in [0, 1], or None when not rated
        rating_class: Ordinal class label ("slight" ... "not rated")
        property_values: Property values read by the tree's leaves
        evaluation_results: Per-node values keyed by node key
        timestamp: Creation time (UTC)
        error: Per-record failure details from batch evaluation
    """

    interpretation: str
    rating: Optional[float]
    rating_class: str
    property_values: Mapping[str, PropertyValue] = field(default_factory=dict)
    evaluation_results: Mapping[str, Optional[float]] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[Mapping[str, Any]] = None

    def __post_init__(self):
        object.__setattr__(self, "property_values", MappingProxyType(dict(self.property_values)))
        object.__setattr__(self, "evaluation_results", MappingProxyType(dict(self.evaluation_results)))
        if self.error is not None:
            object.__setattr__(self, "error", MappingProxyType(dict(self.error)))

    @property
    def is_rated(self) -> bool:
        return self.rating is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "interpretation": self.interpretation,
            "rating": self.rating,
            "rating_class": self.rating_class,
            "property_values": dict(self.property_values),
            "evaluation_results": dict(self.evaluation_results),
            "timestamp": self.timestamp.isoformat(),
            "error": dict(self.error) if self.error is not None else None,
        }

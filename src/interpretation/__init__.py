"""
Fuzzy interpretation engine.

Evaluates hierarchical fuzzy-logic rule trees (soil interpretations) against
property data and produces a rating in [0, 1] plus per-node results.

Building blocks:
- curves: property value -> membership (linear, step, spline, sigmoid, crisp)
- operators: combine child values (and, or, product, sum, times, average)
- hedges: unary modifiers (not, power, multiply, limit, null handling)
- normalizer: flat indentation-encoded rule lists -> typed trees
- evaluator: post-order tree walk
- rating: rating -> limitation class
- cache: LRU + TTL result cache

Composition:
- catalog: immutable catalog snapshot, builder, JSON/XML loading
- engine: InterpretationEngine facade
"""

from src.interpretation.errors import (
    InterpretationEngineError,
    ConfigurationError,
    InterpretationNotFoundError,
    InvalidPropertyDataError,
    EvaluationError,
)
from src.interpretation.models import (
    NOT_RATED,
    Property,
    EvaluationPoint,
    Evaluation,
    RuleNode,
    HierarchicalRuleNode,
    InterpretationTree,
    InterpretationResult,
    Operator,
    Hedge,
    NodeKind,
)
from src.interpretation.curves import (
    linear_interpolation,
    step_function,
    spline_interpolation,
    sigmoid_points,
)
from src.interpretation.operators import (
    fuzzy_and,
    fuzzy_or,
    fuzzy_product,
    fuzzy_sum,
    fuzzy_times,
    fuzzy_average,
    combine,
)
from src.interpretation.hedges import not_hedge, power_hedge, limit_hedge
from src.interpretation.normalizer import normalize
from src.interpretation.evaluator import TreeEvaluator
from src.interpretation.rating import RatingClassifier
from src.interpretation.cache import ResultCache
from src.interpretation.catalog import (
    Catalog,
    CatalogStore,
    build_catalog,
    load_catalog_from_directory,
)
from src.interpretation.engine import InterpretationEngine, create_engine

__all__ = [
    # Errors
    "InterpretationEngineError",
    "ConfigurationError",
    "InterpretationNotFoundError",
    "InvalidPropertyDataError",
    "EvaluationError",
    # Models
    "NOT_RATED",
    "Property",
    "EvaluationPoint",
    "Evaluation",
    "RuleNode",
    "HierarchicalRuleNode",
    "InterpretationTree",
    "InterpretationResult",
    "Operator",
    "Hedge",
    "NodeKind",
    # Curves
    "linear_interpolation",
    "step_function",
    "spline_interpolation",
    "sigmoid_points",
    # Operators and hedges
    "fuzzy_and",
    "fuzzy_or",
    "fuzzy_product",
    "fuzzy_sum",
    "fuzzy_times",
    "fuzzy_average",
    "combine",
    "not_hedge",
    "power_hedge",
    "limit_hedge",
    # Trees
    "normalize",
    "TreeEvaluator",
    "RatingClassifier",
    # Cache and catalog
    "ResultCache",
    "Catalog",
    "CatalogStore",
    "build_catalog",
    "load_catalog_from_directory",
    # Engine
    "InterpretationEngine",
    "create_engine",
]

"""
Tree evaluation.

Walks a normalized rule tree depth-first, post-order:

- evaluation leaf: read the property value, run it through the curve
- operator: evaluate all children, then combine
- hedge: evaluate the single child, then transform
- root / rule: evaluate children, then combine with an implicit AND

Every node's value is recorded in ``evaluation_results`` under the node's
key (the ref id for leaves, the tree path otherwise).

Missing data
------------
A property absent from the input (or None) is not an error. Under the
"propagate" policy a missing value reaching anything other than a null
hedge (null_or, not_null_and, null_not_rated) becomes NOT_RATED, so the
interpretation is not rated unless the tree substitutes for it. Under
"ignore" it stays None and operators drop it.
"""

import logging
import math
from typing import Any, Mapping, Optional, Union

from src import config
from src.interpretation import curves, hedges, operators
from src.interpretation.errors import (
    ConfigurationError,
    EvaluationError,
    InterpretationEngineError,
    InterpretationNotFoundError,
    InvalidPropertyDataError,
)
from src.interpretation.models import (
    NOT_RATED,
    Evaluation,
    Hedge,
    HierarchicalRuleNode,
    InterpretationResult,
    InterpretationTree,
    NodeKind,
    Operator,
    PropertyData,
    is_not_rated,
)
from src.interpretation.rating import RatingClassifier

logger = logging.getLogger(__name__)

# Hedges that decide what a missing value means; they see None as-is
NULL_HEDGES = (Hedge.NULL_OR, Hedge.NOT_NULL_AND, Hedge.NULL_NOT_RATED)


class TreeEvaluator:
    """
    Evaluate interpretation trees against property data.

    The evaluator holds no per-call state, so one instance can serve
    concurrent evaluations against the same catalog snapshot.

    Args:
        evaluations: Evaluations keyed by leaf reference
        classifier: Rating classifier (default thresholds if None)
        missing_data: "propagate" or "ignore"
        clamp_spline: Clamp spline curve output to [0, 1]

    Example:
        >>> evaluator = TreeEvaluator(catalog.evaluation_index)
        >>> result = evaluator.evaluate(catalog.get_tree("Slope limitation"), {"slope": 12})
        >>> result.rating_class
        'severe'
    """

    def __init__(
        self,
        evaluations: Mapping[str, Evaluation],
        classifier: Optional[RatingClassifier] = None,
        missing_data: str = config.DEFAULT_MISSING_DATA,
        clamp_spline: bool = True,
    ):
        if missing_data not in config.MISSING_DATA_POLICIES:
            raise ConfigurationError(
                f"Unknown missing_data policy '{missing_data}'. "
                f"Available: {list(config.MISSING_DATA_POLICIES)}"
            )
        self.evaluations = evaluations
        self.classifier = classifier or RatingClassifier()
        self.missing_data = missing_data
        self.clamp_spline = clamp_spline

    def _absent(self, value):
        """Apply the missing-data policy to a child value."""
        if value is None and self.missing_data == "propagate":
            return NOT_RATED
        return value

    def _evaluate_leaf(self, node: HierarchicalRuleNode, data: PropertyData, property_values: dict):
        evaluation = self.evaluations.get(node.ref_id)
        if evaluation is None:
            raise InterpretationNotFoundError(node.ref_id, kind="Evaluation")

        raw = data.get(evaluation.property_name)
        property_values[evaluation.property_name] = raw
        value = curves.evaluate(raw, evaluation, clamp_spline=self.clamp_spline)
        logger.debug(f"Leaf {evaluation.name}: {evaluation.property_name}={raw!r} -> {value}")
        return value

    def _visit(
        self,
        node: HierarchicalRuleNode,
        data: PropertyData,
        results: dict,
        property_values: dict,
    ):
        try:
            if node.kind == NodeKind.EVALUATION:
                value = self._evaluate_leaf(node, data, property_values)

            elif node.kind == NodeKind.HEDGE:
                child = self._visit(node.children[0], data, results, property_values)
                if node.hedge not in NULL_HEDGES:
                    child = self._absent(child)
                value = hedges.apply(child, node.hedge, node.hedge_param)

            else:
                operator = node.operator if node.kind == NodeKind.OPERATOR else Operator.AND
                values = [self._visit(child, data, results, property_values) for child in node.children]
                # not_null_and reads missing operands itself
                if operator != Operator.NOT_NULL_AND:
                    values = [self._absent(v) for v in values]
                value = operators.combine(values, operator)

        except InterpretationEngineError:
            raise
        except Exception as e:
            logger.error(f"Evaluation failed at node '{node.name}' ({node.key}): {e}")
            raise EvaluationError(
                f"Evaluation failed at node '{node.name}': {e}", node_key=node.key
            ) from e

        if isinstance(value, float) and math.isnan(value):
            logger.warning(f"Node '{node.name}' ({node.key}) produced NaN; treating it as missing")
            value = None

        results[node.key] = None if is_not_rated(value) else value
        return value

    def evaluate_nodes(
        self,
        roots: tuple[HierarchicalRuleNode, ...],
        property_data: PropertyData,
    ) -> tuple[Optional[float], dict[str, Optional[float]], dict[str, Any]]:
        """
        Evaluate root nodes and combine them with an implicit AND.

        Returns:
            (rating, evaluation_results, property_values)
        """
        results: dict[str, Optional[float]] = {}
        property_values: dict[str, Any] = {}

        values = [self._absent(self._visit(root, property_data, results, property_values)) for root in roots]
        rating = values[0] if len(values) == 1 else operators.combine(values, Operator.AND)

        if is_not_rated(rating):
            return None, results, property_values

        rating = float(rating)
        if math.isnan(rating):
            logger.error("NaN reached the root rating; reporting as not rated")
            return None, results, property_values
        if not 0.0 <= rating <= 1.0:
            logger.warning(f"Rating {rating} outside [0, 1]; clamping")
            rating = min(1.0, max(0.0, rating))
        return rating, results, property_values

    def evaluate(
        self,
        tree: Union[InterpretationTree, tuple[HierarchicalRuleNode, ...]],
        property_data: PropertyData,
    ) -> InterpretationResult:
        """
        Evaluate a tree for one subject.

        Args:
            tree: Interpretation tree (or bare root nodes)
            property_data: Property values by property name; absent means missing

        Returns:
            InterpretationResult with rating, class and per-node values

        Raises:
            InterpretationNotFoundError: A leaf references an unknown evaluation
            InvalidPropertyDataError: A value does not fit its curve
            EvaluationError: Any other failure during the walk
        """
        if not isinstance(property_data, Mapping):
            raise InvalidPropertyDataError(
                f"Property data must be a mapping, got {type(property_data).__name__}"
            )

        if isinstance(tree, InterpretationTree):
            name, roots = tree.name, tree.root
        else:
            name, roots = "", tuple(tree)

        rating, results, property_values = self.evaluate_nodes(roots, property_data)
        return InterpretationResult(
            interpretation=name,
            rating=rating,
            rating_class=self.classifier.classify(rating),
            property_values=property_values,
            evaluation_results=results,
        )

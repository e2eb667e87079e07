"""
Fuzzy aggregation operators.

Each operator combines several fuzzy values into one. Missing values (None)
and NaN are dropped before aggregating ("ignore not rated"); if nothing is
left the result is None. The forced not-rated marker (NOT_RATED, produced by
the null_not_rated hedge or by a missing leaf under the propagate policy) is
never dropped: any NOT_RATED input makes the result NOT_RATED.

Operators:
- and: minimum (pessimistic)
- or: maximum (optimistic)
- product: algebraic product (decays faster than and)
- sum: algebraic sum 1 - prod(1 - v), always >= or
- times: running value times a fixed factor (exactly two operands)
- average: arithmetic mean
- plus: bounded sum, min(1, sum(v))
- minus: bounded difference, max(0, first - sum(rest))
- divide: first / product(rest), capped at 1; a zero divisor is not rated
- not_null_and: and, reading missing operands as 1

weighted_average() takes one weight per value and is called directly.
"""

import logging
import math
from functools import reduce
from typing import Optional, Sequence, Union

from src.interpretation.errors import ConfigurationError
from src.interpretation.models import NOT_RATED, Operator

logger = logging.getLogger(__name__)


def _rated(values: Sequence[Optional[float]]) -> list[float]:
    """Drop None and NaN values."""
    rated = []
    for v in values:
        if v is None or v is NOT_RATED:
            continue
        if isinstance(v, float) and math.isnan(v):
            logger.warning("NaN operand dropped; values should be validated upstream")
            continue
        rated.append(float(v))
    return rated


def fuzzy_and(values: Sequence[Optional[float]]) -> Optional[float]:
    """
    Fuzzy AND (minimum).

    Example:
        >>> fuzzy_and([0.3, 0.7, 0.5])
        0.3
        >>> fuzzy_and([0.5, None, 0.7])
        0.5
    """
    rated = _rated(values)
    return min(rated) if rated else None


def fuzzy_or(values: Sequence[Optional[float]]) -> Optional[float]:
    """Fuzzy OR (maximum)."""
    rated = _rated(values)
    return max(rated) if rated else None


def fuzzy_product(values: Sequence[Optional[float]]) -> Optional[float]:
    """Algebraic product of all values."""
    rated = _rated(values)
    if not rated:
        return None
    return reduce(lambda acc, v: acc * v, rated, 1.0)


def fuzzy_sum(values: Sequence[Optional[float]]) -> Optional[float]:
    """
    Algebraic (probabilistic) sum: 1 - prod(1 - v).

    For values in [0, 1] this is never less than fuzzy_or of the same values.

    Example:
        >>> fuzzy_sum([0.5, 0.5])
        0.75
    """
    rated = _rated(values)
    if not rated:
        return None
    complement = reduce(lambda acc, v: acc * (1.0 - v), rated, 1.0)
    return 1.0 - complement


def fuzzy_times(values: Sequence[Optional[float]]) -> Optional[float]:
    """
    Weighted multiply of a running value by a fixed factor.

    Takes exactly two operands, (value, factor). If one of them is not
    rated the other is returned unchanged.
    """
    if len(values) != 2:
        raise ConfigurationError(f"times takes exactly two operands, got {len(values)}")
    rated = _rated(values)
    if not rated:
        return None
    if len(rated) == 1:
        return rated[0]
    return rated[0] * rated[1]


def fuzzy_average(values: Sequence[Optional[float]]) -> Optional[float]:
    """Arithmetic mean of the rated values."""
    rated = _rated(values)
    if not rated:
        return None
    return sum(rated) / len(rated)


def fuzzy_plus(values: Sequence[Optional[float]]) -> Optional[float]:
    """Bounded sum, capped at 1."""
    rated = _rated(values)
    if not rated:
        return None
    return min(1.0, sum(rated))


def fuzzy_minus(values: Sequence[Optional[float]]) -> Optional[float]:
    """
    Bounded difference: the first value minus the rest, floored at 0.

    Example:
        >>> fuzzy_minus([0.9, 0.3, 0.2])
        0.4
        >>> fuzzy_minus([0.2, 0.5])
        0.0
    """
    rated = _rated(values)
    if not rated:
        return None
    return max(0.0, rated[0] - sum(rated[1:]))


def fuzzy_divide(values: Sequence[Optional[float]]) -> Optional[float]:
    """
    The first value divided by the product of the rest, capped at 1.

    A zero divisor has no result and is reported as not rated.
    """
    rated = _rated(values)
    if not rated:
        return None
    divisor = reduce(lambda acc, v: acc * v, rated[1:], 1.0)
    if divisor == 0:
        logger.debug(f"divide by zero for operands {rated}; not rated")
        return None
    return min(1.0, rated[0] / divisor)


def fuzzy_not_null_and(values: Sequence[Optional[float]]) -> Optional[float]:
    """Fuzzy AND that reads missing operands as 1, so they never lower the result."""
    return fuzzy_and([1.0 if v is None or (isinstance(v, float) and math.isnan(v)) else v for v in values])


def weighted_average(
    values: Sequence[Optional[float]],
    weights: Sequence[float],
) -> Optional[float]:
    """
    Weighted mean of the rated values.

    Pairs whose value is missing are skipped along with their weight.

    Args:
        values: Fuzzy values
        weights: One weight per value

    Returns:
        sum(v * w) / sum(w), 0.0 when the remaining weights sum to zero,
        or None when no value is rated

    Raises:
        ConfigurationError: If values and weights differ in length
    """
    if len(values) != len(weights):
        raise ConfigurationError(
            f"weighted_average needs one weight per value, got {len(values)} values "
            f"and {len(weights)} weights"
        )
    pairs = [(v, float(w)) for v, w in zip(values, weights) if _rated([v])]
    if not pairs:
        return None
    total = sum(w for _, w in pairs)
    if total <= 0:
        return 0.0
    return sum(float(v) * w for v, w in pairs) / total


# Map operators to functions
OPERATOR_FUNCTIONS = {
    Operator.AND: fuzzy_and,
    Operator.OR: fuzzy_or,
    Operator.PRODUCT: fuzzy_product,
    Operator.SUM: fuzzy_sum,
    Operator.TIMES: fuzzy_times,
    Operator.AVERAGE: fuzzy_average,
    Operator.PLUS: fuzzy_plus,
    Operator.MINUS: fuzzy_minus,
    Operator.DIVIDE: fuzzy_divide,
    Operator.NOT_NULL_AND: fuzzy_not_null_and,
}


def resolve_operator(operator: Union[Operator, str]) -> Operator:
    """Resolve an operator name to the Operator enum."""
    if isinstance(operator, Operator):
        return operator
    resolved = Operator.parse(str(operator))
    if resolved is None:
        raise ConfigurationError(
            f"Unknown operator '{operator}'. Available: {[op.value for op in Operator]}"
        )
    return resolved


def combine(values: Sequence, operator: Union[Operator, str]):
    """
    Combine fuzzy values with an operator.

    Args:
        values: Child values; None means "not rated" and is ignored
        operator: Operator enum (or name, resolved on each call)

    Returns:
        Combined value, None if every value was None, or NOT_RATED if any
        value was NOT_RATED
    """
    if any(v is NOT_RATED for v in values):
        return NOT_RATED
    return OPERATOR_FUNCTIONS[resolve_operator(operator)](values)

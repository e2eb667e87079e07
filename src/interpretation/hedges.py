"""
Fuzzy hedges: unary modifiers applied to a child's value.

Value hedges (not, power, multiply, limit) transform numbers and pass a
missing value (None) through. Null hedges decide what a missing value means:

- null_or: missing -> 0 (worst case inside an OR)
- not_null_and: missing -> 1 (best case inside an AND, so one missing input
  does not zero out the chain)
- null_not_rated: missing -> NOT_RATED, forcing the enclosing evaluation to
  be not rated

NOT_RATED passes through every hedge unchanged.

All hedges accept a scalar or a sequence/array and return the same shape.
"""

from typing import Optional, Sequence, Union

import numpy as np

from src.interpretation.errors import ConfigurationError
from src.interpretation.models import NOT_RATED, Hedge

HedgeInput = Union[Optional[float], Sequence[Optional[float]], np.ndarray]


def _elementwise(fn, value):
    if isinstance(value, np.ndarray):
        return np.array([fn(v) for v in value.tolist()], dtype=object if value.dtype == object else float)
    if isinstance(value, (list, tuple)):
        return type(value)(fn(v) for v in value)
    return fn(value)


def _numeric(fn):
    def apply_one(v):
        if v is None or v is NOT_RATED:
            return v
        return fn(float(v))
    return apply_one


def not_hedge(value: HedgeInput) -> HedgeInput:
    """
    Fuzzy negation, 1 - x. Involutive.

    Example:
        >>> not_hedge([0.0, 0.5, 1.0])
        [1.0, 0.5, 0.0]
    """
    return _elementwise(_numeric(lambda v: 1.0 - v), value)


def _power(v: float, power: float) -> float:
    # Fractional powers of negatives and negative powers of zero have no real value
    if (v < 0 and not float(power).is_integer()) or (v == 0 and power < 0):
        return float("nan")
    return v ** power


def power_hedge(value: HedgeInput, power: float) -> HedgeInput:
    """
    Raise to a power: concentration (power > 1) or dilation (power < 1).

    Example:
        >>> power_hedge(0.25, 0.5)
        0.5

    Results with no real value (a negative base with a fractional power,
    zero with a negative power) are NaN.
    """
    return _elementwise(_numeric(lambda v: _power(v, power)), value)


def multiply_hedge(value: HedgeInput, multiplier: float) -> HedgeInput:
    """Multiply by a constant factor."""
    return _elementwise(_numeric(lambda v: v * multiplier), value)


def limit_hedge(value: HedgeInput) -> HedgeInput:
    """Clamp to [0, 1]. Idempotent."""
    return _elementwise(_numeric(lambda v: min(1.0, max(0.0, v))), value)


def null_or_hedge(value: HedgeInput) -> HedgeInput:
    """Substitute 0 for a missing value."""
    return _elementwise(lambda v: 0.0 if v is None else v, value)


def not_null_and_hedge(value: HedgeInput) -> HedgeInput:
    """Substitute 1 for a missing value."""
    return _elementwise(lambda v: 1.0 if v is None else v, value)


def null_not_rated_hedge(value: HedgeInput) -> HedgeInput:
    """Turn a missing value into NOT_RATED so it propagates to the root."""
    return _elementwise(lambda v: NOT_RATED if v is None else v, value)


# Map hedges to functions
HEDGE_FUNCTIONS = {
    Hedge.NOT: not_hedge,
    Hedge.POWER: power_hedge,
    Hedge.MULTIPLY: multiply_hedge,
    Hedge.LIMIT: limit_hedge,
    Hedge.NULL_OR: null_or_hedge,
    Hedge.NOT_NULL_AND: not_null_and_hedge,
    Hedge.NULL_NOT_RATED: null_not_rated_hedge,
}


def apply(value: HedgeInput, hedge: Union[Hedge, str], param: Optional[float] = None) -> HedgeInput:
    """
    Apply a hedge to a value or array of values.

    Args:
        value: Child value(s); None means "not rated"
        hedge: Hedge enum (or name)
        param: Exponent for power, factor for multiply

    Returns:
        Hedged value(s), same shape as the input

    Raises:
        ConfigurationError: Unknown hedge, or missing parameter for power/multiply
    """
    if not isinstance(hedge, Hedge):
        parsed = Hedge.parse(str(hedge))
        if parsed is None:
            raise ConfigurationError(
                f"Unknown hedge '{hedge}'. Available: {[h.value for h in Hedge]}"
            )
        hedge, default_param = parsed
        param = default_param if param is None else param

    if hedge.requires_param and param is None:
        raise ConfigurationError(f"Hedge '{hedge.value}' requires a parameter")

    if hedge.requires_param:
        return HEDGE_FUNCTIONS[hedge](value, param)
    return HEDGE_FUNCTIONS[hedge](value)

"""
Evaluation curves.

All curves convert a raw property value into a fuzzy membership value,
nominally in [0, 1]. Points are (x, y) control points; x is the property
value and y the membership.

Interpolation types:
1. linear - piecewise linear between points, clamped outside the domain
2. step - piecewise constant, y of the nearest point at or below x
3. spline - natural cubic spline through all points, optional [0, 1] clamp
4. sigmoid - linear over a ramp whose y values were reconstructed by index

Crisp evaluations bypass the curves and return exactly 0 or 1.

Like the scoring transforms, the interpolators accept a scalar or a numpy
array and return the same shape.
"""

import logging
import math
from functools import lru_cache
from typing import Optional, Sequence, Union

import numpy as np
from scipy.interpolate import CubicSpline

from src.interpretation.errors import ConfigurationError, InvalidPropertyDataError
from src.interpretation.models import Evaluation, EvaluationPoint

logger = logging.getLogger(__name__)

# Type alias for values that can be scalar or array
NumericType = Union[float, np.ndarray]
PointsType = Sequence[Union[EvaluationPoint, tuple[float, float]]]


def as_number(value) -> Optional[float]:
    """
    Coerce a property value to float.

    Returns None for values that are not numeric: booleans, NaN, and
    strings that do not parse as a number.
    """
    if value is None or isinstance(value, (bool, np.bool_)):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return None
    if math.isnan(number):
        return None
    return number


def _point_arrays(points: PointsType) -> tuple[np.ndarray, np.ndarray]:
    """Sorted x and y arrays from a sequence of points."""
    if len(points) == 0:
        raise ConfigurationError("Evaluation curve has no points")
    pairs = [(p.x, p.y) if isinstance(p, EvaluationPoint) else (p[0], p[1]) for p in points]
    pairs.sort(key=lambda pair: pair[0])
    xs = np.array([pair[0] for pair in pairs], dtype=float)
    ys = np.array([pair[1] for pair in pairs], dtype=float)
    return xs, ys


def _finish(result: np.ndarray, invert: bool) -> NumericType:
    if invert:
        result = 1.0 - result
    # Return scalar if input was scalar
    if result.ndim == 0:
        return float(result)
    return result


def linear_interpolation(
    value: NumericType,
    points: PointsType,
    invert: bool = False,
) -> NumericType:
    """
    Piecewise linear membership.

    Shape (two points):
                     ________
                    /
                   /
        __________/
                 x0    x1

    Below the first point and above the last, the boundary y is returned
    (no extrapolation).

    Args:
        value: Property value(s)
        points: Curve control points, in any order
        invert: If True, return 1 - y

    Returns:
        Membership value(s)

    Example:
        >>> linear_interpolation(5.0, [(0, 0), (10, 1)])
        0.5
        >>> linear_interpolation(-5.0, [(0, 0), (10, 1)])
        0.0
    """
    xs, ys = _point_arrays(points)
    result = np.interp(np.asarray(value, dtype=float), xs, ys)
    return _finish(np.asarray(result), invert)


def step_function(
    value: NumericType,
    points: PointsType,
    invert: bool = False,
) -> NumericType:
    """
    Piecewise constant membership.

    Returns the y of the greatest point whose x is <= value. Below the first
    point, the first point's y is returned.

    Example:
        >>> step_function(7.0, [(0, 0), (5, 0.5), (10, 1)])
        0.5
    """
    xs, ys = _point_arrays(points)
    value = np.asarray(value, dtype=float)
    index = np.searchsorted(xs, value, side="right") - 1
    index = np.clip(index, 0, len(xs) - 1)
    return _finish(np.asarray(ys[index]), invert)


@lru_cache(maxsize=4096)
def _natural_spline(xs: tuple[float, ...], ys: tuple[float, ...]) -> CubicSpline:
    try:
        return CubicSpline(np.array(xs), np.array(ys), bc_type="natural")
    except ValueError as e:
        raise ConfigurationError(f"Cannot build spline through points {list(zip(xs, ys))}: {e}") from e


def spline_interpolation(
    value: NumericType,
    points: PointsType,
    invert: bool = False,
    clamp: bool = True,
) -> NumericType:
    """
    Natural cubic spline membership.

    The spline passes through every point. With three or more points it can
    overshoot [0, 1] between points; clamp=True restricts the output to
    [0, 1] after interpolating. Outside the point domain the boundary y is
    returned. Two points fall back to linear interpolation.

    Args:
        value: Property value(s)
        points: Curve control points, in any order (x values must be distinct)
        invert: If True, return 1 - y (applied after clamping)
        clamp: Restrict the result to [0, 1]

    Returns:
        Membership value(s)
    """
    xs, ys = _point_arrays(points)
    if len(xs) < 3:
        return linear_interpolation(value, points, invert=invert)

    spline = _natural_spline(tuple(xs), tuple(ys))
    value = np.asarray(value, dtype=float)
    inside = np.clip(value, xs[0], xs[-1])
    result = np.where(
        value <= xs[0], ys[0], np.where(value >= xs[-1], ys[-1], spline(inside))
    )

    if clamp:
        result = np.clip(result, 0.0, 1.0)

    return _finish(np.asarray(result), invert)


def sigmoid_points(domain_values: Sequence[float]) -> tuple[EvaluationPoint, ...]:
    """
    Reconstruct a sigmoid ramp authored with domain points only.

    The implicit range is spread evenly from 0 to 1 by point INDEX, not by
    x spacing: first point -> 0, last -> 1. Unevenly spaced domain points
    therefore give a piecewise ramp rather than a true logistic curve.
    Rating thresholds downstream are calibrated against this shape.

    Example:
        >>> [p.y for p in sigmoid_points([0, 1, 10])]
        [0.0, 0.5, 1.0]
    """
    xs = sorted(float(x) for x in domain_values)
    if len(xs) < 2:
        raise ConfigurationError(
            f"Sigmoid curve needs at least 2 domain points, got {len(xs)}"
        )
    last = len(xs) - 1
    return tuple(EvaluationPoint(x, i / last) for i, x in enumerate(xs))


def evaluate(
    value,
    evaluation: Evaluation,
    clamp_spline: bool = True,
) -> Optional[float]:
    """
    Evaluate one property value against an evaluation.

    Args:
        value: Property value (number, numeric string, category string) or None
        evaluation: Curve or crisp definition
        clamp_spline: Clamp spline output to [0, 1]

    Returns:
        Membership in [0, 1], or None when the value is missing

    Raises:
        InvalidPropertyDataError: If the value does not fit the curve domain
    """
    if value is None:
        return None

    if evaluation.predicate is not None and (evaluation.is_crisp or evaluation.points is None):
        result = 1.0 if evaluation.predicate(value) else 0.0
        return 1.0 - result if evaluation.invert else result

    if evaluation.categories is not None and isinstance(value, str):
        result = evaluation.categories.get(value.strip())
        if result is None:
            logger.debug(f"Category {value!r} not in evaluation '{evaluation.name}', rating 0")
            result = 0.0
        return 1.0 - result if evaluation.invert else result

    if evaluation.points is None:
        raise InvalidPropertyDataError(
            f"Evaluation '{evaluation.name}' has no curve for value {value!r}",
            {"evaluation": evaluation.name, "value": value},
        )

    x = as_number(value)
    if x is None:
        raise InvalidPropertyDataError(
            f"Evaluation '{evaluation.name}' expects a numeric value for "
            f"'{evaluation.property_name}', got {value!r}",
            {"evaluation": evaluation.name, "property": evaluation.property_name, "value": value},
        )

    interpolation = evaluation.interpolation
    if interpolation == "step":
        return step_function(x, evaluation.points, evaluation.invert)
    if interpolation == "spline":
        return spline_interpolation(x, evaluation.points, evaluation.invert, clamp=clamp_spline)
    # linear, and sigmoid ramps reconstructed at catalog build
    return linear_interpolation(x, evaluation.points, evaluation.invert)

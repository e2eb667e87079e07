"""
Property metadata helpers.

Categorical (choice-valued) properties carry no numeric unit; their valid
values are recovered from the string literals of the crisp expressions
that test them.
"""

import dataclasses
import logging
from typing import Iterable, Optional

from src.interpretation.crisp import string_literals
from src.interpretation.errors import ConfigurationError
from src.interpretation.models import Evaluation, Property

logger = logging.getLogger(__name__)

# Units that mark a property as a code/choice rather than a measurement
CATEGORICAL_UNITS = ("code", "choice", "class")


def is_categorical_property(unit_of_measure: Optional[str]) -> bool:
    """
    Decide whether a property is categorical from its unit of measure.

    No unit (or the literal string "null") means categorical, as do the
    explicit code/choice/class units.

    Example:
        >>> is_categorical_property("cm")
        False
        >>> is_categorical_property(None)
        True
    """
    unit = (unit_of_measure or "").strip().lower()
    if not unit or unit == "null":
        return True
    return unit in CATEGORICAL_UNITS


def extract_choices(property_name: str, evaluations: Iterable[Evaluation]) -> tuple[str, ...]:
    """
    Collect valid choice values for a property from crisp expressions.

    Args:
        property_name: Property to collect choices for
        evaluations: Evaluations to scan

    Returns:
        Sorted unique string literals from every crisp expression on the property
    """
    choices = set()
    for evaluation in evaluations:
        if evaluation.property_name != property_name or not evaluation.crisp_expression:
            continue
        try:
            choices.update(string_literals(evaluation.crisp_expression))
        except ConfigurationError as e:
            logger.warning(f"Skipping choices from evaluation '{evaluation.name}': {e}")
    return tuple(sorted(choices))


def enhance_property(prop: Property, evaluations: Iterable[Evaluation]) -> Property:
    """Return a copy of the property with categorical flag and choices filled in."""
    if not is_categorical_property(prop.unit_of_measure):
        return dataclasses.replace(prop, is_categorical=False, choices=())
    choices = extract_choices(prop.name, evaluations)
    return dataclasses.replace(prop, is_categorical=True, choices=choices)


def enhance_properties(
    properties: Iterable[Property],
    evaluations: Iterable[Evaluation],
) -> list[Property]:
    """Enhance each property with categorical metadata."""
    evaluations = list(evaluations)
    return [enhance_property(p, evaluations) for p in properties]

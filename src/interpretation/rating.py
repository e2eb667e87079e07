"""
Rating classification.

Maps a fuzzy rating onto an ordinal limitation class using an ascending
threshold table: a rating at or below a threshold gets that threshold's
class. Ratings above the last threshold get the last class.
"""

from typing import Mapping, Optional

from src import config
from src.interpretation.errors import ConfigurationError

NOT_RATED_CLASS = "not rated"


class RatingClassifier:
    """
    Classify ratings with a configurable {threshold: class} table.

    Example:
        >>> classifier = RatingClassifier()
        >>> classifier.classify(0.05)
        'slight'
        >>> classifier.classify(0.45)
        'severe'
        >>> classifier.classify(None)
        'not rated'
    """

    def __init__(self, thresholds: Optional[Mapping[float, str]] = None):
        if thresholds is None:
            thresholds = config.DEFAULT_RATING_THRESHOLDS
        if not thresholds:
            raise ConfigurationError("Rating threshold table is empty")

        table = sorted((float(t), str(label)) for t, label in thresholds.items())
        bounds = [t for t, _ in table]
        if len(set(bounds)) != len(bounds):
            raise ConfigurationError(f"Rating thresholds must be distinct, got {bounds}")

        self.thresholds = tuple(table)

    @property
    def classes(self) -> tuple[str, ...]:
        return tuple(label for _, label in self.thresholds)

    def classify(self, rating: Optional[float]) -> str:
        """Return the class label for a rating, or "not rated" for None."""
        if rating is None:
            return NOT_RATED_CLASS
        for threshold, label in self.thresholds:
            if rating <= threshold:
                return label
        return self.thresholds[-1][1]

    def to_dict(self) -> dict[float, str]:
        return dict(self.thresholds)

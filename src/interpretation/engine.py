"""
Interpretation engine facade.

Composes the catalog store, tree evaluator, rating classifier and result
cache behind the operations callers use:

    >>> engine = create_engine()
    >>> result = engine.evaluate(
    ...     "Septic Tank Absorption Fields",
    ...     {"DEPTH TO WATER TABLE": 80, "DEPTH TO BEDROCK": 50},
    ... )
    >>> result.rating_class
    'severe'

Engines are constructed explicitly and own their cache; there is no
module-level instance.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from tqdm.auto import tqdm

from src.config import EngineConfig
from src.interpretation.cache import ResultCache
from src.interpretation.catalog import (
    Catalog,
    CatalogLoader,
    CatalogStore,
    load_catalog_from_directory,
)
from src.interpretation.errors import InterpretationEngineError
from src.interpretation.evaluator import TreeEvaluator
from src.interpretation.models import (
    Evaluation,
    HierarchicalRuleNode,
    InterpretationResult,
    Property,
    PropertyData,
)
from src.interpretation.properties import enhance_properties
from src.interpretation.rating import NOT_RATED_CLASS, RatingClassifier

logger = logging.getLogger(__name__)

LoaderType = Union[CatalogLoader, Catalog, str, Path]


def _as_loader(loader: LoaderType) -> CatalogLoader:
    """Accept a loader callable, a ready Catalog, or a catalog directory."""
    if isinstance(loader, Catalog):
        return lambda: loader
    if isinstance(loader, (str, Path)):
        directory = Path(loader)
        return lambda: load_catalog_from_directory(directory)
    if not callable(loader):
        raise TypeError(f"loader must be callable, a Catalog or a directory, got {type(loader).__name__}")
    return loader


class InterpretationEngine:
    """
    Evaluate named interpretations against property data.

    Args:
        loader: Catalog source: a callable returning a Catalog (or a
            {properties, evaluations, trees} mapping), a Catalog, or a
            directory of catalog JSON files
        config: Engine settings (defaults if None)
        cache: Result cache to use; if None one is created from config
            (or none at all when config.cache_enabled is False)
    """

    def __init__(
        self,
        loader: LoaderType,
        config: Optional[EngineConfig] = None,
        cache: Optional[ResultCache] = None,
    ):
        self.config = config or EngineConfig()
        if cache is None and self.config.cache_enabled:
            cache = ResultCache(max_size=self.config.cache_max_size, ttl=self.config.cache_ttl)
        self.cache = cache
        self.classifier = RatingClassifier(self.config.rating_thresholds)
        self._store = CatalogStore(
            _as_loader(loader), ttl=self.config.catalog_ttl, on_swap=self._on_catalog_swap
        )

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    def _on_catalog_swap(self, catalog: Catalog) -> None:
        # results computed against the old snapshot are stale
        if self.cache is not None and len(self.cache):
            self.cache.clear()

    def initialize(self) -> "InterpretationEngine":
        """
        Load the catalog.

        Raises:
            ConfigurationError: If the catalog data is invalid
        """
        catalog = self._store.refresh()
        logger.info(f"Interpretation engine initialized with {len(catalog.trees)} interpretations")
        return self

    @property
    def catalog(self) -> Catalog:
        """Current catalog snapshot (loaded on first use)."""
        return self._store.get()

    def refresh_catalog(self) -> Catalog:
        """Reload the catalog now and drop cached results."""
        return self._store.refresh()

    def _cache_scope(self, catalog: Catalog) -> str:
        """Catalog version plus every setting that changes a result."""
        thresholds = ",".join(f"{k}={v}" for k, v in sorted(self.config.rating_thresholds.items()))
        return (
            f"{catalog.loaded_at.isoformat()}#{id(catalog)}"
            f"|{self.config.missing_data}|clamp={self.config.clamp_spline}|{thresholds}"
        )

    def _evaluator(self, catalog: Catalog) -> TreeEvaluator:
        return TreeEvaluator(
            catalog.evaluation_index,
            classifier=self.classifier,
            missing_data=self.config.missing_data,
            clamp_spline=self.config.clamp_spline,
        )

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def evaluate(self, interpretation_name: str, property_data: PropertyData) -> InterpretationResult:
        """
        Evaluate one interpretation for one subject.

        Args:
            interpretation_name: Interpretation (rule) name
            property_data: Property values by property name

        Returns:
            InterpretationResult

        Raises:
            InterpretationNotFoundError: Unknown interpretation
            InvalidPropertyDataError: A value does not fit its curve
            EvaluationError: Unexpected failure during the tree walk
        """
        catalog = self.catalog
        tree = catalog.get_tree(interpretation_name)

        scope = self._cache_scope(catalog)
        if self.cache is not None and isinstance(property_data, Mapping):
            cached = self.cache.get(interpretation_name, property_data, scope)
            if cached is not None:
                logger.debug(f"Cache hit for '{interpretation_name}'")
                return cached

        result = self._evaluator(catalog).evaluate(tree, property_data)

        if self.cache is not None:
            self.cache.set(interpretation_name, property_data, result, scope)
        return result

    def _evaluate_isolated(self, interpretation_name: str, index: int, record) -> InterpretationResult:
        try:
            return self.evaluate(interpretation_name, record)
        except InterpretationEngineError as e:
            logger.warning(f"Record {index} of '{interpretation_name}' failed: {e}")
            return InterpretationResult(
                interpretation=interpretation_name,
                rating=None,
                rating_class=NOT_RATED_CLASS,
                property_values=dict(record) if isinstance(record, Mapping) else {},
                evaluation_results={},
                error=e.to_dict(),
            )

    def batch_evaluate(
        self,
        interpretation_name: str,
        records: Iterable[PropertyData],
        max_workers: Optional[int] = None,
        show_progress: bool = False,
    ) -> list[InterpretationResult]:
        """
        Evaluate one interpretation for many subjects.

        Failures are isolated per record: a record that raises gets a
        not-rated result with ``error`` set, and the other records are
        unaffected. An unknown interpretation fails the whole batch.

        Args:
            interpretation_name: Interpretation (rule) name
            records: Property data per subject
            max_workers: Worker threads (default: config.max_workers; 1 = sequential)
            show_progress: Show a tqdm progress bar

        Returns:
            Results in input order

        Raises:
            InterpretationNotFoundError: Unknown interpretation
        """
        self.catalog.get_tree(interpretation_name)
        records = list(records)
        workers = max_workers or self.config.max_workers
        desc = f"Evaluating {interpretation_name}"

        if workers <= 1 or len(records) <= 1:
            results = [
                self._evaluate_isolated(interpretation_name, i, record)
                for i, record in enumerate(tqdm(records, desc=desc, disable=not show_progress))
            ]
        else:
            results: list[Optional[InterpretationResult]] = [None] * len(records)
            with ThreadPoolExecutor(max_workers=workers) as executor:
                future_map = {
                    executor.submit(self._evaluate_isolated, interpretation_name, i, record): i
                    for i, record in enumerate(records)
                }
                with tqdm(total=len(records), desc=desc, disable=not show_progress) as pbar:
                    for future in as_completed(future_map):
                        results[future_map[future]] = future.result()
                        pbar.update(1)

        failed = sum(1 for r in results if r.error is not None)
        if failed:
            logger.warning(f"Batch '{interpretation_name}': {failed}/{len(results)} records failed")
        else:
            logger.debug(f"Batch '{interpretation_name}': {len(results)} records evaluated")
        return results

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def list_interpretations(self) -> list[str]:
        return self.catalog.interpretation_names()

    def get_required_properties(self, interpretation_name: str) -> list[Property]:
        """Properties read by an interpretation, with categorical metadata filled in."""
        catalog = self.catalog
        tree = catalog.get_tree(interpretation_name)
        return enhance_properties(tree.required_properties, catalog.evaluations.values())

    def get_rule_tree(self, interpretation_name: str) -> tuple[HierarchicalRuleNode, ...]:
        return self.catalog.get_tree(interpretation_name).root

    def get_evaluation(self, key: str) -> Evaluation:
        return self.catalog.get_evaluation(key)

    def get_property(self, key: str) -> Property:
        return self.catalog.get_property(key)

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Cache statistics plus catalog counts."""
        stats = {"cache": self.cache.get_stats() if self.cache is not None else None}
        if self._store.is_loaded:
            stats["catalog"] = self.catalog.stats()
        return stats

    def clear(self) -> None:
        """Drop all cached results."""
        if self.cache is not None:
            self.cache.clear()

    def prune(self) -> int:
        """Drop expired cached results; returns the number removed."""
        if self.cache is None:
            return 0
        return self.cache.prune()


def create_engine(
    loader: Optional[LoaderType] = None,
    config: Optional[Union[EngineConfig, Mapping[str, Any]]] = None,
    cache: Optional[ResultCache] = None,
) -> InterpretationEngine:
    """
    Create and initialize an engine.

    Args:
        loader: Catalog source (default: the data/catalog directory)
        config: EngineConfig or a dictionary accepted by EngineConfig.from_dict
        cache: Shared result cache, if any

    Returns:
        Initialized InterpretationEngine
    """
    if isinstance(config, Mapping):
        config = EngineConfig.from_dict(dict(config))
    if loader is None:
        loader = load_catalog_from_directory
    return InterpretationEngine(loader, config=config, cache=cache).initialize()

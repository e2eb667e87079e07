"""
Interpretation catalog: properties, evaluations and rule trees.

A Catalog is an immutable snapshot built once from loader output. Building
does all the checking up front, so evaluation never meets bad catalog data:

- evaluation XML is parsed (DomainPoints / RangePoints / CrispExpression)
- sigmoid curves authored with domain points only get their ramp rebuilt
- source evaluation types are mapped onto curve interpolations
- crisp expressions are compiled
- rule trees are normalized and every leaf reference is resolved to a
  usable evaluation and a known property

CatalogStore holds the current snapshot and replaces it whole on reload.
"""

import json
import logging
import threading
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from src import config
from src.interpretation.curves import as_number, sigmoid_points
from src.interpretation.errors import ConfigurationError, InterpretationNotFoundError
from src.interpretation.models import (
    Evaluation,
    EvaluationPoint,
    InterpretationTree,
    NodeKind,
    Property,
)
from src.interpretation.normalizer import normalize
from src.interpretation.properties import is_categorical_property

logger = logging.getLogger(__name__)

# Source evaluation type -> interpolation, for curves with points
INTERPOLATION_BY_TYPE = {
    "arbitrarycurve": "spline",
    "arbitrarylinear": "linear",
    "linear": "linear",
    "trapezoid": "linear",
    "triangle": "linear",
    "sigmoid": "sigmoid",
    "crisp": "step",
}

_TRUE_STRINGS = ("1", "true", "yes", "y", "t")


def _first(data: Mapping[str, Any], *keys: str, default=None):
    """Value of the first key present with a non-empty value."""
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return default


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _find(root: ET.Element, name: str) -> Optional[ET.Element]:
    for element in root.iter():
        if _local_name(element.tag) == name:
            return element
    return None


def _values(element: Optional[ET.Element]) -> list[str]:
    if element is None:
        return []
    return [(child.text or "").strip() for child in element if (child.text or "").strip()]


# =============================================================================
# EVALUATION XML
# =============================================================================


def parse_evaluation_xml(xml_text: str, evaluation_type: Optional[str] = None) -> dict[str, Any]:
    """
    Parse an evaluation definition stored as XML.

    Recognized elements (namespaces ignored)::

        <DomainPoints><double>0</double><double>10</double></DomainPoints>
        <RangePoints><double>0</double><double>1</double></RangePoints>
        <CrispExpression>= "well"</CrispExpression>

    Numeric domain points with matching range points give a curve. String
    domain points with matching range points give a categorical mapping.
    A sigmoid with domain points but no range points gets its ramp rebuilt
    by index (see curves.sigmoid_points).

    Args:
        xml_text: XML source
        evaluation_type: Source evaluation type, used for the sigmoid case

    Returns:
        Dictionary with "points", "categories" and "crisp_expression" (each may be None)

    Raises:
        ConfigurationError: If the XML is malformed
    """
    parsed = {"points": None, "categories": None, "crisp_expression": None}
    if not xml_text or not xml_text.strip():
        return parsed

    try:
        root = ET.fromstring(xml_text.strip())
    except ET.ParseError as e:
        raise ConfigurationError(f"Malformed evaluation XML: {e}") from e

    crisp = _find(root, "CrispExpression")
    if crisp is not None and (crisp.text or "").strip():
        parsed["crisp_expression"] = crisp.text.strip()

    domain = _values(_find(root, "DomainPoints"))
    ranges = _values(_find(root, "RangePoints"))
    if not domain:
        return parsed

    numeric_domain = [as_number(v) for v in domain]
    numeric_range = [as_number(v) for v in ranges]

    if all(x is not None for x in numeric_domain):
        if not ranges and (evaluation_type or "").lower() == "sigmoid":
            parsed["points"] = sigmoid_points(numeric_domain)
        elif len(ranges) == len(domain) and all(y is not None for y in numeric_range):
            parsed["points"] = tuple(
                EvaluationPoint(x, y) for x, y in zip(numeric_domain, numeric_range)
            )
        else:
            logger.debug(
                f"Unpaired curve points ({len(domain)} domain, {len(ranges)} range); no curve built"
            )
    elif len(ranges) == len(domain) and all(y is not None for y in numeric_range):
        parsed["categories"] = dict(zip(domain, numeric_range))

    return parsed


# =============================================================================
# RECORD CONVERSION
# =============================================================================


def property_from_record(data: Union[Property, Mapping[str, Any]]) -> Property:
    """Build a Property from a catalog record (original or snake_case keys)."""
    if isinstance(data, Property):
        return data

    name = _first(data, "name", "propname")
    if name is None:
        raise ConfigurationError(f"Property record has no name: {dict(data)}")
    unit = _first(data, "unit_of_measure", "propuom")
    categorical = _first(data, "is_categorical", "isCategorical")
    choices = _first(data, "choices", default=())

    return Property(
        id=str(_first(data, "id", "propiid", default=name)),
        name=str(name),
        unit_of_measure=unit,
        min=as_number(_first(data, "min", "propmin")),
        max=as_number(_first(data, "max", "propmax")),
        modifier=_first(data, "modifier", "propmod"),
        is_categorical=is_categorical_property(unit) if categorical is None else _as_bool(categorical),
        description=_first(data, "description", "propdesc"),
        choices=tuple(str(c) for c in choices),
    )


def _points_from_record(raw) -> Optional[tuple[EvaluationPoint, ...]]:
    if not raw:
        return None
    points = []
    for point in raw:
        try:
            if isinstance(point, EvaluationPoint):
                points.append(point)
            elif isinstance(point, Mapping):
                points.append(EvaluationPoint(float(point["x"]), float(point["y"])))
            else:
                x, y = point
                points.append(EvaluationPoint(float(x), float(y)))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid curve point {point!r}: {e}") from e
    return tuple(points)


def evaluation_from_record(
    data: Union[Evaluation, Mapping[str, Any]],
    properties_by_id: Optional[Mapping[str, Property]] = None,
) -> Evaluation:
    """
    Build an Evaluation from a catalog record.

    Explicit ``points``/``interpolation``/``crispExpression`` fields win over
    what the embedded XML says. The property may be given by name or, via
    ``propiid``, by id.

    Raises:
        ConfigurationError: Malformed XML, bad points or an unparseable crisp expression
    """
    if isinstance(data, Evaluation):
        return data

    name = _first(data, "name", "evalname")
    if name is None:
        raise ConfigurationError(f"Evaluation record has no name: {dict(data)}")
    eval_type = str(_first(data, "type", "evaluationtype", default="fuzzy"))

    property_name = _first(data, "property_name", "propname")
    if property_name is None and properties_by_id is not None:
        prop = properties_by_id.get(str(_first(data, "propiid", default="")))
        property_name = prop.name if prop is not None else None
    if property_name is None:
        raise ConfigurationError(f"Evaluation '{name}' does not name its property")

    xml_text = _first(data, "eval", "evalxml", "xml")
    parsed = parse_evaluation_xml(xml_text, eval_type) if xml_text else {}

    points = _points_from_record(_first(data, "points")) or parsed.get("points")
    crisp_expression = _first(data, "crisp_expression", "crispExpression") or parsed.get(
        "crisp_expression"
    )
    categories = _first(data, "categories") or parsed.get("categories")

    interpolation = _first(data, "interpolation")
    if interpolation is None:
        interpolation = INTERPOLATION_BY_TYPE.get(eval_type.lower(), "linear") if points else "linear"

    return Evaluation(
        id=str(_first(data, "id", "evaliid", default=name)),
        name=str(name),
        property_name=str(property_name),
        type=eval_type,
        invert=_as_bool(_first(data, "invert", "invertevaluationresults", default=False)),
        points=points,
        interpolation=interpolation,
        crisp_expression=crisp_expression,
        categories=categories,
        description=_first(data, "description", "evaldesc"),
    )


def _tree_name(data: Mapping[str, Any]) -> str:
    name = _first(data, "name", "rulename")
    # some exports store the name as a one-element list
    if isinstance(name, (list, tuple)):
        name = name[0] if name else None
    if name is None:
        raise ConfigurationError("Interpretation record has no name")
    return str(name)


def _tree_nodes(data: Mapping[str, Any]) -> list:
    nodes = _first(data, "tree", "nodes", "root")
    if nodes is None:
        return []
    if isinstance(nodes, Mapping):
        return [nodes]
    return list(nodes)


# =============================================================================
# CATALOG SNAPSHOT
# =============================================================================


@dataclass(frozen=True)
class Catalog:
    """
    Immutable catalog snapshot.

    Attributes:
        properties: Properties by id
        evaluations: Evaluations by id
        trees: Interpretation trees by name, in catalog order
        loaded_at: Build time (UTC)
    """

    properties: Mapping[str, Property]
    evaluations: Mapping[str, Evaluation]
    trees: Mapping[str, InterpretationTree]
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _property_names: Mapping[str, Property] = field(init=False, repr=False, compare=False)
    _evaluation_index: Mapping[str, Evaluation] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))
        object.__setattr__(self, "evaluations", MappingProxyType(dict(self.evaluations)))
        object.__setattr__(self, "trees", MappingProxyType(dict(self.trees)))

        by_name = {}
        for prop in self.properties.values():
            by_name.setdefault(prop.name, prop)
        object.__setattr__(self, "_property_names", MappingProxyType(by_name))

        # ids take precedence over names when both match a reference
        index = {}
        for evaluation in self.evaluations.values():
            index.setdefault(evaluation.name, evaluation)
        index.update(self.evaluations)
        object.__setattr__(self, "_evaluation_index", MappingProxyType(index))

    @property
    def evaluation_index(self) -> Mapping[str, Evaluation]:
        """Evaluations keyed by both id and name, for resolving leaf references."""
        return self._evaluation_index

    def get_property(self, key: str) -> Property:
        """Look up a property by id, then by name."""
        prop = self.properties.get(str(key)) or self._property_names.get(str(key))
        if prop is None:
            raise InterpretationNotFoundError(str(key), kind="Property")
        return prop

    def get_evaluation(self, key: str) -> Evaluation:
        """Look up an evaluation by id, then by name."""
        evaluation = self._evaluation_index.get(str(key))
        if evaluation is None:
            raise InterpretationNotFoundError(str(key), kind="Evaluation")
        return evaluation

    def get_tree(self, name: str) -> InterpretationTree:
        tree = self.trees.get(name)
        if tree is None:
            raise InterpretationNotFoundError(name)
        return tree

    def interpretation_names(self) -> list[str]:
        return list(self.trees)

    def stats(self) -> dict[str, Any]:
        return {
            "properties": len(self.properties),
            "evaluations": len(self.evaluations),
            "interpretations": len(self.trees),
            "loaded_at": self.loaded_at.isoformat(),
        }


def _index_unique(items: Iterable, kind: str) -> dict:
    index = {}
    for item in items:
        if item.id in index:
            raise ConfigurationError(f"Duplicate {kind} id '{item.id}'")
        index[item.id] = item
    return index


def _build_tree(
    data: Union[InterpretationTree, Mapping[str, Any]],
    evaluation_index: Mapping[str, Evaluation],
    properties_by_name: Mapping[str, Property],
) -> InterpretationTree:
    if isinstance(data, InterpretationTree):
        name, tree_id, roots = data.name, data.id, data.root
    else:
        name = _tree_name(data)
        tree_id = str(_first(data, "id", "interpiid", "ruleiid", default=name))
        try:
            roots = normalize(_tree_nodes(data))
        except ConfigurationError as e:
            raise ConfigurationError(
                f"Interpretation '{name}': {e.message}", {"interpretation": name}
            ) from e

    required = {}
    for node in (n for root in roots for n in root.iter_nodes()):
        if node.kind != NodeKind.EVALUATION:
            continue
        evaluation = evaluation_index.get(node.ref_id)
        if evaluation is None:
            raise ConfigurationError(
                f"Interpretation '{name}' references unknown evaluation '{node.ref_id}'",
                {"interpretation": name, "ref_id": node.ref_id},
            )
        if not evaluation.is_usable:
            raise ConfigurationError(
                f"Evaluation '{evaluation.name}' used by '{name}' has no curve, "
                f"categories or crisp expression",
                {"interpretation": name, "evaluation": evaluation.name},
            )
        prop = properties_by_name.get(evaluation.property_name)
        if prop is None:
            raise ConfigurationError(
                f"Evaluation '{evaluation.name}' reads unknown property '{evaluation.property_name}'",
                {"interpretation": name, "evaluation": evaluation.name},
            )
        required.setdefault(prop.name, prop)

    return InterpretationTree(
        id=tree_id, name=name, root=tuple(roots), required_properties=tuple(required.values())
    )


def build_catalog(
    properties: Iterable[Union[Property, Mapping[str, Any]]],
    evaluations: Iterable[Union[Evaluation, Mapping[str, Any]]],
    trees: Iterable[Union[InterpretationTree, Mapping[str, Any]]],
) -> Catalog:
    """
    Build and validate a catalog snapshot.

    Args:
        properties: Property objects or catalog records
        evaluations: Evaluation objects or catalog records
        trees: InterpretationTree objects or records with a name and a flat
            (or nested) ``tree`` node list

    Returns:
        Catalog snapshot

    Raises:
        ConfigurationError: On any inconsistency (duplicate ids, unknown
            references, unusable curves, malformed trees or expressions)

    Example:
        >>> catalog = build_catalog(
        ...     properties=[{"propiid": 1, "propname": "slope", "propuom": "percent"}],
        ...     evaluations=[{"evaliid": 10, "evalname": "Slope steep", "propname": "slope",
        ...                   "points": [{"x": 8, "y": 0}, {"x": 15, "y": 1}]}],
        ...     trees=[{"rulename": "Slope limitation",
        ...             "tree": [{"levelName": "Slope limitation"},
        ...                      {"levelName": " °--Slope steep", "RefId": "10"}]}],
        ... )
        >>> catalog.interpretation_names()
        ['Slope limitation']
    """
    props = _index_unique((property_from_record(p) for p in properties), "property")
    evals = _index_unique(
        (evaluation_from_record(e, props) for e in evaluations), "evaluation"
    )

    snapshot = Catalog(properties=props, evaluations=evals, trees={})

    built = {}
    for record in trees:
        tree = _build_tree(record, snapshot.evaluation_index, snapshot._property_names)
        if tree.name in built:
            logger.warning(f"Duplicate interpretation '{tree.name}'; keeping the first")
            continue
        built[tree.name] = tree

    catalog = Catalog(properties=props, evaluations=evals, trees=built)
    logger.info(
        f"Built catalog: {len(props)} properties, {len(evals)} evaluations, "
        f"{len(built)} interpretations"
    )
    return catalog


# =============================================================================
# LOADING
# =============================================================================


def _read_json(path: Path):
    if not path.exists():
        raise ConfigurationError(f"Catalog file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e


def load_catalog_from_directory(directory: Optional[Union[str, Path]] = None) -> Catalog:
    """
    Load a catalog from static JSON files.

    Expects ``properties.json``, ``evaluations.json`` and
    ``interpretation_trees.json``, each holding a list of records.

    Args:
        directory: Catalog directory (default: data/catalog in the project root)

    Returns:
        Catalog snapshot
    """
    directory = Path(directory) if directory is not None else config.CATALOG_DIR
    logger.info(f"Loading catalog from {directory}")

    payload = {}
    for key, filename in (
        ("properties", config.PROPERTIES_FILE),
        ("evaluations", config.EVALUATIONS_FILE),
        ("trees", config.TREES_FILE),
    ):
        records = _read_json(directory / filename)
        if not isinstance(records, list):
            raise ConfigurationError(f"{filename} must contain a list, got {type(records).__name__}")
        payload[key] = records

    return build_catalog(**payload)


CatalogLoader = Callable[[], Union[Catalog, Mapping[str, Any]]]


def _as_catalog(loaded) -> Catalog:
    if isinstance(loaded, Catalog):
        return loaded
    if isinstance(loaded, Mapping):
        return build_catalog(
            loaded.get("properties", ()),
            loaded.get("evaluations", ()),
            loaded.get("trees", ()),
        )
    raise ConfigurationError(
        f"Catalog loader returned {type(loaded).__name__}; expected a Catalog or a mapping"
    )


class CatalogStore:
    """
    Holder of the current catalog snapshot with TTL-based reload.

    Readers always see one whole snapshot: a reload builds the new catalog
    completely, then swaps the reference under the lock. If a reload fails
    the previous snapshot stays in place.

    Attributes:
        loader: Callable returning a Catalog or a {properties, evaluations, trees} mapping
        ttl: Seconds before the snapshot is reloaded (None = never)
    """

    def __init__(
        self,
        loader: CatalogLoader,
        ttl: Optional[float] = config.DEFAULT_CATALOG_TTL,
        clock: Callable[[], float] = time.monotonic,
        on_swap: Optional[Callable[[Catalog], None]] = None,
    ):
        self.loader = loader
        self.ttl = ttl
        self._clock = clock
        self._on_swap = on_swap
        self._catalog: Optional[Catalog] = None
        self._loaded_at: Optional[float] = None
        self._lock = threading.RLock()

    @property
    def is_loaded(self) -> bool:
        return self._catalog is not None

    def _expired(self) -> bool:
        return self.ttl is not None and self._clock() - self._loaded_at > self.ttl

    def _load(self) -> Catalog:
        catalog = _as_catalog(self.loader())
        with self._lock:
            self._catalog = catalog
            self._loaded_at = self._clock()
        if self._on_swap is not None:
            self._on_swap(catalog)
        return catalog

    def refresh(self) -> Catalog:
        """
        Reload the catalog now.

        Raises:
            ConfigurationError: If the new catalog is invalid (previous snapshot kept)
        """
        with self._lock:
            catalog = self._load()
        logger.info(f"Catalog refreshed: {catalog.stats()}")
        return catalog

    def get(self) -> Catalog:
        """
        Current snapshot, loading on first use and reloading after ttl.

        A failed TTL reload is logged and the stale snapshot keeps serving
        until the next ttl period.
        """
        with self._lock:
            if self._catalog is None:
                return self._load()
            if not self._expired():
                return self._catalog

            try:
                return self._load()
            except Exception as e:
                logger.error(f"Catalog reload failed, keeping previous snapshot: {e}")
                self._loaded_at = self._clock()
                return self._catalog

"""
Tests for the interpretation engine facade.

End-to-end evaluation over the sample catalog, result caching, batch
evaluation and introspection.
"""

import pytest

DWELLINGS = "Dwellings With Basements"
SEPTIC = "Septic Tank Absorption Fields"
SLOPE_AND_TEST = "Slope And Test"


@pytest.fixture
def dwellings_data():
    """Slope 0.5, wetness sum(0.75, 0.0), bedrock missing behind null_or."""
    return {
        "SLOPE PERCENT": 11.5,
        "DEPTH TO WATER TABLE": 45,
        "FLOODING FREQUENCY": "none",
    }


# =============================================================================
# EVALUATION TESTS
# =============================================================================


class TestEvaluate:
    """Test single-subject evaluation."""

    def test_dwellings(self, engine, dwellings_data):
        result = engine.evaluate(DWELLINGS, dwellings_data)

        assert result.interpretation == DWELLINGS
        assert result.rating == pytest.approx(0.75)
        assert result.rating_class == "very severe"
        assert result.error is None

    def test_dwellings_node_values(self, engine, dwellings_data):
        results = engine.evaluate(DWELLINGS, dwellings_data).evaluation_results

        assert results["101"] == pytest.approx(0.5)
        assert results["102"] == pytest.approx(0.75)
        assert results["103"] == 0.0
        assert results["node:0/0/1"] == pytest.approx(0.75)
        assert results["104"] is None
        assert results["node:0/0/2"] == 0.0

    def test_property_values_include_missing(self, engine, dwellings_data):
        values = engine.evaluate(DWELLINGS, dwellings_data).property_values

        assert values["SLOPE PERCENT"] == 11.5
        assert values["DEPTH TO BEDROCK"] is None

    def test_crisp_match_drives_rating(self, engine, dwellings_data):
        data = dict(dwellings_data, **{"FLOODING FREQUENCY": "frequent"})
        result = engine.evaluate(DWELLINGS, data)

        assert result.evaluation_results["103"] == 1.0
        assert result.rating == pytest.approx(1.0)

    def test_septic_hedged_spline(self, engine):
        result = engine.evaluate(SEPTIC, {"DEPTH TO WATER TABLE": 80, "DEPTH TO BEDROCK": 50})

        assert result.evaluation_results["102"] == pytest.approx(0.25)
        assert result.evaluation_results["104"] == pytest.approx(0.6)
        assert result.rating == pytest.approx(0.36)
        assert result.rating_class == "severe"

    def test_missing_leaf_under_and_is_not_rated(self, engine):
        result = engine.evaluate(SLOPE_AND_TEST, {"TEST VALUE": 5})

        assert result.rating is None
        assert result.rating_class == "not rated"
        assert not result.is_rated

    def test_unknown_interpretation(self, engine):
        from src.interpretation.errors import InterpretationNotFoundError

        with pytest.raises(InterpretationNotFoundError, match="Interpretation not found: Nope"):
            engine.evaluate("Nope", {})

    def test_invalid_value_raises(self, engine):
        from src.interpretation.errors import InvalidPropertyDataError

        with pytest.raises(InvalidPropertyDataError, match="SLOPE PERCENT"):
            engine.evaluate(SLOPE_AND_TEST, {"SLOPE PERCENT": "steep", "TEST VALUE": 5})

    def test_ignore_policy_from_config(self, sample_catalog):
        from src.config import EngineConfig
        from src.interpretation.engine import InterpretationEngine

        engine = InterpretationEngine(sample_catalog, config=EngineConfig(missing_data="ignore")).initialize()
        result = engine.evaluate(SLOPE_AND_TEST, {"TEST VALUE": 5})
        assert result.rating == pytest.approx(0.5)


# =============================================================================
# CACHE TESTS
# =============================================================================


class TestEngineCache:
    """Test result memoization through the engine."""

    def test_repeat_returns_identical_object(self, engine, dwellings_data):
        first = engine.evaluate(DWELLINGS, dwellings_data)
        second = engine.evaluate(DWELLINGS, dict(reversed(list(dwellings_data.items()))))

        assert second is first
        assert engine.get_stats()["cache"]["hits"] == 1

    def test_different_interpretations_cached_separately(self, engine):
        data = {"SLOPE PERCENT": 15, "TEST VALUE": 5, "DEPTH TO WATER TABLE": 80, "DEPTH TO BEDROCK": 50}
        engine.evaluate(SLOPE_AND_TEST, data)
        engine.evaluate(SEPTIC, data)

        assert engine.get_stats()["cache"]["size"] == 2

    def test_clear_and_prune(self, engine, dwellings_data):
        engine.evaluate(DWELLINGS, dwellings_data)
        assert engine.prune() == 0

        engine.clear()
        assert engine.get_stats()["cache"]["size"] == 0

    def test_refresh_catalog_drops_cached_results(self, engine, dwellings_data):
        first = engine.evaluate(DWELLINGS, dwellings_data)
        engine.refresh_catalog()

        assert engine.get_stats()["cache"]["size"] == 0
        assert engine.evaluate(DWELLINGS, dwellings_data) is not first

    def test_cache_disabled(self, sample_catalog, dwellings_data):
        from src.config import EngineConfig
        from src.interpretation.engine import InterpretationEngine

        engine = InterpretationEngine(sample_catalog, config=EngineConfig(cache_enabled=False)).initialize()
        first = engine.evaluate(DWELLINGS, dwellings_data)

        assert engine.evaluate(DWELLINGS, dwellings_data) is not first
        assert engine.get_stats()["cache"] is None
        assert engine.prune() == 0

    def test_shared_cache(self, sample_catalog, dwellings_data):
        from src.interpretation.cache import ResultCache
        from src.interpretation.engine import InterpretationEngine

        cache = ResultCache(max_size=10)
        engine = InterpretationEngine(sample_catalog, cache=cache).initialize()
        engine.evaluate(DWELLINGS, dwellings_data)

        assert len(cache) == 1

    def test_shared_cache_keeps_missing_data_policies_apart(self, sample_catalog):
        from src.config import EngineConfig
        from src.interpretation.cache import ResultCache
        from src.interpretation.engine import InterpretationEngine

        cache = ResultCache(max_size=10)
        strict = InterpretationEngine(sample_catalog, cache=cache).initialize()
        lenient = InterpretationEngine(
            sample_catalog, config=EngineConfig(missing_data="ignore"), cache=cache
        ).initialize()
        data = {"TEST VALUE": 5}

        assert strict.evaluate(SLOPE_AND_TEST, data).rating is None
        assert lenient.evaluate(SLOPE_AND_TEST, data).rating == pytest.approx(0.5)
        assert strict.evaluate(SLOPE_AND_TEST, data).rating is None
        assert len(cache) == 2

    def test_shared_cache_keeps_catalog_versions_apart(
        self, sample_catalog, sample_properties, sample_evaluations, sample_trees
    ):
        """An engine on a newer catalog never reads results from an older one."""
        from src.interpretation.cache import ResultCache
        from src.interpretation.catalog import build_catalog
        from src.interpretation.engine import InterpretationEngine

        flipped = [
            dict(e, points=[{"x": 0, "y": 1}, {"x": 10, "y": 0}]) if e["evaliid"] == 105 else e
            for e in sample_evaluations
        ]
        newer = build_catalog(sample_properties, flipped, sample_trees)

        cache = ResultCache(max_size=10)
        old_engine = InterpretationEngine(sample_catalog, cache=cache).initialize()
        new_engine = InterpretationEngine(newer, cache=cache).initialize()
        data = {"SLOPE PERCENT": 15, "TEST VALUE": 2}

        assert old_engine.evaluate(SLOPE_AND_TEST, data).rating == pytest.approx(0.2)
        assert new_engine.evaluate(SLOPE_AND_TEST, data).rating == pytest.approx(0.8)


# =============================================================================
# BATCH TESTS
# =============================================================================


class TestBatchEvaluate:
    """Test many-subject evaluation with per-record isolation."""

    @pytest.fixture
    def records(self):
        return [
            {"SLOPE PERCENT": 15, "TEST VALUE": 5},
            {"SLOPE PERCENT": "steep", "TEST VALUE": 5},
            {"SLOPE PERCENT": 8, "TEST VALUE": 10},
            {"TEST VALUE": 10},
        ]

    def test_sequential_order_and_isolation(self, engine, records):
        results = engine.batch_evaluate(SLOPE_AND_TEST, records)

        assert [r.rating for r in results] == [pytest.approx(0.5), None, pytest.approx(0.0), None]
        assert [r.rating_class for r in results] == ["severe", "not rated", "slight", "not rated"]

    def test_failed_record_carries_error(self, engine, records):
        results = engine.batch_evaluate(SLOPE_AND_TEST, records)

        failed = results[1]
        assert failed.error["code"] == "INVALID_PROPERTY_DATA"
        assert failed.error["type"] == "InvalidPropertyDataError"
        assert failed.property_values["SLOPE PERCENT"] == "steep"
        assert results[3].error is None

    def test_parallel_matches_sequential(self, sample_catalog, records):
        from src.config import EngineConfig
        from src.interpretation.engine import InterpretationEngine

        sequential = InterpretationEngine(sample_catalog, config=EngineConfig(cache_enabled=False))
        parallel = InterpretationEngine(sample_catalog, config=EngineConfig(cache_enabled=False))

        many = records * 25
        expected = [r.rating for r in sequential.batch_evaluate(SLOPE_AND_TEST, many)]
        actual = [r.rating for r in parallel.batch_evaluate(SLOPE_AND_TEST, many, max_workers=4)]

        assert actual == expected

    def test_non_mapping_record_isolated(self, engine):
        results = engine.batch_evaluate(SLOPE_AND_TEST, [{"SLOPE PERCENT": 15, "TEST VALUE": 5}, [1, 2]])

        assert results[0].rating == pytest.approx(0.5)
        assert results[1].error["code"] == "INVALID_PROPERTY_DATA"
        assert dict(results[1].property_values) == {}

    def test_unknown_interpretation_fails_batch(self, engine):
        from src.interpretation.errors import InterpretationNotFoundError

        with pytest.raises(InterpretationNotFoundError):
            engine.batch_evaluate("Nope", [{}])

    def test_empty_batch(self, engine):
        assert engine.batch_evaluate(SLOPE_AND_TEST, []) == []

    def test_accepts_generator(self, engine):
        records = ({"SLOPE PERCENT": s, "TEST VALUE": 10} for s in (8, 15))
        results = engine.batch_evaluate(SLOPE_AND_TEST, records, show_progress=True)

        assert [r.rating for r in results] == [pytest.approx(0.0), pytest.approx(1.0)]


# =============================================================================
# INTROSPECTION TESTS
# =============================================================================


class TestIntrospection:
    """Test catalog queries exposed by the engine."""

    def test_list_interpretations(self, engine):
        assert engine.list_interpretations() == [DWELLINGS, SEPTIC, SLOPE_AND_TEST]

    def test_required_properties_with_choices(self, engine):
        props = {p.name: p for p in engine.get_required_properties(DWELLINGS)}

        assert list(props) == [
            "SLOPE PERCENT",
            "DEPTH TO WATER TABLE",
            "FLOODING FREQUENCY",
            "DEPTH TO BEDROCK",
        ]
        flooding = props["FLOODING FREQUENCY"]
        assert flooding.is_categorical
        assert flooding.choices == ("frequent", "very frequent")
        assert not props["SLOPE PERCENT"].is_categorical
        assert props["SLOPE PERCENT"].choices == ()

    def test_get_rule_tree(self, engine):
        from src.interpretation.models import Hedge, NodeKind

        (root,) = engine.get_rule_tree(SEPTIC)
        either = root.children[0]
        hedge = either.children[1]

        assert root.kind == NodeKind.ROOT
        assert hedge.hedge == Hedge.POWER
        assert hedge.hedge_param == 2.0
        assert hedge.children[0].ref_id == "104"

    def test_serialization(self, engine):
        (root,) = engine.get_rule_tree(SEPTIC)
        tree = root.to_dict()

        assert tree["kind"] == "root"
        assert tree["children"][0]["operator"] == "or"
        assert tree["children"][0]["children"][1]["hedge"] == "power"

        result = engine.evaluate(SEPTIC, {"DEPTH TO WATER TABLE": 80, "DEPTH TO BEDROCK": 50}).to_dict()
        assert result["rating_class"] == "severe"
        assert result["error"] is None
        assert isinstance(result["timestamp"], str)

    def test_get_evaluation_and_property(self, engine):
        assert engine.get_evaluation("Flooding frequent").id == "103"
        assert engine.get_property("3").name == "FLOODING FREQUENCY"

    def test_stats_include_catalog(self, engine):
        stats = engine.get_stats()

        assert stats["catalog"]["interpretations"] == 3
        assert stats["cache"]["size"] == 0

    def test_stats_before_load_have_no_catalog(self, sample_catalog):
        from src.interpretation.engine import InterpretationEngine

        assert "catalog" not in InterpretationEngine(sample_catalog).get_stats()


# =============================================================================
# FACTORY TESTS
# =============================================================================


class TestCreateEngine:
    """Test engine construction helpers."""

    def test_dict_config(self, sample_catalog):
        from src.interpretation.engine import create_engine

        engine = create_engine(
            sample_catalog,
            config={"cache_max_size": 2, "rating_thresholds": {"0.5": "low", "1.0": "high"}},
        )
        result = engine.evaluate(SLOPE_AND_TEST, {"SLOPE PERCENT": 15, "TEST VALUE": 8})

        assert result.rating_class == "high"
        assert engine.cache.max_size == 2

    def test_directory_loader(self, catalog_dir):
        from src.interpretation.engine import create_engine

        engine = create_engine(str(catalog_dir))
        assert SLOPE_AND_TEST in engine.list_interpretations()

    def test_callable_loader(self, sample_properties, sample_evaluations, sample_trees):
        from src.interpretation.engine import create_engine

        engine = create_engine(lambda: {
            "properties": sample_properties,
            "evaluations": sample_evaluations,
            "trees": sample_trees,
        })
        assert len(engine.list_interpretations()) == 3

    def test_default_loader_uses_shipped_catalog(self):
        from src.interpretation.engine import create_engine

        engine = create_engine()
        result = engine.evaluate(SEPTIC, {"DEPTH TO WATER TABLE": 80, "DEPTH TO BEDROCK": 50})

        assert result.rating_class == "severe"

    def test_invalid_loader(self):
        from src.interpretation.engine import InterpretationEngine

        with pytest.raises(TypeError, match="loader must be callable"):
            InterpretationEngine(42)

    def test_invalid_catalog_fails_initialize(self, sample_properties, sample_evaluations):
        from src.interpretation.engine import create_engine
        from src.interpretation.errors import ConfigurationError

        trees = [{"rulename": "R", "tree": [{"levelName": "R"}, {"levelName": "  X", "RefId": "404"}]}]
        with pytest.raises(ConfigurationError):
            create_engine(lambda: {
                "properties": sample_properties,
                "evaluations": sample_evaluations,
                "trees": trees,
            })

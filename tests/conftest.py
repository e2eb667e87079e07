"""Pytest configuration and fixtures for interpretation engine tests."""
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import pytest


def _curve_xml(domain, range_=None):
    domain_xml = "".join(f"<double>{x}</double>" for x in domain)
    range_xml = "".join(f"<double>{y}</double>" for y in (range_ or []))
    return (
        f"<Evaluation><DomainPoints>{domain_xml}</DomainPoints>"
        f"<RangePoints>{range_xml}</RangePoints></Evaluation>"
    )


@pytest.fixture
def sample_properties():
    """Property records in the source catalog format."""
    return [
        {"propiid": 1, "propname": "SLOPE PERCENT", "propuom": "percent", "propmin": 0, "propmax": 100},
        {"propiid": 2, "propname": "DEPTH TO WATER TABLE", "propuom": "cm"},
        {"propiid": 3, "propname": "FLOODING FREQUENCY", "propuom": None},
        {"propiid": 4, "propname": "DEPTH TO BEDROCK", "propuom": "cm"},
        {"propiid": 5, "propname": "TEST VALUE", "propuom": "units"},
    ]


@pytest.fixture
def sample_evaluations():
    """Evaluation records covering every curve type."""
    return [
        {
            "evaliid": 101,
            "evalname": "Slope 8 to 15%",
            "propname": "SLOPE PERCENT",
            "evaluationtype": "ArbitraryLinear",
            "eval": _curve_xml([8, 15], [0, 1]),
        },
        {
            "evaliid": 102,
            "evalname": "Water table depth shallow",
            "propname": "DEPTH TO WATER TABLE",
            "evaluationtype": "Sigmoid",
            "invertevaluationresults": True,
            "eval": _curve_xml([30, 60, 100]),
        },
        {
            "evaliid": 103,
            "evalname": "Flooding frequent",
            "propname": "FLOODING FREQUENCY",
            "evaluationtype": "Crisp",
            "eval": (
                "<Evaluation><CrispExpression>"
                '= "frequent" or "very frequent"'
                "</CrispExpression></Evaluation>"
            ),
        },
        {
            "evaliid": 104,
            "evalname": "Bedrock shallow",
            "propname": "DEPTH TO BEDROCK",
            "evaluationtype": "ArbitraryCurve",
            "eval": _curve_xml([25, 50, 100, 150], [1, 0.6, 0.2, 0]),
        },
        {
            "evaliid": 105,
            "evalname": "Test value linear",
            "propname": "TEST VALUE",
            "points": [{"x": 0, "y": 0}, {"x": 10, "y": 1}],
            "interpolation": "linear",
        },
    ]


@pytest.fixture
def sample_trees():
    """Interpretation records: flat data.tree format and nested format."""
    return [
        {
            "interpiid": 1001,
            "rulename": "Dwellings With Basements",
            "tree": [
                {"levelName": "Dwellings With Basements"},
                {"levelName": " °--Limitations", "Type": "or"},
                {"levelName": "     ¦--Slope 8 to 15%", "RefId": "101"},
                {"levelName": "     ¦--Wetness", "Type": "sum"},
                {"levelName": "     ¦   ¦--Water table depth shallow", "RefId": "102"},
                {"levelName": "     ¦   °--Flooding frequent", "RefId": "103"},
                {"levelName": "     °--Bedrock if rated", "Type": "null_or"},
                {"levelName": "         °--Bedrock shallow", "RefId": "104"},
            ],
        },
        {
            "interpiid": 1002,
            "rulename": "Septic Tank Absorption Fields",
            "tree": {
                "levelName": "Septic Tank Absorption Fields",
                "children": [
                    {
                        "levelName": "Restrictive layers",
                        "Type": "Operator",
                        "Value": "or",
                        "children": [
                            {"levelName": "Water table", "Type": "Evaluation", "RefId": "102"},
                            {
                                "levelName": "Very shallow bedrock",
                                "Type": "Hedge",
                                "Value": "power 2",
                                "children": [
                                    {"levelName": "Bedrock", "Type": "Evaluation", "RefId": "104"}
                                ],
                            },
                        ],
                    }
                ],
            },
        },
        {
            "interpiid": 1003,
            "rulename": "Slope And Test",
            "tree": [
                {"levelName": "Slope And Test"},
                {"levelName": "  and", "Type": "and"},
                {"levelName": "    Slope 8 to 15%", "RefId": "101"},
                {"levelName": "    Test value linear", "RefId": "105"},
            ],
        },
    ]


@pytest.fixture
def sample_catalog(sample_properties, sample_evaluations, sample_trees):
    """A validated catalog snapshot built from the sample records."""
    from src.interpretation.catalog import build_catalog

    return build_catalog(sample_properties, sample_evaluations, sample_trees)


@pytest.fixture
def engine(sample_catalog):
    """An initialized engine over the sample catalog."""
    from src.interpretation.engine import InterpretationEngine

    return InterpretationEngine(sample_catalog).initialize()


@pytest.fixture
def catalog_dir(tmp_path, sample_properties, sample_evaluations, sample_trees):
    """Temporary directory holding the sample catalog as JSON files."""
    import json

    (tmp_path / "properties.json").write_text(json.dumps(sample_properties))
    (tmp_path / "evaluations.json").write_text(json.dumps(sample_evaluations))
    (tmp_path / "interpretation_trees.json").write_text(json.dumps(sample_trees))
    return tmp_path


class FakeClock:
    """Manually advanced time source for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def project_root():
    """Get the project root directory."""
    return Path(__file__).parent.parent

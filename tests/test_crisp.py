"""
Tests for the crisp expression language.

Crisp evaluations are boolean predicates over the current property value
and rate exactly 0 or 1.
"""

import pytest


class TestCompileExpression:
    """Test compiling and running crisp predicates."""

    @pytest.mark.parametrize(
        "expression, value, expected",
        [
            ('="moderately well"', "moderately well", True),
            ('="moderately well"', "well", False),
            ('= "excessively" or "somewhat excessively"', "somewhat excessively", True),
            ('= "excessively" or "somewhat excessively"', "poorly", False),
            (">= 5 and < 10", 7.5, True),
            (">= 5 and < 10", 10, False),
            ("> 5", "6", True),
            ('not (= "rock outcrop")', "loam", True),
            ('not (= "rock outcrop")', "rock outcrop", False),
            ('!= "none"', "rare", True),
            ('<> "none"', "none", False),
            ("== 3", 3.0, True),
            ('matches "*clay*"', "silty clay loam", True),
            ('matches "*clay*"', "Silty Clay", False),
            ('imatches "*clay*"', "Silty Clay", True),
            ("= 2 or = 4", 4, True),
        ],
    )
    def test_expressions(self, expression, value, expected):
        from src.interpretation.crisp import compile_expression

        assert compile_expression(expression)(value) is expected

    def test_operator_carries_over_to_bare_literals(self):
        """A comparison without an operator reuses the previous one."""
        from src.interpretation.crisp import compile_expression

        predicate = compile_expression('= "a" or "b" or "c"')
        assert predicate("c")
        assert not predicate("d")

    def test_first_comparison_defaults_to_equality(self):
        from src.interpretation.crisp import compile_expression

        assert compile_expression('"frequent"')("frequent")

    def test_and_binds_tighter_than_or(self):
        """a or b and c == a or (b and c)."""
        from src.interpretation.crisp import compile_expression

        predicate = compile_expression("< 0 or > 5 and < 10")
        assert predicate(-1)
        assert predicate(7)
        assert not predicate(12)

    def test_string_values_are_stripped(self):
        from src.interpretation.crisp import compile_expression

        assert compile_expression('= "well"')("  well ")


class TestCrispErrors:
    """Test error handling in the expression language."""

    @pytest.mark.parametrize(
        "expression",
        ['= "unterminated', ">= 5 and", "(= 5", "= 5 xor = 6", '> "abc"', ""],
    )
    def test_unparseable_expression_raises_configuration_error(self, expression):
        """Bad expressions fail when compiled, not when evaluated."""
        from src.interpretation.crisp import compile_expression
        from src.interpretation.errors import ConfigurationError

        with pytest.raises(ConfigurationError):
            compile_expression(expression)

    def test_ordering_against_non_numeric_value_is_invalid_data(self):
        from src.interpretation.crisp import compile_expression
        from src.interpretation.errors import InvalidPropertyDataError

        predicate = compile_expression(">= 5")
        with pytest.raises(InvalidPropertyDataError):
            predicate("deep")

    def test_numeric_equality_with_non_numeric_value_is_false(self):
        from src.interpretation.crisp import compile_expression

        assert compile_expression("= 5")("five") is False


class TestStringLiterals:
    """Test literal extraction used for categorical choices."""

    def test_returns_quoted_strings_in_order(self):
        from src.interpretation.crisp import string_literals

        assert string_literals('= "frequent" or "very frequent" or > 3') == [
            "frequent",
            "very frequent",
        ]

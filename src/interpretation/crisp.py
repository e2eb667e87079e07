"""
Crisp expression language.

Crisp evaluations carry a small boolean predicate over the current property
value, e.g.::

    ="moderately well"
    = "excessively" or "somewhat excessively"
    >= 5 and < 10
    not (= "rock outcrop")
    imatches "*clay*"

Grammar::

    expr       := and_expr ("or" and_expr)*
    and_expr   := unary ("and" unary)*
    unary      := "not" unary | "(" expr ")" | comparison
    comparison := [op] literal
    op         := = | == | != | <> | < | <= | > | >= | matches | imatches
    literal    := "string" | 'string' | number

A comparison without an operator reuses the previous operator, so
``= "a" or "b"`` reads as ``= "a" or = "b"``. The first comparison defaults
to ``=``.

Expressions are compiled once into a predicate; syntax errors raise
ConfigurationError.
"""

import fnmatch
import re
from typing import Callable, Union

from src.interpretation.curves import as_number
from src.interpretation.errors import ConfigurationError, InvalidPropertyDataError

Predicate = Callable[[Union[float, int, str]], bool]

_TOKEN_RE = re.compile(
    r"""\s*(?:
        (?P<string>"[^"]*"|'[^']*')
      | (?P<number>[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)
      | (?P<op><=|>=|==|!=|<>|=|<|>)
      | (?P<paren>[()])
      | (?P<word>[A-Za-z_]+)
    )""",
    re.VERBOSE,
)

_WORD_OPS = ("matches", "imatches")
_ORDERING_OPS = ("<", "<=", ">", ">=")


def tokenize(expression: str) -> list[tuple[str, Union[str, float]]]:
    """Split an expression into (kind, value) tokens."""
    tokens = []
    pos = 0
    text = expression.rstrip()
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None or match.end() == pos:
            raise ConfigurationError(
                f"Cannot parse crisp expression {expression!r} at position {pos}"
            )
        kind = match.lastgroup
        raw = match.group(kind)
        if kind == "string":
            tokens.append(("literal", raw[1:-1]))
        elif kind == "number":
            tokens.append(("literal", float(raw)))
        elif kind == "op":
            tokens.append(("op", "=" if raw == "==" else "!=" if raw == "<>" else raw))
        elif kind == "paren":
            tokens.append((raw, raw))
        else:
            word = raw.lower()
            if word in _WORD_OPS:
                tokens.append(("op", word))
            elif word in ("and", "or", "not"):
                tokens.append((word, word))
            else:
                raise ConfigurationError(
                    f"Unknown word {raw!r} in crisp expression {expression!r}"
                )
        pos = match.end()
    return tokens


def string_literals(expression: str) -> list[str]:
    """Return the quoted string literals of an expression, in order."""
    return [v for kind, v in tokenize(expression) if kind == "literal" and isinstance(v, str)]


def _comparison(op: str, literal: Union[str, float], expression: str) -> Predicate:
    if op in _ORDERING_OPS:
        if not isinstance(literal, float):
            raise ConfigurationError(
                f"Operator {op!r} needs a numeric literal in crisp expression {expression!r}"
            )

        def ordered(value):
            number = as_number(value)
            if number is None:
                raise InvalidPropertyDataError(
                    f"Crisp expression {expression!r} compares numerically, got {value!r}",
                    {"expression": expression, "value": value},
                )
            if op == "<":
                return number < literal
            if op == "<=":
                return number <= literal
            if op == ">":
                return number > literal
            return number >= literal

        return ordered

    if op in _WORD_OPS:
        pattern = str(literal)
        if op == "imatches":
            pattern = pattern.lower()
            return lambda value: fnmatch.fnmatchcase(str(value).lower(), pattern)
        return lambda value: fnmatch.fnmatchcase(str(value), pattern)

    if isinstance(literal, float):
        def equals(value):
            number = as_number(value)
            return number is not None and number == literal
    else:
        def equals(value):
            return str(value).strip() == literal

    if op == "!=":
        return lambda value: not equals(value)
    return equals


class _Parser:
    def __init__(self, expression: str):
        self.expression = expression
        self.tokens = tokenize(expression)
        self.pos = 0
        self.last_op = "="

    def peek(self):
        return self.tokens[self.pos][0] if self.pos < len(self.tokens) else None

    def take(self, kind: str):
        if self.peek() != kind:
            found = self.peek() or "end of expression"
            raise ConfigurationError(
                f"Expected {kind!r} but found {found!r} in crisp expression {self.expression!r}"
            )
        token = self.tokens[self.pos]
        self.pos += 1
        return token[1]

    def parse(self) -> Predicate:
        if not self.tokens:
            raise ConfigurationError("Empty crisp expression")
        predicate = self.parse_or()
        if self.pos != len(self.tokens):
            raise ConfigurationError(
                f"Unexpected {self.tokens[self.pos][1]!r} in crisp expression {self.expression!r}"
            )
        return predicate

    def parse_or(self) -> Predicate:
        terms = [self.parse_and()]
        while self.peek() == "or":
            self.take("or")
            terms.append(self.parse_and())
        if len(terms) == 1:
            return terms[0]
        return lambda value: any(term(value) for term in terms)

    def parse_and(self) -> Predicate:
        terms = [self.parse_unary()]
        while self.peek() == "and":
            self.take("and")
            terms.append(self.parse_unary())
        if len(terms) == 1:
            return terms[0]
        return lambda value: all(term(value) for term in terms)

    def parse_unary(self) -> Predicate:
        if self.peek() == "not":
            self.take("not")
            inner = self.parse_unary()
            return lambda value: not inner(value)
        if self.peek() == "(":
            self.take("(")
            inner = self.parse_or()
            self.take(")")
            return inner
        if self.peek() == "op":
            self.last_op = self.take("op")
        literal = self.take("literal")
        return _comparison(self.last_op, literal, self.expression)


def compile_expression(expression: str) -> Predicate:
    """
    Compile a crisp expression into a predicate.

    Args:
        expression: Expression source text

    Returns:
        Callable mapping a property value to True/False

    Raises:
        ConfigurationError: If the expression cannot be parsed

    Example:
        >>> pred = compile_expression('= "well" or "moderately well"')
        >>> pred("moderately well")
        True
        >>> compile_expression(">= 5 and < 10")(7.5)
        True
    """
    if expression is None:
        raise ConfigurationError("Empty crisp expression")
    return _Parser(expression).parse()

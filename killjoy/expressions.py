"""Expression Matcher — does a unit name satisfy a rule's selection expression?

Three expression types are supported:

    unit name   (alias ``exact-name``)   case-sensitive full equality
    unit type   (alias ``type-suffix``)  literal suffix, e.g. ``.timer``
    regex       (alias ``pattern``)      full-string match of a compiled pattern

Patterns are compiled once, when the settings document is loaded, and a
malformed pattern is rejected there.  Matching itself is pure and stateless,
so it is safe to call from any number of concurrent sessions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from killjoy.units import UNIT_TYPES, unit_type_of


class ExpressionType(str, Enum):
    UNIT_NAME = "unit name"
    UNIT_TYPE = "unit type"
    REGEX = "regex"

    @classmethod
    def parse(cls, value: str) -> "ExpressionType":
        """Accept canonical values and their hyphenated aliases."""
        member = _ALIASES.get(value)
        if member is not None:
            return member
        return cls(value)


_ALIASES: dict[str, ExpressionType] = {
    "exact-name": ExpressionType.UNIT_NAME,
    "type-suffix": ExpressionType.UNIT_TYPE,
    "pattern": ExpressionType.REGEX,
}


@dataclass(frozen=True)
class Expression:
    """A validated, ready-to-match selection expression."""

    value: str
    type: ExpressionType
    _pattern: re.Pattern[str] | None = field(default=None, repr=False, compare=False)

    @classmethod
    def compile(cls, value: str, expression_type: ExpressionType | str) -> "Expression":
        """Validate *value* for *expression_type* and return an Expression.

        Raises ``ValueError`` with a human-readable reason on invalid input.
        """
        if not isinstance(expression_type, ExpressionType):
            expression_type = ExpressionType.parse(expression_type)

        if expression_type is ExpressionType.REGEX:
            try:
                pattern = re.compile(value)
            except re.error as exc:
                raise ValueError(f"Found invalid regular expression {value!r}: {exc}") from exc
            return cls(value, expression_type, pattern)

        if expression_type is ExpressionType.UNIT_TYPE:
            if value not in UNIT_TYPES:
                raise ValueError(
                    f"Found invalid unit type {value!r}; expected one of {', '.join(UNIT_TYPES)}"
                )
            return cls(value, expression_type)

        suffix = unit_type_of(value)
        if suffix is None or len(value) == len(suffix):
            raise ValueError(f"Found invalid unit name {value!r}")
        return cls(value, expression_type)

    def matches(self, unit_name: str) -> bool:
        if self.type is ExpressionType.UNIT_NAME:
            return unit_name == self.value
        if self.type is ExpressionType.UNIT_TYPE:
            return unit_name.endswith(self.value)
        pattern = self._pattern or re.compile(self.value)
        return pattern.fullmatch(unit_name) is not None


def matches(unit_name: str, expression: str, expression_type: ExpressionType | str) -> bool:
    """Stand-alone form of ``Expression.matches``.

    ``re`` caches compiled patterns, so repeated calls stay cheap.  Raises
    ``ValueError`` for an invalid expression.
    """
    return Expression.compile(expression, expression_type).matches(unit_name)

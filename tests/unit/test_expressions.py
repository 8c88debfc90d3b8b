"""Unit tests — expressions.py (Expression Matcher)."""

from __future__ import annotations

import pytest

from killjoy.expressions import Expression, ExpressionType, matches


@pytest.mark.unit
class TestExpressionType:
    def test_canonical_values(self) -> None:
        assert ExpressionType.parse("unit name") is ExpressionType.UNIT_NAME
        assert ExpressionType.parse("unit type") is ExpressionType.UNIT_TYPE
        assert ExpressionType.parse("regex") is ExpressionType.REGEX

    def test_aliases(self) -> None:
        assert ExpressionType.parse("exact-name") is ExpressionType.UNIT_NAME
        assert ExpressionType.parse("type-suffix") is ExpressionType.UNIT_TYPE
        assert ExpressionType.parse("pattern") is ExpressionType.REGEX

    def test_unknown_type(self) -> None:
        with pytest.raises(ValueError):
            ExpressionType.parse("glob")


@pytest.mark.unit
class TestUnitNameExpression:
    def test_exact_match(self) -> None:
        assert matches("foo.service", "foo.service", "unit name")

    def test_is_case_sensitive(self) -> None:
        assert not matches("Foo.service", "foo.service", "unit name")

    def test_no_partial_match(self) -> None:
        assert not matches("foo.service.d", "foo.service", "unit name")
        assert not matches("xfoo.service", "foo.service", "unit name")

    def test_invalid_unit_name_rejected(self) -> None:
        with pytest.raises(ValueError, match="invalid unit name"):
            Expression.compile("foo", ExpressionType.UNIT_NAME)
        with pytest.raises(ValueError):
            Expression.compile(".service", ExpressionType.UNIT_NAME)


@pytest.mark.unit
class TestUnitTypeExpression:
    def test_suffix_match(self) -> None:
        assert matches("backup.timer", ".timer", "unit type")
        assert not matches("backup.service", ".timer", "unit type")

    def test_unknown_unit_type_rejected(self) -> None:
        with pytest.raises(ValueError, match="invalid unit type"):
            Expression.compile(".banana", "unit type")
        with pytest.raises(ValueError):
            Expression.compile("timer", "unit type")


@pytest.mark.unit
class TestRegexExpression:
    def test_full_string_match(self) -> None:
        assert matches("nginx.service", r"nginx\.service", "regex")
        assert matches("getty@tty1.service", r"getty@.*\.service", "regex")

    def test_partial_match_is_not_enough(self) -> None:
        assert not matches("my-nginx.service", r"nginx\.service", "regex")
        assert not matches("nginx.service.wants", r"nginx\.service", "regex")

    def test_malformed_pattern_rejected(self) -> None:
        with pytest.raises(ValueError, match="invalid regular expression"):
            Expression.compile("foo(", "regex")

    def test_compiled_once(self) -> None:
        expression = Expression.compile(r".*\.service", "pattern")
        assert expression.type is ExpressionType.REGEX
        assert expression.matches("a.service")
        assert not expression.matches("a.socket")

    def test_equality_ignores_compiled_pattern(self) -> None:
        assert Expression.compile("a.*", "regex") == Expression.compile("a.*", "regex")

    def test_uncompiled_regex_still_matches(self) -> None:
        expression = Expression("a.*", ExpressionType.REGEX)
        assert expression.matches("abc.service")
        assert not expression.matches("b.service")

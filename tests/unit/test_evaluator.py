"""Unit tests for condition evaluation (domain/evaluator.py).

Operator semantics over a profile document, including absent paths,
strict equality and the clock-relative ``in_last_days``.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from personalization_engine.domain.evaluator import (
    evaluate,
    matches_all,
    strict_equals,
    to_number,
    to_text,
)
from personalization_engine.domain.models import Booking, Preferences, RuleCondition
from personalization_engine.domain.paths import to_value
from tests.fixtures.profiles import NOW, make_profile, when


def _doc(**data):
    return to_value(data)


# ---------------------------------------------------------------------------
# Coercions
# ---------------------------------------------------------------------------


class TestCoercions:
    def test_strict_equals_rejects_cross_type(self) -> None:
        assert strict_equals(1, 1.0) is True
        assert strict_equals(1, True) is False
        assert strict_equals("1", 1) is False
        assert strict_equals(None, None) is True

    def test_to_number(self) -> None:
        assert to_number("42") == 42.0
        assert to_number(" ") is None
        assert to_number("abc") is None
        assert to_number(True) == 1.0
        assert to_number(float("nan")) is None
        assert to_number(NOW) == NOW.timestamp()
        assert to_number(NOW.isoformat()) == NOW.timestamp()

    def test_to_text(self) -> None:
        assert to_text(3.0) == "3"
        assert to_text(None) == "null"
        assert to_text(False) == "false"
        assert to_text(["a", 1]) == "a,1"


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


class TestEquality:
    def test_equals(self) -> None:
        doc = _doc(hairType="curly", count=3)
        assert evaluate(doc, when("hairType", "equals", "curly"), now=NOW)
        assert evaluate(doc, when("count", "equals", 3.0), now=NOW)
        assert not evaluate(doc, when("count", "equals", "3"), now=NOW)

    def test_equals_on_absent_is_false(self) -> None:
        assert not evaluate(_doc(), when("missing", "equals", None), now=NOW)

    def test_not_equals_on_absent_is_true(self) -> None:
        assert evaluate(_doc(), when("missing", "not_equals", True), now=NOW)
        assert not evaluate(_doc(flag=True), when("flag", "not_equals", True), now=NOW)


class TestContains:
    def test_list_membership(self) -> None:
        doc = _doc(tags=["Hair Color", "Cut"])
        assert evaluate(doc, when("tags", "contains", "Hair Color"), now=NOW)
        assert not evaluate(doc, when("tags", "contains", "Hair"), now=NOW)

    def test_substring(self) -> None:
        assert evaluate(_doc(url="/services/color"), when("url", "contains", "color"), now=NOW)

    def test_absent_is_false(self) -> None:
        assert not evaluate(_doc(), when("url", "contains", ""), now=NOW)


class TestComparisons:
    @pytest.mark.parametrize(
        ("actual", "operator", "expected", "result"),
        [
            (600, "greater_than", 500, True),
            (500, "greater_than", 500, False),
            ("600", "greater_than", 500, True),
            (10, "less_than", 11, True),
            ("n/a", "greater_than", 1, False),
            (None, "less_than", 1, False),
        ],
    )
    def test_numeric(self, actual, operator, expected, result) -> None:
        assert evaluate(_doc(v=actual), when("v", operator, expected), now=NOW) is result

    def test_absent_is_false(self) -> None:
        assert not evaluate(_doc(), when("v", "less_than", 10), now=NOW)

    def test_datetimes_compare_as_instants(self) -> None:
        doc = _doc(at=NOW)
        earlier = (NOW - timedelta(days=1)).isoformat()
        assert evaluate(doc, when("at", "greater_than", earlier), now=NOW)


class TestMembership:
    def test_in(self) -> None:
        doc = _doc(range="premium")
        assert evaluate(doc, when("range", "in", ["premium", "luxury"]), now=NOW)
        assert not evaluate(doc, when("range", "in", "premium"), now=NOW)

    def test_not_in(self) -> None:
        assert evaluate(_doc(range="budget"), when("range", "not_in", ["premium"]), now=NOW)
        assert evaluate(_doc(), when("range", "not_in", ["premium"]), now=NOW)
        assert not evaluate(_doc(range="x"), when("range", "not_in", "x"), now=NOW)


class TestExistence:
    def test_exists_counts_null_as_present(self) -> None:
        assert evaluate(_doc(note=None), when("note", "exists"), now=NOW)
        assert evaluate(_doc(), when("note", "not_exists"), now=NOW)


class TestInLastDays:
    def test_inside_window(self) -> None:
        doc = _doc(at=NOW - timedelta(days=6, hours=23))
        assert evaluate(doc, when("at", "in_last_days", 7), now=NOW)

    def test_boundaries_are_inclusive(self) -> None:
        assert evaluate(_doc(at=NOW - timedelta(days=7)), when("at", "in_last_days", 7), now=NOW)
        assert evaluate(_doc(at=NOW), when("at", "in_last_days", 0), now=NOW)

    def test_outside_window(self) -> None:
        doc = _doc(at=NOW - timedelta(days=8))
        assert not evaluate(doc, when("at", "in_last_days", 7), now=NOW)

    def test_future_timestamp_is_false(self) -> None:
        doc = _doc(at=NOW + timedelta(minutes=1))
        assert not evaluate(doc, when("at", "in_last_days", 7), now=NOW)

    def test_iso_string_and_bad_operands(self) -> None:
        doc = _doc(at=(NOW - timedelta(days=1)).isoformat(), bad="yesterday")
        assert evaluate(doc, when("at", "in_last_days", 2), now=NOW)
        assert not evaluate(doc, when("bad", "in_last_days", 2), now=NOW)
        assert not evaluate(doc, when("at", "in_last_days", -1), now=NOW)

    def test_huge_window_reaches_back_to_the_start_of_time(self) -> None:
        doc = _doc(at=NOW - timedelta(days=365 * 50))
        assert evaluate(doc, when("at", "in_last_days", 1_000_000), now=NOW)
        assert evaluate(doc, when("at", "in_last_days", float("inf")), now=NOW)
        future = _doc(at=NOW + timedelta(days=1))
        assert not evaluate(future, when("at", "in_last_days", 10**12), now=NOW)


class TestMalformedConditions:
    def test_unknown_operator_is_false(self) -> None:
        assert not evaluate(_doc(a=1), RuleCondition(field="a", operator="like", value=1), now=NOW)

    def test_bad_path_is_false(self) -> None:
        assert not evaluate(_doc(a=1), when("a..b", "exists"), now=NOW)


# ---------------------------------------------------------------------------
# Profiles and condition lists
# ---------------------------------------------------------------------------


class TestProfileDocument:
    def test_profile_fields_are_camel_case(self) -> None:
        profile = make_profile(
            preferences=Preferences(hair_type="curly"),
            lifetime_value=750,
        )
        assert evaluate(profile, when("preferences.hairType", "equals", "curly"), now=NOW)
        assert evaluate(profile, when("lifetimeValue", "greater_than", 500), now=NOW)

    def test_derived_facts(self) -> None:
        profile = make_profile()
        profile.behavior.bookings.append(Booking(date=NOW, amount=80, service_type="color"))
        assert evaluate(profile, when("hasBooked", "equals", True), now=NOW)
        assert evaluate(profile, when("totalBookings", "equals", 1), now=NOW)
        assert evaluate(
            profile, when("behavior.bookings.serviceType", "contains", "color"), now=NOW
        )

    def test_days_since_last_activity(self) -> None:
        profile = make_profile(last_activity=NOW - timedelta(days=3))
        assert evaluate(profile, when("daysSinceLastActivity", "greater_than", 2), now=NOW)
        assert not evaluate(profile, when("daysSinceLastActivity", "greater_than", 3), now=NOW)

    def test_attributes_are_lifted(self) -> None:
        profile = make_profile(attributes={"hasUsedBirthdayOffer": True, "email": "shadow"})
        assert evaluate(profile, when("hasUsedBirthdayOffer", "equals", True), now=NOW)
        # profile fields win over attributes with the same name
        assert evaluate(profile, when("email", "equals", "sub-1@example.com"), now=NOW)


class TestMatchesAll:
    def test_empty_list_matches(self) -> None:
        assert matches_all(make_profile(), [], now=NOW)

    def test_and_semantics(self) -> None:
        profile = make_profile(lifetime_value=600)
        conditions = [
            when("lifetimeValue", "greater_than", 500),
            when("unsubscribed", "equals", False),
        ]
        assert matches_all(profile, conditions, now=NOW)
        conditions.append(when("totalBookings", "greater_than", 0))
        assert not matches_all(profile, conditions, now=NOW)

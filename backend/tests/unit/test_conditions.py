# backend/tests/unit/test_conditions.py

import pytest

from engagehub.workflows.conditions import evaluate_condition, render_template


class TestEvaluateCondition:

    @pytest.mark.parametrize("condition, data, expected", [
        ("pan_number.length == 10", {"pan_number": "ABCDE1234F"}, True),
        ("pan_number.length == 10", {"pan_number": "ABC"}, False),
        ("aadhaar.length >= 12", {"aadhaar": "123412341234"}, True),
        ("aadhaar.length < 12", {}, False),
    ])
    def test_length_form(self, condition, data, expected):
        assert evaluate_condition(condition, data) is expected

    def test_includes_form(self):
        assert evaluate_condition("email.includes('@')", {"email": "a@b.in"}) is True
        assert evaluate_condition('email.includes("@")', {"email": "nobody"}) is False
        assert evaluate_condition("email.includes('@')", {}) is False

    @pytest.mark.parametrize("condition, data, expected", [
        ("age >= 18", {"age": "18"}, True),
        ("age >= 18", {"age": "17"}, False),
        ("age > 18", {"age": 19}, True),
        ("age <= 18", {"age": 18}, True),
        ("age < 18", {"age": "abc"}, False),
        ("consent == 'yes'", {"consent": "yes"}, True),
        ('consent != "yes"', {"consent": "no"}, True),
        ("verified == true", {"verified": True}, True),
        ("verified == false", {"verified": True}, False),
        ("income > expenses", {"income": 10, "expenses": 5}, True),
    ])
    def test_compare_form(self, condition, data, expected):
        assert evaluate_condition(condition, data) is expected

    def test_two_character_operators_are_not_split(self):
        # ">=" must not be read as ">" followed by "=18"
        assert evaluate_condition("age >= 18", {"age": 18}) is True
        assert evaluate_condition("age <= 18", {"age": 18}) is True

    @pytest.mark.parametrize("condition", [None, "", "this is not an expression", "age ~ 3"])
    def test_unparseable_is_false(self, condition):
        assert evaluate_condition(condition, {"age": 3}) is False


class TestRenderTemplate:

    def test_replaces_known_placeholders(self):
        assert render_template("Hi {{ name }}, PAN {{pan}} received", {"name": "Asha", "pan": "X"}) == \
            "Hi Asha, PAN X received"

    def test_leaves_unknown_placeholders(self):
        assert render_template("Hi {{ name }}", {}) == "Hi {{ name }}"

    def test_empty_content(self):
        assert render_template(None, {"name": "x"}) == ""

from datetime import datetime, timedelta, timezone

import pytest

from careflow.errors import ConfigurationError
from careflow.expressions import (
    ExpressionContext,
    SimpleExpressionEvaluator,
    add_months,
    normalise_unit,
    shift,
)

BASE = datetime(2026, 1, 31, 9, 30, tzinfo=timezone.utc)


def test_date_arithmetic():
    evaluator = SimpleExpressionEvaluator()

    assert evaluator.evaluate_date(BASE, "$this + 2 'week'") == BASE + timedelta(weeks=2)
    assert evaluator.evaluate_date(BASE, "$this - 1 'd'") == BASE - timedelta(days=1)
    assert evaluator.evaluate_date(BASE, "$this + 1 'month'") == datetime(2026, 2, 28, 9, 30, tzinfo=timezone.utc)


def test_naive_focus_is_treated_as_utc():
    evaluator = SimpleExpressionEvaluator()

    result = evaluator.evaluate_date(datetime(2026, 1, 1), "$this + 1 'year'")

    assert result == datetime(2027, 1, 1, tzinfo=timezone.utc)


def test_literals_and_registered_expressions():
    evaluator = SimpleExpressionEvaluator({"%subject.active": lambda ctx: ctx.subject["active"]})
    evaluator.register("%input.lmp", lambda ctx: None)

    assert evaluator.evaluate_boolean(ExpressionContext(), "true") is True
    assert evaluator.evaluate_boolean(ExpressionContext(), "false") is False
    assert evaluator.evaluate_boolean(ExpressionContext(subject={"active": True}), "%subject.active") is True
    assert evaluator.evaluate(ExpressionContext(), "%input.lmp") == []
    assert evaluator.evaluate_boolean(ExpressionContext(), "%input.lmp") is False


def test_unknown_expression_fails_loudly():
    with pytest.raises(ConfigurationError):
        SimpleExpressionEvaluator().evaluate(ExpressionContext(), "Patient.gender = 'female'")


def test_units():
    assert normalise_unit("mo") == "month"
    assert normalise_unit("wk") == "week"
    assert normalise_unit("a") == "year"
    with pytest.raises(ConfigurationError):
        normalise_unit("fortnight")


def test_month_arithmetic_clamps_to_month_end():
    assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
    assert add_months(datetime(2026, 11, 30), 3) == datetime(2027, 2, 28)
    assert shift(datetime(2026, 3, 1), 12, "h") == datetime(2026, 3, 1, 12)

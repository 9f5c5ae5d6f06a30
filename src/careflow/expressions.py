"""
Expression Evaluation

The engine evaluates applicability conditions, dynamic values and date
offsets through an ``ExpressionEvaluator``. Hosts plug in a full FHIRPath
engine; ``SimpleExpressionEvaluator`` covers date arithmetic and
expressions registered as Python callables.
"""

from abc import ABC, abstractmethod
from calendar import monthrange
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable
import re

import structlog

from careflow.errors import ConfigurationError
from careflow.models.base import as_utc

logger = structlog.get_logger(__name__)


@dataclass
class ExpressionContext:
    """
    Evaluation context.

    ``focus`` is what ``$this`` refers to; the remaining fields are exposed
    as environment variables (``%subject``, ``%input``, ...).
    """
    focus: Any = None
    subject: Any = None
    input_data: Any = None
    plan_definition: Any = None
    variables: dict[str, Any] = field(default_factory=dict)


class ExpressionEvaluator(ABC):
    """Boolean/value evaluation against a resource context."""

    @abstractmethod
    def evaluate(self, context: ExpressionContext, expression: str) -> list[Any]:
        """Evaluate to a (possibly empty) list of values."""
        pass

    def evaluate_boolean(self, context: ExpressionContext, expression: str) -> bool:
        """Evaluate to a single boolean; empty results are false."""
        values = self.evaluate(context, expression)
        return bool(values) and all(bool(v) for v in values)

    def evaluate_date(self, focus: datetime, expression: str) -> datetime | None:
        """Evaluate date arithmetic such as ``$this + 1 'month'``."""
        values = self.evaluate(ExpressionContext(focus=focus), expression)
        for value in values:
            if isinstance(value, datetime):
                return as_utc(value)
        return None


# UCUM codes and calendar words -> canonical unit
_UNITS = {
    "a": "year", "year": "year", "years": "year",
    "mo": "month", "month": "month", "months": "month",
    "wk": "week", "week": "week", "weeks": "week",
    "d": "day", "day": "day", "days": "day",
    "h": "hour", "hour": "hour", "hours": "hour",
    "min": "minute", "minute": "minute", "minutes": "minute",
}

_DATE_ARITHMETIC = re.compile(
    r"^\s*\$this\s*([+-])\s*(\d+(?:\.\d+)?)\s*'?([A-Za-z]+)'?\s*$"
)


def normalise_unit(unit: str) -> str:
    try:
        return _UNITS[unit.strip().lower()]
    except KeyError:
        raise ConfigurationError(f"Unsupported duration unit: {unit}")


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping to the last day of the month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def shift(value: datetime, amount: float, unit: str) -> datetime:
    """Shift ``value`` by ``amount`` of ``unit``."""
    unit = normalise_unit(unit)
    if unit == "year":
        return add_months(value, int(round(amount * 12)))
    if unit == "month":
        return add_months(value, int(round(amount)))
    if unit == "week":
        return value + timedelta(weeks=amount)
    if unit == "day":
        return value + timedelta(days=amount)
    if unit == "hour":
        return value + timedelta(hours=amount)
    return value + timedelta(minutes=amount)


class SimpleExpressionEvaluator(ExpressionEvaluator):
    """
    Built-in evaluator.

    Supports:
    - ``$this +/- N 'unit'`` on a datetime focus
    - ``true`` / ``false`` literals
    - any expression registered with ``register``
    """

    def __init__(self, expressions: dict[str, Callable[[ExpressionContext], Any]] | None = None):
        self._expressions: dict[str, Callable[[ExpressionContext], Any]] = dict(expressions or {})

    def register(self, expression: str, func: Callable[[ExpressionContext], Any]) -> None:
        """Register a callable answering ``expression``."""
        self._expressions[expression] = func

    def evaluate(self, context: ExpressionContext, expression: str) -> list[Any]:
        if expression in self._expressions:
            result = self._expressions[expression](context)
            if result is None:
                return []
            return list(result) if isinstance(result, (list, tuple)) else [result]

        literal = expression.strip().lower()
        if literal in ("true", "false"):
            return [literal == "true"]

        match = _DATE_ARITHMETIC.match(expression)
        if match:
            if not isinstance(context.focus, datetime):
                return []
            sign, amount, unit = match.groups()
            delta = float(amount) if sign == "+" else -float(amount)
            return [shift(as_utc(context.focus), delta, unit)]

        raise ConfigurationError(f"No evaluator available for expression: {expression}")

"""
Recurrence Periods

Turns an activity definition's timing (or dosage list) plus the care plan
period into the ordered activity periods a transform is invoked for.
"""

from datetime import datetime

import structlog

from careflow.errors import UnsupportedTimingError
from careflow.expressions import ExpressionEvaluator, normalise_unit
from careflow.models.base import Period, utc_now
from careflow.models.definitions import ActivityDefinition, Timing, TimingRepeat

logger = structlog.get_logger(__name__)


def _format_amount(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def period_expression(repeat: TimingRepeat) -> str | None:
    """Offset between consecutive periods, e.g. ``1 'month'``."""
    if repeat.period is None or not repeat.period_unit:
        return None
    return f"{_format_amount(repeat.period)} '{normalise_unit(repeat.period_unit)}'"


def duration_expression(repeat: TimingRepeat) -> str | None:
    """Length of each period, e.g. ``2 'week'``."""
    if repeat.duration is None or not repeat.duration_unit:
        return None
    return f"{_format_amount(repeat.duration)} '{normalise_unit(repeat.duration_unit)}'"


def is_legacy(repeat: TimingRepeat) -> bool:
    """
    Legacy protocols declare frequency, count_max or an hour-based duration.

    Their expansion is done by the transformation script, so only one
    period is generated per call.
    """
    if repeat.frequency is not None or repeat.count_max is not None:
        return True
    return bool(repeat.duration_unit) and normalise_unit(repeat.duration_unit) == "hour"


class RecurrencePeriodComputer:
    """Computes activity periods from timing descriptions."""

    def __init__(self, evaluator: ExpressionEvaluator):
        self.evaluator = evaluator

    def compute(
        self,
        definition: ActivityDefinition,
        care_plan_period: Period,
        now: datetime | None = None,
    ) -> list[Period]:
        """
        Compute the ordered periods for an activity definition.

        Args:
            definition: Activity definition carrying a timing or a dosage list
            care_plan_period: Overall care plan period
            now: Anchor for on-demand generation (defaults to the current time)

        Returns:
            Non-empty list of periods

        Raises:
            UnsupportedTimingError: when neither timing nor dosage is present
        """
        if definition.dosage:
            periods: list[Period] = []
            for dosage in definition.dosage:
                if dosage.timing is None:
                    raise UnsupportedTimingError(
                        f"Dosage on {definition.logical_id} has no timing"
                    )
                periods.extend(self.compute_for_timing(dosage.timing, care_plan_period, now))
            return periods

        if definition.timing is None:
            raise UnsupportedTimingError(
                f"ActivityDefinition {definition.logical_id} has neither timing nor dosage"
            )
        return self.compute_for_timing(definition.timing, care_plan_period, now)

    def compute_for_timing(
        self,
        timing: Timing,
        care_plan_period: Period,
        now: datetime | None = None,
    ) -> list[Period]:
        repeat = timing.repeat or TimingRepeat()
        legacy = is_legacy(repeat)
        count = 1 if legacy else (repeat.count or 1)

        # Batch generation anchors at enrollment, on-demand generation at now
        if repeat.count is not None and not legacy and care_plan_period.start is not None:
            anchor = care_plan_period.start
        else:
            anchor = now or utc_now()

        offset = period_expression(repeat)
        duration = duration_expression(repeat)

        periods: list[Period] = []
        for _ in range(count):
            if offset:
                anchor = self.evaluator.evaluate_date(anchor, f"$this + {offset}") or anchor

            end = care_plan_period.end
            if duration:
                end = self.evaluator.evaluate_date(anchor, f"$this + {duration}")

            periods.append(Period(start=anchor, end=end))

        logger.debug(
            "Computed activity periods",
            count=len(periods),
            legacy=legacy,
            offset=offset,
            duration=duration,
        )
        return periods

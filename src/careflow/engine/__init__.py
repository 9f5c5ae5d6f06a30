"""
Careflow Engine

Care plan generation, task lifecycle and resource closure.
"""

from careflow.engine.closure import ResourceClosureCascade
from careflow.engine.lifecycle import TaskLifecycle
from careflow.engine.planner import PlanApplier, canonical_reference, set_field_by_path
from careflow.engine.recurrence import RecurrencePeriodComputer

__all__ = [
    "ResourceClosureCascade",
    "TaskLifecycle",
    "PlanApplier",
    "canonical_reference",
    "set_field_by_path",
    "RecurrencePeriodComputer",
]

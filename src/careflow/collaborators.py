"""
External Collaborators

Contracts for the services the engine drives but does not implement:
- Transformation-script engine (materialises resources into a care plan)
- Workflow applier (alternate $apply path producing a proposed care plan)
- Notification dispatcher (digest delivery)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import structlog

from careflow.models.base import BaseResource, Period
from careflow.models.careplan import CarePlan
from careflow.models.definitions import ActivityDefinition, PlanDefinition

logger = structlog.get_logger(__name__)


@dataclass
class TransformParameters:
    """Inputs handed to a transformation script for one activity period."""
    subject: BaseResource
    definition: ActivityDefinition
    input_data: list[BaseResource] = field(default_factory=list)
    period: Period | None = None


class TransformEngine(ABC):
    """Declarative transformation-script engine."""

    @abstractmethod
    async def transform(self, script_ref: str, parameters: TransformParameters, target: CarePlan) -> None:
        """Mutate ``target`` in place, typically appending contained resources and activities."""
        pass


class WorkflowApplier(ABC):
    """External workflow engine running $apply on a plan definition."""

    @abstractmethod
    async def apply(
        self,
        plan_definition: PlanDefinition,
        subject: BaseResource,
        input_data: list[BaseResource],
    ) -> CarePlan:
        """Return a proposed (transient) care plan."""
        pass


class NotificationDispatcher(ABC):
    """Delivers human-readable notifications."""

    @abstractmethod
    async def show(self, title: str, description: str, category: str) -> None:
        pass


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Dispatcher that writes notifications to the structured log."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []

    async def show(self, title: str, description: str, category: str) -> None:
        self.sent.append({"title": title, "description": description, "category": category})
        logger.info("Notification", title=title, category=category, description=description)

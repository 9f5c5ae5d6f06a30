"""
Careflow - Care Plan and Task Orchestration Engine

Generates care plans and tasks from declarative plan definitions and keeps
them reconciled over time.
"""

__version__ = "0.1.0"

from careflow.errors import (
    CareflowError,
    ConfigurationError,
    PersistenceError,
    ResourceNotFoundError,
    UnsupportedConditionError,
    UnsupportedDynamicValueError,
    UnsupportedResourceKindError,
    UnsupportedTimingError,
)
from careflow.service import CareflowService

__all__ = [
    "__version__",
    "CareflowError",
    "ConfigurationError",
    "PersistenceError",
    "ResourceNotFoundError",
    "UnsupportedConditionError",
    "UnsupportedDynamicValueError",
    "UnsupportedResourceKindError",
    "UnsupportedTimingError",
    "CareflowService",
]

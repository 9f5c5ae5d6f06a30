"""
Careflow Errors

Configuration errors fail fast: they signal a malformed protocol that must
be fixed by its author. Missing references are reported through
``NotFound`` lookups and only raised where a caller asks for it.
"""


class CareflowError(Exception):
    """Base error for the care plan engine."""
    pass


class ConfigurationError(CareflowError):
    """Malformed protocol or workflow configuration."""
    pass


class UnsupportedConditionError(ConfigurationError):
    """Condition kind or expression language not supported."""
    pass


class UnsupportedDynamicValueError(ConfigurationError):
    """Dynamic value declared on an unsupported activity kind."""
    pass


class UnsupportedTimingError(ConfigurationError):
    """Activity definition carries neither a timing nor a dosage list."""
    pass


class UnsupportedResourceKindError(ConfigurationError):
    """Resource kind not supported by the requested operation."""
    pass


class ResourceNotFoundError(CareflowError):
    """A referenced resource does not exist in the store."""

    def __init__(self, resource_type: str, resource_id: str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type}/{resource_id} not found")


class PersistenceError(CareflowError):
    """The resource store failed to persist a change."""
    pass

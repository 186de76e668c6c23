"""
Errors raised by the activity core services.

CLI commands, scheduled jobs and the app's error handlers catch these
types; per-item batch loops catch ``Exception`` and record the message.

    raise NotFoundError(resource="Activity", resource_id=activity_id)
    raise CycleError("Cannot move an activity under its own descendant")
"""


class ActivityCoreError(Exception):
    """Base class for every error the core raises on purpose."""


class NotFoundError(ActivityCoreError):
    """A record is missing or soft-deleted.

    ``resource_id`` may be a single id or a list of ids (merge inputs).
    """

    def __init__(self, resource: str, resource_id=None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        where = f" id={resource_id}" if resource_id is not None else ""
        super().__init__(f"{resource}{where} not found")


class ValidationError(ActivityCoreError):
    """Input is well-formed but breaks a hierarchy, merge or audit rule."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class HierarchyError(ValidationError):
    """A child activity type is not allowed under the requested parent type."""


class CycleError(ValidationError):
    """A reparent would make an activity its own ancestor."""


class ConflictError(ActivityCoreError):
    """A unique member triple already exists, or a row's version moved underneath us."""

    def __init__(self, resource: str, field: str, value=None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        if field == "version":
            msg = f"{resource} {value!r} was modified concurrently"
        else:
            msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)

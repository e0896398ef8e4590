"""Error taxonomy for scalegroups.

Lookup misses are not errors: lookups return ``None`` or an empty tuple.
"""

from __future__ import annotations


class ScaleGroupsError(Exception):
    """Base class for all scalegroups errors."""


class FormatError(ScaleGroupsError, ValueError):
    """Malformed discovery spec, explicit group spec or instance identifier."""


class ValidationError(ScaleGroupsError):
    """A mutation was rejected before any remote call was issued."""


class GroupNotFoundError(ValidationError):
    """The scaling group is not present in the current snapshot."""

    def __init__(self, name: str) -> None:
        super().__init__(f"scaling group {name!r} is not known to the cache")
        self.name = name


class RemoteUnavailableError(ScaleGroupsError):
    """A call against the remote control plane failed."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(f"{operation} failed: {reason}")
        self.operation = operation
        self.reason = reason


class UnknownInstanceTypeError(ScaleGroupsError):
    """A group's instance type could not be resolved against the catalog."""

    def __init__(self, group: str, instance_type: str | None, reason: str | None = None) -> None:
        if reason is None:
            reason = f"uses the unknown EC2 instance type {instance_type!r}"
        super().__init__(f"ASG {group!r} {reason}")
        self.group = group
        self.instance_type = instance_type

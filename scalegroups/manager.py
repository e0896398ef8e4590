"""Manager: refresh timing and the public operations over the group cache.

The controller calls :meth:`Manager.refresh` once per control-loop iteration.
A regeneration happens only when the refresh interval has elapsed since the
last successful one; :meth:`Manager.force_refresh` regenerates unconditionally.

Example:
    >>> manager = Manager.create(AWSWrapper(asg, ec2), GroupSelector.from_specs(["asg:tag=k8s"]))
    >>> manager.refresh()
    False
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, TypeAlias

from loguru import logger

from scalegroups.cache import GroupCache
from scalegroups.constants import REFRESH_INTERVAL
from scalegroups.errors import GroupNotFoundError, RemoteUnavailableError, ValidationError
from scalegroups.instance_types import INSTANCE_TYPES, InstanceType
from scalegroups.types import GroupTemplate, InstanceRef, ScalingGroup, ScalingGroupRef

if TYPE_CHECKING:
    from scalegroups.discovery import GroupSelector
    from scalegroups.remote import ScalingGroupService

log = logger.bind(component="manager")

Clock: TypeAlias = Callable[[], float]


class Manager:
    """Owns the group cache and the refresh clock."""

    def __init__(
        self,
        cache: GroupCache,
        *,
        refresh_interval: float = REFRESH_INTERVAL,
        clock: Clock = time.monotonic,
    ) -> None:
        self._cache = cache
        self._refresh_interval = refresh_interval
        self._clock = clock
        self._last_refresh: float | None = None
        self._lock = threading.RLock()

    @classmethod
    def create(
        cls,
        remote: ScalingGroupService,
        selector: GroupSelector,
        *,
        instance_types: Mapping[str, InstanceType] = INSTANCE_TYPES,
        refresh_interval: float = REFRESH_INTERVAL,
        clock: Clock = time.monotonic,
    ) -> Manager:
        """Build a manager and populate its cache.

        Raises:
            RemoteUnavailableError: If the initial listing fails.
        """
        cache = GroupCache(remote, selector, instance_types)
        manager = cls(cache, refresh_interval=refresh_interval, clock=clock)
        manager.force_refresh()
        return manager

    @property
    def cache(self) -> GroupCache:
        return self._cache

    @property
    def refresh_interval(self) -> float:
        return self._refresh_interval

    @property
    def last_refresh(self) -> float | None:
        with self._lock:
            return self._last_refresh

    def next_refresh(self) -> float | None:
        with self._lock:
            if self._last_refresh is None:
                return None
            return self._last_refresh + self._refresh_interval

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    def refresh(self) -> bool:
        """Regenerate if the refresh interval has elapsed.

        Remote failures are logged and the stale cache keeps serving.

        Returns:
            True if a regeneration happened.
        """
        with self._lock:
            due = self.next_refresh()
            if due is not None and self._clock() < due:
                return False
            try:
                self.force_refresh()
            except RemoteUnavailableError:
                return False
            return True

    def force_refresh(self) -> None:
        """Regenerate now, regardless of the clock.

        Raises:
            RemoteUnavailableError: If the listing fails.
        """
        with self._lock:
            try:
                self._cache.regenerate()
            except RemoteUnavailableError as e:
                log.error("Failed to regenerate ASG cache: {error}", error=e)
                raise
            self._last_refresh = self._clock()
            log.debug(
                "Refreshed ASG list, next refresh after {next}s",
                next=self._refresh_interval,
            )

    def cleanup(self) -> None:
        self._cache.cleanup()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_groups(self) -> dict[ScalingGroupRef, ScalingGroup]:
        return self._cache.groups()

    def get_group(self, ref: ScalingGroupRef) -> ScalingGroup | None:
        return self._cache.group(ref)

    def get_group_for_instance(self, ref: InstanceRef) -> ScalingGroup | None:
        return self._cache.find_group_for_instance(ref)

    def get_group_instances(self, ref: ScalingGroupRef) -> tuple[InstanceRef, ...]:
        return self._cache.instances_of(ref)

    def get_instance_status(self, ref: InstanceRef) -> str | None:
        return self._cache.instance_status(ref)

    def get_autoscaling_options(self, ref: ScalingGroupRef) -> Mapping[str, str] | None:
        return self._cache.autoscaling_options_of(ref)

    def get_group_template(self, ref: ScalingGroupRef) -> GroupTemplate:
        """Node template for a group: its first zone, region and instance type.

        Raises:
            GroupNotFoundError: If the group is not cached.
            ValidationError: If the group has no availability zone.
            UnknownInstanceTypeError: If the group's instance type could not
                be resolved during the last regeneration.
        """
        with self._cache.lock:
            group = self._cache.group(ref)
            if group is None:
                raise GroupNotFoundError(ref.name)
            if not group.availability_zones:
                raise ValidationError(f"unable to get first AvailabilityZone for ASG {group.name!r}")

            zone = group.availability_zones[0]
            if len(group.availability_zones) > 1:
                log.trace(
                    "Found multiple availability zones for ASG {name}; using {zone}",
                    name=group.name, zone=zone,
                )

            if (error := self._cache.template_error_of(ref)) is not None:
                raise error.with_traceback(None)
            instance_type = self._cache.instance_type_of(ref)
            assert instance_type is not None

            return GroupTemplate(
                instance_type=instance_type,
                region=zone[:-1],
                zone=zone,
                tags=group.tags,
            )

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def set_group_size(self, ref: ScalingGroupRef, size: int) -> None:
        self._cache.set_size(ref, size)

    def delete_instances(self, refs: Sequence[InstanceRef]) -> None:
        """Delete instances of one group and schedule a regeneration.

        The clock is moved back by one interval, so the next :meth:`refresh`
        regenerates instead of waiting the interval out.
        """
        self._cache.delete_instances(refs)
        log.debug("DeleteInstances was called: scheduling an ASG list refresh for next main loop evaluation")
        with self._lock:
            self._last_refresh = self._clock() - self._refresh_interval

"""In-memory mirror of the scaling groups selected for this cluster.

The cache holds one immutable :class:`CacheSnapshot` at a time. Regeneration
lists every group from the remote control plane, builds a complete new
snapshot and swaps it in as a whole, so a reader always sees either the old or
the new view. Listing and building run outside the reader lock, which is held
only for the swap; mutations and lookups take that same lock.

Only ``ScalingGroup.current_size`` changes between regenerations: a
successful size mutation writes the new target into the cached group.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from loguru import logger

from scalegroups.constants import (
    MAX_RECORDS_RETURNED_BY_API,
    PLACEHOLDER_INSTANCE_NAME_PREFIX,
    PLACEHOLDER_STATUS,
)
from scalegroups.discovery import GroupSelector
from scalegroups.errors import (
    GroupNotFoundError,
    RemoteUnavailableError,
    UnknownInstanceTypeError,
    ValidationError,
)
from scalegroups.instance_types import INSTANCE_TYPES, InstanceType
from scalegroups.types import InstanceRef, ScalingGroup, ScalingGroupRef

if TYPE_CHECKING:
    from scalegroups.remote import ScalingGroupService

log = logger.bind(component="group-cache")

_MUTABLE_TEMPLATE_VERSIONS = frozenset({"$Latest", "$Default"})


def _empty() -> Mapping:
    return MappingProxyType({})


@dataclass(frozen=True, slots=True)
class CacheSnapshot:
    """One consistent view of the selected groups and their derived indexes."""

    groups: Mapping[ScalingGroupRef, ScalingGroup] = field(default_factory=_empty)
    instance_to_group: Mapping[str, ScalingGroupRef] = field(default_factory=_empty)
    instance_status: Mapping[str, str] = field(default_factory=_empty)
    instance_types: Mapping[ScalingGroupRef, InstanceType] = field(default_factory=_empty)
    template_errors: Mapping[ScalingGroupRef, UnknownInstanceTypeError] = field(default_factory=_empty)


def placeholder_instances(group: ScalingGroup, real_count: int) -> list[InstanceRef]:
    """Placeholder members for desired capacity the listing does not show yet."""
    if not group.availability_zones or real_count >= group.current_size:
        return []
    zone = group.availability_zones[0]
    return [
        InstanceRef.for_instance(zone, f"{PLACEHOLDER_INSTANCE_NAME_PREFIX}-{group.name}-{i}")
        for i in range(real_count, group.current_size)
    ]


class GroupCache:
    """Scaling group cache with regeneration and mutation logic."""

    def __init__(
        self,
        remote: ScalingGroupService,
        selector: GroupSelector,
        instance_types: Mapping[str, InstanceType] = INSTANCE_TYPES,
    ) -> None:
        self._remote = remote
        self._selector = selector
        self._catalog = instance_types
        self._lock = threading.RLock()
        self._regen_lock = threading.Lock()
        self._snapshot = CacheSnapshot()
        # launch configurations and pinned template versions are immutable
        self._launch_type_memo: dict[str, str] = {}

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def snapshot(self) -> CacheSnapshot:
        with self._lock:
            return self._snapshot

    # -------------------------------------------------------------------------
    # Regeneration
    # -------------------------------------------------------------------------

    def regenerate(self) -> None:
        """Rebuild the cache from a full remote listing.

        Raises:
            RemoteUnavailableError: If the listing fails. The previous
                snapshot is left untouched.
        """
        with self._regen_lock:
            raw_groups = self._remote.describe_groups(MAX_RECORDS_RETURNED_BY_API)
            snapshot = self._build_snapshot(raw_groups)
            with self._lock:
                dropped = self._snapshot.groups.keys() - snapshot.groups.keys()
                self._snapshot = snapshot

        if dropped:
            log.info("Dropped scaling groups no longer observed: {names}", names=sorted(map(str, dropped)))
        log.debug(
            "Regenerated cache: {groups} groups, {instances} instances",
            groups=len(snapshot.groups),
            instances=len(snapshot.instance_to_group),
        )

    def _build_snapshot(self, raw_groups: Sequence[Mapping]) -> CacheSnapshot:
        groups: dict[ScalingGroupRef, ScalingGroup] = {}
        for raw in raw_groups:
            group = ScalingGroup.from_api(raw)
            if not self._selector.selects(group.name, group.tags):
                continue
            if explicit := self._selector.explicit.get(group.name):
                group.min_size = explicit.min_size
                group.max_size = explicit.max_size
            groups[group.ref] = group

        statuses: dict[str, str] = {}
        for raw in raw_groups:
            for instance in raw.get("Instances", []):
                statuses[instance["InstanceId"]] = instance.get("LifecycleState", "")

        instance_to_group: dict[str, ScalingGroupRef] = {}
        for group in groups.values():
            placeholders = placeholder_instances(group, len(group.instances))
            for ph in placeholders:
                statuses[ph.name] = PLACEHOLDER_STATUS
            group.instances = (*group.instances, *placeholders)
            for instance in group.instances:
                if (owner := instance_to_group.get(instance.name)) is not None:
                    log.warning(
                        "Instance {instance} listed in both {a} and {b}",
                        instance=instance.name, a=owner, b=group.ref,
                    )
                instance_to_group[instance.name] = group.ref

        instance_types: dict[ScalingGroupRef, InstanceType] = {}
        template_errors: dict[ScalingGroupRef, UnknownInstanceTypeError] = {}
        for group in groups.values():
            try:
                instance_types[group.ref] = self._resolve_instance_type(group)
            except UnknownInstanceTypeError as e:
                log.error("Cannot build template for ASG {name}: {error}", name=group.name, error=e)
                template_errors[group.ref] = e

        return CacheSnapshot(
            groups=MappingProxyType(groups),
            instance_to_group=MappingProxyType(instance_to_group),
            instance_status=MappingProxyType(
                {k: v for k, v in statuses.items() if k in instance_to_group}
            ),
            instance_types=MappingProxyType(instance_types),
            template_errors=MappingProxyType(template_errors),
        )

    def _resolve_instance_type(self, group: ScalingGroup) -> InstanceType:
        name = self._instance_type_name(group)
        if (instance_type := self._catalog.get(name)) is None:
            raise UnknownInstanceTypeError(group.name, name)
        return instance_type

    def _instance_type_name(self, group: ScalingGroup) -> str:
        policy = group.mixed_instances_policy
        if policy is not None and policy.instance_type_overrides:
            return policy.instance_type_overrides[0]

        template = policy.launch_template if policy is not None else None
        template = template or group.launch_template
        try:
            if template is not None:
                key = f"lt:{template.key}"
                if key in self._launch_type_memo:
                    return self._launch_type_memo[key]
                name = self._remote.launch_template_instance_type(template)
                if template.version not in _MUTABLE_TEMPLATE_VERSIONS:
                    self._launch_type_memo[key] = name
                return name

            if group.launch_configuration_name:
                key = f"lc:{group.launch_configuration_name}"
                if key not in self._launch_type_memo:
                    self._launch_type_memo[key] = self._remote.launch_configuration_instance_type(
                        group.launch_configuration_name,
                    )
                return self._launch_type_memo[key]
        except RemoteUnavailableError as e:
            raise UnknownInstanceTypeError(
                group.name, None, f"instance type could not be resolved: {e}",
            ) from e

        raise UnknownInstanceTypeError(
            group.name, None, "has neither a launch template nor a launch configuration",
        )

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def set_size(self, ref: ScalingGroupRef, new_size: int) -> None:
        """Set a group's desired capacity and record it as the cached size.

        Raises:
            ValidationError: If the group is unknown or ``new_size`` is outside
                its bounds. No remote call is made.
            RemoteUnavailableError: If the remote call fails.
        """
        with self._lock:
            group = self._require(ref)
            if not group.min_size <= new_size <= group.max_size:
                raise ValidationError(
                    f"size {new_size} for ASG {group.name!r} outside "
                    f"[{group.min_size}, {group.max_size}]"
                )
            self._remote.set_desired_capacity(group.name, new_size)
            group.current_size = new_size

    def delete_instances(self, refs: Sequence[InstanceRef]) -> None:
        """Terminate instances that all belong to one group.

        Placeholder members are removed by lowering the desired capacity,
        since no real instance exists to terminate. The cached size is not
        changed for real terminations; the next regeneration reports it.

        Raises:
            ValidationError: If an instance is unknown, the batch spans more
                than one group, or the deletion would drop the group below its
                minimum. No remote call is made.
            RemoteUnavailableError: If a remote call fails.
        """
        unique = list({ref.name: ref for ref in refs}.values())
        if not unique:
            return

        with self._lock:
            owners: set[ScalingGroupRef] = set()
            for ref in unique:
                owner = self._snapshot.instance_to_group.get(ref.name)
                if owner is None:
                    raise ValidationError(f"can't delete instance {ref.name}, which is not part of an ASG")
                owners.add(owner)
            if len(owners) > 1:
                raise ValidationError(
                    "cannot delete instances which don't belong to the same ASG: "
                    + ", ".join(sorted(map(str, owners)))
                )

            group = self._snapshot.groups[owners.pop()]
            if group.current_size - len(unique) < group.min_size:
                raise ValidationError(
                    f"min size reached for ASG {group.name!r}: deleting {len(unique)} of "
                    f"{group.current_size} would go below {group.min_size}"
                )

            placeholders = [ref for ref in unique if ref.is_placeholder]
            real = [ref for ref in unique if not ref.is_placeholder]
            if placeholders:
                new_size = group.current_size - len(placeholders)
                log.info(
                    "Removing {n} placeholder instances from ASG {name}",
                    n=len(placeholders), name=group.name,
                )
                self._remote.set_desired_capacity(group.name, new_size)
                group.current_size = new_size
            if real:
                log.info(
                    "Terminating instances {instances} in ASG {name}",
                    instances=[f"{ref.name} ({ref.zone})" for ref in real], name=group.name,
                )
                self._remote.terminate_instances([ref.name for ref in real])

    def cleanup(self) -> None:
        with self._regen_lock, self._lock:
            self._snapshot = CacheSnapshot()
            self._launch_type_memo.clear()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _require(self, ref: ScalingGroupRef) -> ScalingGroup:
        group = self._snapshot.groups.get(ref)
        if group is None:
            raise GroupNotFoundError(ref.name)
        return group

    def groups(self) -> dict[ScalingGroupRef, ScalingGroup]:
        with self._lock:
            return dict(self._snapshot.groups)

    def group(self, ref: ScalingGroupRef) -> ScalingGroup | None:
        with self._lock:
            return self._snapshot.groups.get(ref)

    def find_group_for_instance(self, ref: InstanceRef) -> ScalingGroup | None:
        with self._lock:
            owner = self._snapshot.instance_to_group.get(ref.name)
            return self._snapshot.groups.get(owner) if owner is not None else None

    def instances_of(self, ref: ScalingGroupRef) -> tuple[InstanceRef, ...]:
        with self._lock:
            group = self._snapshot.groups.get(ref)
            return group.instances if group is not None else ()

    def instance_status(self, ref: InstanceRef) -> str | None:
        with self._lock:
            return self._snapshot.instance_status.get(ref.name)

    def autoscaling_options_of(self, ref: ScalingGroupRef) -> Mapping[str, str] | None:
        with self._lock:
            group = self._snapshot.groups.get(ref)
            return group.autoscaling_options if group is not None else None

    def instance_type_of(self, ref: ScalingGroupRef) -> InstanceType | None:
        with self._lock:
            return self._snapshot.instance_types.get(ref)

    def template_error_of(self, ref: ScalingGroupRef) -> UnknownInstanceTypeError | None:
        with self._lock:
            return self._snapshot.template_errors.get(ref)

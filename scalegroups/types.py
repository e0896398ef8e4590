"""Core value types: group and instance references, scaling groups, templates."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final

from scalegroups.constants import (
    PLACEHOLDER_INSTANCE_NAME_PREFIX,
    PROVIDER_SCHEME,
    ClusterAutoscalerTag,
)
from scalegroups.errors import FormatError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from scalegroups.instance_types import InstanceType


# =============================================================================
# References
# =============================================================================


@dataclass(frozen=True, slots=True)
class ScalingGroupRef:
    """Unique name of a scaling group."""

    name: str

    def __str__(self) -> str:
        return self.name


_PROVIDER_ID_RE: Final = re.compile(
    r"^(?P<scheme>[a-z][-a-z0-9+.]*):///(?P<zone>[-0-9a-z]+)/"
    r"(?:(?P<name>[-0-9a-z]+)(?:/[-0-9a-z.]*)?"
    rf"|(?P<placeholder>{re.escape(PLACEHOLDER_INSTANCE_NAME_PREFIX)}[^/]*))$"
)


@dataclass(frozen=True, slots=True)
class InstanceRef:
    """Reference to an instance: its provider id and its instance id."""

    provider_id: str
    name: str

    @property
    def is_placeholder(self) -> bool:
        return self.name.startswith(PLACEHOLDER_INSTANCE_NAME_PREFIX)

    @property
    def zone(self) -> str:
        return self.provider_id.split(":///", 1)[1].split("/", 1)[0]

    @classmethod
    def for_instance(cls, zone: str, instance_id: str) -> InstanceRef:
        return cls(provider_id=f"{PROVIDER_SCHEME}:///{zone}/{instance_id}", name=instance_id)


def parse_provider_id(provider_id: str) -> InstanceRef:
    """Parse ``<scheme>:///<zone>/<name>`` into an :class:`InstanceRef`.

    ``<name>`` may instead start with the placeholder prefix, in which case
    any characters up to the end of the segment are accepted.

    Raises:
        FormatError: If the identifier does not match the grammar.
    """
    match = _PROVIDER_ID_RE.match(provider_id)
    if match is None:
        raise FormatError(
            f"wrong id: expected format <scheme>:///<zone>/<name>, got {provider_id!r}"
        )
    name = match.group("name") or match.group("placeholder")
    return InstanceRef(provider_id=provider_id, name=name)


# =============================================================================
# Launch Specifications
# =============================================================================


@dataclass(frozen=True, slots=True)
class LaunchTemplateSpec:
    """Launch template reference as reported by DescribeAutoScalingGroups."""

    name: str | None = None
    template_id: str | None = None
    version: str = "$Default"

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> LaunchTemplateSpec:
        return cls(
            name=raw.get("LaunchTemplateName"),
            template_id=raw.get("LaunchTemplateId"),
            version=raw.get("Version") or "$Default",
        )

    @property
    def key(self) -> str:
        return f"{self.template_id or self.name}@{self.version}"


@dataclass(frozen=True, slots=True)
class MixedInstancesPolicy:
    """Mixed-instance policy: a launch template plus ordered type overrides."""

    launch_template: LaunchTemplateSpec | None
    instance_type_overrides: tuple[str, ...] = ()

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> MixedInstancesPolicy:
        lt = raw.get("LaunchTemplate", {})
        spec = lt.get("LaunchTemplateSpecification")
        overrides = tuple(
            o["InstanceType"] for o in lt.get("Overrides", []) if o.get("InstanceType")
        )
        return cls(
            launch_template=LaunchTemplateSpec.from_api(spec) if spec else None,
            instance_type_overrides=overrides,
        )


# =============================================================================
# Scaling Group
# =============================================================================


@dataclass(slots=True)
class ScalingGroup:
    """Cached view of one scaling group.

    ``current_size`` is the target size as last observed or mutated. It is the
    only field updated in place between regenerations.
    """

    ref: ScalingGroupRef
    min_size: int
    max_size: int
    current_size: int
    availability_zones: tuple[str, ...]
    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    mixed_instances_policy: MixedInstancesPolicy | None = None
    launch_template: LaunchTemplateSpec | None = None
    launch_configuration_name: str | None = None
    autoscaling_options: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    instances: tuple[InstanceRef, ...] = ()

    @property
    def name(self) -> str:
        return self.ref.name

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> ScalingGroup:
        """Build a group from one DescribeAutoScalingGroups record."""
        tags = {t["Key"]: t.get("Value", "") for t in raw.get("Tags", [])}
        zones = tuple(raw.get("AvailabilityZones", []))
        instances = tuple(
            InstanceRef.for_instance(i.get("AvailabilityZone", ""), i["InstanceId"])
            for i in raw.get("Instances", [])
        )
        mip = raw.get("MixedInstancesPolicy")
        lt = raw.get("LaunchTemplate")
        return cls(
            ref=ScalingGroupRef(raw["AutoScalingGroupName"]),
            min_size=int(raw["MinSize"]),
            max_size=int(raw["MaxSize"]),
            current_size=int(raw["DesiredCapacity"]),
            availability_zones=zones,
            tags=MappingProxyType(tags),
            mixed_instances_policy=MixedInstancesPolicy.from_api(mip) if mip else None,
            launch_template=LaunchTemplateSpec.from_api(lt) if lt else None,
            launch_configuration_name=raw.get("LaunchConfigurationName"),
            autoscaling_options=MappingProxyType(autoscaling_options_from_tags(tags)),
            instances=instances,
        )


def autoscaling_options_from_tags(tags: Mapping[str, str]) -> dict[str, str]:
    prefix = ClusterAutoscalerTag.AUTOSCALING_OPTIONS_PREFIX
    return {
        key.removeprefix(prefix): value
        for key, value in tags.items()
        if key.startswith(prefix) and len(key) > len(prefix)
    }


# =============================================================================
# Template
# =============================================================================


@dataclass(frozen=True, slots=True)
class GroupTemplate:
    """Node template derived from a group's first zone and instance type."""

    instance_type: InstanceType
    region: str
    zone: str
    tags: Mapping[str, str]

from __future__ import annotations

import copy
from collections.abc import Sequence
from typing import Any

import pytest

from scalegroups.discovery import GroupSelector
from scalegroups.errors import RemoteUnavailableError
from scalegroups.types import LaunchTemplateSpec


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticFetcher:
    """Region fetcher returning a fixed answer."""

    def __init__(self, region: str | None) -> None:
        self.region = region
        self.calls = 0

    def retrieve_region(self) -> str | None:
        self.calls += 1
        return self.region


def instance_record(instance_id: str, zone: str = "us-east-1a", state: str = "InService") -> dict[str, Any]:
    return {
        "InstanceId": instance_id,
        "AvailabilityZone": zone,
        "LifecycleState": state,
        "HealthStatus": "Healthy",
        "ProtectedFromScaleIn": False,
    }


class FakeScalingGroupService:
    """In-memory stand-in for the remote control plane.

    Every call is recorded in ``calls`` as ``(operation, *args)``.
    """

    def __init__(self) -> None:
        self.groups: dict[str, dict[str, Any]] = {}
        self.launch_configs: dict[str, str] = {}
        self.launch_templates: dict[str, str] = {}
        self.statuses: dict[str, str] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.fail_listing = False
        self.fail_mutations = False

    def add_group(
        self,
        name: str,
        *,
        min_size: int = 1,
        max_size: int = 10,
        desired: int | None = None,
        instances: Sequence[str] = (),
        zones: Sequence[str] = ("us-east-1a", "us-east-1b"),
        tags: dict[str, str] | None = None,
        instance_type: str = "m5.large",
    ) -> dict[str, Any]:
        record: dict[str, Any] = {
            "AutoScalingGroupName": name,
            "MinSize": min_size,
            "MaxSize": max_size,
            "DesiredCapacity": len(instances) if desired is None else desired,
            "AvailabilityZones": list(zones),
            "Tags": [{"Key": k, "Value": v} for k, v in (tags or {}).items()],
            "Instances": [instance_record(i, zones[0]) for i in instances],
            "LaunchConfigurationName": f"lc-{name}",
        }
        self.launch_configs[f"lc-{name}"] = instance_type
        self.groups[name] = record
        return record

    def operations(self, name: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]

    def _check_mutation(self, operation: str) -> None:
        if self.fail_mutations:
            raise RemoteUnavailableError(operation, "service unavailable")

    def describe_groups(self, page_size: int = 100) -> list[dict[str, Any]]:
        self.calls.append(("describe_groups", page_size))
        if self.fail_listing:
            raise RemoteUnavailableError("DescribeAutoScalingGroups", "connection reset")
        return copy.deepcopy(list(self.groups.values()))

    def set_desired_capacity(self, name: str, size: int) -> None:
        self.calls.append(("set_desired_capacity", name, size))
        self._check_mutation("SetDesiredCapacity")
        self.groups[name]["DesiredCapacity"] = size

    def terminate_instances(self, instance_ids: Sequence[str]) -> None:
        self.calls.append(("terminate_instances", tuple(instance_ids)))
        self._check_mutation("TerminateInstanceInAutoScalingGroup")
        for record in self.groups.values():
            kept = [i for i in record["Instances"] if i["InstanceId"] not in instance_ids]
            record["DesiredCapacity"] -= len(record["Instances"]) - len(kept)
            record["Instances"] = kept
        for instance_id in instance_ids:
            self.statuses[instance_id] = "shutting-down"

    def describe_instance_status(self, instance_ids: Sequence[str]) -> dict[str, str]:
        self.calls.append(("describe_instance_status", tuple(instance_ids)))
        return {i: self.statuses.get(i, "running") for i in instance_ids}

    def launch_configuration_instance_type(self, name: str) -> str:
        self.calls.append(("launch_configuration_instance_type", name))
        if name not in self.launch_configs:
            raise RemoteUnavailableError("DescribeLaunchConfigurations", f"launch configuration {name!r} not found")
        return self.launch_configs[name]

    def launch_template_instance_type(self, template: LaunchTemplateSpec) -> str:
        self.calls.append(("launch_template_instance_type", template.key))
        key = template.template_id or template.name or ""
        if key not in self.launch_templates:
            raise RemoteUnavailableError("DescribeLaunchTemplateVersions", f"launch template {key!r} not found")
        return self.launch_templates[key]


DISCOVERY_TAGS = {"k8s.io/cluster-autoscaler/enabled": "true", "env": "prod"}


@pytest.fixture
def remote() -> FakeScalingGroupService:
    fake = FakeScalingGroupService()
    fake.add_group("workers", instances=["i-0001", "i-0002"], tags=DISCOVERY_TAGS)
    fake.add_group("gpu", min_size=0, max_size=4, instances=["i-0101"], tags=DISCOVERY_TAGS, instance_type="g5.xlarge")
    fake.add_group("unmanaged", instances=["i-0201"], tags={"env": "prod"})
    return fake


@pytest.fixture
def selector() -> GroupSelector:
    return GroupSelector.from_specs(["asg:tag=k8s.io/cluster-autoscaler/enabled=true,env=prod"])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()

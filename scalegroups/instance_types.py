"""Static EC2 instance type catalog used to resolve group templates."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Final, Literal, TypeAlias

Architecture: TypeAlias = Literal["amd64", "arm64"]


@dataclass(frozen=True, slots=True)
class InstanceType:
    """Capacity of an EC2 instance type."""

    instance_type: str
    vcpu: int
    memory_mb: int
    gpu: int = 0
    architecture: Architecture = "amd64"


def _t(name: str, vcpu: int, memory_gb: float, gpu: int = 0, arch: Architecture = "amd64") -> InstanceType:
    return InstanceType(name, vcpu, int(memory_gb * 1024), gpu, arch)


_CATALOG: Final[list[InstanceType]] = [
    # Burstable
    _t("t3.micro", 2, 1),
    _t("t3.small", 2, 2),
    _t("t3.medium", 2, 4),
    _t("t3.large", 2, 8),
    _t("t3.xlarge", 4, 16),
    _t("t3.2xlarge", 8, 32),
    _t("t4g.medium", 2, 4, arch="arm64"),
    _t("t4g.large", 2, 8, arch="arm64"),
    _t("t4g.xlarge", 4, 16, arch="arm64"),
    # General purpose
    _t("m5.large", 2, 8),
    _t("m5.xlarge", 4, 16),
    _t("m5.2xlarge", 8, 32),
    _t("m5.4xlarge", 16, 64),
    _t("m5.8xlarge", 32, 128),
    _t("m5.12xlarge", 48, 192),
    _t("m5.16xlarge", 64, 256),
    _t("m5.24xlarge", 96, 384),
    _t("m6i.large", 2, 8),
    _t("m6i.xlarge", 4, 16),
    _t("m6i.2xlarge", 8, 32),
    _t("m6i.4xlarge", 16, 64),
    _t("m6g.large", 2, 8, arch="arm64"),
    _t("m6g.xlarge", 4, 16, arch="arm64"),
    _t("m6g.2xlarge", 8, 32, arch="arm64"),
    # Compute optimized
    _t("c5.large", 2, 4),
    _t("c5.xlarge", 4, 8),
    _t("c5.2xlarge", 8, 16),
    _t("c5.4xlarge", 16, 32),
    _t("c6g.large", 2, 4, arch="arm64"),
    _t("c6g.xlarge", 4, 8, arch="arm64"),
    # Memory optimized
    _t("r5.large", 2, 16),
    _t("r5.xlarge", 4, 32),
    _t("r5.2xlarge", 8, 64),
    _t("r5.4xlarge", 16, 128),
    # Accelerated
    _t("p2.xlarge", 4, 61, 1),
    _t("p3.2xlarge", 8, 61, 1),
    _t("p3.8xlarge", 32, 244, 4),
    _t("p3.16xlarge", 64, 488, 8),
    _t("p4d.24xlarge", 96, 1152, 8),
    _t("g4dn.xlarge", 4, 16, 1),
    _t("g4dn.2xlarge", 8, 32, 1),
    _t("g4dn.12xlarge", 48, 192, 4),
    _t("g5.xlarge", 4, 16, 1),
    _t("g5.2xlarge", 8, 32, 1),
    _t("g5.12xlarge", 48, 192, 4),
    _t("g5.48xlarge", 192, 768, 8),
]

INSTANCE_TYPES: Final = MappingProxyType({t.instance_type: t for t in _CATALOG})

"""Centralized constants and enums for scalegroups.

All magic strings, tag keys and timing constants are defined here
to ensure consistency across the cache, manager and node-group facade.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Discovery
# =============================================================================

AUTO_DISCOVERER_TYPE_ASG: Final = "asg"
ASG_AUTO_DISCOVERER_KEY_TAG: Final = "tag"


# =============================================================================
# AWS Resource Tags and Annotations
# =============================================================================


class ClusterAutoscalerTag(StrEnum):
    """Tag keys and annotations understood by the controller."""

    AUTOSCALING_OPTIONS_PREFIX = "k8s.io/cluster-autoscaler/node-template/autoscaling-options/"
    ENABLED_ANNOTATION = "k8s.io/cluster-autoscaler/enabled"


class AutoscalingOption(StrEnum):
    """Per-group autoscaling option names (tag suffixes)."""

    SCALE_DOWN_UTILIZATION_THRESHOLD = "scaledownutilizationthreshold"
    SCALE_DOWN_GPU_UTILIZATION_THRESHOLD = "scaledowngpuutilizationthreshold"
    SCALE_DOWN_UNNEEDED_TIME = "scaledownunneededtime"
    SCALE_DOWN_UNREADY_TIME = "scaledownunreadytime"


# =============================================================================
# Instance States
# =============================================================================


class InstanceState(StrEnum):
    """EC2 instance state names reported by DescribeInstanceStatus."""

    PENDING = "pending"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
    STOPPING = "stopping"
    STOPPED = "stopped"


PLACEHOLDER_STATUS: Final = "Placeholder"
PLACEHOLDER_INSTANCE_NAME_PREFIX: Final = "i-placeholder"
PROVIDER_SCHEME: Final = "aws"


# =============================================================================
# Remote API
# =============================================================================

MAX_RECORDS_RETURNED_BY_API: Final = 100
OPERATION_WAIT_TIMEOUT: Final = 5.0
OPERATION_POLL_INTERVAL: Final = 0.1
REMOTE_MAX_ATTEMPTS: Final = 5

THROTTLING_ERROR_CODES: Final = frozenset({
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
})

EC2_METADATA_SERVICE_URL: Final = "http://169.254.169.254"
REGION_ENV_VAR: Final = "AWS_REGION"


# =============================================================================
# Refresh
# =============================================================================

REFRESH_INTERVAL: Final = 60.0


# =============================================================================
# GPU
# =============================================================================

GPU_LABEL: Final = "k8s.amazonaws.com/accelerator"

AVAILABLE_GPU_TYPES: Final = frozenset({
    "nvidia-tesla-k80",
    "nvidia-tesla-p100",
    "nvidia-tesla-v100",
    "nvidia-tesla-t4",
    "nvidia-tesla-a100",
    "nvidia-a10g",
})

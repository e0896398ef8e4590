"""Remote API wrapper over the AWS Auto Scaling and EC2 control planes.

The cache depends only on the :class:`ScalingGroupService` protocol, so it can
be exercised against an in-memory fake. :class:`AWSWrapper` is the boto3
implementation: it owns retry of throttled calls and the bounded wait for
eventually consistent instance status after terminations.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger
from tenacity import (
    RetryError,
    retry,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    wait_fixed,
)

from scalegroups.constants import (
    MAX_RECORDS_RETURNED_BY_API,
    OPERATION_POLL_INTERVAL,
    OPERATION_WAIT_TIMEOUT,
    REMOTE_MAX_ATTEMPTS,
    THROTTLING_ERROR_CODES,
    InstanceState,
)
from scalegroups.errors import RemoteUnavailableError

if TYPE_CHECKING:
    from mypy_boto3_autoscaling import AutoScalingClient
    from mypy_boto3_ec2 import EC2Client

    from scalegroups.types import LaunchTemplateSpec

log = logger.bind(component="aws-wrapper")


@runtime_checkable
class ScalingGroupService(Protocol):
    """Capabilities the group cache needs from the remote control plane."""

    def describe_groups(self, page_size: int = MAX_RECORDS_RETURNED_BY_API) -> list[dict[str, Any]]:
        """Every scaling group visible to the account, all pages combined."""
        ...

    def set_desired_capacity(self, name: str, size: int) -> None: ...

    def terminate_instances(self, instance_ids: Sequence[str]) -> None:
        """Terminate instances, decrementing their group's desired capacity."""
        ...

    def describe_instance_status(self, instance_ids: Sequence[str]) -> dict[str, str]:
        """Map of instance id to EC2 state name."""
        ...

    def launch_configuration_instance_type(self, name: str) -> str: ...

    def launch_template_instance_type(self, template: LaunchTemplateSpec) -> str: ...


# =============================================================================
# Retry
# =============================================================================


def _is_throttling_error(exc: BaseException) -> bool:
    """Check if exception is a retriable throttling error."""
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        return code in THROTTLING_ERROR_CODES
    return False


_retry_throttled = retry(
    stop=stop_after_attempt(REMOTE_MAX_ATTEMPTS),
    wait=wait_exponential(multiplier=0.5, max=10),
    retry=retry_if_exception(_is_throttling_error),
    reraise=True,
)


@contextmanager
def _remote_call(operation: str) -> Iterator[None]:
    try:
        yield
    except (ClientError, BotoCoreError) as e:
        raise RemoteUnavailableError(operation, str(e)) from e


# =============================================================================
# AWS Wrapper
# =============================================================================


class AWSWrapper:
    """boto3-backed :class:`ScalingGroupService`."""

    def __init__(
        self,
        autoscaling: AutoScalingClient,
        ec2: EC2Client,
        *,
        wait_timeout: float = OPERATION_WAIT_TIMEOUT,
        poll_interval: float = OPERATION_POLL_INTERVAL,
    ) -> None:
        self._autoscaling = autoscaling
        self._ec2 = ec2
        self._wait_timeout = wait_timeout
        self._poll_interval = poll_interval

    def describe_groups(self, page_size: int = MAX_RECORDS_RETURNED_BY_API) -> list[dict[str, Any]]:
        with _remote_call("DescribeAutoScalingGroups"):
            return self._describe_groups(page_size)

    @_retry_throttled
    def _describe_groups(self, page_size: int) -> list[dict[str, Any]]:
        groups: list[dict[str, Any]] = []
        paginator = self._autoscaling.get_paginator("describe_auto_scaling_groups")
        for page in paginator.paginate(PaginationConfig={"PageSize": page_size}):
            groups.extend(page.get("AutoScalingGroups", []))
        log.debug("Listed {n} scaling groups", n=len(groups))
        return groups

    def set_desired_capacity(self, name: str, size: int) -> None:
        log.info("Setting ASG {name} size to {size}", name=name, size=size)
        with _remote_call("SetDesiredCapacity"):
            self._set_desired_capacity(name, size)

    @_retry_throttled
    def _set_desired_capacity(self, name: str, size: int) -> None:
        self._autoscaling.set_desired_capacity(
            AutoScalingGroupName=name,
            DesiredCapacity=size,
            HonorCooldown=False,
        )

    def terminate_instances(self, instance_ids: Sequence[str]) -> None:
        with _remote_call("TerminateInstanceInAutoScalingGroup"):
            for instance_id in instance_ids:
                self._terminate_instance(instance_id)
        self._wait_for_termination(instance_ids)

    @_retry_throttled
    def _terminate_instance(self, instance_id: str) -> None:
        resp = self._autoscaling.terminate_instance_in_auto_scaling_group(
            InstanceId=instance_id,
            ShouldDecrementDesiredCapacity=True,
        )
        log.info(
            "Terminated instance {instance_id}: {description}",
            instance_id=instance_id,
            description=resp.get("Activity", {}).get("Description", ""),
        )

    def describe_instance_status(self, instance_ids: Sequence[str]) -> dict[str, str]:
        if not instance_ids:
            return {}
        with _remote_call("DescribeInstanceStatus"):
            return self._describe_instance_status(list(instance_ids))

    @_retry_throttled
    def _describe_instance_status(self, instance_ids: list[str]) -> dict[str, str]:
        statuses: dict[str, str] = {}
        paginator = self._ec2.get_paginator("describe_instance_status")
        for page in paginator.paginate(InstanceIds=instance_ids, IncludeAllInstances=True):
            for status in page.get("InstanceStatuses", []):
                statuses[status["InstanceId"]] = status.get("InstanceState", {}).get("Name", "")
        return statuses

    def launch_configuration_instance_type(self, name: str) -> str:
        with _remote_call("DescribeLaunchConfigurations"):
            resp = self._describe_launch_configurations(name)
        configs = resp.get("LaunchConfigurations", [])
        if not configs:
            raise RemoteUnavailableError(
                "DescribeLaunchConfigurations", f"launch configuration {name!r} not found",
            )
        return configs[0]["InstanceType"]

    @_retry_throttled
    def _describe_launch_configurations(self, name: str) -> Any:
        return self._autoscaling.describe_launch_configurations(
            LaunchConfigurationNames=[name], MaxRecords=1,
        )

    def launch_template_instance_type(self, template: LaunchTemplateSpec) -> str:
        with _remote_call("DescribeLaunchTemplateVersions"):
            resp = self._describe_launch_template_versions(template)
        versions = resp.get("LaunchTemplateVersions", [])
        if not versions:
            raise RemoteUnavailableError(
                "DescribeLaunchTemplateVersions", f"launch template {template.key!r} not found",
            )
        instance_type = versions[0].get("LaunchTemplateData", {}).get("InstanceType")
        if not instance_type:
            raise RemoteUnavailableError(
                "DescribeLaunchTemplateVersions",
                f"launch template {template.key!r} does not set an instance type",
            )
        return instance_type

    @_retry_throttled
    def _describe_launch_template_versions(self, template: LaunchTemplateSpec) -> Any:
        params: dict[str, Any] = {"Versions": [template.version]}
        if template.template_id:
            params["LaunchTemplateId"] = template.template_id
        else:
            params["LaunchTemplateName"] = template.name
        return self._ec2.describe_launch_template_versions(**params)

    def _wait_for_termination(self, instance_ids: Sequence[str]) -> None:
        """Poll until the instances leave pending/running, bounded by the wait timeout."""
        active = {InstanceState.PENDING, InstanceState.RUNNING}

        @retry(
            stop=stop_after_delay(self._wait_timeout),
            wait=wait_fixed(self._poll_interval),
            retry=retry_if_result(bool),
        )
        def _still_active() -> list[str]:
            statuses = self.describe_instance_status(instance_ids)
            return [i for i, state in statuses.items() if state in active]

        try:
            _still_active()
        except RetryError:
            log.warning(
                "Instances {ids} still active after {timeout}s; "
                "termination will be observed on a later refresh",
                ids=list(instance_ids), timeout=self._wait_timeout,
            )
        except RemoteUnavailableError as e:
            log.warning("Could not confirm termination of {ids}: {error}", ids=list(instance_ids), error=e)

"""Node group facade: the cluster-capacity controller's view of scaling groups.

:class:`CloudProvider` is the entry point the controller holds. It hands out
:class:`NodeGroup` adapters, each wrapping one cached scaling group and
delegating to the :class:`~scalegroups.manager.Manager`.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import timedelta
from types import MappingProxyType
from typing import TYPE_CHECKING, Final

from loguru import logger

from scalegroups.constants import (
    AVAILABLE_GPU_TYPES,
    GPU_LABEL,
    AutoscalingOption,
    ClusterAutoscalerTag,
)
from scalegroups.errors import FormatError, GroupNotFoundError, ValidationError
from scalegroups.logging import teardown_logging
from scalegroups.types import GroupTemplate, InstanceRef, ScalingGroup, parse_provider_id

if TYPE_CHECKING:
    from scalegroups.manager import Manager

log = logger.bind(component="node-group")


@dataclass(frozen=True, slots=True)
class Node:
    """The parts of a cluster node the facade needs."""

    name: str
    provider_id: str = ""
    annotations: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True, slots=True)
class NodeGroupOptions:
    """Per-group autoscaling options, overridable through group tags."""

    scale_down_utilization_threshold: float = 0.5
    scale_down_gpu_utilization_threshold: float = 0.5
    scale_down_unneeded_time: timedelta = timedelta(minutes=10)
    scale_down_unready_time: timedelta = timedelta(minutes=20)


_DURATION_PART_RE: Final = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_MICROSECONDS_PER_UNIT: Final[dict[str, float]] = {
    "ns": 1e-3,
    "us": 1,
    "µs": 1,
    "ms": 1e3,
    "s": 1e6,
    "m": 60e6,
    "h": 3600e6,
}


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as ``"10m"``, ``"1h30m"`` or ``"500ms"``.

    Raises:
        FormatError: If ``value`` is not a sequence of number+unit parts.
    """
    if value == "0":
        return timedelta()
    parts = _DURATION_PART_RE.findall(value)
    if not value or "".join(n + u for n, u in parts) != value:
        raise FormatError(f"invalid duration {value!r}")
    return timedelta(microseconds=sum(float(n) * _MICROSECONDS_PER_UNIT[u] for n, u in parts))


class NodeGroup:
    """One scaling group as a controller node group."""

    def __init__(self, group: ScalingGroup, manager: Manager) -> None:
        self._ref = group.ref
        self._manager = manager

    def __repr__(self) -> str:
        return f"NodeGroup({self.debug()})"

    def _live(self) -> ScalingGroup:
        """The cached group as of the latest regeneration or mutation."""
        group = self._manager.get_group(self._ref)
        if group is None:
            raise GroupNotFoundError(self._ref.name)
        return group

    @property
    def id(self) -> str:
        return self._ref.name

    @property
    def min_size(self) -> int:
        return self._live().min_size

    @property
    def max_size(self) -> int:
        return self._live().max_size

    def target_size(self) -> int:
        """Current target size; may differ from the number of registered nodes."""
        return self._live().current_size

    def exist(self) -> bool:
        return True

    def autoprovisioned(self) -> bool:
        return False

    def debug(self) -> str:
        return f"{self.id} ({self.min_size}:{self.max_size})"

    def increase_size(self, delta: int) -> None:
        if delta <= 0:
            raise ValidationError("size increase must be positive")
        group = self._live()
        size = group.current_size
        if size + delta > group.max_size:
            raise ValidationError(
                f"size increase too large - desired:{size + delta} max:{group.max_size}"
            )
        self._manager.set_group_size(self._ref, size + delta)

    def decrease_target_size(self, delta: int) -> None:
        """Reduce the target without deleting registered nodes. ``delta`` is negative."""
        if delta >= 0:
            raise ValidationError("size decrease must be negative")
        size = self._live().current_size
        nodes = self._manager.get_group_instances(self._ref)
        if size + delta < len(nodes):
            raise ValidationError(
                f"attempt to delete existing nodes targetSize:{size} delta:{delta} "
                f"existingNodes: {len(nodes)}"
            )
        self._manager.set_group_size(self._ref, size + delta)

    def belongs(self, node: Node) -> bool:
        """Whether ``node`` is a member of this group.

        Raises:
            FormatError: If the node's provider id is malformed.
            ValidationError: If the node belongs to no known group.
        """
        ref = parse_provider_id(node.provider_id)
        target = self._manager.get_group_for_instance(ref)
        if target is None:
            raise ValidationError(f"{node.name} doesn't belong to a known asg")
        return target.ref == self._ref

    def delete_nodes(self, nodes: Sequence[Node]) -> None:
        """Terminate ``nodes``, which must all belong to this group."""
        group = self._live()
        if group.current_size <= group.min_size:
            raise ValidationError("min size reached, nodes will not be deleted")
        refs: list[InstanceRef] = []
        for node in nodes:
            if not self.belongs(node):
                raise ValidationError(f"{node.name} belongs to a different asg than {self.id}")
            refs.append(parse_provider_id(node.provider_id))
        self._manager.delete_instances(refs)

    def nodes(self) -> tuple[InstanceRef, ...]:
        return self._manager.get_group_instances(self._ref)

    def template(self) -> GroupTemplate:
        return self._manager.get_group_template(self._ref)

    def get_options(self, defaults: NodeGroupOptions) -> NodeGroupOptions | None:
        """Defaults overridden by the group's autoscaling-option tags.

        Returns None when the group carries no option tags. Values that fail
        to parse are logged and the default is kept.
        """
        options = self._manager.get_autoscaling_options(self._ref)
        if not options:
            return None

        result = defaults
        parsers = {
            AutoscalingOption.SCALE_DOWN_UTILIZATION_THRESHOLD: ("scale_down_utilization_threshold", float),
            AutoscalingOption.SCALE_DOWN_GPU_UTILIZATION_THRESHOLD: ("scale_down_gpu_utilization_threshold", float),
            AutoscalingOption.SCALE_DOWN_UNNEEDED_TIME: ("scale_down_unneeded_time", parse_duration),
            AutoscalingOption.SCALE_DOWN_UNREADY_TIME: ("scale_down_unready_time", parse_duration),
        }
        for option, (attr, parse) in parsers.items():
            raw = options.get(option)
            if raw is None:
                continue
            try:
                result = replace(result, **{attr: parse(raw)})
            except ValueError as e:
                log.warning(
                    "failed to convert ASG {group} {option} tag to {attr}: {error}",
                    group=self.id, option=str(option), attr=attr, error=e,
                )
        return result


class CloudProvider:
    """Controller-facing cloud provider backed by a :class:`Manager`.

    ``log_handler_ids`` are loguru sinks installed for this provider; they are
    removed by :meth:`cleanup`.
    """

    name = "aws"

    def __init__(self, manager: Manager, log_handler_ids: Sequence[int] = ()) -> None:
        self._manager = manager
        self._log_handler_ids = list(log_handler_ids)

    @property
    def manager(self) -> Manager:
        return self._manager

    def gpu_label(self) -> str:
        return GPU_LABEL

    def available_gpu_types(self) -> frozenset[str]:
        return AVAILABLE_GPU_TYPES

    def node_groups(self) -> list[NodeGroup]:
        return [NodeGroup(group, self._manager) for group in self._manager.get_groups().values()]

    def node_group_for_node(self, node: Node) -> NodeGroup | None:
        """The node group owning ``node``, or None for nodes outside our groups."""
        if not node.provider_id:
            log.warning("Node {name} has no providerId", name=node.name)
            return None
        ref = parse_provider_id(node.provider_id)
        group = self._manager.get_group_for_instance(ref)
        if group is None:
            return None
        return NodeGroup(group, self._manager)

    def has_instance(self, node: Node) -> bool:
        """Whether ``node`` has a corresponding instance in a cached group.

        Fargate nodes are reported present, since their instances are not
        modelled. Nodes annotated as not autoscaled are reported absent.
        """
        if node.name.startswith("fargate"):
            return True
        if node.annotations.get(ClusterAutoscalerTag.ENABLED_ANNOTATION) == "false":
            return False
        ref = parse_provider_id(node.provider_id)
        return self._manager.get_instance_status(ref) is not None

    def refresh(self) -> bool:
        return self._manager.refresh()

    def cleanup(self) -> None:
        self._manager.cleanup()
        if self._log_handler_ids:
            teardown_logging(self._log_handler_ids)
            self._log_handler_ids = []

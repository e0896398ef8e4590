"""AWS Auto Scaling Groups exposed as node groups to a cluster-capacity controller.

Example:
    from scalegroups import create_cloud_provider, load_settings

    provider = create_cloud_provider(load_settings())
    provider.refresh()
    for group in provider.node_groups():
        print(group.debug())
"""

from scalegroups.cache import CacheSnapshot, GroupCache
from scalegroups.config import Settings, load_settings
from scalegroups.discovery import (
    DiscoveryConfig,
    ExplicitGroupSpec,
    GroupSelector,
    format_discovery_spec,
    parse_discovery_spec,
    parse_explicit_group_spec,
)
from scalegroups.errors import (
    FormatError,
    GroupNotFoundError,
    RemoteUnavailableError,
    ScaleGroupsError,
    UnknownInstanceTypeError,
    ValidationError,
)
from scalegroups.logging import LogConfig, setup_logging, teardown_logging
from scalegroups.manager import Manager
from scalegroups.module import ScaleGroupsModule, create_cloud_provider
from scalegroups.nodegroup import CloudProvider, Node, NodeGroup, NodeGroupOptions
from scalegroups.remote import AWSWrapper, ScalingGroupService
from scalegroups.types import (
    GroupTemplate,
    InstanceRef,
    ScalingGroup,
    ScalingGroupRef,
    parse_provider_id,
)

__all__ = [
    "AWSWrapper",
    "CacheSnapshot",
    "CloudProvider",
    "DiscoveryConfig",
    "ExplicitGroupSpec",
    "FormatError",
    "GroupCache",
    "GroupNotFoundError",
    "GroupSelector",
    "GroupTemplate",
    "InstanceRef",
    "LogConfig",
    "Manager",
    "Node",
    "NodeGroup",
    "NodeGroupOptions",
    "RemoteUnavailableError",
    "ScaleGroupsError",
    "ScaleGroupsModule",
    "ScalingGroup",
    "ScalingGroupRef",
    "ScalingGroupService",
    "Settings",
    "UnknownInstanceTypeError",
    "ValidationError",
    "create_cloud_provider",
    "format_discovery_spec",
    "load_settings",
    "parse_discovery_spec",
    "parse_explicit_group_spec",
    "parse_provider_id",
    "setup_logging",
    "teardown_logging",
]

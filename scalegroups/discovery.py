"""Scaling group discovery: which remote groups belong to this cluster.

Two selection mechanisms are supported:

- Auto-discovery specs of the form ``asg:tag=<k1>[=<v1>][,<k2>[=<v2>]...]``.
  A group matches when every configured tag key is present with the
  configured value, or with any value when the configured value is empty.
- Explicit group specs of the form ``<min>:<max>:<name>``, which select a
  group by name and override its size bounds.

Example:
    >>> cfg = parse_discovery_spec("asg:tag=k8s-node=true,env=prod")
    >>> cfg.tags
    mappingproxy({'k8s-node': 'true', 'env': 'prod'})
    >>> cfg.matches({"k8s-node": "true", "env": "prod", "other": "x"})
    True
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from scalegroups.constants import ASG_AUTO_DISCOVERER_KEY_TAG, AUTO_DISCOVERER_TYPE_ASG
from scalegroups.errors import FormatError


@dataclass(frozen=True, slots=True)
class DiscoveryConfig:
    """Tags to match on. Any group carrying all of them is autoscaled."""

    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def matches(self, group_tags: Mapping[str, str]) -> bool:
        for key, value in self.tags.items():
            if key not in group_tags:
                return False
            if value and group_tags[key] != value:
                return False
        return True


@dataclass(frozen=True, slots=True)
class ExplicitGroupSpec:
    """A group selected by name, with its size bounds overridden."""

    name: str
    min_size: int
    max_size: int


def parse_discovery_spec(spec: str) -> DiscoveryConfig:
    """Parse an auto-discovery spec.

    Raises:
        FormatError: If the spec is malformed or names an unsupported
            discoverer or parameter key.
    """
    discoverer, sep, param = spec.partition(":")
    if not sep:
        raise FormatError(f"invalid node group auto discovery spec specified: {spec}")
    if discoverer != AUTO_DISCOVERER_TYPE_ASG:
        raise FormatError(f"unsupported discoverer specified: {discoverer} (spec {spec!r})")

    key, sep, value = param.partition("=")
    if not sep:
        raise FormatError(f"invalid key=value pair {param!r} in spec {spec!r}")
    if key != ASG_AUTO_DISCOVERER_KEY_TAG:
        raise FormatError(
            f'unsupported parameter key "{key}" is specified for discoverer "{discoverer}". '
            f'The only supported key is "{ASG_AUTO_DISCOVERER_KEY_TAG}"'
        )
    if not value:
        raise FormatError(f"tag value not supplied in spec {spec!r}")

    tags: dict[str, str] = {}
    for label in value.split(","):
        tag_key, _, tag_value = label.partition("=")
        if not tag_key:
            raise FormatError(f"invalid ASG tag for auto discovery specified: empty tag key in {spec!r}")
        tags[tag_key] = tag_value
    return DiscoveryConfig(tags=MappingProxyType(tags))


def format_discovery_spec(config: DiscoveryConfig) -> str:
    """Canonical spec string for ``config``; the inverse of :func:`parse_discovery_spec`."""
    labels = ",".join(f"{k}={v}" if v else k for k, v in config.tags.items())
    return f"{AUTO_DISCOVERER_TYPE_ASG}:{ASG_AUTO_DISCOVERER_KEY_TAG}={labels}"


def parse_explicit_group_spec(spec: str) -> ExplicitGroupSpec:
    """Parse ``<min>:<max>:<name>``.

    Raises:
        FormatError: On a wrong number of fields, non-integer or negative
            bounds, ``min > max`` or an empty name.
    """
    tokens = spec.split(":", 2)
    if len(tokens) != 3:
        raise FormatError(f"wrong nodes configuration: {spec!r}, expected <min>:<max>:<name>")
    raw_min, raw_max, name = tokens
    try:
        min_size, max_size = int(raw_min), int(raw_max)
    except ValueError as e:
        raise FormatError(f"failed to set node group sizes from {spec!r}: {e}") from e
    if min_size < 0:
        raise FormatError(f"min size must be >= 0 in {spec!r}")
    if max_size < min_size:
        raise FormatError(f"max size must be greater or equal to min size in {spec!r}")
    if not name:
        raise FormatError(f"node group name must not be empty in {spec!r}")
    return ExplicitGroupSpec(name=name, min_size=min_size, max_size=max_size)


@dataclass(frozen=True, slots=True)
class GroupSelector:
    """Combined discovery criteria: explicit names plus tag-based configs."""

    discovery: tuple[DiscoveryConfig, ...] = ()
    explicit: Mapping[str, ExplicitGroupSpec] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_specs(
        cls,
        discovery_specs: Iterable[str] = (),
        explicit_specs: Iterable[str] = (),
    ) -> GroupSelector:
        explicit = {s.name: s for s in map(parse_explicit_group_spec, explicit_specs)}
        return cls(
            discovery=tuple(parse_discovery_spec(s) for s in discovery_specs),
            explicit=MappingProxyType(explicit),
        )

    def selects(self, name: str, tags: Mapping[str, str]) -> bool:
        return name in self.explicit or any(cfg.matches(tags) for cfg in self.discovery)

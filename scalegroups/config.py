"""TOML-based configuration.

Loads ~/.scalegroups/defaults.toml (global) and scalegroups.toml (project),
merges them, and resolves the result into a :class:`Settings` value.

Example scalegroups.toml::

    region = "us-east-1"
    refresh_interval = 60

    [discovery]
    specs = ["asg:tag=k8s.io/cluster-autoscaler/enabled,kubernetes.io/cluster/prod"]
    groups = ["1:10:batch-workers"]

    [logging]
    level = "DEBUG"
    file = "scalegroups.log"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeAlias

from scalegroups.constants import REFRESH_INTERVAL
from scalegroups.discovery import GroupSelector
from scalegroups.logging import LogConfig

RawConfig: TypeAlias = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".scalegroups" / "defaults.toml"
PROJECT_CONFIG_NAME = "scalegroups.toml"

_TOP_LEVEL_KEYS = frozenset({"region", "refresh_interval", "discovery", "logging"})


@dataclass(frozen=True, slots=True)
class Settings:
    """Resolved configuration.

    Discovery and explicit group specs are parsed on construction, so a
    malformed spec fails here with :class:`~scalegroups.errors.FormatError`.
    """

    region: str | None = None
    discovery: tuple[str, ...] = ()
    explicit_groups: tuple[str, ...] = ()
    refresh_interval: float = REFRESH_INTERVAL
    logging: LogConfig = field(default_factory=LogConfig)
    selector: GroupSelector = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.refresh_interval <= 0:
            raise ValueError(f"refresh_interval must be positive, got {self.refresh_interval}")
        object.__setattr__(
            self, "selector", GroupSelector.from_specs(self.discovery, self.explicit_groups),
        )


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("discovery", {})
    merged.setdefault("logging", {})
    return merged


def _build_settings(raw: RawConfig) -> Settings:
    unknown = raw.keys() - _TOP_LEVEL_KEYS
    if unknown:
        raise ValueError(
            f"Unknown configuration keys: {', '.join(sorted(unknown))}. "
            f"Valid: {', '.join(sorted(_TOP_LEVEL_KEYS))}"
        )

    discovery = dict(raw["discovery"])
    specs = discovery.pop("specs", [])
    groups = discovery.pop("groups", [])
    if discovery:
        raise ValueError(f"Unknown [discovery] keys: {', '.join(sorted(discovery))}")
    if isinstance(specs, str):
        specs = [specs]

    return Settings(
        region=raw.get("region"),
        discovery=tuple(specs),
        explicit_groups=tuple(groups),
        refresh_interval=float(raw.get("refresh_interval", REFRESH_INTERVAL)),
        logging=LogConfig(**raw["logging"]),
    )


def load_settings(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> Settings:
    return _build_settings(load_config(project_dir=project_dir, global_path=global_path))

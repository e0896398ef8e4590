from __future__ import annotations

from datetime import timedelta

import pytest

from scalegroups.errors import FormatError, GroupNotFoundError, ValidationError
from scalegroups.manager import Manager
from scalegroups.nodegroup import CloudProvider, Node, NodeGroupOptions, parse_duration
from tests.conftest import DISCOVERY_TAGS

pytestmark = [pytest.mark.xdist_group("unit")]

OPTIONS_PREFIX = "k8s.io/cluster-autoscaler/node-template/autoscaling-options/"


@pytest.fixture
def provider(remote, selector, clock) -> CloudProvider:
    return CloudProvider(Manager.create(remote, selector, clock=clock))


def _node(instance_id: str, name: str | None = None, **annotations: str) -> Node:
    return Node(
        name=name or f"ip-{instance_id}",
        provider_id=f"aws:///us-east-1a/{instance_id}",
        annotations=annotations,
    )


def _group(provider: CloudProvider, name: str):
    return next(g for g in provider.node_groups() if g.id == name)


class TestCloudProvider:
    def test_node_groups(self, provider):
        assert sorted(g.debug() for g in provider.node_groups()) == ["gpu (0:4)", "workers (1:10)"]

    def test_node_group_for_node(self, provider):
        assert provider.node_group_for_node(_node("i-0101")).id == "gpu"

    def test_node_outside_groups(self, provider):
        assert provider.node_group_for_node(_node("i-0201")) is None

    def test_node_without_provider_id(self, provider):
        assert provider.node_group_for_node(Node(name="bare")) is None

    def test_malformed_provider_id(self, provider):
        with pytest.raises(FormatError):
            provider.node_group_for_node(Node(name="x", provider_id="gce://p/z/n"))

    def test_has_instance(self, provider):
        assert provider.has_instance(_node("i-0001"))
        assert not provider.has_instance(_node("i-0201"))

    def test_has_instance_fargate(self, provider):
        assert provider.has_instance(Node(name="fargate-ip-10-0-0-1"))

    def test_has_instance_not_autoscaled(self, provider):
        node = _node("i-0001", **{"k8s.io/cluster-autoscaler/enabled": "false"})
        assert not provider.has_instance(node)

    def test_gpu_metadata(self, provider):
        assert provider.gpu_label() == "k8s.amazonaws.com/accelerator"
        assert "nvidia-tesla-t4" in provider.available_gpu_types()

    def test_refresh_and_cleanup(self, provider, remote, clock):
        clock.advance(3600)
        assert provider.refresh() is True
        provider.cleanup()
        assert provider.node_groups() == []


class TestResize:
    def test_increase_size(self, provider, remote):
        group = _group(provider, "workers")
        group.increase_size(3)
        assert group.target_size() == 5
        assert remote.operations("set_desired_capacity") == [("set_desired_capacity", "workers", 5)]

    @pytest.mark.parametrize("delta", [0, -1])
    def test_increase_must_be_positive(self, provider, delta):
        with pytest.raises(ValidationError, match="positive"):
            _group(provider, "workers").increase_size(delta)

    def test_increase_beyond_max(self, provider, remote):
        with pytest.raises(ValidationError, match="too large"):
            _group(provider, "workers").increase_size(9)
        assert not remote.operations("set_desired_capacity")

    def test_decrease_target_size(self, provider, remote):
        remote.add_group("pending", max_size=5, desired=4, instances=["i-0601"], tags=DISCOVERY_TAGS)
        provider.manager.force_refresh()
        group = _group(provider, "pending")
        # placeholders count as members, so only unfulfilled capacity above them can go
        with pytest.raises(ValidationError, match="existing nodes"):
            group.decrease_target_size(-1)

    def test_decrease_only_unfulfilled(self, provider, remote):
        group = _group(provider, "workers")
        group.increase_size(2)
        group.decrease_target_size(-2)
        assert group.target_size() == 2

    def test_decrease_must_be_negative(self, provider):
        with pytest.raises(ValidationError, match="negative"):
            _group(provider, "workers").decrease_target_size(1)

    def test_resize_reads_sizes_after_refresh(self, provider, remote):
        group = _group(provider, "workers")
        remote.groups["workers"]["DesiredCapacity"] = 6
        provider.manager.force_refresh()

        assert group.target_size() == 6
        group.increase_size(1)
        assert remote.operations("set_desired_capacity") == [("set_desired_capacity", "workers", 7)]

    def test_bounds_follow_refresh(self, provider, remote):
        group = _group(provider, "workers")
        remote.groups["workers"]["MaxSize"] = 3
        provider.manager.force_refresh()

        assert group.max_size == 3
        with pytest.raises(ValidationError, match="too large"):
            group.increase_size(2)
        assert not remote.operations("set_desired_capacity")

    def test_group_gone_after_refresh(self, provider, remote):
        group = _group(provider, "gpu")
        del remote.groups["gpu"]
        provider.manager.force_refresh()
        with pytest.raises(GroupNotFoundError):
            group.target_size()


class TestDeleteNodes:
    def test_delete_nodes(self, provider, remote):
        _group(provider, "workers").delete_nodes([_node("i-0001")])
        assert remote.operations("terminate_instances") == [("terminate_instances", ("i-0001",))]

    def test_at_min_size_rejected_before_remote_call(self, provider, remote):
        remote.add_group("floor", min_size=2, max_size=4, instances=["i-0701", "i-0702"], tags=DISCOVERY_TAGS)
        provider.manager.force_refresh()
        with pytest.raises(ValidationError, match="min size reached"):
            _group(provider, "floor").delete_nodes([_node("i-0701")])
        assert not remote.operations("terminate_instances")

    def test_node_of_other_group_rejected(self, provider, remote):
        with pytest.raises(ValidationError, match="different asg"):
            _group(provider, "workers").delete_nodes([_node("i-0001"), _node("i-0101")])
        assert not remote.operations("terminate_instances")

    def test_unknown_node_rejected(self, provider, remote):
        with pytest.raises(ValidationError, match="known asg"):
            _group(provider, "workers").delete_nodes([_node("i-9999")])
        assert not remote.operations("terminate_instances")

    def test_belongs(self, provider):
        group = _group(provider, "workers")
        assert group.belongs(_node("i-0002"))
        assert not group.belongs(_node("i-0101"))

    def test_nodes(self, provider):
        assert [r.name for r in _group(provider, "gpu").nodes()] == ["i-0101"]


class TestOptions:
    def _provider_with_tags(self, remote, selector, clock, **options: str) -> CloudProvider:
        tags = {**DISCOVERY_TAGS, **{OPTIONS_PREFIX + k: v for k, v in options.items()}}
        remote.add_group("tuned", tags=tags)
        return CloudProvider(Manager.create(remote, selector, clock=clock))

    def test_no_option_tags(self, provider):
        assert _group(provider, "workers").get_options(NodeGroupOptions()) is None

    def test_overrides_defaults(self, remote, selector, clock):
        provider = self._provider_with_tags(
            remote, selector, clock,
            scaledownutilizationthreshold="0.7",
            scaledownunneededtime="1h30m",
        )
        options = _group(provider, "tuned").get_options(NodeGroupOptions())
        assert options == NodeGroupOptions(
            scale_down_utilization_threshold=0.7,
            scale_down_unneeded_time=timedelta(hours=1, minutes=30),
        )

    def test_bad_values_keep_defaults(self, remote, selector, clock):
        provider = self._provider_with_tags(
            remote, selector, clock,
            scaledowngpuutilizationthreshold="lots",
            scaledownunreadytime="soon",
        )
        defaults = NodeGroupOptions()
        assert _group(provider, "tuned").get_options(defaults) == defaults

    def test_template(self, provider):
        assert _group(provider, "gpu").template().instance_type.instance_type == "g5.xlarge"


class TestParseDuration:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("10m", timedelta(minutes=10)),
            ("1h30m", timedelta(hours=1, minutes=30)),
            ("90s", timedelta(seconds=90)),
            ("500ms", timedelta(milliseconds=500)),
            ("1.5h", timedelta(hours=1, minutes=30)),
            ("0", timedelta()),
            ("2000ns", timedelta(microseconds=2)),
            ("1500us", timedelta(microseconds=1500)),
            ("1m0.5s", timedelta(minutes=1, milliseconds=500)),
        ],
    )
    def test_valid(self, raw, expected):
        assert parse_duration(raw) == expected

    @pytest.mark.parametrize("raw", ["", "10", "m", "10 m", "10d", "-5m"])
    def test_invalid(self, raw):
        with pytest.raises(FormatError):
            parse_duration(raw)

import pytest

from scalegroups.errors import RemoteUnavailableError
from scalegroups.region import get_current_region
from tests.conftest import StaticFetcher

pytestmark = [pytest.mark.xdist_group("unit")]


def test_environment_wins(monkeypatch):
    monkeypatch.setenv("AWS_REGION", "ap-south-1")
    fetcher = StaticFetcher("us-east-1")
    assert get_current_region(fetcher) == "ap-south-1"
    assert fetcher.calls == 0


def test_falls_back_to_instance_metadata(monkeypatch):
    monkeypatch.delenv("AWS_REGION", raising=False)
    assert get_current_region(StaticFetcher("eu-central-1")) == "eu-central-1"


def test_empty_environment_value_is_ignored(monkeypatch):
    monkeypatch.setenv("AWS_REGION", "")
    assert get_current_region(StaticFetcher("us-west-2")) == "us-west-2"


def test_no_region_available(monkeypatch):
    monkeypatch.delenv("AWS_REGION", raising=False)
    with pytest.raises(RemoteUnavailableError, match="AWS_REGION"):
        get_current_region(StaticFetcher(None))

"""DI module wiring boto3 clients, the remote wrapper and the manager.

Usage:
    >>> from injector import Injector
    >>> from scalegroups.config import load_settings
    >>> from scalegroups.module import ScaleGroupsModule
    >>>
    >>> injector = Injector([ScaleGroupsModule(load_settings())])
    >>> provider = injector.get(CloudProvider)
"""

from __future__ import annotations

import boto3
from injector import Binder, Injector, Module, ProviderOf, provider, singleton

from .config import Settings
from .logging import setup_logging, teardown_logging
from .manager import Manager
from .nodegroup import CloudProvider
from .region import get_current_region
from .remote import AWSWrapper


class ScaleGroupsModule(Module):
    """Module providing the cloud provider and its dependencies from settings."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def configure(self, binder: Binder) -> None:
        binder.bind(Settings, to=self._settings)

    @singleton
    @provider
    def provide_session(self, settings: Settings) -> boto3.Session:
        """Provide singleton boto3 session in the configured or detected region."""
        return boto3.Session(region_name=settings.region or get_current_region())

    @singleton
    @provider
    def provide_wrapper(self, session: boto3.Session) -> AWSWrapper:
        return AWSWrapper(session.client("autoscaling"), session.client("ec2"))

    @singleton
    @provider
    def provide_manager(self, wrapper: AWSWrapper, settings: Settings) -> Manager:
        return Manager.create(
            wrapper,
            settings.selector,
            refresh_interval=settings.refresh_interval,
        )

    @singleton
    @provider
    def provide_cloud_provider(self, settings: Settings, manager: ProviderOf[Manager]) -> CloudProvider:
        """Install the configured log sinks, then build the manager under them."""
        handler_ids = setup_logging(settings.logging)
        try:
            return CloudProvider(manager.get(), log_handler_ids=handler_ids)
        except Exception:
            teardown_logging(handler_ids)
            raise


def create_cloud_provider(settings: Settings) -> CloudProvider:
    """Build a fully wired :class:`CloudProvider`; performs the initial refresh."""
    return Injector([ScaleGroupsModule(settings)]).get(CloudProvider)


__all__ = [
    "ScaleGroupsModule",
    "create_cloud_provider",
]

"""Region resolution for the current cluster."""

from __future__ import annotations

import os

from botocore.utils import InstanceMetadataRegionFetcher
from loguru import logger

from scalegroups.constants import EC2_METADATA_SERVICE_URL, REGION_ENV_VAR
from scalegroups.errors import RemoteUnavailableError

log = logger.bind(component="region")


def get_current_region(fetcher: InstanceMetadataRegionFetcher | None = None) -> str:
    """Return the region from ``AWS_REGION`` or the instance metadata endpoint.

    Raises:
        RemoteUnavailableError: If the variable is unset and the metadata
            endpoint does not report a region.
    """
    region = os.environ.get(REGION_ENV_VAR)
    if region:
        return region

    fetcher = fetcher or InstanceMetadataRegionFetcher(
        timeout=2, num_attempts=2, base_url=f"{EC2_METADATA_SERVICE_URL}/",
    )
    region = fetcher.retrieve_region()
    if not region:
        raise RemoteUnavailableError(
            "instance metadata region lookup",
            f"{REGION_ENV_VAR} is not set and {EC2_METADATA_SERVICE_URL} did not report a region",
        )
    log.debug("Resolved region {region} from instance metadata", region=region)
    return region

"""Platform backends and the cluster factory used by the runner."""

from typing import Any, Callable, Dict, Optional

from kola.core.exceptions import InvalidPlatformError
from kola.platform.base import Cluster, Machine, TestCluster
from kola.platform.gce import GCECluster
from kola.platform.qemu import QemuCluster

PLATFORMS: Dict[str, Callable[..., Cluster]] = {
    'qemu': QemuCluster,
    'gce': GCECluster,
}


def new_cluster(platform: str, config: Optional[Dict[str, Any]] = None,
                verbose_level: int = 0) -> Cluster:
    """Construct a cluster for the named platform."""
    try:
        factory = PLATFORMS[platform]
    except KeyError:
        raise InvalidPlatformError(platform, available=sorted(PLATFORMS)) from None
    return factory(config=config, verbose_level=verbose_level)


__all__ = ['Cluster', 'Machine', 'TestCluster', 'PLATFORMS', 'new_cluster']

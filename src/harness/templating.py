"""Per-instance cloud-config generation."""

from typing import List

DISCOVERY_TOKEN = "$discovery"
NAME_TOKEN = "$name"
NAME_PREFIX = "instance"


def instance_name(index: int) -> str:
    return f"{NAME_PREFIX}{index}"


def make_configs(url: str, cloud_config: str, size: int) -> List[str]:
    """
    Instantiate a cloud-config template once per cluster member.

    Every $discovery is replaced with url and every $name with a unique
    instance name derived from the member's zero-based position.

    Args:
        url: Discovery endpoint shared by the whole cluster
        cloud_config: Template text, any string is accepted
        size: Number of members

    Returns:
        List of size config strings
    """
    cfg = cloud_config.replace(DISCOVERY_TOKEN, url)
    return [cfg.replace(NAME_TOKEN, instance_name(i)) for i in range(size)]

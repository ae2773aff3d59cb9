"""Discovery endpoint allocation against an etcd-style discovery service."""

import urllib.error
import urllib.parse
import urllib.request
from typing import Optional

from kola.core.config_loader import get_discovery_config
from kola.core.exceptions import DiscoveryError
from kola.core.structured_logging import get_logger


def new_discovery_url(size: int, service: Optional[str] = None,
                      timeout: Optional[float] = None) -> str:
    """
    Ask the discovery service for a new token sized for size members.

    Returns:
        The token URL handed to cluster members as $discovery

    Raises:
        DiscoveryError: The service could not be reached or answered badly
    """
    if service is None or timeout is None:
        config = get_discovery_config()
        service = service or config['service']
        timeout = timeout if timeout is not None else config['timeout']

    query = urllib.parse.urlencode({'size': size})
    url = f"{service}{'&' if '?' in service else '?'}{query}"
    logger = get_logger(__name__)
    logger.debug("Requesting discovery token", url=url)

    try:
        with urllib.request.urlopen(url, timeout=timeout) as resp:
            body = resp.read().decode().strip()
    except (urllib.error.URLError, OSError) as e:
        raise DiscoveryError(service, str(e), cause=e) from e

    if not body.startswith(('http://', 'https://')):
        raise DiscoveryError(service, f"unexpected response {body[:80]!r}")
    return body

"""Built-in cluster tests, registered with the default registry on import."""

from kola.checks import etcd, listeners  # noqa: F401

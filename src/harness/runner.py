#!/usr/bin/env -S python3 -B -u
"""
Test Runner

Runs every registered test whose name matches a glob pattern on each of its
platforms. Each (test, platform) pair gets a fresh cluster:

1. construct the cluster for the platform
2. allocate a discovery endpoint sized for the test
3. render one cloud-config per member and boot the machines in order
4. copy the kolet helper to every machine when the test has native functions
5. run the test body against the live cluster

The cluster is destroyed on every exit path once constructed. Runs are
sequential and fail fast: the first failing pair stops the whole invocation.
"""

import sys
from typing import Any, Callable, Dict, List, Optional, Sequence

from kola.core.config_loader import get_native_config, get_platforms, load_kola_config
from kola.core.exceptions import (
    BadPatternError, ClusterError, DeploymentError, ErrorCode, KolaError
)
from kola.core.structured_logging import get_logger
from kola.harness.deploy import scp_file
from kola.harness.registry import Registry, Test, match_name
from kola.harness.templating import make_configs
from kola.platform import new_cluster
from kola.platform.base import Cluster, TestCluster

USAGE = "Usage: 'kola run [glob pattern]'"


def describe(error: BaseException) -> str:
    if isinstance(error, KolaError):
        return error.message
    return str(error) or type(error).__name__


class TestRunner:
    """Selects tests from a registry and runs them per platform."""

    __test__ = False

    def __init__(self, registry: Registry,
                 platforms: Optional[Sequence[str]] = None,
                 cluster_factory: Optional[Callable[..., Cluster]] = None,
                 config: Optional[Dict[str, Any]] = None,
                 verbose_level: int = 0):
        """
        Args:
            registry: Tests available to run
            platforms: Default platform set for tests without a whitelist,
                taken from configuration when omitted
            cluster_factory: Called as factory(platform, config=..., verbose_level=...)
            config: Loaded kola configuration
            verbose_level: Verbosity level (0-3)
        """
        self.registry = registry
        self.config = config if config is not None else load_kola_config()
        self.platforms = list(platforms) if platforms is not None else get_platforms(self.config)
        self.cluster_factory = cluster_factory or new_cluster
        self.kolet_path = get_native_config(self.config)['kolet']
        self.verbose_level = verbose_level
        self.logger = get_logger(__name__, verbose_level)

    def select(self, pattern: str) -> List[Test]:
        """Registered tests matching pattern; a malformed pattern matches nothing."""
        selected = []
        for test in self.registry:
            try:
                if match_name(pattern, test.name):
                    selected.append(test)
            except BadPatternError as e:
                print(e.message, file=sys.stderr)
        return selected

    def run_tests(self, args: List[str]) -> int:
        """
        Run tests selected by the optional glob in args.

        Returns:
            0 when every selected run passed, 1 on the first failure,
            2 on a usage error
        """
        if len(args) > 1:
            print(f"Extra arguments specified. {USAGE}", file=sys.stderr)
            return ErrorCode.USAGE_ERROR
        pattern = args[0] if args else "*"

        ran = 0
        for test in self.select(pattern):
            platforms = test.platforms if test.platforms is not None else self.platforms

            for platform in platforms:
                try:
                    self.run_test(test, platform)
                except Exception as e:
                    print(f"{test.name} failed on {platform}: {describe(e)}", file=sys.stderr)
                    if isinstance(e, KolaError):
                        self.logger.debug(e.format_error(self.verbose_level))
                    return ErrorCode.TEST_FAILED
                print(f"test {test.name} ran successfully on {platform}")
                ran += 1

        print(f"All {ran} test(s) ran successfully!", file=sys.stderr)
        return ErrorCode.SUCCESS

    def run_test(self, test: Test, platform: str) -> None:
        """
        Create a cluster on platform and run test against it.

        Raises:
            ClusterError: Cluster, discovery endpoint or machine setup failed
            DeploymentError: kolet could not be copied to a machine
            Exception: Whatever the test body raised
        """
        try:
            cluster = self.cluster_factory(platform, config=self.config,
                                           verbose_level=self.verbose_level)
        except Exception as e:
            raise ClusterError(f"Cluster failed: {describe(e)}", cause=e) from e

        try:
            with self.logger.timer(f"{test.name} on {platform}"):
                self._run_on_cluster(test, platform, cluster)
        finally:
            try:
                cluster.destroy()
            except Exception as e:
                print(f"cluster.destroy(): {describe(e)}", file=sys.stderr)

    def _run_on_cluster(self, test: Test, platform: str, cluster: Cluster) -> None:
        try:
            url = cluster.get_discovery_url(test.cluster_size)
        except Exception as e:
            raise ClusterError(f"Failed to create discovery endpoint: {describe(e)}", cause=e) from e

        for cfg in make_configs(url, test.cloud_config, test.cluster_size):
            try:
                cluster.new_machine(cfg)
            except Exception as e:
                raise ClusterError(f"Cluster failed starting machine: {describe(e)}", cause=e) from e
            print(f"{platform} instance up", file=sys.stderr)

        # drop kolet binary on machines
        if test.native_funcs is not None:
            for machine in cluster.machines():
                try:
                    scp_file(machine, self.kolet_path)
                except KolaError as e:
                    raise DeploymentError(f"dropping kolet binary: {e.message}", cause=e) from e

        test.run(TestCluster(test.name, cluster))

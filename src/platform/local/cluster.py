#!/usr/bin/env -S python3 -B -u
"""
Local Cluster

Composes an isolated network namespace, a private SSH agent and a dnsmasq
DHCP/DNS helper into the environment local (qemu) machines run in.

Construction order: namespace, SSH agent, dnsmasq (started inside the
namespace). A failure at any step releases what was already created, agent
before namespace, so a half-built cluster is never returned.

Destruction order: dnsmasq, SSH agent, namespace. Every step runs even when an
earlier one fails; the first error is raised afterwards.
"""

import subprocess
from dataclasses import dataclass, field
from typing import Callable, Dict, List

from kola.core.exceptions import CommandExecutionError, TapError, first_error
from kola.core.structured_logging import get_logger
from kola.platform.local import links
from kola.platform.local.dnsmasq import Dnsmasq
from kola.platform.local.namespace import NetNamespace
from kola.platform.local.ssh_agent import SSHAgent


@dataclass
class LocalCommand:
    """A command bound to the cluster namespace and SSH agent."""

    argv: List[str]
    env: Dict[str, str] = field(default_factory=dict)

    def run(self, **kwargs) -> subprocess.CompletedProcess:
        return subprocess.run(self.argv, env=self.env, **kwargs)

    def popen(self, **kwargs) -> subprocess.Popen:
        return subprocess.Popen(self.argv, env=self.env, **kwargs)


class LocalCluster:
    """Namespace, SSH agent and dnsmasq, created and destroyed together."""

    def __init__(self, bridge: str = 'br0', subnet_prefix: str = '10.0.0',
                 verbose_level: int = 0):
        self.verbose_level = verbose_level
        self.logger = get_logger(__name__, verbose_level)
        self.bridge = bridge
        self._destroyed = False

        self.namespace = NetNamespace.create(verbose_level=verbose_level)

        try:
            self.ssh_agent = SSHAgent.start(namespace=self.namespace, verbose_level=verbose_level)
        except Exception:
            self._rollback(self.namespace.close)
            raise

        try:
            # dnsmasq must be launched in the new namespace
            self.dnsmasq = self.namespace.run(Dnsmasq.start, bridge, subnet_prefix,
                                              verbose_level=verbose_level)
        except Exception:
            self._rollback(self.ssh_agent.close, self.namespace.close)
            raise

        self.logger.info(f"Local cluster ready in namespace {self.namespace.name}")

    def _rollback(self, *releases: Callable[[], None]) -> None:
        for release in releases:
            try:
                release()
            except Exception as e:
                self.logger.error(f"rollback failed: {e}")

    def new_command(self, argv: List[str]) -> LocalCommand:
        """Build a command that runs inside the namespace with SSH_AUTH_SOCK set."""
        return LocalCommand(self.namespace.command(argv), self.ssh_agent.env())

    def run_command(self, argv: List[str], **kwargs) -> subprocess.CompletedProcess:
        return self.new_command(argv).run(**kwargs)

    def new_tap(self, bridge: str) -> links.TunTap:
        """
        Create a tap device in the namespace and enslave it to bridge.

        Raises:
            TapError: stage is one of "tap failed", "tap up failed",
                "bridge failed" or "set master failed"
        """
        return self.namespace.run(self._new_tap, bridge)

    def _new_tap(self, bridge: str) -> links.TunTap:
        try:
            tap = links.add_link_tap()
        except CommandExecutionError as e:
            raise TapError("tap failed", e) from e

        try:
            try:
                links.link_set_up(tap)
            except CommandExecutionError as e:
                raise TapError("tap up failed", e) from e

            try:
                br = links.link_by_name(bridge)
            except CommandExecutionError as e:
                raise TapError("bridge failed", e) from e
            if br.kind != 'bridge':
                raise TapError("bridge failed", ValueError(f"{bridge} is not a bridge"))

            try:
                links.link_set_master(tap, br)
            except CommandExecutionError as e:
                raise TapError("set master failed", e) from e
        except TapError:
            try:
                links.link_del(tap)
            except CommandExecutionError as e:
                self.logger.warning(f"removing {tap.name}: {e.message}")
            raise

        return tap

    def del_tap(self, tap: links.TunTap) -> None:
        self.namespace.run(links.link_del, tap)

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True

        errors = []
        for release in (self.dnsmasq.destroy, self.ssh_agent.close, self.namespace.close):
            try:
                release()
            except Exception as e:
                errors.append(e)

        err = first_error(*errors)
        if err is not None:
            raise err

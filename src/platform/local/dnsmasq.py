#!/usr/bin/env -S python3 -B -u
"""
DHCP/DNS helper for a local cluster.

Dnsmasq.start() creates the cluster bridge and launches dnsmasq on it. Both
act on the calling thread's network namespace, so the caller must already be
inside the cluster namespace (LocalCluster runs it through NetNamespace.run).
Machines get static leases through a hosts file that dnsmasq re-reads on
SIGHUP.
"""

import shutil
import signal
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Optional

from kola.core.exceptions import CommandExecutionError, DnsmasqError
from kola.core.structured_logging import get_logger
from kola.platform.local import links
from kola.platform.local.process import terminate_process

CONFIG_TEMPLATE = """\
interface={bridge}
bind-interfaces
except-interface=lo
user=root
domain=local
expand-hosts
dhcp-range={prefix}.50,{prefix}.250,1h
dhcp-hostsfile={hosts_file}
dhcp-leasefile={lease_file}
log-facility=-
"""


class Dnsmasq:
    """A dnsmasq process serving DHCP and DNS on the cluster bridge."""

    def __init__(self, bridge: str = 'br0', subnet_prefix: str = '10.0.0',
                 binary: str = 'dnsmasq', verbose_level: int = 0):
        self.bridge = bridge
        self.subnet_prefix = subnet_prefix
        self.binary = binary
        self.logger = get_logger(__name__, verbose_level)
        self.tempdir = Path(tempfile.mkdtemp(prefix='kola-dnsmasq-'))
        self.config_file = self.tempdir / 'dnsmasq.conf'
        self.hosts_file = self.tempdir / 'hosts'
        self.process: Optional[subprocess.Popen] = None

    @property
    def address(self) -> str:
        """Bridge address, which is also the machines' gateway and DNS server."""
        return f"{self.subnet_prefix}.1"

    @classmethod
    def start(cls, bridge: str = 'br0', subnet_prefix: str = '10.0.0',
              binary: str = 'dnsmasq', verbose_level: int = 0) -> 'Dnsmasq':
        """
        Create the bridge and launch dnsmasq in the current namespace.

        Raises:
            DnsmasqError: Setup failed; the helper process is not left running.
        """
        dm = cls(bridge, subnet_prefix, binary, verbose_level)
        try:
            dm._create_bridge()
            dm._launch()
        except Exception:
            dm.destroy()
            raise
        return dm

    def _create_bridge(self) -> None:
        try:
            br = links.add_link_bridge(self.bridge)
            links.addr_add(br, f"{self.address}/24")
            links.link_set_up(br)
        except CommandExecutionError as e:
            raise DnsmasqError(f"bridge {self.bridge} setup failed: {e.message}", cause=e) from e

    def _launch(self) -> None:
        self.hosts_file.touch()
        self.config_file.write_text(CONFIG_TEMPLATE.format(
            bridge=self.bridge,
            prefix=self.subnet_prefix,
            hosts_file=self.hosts_file,
            lease_file=self.tempdir / 'leases',
        ))

        cmd = [self.binary, '--keep-in-foreground', f'--conf-file={self.config_file}']
        self.logger.log_command_execution(cmd)
        log_file = self.tempdir / 'dnsmasq.log'
        try:
            with open(log_file, 'w') as log:
                self.process = subprocess.Popen(cmd, stdin=subprocess.DEVNULL,
                                                stdout=log, stderr=log)
        except OSError as e:
            raise DnsmasqError(f"dnsmasq failed: {e}", cause=e) from e

        # Give it a moment to bind
        time.sleep(0.5)

        if self.process.poll() is not None:
            raise DnsmasqError(f"dnsmasq exited immediately: {log_file.read_text().strip()}")

        self.logger.info(f"dnsmasq running on {self.bridge}", pid=self.process.pid)

    def add_host(self, mac: str, ip: str, hostname: str) -> None:
        """Add a static DHCP lease and have dnsmasq reload its hosts file."""
        if self.process is None or self.process.poll() is not None:
            raise DnsmasqError("dnsmasq is not running")
        with open(self.hosts_file, 'a') as f:
            f.write(f"{mac},{ip},{hostname}\n")
        self.process.send_signal(signal.SIGHUP)

    def destroy(self) -> None:
        """Stop dnsmasq. The bridge goes away with the namespace."""
        try:
            terminate_process(self.process)
        finally:
            self.process = None
            shutil.rmtree(self.tempdir, ignore_errors=True)

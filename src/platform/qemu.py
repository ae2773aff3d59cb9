#!/usr/bin/env -S python3 -B -u
"""
QEMU platform backend.

Machines are QEMU guests attached through tap devices to the local cluster
bridge. Each guest gets a static DHCP lease from the cluster dnsmasq and a
config-2 directory (openstack/latest/user_data + meta_data.json) shared over
virtio-9p, which carries the cloud-config and the cluster SSH public key.
All qemu and ssh processes run inside the cluster namespace.
"""

import json
import shutil
import subprocess
import tempfile
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from kola.core.config_loader import (
    get_discovery_config, get_provisioning_config, get_qemu_config, get_ssh_config
)
from kola.core.exceptions import KolaError, MachineError, first_error
from kola.platform.base import Cluster, Machine, MachineSet
from kola.platform.discovery import new_discovery_url
from kola.platform.local.cluster import LocalCluster
from kola.platform.local.links import TunTap
from kola.platform.local.process import terminate_process
from kola.platform.ssh import SSHSession


class QemuMachine(Machine):
    """A QEMU guest owned by a QemuCluster."""

    def __init__(self, cluster: 'QemuCluster', name: str, mac: str, ip: str,
                 tap: TunTap, config_dir: Path):
        self.cluster = cluster
        self.name = name
        self.mac = mac
        self._ip = ip
        self.tap = tap
        self.config_dir = config_dir
        self.process: Optional[subprocess.Popen] = None

    @property
    def id(self) -> str:
        return self.name

    @property
    def ip(self) -> str:
        return self._ip

    def ssh_session(self) -> SSHSession:
        ssh = self.cluster.ssh_config
        return SSHSession(self.ip, user=ssh['user'], options=ssh['options'],
                          timeout=ssh['timeout'], runner=self.cluster.run_command)

    def wait_for_ssh(self, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.process is not None and self.process.poll() is not None:
                log = (self.config_dir.parent / 'console.log')
                raise MachineError(f"qemu {self.name} exited with status {self.process.returncode}",
                                   details={'console_log': str(log)})
            try:
                sock = self.cluster.namespace.dial(self.ip, 22, timeout=2)
            except OSError:
                time.sleep(1)
                continue
            sock.close()
            return
        raise MachineError(f"{self.name} ({self.ip}) not reachable over ssh after {timeout}s")

    def destroy(self) -> None:
        errors = []
        try:
            terminate_process(self.process)
        except Exception as e:
            errors.append(e)
        try:
            self.cluster.del_tap(self.tap)
        except Exception as e:
            errors.append(e)
        shutil.rmtree(self.config_dir.parent, ignore_errors=True)
        self.cluster._machines.remove(self)

        err = first_error(*errors)
        if err is not None:
            raise err


class QemuCluster(LocalCluster, Cluster):
    """Local cluster of QEMU guests."""

    def __init__(self, image: Optional[str] = None, config: Optional[Dict[str, Any]] = None,
                 verbose_level: int = 0):
        self.qemu_config = get_qemu_config(config)
        if image:
            self.qemu_config['image'] = image
        self.ssh_config = get_ssh_config(config)
        self.discovery_config = get_discovery_config(config)
        self.provisioning_config = get_provisioning_config(config)
        self._machines = MachineSet()
        self._next_host = 2

        super().__init__(bridge=self.qemu_config['bridge'],
                         subnet_prefix=str(self.qemu_config['subnet_prefix']),
                         verbose_level=verbose_level)

    def get_discovery_url(self, size: int) -> str:
        return new_discovery_url(size, self.discovery_config['service'],
                                 self.discovery_config['timeout'])

    def machines(self) -> List[Machine]:
        return self._machines.list()

    def _allocate_address(self) -> tuple:
        host = self._next_host
        if host > 49:
            raise MachineError("static address range exhausted")
        self._next_host += 1
        mac = "52:54:00:%02x:%02x:%02x" % (0, host >> 8, host & 0xff)
        return f"{self.qemu_config['subnet_prefix']}.{host}", mac

    def _write_config_drive(self, name: str, config: str) -> Path:
        workdir = Path(tempfile.mkdtemp(prefix=f'kola-{name}-'))
        drive = workdir / 'config-2'
        latest = drive / 'openstack' / 'latest'
        latest.mkdir(parents=True)
        (latest / 'user_data').write_text(config)
        (latest / 'meta_data.json').write_text(json.dumps({
            'uuid': name,
            'hostname': name,
            'public_keys': {'kola': self.ssh_agent.public_key},
        }))
        return drive

    def _qemu_command(self, machine: QemuMachine) -> List[str]:
        cfg = self.qemu_config
        return [
            cfg['binary'],
            '-machine', 'accel=kvm:tcg',
            '-m', str(cfg['memory']),
            '-nographic', '-display', 'none',
            '-uuid', machine.name,
            '-drive', f"if=virtio,file={cfg['image']},snapshot=on",
            '-netdev', f"tap,id=tap,ifname={machine.tap.name},script=no,downscript=no",
            '-device', f"virtio-net-pci,netdev=tap,mac={machine.mac}",
            '-fsdev', f"local,id=cfg,security_model=none,readonly=on,path={machine.config_dir}",
            '-device', 'virtio-9p-pci,fsdev=cfg,mount_tag=config-2',
        ] + list(cfg.get('extra_args') or [])

    def new_machine(self, config: str) -> Machine:
        """
        Boot a guest with config as its cloud-config and wait for ssh.

        Raises:
            MachineError: The guest could not be started; its resources are
                released before raising.
        """
        name = str(uuid.uuid4())
        ip, mac = self._allocate_address()
        self.dnsmasq.add_host(mac, ip, name)

        config_dir = self._write_config_drive(name, config)
        try:
            tap = self.new_tap(self.bridge)
        except KolaError:
            shutil.rmtree(config_dir.parent, ignore_errors=True)
            raise

        machine = QemuMachine(self, name, mac, ip, tap, config_dir)
        self._machines.add(machine)
        try:
            cmd = self.new_command(self._qemu_command(machine))
            self.logger.log_command_execution(cmd.argv)
            with open(config_dir.parent / 'console.log', 'w') as console:
                machine.process = cmd.popen(stdin=subprocess.DEVNULL, stdout=console,
                                            stderr=subprocess.STDOUT)
            machine.wait_for_ssh(self.provisioning_config['boot_timeout'])
        except Exception as e:
            try:
                machine.destroy()
            except Exception as cleanup_error:
                self.logger.error(f"cleanup of {name} failed: {cleanup_error}")
            if isinstance(e, KolaError):
                raise
            raise MachineError(f"starting qemu {name}: {e}", cause=e) from e

        self.logger.info(f"Machine {name} up", ip=ip)
        return machine

    def destroy(self) -> None:
        errors = [self._machines.destroy_all()]
        try:
            super().destroy()
        except Exception as e:
            errors.append(e)

        err = first_error(*errors)
        if err is not None:
            raise err

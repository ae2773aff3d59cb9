#!/usr/bin/env -S python3 -B -u
"""
GCE platform backend.

Drives the gcloud CLI: instances are created with the cloud-config as
user-data metadata and reached over their external NAT address with the
user's own SSH agent.
"""

import json
import shutil
import socket
import subprocess
import tempfile
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from kola.core.config_loader import (
    get_discovery_config, get_gce_config, get_provisioning_config, get_ssh_config
)
from kola.core.exceptions import (
    CommandExecutionError, ConfigurationError, ExecutionError, MachineError, first_error
)
from kola.core.structured_logging import get_logger
from kola.platform.base import Cluster, Machine, MachineSet
from kola.platform.discovery import new_discovery_url
from kola.platform.ssh import SSHSession


class GCEMachine(Machine):
    """A GCE instance owned by a GCECluster."""

    def __init__(self, cluster: 'GCECluster', name: str, ip: str, internal_ip: str = ""):
        self.cluster = cluster
        self.name = name
        self._ip = ip
        self.internal_ip = internal_ip

    @property
    def id(self) -> str:
        return self.name

    @property
    def ip(self) -> str:
        return self._ip

    def ssh_session(self) -> SSHSession:
        ssh = self.cluster.ssh_config
        return SSHSession(self.ip, user=ssh['user'], options=ssh['options'],
                          timeout=ssh['timeout'])

    def wait_for_ssh(self, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            try:
                sock = socket.create_connection((self.ip, 22), timeout=5)
            except OSError:
                time.sleep(2)
                continue
            sock.close()
            return
        raise MachineError(f"{self.name} ({self.ip}) not reachable over ssh after {timeout}s")

    def destroy(self) -> None:
        try:
            self.cluster.delete_instance(self.name)
        finally:
            self.cluster._machines.remove(self)


class GCECluster(Cluster):
    """Cluster of GCE instances managed through gcloud."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, verbose_level: int = 0):
        self.logger = get_logger(__name__, verbose_level)
        self.gce_config = get_gce_config(config)
        self.ssh_config = get_ssh_config(config)
        self.discovery_config = get_discovery_config(config)
        self.provisioning_config = get_provisioning_config(config)
        self._machines = MachineSet()

        for key in ('project', 'image'):
            if not self.gce_config.get(key):
                raise ConfigurationError(f"gce.{key} must be set to run tests on gce")
        if shutil.which(self.gce_config['gcloud']) is None:
            raise ConfigurationError(f"{self.gce_config['gcloud']} not found in PATH")

    def gcloud(self, args: List[str]) -> Any:
        """Run a gcloud command and return its parsed JSON output."""
        cmd = [self.gce_config['gcloud']] + args + [
            '--project', self.gce_config['project'], '--format', 'json'
        ]
        self.logger.log_command_execution(cmd)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True,
                                    timeout=self.provisioning_config['timeout'])
        except subprocess.TimeoutExpired as e:
            raise ExecutionError(f"{' '.join(args[:3])} timed out", cause=e) from e
        if result.returncode != 0:
            raise CommandExecutionError(' '.join(args[:4]), result.returncode, result.stderr)
        if not result.stdout.strip():
            return None
        try:
            return json.loads(result.stdout)
        except ValueError as e:
            raise ExecutionError(f"{' '.join(args[:3])} returned unreadable output: {e}",
                                 details={"stdout": result.stdout}, cause=e) from e

    def delete_instance(self, name: str) -> None:
        self.gcloud(['compute', 'instances', 'delete', name,
                     '--zone', self.gce_config['zone'], '--quiet'])

    def _discard_instance(self, name: str) -> None:
        try:
            self.delete_instance(name)
        except ExecutionError as e:
            self.logger.error(f"deleting {name}: {e.message}")

    def get_discovery_url(self, size: int) -> str:
        return new_discovery_url(size, self.discovery_config['service'],
                                 self.discovery_config['timeout'])

    def machines(self) -> List[Machine]:
        return self._machines.list()

    def _create_args(self, name: str, user_data: Path) -> List[str]:
        cfg = self.gce_config
        args = ['compute', 'instances', 'create', name,
                '--zone', cfg['zone'],
                '--machine-type', cfg['machine_type'],
                '--image', cfg['image'],
                '--metadata-from-file', f'user-data={user_data}']
        if cfg.get('image_project'):
            args += ['--image-project', cfg['image_project']]
        return args

    def new_machine(self, config: str) -> Machine:
        name = f"{self.gce_config['name_prefix']}-{uuid.uuid4().hex[:12]}"

        with tempfile.NamedTemporaryFile('w', suffix='.yaml', prefix='kola-') as f:
            f.write(config)
            f.flush()
            try:
                created = self.gcloud(self._create_args(name, Path(f.name)))
            except CommandExecutionError as e:
                raise MachineError(f"creating instance {name}: {e.message}", cause=e) from e
            except ExecutionError as e:
                # gcloud may have created the instance before the failure
                self._discard_instance(name)
                raise MachineError(f"creating instance {name}: {e.message}", cause=e) from e

        try:
            nic = created[0]['networkInterfaces'][0]
            ip = nic['accessConfigs'][0]['natIP']
        except (TypeError, LookupError) as e:
            self._discard_instance(name)
            raise MachineError(f"instance {name} has no external address", cause=e) from e

        machine = GCEMachine(self, name, ip, nic.get('networkIP', ''))
        self._machines.add(machine)
        try:
            machine.wait_for_ssh(self.provisioning_config['boot_timeout'])
        except MachineError:
            machine.destroy()
            raise

        self.logger.info(f"Instance {name} up", ip=ip)
        return machine

    def destroy(self) -> None:
        err = first_error(self._machines.destroy_all())
        if err is not None:
            raise err

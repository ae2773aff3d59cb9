#!/usr/bin/env -S python3 -B -u
"""
Cluster and machine contracts shared by every platform backend.

A Cluster owns the machines it creates; destroying the cluster releases every
machine and whatever backend resources it holds (namespace, local service
processes, cloud instances).
"""

import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from kola.core.exceptions import first_error
from kola.platform.ssh import SSHSession


class Machine(ABC):
    """A single running instance reachable over SSH."""

    @property
    @abstractmethod
    def id(self) -> str:
        ...

    @property
    @abstractmethod
    def ip(self) -> str:
        ...

    @abstractmethod
    def ssh_session(self) -> SSHSession:
        """Return a new SSH session to this machine."""

    def ssh(self, cmd: str) -> bytes:
        """Run cmd on the machine and return its combined output."""
        with self.ssh_session() as session:
            return session.combined_output(cmd)

    @abstractmethod
    def destroy(self) -> None:
        ...


class Cluster(ABC):
    """N running machines plus a discovery endpoint."""

    @abstractmethod
    def new_machine(self, config: str) -> Machine:
        ...

    @abstractmethod
    def get_discovery_url(self, size: int) -> str:
        ...

    @abstractmethod
    def machines(self) -> List[Machine]:
        ...

    @abstractmethod
    def destroy(self) -> None:
        ...

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.destroy()


class MachineSet:
    """Bookkeeping for the machines a cluster owns, in creation order."""

    def __init__(self):
        self._machines: Dict[str, Machine] = {}

    def add(self, machine: Machine) -> None:
        self._machines[machine.id] = machine

    def remove(self, machine: Machine) -> None:
        self._machines.pop(machine.id, None)

    def list(self) -> List[Machine]:
        return list(self._machines.values())

    def destroy_all(self) -> Optional[BaseException]:
        """Destroy every machine, returning the first error encountered."""
        errors = []
        for machine in self.list():
            try:
                machine.destroy()
            except Exception as e:
                errors.append(e)
            self.remove(machine)
        return first_error(*errors)


@dataclass
class TestCluster:
    """The cluster handle passed to test run functions."""

    __test__ = False

    name: str
    cluster: Cluster

    def machines(self) -> List[Machine]:
        return self.cluster.machines()

    def run_native(self, func_name: str, machine: Machine) -> bytes:
        """Run one of the test's native functions on machine through kolet."""
        cmd = f"./kolet run {shlex.quote(self.name)} {shlex.quote(func_name)}"
        return machine.ssh(cmd)

"""Only expected services listen on a freshly booted machine."""

import subprocess
from typing import Set

from kola.core.exceptions import TestFailure
from kola.harness.registry import Test, register
from kola.platform.base import TestCluster

# sshd, dhcp client (v4/v6), systemd-resolved stub
ALLOWED_PORTS = {'22', '68', '546', '53'}


def listening_ports() -> Set[str]:
    """Ports with a listening socket, as reported by ss."""
    result = subprocess.run(['ss', '-H', '-l', '-n', '-t', '-u'],
                            capture_output=True, text=True, check=True)
    ports = set()
    for line in result.stdout.splitlines():
        fields = line.split()
        # Netid State Recv-Q Send-Q Local:Port Peer:Port
        if len(fields) >= 5:
            ports.add(fields[4].rsplit(':', 1)[-1])
    return ports


def network_listeners() -> None:
    """Native function, runs on the machine through kolet."""
    unexpected = listening_ports() - ALLOWED_PORTS
    if unexpected:
        raise TestFailure(f"unexpected listeners on ports {', '.join(sorted(unexpected))}")


def run(cluster: TestCluster) -> None:
    for m in cluster.machines():
        cluster.run_native("NetworkListeners", m)


register(Test(
    name="coreos.basic.NetworkListeners",
    run=run,
    native_funcs={"NetworkListeners": network_listeners},
    cloud_config="#cloud-config\nhostname: $name\n",
    cluster_size=1,
))

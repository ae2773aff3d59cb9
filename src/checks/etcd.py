"""etcd cluster bootstrap through a discovery endpoint."""

import time

from kola.core.exceptions import KolaError, TestFailure
from kola.harness.registry import Test, register
from kola.platform.base import TestCluster

CLOUD_CONFIG = """\
#cloud-config

coreos:
  etcd:
    name: $name
    discovery: $discovery
    addr: $private_ipv4:4001
    peer-addr: $private_ipv4:7001
  units:
    - name: etcd.service
      command: start
"""


def _wait_for(check, timeout: float = 120, interval: float = 5):
    deadline = time.monotonic() + timeout
    last_error = None
    while time.monotonic() < deadline:
        try:
            return check()
        except KolaError as e:
            last_error = e
            time.sleep(interval)
    raise TestFailure(f"timed out: {last_error.message if last_error else 'no attempt made'}")


def discovery(cluster: TestCluster) -> None:
    """All members join one cluster and see each other's writes."""
    machines = cluster.machines()
    if len(machines) != 3:
        raise TestFailure(f"expected 3 machines, got {len(machines)}")

    for m in machines:
        _wait_for(lambda: m.ssh("systemctl is-active etcd.service"))

    first, rest = machines[0], machines[1:]
    _wait_for(lambda: first.ssh(f"etcdctl set /kola/{cluster.name} {first.id}"))

    for m in rest:
        out = _wait_for(lambda: m.ssh(f"etcdctl get /kola/{cluster.name}"))
        value = out.decode().strip()
        if value != first.id:
            raise TestFailure(f"{m.id} read {value!r}, expected {first.id!r}")


register(Test(
    name="coreos.etcd.discovery",
    run=discovery,
    cloud_config=CLOUD_CONFIG,
    cluster_size=3,
))

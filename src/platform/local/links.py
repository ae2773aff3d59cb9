"""
Link-layer helpers for the local cluster network.

Thin wrappers over iproute2. They act on the network namespace of the calling
thread, so callers run them through NetNamespace.run() when they target the
cluster namespace.
"""

import json
import subprocess
import uuid
from dataclasses import dataclass
from typing import List, Optional

from kola.core.exceptions import CommandExecutionError
from kola.core.structured_logging import get_logger


@dataclass
class Link:
    name: str
    index: int
    kind: Optional[str] = None


@dataclass
class TunTap(Link):
    mode: str = 'tap'


def _ip(args: List[str]) -> str:
    cmd = ['ip'] + args
    get_logger(__name__).log_command_execution(cmd)
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise CommandExecutionError(' '.join(cmd), result.returncode, result.stderr)
    return result.stdout


def link_by_name(name: str) -> Link:
    out = _ip(['-j', '-d', 'link', 'show', 'dev', name])
    try:
        info = json.loads(out)[0]
    except (ValueError, IndexError) as e:
        raise CommandExecutionError(f"ip link show dev {name}", 0, f"unparsable output: {e}")
    kind = (info.get('linkinfo') or {}).get('info_kind')
    return Link(name=info['ifname'], index=info['ifindex'], kind=kind)


def add_link_tap(name: str = "") -> TunTap:
    """Create a tap device. An empty name picks a unique one."""
    name = name or f"tap{uuid.uuid4().hex[:8]}"
    _ip(['tuntap', 'add', 'dev', name, 'mode', 'tap'])
    link = link_by_name(name)
    return TunTap(name=link.name, index=link.index, kind='tun')


def add_link_bridge(name: str) -> Link:
    _ip(['link', 'add', 'name', name, 'type', 'bridge'])
    return link_by_name(name)


def link_set_up(link: Link) -> None:
    _ip(['link', 'set', 'dev', link.name, 'up'])


def link_set_master(link: Link, master: Link) -> None:
    _ip(['link', 'set', 'dev', link.name, 'master', master.name])


def addr_add(link: Link, cidr: str) -> None:
    _ip(['addr', 'add', cidr, 'dev', link.name])


def link_del(link: Link) -> None:
    _ip(['link', 'del', 'dev', link.name])

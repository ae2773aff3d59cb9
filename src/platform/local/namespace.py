#!/usr/bin/env -S python3 -B -u
"""
Network Namespace Harness

Creates an isolated network namespace for a local cluster and provides the
scoped "enter namespace, run, restore" operation everything namespace
sensitive goes through.

Namespace association is per OS thread. Entering mutates the calling thread,
so at most one entered region may be active per thread; nesting raises
NamespaceError. NetNamespace.run() executes a callable on a dedicated worker
thread owned by the namespace, which serializes all namespace-sensitive
sections for that namespace and never touches the caller's thread.

Namespaces are named (ip netns add) so that external tools can reach them
through `ip netns exec <name>`.
"""

import os
import socket
import subprocess
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, List, Optional

from kola.core.exceptions import NamespaceError
from kola.core.structured_logging import get_logger

NETNS_RUN_DIR = Path('/run/netns')

_active = threading.local()


def _thread_netns_path() -> str:
    return f"/proc/self/task/{threading.get_native_id()}/ns/net"


def current_namespace() -> Optional[str]:
    """Name of the namespace the calling thread has entered, if any."""
    return getattr(_active, 'namespace', None)


def _ip(args: List[str]) -> subprocess.CompletedProcess:
    return subprocess.run(['ip'] + args, capture_output=True, text=True)


def _open_ns(path) -> int:
    return os.open(path, os.O_RDONLY | os.O_CLOEXEC)


def _setns(fd: int) -> None:
    os.setns(fd, os.CLONE_NEWNET)


def _close_fd(fd: int) -> None:
    os.close(fd)


class NamespaceWorker:
    """A single OS thread bound to one namespace for the duration of each call."""

    def __init__(self, namespace: 'NetNamespace'):
        self.namespace = namespace
        self._executor = ThreadPoolExecutor(max_workers=1,
                                            thread_name_prefix=f"netns-{namespace.name}")

    def run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        if current_namespace() is not None:
            raise NamespaceError(
                f"cannot run in {self.namespace.name}: thread already inside {current_namespace()}")

        def call():
            with self.namespace.enter():
                return fn(*args, **kwargs)

        return self._executor.submit(call).result()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


class NetNamespace:
    """Handle to a named network namespace."""

    def __init__(self, name: str, fd: int, verbose_level: int = 0):
        self.name = name
        self.fd: Optional[int] = fd
        self.logger = get_logger(__name__, verbose_level)
        self._worker: Optional[NamespaceWorker] = None
        self._worker_lock = threading.Lock()

    @classmethod
    def create(cls, prefix: str = 'kola', verbose_level: int = 0) -> 'NetNamespace':
        """
        Allocate a new namespace with its loopback up.

        Raises:
            NamespaceError: The namespace could not be created; nothing is
                left allocated.
        """
        logger = get_logger(__name__, verbose_level)
        name = f"{prefix}-{uuid.uuid4().hex[:8]}"

        logger.log_command_execution(['ip', 'netns', 'add', name])
        try:
            result = _ip(['netns', 'add', name])
        except OSError as e:
            raise NamespaceError(f"ip netns add {name}: {e}", cause=e) from e
        if result.returncode != 0:
            raise NamespaceError(f"ip netns add {name}: {result.stderr.strip()}")

        try:
            fd = _open_ns(NETNS_RUN_DIR / name)
        except OSError as e:
            _ip(['netns', 'delete', name])
            raise NamespaceError(f"open namespace {name}: {e}", cause=e) from e

        ns = cls(name, fd, verbose_level)
        result = _ip(['netns', 'exec', name, 'ip', 'link', 'set', 'lo', 'up'])
        if result.returncode != 0:
            ns.close()
            raise NamespaceError(f"loopback up in {name}: {result.stderr.strip()}")

        logger.info(f"Created network namespace {name}")
        return ns

    @contextmanager
    def enter(self):
        """
        Associate the calling thread with this namespace for the block.

        The thread's previous namespace is restored on every exit path.
        """
        if self.fd is None:
            raise NamespaceError(f"namespace {self.name} is closed")
        if current_namespace() is not None:
            raise NamespaceError(
                f"cannot enter {self.name}: thread already inside {current_namespace()}")

        try:
            original = _open_ns(_thread_netns_path())
        except OSError as e:
            raise NamespaceError(f"save current namespace: {e}", cause=e) from e

        try:
            try:
                _setns(self.fd)
            except OSError as e:
                raise NamespaceError(f"enter namespace {self.name}: {e}", cause=e) from e

            _active.namespace = self.name
            try:
                yield self
            finally:
                _active.namespace = None
                try:
                    _setns(original)
                except OSError as e:
                    raise NamespaceError(f"restore namespace after {self.name}: {e}", cause=e) from e
        finally:
            _close_fd(original)

    def run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run fn inside the namespace on the namespace's worker thread."""
        with self._worker_lock:
            if self.fd is None:
                raise NamespaceError(f"namespace {self.name} is closed")
            if self._worker is None:
                self._worker = NamespaceWorker(self)
            worker = self._worker
        return worker.run(fn, *args, **kwargs)

    def command(self, argv: List[str]) -> List[str]:
        """Prefix argv so it executes inside the namespace."""
        return ['ip', 'netns', 'exec', self.name] + list(argv)

    def dial(self, host: str, port: int, timeout: Optional[float] = None) -> socket.socket:
        """Open a TCP connection originating inside the namespace."""
        return self.run(socket.create_connection, (host, port), timeout)

    def close(self) -> None:
        """
        Release the namespace. Safe to call more than once.

        Processes and devices created inside the namespace must be torn down
        before this is called.
        """
        with self._worker_lock:
            worker, self._worker = self._worker, None
            fd, self.fd = self.fd, None
        if fd is None:
            return

        if worker is not None:
            worker.shutdown()
        _close_fd(fd)

        self.logger.log_command_execution(['ip', 'netns', 'delete', self.name])
        result = _ip(['netns', 'delete', self.name])
        if result.returncode != 0:
            raise NamespaceError(f"ip netns delete {self.name}: {result.stderr.strip()}")
        self.logger.info(f"Deleted network namespace {self.name}")

#!/usr/bin/env -S python3 -B -u
"""
SSH sessions to test machines.

Sessions drive the OpenSSH client through subprocess. A session carries an
optional stdin that is fed to the remote command, and returns the command's
combined stdout/stderr. Backends can supply a runner so the ssh process is
started somewhere other than the host network, e.g. inside the local cluster
namespace with the cluster's agent socket.
"""

import subprocess
from typing import Any, BinaryIO, Callable, Dict, List, Optional, Union

from kola.core.exceptions import CommandExecutionError, ExecutionError
from kola.core.structured_logging import get_logger

Runner = Callable[..., subprocess.CompletedProcess]


def build_ssh_command(host: str, remote_cmd: str, user: Optional[str] = None,
                      options: Optional[Dict[str, Any]] = None,
                      port: int = 22) -> List[str]:
    """Build an ssh argv for running remote_cmd on host."""
    cmd = ['ssh']
    for option, value in (options or {}).items():
        cmd.extend(['-o', f'{option}={value}'])
    if port != 22:
        cmd.extend(['-p', str(port)])
    if user:
        cmd.extend(['-l', user])
    cmd.extend([host, remote_cmd])
    return cmd


class SSHSession:
    """A single-command-at-a-time SSH session to one machine."""

    def __init__(self, host: str, user: Optional[str] = None,
                 options: Optional[Dict[str, Any]] = None,
                 timeout: Optional[float] = None, port: int = 22,
                 runner: Optional[Runner] = None):
        self.host = host
        self.user = user
        self.options = dict(options or {})
        self.timeout = timeout
        self.port = port
        self.runner = runner or subprocess.run
        self.stdin: Optional[Union[BinaryIO, bytes]] = None
        self.closed = False
        self.logger = get_logger(__name__)

    def command(self, remote_cmd: str) -> List[str]:
        return build_ssh_command(self.host, remote_cmd, self.user, self.options, self.port)

    def combined_output(self, remote_cmd: str) -> bytes:
        """
        Run remote_cmd and return its combined stdout and stderr.

        Raises:
            CommandExecutionError: The remote command exited non-zero
            ExecutionError: ssh could not be run or timed out
        """
        if self.closed:
            raise ExecutionError(f"ssh session to {self.host} is closed")

        argv = self.command(remote_cmd)
        kwargs: Dict[str, Any] = {
            'stdout': subprocess.PIPE,
            'stderr': subprocess.STDOUT,
            'timeout': self.timeout,
        }
        if isinstance(self.stdin, (bytes, bytearray)):
            kwargs['input'] = bytes(self.stdin)
        elif self.stdin is not None:
            kwargs['stdin'] = self.stdin
        else:
            kwargs['stdin'] = subprocess.DEVNULL

        self.logger.log_command_execution(remote_cmd, host=self.host)
        try:
            result = self.runner(argv, **kwargs)
        except subprocess.TimeoutExpired as e:
            raise ExecutionError(f"ssh {self.host}: {remote_cmd!r} timed out after {self.timeout}s",
                                 cause=e) from e
        except OSError as e:
            raise ExecutionError(f"ssh {self.host}: {e}", cause=e) from e

        output = result.stdout or b''
        if result.returncode != 0:
            raise CommandExecutionError(remote_cmd, result.returncode,
                                        output.decode(errors='replace'))
        return output

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

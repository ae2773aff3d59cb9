#!/usr/bin/env -S python3 -B -u
"""
SSH agent for a local cluster.

Runs a private ssh-agent on a socket in a per-cluster temporary directory and
loads a freshly generated key into it. The public key is injected into
machine configs; commands run against the cluster find the agent through
SSH_AUTH_SOCK.
"""

import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, Optional

from kola.core.exceptions import SSHAgentError
from kola.core.structured_logging import get_logger
from kola.platform.local.process import terminate_process, wait_for_path


class SSHAgent:
    """A running ssh-agent holding one generated key."""

    def __init__(self, namespace=None, verbose_level: int = 0):
        self.namespace = namespace
        self.logger = get_logger(__name__, verbose_level)
        self.tempdir = Path(tempfile.mkdtemp(prefix='kola-agent-'))
        self.socket = str(self.tempdir / 'agent.sock')
        self.process: Optional[subprocess.Popen] = None
        self.public_key: Optional[str] = None

    @classmethod
    def start(cls, namespace=None, verbose_level: int = 0, timeout: float = 5.0) -> 'SSHAgent':
        """
        Launch the agent and load a new key.

        With a namespace the agent process runs inside it; the socket lives
        on the filesystem and is reachable from both sides.

        Raises:
            SSHAgentError: The agent or key could not be set up; nothing is
                left running.
        """
        agent = cls(namespace, verbose_level)
        try:
            agent._launch(timeout)
            agent._add_key()
        except Exception:
            agent.close()
            raise
        return agent

    def env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env['SSH_AUTH_SOCK'] = self.socket
        return env

    def _launch(self, timeout: float) -> None:
        cmd = ['ssh-agent', '-D', '-a', self.socket]
        if self.namespace is not None:
            cmd = self.namespace.command(cmd)
        self.logger.log_command_execution(cmd)
        try:
            self.process = subprocess.Popen(cmd, stdin=subprocess.DEVNULL,
                                            stdout=subprocess.DEVNULL,
                                            stderr=subprocess.PIPE)
        except OSError as e:
            raise SSHAgentError(f"ssh-agent failed: {e}", cause=e) from e

        if not wait_for_path(Path(self.socket), self.process, timeout):
            stderr = b''
            if self.process.poll() is not None and self.process.stderr:
                stderr = self.process.stderr.read()
            raise SSHAgentError(f"ssh-agent did not create {self.socket}: "
                                f"{stderr.decode(errors='replace').strip()}")

    def _add_key(self) -> None:
        key = self.tempdir / 'id_ed25519'
        steps = [
            ['ssh-keygen', '-q', '-t', 'ed25519', '-N', '', '-C', 'kola', '-f', str(key)],
            ['ssh-add', '-q', str(key)],
        ]
        for cmd in steps:
            self.logger.log_command_execution(cmd)
            try:
                result = subprocess.run(cmd, env=self.env(), capture_output=True, text=True)
            except OSError as e:
                raise SSHAgentError(f"{cmd[0]} failed: {e}", cause=e) from e
            if result.returncode != 0:
                raise SSHAgentError(f"{cmd[0]} failed: {result.stderr.strip()}")

        self.public_key = (self.tempdir / 'id_ed25519.pub').read_text().strip()
        # the agent holds the private key from here on
        key.unlink()

    def close(self) -> None:
        """Stop the agent and remove its socket directory."""
        try:
            terminate_process(self.process)
        finally:
            self.process = None
            shutil.rmtree(self.tempdir, ignore_errors=True)

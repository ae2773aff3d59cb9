#!/usr/bin/env -S python3 -B -u
"""Tests for copying the kolet helper to machines."""

import os
import subprocess
import tempfile
import unittest
from unittest.mock import MagicMock

from kola.core.exceptions import CommandExecutionError, DeploymentError
from kola.harness.deploy import scp_file
from kola.platform.base import Machine
from kola.platform.ssh import SSHSession


class StubMachine(Machine):
    """Machine whose sessions use a recording runner instead of ssh."""

    def __init__(self, runner):
        self.runner = runner
        self.sessions = []

    @property
    def id(self):
        return "instance0"

    @property
    def ip(self):
        return "10.0.0.2"

    def ssh_session(self):
        session = SSHSession(self.ip, user='core', runner=self.runner)
        self.sessions.append(session)
        return session

    def destroy(self):
        pass


class TestScpFile(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.src = os.path.join(self.tmpdir.name, 'kolet')
        with open(self.src, 'wb') as f:
            f.write(b"\x7fELF kolet")

        self.received = []

        def runner(argv, **kwargs):
            self.received.append((argv, kwargs['stdin'].read()))
            return subprocess.CompletedProcess(argv, 0, stdout=b"")

        self.machine = StubMachine(MagicMock(side_effect=runner))

    def test_copies_contents(self):
        scp_file(self.machine, self.src)

        argv, data = self.received[0]
        self.assertEqual(argv[-1], "install -m 0755 /dev/stdin ./kolet")
        self.assertEqual(data, b"\x7fELF kolet")

    def test_session_closed(self):
        scp_file(self.machine, self.src)
        self.assertTrue(self.machine.sessions[0].closed)

    def test_destination_name_quoted(self):
        src = os.path.join(self.tmpdir.name, 'my helper')
        with open(src, 'wb') as f:
            f.write(b"x")

        scp_file(self.machine, src)

        self.assertEqual(self.received[0][0][-1], "install -m 0755 /dev/stdin ./'my helper'")

    def test_missing_source(self):
        with self.assertRaises(DeploymentError) as cm:
            scp_file(self.machine, os.path.join(self.tmpdir.name, 'absent'))
        self.assertIn("opening", cm.exception.message)
        self.assertEqual(self.machine.sessions, [])

    def test_remote_failure(self):
        self.machine.runner.side_effect = None
        self.machine.runner.return_value = subprocess.CompletedProcess(
            ['ssh'], 1, stdout=b"install: cannot create regular file")

        with self.assertRaises(DeploymentError) as cm:
            scp_file(self.machine, self.src)

        self.assertIsInstance(cm.exception.cause, CommandExecutionError)
        self.assertIn("instance0", cm.exception.message)


if __name__ == '__main__':
    unittest.main()

#!/usr/bin/env -S python3 -B -u
"""
Test Suite for the kola and kolet command lines

Covers argument handling, exit codes and the built-in test set.
"""

import io
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import patch

from kola import cli, kolet
from kola.core.exceptions import ErrorCode, TestFailure
from kola.harness.registry import Registry, Test


class CliTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        # a config path that does not exist keeps user files out of the test
        self.config = os.path.join(self.tmpdir.name, 'kola.yaml')

    def main(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = cli.main(['-c', self.config] + list(argv))
        return code, out.getvalue(), err.getvalue()


class TestKolaCli(CliTestCase):

    def test_no_command(self):
        code, _, err = self.main()
        self.assertEqual(code, ErrorCode.USAGE_ERROR)
        self.assertIn("usage:", err)

    def test_list_builtin_tests(self):
        code, out, _ = self.main('list')
        self.assertEqual(code, ErrorCode.SUCCESS)
        self.assertIn("coreos.etcd.discovery\t3\tall", out)
        self.assertIn("coreos.basic.NetworkListeners\t1\tall", out)

    def test_extra_arguments(self):
        code, _, err = self.main('run', 'a*', 'b*')
        self.assertEqual(code, ErrorCode.USAGE_ERROR)
        self.assertIn("Extra arguments specified", err)

    @patch('kola.cli.TestRunner')
    def test_run_passes_pattern(self, mock_runner):
        mock_runner.return_value.run_tests.return_value = ErrorCode.TEST_FAILED
        with open(self.config, 'w') as f:
            f.write("platforms: [qemu]\n")

        code, _, _ = self.main('-vv', 'run', 'coreos.etcd.*')

        self.assertEqual(code, ErrorCode.TEST_FAILED)
        kwargs = mock_runner.call_args.kwargs
        self.assertEqual(kwargs['verbose_level'], 2)
        self.assertEqual(kwargs['config']['platforms'], ['qemu'])
        mock_runner.return_value.run_tests.assert_called_once_with(['coreos.etcd.*'])

    @patch('kola.cli.TestRunner')
    def test_verbosity_from_config(self, mock_runner):
        mock_runner.return_value.run_tests.return_value = ErrorCode.SUCCESS
        with open(self.config, 'w') as f:
            f.write("verbose_level: 1\n")

        self.main('run')

        self.assertEqual(mock_runner.call_args.kwargs['verbose_level'], 1)
        mock_runner.return_value.run_tests.assert_called_once_with([])

    @patch('kola.cli.TestRunner')
    def test_non_integer_verbosity_in_config(self, mock_runner):
        with open(self.config, 'w') as f:
            f.write("verbose_level: loud\n")

        code, _, err = self.main('run')

        self.assertEqual(code, ErrorCode.CONFIGURATION_ERROR)
        self.assertIn("verbose_level must be an integer, got 'loud'", err)
        mock_runner.assert_not_called()

    def test_bad_config(self):
        with open(self.config, 'w') as f:
            f.write("platforms: [qemu\n")
        code, _, err = self.main('list')
        self.assertEqual(code, ErrorCode.CONFIGURATION_ERROR)
        self.assertIn("Error:", err)


class TestKoletCli(unittest.TestCase):

    def setUp(self):
        self.calls = []
        self.registry = Registry()

        def ok():
            self.calls.append('ok')

        def broken():
            raise TestFailure("unexpected listeners on ports 8080")

        self.registry.register(Test(name="example", run=lambda c: None,
                                    native_funcs={"Ok": ok, "Broken": broken}))
        patcher = patch('kola.cli.load_tests', return_value=self.registry)
        patcher.start()
        self.addCleanup(patcher.stop)

    def main(self, *argv):
        err = io.StringIO()
        with redirect_stderr(err):
            code = kolet.main(list(argv))
        return code, err.getvalue()

    def test_runs_native_function(self):
        code, _ = self.main('run', 'example', 'Ok')
        self.assertEqual(code, 0)
        self.assertEqual(self.calls, ['ok'])

    def test_failure(self):
        code, err = self.main('run', 'example', 'Broken')
        self.assertEqual(code, 1)
        self.assertIn("unexpected listeners", err)

    def test_unknown_function(self):
        code, err = self.main('run', 'example', 'Missing')
        self.assertEqual(code, 1)
        self.assertIn("no native function Missing", err)

    def test_unknown_test(self):
        code, err = self.main('run', 'nope', 'Ok')
        self.assertEqual(code, 1)
        self.assertIn("nope", err)


if __name__ == '__main__':
    unittest.main()

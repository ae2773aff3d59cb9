#!/usr/bin/env -S python3 -B -u
"""
Test Suite for the Test Runner

Drives TestRunner against in-memory clusters to check:
- Cluster lifecycle (always destroyed once constructed)
- Per-member config rendering and discovery sizing
- Fail-fast behaviour and exit codes
- Platform selection (whitelist vs. default set)
- kolet deployment for tests with native functions
"""

import io
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import patch

from kola.core.exceptions import (
    DeploymentError, DiscoveryError, ErrorCode, MachineError, TestFailure
)
from kola.harness.registry import Registry, Test
from kola.harness.runner import TestRunner
from kola.platform.base import Cluster, Machine, TestCluster

URL = "https://discovery.example.com/abc"


class FakeMachine(Machine):

    def __init__(self, name, config):
        self._id = name
        self.config = config
        self.destroyed = False

    @property
    def id(self):
        return self._id

    @property
    def ip(self):
        return "10.0.0.2"

    def ssh_session(self):
        raise NotImplementedError

    def destroy(self):
        self.destroyed = True


class FakeCluster(Cluster):

    def __init__(self, platform, fail_machine_at=None, discovery_error=None,
                 destroy_error=None):
        self.platform = platform
        self.fail_machine_at = fail_machine_at
        self.discovery_error = discovery_error
        self.destroy_error = destroy_error
        self.discovery_sizes = []
        self._machines = []
        self.destroy_calls = 0

    def new_machine(self, config):
        if self.fail_machine_at == len(self._machines):
            raise MachineError("qemu exited early")
        machine = FakeMachine(f"m{len(self._machines)}", config)
        self._machines.append(machine)
        return machine

    def get_discovery_url(self, size):
        if self.discovery_error is not None:
            raise self.discovery_error
        self.discovery_sizes.append(size)
        return URL

    def machines(self):
        return list(self._machines)

    def destroy(self):
        self.destroy_calls += 1
        for m in self._machines:
            m.destroy()
        if self.destroy_error is not None:
            raise self.destroy_error


class RecordingFactory:
    """Cluster factory that remembers every cluster it built."""

    def __init__(self, **cluster_kwargs):
        self.cluster_kwargs = cluster_kwargs
        self.clusters = []
        self.calls = []

    def __call__(self, platform, config=None, verbose_level=0):
        self.calls.append(platform)
        cluster = FakeCluster(platform, **self.cluster_kwargs)
        self.clusters.append(cluster)
        return cluster


class RunnerTestCase(unittest.TestCase):

    def setUp(self):
        self.registry = Registry()
        self.factory = RecordingFactory()
        self.seen = []

    def add_test(self, name, run=None, **kwargs):
        def record(cluster):
            self.seen.append((name, cluster))
        return self.registry.register(Test(name=name, run=run or record, **kwargs))

    def make_runner(self, platforms=('qemu',), factory=None):
        return TestRunner(self.registry, platforms=platforms,
                          cluster_factory=factory or self.factory, config={})

    def run_tests(self, runner, args):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = runner.run_tests(args)
        return code, out.getvalue(), err.getvalue()


class TestSuccessfulRuns(RunnerTestCase):

    def test_three_machine_cluster(self):
        self.add_test("coreos.etcd.discovery", cloud_config="$discovery=$name", cluster_size=3)

        code, out, err = self.run_tests(self.make_runner(), [])

        self.assertEqual(code, ErrorCode.SUCCESS)
        cluster = self.factory.clusters[0]
        self.assertEqual(cluster.discovery_sizes, [3])
        self.assertEqual([m.config for m in cluster.machines()],
                         [f"{URL}=instance0", f"{URL}=instance1", f"{URL}=instance2"])
        self.assertEqual(cluster.destroy_calls, 1)
        self.assertTrue(all(m.destroyed for m in cluster.machines()))
        self.assertIn("test coreos.etcd.discovery ran successfully on qemu", out)
        self.assertEqual(err.count("qemu instance up"), 3)
        self.assertIn("All 1 test(s) ran successfully!", err)

    def test_run_receives_test_cluster(self):
        self.add_test("a")
        self.run_tests(self.make_runner(), [])

        name, handle = self.seen[0]
        self.assertIsInstance(handle, TestCluster)
        self.assertEqual(handle.name, "a")
        self.assertIs(handle.cluster, self.factory.clusters[0])

    def test_pattern_selects_tests(self):
        self.add_test("coreos.basic.x")
        self.add_test("coreos.etcd.y")
        self.add_test("other.z")

        code, _, _ = self.run_tests(self.make_runner(), ["coreos.*"])

        self.assertEqual(code, ErrorCode.SUCCESS)
        self.assertEqual([name for name, _ in self.seen], ["coreos.basic.x", "coreos.etcd.y"])

    def test_no_match_succeeds(self):
        self.add_test("a")
        code, _, err = self.run_tests(self.make_runner(), ["nothing*"])
        self.assertEqual(code, ErrorCode.SUCCESS)
        self.assertEqual(self.factory.calls, [])
        self.assertIn("All 0 test(s) ran successfully!", err)

    def test_bad_pattern_matches_nothing(self):
        self.add_test("a")
        code, _, err = self.run_tests(self.make_runner(), ["[a"])
        self.assertEqual(code, ErrorCode.SUCCESS)
        self.assertEqual(self.factory.calls, [])
        self.assertIn("syntax error in pattern", err)

    def test_destroy_error_reported_not_fatal(self):
        factory = RecordingFactory(destroy_error=MachineError("instance stuck"))
        self.add_test("a")

        code, _, err = self.run_tests(self.make_runner(factory=factory), [])

        self.assertEqual(code, ErrorCode.SUCCESS)
        self.assertIn("cluster.destroy(): instance stuck", err)


class TestPlatformSelection(RunnerTestCase):

    def test_default_platforms_used_without_whitelist(self):
        self.add_test("a")
        self.run_tests(self.make_runner(platforms=['qemu', 'gce']), [])
        self.assertEqual(self.factory.calls, ['qemu', 'gce'])

    def test_whitelist_overrides_default(self):
        self.add_test("a", platforms=['gce'])
        self.run_tests(self.make_runner(platforms=['qemu', 'gce']), [])
        self.assertEqual(self.factory.calls, ['gce'])

    def test_default_platforms_from_config(self):
        self.add_test("a")
        runner = TestRunner(self.registry, cluster_factory=self.factory,
                            config={'platforms': 'p1, p2'})
        self.assertEqual(runner.platforms, ['p1', 'p2'])
        self.run_tests(runner, [])
        self.assertEqual(self.factory.calls, ['p1', 'p2'])

    def test_factory_receives_config(self):
        calls = []

        def factory(platform, config=None, verbose_level=0):
            calls.append((platform, config, verbose_level))
            return FakeCluster(platform)

        self.add_test("a")
        runner = TestRunner(self.registry, platforms=['qemu'], cluster_factory=factory,
                            config={'qemu': {'memory': 512}}, verbose_level=2)
        self.run_tests(runner, [])
        self.assertEqual(calls, [('qemu', {'qemu': {'memory': 512}}, 2)])


class TestFailures(RunnerTestCase):

    def test_usage_error(self):
        self.add_test("a")
        code, _, err = self.run_tests(self.make_runner(), ["a", "b"])
        self.assertEqual(code, ErrorCode.USAGE_ERROR)
        self.assertIn("Extra arguments specified", err)
        self.assertEqual(self.factory.calls, [])

    def test_failing_body_still_destroys(self):
        def fail(cluster):
            raise TestFailure("etcd did not converge")
        self.add_test("a", run=fail)

        code, _, err = self.run_tests(self.make_runner(), [])

        self.assertEqual(code, ErrorCode.TEST_FAILED)
        self.assertEqual(self.factory.clusters[0].destroy_calls, 1)
        self.assertIn("a failed on qemu: etcd did not converge", err)

    def test_plain_exception_in_body(self):
        def fail(cluster):
            raise ValueError("boom")
        self.add_test("a", run=fail)

        code, _, err = self.run_tests(self.make_runner(), [])

        self.assertEqual(code, ErrorCode.TEST_FAILED)
        self.assertIn("a failed on qemu: boom", err)
        self.assertEqual(self.factory.clusters[0].destroy_calls, 1)

    def test_fail_fast_across_tests(self):
        def fail(cluster):
            raise TestFailure("nope")
        self.add_test("a", run=fail)
        self.add_test("b")

        code, _, _ = self.run_tests(self.make_runner(), [])

        self.assertEqual(code, ErrorCode.TEST_FAILED)
        self.assertEqual(self.factory.calls, ['qemu'])
        self.assertEqual(self.seen, [])

    def test_fail_fast_across_platforms(self):
        def fail(cluster):
            raise TestFailure("nope")
        self.add_test("a", run=fail)

        self.run_tests(self.make_runner(platforms=['qemu', 'gce']), [])

        self.assertEqual(self.factory.calls, ['qemu'])

    def test_cluster_constructor_failure(self):
        def factory(platform, config=None, verbose_level=0):
            raise DiscoveryError("svc", "unreachable")
        self.add_test("a")

        code, _, err = self.run_tests(self.make_runner(factory=factory), [])

        self.assertEqual(code, ErrorCode.TEST_FAILED)
        self.assertIn("Cluster failed:", err)
        self.assertEqual(self.seen, [])

    def test_discovery_failure(self):
        factory = RecordingFactory(discovery_error=DiscoveryError("svc", "HTTP 500"))
        self.add_test("a")

        code, _, err = self.run_tests(self.make_runner(factory=factory), [])

        self.assertEqual(code, ErrorCode.TEST_FAILED)
        self.assertIn("Failed to create discovery endpoint", err)
        self.assertEqual(factory.clusters[0].destroy_calls, 1)
        self.assertEqual(self.seen, [])

    def test_machine_failure(self):
        factory = RecordingFactory(fail_machine_at=1)
        self.add_test("a", cluster_size=3)

        code, _, err = self.run_tests(self.make_runner(factory=factory), [])

        self.assertEqual(code, ErrorCode.TEST_FAILED)
        self.assertIn("Cluster failed starting machine: qemu exited early", err)
        cluster = factory.clusters[0]
        self.assertEqual(len(cluster.machines()), 1)
        self.assertEqual(cluster.destroy_calls, 1)
        self.assertTrue(cluster.machines()[0].destroyed)
        self.assertEqual(self.seen, [])


class TestNativeDeployment(RunnerTestCase):

    @patch('kola.harness.runner.scp_file')
    def test_kolet_copied_to_every_machine(self, mock_scp):
        self.add_test("a", cluster_size=2, native_funcs={"Check": lambda: None})

        code, _, _ = self.run_tests(self.make_runner(), [])

        self.assertEqual(code, ErrorCode.SUCCESS)
        machines = self.factory.clusters[0].machines()
        self.assertEqual([c.args for c in mock_scp.call_args_list],
                         [(machines[0], './kolet'), (machines[1], './kolet')])

    @patch('kola.harness.runner.scp_file')
    def test_no_copy_without_native_funcs(self, mock_scp):
        self.add_test("a", cluster_size=2)
        self.run_tests(self.make_runner(), [])
        mock_scp.assert_not_called()

    @patch('kola.harness.runner.scp_file')
    def test_kolet_path_from_config(self, mock_scp):
        self.add_test("a", native_funcs={"Check": lambda: None})
        runner = TestRunner(self.registry, platforms=['qemu'], cluster_factory=self.factory,
                            config={'native': {'kolet': '/opt/kola/kolet'}})
        self.run_tests(runner, [])
        self.assertEqual(mock_scp.call_args.args[1], '/opt/kola/kolet')

    @patch('kola.harness.runner.scp_file')
    def test_copy_failure(self, mock_scp):
        mock_scp.side_effect = DeploymentError("opening ./kolet: no such file")
        self.add_test("a", native_funcs={"Check": lambda: None})

        code, _, err = self.run_tests(self.make_runner(), [])

        self.assertEqual(code, ErrorCode.TEST_FAILED)
        self.assertIn("dropping kolet binary: opening ./kolet: no such file", err)
        self.assertEqual(self.factory.clusters[0].destroy_calls, 1)
        self.assertEqual(self.seen, [])


if __name__ == '__main__':
    unittest.main()

#!/usr/bin/env -S python3 -B -u
"""Tests for verbosity filtering, context formatting and masking."""

import io
import unittest

from kola.core.structured_logging import StructuredLogger, get_logger, mask_sensitive


def capture(logger):
    buf = io.StringIO()
    logger.logger.handlers[0].setStream(buf)
    return buf


class TestStructuredLogger(unittest.TestCase):

    def test_quiet_shows_errors_only(self):
        logger = StructuredLogger('kola.test.quiet', 0)
        buf = capture(logger)
        logger.info("instance up")
        logger.warning("slow boot")
        logger.error("dnsmasq exited", pid=42)
        self.assertEqual(buf.getvalue(), "dnsmasq exited\n")

    def test_info_level(self):
        logger = StructuredLogger('kola.test.info', 1)
        buf = capture(logger)
        logger.info("Machine instance0 up", ip="10.0.0.2")
        logger.debug("hidden")
        self.assertEqual(buf.getvalue(), "Machine instance0 up\n")

    def test_debug_adds_context(self):
        logger = StructuredLogger('kola.test.debug', 2)
        buf = capture(logger)
        logger.debug("Requesting discovery token", url="https://discovery.etcd.io/new?size=3")
        self.assertIn("url=https://discovery.etcd.io/new?size=3", buf.getvalue())
        self.assertIn("[kola.test.debug] DEBUG:", buf.getvalue())

    def test_command_line_quoted(self):
        logger = StructuredLogger('kola.test.cmd', 2)
        buf = capture(logger)
        logger.log_command_execution(['ssh', 'core@10.0.0.2', './kolet run a b'], host='10.0.0.2')
        self.assertIn("[10.0.0.2] Executing: ssh core@10.0.0.2 './kolet run a b'", buf.getvalue())

    def test_timer(self):
        logger = StructuredLogger('kola.test.timer', 2)
        buf = capture(logger)
        with logger.timer("coreos.etcd.discovery on qemu"):
            pass
        out = buf.getvalue()
        self.assertIn("Starting coreos.etcd.discovery on qemu", out)
        self.assertIn("elapsed=", out)

    def test_get_logger_cached_per_level(self):
        self.assertIs(get_logger('kola.test.cache', 1), get_logger('kola.test.cache', 1))
        self.assertIsNot(get_logger('kola.test.cache', 1), get_logger('kola.test.cache', 2))


class TestMasking(unittest.TestCase):

    def test_mask_sensitive(self):
        masked = mask_sensitive({
            'ip': '10.0.0.2',
            'discovery_token': 'abc',
            'gce': {'user_data': '#cloud-config', 'zone': 'us-central1-a'},
        })
        self.assertEqual(masked, {
            'ip': '10.0.0.2',
            'discovery_token': '***MASKED***',
            'gce': {'user_data': '***MASKED***', 'zone': 'us-central1-a'},
        })


if __name__ == '__main__':
    unittest.main()

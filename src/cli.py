#!/usr/bin/env -S python3 -B -u
"""
kola command line.

Usage:
    kola [-v...] [--config FILE] run [glob pattern]
    kola [-v...] list

Exit codes:
    0 - every selected test ran successfully
    1 - a cluster run failed
    2 - usage error
"""

import argparse
import sys
from typing import List, Optional

from kola.core.config_loader import load_kola_config
from kola.core.exceptions import ConfigurationError, ErrorCode, ErrorHandler, KolaError
from kola.core.structured_logging import setup_logging
from kola.harness import registry
from kola.harness.runner import TestRunner


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='kola',
        description="Run cluster integration tests on local or cloud platforms",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run                        # run every registered test
  %(prog)s run 'coreos.etcd.*'        # run tests matching a glob
  %(prog)s -vv run coreos.basic.NetworkListeners
  %(prog)s list                       # show registered tests

Configuration is read from $KOLA_CONF, ~/kola.yaml or ./kola.yaml.
        """
    )
    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=None,
        help='Increase verbosity: -v (info), -vv (debug), -vvv (trace)'
    )
    parser.add_argument(
        '-c', '--config',
        help='Configuration file (overrides KOLA_CONF)'
    )

    subparsers = parser.add_subparsers(dest='command', metavar='command')
    run_parser = subparsers.add_parser('run', help='Run tests matching a glob pattern')
    run_parser.add_argument('pattern', nargs='*', help="glob pattern (default '*')")
    subparsers.add_parser('list', help='List registered tests')
    return parser


def load_tests() -> registry.Registry:
    """Import the built-in tests into the default registry."""
    import kola.checks  # noqa: F401
    return registry.tests


def config_verbosity(config: dict, config_file: Optional[str] = None) -> int:
    """The verbose_level setting, used when no -v flag is given."""
    value = config.get('verbose_level', 0)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"verbose_level must be an integer, got {value!r}",
                                 config_file=config_file) from None


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_usage(sys.stderr)
        return ErrorCode.USAGE_ERROR

    verbose_level = args.verbose or 0
    try:
        config = load_kola_config(args.config)
        if args.verbose is None:
            verbose_level = config_verbosity(config, args.config)
        setup_logging(verbose_level)
        tests = load_tests()
    except KolaError as e:
        return ErrorHandler.handle_error(e, verbose_level)

    if args.command == 'list':
        for name in tests.names():
            test = tests.get(name)
            platforms = ','.join(test.platforms) if test.platforms is not None else 'all'
            print(f"{name}\t{test.cluster_size}\t{platforms}")
        return ErrorCode.SUCCESS

    runner = TestRunner(tests, config=config, verbose_level=verbose_level)
    return runner.run_tests(args.pattern)


if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env -S python3 -B -u
"""
kolet - native function runner deployed to test machines.

Usage:
    kolet run <test name> <function name>

Looks the test up in the built-in registry and calls the named native
function on the machine it runs on. Exit status 0 on success, 1 on failure.
"""

import argparse
import sys
from typing import List, Optional

from kola.core.exceptions import KolaError


def run_native(test_name: str, func_name: str) -> None:
    from kola.cli import load_tests

    test = load_tests().get(test_name)
    funcs = test.native_funcs or {}
    if func_name not in funcs:
        raise KolaError(f"test {test_name} has no native function {func_name}",
                        suggestion=f"Available: {', '.join(sorted(funcs)) or 'none'}")
    funcs[func_name]()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog='kolet', description="Run kola native test functions")
    subparsers = parser.add_subparsers(dest='command', required=True)
    run_parser = subparsers.add_parser('run', help='Run a native function')
    run_parser.add_argument('test')
    run_parser.add_argument('func')
    args = parser.parse_args(argv)

    try:
        run_native(args.test, args.func)
    except KolaError as e:
        print(f"kolet: {e.message}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"kolet: {args.func} failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env -S python3 -B -u
"""Test registry.

Maps test names to Test definitions. Registration is append-only and a name
can only be registered once; selection for a run uses glob patterns matched
against every registered name.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from kola.core.exceptions import BadPatternError, DuplicateTestError, TestNotFoundError


@dataclass(frozen=True)
class Test:
    """A registered cluster test.

    Attributes:
        name: Unique test name, e.g. ``coreos.etcd.discovery``
        run: Called with a live TestCluster, raises on failure
        native_funcs: Functions the kolet helper can run on machines
        cloud_config: Bootstrap config template with $discovery and $name tokens
        cluster_size: Number of machines to create
        platforms: Whitelist of platform names, None means the default set
    """

    __test__ = False

    name: str
    run: Callable
    native_funcs: Optional[Mapping[str, Callable[[], None]]] = None
    cloud_config: str = ""
    cluster_size: int = 1
    platforms: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        if self.native_funcs is not None:
            object.__setattr__(self, 'native_funcs', MappingProxyType(dict(self.native_funcs)))
        if self.platforms is not None:
            object.__setattr__(self, 'platforms', tuple(self.platforms))


def _class_char(pattern: str, i: int) -> Tuple[str, int]:
    if pattern[i] == '\\':
        i += 1
        if i >= len(pattern):
            raise BadPatternError(pattern)
    return pattern[i], i + 1


def _translate_class(pattern: str, i: int) -> Tuple[str, int]:
    """Translate the character class starting after '[' at i."""
    negate = i < len(pattern) and pattern[i] in '!^'
    if negate:
        i += 1
    items = []
    while True:
        if i >= len(pattern):
            raise BadPatternError(pattern)
        # a ']' right after the opening bracket is literal
        if pattern[i] == ']' and items:
            i += 1
            break
        lo, i = _class_char(pattern, i)
        if i + 1 < len(pattern) and pattern[i] == '-' and pattern[i + 1] != ']':
            hi, i = _class_char(pattern, i + 1)
            if lo > hi:
                raise BadPatternError(pattern, reason=f"invalid range {lo}-{hi}")
            items.append(f"{re.escape(lo)}-{re.escape(hi)}")
        else:
            items.append(re.escape(lo))
    return ('[^' if negate else '[') + ''.join(items) + ']', i


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern:
    """Compile a test name glob into a regular expression.

    ``*`` and ``?`` never match ``/``. Character classes accept ``^`` or
    ``!`` for negation and ranges such as ``0-9``. A backslash escapes the
    next character, inside or outside a class.

    Raises:
        BadPatternError: unterminated class, bad range or trailing backslash
    """
    out = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == '*':
            out.append('[^/]*')
            i += 1
        elif ch == '?':
            out.append('[^/]')
            i += 1
        elif ch == '[':
            cls, i = _translate_class(pattern, i + 1)
            out.append(cls)
        else:
            literal, i = _class_char(pattern, i)
            out.append(re.escape(literal))
    return re.compile(''.join(out), re.DOTALL)


def check_pattern(pattern: str) -> None:
    """Raise BadPatternError if pattern is not a valid glob."""
    compile_pattern(pattern)


def match_name(pattern: str, name: str) -> bool:
    """Case-sensitive whole-name glob match supporting *, ?, [...] and escapes."""
    return compile_pattern(pattern).fullmatch(name) is not None


class Registry:
    """Name to Test mapping, one entry per name."""

    def __init__(self):
        self._tests: Dict[str, Test] = {}

    def register(self, test: Test) -> Test:
        """Add test to the registry.

        Raises:
            DuplicateTestError: A test with the same name already exists
        """
        if test.name in self._tests:
            raise DuplicateTestError(test.name)
        self._tests[test.name] = test
        return test

    def get(self, name: str) -> Test:
        try:
            return self._tests[name]
        except KeyError:
            raise TestNotFoundError(name, available=list(self._tests)) from None

    def names(self) -> List[str]:
        return sorted(self._tests)

    def match(self, pattern: str) -> List[Test]:
        """Return tests whose name matches pattern, sorted by name.

        Raises:
            BadPatternError: pattern is malformed
        """
        regex = compile_pattern(pattern)
        return [self._tests[name] for name in self.names()
                if regex.fullmatch(name) is not None]

    def __contains__(self, name: str) -> bool:
        return name in self._tests

    def __iter__(self) -> Iterator[Test]:
        return iter([self._tests[name] for name in self.names()])

    def __len__(self) -> int:
        return len(self._tests)


# process default registry, populated by kola.checks
tests = Registry()


def register(test: Test) -> Test:
    """Register test with the default registry."""
    return tests.register(test)

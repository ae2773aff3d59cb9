#!/usr/bin/env -S python3 -B -u
"""
kola - Cluster Integration-Test Harness

Provisions ephemeral clusters (local QEMU guests in an isolated network
namespace, or GCE instances) and runs registered tests against them.
"""

__version__ = '1.0.0'
__license__ = 'MIT'

# Package metadata
__all__ = [
    'core',
    'harness',
    'platform',
    'checks',
]

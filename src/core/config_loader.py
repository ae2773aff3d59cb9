#!/usr/bin/env -S python3 -B -u
"""
Configuration loader for kola.

Provides centralized configuration loading for the runner and the platform
backends.
"""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional

from kola.core.exceptions import ConfigurationError


DEFAULT_PLATFORMS = ['qemu', 'gce']


def _config_files() -> List[Path]:
    """Configuration file locations in order of precedence."""
    config_files = []

    env_config = os.environ.get('KOLA_CONF')
    if env_config:
        config_files.append(Path(env_config))

    config_files.extend([
        Path.home() / 'kola.yaml',
        Path('./kola.yaml')
    ])
    return config_files


def load_kola_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """
    Load kola configuration with proper precedence.

    Configuration file location precedence:
    1. Explicit config_file argument (if given)
    2. Environment variable KOLA_CONF (if set)
    3. ~/kola.yaml (user's home directory)
    4. ./kola.yaml (current directory)

    Only the first existing file is read.

    Returns:
        Dictionary containing configuration values

    Raises:
        ConfigurationError: If the selected file is not valid YAML
    """
    defaults = {
        'verbose_level': 0,
        'platforms': list(DEFAULT_PLATFORMS),
    }

    config_files = [Path(config_file)] if config_file else _config_files()

    config = defaults.copy()

    for path in config_files:
        if not path.exists():
            continue
        try:
            with open(path, 'r') as f:
                file_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read configuration: {e}",
                                     config_file=str(path), cause=e)
        if not isinstance(file_config, dict):
            raise ConfigurationError("Configuration must be a mapping",
                                     config_file=str(path))
        config.update(file_config)
        break

    return config


def _section(config: Optional[Dict[str, Any]], name: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
    """Merge one configuration section over its defaults."""
    if config is None:
        config = load_kola_config()

    result = copy.deepcopy(defaults)
    section = config.get(name) or {}
    for key, value in section.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key].update(value)
        else:
            result[key] = value
    return result


def get_platforms(config: Optional[Dict[str, Any]] = None) -> List[str]:
    """
    Get the default platform set used for tests without a whitelist.

    Returns:
        List of platform names
    """
    if config is None:
        config = load_kola_config()

    platforms = config.get('platforms') or DEFAULT_PLATFORMS
    if isinstance(platforms, str):
        platforms = [p.strip() for p in platforms.split(',') if p.strip()]
    return list(platforms)


def get_qemu_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Get QEMU backend configuration.

    Returns:
        Dictionary with qemu configuration including:
        - binary: QEMU system emulator
        - image: Disk image booted by every machine
        - memory: Guest memory in MiB
        - bridge: Bridge inside the namespace taps are attached to
        - subnet_prefix: First three octets of the bridge subnet
    """
    defaults = {
        'binary': 'qemu-system-x86_64',
        'image': 'coreos_production_qemu_image.img',
        'memory': 1024,
        'bridge': 'br0',
        'subnet_prefix': '10.0.0',
        'extra_args': [],
    }
    return _section(config, 'qemu', defaults)


def get_gce_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Get GCE backend configuration.

    Returns:
        Dictionary with gce configuration
    """
    defaults = {
        'gcloud': 'gcloud',
        'project': None,
        'zone': 'us-central1-a',
        'machine_type': 'n1-standard-1',
        'image': None,
        'image_project': None,
        'name_prefix': 'kola',
    }
    return _section(config, 'gce', defaults)


def get_ssh_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Get SSH configuration settings for machine access.

    Returns:
        Dictionary with SSH configuration including:
        - user: Login user on test machines
        - timeout: Seconds before a remote command is abandoned
        - options: Dictionary of ssh -o options
    """
    defaults = {
        'user': 'core',
        'timeout': 300,
        'options': {
            'BatchMode': 'yes',
            'ConnectTimeout': '10',
            'StrictHostKeyChecking': 'no',
            'UserKnownHostsFile': '/dev/null',
            'LogLevel': 'ERROR',
        }
    }
    return _section(config, 'ssh', defaults)


def get_native_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Get native helper configuration.

    Returns:
        Dictionary with the local kolet binary path
    """
    defaults = {
        'kolet': './kolet',
    }
    return _section(config, 'native', defaults)


def get_discovery_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get discovery service configuration."""
    defaults = {
        'service': 'https://discovery.etcd.io/new',
        'timeout': 30,
    }
    return _section(config, 'discovery', defaults)


def get_provisioning_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get provisioning timeouts (seconds)."""
    defaults = {
        'timeout': 600,
        'boot_timeout': 300,
    }
    return _section(config, 'provisioning', defaults)

#!/usr/bin/env -S python3 -B -u
"""
Setup script for kola package - Cluster Integration-Test Harness
"""

from setuptools import setup
import os

# Read the README file for long description
def read_readme():
    """Read README.md for package long description."""
    readme_path = os.path.join(os.path.dirname(__file__), 'README.md')
    if os.path.exists(readme_path):
        with open(readme_path, 'r', encoding='utf-8') as f:
            return f.read()
    return "kola - integration tests for distributed cluster software on local and cloud machines"

# Read requirements from requirements.txt
def read_requirements():
    """Read requirements from requirements.txt file."""
    requirements_path = os.path.join(os.path.dirname(__file__), 'requirements.txt')
    if os.path.exists(requirements_path):
        with open(requirements_path, 'r', encoding='utf-8') as f:
            return [line.strip() for line in f if line.strip() and not line.startswith('#')]
    return ['PyYAML>=5.4', 'psutil>=5.8']

# Define package metadata
setup(
    name='kola',
    version='1.0.0',
    description='Cluster integration-test harness with isolated local networking',
    long_description=read_readme(),
    long_description_content_type='text/markdown',
    author='kola developers',
    author_email='',
    license='MIT',

    # Package structure - source tree lives in src/, imported as kola
    packages=[
        'kola',
        'kola.core',
        'kola.harness',
        'kola.platform',
        'kola.platform.local',
        'kola.checks',
    ],
    package_dir={'kola': 'src'},

    # os.setns / os.CLONE_NEWNET
    python_requires='>=3.12',

    # Dependencies from requirements.txt
    install_requires=read_requirements(),

    # Optional dependencies
    extras_require={
        'dev': [
            'pytest>=6.0.0',
            'pytest-cov>=2.0.0',
            'flake8>=3.8.0',
        ],
    },

    # Entry points for command-line scripts
    entry_points={
        'console_scripts': [
            'kola=kola.cli:main',
            'kolet=kola.kolet:main',
        ],
    },

    # Classification
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Operating System :: POSIX :: Linux',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.12',
        'Topic :: Software Development :: Testing',
        'Topic :: System :: Clustering',
    ],

    # Keywords
    keywords='integration-testing cluster qemu gce namespace',
)

"""Test orchestration: registry, templating, deployment and the runner."""

"""Shared error, logging and configuration layer."""

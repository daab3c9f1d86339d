"""Shared helpers used across subsync packages."""

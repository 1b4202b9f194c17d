"""Privileged helper service for the desktop log viewer."""

__version__ = "0.1.0"

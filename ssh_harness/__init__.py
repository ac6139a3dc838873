"""Minimal SSH request/response harness built on paramiko."""

__version__ = "0.1.0"

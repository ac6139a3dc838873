"""Core utilities for ssh_harness.
This package provides shared helpers (logging, config) used by the client, the server and the CLI.
"""
from .logger import get_logger  # noqa: F401

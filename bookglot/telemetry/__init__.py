"""Telemetry and observability helpers.

This package emits structured run events for pipeline auditing.
"""

from .logger import RunLogger, configure_file_logging

__all__ = ["RunLogger", "configure_file_logging"]

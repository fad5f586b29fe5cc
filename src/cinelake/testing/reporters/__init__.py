"""Test reporters for output formatting."""

from .console import ConsoleReporter
from .json import JSONReporter

__all__ = ["ConsoleReporter", "JSONReporter"]

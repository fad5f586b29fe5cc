"""Test executors for different test types."""

from .base import BaseTestExecutor
from .generic import GenericTestExecutor, generic_test_sql
from .quality import QualityTestExecutor

__all__ = [
    "BaseTestExecutor",
    "GenericTestExecutor",
    "QualityTestExecutor",
    "generic_test_sql",
]

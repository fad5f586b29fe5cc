"""cinelake Testing Framework.

Data tests for built models:
- Generic column tests from pipeline YAML (not_null, unique, positive,
  accepted_values, relationships, expression)
- Custom table tests from pipeline YAML (SQL returning a failure count)
- Singular tests from tests/*.sql (pass when no rows come back)
"""

from .models import (
    DiscoveredTest,
    TestOutput,
    TestSeverity,
    TestStatus,
    TestSuiteResult,
)
from .runner import TestRunner

__all__ = [
    "DiscoveredTest",
    "TestOutput",
    "TestSeverity",
    "TestStatus",
    "TestSuiteResult",
    "TestRunner",
]

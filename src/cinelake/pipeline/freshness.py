"""⏱️ Source Freshness - Is the raw data recent enough?

For each source table with a loaded_at_field and a freshness SLA:

    age = now - MAX(loaded_at_field)
    age > error_after  → error
    age > warn_after   → warn
    otherwise          → pass

Table settings win over the source-level defaults.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from cinelake.workspace.manager import Workspace

FreshnessStatus = Literal["pass", "warn", "error"]


@dataclass
class FreshnessResult:
    """Freshness of one source table."""

    source: str
    table: str
    status: FreshnessStatus
    max_loaded_at: datetime | None = None
    age: timedelta | None = None
    warn_after: timedelta | None = None
    error_after: timedelta | None = None
    error: str | None = None

    @property
    def relation(self) -> str:
        return f"{self.source}.{self.table}"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "source": self.source,
            "table": self.table,
            "status": self.status,
            "max_loaded_at": self.max_loaded_at.isoformat() if self.max_loaded_at else None,
            "age_seconds": self.age.total_seconds() if self.age is not None else None,
            "warn_after_seconds": self.warn_after.total_seconds() if self.warn_after else None,
            "error_after_seconds": self.error_after.total_seconds() if self.error_after else None,
            "error": self.error,
        }


def _as_naive_utc(value: datetime | date) -> datetime:
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def classify_age(
    age: timedelta,
    warn_after: timedelta,
    error_after: timedelta,
) -> FreshnessStatus:
    """Map an age onto pass/warn/error."""
    if age > error_after:
        return "error"
    if age > warn_after:
        return "warn"
    return "pass"


def check_freshness(
    workspace: "Workspace",
    now: datetime | None = None,
) -> list[FreshnessResult]:
    """Check every source table that declares a freshness SLA.

    Args:
        workspace: Workspace whose sources are checked
        now: Reference time (default: current UTC time)

    Returns:
        One FreshnessResult per checked table
    """
    now = _as_naive_utc(now or datetime.now(timezone.utc))
    engine = workspace.get_engine()
    results = []

    for source in workspace.config.sources:
        for table in source.tables:
            loaded_at_field = table.loaded_at_field or source.loaded_at_field
            freshness = table.freshness or source.freshness
            if not loaded_at_field or freshness is None:
                continue

            warn_after = freshness.get_warn_timedelta()
            error_after = freshness.get_error_timedelta()
            relation = f"{source.name}.{table.name}"

            try:
                max_loaded_at = engine.scalar(
                    f"SELECT MAX({loaded_at_field}) FROM {relation}"
                )
            except Exception as e:
                results.append(
                    FreshnessResult(
                        source=source.name,
                        table=table.name,
                        status="error",
                        warn_after=warn_after,
                        error_after=error_after,
                        error=str(e),
                    )
                )
                continue

            if max_loaded_at is None:
                results.append(
                    FreshnessResult(
                        source=source.name,
                        table=table.name,
                        status="error",
                        warn_after=warn_after,
                        error_after=error_after,
                        error=f"{relation} has no rows",
                    )
                )
                continue

            max_loaded_at = _as_naive_utc(max_loaded_at)
            age = now - max_loaded_at
            results.append(
                FreshnessResult(
                    source=source.name,
                    table=table.name,
                    status=classify_age(age, warn_after, error_after),
                    max_loaded_at=max_loaded_at,
                    age=age,
                    warn_after=warn_after,
                    error_after=error_after,
                )
            )

    return results

"""
Report Value Types
Granularity, outcome categories, filters and immutable report results
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple


class Granularity(str, Enum):
    """
    Bucket width for time-series reports.

    Each granularity knows how to floor a timestamp to its bucket start,
    step to the next bucket and render a slot label.
    """
    hour = "hour"
    day = "day"
    month = "month"

    def floor(self, value: datetime) -> datetime:
        """Return the start of the bucket containing value."""
        if self is Granularity.hour:
            return value.replace(minute=0, second=0, microsecond=0)
        if self is Granularity.day:
            return value.replace(hour=0, minute=0, second=0, microsecond=0)
        return value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    def advance(self, bucket_start: datetime, steps: int = 1) -> datetime:
        """Return the bucket start `steps` buckets after bucket_start (negative steps go back)."""
        if self is Granularity.hour:
            return bucket_start + timedelta(hours=steps)
        if self is Granularity.day:
            return bucket_start + timedelta(days=steps)
        month_index = bucket_start.year * 12 + (bucket_start.month - 1) + steps
        return bucket_start.replace(year=month_index // 12, month=month_index % 12 + 1)

    def label(self, bucket_start: datetime) -> str:
        """Slot label shown on charts."""
        if self is Granularity.hour:
            return bucket_start.strftime("%H:00")
        if self is Granularity.day:
            return bucket_start.strftime("%m/%d")
        return bucket_start.strftime("%b %Y")

    @property
    def time_format(self) -> str:
        """Display format hint returned with every report."""
        return {
            Granularity.hour: "HH:00",
            Granularity.day: "yyyy-MM-dd",
            Granularity.month: "yyyy-MM",
        }[self]

    def buckets(self, start: datetime, end: datetime) -> Iterable[datetime]:
        """Yield every bucket start from floor(start) to floor(end), inclusive."""
        current = self.floor(start)
        last = self.floor(end)
        while current <= last:
            yield current
            current = self.advance(current)


class OutcomeCategory(int, Enum):
    """
    Coarse classification of a status code (code // 100).

    3xx, out-of-range and missing codes all count as `other`.
    """
    other = 0
    success = 2
    client_error = 4
    server_error = 5

    @classmethod
    def from_status_code(cls, status_code: Optional[Any]) -> "OutcomeCategory":
        try:
            family = int(status_code) // 100
        except (TypeError, ValueError):
            return cls.other
        if family == 2:
            return cls.success
        if family == 4:
            return cls.client_error
        if family == 5:
            return cls.server_error
        return cls.other


def empty_category_counts() -> Dict[OutcomeCategory, int]:
    """Zero count for every category, in a stable order."""
    return {category: 0 for category in OutcomeCategory}


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class ReportFilter:
    """
    Optional equality predicates on outcome records.

    Blank values are treated as absent, so ReportFilter(path="  ") is empty.
    """
    path: Optional[str] = None
    downstream_host: Optional[str] = None
    client_ip: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "path", _clean(self.path))
        object.__setattr__(self, "downstream_host", _clean(self.downstream_host))
        object.__setattr__(self, "client_ip", _clean(self.client_ip))

    def predicates(self) -> Dict[str, str]:
        """Active predicates keyed by record column name."""
        return {
            name: value
            for name, value in (
                ("path", self.path),
                ("downstream_host", self.downstream_host),
                ("client_ip", self.client_ip),
            )
            if value is not None
        }

    def is_empty(self) -> bool:
        return not self.predicates()

    def normalized_key(self) -> str:
        """
        Canonical string form used in cache keys.

        Returns:
            "" for an empty filter, otherwise sorted "field:value" parts joined by "_"
        """
        return "_".join(f"{name}:{value}" for name, value in sorted(self.predicates().items()))


@dataclass(frozen=True)
class TimeSlot:
    """Per-category counts for one bucket."""
    bucket_start: datetime
    label: str
    success: int = 0
    client_error: int = 0
    server_error: int = 0
    other: int = 0

    @property
    def total(self) -> int:
        return self.success + self.client_error + self.server_error + self.other

    @classmethod
    def from_counts(
        cls,
        bucket_start: datetime,
        granularity: Granularity,
        counts: Dict[OutcomeCategory, int],
    ) -> "TimeSlot":
        return cls(
            bucket_start=bucket_start,
            label=granularity.label(bucket_start),
            success=int(counts.get(OutcomeCategory.success, 0)),
            client_error=int(counts.get(OutcomeCategory.client_error, 0)),
            server_error=int(counts.get(OutcomeCategory.server_error, 0)),
            other=int(counts.get(OutcomeCategory.other, 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bucket_start": self.bucket_start.isoformat(),
            "label": self.label,
            "success": self.success,
            "client_error": self.client_error,
            "server_error": self.server_error,
            "other": self.other,
            "total": self.total,
        }


@dataclass(frozen=True)
class ReportResult:
    """
    Immutable report. Totals are always derived from the slots, so
    total_requests == sum of category subtotals == sum of slot totals.
    """
    time_slots: Tuple[TimeSlot, ...]
    time_format: str
    total_requests: int
    success_requests: int
    client_error_requests: int
    server_error_requests: int
    other_requests: int
    source: str = field(default="raw", compare=False)

    @classmethod
    def from_slots(cls, slots: Iterable[TimeSlot], granularity: Granularity, source: str) -> "ReportResult":
        slots = tuple(slots)
        success = sum(s.success for s in slots)
        client_error = sum(s.client_error for s in slots)
        server_error = sum(s.server_error for s in slots)
        other = sum(s.other for s in slots)
        return cls(
            time_slots=slots,
            time_format=granularity.time_format,
            total_requests=success + client_error + server_error + other,
            success_requests=success,
            client_error_requests=client_error,
            server_error_requests=server_error,
            other_requests=other,
            source=source,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time_format": self.time_format,
            "total_requests": self.total_requests,
            "success_requests": self.success_requests,
            "client_error_requests": self.client_error_requests,
            "server_error_requests": self.server_error_requests,
            "other_requests": self.other_requests,
            "source": self.source,
            "time_slots": [slot.to_dict() for slot in self.time_slots],
        }

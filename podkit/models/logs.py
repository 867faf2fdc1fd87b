"""Log entries and the pod records produced by discovery."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


@dataclass(frozen=True)
class LogEntry:
    """A single timestamped log line.

    ``time`` is always timezone-aware. When the source line carried no
    usable timestamp it holds the wall-clock time the line was read and
    ``text`` holds the raw line.

    ``nanos`` carries the nanoseconds below ``time``'s microsecond
    resolution (0-999), so lines within the same microsecond still sort
    in timestamp order.
    """

    time: datetime
    text: str
    pod: str = ""
    nanos: int = 0

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.time, self.nanos)


class PodPhase(StrEnum):
    """Kubernetes pod lifecycle phase."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class PodDescriptor:
    """The subset of a pod object podkit needs to track and target it."""

    uid: str
    name: str
    namespace: str
    phase: str = PodPhase.UNKNOWN
    start_time: datetime | None = None
    resource_version: str = ""
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def pending(self) -> bool:
        """True while the pod has not been scheduled and started."""
        return self.phase == PodPhase.PENDING


@dataclass(frozen=True)
class PodList:
    """Result of a list call: the matching pods plus the list resource version."""

    items: list[PodDescriptor]
    resource_version: str = ""


class PodEventType(StrEnum):
    """Watch event type."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class PodEvent:
    """One watch notification.

    ``pod`` is None for EXPIRED events, which tell the watcher its
    resource version is too old to resume from.
    """

    type: PodEventType
    pod: PodDescriptor | None = None
    resource_version: str = ""

    @property
    def is_upsert(self) -> bool:
        return self.type in (PodEventType.ADDED, PodEventType.MODIFIED)

"""
Reporte de una ejecución: estado por recurso y eventos por property.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class ResourceStatus(str, Enum):
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    FAILED = "failed"
    SKIPPED = "skipped"  # una dependencia falló u omitida
    FILTERED = "filtered"  # excluido por tags


class EventStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    NOOP = "noop"
    REFRESH = "refresh"
    ROLLBACK = "rollback"


@dataclass
class Event:
    """Resultado de aplicar (o no) una property."""
    resource: str
    status: EventStatus
    message: str
    property: Optional[str] = None
    name: Optional[str] = None  # file_changed, triggered, refreshed...
    previous: Optional[str] = None
    desired: Optional[str] = None


@dataclass
class ResourceReport:
    ref: str
    status: ResourceStatus = ResourceStatus.UNCHANGED
    events: List[Event] = field(default_factory=list)
    skipped_because: Optional[str] = None

    @property
    def failures(self) -> List[Event]:
        return [e for e in self.events if e.status == EventStatus.FAILURE]

    @property
    def changes(self) -> List[Event]:
        return [e for e in self.events if e.status == EventStatus.SUCCESS]

    @property
    def refreshed(self) -> bool:
        return any(e.status == EventStatus.REFRESH for e in self.events)


@dataclass
class RunReport:
    host: Optional[str] = None
    started: float = field(default_factory=time.time)
    finished: Optional[float] = None
    resources: Dict[str, ResourceReport] = field(default_factory=dict)
    rollback: List[Event] = field(default_factory=list)
    error: Optional[str] = None

    def add(self, ref: str) -> ResourceReport:
        report = ResourceReport(ref=ref)
        self.resources[ref] = report
        return report

    def finish(self) -> None:
        self.finished = time.time()

    @property
    def duration(self) -> Optional[float]:
        if self.finished is None:
            return None
        return self.finished - self.started

    def with_status(self, status: ResourceStatus) -> List[ResourceReport]:
        return [r for r in self.resources.values() if r.status == status]

    @property
    def events(self) -> List[Event]:
        out: List[Event] = []
        for report in self.resources.values():
            out.extend(report.events)
        return out

    def metrics(self) -> Dict[str, int]:
        """Conteo por estado de recurso y por estado de evento."""
        counts: Dict[str, int] = {s.value: 0 for s in ResourceStatus}
        for report in self.resources.values():
            counts[report.status.value] += 1
        counts["total"] = len(self.resources)
        for status in EventStatus:
            counts[f"events_{status.value}"] = 0
        for event in self.events + self.rollback:
            counts[f"events_{event.status.value}"] += 1
        return counts

"""
Streaming aggregation of per-item pipeline outcomes.

One DatasetStatistics instance lives for one pipeline run: reset() at start,
record() once per item outcome, get_report() once at the end. Only derived
scalars are kept, never the records themselves. Updates go through a single
lock so a concurrent caller cannot race the counters.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..metadata.integrity import IntegrityCheck, IntegrityStatus
from ..metadata.record import MetadataRecord, Origin


class ItemState(Enum):
    ACCEPTED = "accepted"
    SKIPPED = "skipped"
    ERRORED = "errored"


class SkipReason(str, Enum):
    NO_METADATA = "no_metadata"
    FILTERED = "filtered"


@dataclass
class ItemOutcome:
    """Terminal result for one content item."""
    item: str
    state: ItemState
    size: int = 0
    record: Optional[MetadataRecord] = None
    reason: Optional[str] = None
    message: str = ""
    clause: Optional[str] = None
    integrity: Optional[IntegrityCheck] = None
    integrity_flagged: bool = False
    schema_violation: bool = False


def _bump(counts: Dict[str, int], key: Optional[str]) -> None:
    if key:
        counts[key] = counts.get(key, 0) + 1


@dataclass
class DatasetStatistics:
    """Aggregate counters for one pipeline run."""
    total_files: int = 0
    processed_files: int = 0
    skipped_files: int = 0
    error_files: int = 0
    origin_counts: Dict[str, int] = field(default_factory=dict)
    author_counts: Dict[str, int] = field(default_factory=dict)
    license_counts: Dict[str, int] = field(default_factory=dict)
    toolchain_counts: Dict[str, int] = field(default_factory=dict)
    size_min: Optional[int] = None
    size_max: int = 0
    size_total: int = 0
    errors: List[Tuple[str, str]] = field(default_factory=list)
    skip_reasons: Dict[str, int] = field(default_factory=dict)
    integrity_flagged: List[str] = field(default_factory=list)
    schema_violations: int = 0
    integrity_failures: int = 0

    def __post_init__(self):
        self._lock = threading.Lock()
        if not self.origin_counts:
            self.origin_counts = {o.value: 0 for o in Origin}

    def reset(self) -> None:
        """Clear all counters; called at the start of every run."""
        with self._lock:
            self.total_files = 0
            self.processed_files = 0
            self.skipped_files = 0
            self.error_files = 0
            self.origin_counts = {o.value: 0 for o in Origin}
            self.author_counts = {}
            self.license_counts = {}
            self.toolchain_counts = {}
            self.size_min = None
            self.size_max = 0
            self.size_total = 0
            self.errors = []
            self.skip_reasons = {}
            self.integrity_flagged = []
            self.schema_violations = 0
            self.integrity_failures = 0

    def record(self, outcome: ItemOutcome) -> None:
        """Fold one terminal item outcome into the aggregate."""
        with self._lock:
            self.total_files += 1

            if outcome.integrity_flagged:
                self.integrity_flagged.append(outcome.item)
            if outcome.schema_violation:
                self.schema_violations += 1

            if outcome.state is ItemState.ACCEPTED:
                record = outcome.record
                self.processed_files += 1
                _bump(self.origin_counts, record.origin.value)
                _bump(self.author_counts, record.author)
                _bump(self.license_counts, record.license)
                _bump(self.toolchain_counts, record.creation_tool)
                self.size_min = outcome.size if self.size_min is None else min(self.size_min, outcome.size)
                self.size_max = max(self.size_max, outcome.size)
                self.size_total += outcome.size
            elif outcome.state is ItemState.SKIPPED:
                self.skipped_files += 1
                _bump(self.skip_reasons, outcome.reason)
            else:
                self.error_files += 1
                self.errors.append((outcome.item, outcome.message))
                if outcome.integrity is not None and outcome.integrity.status is not IntegrityStatus.VALID:
                    self.integrity_failures += 1

    def record_error(self, item: str, message: str) -> None:
        """Record a problem that is not an item outcome (e.g. an unreadable subdirectory)."""
        with self._lock:
            self.errors.append((item, message))

    @property
    def success_rate(self) -> float:
        if self.total_files == 0:
            return 0.0
        return round(self.processed_files / self.total_files * 100, 1)

    @property
    def average_size(self) -> int:
        if self.processed_files == 0:
            return 0
        return round(self.size_total / self.processed_files)

    def percentage(self, origin: str) -> float:
        """Share of accepted items with the given origin, in percent."""
        if self.processed_files == 0:
            return 0.0
        return round(self.origin_counts.get(origin, 0) / self.processed_files * 100, 1)

    def ratio(self, origin: str) -> Optional[float]:
        if self.processed_files == 0:
            return None
        return self.origin_counts.get(origin, 0) / self.processed_files

    def get_report(self) -> Dict[str, Any]:
        """Statistics report; contains no wall-clock values."""
        with self._lock:
            return {
                "summary": {
                    "totalFiles": self.total_files,
                    "processedFiles": self.processed_files,
                    "skippedFiles": self.skipped_files,
                    "errorFiles": self.error_files,
                    "successRate": self.success_rate,
                },
                "origins": dict(self.origin_counts),
                "authors": len(self.author_counts),
                "licenses": len(self.license_counts),
                "toolchains": len(self.toolchain_counts),
                "fileSize": {
                    "min": self.size_min if self.size_min is not None else 0,
                    "max": self.size_max,
                    "average": self.average_size,
                    "total": self.size_total,
                },
                "errors": [{"item": item, "error": message} for item, message in self.errors],
                "skipReasons": dict(sorted(self.skip_reasons.items())),
                "integrityFlagged": list(self.integrity_flagged),
            }

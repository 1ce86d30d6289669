"""
Content filters: composable inclusion predicates over (record, size, name).

Size and name clauses only need what a directory listing provides, so the
pipeline evaluates them before reading the item or its sidecar.
"""

from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Tuple

from ..metadata.record import MetadataRecord, Origin

CustomPredicate = Callable[[MetadataRecord, int, str], bool]

CLAUSE_SIZE = "max_size"
CLAUSE_EXCLUDE = "exclude_pattern"
CLAUSE_ORIGIN = "origin"
CLAUSE_CUSTOM = "custom"


@dataclass(frozen=True)
class FilterDecision:
    """Whether an item passed, and which clause rejected it if not."""
    accepted: bool
    clause: Optional[str] = None

    def __bool__(self) -> bool:
        return self.accepted


ACCEPT = FilterDecision(True)


class ContentFilter:
    """
    Logical AND of an allowed-origin set, a maximum size, a name-exclusion
    list and any number of custom predicates (evaluated last, in order).

    A clause left as None is inactive.
    """

    def __init__(
        self,
        allowed_origins: Optional[Iterable[str]] = None,
        max_size: Optional[int] = None,
        exclude_patterns: Iterable[str] = (),
        custom: Optional[CustomPredicate] = None
    ):
        self.allowed_origins = (
            frozenset(Origin(o) for o in allowed_origins) if allowed_origins is not None else None
        )
        self.max_size = max_size
        self.exclude_patterns: Tuple[str, ...] = tuple(p for p in exclude_patterns if p)
        self.custom: Tuple[CustomPredicate, ...] = (custom,) if custom else ()

    @classmethod
    def from_config(cls, config, custom: Optional[CustomPredicate] = None) -> "ContentFilter":
        """Standard filter chain for a PipelineConfig."""
        return cls(
            allowed_origins=config.allowed_origins,
            max_size=config.max_file_size,
            exclude_patterns=config.exclude_patterns,
            custom=custom,
        )

    def __and__(self, other: "ContentFilter") -> "ContentFilter":
        if not isinstance(other, ContentFilter):
            return NotImplemented

        if self.allowed_origins is None:
            origins = other.allowed_origins
        elif other.allowed_origins is None:
            origins = self.allowed_origins
        else:
            origins = self.allowed_origins & other.allowed_origins

        sizes = [s for s in (self.max_size, other.max_size) if s is not None]

        combined = ContentFilter(
            max_size=min(sizes) if sizes else None,
            exclude_patterns=self.exclude_patterns + other.exclude_patterns,
        )
        combined.allowed_origins = origins
        combined.custom = self.custom + other.custom
        return combined

    def evaluate_pre_read(self, size: int, name: str) -> FilterDecision:
        """Clauses that need no metadata: size, then name exclusion."""
        if self.max_size is not None and size > self.max_size:
            return FilterDecision(False, CLAUSE_SIZE)
        for pattern in self.exclude_patterns:
            if pattern in name:
                return FilterDecision(False, CLAUSE_EXCLUDE)
        return ACCEPT

    def evaluate(self, record: MetadataRecord, size: int, name: str) -> FilterDecision:
        """All clauses, in order: size, name exclusion, origin, custom."""
        decision = self.evaluate_pre_read(size, name)
        if not decision.accepted:
            return decision
        if self.allowed_origins is not None and record.origin not in self.allowed_origins:
            return FilterDecision(False, CLAUSE_ORIGIN)
        for predicate in self.custom:
            if not predicate(record, size, name):
                return FilterDecision(False, CLAUSE_CUSTOM)
        return ACCEPT

    def accepts(self, record: MetadataRecord, size: int, name: str) -> bool:
        return self.evaluate(record, size, name).accepted

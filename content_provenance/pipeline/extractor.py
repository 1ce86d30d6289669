"""
Metadata extraction: recover a record for a content item from an ordered list of sources.

Sources are tried in order; the first one that yields a structurally parsed
field mapping wins. A source that exists but cannot be parsed is logged and
skipped. Validation of the recovered fields is left to the caller, so a
present-but-invalid record can be told apart from absent metadata.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..codecs.embedded import MARKUP_EXTENSIONS, EmbeddedTagCodec
from ..codecs.sidecar import SidecarDocumentCodec, sidecar_path
from ..errors import ExtractionFailure, IOFailure
from ..metadata.record import MetadataRecord, ValidationResult, validate_fields

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractedMetadata:
    """Raw fields recovered from one source, not yet validated."""
    fields: Dict[str, Any]
    source: str
    path: Path
    strict: bool = False

    def validate(self) -> ValidationResult:
        return validate_fields(self.fields, strict=self.strict)

    def to_record(self) -> MetadataRecord:
        """
        Raises:
            SchemaViolation: If the fields are invalid
        """
        return MetadataRecord.from_fields(self.fields, strict=self.strict)


class ExtractionStrategy(ABC):
    """One metadata source in the fallback chain."""

    name = "strategy"

    @abstractmethod
    def try_extract(self, item_path: Path) -> Optional[ExtractedMetadata]:
        """
        Returns:
            ExtractedMetadata, or None if this source has nothing for the item

        Raises:
            ExtractionFailure: If the source exists but cannot be parsed
            IOFailure: If the source exists but cannot be read
        """
        pass


class SidecarStrategy(ExtractionStrategy):
    """Sidecar document at ``<item>.meta.xml``."""

    name = "sidecar"

    def __init__(self, max_size: Optional[int] = None, codec: Optional[SidecarDocumentCodec] = None):
        self.max_size = max_size
        self.codec = codec or SidecarDocumentCodec()

    def try_extract(self, item_path: Path) -> Optional[ExtractedMetadata]:
        path = sidecar_path(item_path)
        if not path.is_file():
            return None

        try:
            size = path.stat().st_size
            if self.max_size is not None and size > self.max_size:
                raise ExtractionFailure(
                    self.name, f"Sidecar {path.name} is {size} bytes, exceeds limit {self.max_size}"
                )
            data = path.read_bytes()
        except OSError as e:
            raise IOFailure(str(path), f"Cannot read sidecar: {e}", e) from e

        return ExtractedMetadata(self.codec.parse(data), self.name, path, self.codec.strict)


class EmbeddedTagStrategy(ExtractionStrategy):
    """<meta> tags inside markup items."""

    name = "embedded"

    def __init__(self, extensions: Sequence[str] = tuple(MARKUP_EXTENSIONS), codec: Optional[EmbeddedTagCodec] = None):
        self.extensions = {ext.lower() for ext in extensions}
        self.codec = codec or EmbeddedTagCodec()

    def try_extract(self, item_path: Path) -> Optional[ExtractedMetadata]:
        if item_path.suffix.lower() not in self.extensions:
            return None

        try:
            text = item_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise IOFailure(str(item_path), f"Cannot read item: {e}", e) from e

        fields = self.codec.parse(text)
        if not fields:
            return None
        return ExtractedMetadata(fields, self.name, item_path, self.codec.strict)


class MetadataExtractor:
    """Ordered fallback chain of extraction strategies."""

    def __init__(self, strategies: Optional[List[ExtractionStrategy]] = None, max_size: Optional[int] = None):
        if strategies is None:
            strategies = [SidecarStrategy(max_size=max_size), EmbeddedTagStrategy()]
        self.strategies = list(strategies)

    def add_strategy(self, strategy: ExtractionStrategy) -> None:
        self.strategies.append(strategy)

    def extract(self, item_path: Path) -> Optional[ExtractedMetadata]:
        """
        Try every source in order.

        Returns:
            First parsed result, or None if no source has metadata

        Raises:
            IOFailure: If a source exists but cannot be read
        """
        item_path = Path(item_path)
        for strategy in self.strategies:
            try:
                result = strategy.try_extract(item_path)
            except ExtractionFailure as e:
                logger.warning(f"Skipping {strategy.name} metadata for {item_path}: {e.message}")
                continue
            if result is not None:
                logger.debug(f"Extracted metadata for {item_path} from {result.source}")
                return result
        return None

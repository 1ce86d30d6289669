"""
Dataset pipeline: discover content items, extract and validate their
provenance metadata, verify integrity, filter, aggregate and emit a report
plus manifest.

Per item: Extracting -> Validating -> VerifyingIntegrity -> Filtering ->
exactly one of Accepted / Skipped / Errored. Per-item failures are terminal
for that item only; the run continues. The only fatal conditions are an
invalid configuration and a content root that is missing, not a directory
or unreadable, all raised before any item is processed.

Discovery is depth-first in lexical order and outcomes are aggregated in
discovery order, so reports are reproducible on an unchanged tree whether
items are processed sequentially or on a worker pool.
"""

import logging
import os
import re
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..codecs.sidecar import write_sidecar
from ..config.settings import PipelineConfig
from ..errors import ConfigurationError, IOFailure, IntegrityMismatch, SchemaViolation
from ..metadata.integrity import IntegrityStatus, verify
from ..metadata.record import MetadataRecord
from ..run_manifest import (
    DatasetManifest,
    compute_report_hash,
    generate_manifest,
    write_manifest,
    write_report,
)
from .extractor import MetadataExtractor
from .filters import ContentFilter, CustomPredicate
from .statistics import DatasetStatistics, ItemOutcome, ItemState, SkipReason

logger = logging.getLogger(__name__)

SIDECAR_PATTERN = re.compile(r"\.meta\.[^.]+$", re.IGNORECASE)

ERROR_NOT_FOUND = "not_found"
ERROR_READ = "read_error"
ERROR_SCHEMA = "schema_violation"
ERROR_INTEGRITY = "integrity_mismatch"
ERROR_UNHASHABLE = "unhashable"
ERROR_WRITE = "write_error"
ERROR_UNEXPECTED = "unexpected_error"


@dataclass
class PipelineResult:
    """Everything a caller needs after a run."""
    report: Dict[str, Any]
    manifest: DatasetManifest
    outcomes: List[ItemOutcome] = field(default_factory=list)
    strict_mode: bool = False
    cancelled: bool = False
    report_path: Optional[Path] = None
    manifest_path: Optional[Path] = None

    @property
    def error_files(self) -> int:
        return self.report["summary"]["errorFiles"]

    @property
    def exit_code(self) -> int:
        return 1 if should_exit_nonzero(self) else 0


def should_exit_nonzero(result: PipelineResult) -> bool:
    """Non-zero completion only when strict mode is on and some item errored."""
    return result.strict_mode and result.error_files > 0


def is_sidecar_name(name: str) -> bool:
    return bool(SIDECAR_PATTERN.search(name))


class DatasetPipeline:
    """
    Orchestrates one run over a content root.

    Args:
        config: Effective configuration
        stats: Aggregator to fill (reset at the start of every run)
        extractor: Metadata source chain
        content_filter: Inclusion filter; built from config when omitted
        custom_filter: Extra predicate (record, size, name) for the default filter

    Raises:
        ConfigurationError: If the configuration is invalid
    """

    def __init__(
        self,
        config: PipelineConfig,
        stats: Optional[DatasetStatistics] = None,
        extractor: Optional[MetadataExtractor] = None,
        content_filter: Optional[ContentFilter] = None,
        custom_filter: Optional[CustomPredicate] = None
    ):
        self.config = config.validate()
        self.stats = stats if stats is not None else DatasetStatistics()
        self.extractor = extractor or MetadataExtractor(max_size=config.max_file_size)
        self.content_filter = content_filter or ContentFilter.from_config(config, custom=custom_filter)
        self.content_root = Path(config.content_root)
        self.output_root = Path(config.output_root) if config.output_root else None
        self._extensions = tuple(ext.lower() for ext in config.extensions)
        self._cancel_event = threading.Event()

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop scheduling new items; items already in flight finish normally."""
        if not self._cancel_event.is_set():
            logger.warning("Cancellation requested, no new items will be scheduled")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def check_root(self) -> Path:
        """
        Raises:
            IOFailure: If the content root is missing, not a directory or unreadable
        """
        root = self.content_root
        if not root.exists():
            raise IOFailure(str(root), f"Content root does not exist: {root}")
        if not root.is_dir():
            raise IOFailure(str(root), f"Content root is not a directory: {root}")
        try:
            with os.scandir(root):
                pass
        except OSError as e:
            raise IOFailure(str(root), f"Content root is not readable: {e}", e) from e
        return root

    def is_processable(self, name: str) -> bool:
        lowered = name.lower()
        if is_sidecar_name(lowered):
            return False
        return lowered.endswith(self._extensions)

    def relative_name(self, path: Path) -> str:
        try:
            return path.relative_to(self.content_root).as_posix()
        except ValueError:
            return path.as_posix()

    def discover(self) -> List[Path]:
        """
        Depth-first, lexically ordered list of content items under the root.

        Unreadable subdirectories are logged and recorded as run errors; they
        do not count as items.
        """
        excluded = self.output_root.resolve() if self.output_root else None
        items: List[Path] = []
        self._walk(self.content_root, excluded, items)
        return items

    def _walk(self, directory: Path, excluded: Optional[Path], items: List[Path]) -> None:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            if directory == self.content_root:
                raise IOFailure(str(directory), f"Content root is not readable: {e}", e) from e
            name = self.relative_name(directory)
            logger.error(f"Cannot read directory {name}: {e}")
            self.stats.record_error(name, f"Cannot read directory: {e.strerror or e}")
            return

        for entry in entries:
            path = Path(entry.path)
            try:
                if entry.is_dir(follow_symlinks=False):
                    if excluded is not None and path.resolve() == excluded:
                        logger.debug(f"Skipping output root inside content root: {path}")
                        continue
                    self._walk(path, excluded, items)
                elif entry.is_file() and self.is_processable(entry.name):
                    items.append(path)
            except OSError as e:
                logger.warning(f"Cannot stat {path}: {e}")

    # ------------------------------------------------------------------
    # Per-item processing
    # ------------------------------------------------------------------

    def process_item(self, item_path: Path) -> ItemOutcome:
        """Drive one item to its terminal state. Never raises for per-item problems."""
        name = self.relative_name(item_path)
        try:
            return self._process_item(item_path, name)
        except Exception as e:
            logger.exception(f"Unexpected failure processing {name}: {e}")
            return ItemOutcome(name, ItemState.ERRORED, reason=ERROR_UNEXPECTED,
                               message=f"Unexpected error: {type(e).__name__}: {e}")

    def _process_item(self, item_path: Path, name: str) -> ItemOutcome:
        try:
            size = item_path.stat().st_size
        except OSError as e:
            return ItemOutcome(name, ItemState.ERRORED, reason=ERROR_NOT_FOUND,
                               message=f"Cannot stat item: {e.strerror or e}")

        decision = self.content_filter.evaluate_pre_read(size, item_path.name)
        if not decision.accepted:
            logger.debug(f"Filtered {name} ({decision.clause})")
            return ItemOutcome(name, ItemState.SKIPPED, size=size, reason=SkipReason.FILTERED.value,
                               clause=decision.clause)

        # Extracting
        try:
            extracted = self.extractor.extract(item_path)
        except IOFailure as e:
            logger.error(f"Cannot read metadata for {name}: {e}")
            return ItemOutcome(name, ItemState.ERRORED, size=size, reason=ERROR_READ, message=str(e))

        if extracted is None:
            logger.debug(f"No metadata found for {name}")
            return ItemOutcome(name, ItemState.SKIPPED, size=size, reason=SkipReason.NO_METADATA.value)

        # Validating
        result = extracted.validate()
        if not result.is_valid:
            logger.error(f"Invalid metadata for {name}: {result} - {result.message}")
            return ItemOutcome(name, ItemState.ERRORED, size=size, reason=ERROR_SCHEMA,
                               message=f"Invalid metadata: {result}", schema_violation=True)
        try:
            record = extracted.to_record()
        except SchemaViolation as e:
            return ItemOutcome(name, ItemState.ERRORED, size=size, reason=ERROR_SCHEMA,
                               message=str(e), schema_violation=True)

        # VerifyingIntegrity
        try:
            content: Optional[bytes] = item_path.read_bytes()
        except OSError as e:
            logger.error(f"Cannot read content of {name}: {e}")
            content = None

        check = verify(record, content)
        flagged = False
        if check.status is IntegrityStatus.UNHASHABLE:
            return ItemOutcome(name, ItemState.ERRORED, size=size, record=record, reason=ERROR_UNHASHABLE,
                               message=f"Cannot verify integrity: {check.detail}", integrity=check)
        if check.status is IntegrityStatus.TAMPERED:
            mismatch = IntegrityMismatch(name, check.expected, check.actual)
            if self.config.strict_mode:
                logger.error(f"{name}: {mismatch}")
                return ItemOutcome(name, ItemState.ERRORED, size=size, record=record,
                                   reason=ERROR_INTEGRITY, message=str(mismatch), integrity=check)
            logger.warning(f"{name}: {mismatch} (continuing, strict mode off)")
            flagged = True

        # Filtering
        decision = self.content_filter.evaluate(record, size, item_path.name)
        if not decision.accepted:
            logger.debug(f"Filtered {name} ({decision.clause})")
            return ItemOutcome(name, ItemState.SKIPPED, size=size, record=record,
                               reason=SkipReason.FILTERED.value, clause=decision.clause,
                               integrity=check, integrity_flagged=flagged)

        # Accepted
        if self.output_root is not None:
            try:
                self._write_output(item_path, content, record)
            except (IOFailure, OSError) as e:
                logger.error(f"Failed to copy {name}: {e}")
                return ItemOutcome(name, ItemState.ERRORED, size=size, record=record, reason=ERROR_WRITE,
                                   message=f"Cannot write output: {e}", integrity=check,
                                   integrity_flagged=flagged)

        logger.debug(f"Accepted {name}")
        return ItemOutcome(name, ItemState.ACCEPTED, size=size, record=record, integrity=check,
                           integrity_flagged=flagged)

    def _write_output(self, item_path: Path, content: bytes, record: MetadataRecord) -> None:
        target = self.output_root / item_path.relative_to(self.content_root)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        try:
            write_sidecar(target, record)
        except (IOFailure, OSError):
            # No item without its sidecar in the output root.
            target.unlink(missing_ok=True)
            raise

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> PipelineResult:
        """
        Process the whole content root.

        Raises:
            ConfigurationError: If the configuration is invalid
            IOFailure: If the content root is unusable or the output root cannot be created
        """
        self.config.validate()
        self.check_root()
        if self.output_root is not None and self.output_root.resolve() == self.content_root.resolve():
            raise ConfigurationError("output_root must differ from content_root")
        self._cancel_event.clear()
        self.stats.reset()

        logger.info("Starting dataset processing")
        logger.info(f"Content root: {self.content_root}")
        logger.info(f"Output root: {self.output_root or '(dry run)'}")
        logger.info(f"Allowed origins: {', '.join(self.config.allowed_origins)}")
        logger.info(f"Strict mode: {self.config.strict_mode}")

        if self.output_root is not None:
            try:
                self.output_root.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise IOFailure(str(self.output_root), f"Cannot create output root: {e}", e) from e

        items = self.discover()
        logger.info(f"Found {len(items)} files to process")

        outcomes: List[ItemOutcome] = []
        if self.config.workers > 1:
            self._run_pool(items, outcomes)
        else:
            for item in items:
                if self.cancelled:
                    break
                self._aggregate(self.process_item(item), outcomes)

        cancelled = self.cancelled
        if cancelled:
            logger.warning(f"Run cancelled after {len(outcomes)} of {len(items)} items")

        report = self.stats.get_report()
        report_path = manifest_path = None
        report_hash = None
        if self.output_root is not None:
            report_path = write_report(report, self.output_root)
            report_hash = compute_report_hash(report_path)

        manifest = generate_manifest(self.stats, self.config, report_hash=report_hash, cancelled=cancelled)
        if self.output_root is not None:
            manifest_path = write_manifest(manifest, self.output_root)

        log_summary(report)

        return PipelineResult(
            report=report,
            manifest=manifest,
            outcomes=outcomes,
            strict_mode=self.config.strict_mode,
            cancelled=cancelled,
            report_path=report_path,
            manifest_path=manifest_path,
        )

    def _run_pool(self, items: List[Path], outcomes: List[ItemOutcome]) -> None:
        workers = self.config.workers
        window = workers * 2
        with ThreadPoolExecutor(max_workers=workers) as executor:
            pending = deque()
            for item in items:
                if self.cancelled:
                    break
                pending.append(executor.submit(self.process_item, item))
                if len(pending) >= window:
                    self._aggregate(pending.popleft().result(), outcomes)
            while pending:
                self._aggregate(pending.popleft().result(), outcomes)

    def _aggregate(self, outcome: ItemOutcome, outcomes: List[ItemOutcome]) -> None:
        self.stats.record(outcome)
        outcomes.append(outcome)


def log_summary(report: Dict[str, Any]) -> None:
    """Log the human-readable run summary."""
    summary = report["summary"]
    logger.info("=" * 50)
    logger.info("DATASET PROCESSING SUMMARY")
    logger.info("=" * 50)
    logger.info(f"Total files: {summary['totalFiles']}")
    logger.info(f"Accepted: {summary['processedFiles']}")
    logger.info(f"Skipped: {summary['skippedFiles']}")
    logger.info(f"Errors: {summary['errorFiles']}")
    logger.info(f"Success rate: {summary['successRate']}%")

    processed = summary["processedFiles"]
    for origin, count in report["origins"].items():
        share = (count / processed * 100) if processed else 0.0
        logger.info(f"  {origin}: {count} files ({share:.1f}%)")

    logger.info(f"Unique authors: {report['authors']}")
    logger.info(f"Unique licenses: {report['licenses']}")
    logger.info(f"Unique toolchains: {report['toolchains']}")

    sizes = report["fileSize"]
    logger.info(
        f"File sizes: min {sizes['min'] / 1024:.1f}KB, max {sizes['max'] / 1024:.1f}KB, "
        f"average {sizes['average'] / 1024:.1f}KB, total {sizes['total'] / 1024 / 1024:.1f}MB"
    )
    if report["integrityFlagged"]:
        logger.warning(f"Integrity-flagged items: {len(report['integrityFlagged'])}")

"""
Dataset curation pipeline.

Modules:
    extractor - Ordered metadata source chain (sidecar, embedded tags)
    filters - Composable inclusion predicates
    statistics - Streaming aggregate of item outcomes
    dataset_pipeline - Discovery, per-item state machine, report and manifest emission
    export - Training splits and csv/json/jsonl export of a curated tree
"""

from .extractor import (
    EmbeddedTagStrategy,
    ExtractedMetadata,
    ExtractionStrategy,
    MetadataExtractor,
    SidecarStrategy,
)
from .filters import ContentFilter, FilterDecision
from .statistics import DatasetStatistics, ItemOutcome, ItemState, SkipReason
from .dataset_pipeline import DatasetPipeline, PipelineResult, should_exit_nonzero
from .export import (
    DatasetEntry,
    export_dataset,
    generate_splits,
    load_dataset_entries,
    write_splits,
)

"""
Content Provenance - tamper-evident origin metadata for content datasets.

Attaches human/ai/hybrid provenance records to content items and curates
collections of tagged items into reproducible datasets.

Modules:
    errors - Exception taxonomy shared by every layer
    metadata - Provenance record model, validation and integrity checks
    codecs - Sidecar document, compact header and embedded tag formats
    pipeline - Discovery, extraction, filtering, statistics and export
    config - Pipeline configuration from YAML, environment and overrides
    tagging - Sidecar creation for untagged content
    run_manifest - Dataset manifest generation
    cli - Command-line interface entrypoints
"""

__version__ = "1.0.0"

"""
Tagging: attach provenance sidecars to content items.

Origin is always asserted by the caller; nothing here inspects content to
guess it.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

from .codecs.sidecar import sidecar_path, write_sidecar
from .config.settings import DEFAULT_EXTENSIONS
from .errors import IOFailure, ProvenanceError
from .metadata.record import MetadataRecord, Origin
from .pipeline.dataset_pipeline import is_sidecar_name

logger = logging.getLogger(__name__)


@dataclass
class TaggingSummary:
    """Counts for one tag_directory() call."""
    tagged: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tagged": self.tagged,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
        }


def tag_file(
    item_path: Union[str, Path],
    origin: Union[Origin, str],
    author: str,
    **optional: Any
) -> MetadataRecord:
    """
    Hash an item and write its sidecar.

    Args:
        item_path: Content item to tag
        origin: Asserted origin (human, ai, hybrid)
        author: Author or system identifier
        **optional: Optional MetadataRecord fields (license, creation_tool, ...)

    Returns:
        The record written to ``<item>.meta.xml``

    Raises:
        IOFailure: If the item cannot be read or the sidecar cannot be written
        SchemaViolation: If the supplied fields are invalid
    """
    item_path = Path(item_path)
    try:
        content = item_path.read_bytes()
    except OSError as e:
        raise IOFailure(str(item_path), f"Cannot read item: {e}", e) from e

    record = MetadataRecord.create(content, origin=origin, author=author, **optional)
    write_sidecar(item_path, record)
    logger.debug(f"Tagged {item_path} (origin: {record.origin.value})")
    return record


def tag_directory(
    root: Union[str, Path],
    origin: Union[Origin, str],
    author: str,
    overwrite: bool = False,
    extensions: Sequence[str] = DEFAULT_EXTENSIONS,
    **optional: Any
) -> TaggingSummary:
    """
    Tag every content item under root.

    Items that already have a sidecar are left alone unless overwrite is set.
    A failure on one item is recorded and tagging continues.

    Raises:
        IOFailure: If root is not a directory
    """
    root = Path(root)
    if not root.is_dir():
        raise IOFailure(str(root), f"Dataset directory does not exist: {root}")

    suffixes = tuple(ext.lower() for ext in extensions)
    summary = TaggingSummary()

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            lowered = filename.lower()
            if is_sidecar_name(lowered) or not lowered.endswith(suffixes):
                continue
            item = Path(dirpath) / filename
            name = item.relative_to(root).as_posix()

            if sidecar_path(item).exists() and not overwrite:
                summary.skipped += 1
                continue

            try:
                tag_file(item, origin, author, **optional)
                summary.tagged += 1
            except ProvenanceError as e:
                logger.error(f"Failed to tag {name}: {e}")
                summary.failed += 1
                summary.errors.append({"item": name, "error": str(e)})

    logger.info(
        f"Tagging complete: {summary.tagged} tagged, {summary.skipped} skipped, {summary.failed} failed"
    )
    return summary

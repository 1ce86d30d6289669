"""
Curated dataset export: training splits and flat-file exports.

Works on a curated tree (a pipeline output root): every item there has a
sidecar, so entries are reloaded from sidecars rather than re-running the
pipeline.
"""

import csv
import json
import logging
import os
import random
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from ..codecs.sidecar import read_sidecar, sidecar_path
from ..errors import ConfigurationError, ExtractionFailure, IOFailure, SchemaViolation
from ..metadata.record import MetadataRecord
from .dataset_pipeline import is_sidecar_name

logger = logging.getLogger(__name__)

DEFAULT_SPLIT_RATIOS = {"train": 0.8, "validation": 0.1, "test": 0.1}
DEFAULT_SEED = 42
EXPORT_FORMATS = ("csv", "json", "jsonl")
CSV_COLUMNS = ["path", "content", "origin", "author", "timestamp", "content_hash", "size"]
RATIO_TOLERANCE = 1e-6


@dataclass(frozen=True)
class DatasetEntry:
    """One curated item: where it lives and what its sidecar says."""
    path: str
    source: Path
    record: MetadataRecord
    size: int

    def read_text(self) -> str:
        try:
            return self.source.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise IOFailure(str(self.source), f"Cannot read item: {e}", e) from e

    def to_dict(self, include_content: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {"path": self.path}
        if include_content:
            data["content"] = self.read_text()
        data["metadata"] = self.record.to_dict()
        data["size"] = self.size
        return data


def load_dataset_entries(root: Union[str, Path]) -> List[DatasetEntry]:
    """
    Load every item with a valid sidecar under a curated tree, in path order.

    Items without a sidecar are ignored; items whose sidecar is invalid are
    logged and ignored.

    Raises:
        IOFailure: If root is not a readable directory
    """
    root = Path(root)
    if not root.is_dir():
        raise IOFailure(str(root), f"Dataset root is not a directory: {root}")

    entries: List[DatasetEntry] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            if is_sidecar_name(filename):
                continue
            item = Path(dirpath) / filename
            if not sidecar_path(item).is_file():
                continue
            try:
                record = read_sidecar(item)
            except (ExtractionFailure, SchemaViolation, IOFailure) as e:
                logger.warning(f"Ignoring {item}: {e}")
                continue
            entries.append(DatasetEntry(
                path=item.relative_to(root).as_posix(),
                source=item,
                record=record,
                size=item.stat().st_size,
            ))

    logger.info(f"Loaded {len(entries)} dataset entries from {root}")
    return entries


def _check_ratios(ratios: Mapping[str, float]) -> None:
    if not ratios:
        raise ConfigurationError("Split ratios must name at least one split")
    for name, ratio in ratios.items():
        if not isinstance(ratio, (int, float)) or ratio < 0:
            raise ConfigurationError(f"Split ratio for {name} must be a non-negative number, got {ratio!r}")
    total = sum(ratios.values())
    if abs(total - 1.0) > RATIO_TOLERANCE:
        raise ConfigurationError(f"Split ratios must sum to 1.0, got {total}")


def generate_splits(
    entries: Sequence[DatasetEntry],
    ratios: Optional[Mapping[str, float]] = None,
    seed: int = DEFAULT_SEED
) -> Dict[str, List[DatasetEntry]]:
    """
    Deterministically shuffle entries into named splits.

    Every split but the last gets floor(n * ratio) entries; the last gets the
    remainder. The same entries, ratios and seed always give the same splits.

    Raises:
        ConfigurationError: If the ratios are negative or do not sum to 1
    """
    ratios = dict(ratios or DEFAULT_SPLIT_RATIOS)
    _check_ratios(ratios)

    shuffled = sorted(entries, key=lambda e: e.path)
    random.Random(seed).shuffle(shuffled)

    splits: Dict[str, List[DatasetEntry]] = {}
    names = list(ratios)
    start = 0
    for i, name in enumerate(names):
        if i == len(names) - 1:
            end = len(shuffled)
        else:
            end = start + int(len(shuffled) * ratios[name])
        splits[name] = shuffled[start:end]
        start = end

    logger.info("Dataset splits: " + ", ".join(f"{n}={len(s)}" for n, s in splits.items()))
    return splits


def write_splits(splits: Mapping[str, Sequence[DatasetEntry]], output_dir: Union[str, Path]) -> Dict[str, int]:
    """
    Copy each split's items and sidecars into ``<output_dir>/<split>/``.

    Returns:
        Split name -> number of items written

    Raises:
        IOFailure: If an item cannot be copied
    """
    output_dir = Path(output_dir)
    counts: Dict[str, int] = {}
    for name, entries in splits.items():
        split_dir = output_dir / name
        for entry in entries:
            target = split_dir / entry.path
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(entry.source, target)
                shutil.copyfile(sidecar_path(entry.source), sidecar_path(target))
            except OSError as e:
                raise IOFailure(str(target), f"Cannot copy {entry.path} into {name} split: {e}", e) from e
        counts[name] = len(entries)
        logger.info(f"Created {name} split with {len(entries)} files")
    return counts


def export_dataset(
    entries: Sequence[DatasetEntry],
    output_path: Union[str, Path],
    fmt: str = "csv"
) -> Path:
    """
    Export entries with their content and metadata to one file.

    Formats: csv (flat columns), json (one array), jsonl (one object per line).

    Raises:
        ConfigurationError: For an unsupported format
        IOFailure: If the file cannot be written
    """
    fmt = fmt.lower()
    if fmt not in EXPORT_FORMATS:
        raise ConfigurationError(f"Unsupported export format: {fmt}. Must be one of {list(EXPORT_FORMATS)}")

    output_path = Path(output_path)
    logger.info(f"Exporting {len(entries)} entries to {fmt} format: {output_path}")

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8", newline="") as f:
            if fmt == "csv":
                writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
                writer.writeheader()
                for entry in entries:
                    metadata = entry.record.to_dict()
                    writer.writerow({
                        "path": entry.path,
                        "content": entry.read_text(),
                        "origin": metadata["origin"],
                        "author": metadata["author"],
                        "timestamp": metadata["timestamp"],
                        "content_hash": metadata["content_hash"],
                        "size": entry.size,
                    })
            elif fmt == "json":
                json.dump([entry.to_dict() for entry in entries], f, indent=2, ensure_ascii=False)
                f.write("\n")
            else:
                for entry in entries:
                    f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
    except OSError as e:
        raise IOFailure(str(output_path), f"Cannot write export: {e}", e) from e

    return output_path

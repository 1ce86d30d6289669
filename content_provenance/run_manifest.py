"""
Dataset manifest and statistics report output.

A pipeline run that has an output root writes two files there:
- processing-report.json: the statistics report (no wall-clock values)
- dataset-manifest.json: run-level summary for downstream dataset tooling
    - version: manifest format version
    - generatedAt: UTC timestamp of generation
    - configuration: effective PipelineConfig
    - statistics: report summary block
    - originDistribution: accepted items per origin
    - qualityMetrics: integrityVerified, metadataCompliant, humanContentPercentage
    - qualityChecks: human/AI ratio thresholds
    - reportHash: SHA256 of processing-report.json
    - cancelled: whether the run was stopped before all items were scheduled
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

from .config.settings import PipelineConfig
from .errors import IOFailure
from .metadata.record import compute_file_hash, format_timestamp

if TYPE_CHECKING:
    from .pipeline.statistics import DatasetStatistics

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "1.0"
REPORT_FILENAME = "processing-report.json"
MANIFEST_FILENAME = "dataset-manifest.json"


def _now_utc() -> str:
    return format_timestamp(datetime.now(timezone.utc))


@dataclass
class DatasetManifest:
    """Run-level manifest for one pipeline run."""
    configuration: Dict[str, Any]
    statistics: Dict[str, Any]
    origin_distribution: Dict[str, int]
    quality_metrics: Dict[str, Any]
    quality_checks: Dict[str, Any]
    report_hash: Optional[str] = None
    cancelled: bool = False
    version: str = MANIFEST_VERSION
    generated_at: str = field(default_factory=_now_utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "version": self.version,
            "generatedAt": self.generated_at,
            "configuration": self.configuration,
            "statistics": self.statistics,
            "originDistribution": self.origin_distribution,
            "qualityMetrics": self.quality_metrics,
            "qualityChecks": self.quality_checks,
            "reportHash": self.report_hash,
            "cancelled": self.cancelled,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatasetManifest":
        return cls(
            configuration=data.get("configuration", {}),
            statistics=data.get("statistics", {}),
            origin_distribution=data.get("originDistribution", {}),
            quality_metrics=data.get("qualityMetrics", {}),
            quality_checks=data.get("qualityChecks", {}),
            report_hash=data.get("reportHash"),
            cancelled=data.get("cancelled", False),
            version=data.get("version", MANIFEST_VERSION),
            generated_at=data.get("generatedAt", ""),
        )


def evaluate_quality_checks(stats: "DatasetStatistics", config: PipelineConfig) -> Dict[str, Any]:
    """
    Compare the accepted origin mix against the configured thresholds.

    With no accepted items the human-ratio check fails and the AI-ratio
    check passes.
    """
    human_ratio = stats.ratio("human")
    ai_ratio = stats.ratio("ai")
    return {
        "minHumanRatio": {
            "threshold": config.min_human_ratio,
            "actual": round(human_ratio, 3) if human_ratio is not None else None,
            "passed": human_ratio is not None and human_ratio >= config.min_human_ratio,
        },
        "maxAiRatio": {
            "threshold": config.max_ai_ratio,
            "actual": round(ai_ratio, 3) if ai_ratio is not None else None,
            "passed": ai_ratio is None or ai_ratio <= config.max_ai_ratio,
        },
    }


def generate_manifest(
    stats: "DatasetStatistics",
    config: PipelineConfig,
    report_hash: Optional[str] = None,
    cancelled: bool = False
) -> DatasetManifest:
    """
    Build the manifest for a finished run.

    Args:
        stats: Aggregate statistics of the run
        config: Effective configuration
        report_hash: "sha256:<hex>" of the written report, if any
        cancelled: Whether the run was cancelled

    Returns:
        DatasetManifest dataclass
    """
    report = stats.get_report()
    return DatasetManifest(
        configuration=config.to_dict(),
        statistics=report["summary"],
        origin_distribution=report["origins"],
        quality_metrics={
            "integrityVerified": not stats.integrity_flagged and stats.integrity_failures == 0,
            "metadataCompliant": stats.schema_violations == 0,
            "humanContentPercentage": stats.percentage("human"),
        },
        quality_checks=evaluate_quality_checks(stats, config),
        report_hash=report_hash,
        cancelled=cancelled,
    )


def _write_json(data: Dict[str, Any], path: Path) -> None:
    temp_path = Path(f"{path}.tmp")
    try:
        os.makedirs(path.parent, exist_ok=True)
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(temp_path, path)
    except OSError as e:
        if temp_path.exists():
            temp_path.unlink()
        raise IOFailure(str(path), f"Cannot write {path.name}: {e}", e) from e


def write_report(report: Dict[str, Any], output_root: Union[str, Path]) -> Path:
    """
    Write the statistics report.

    Returns:
        Path to written report file
    """
    path = Path(output_root) / REPORT_FILENAME
    _write_json(report, path)
    logger.info(f"Detailed report saved: {path}")
    return path


def compute_report_hash(report_path: Union[str, Path]) -> str:
    """Hash of a written report as "sha256:<hex>"."""
    return f"sha256:{compute_file_hash(report_path)}"


def write_manifest(manifest: DatasetManifest, output_root: Union[str, Path]) -> Path:
    """
    Write the manifest.

    Returns:
        Path to written manifest file
    """
    path = Path(output_root) / MANIFEST_FILENAME
    _write_json(manifest.to_dict(), path)
    logger.info(f"Dataset manifest saved: {path}")
    return path


def load_manifest(output_root: Union[str, Path]) -> Optional[DatasetManifest]:
    """
    Load the manifest from an output root.

    Returns:
        DatasetManifest or None if not found or unreadable
    """
    path = Path(output_root) / MANIFEST_FILENAME
    if not path.exists():
        return None

    try:
        with open(path, "r", encoding="utf-8") as f:
            return DatasetManifest.from_dict(json.load(f))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not load dataset manifest: {e}")
        return None

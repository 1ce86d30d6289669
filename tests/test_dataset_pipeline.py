"""
Tests for the dataset pipeline.

Covers the per-item state machine, strict vs lenient integrity policy,
output layout, fatal root conditions, reproducible reports and worker-pool
parity.
"""

import json
import re
import shutil
from pathlib import Path

import pytest

from content_provenance.codecs.embedded import EmbeddedTagCodec
from content_provenance.codecs.sidecar import read_sidecar, sidecar_path
from content_provenance.config.settings import PipelineConfig
from content_provenance.errors import ConfigurationError, IOFailure
from content_provenance.metadata.record import MetadataRecord
from content_provenance.pipeline.dataset_pipeline import DatasetPipeline, should_exit_nonzero
from content_provenance.pipeline.statistics import ItemState
from content_provenance.run_manifest import MANIFEST_FILENAME, REPORT_FILENAME
from content_provenance.tagging import tag_file


def write_item(root: Path, relative: str, content: str = "content") -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def drop_author(item: Path) -> None:
    path = sidecar_path(item)
    text = path.read_text(encoding="utf-8")
    lines = [line for line in text.splitlines() if "<author>" not in line]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def set_sidecar_value(item: Path, field: str, value: str) -> None:
    path = sidecar_path(item)
    text = path.read_text(encoding="utf-8")
    text = re.sub(rf"<{field}>[^<]*</{field}>", f"<{field}>{value}</{field}>", text)
    path.write_text(text, encoding="utf-8")


def make_config(root: Path, output: Path = None, **changes) -> PipelineConfig:
    options = {
        "content_root": str(root),
        "output_root": str(output) if output else None,
        "allowed_origins": ("human",),
    }
    options.update(changes)
    return PipelineConfig(**options)


def outcome_for(result, name):
    return next(o for o in result.outcomes if o.item == name)


@pytest.fixture
def root(tmp_path):
    content_root = tmp_path / "dataset"
    content_root.mkdir()
    return content_root


@pytest.fixture
def output(tmp_path):
    return tmp_path / "clean-dataset"


class TestScenarios:
    """End-to-end scenarios over small trees."""

    def test_origin_filter_and_missing_metadata(self, root, output):
        """Human accepted, AI filtered, untagged skipped."""
        tag_file(write_item(root, "human.txt", "written by a person"), "human", "Jane Doe")
        tag_file(write_item(root, "machine.txt", "written by a model"), "ai", "gpt-bot")
        write_item(root, "untagged.txt", "no sidecar")

        result = DatasetPipeline(make_config(root, output)).run()

        summary = result.report["summary"]
        assert summary["processedFiles"] == 1
        assert summary["skippedFiles"] == 2
        assert summary["errorFiles"] == 0
        assert result.report["origins"]["human"] == 1
        assert result.report["skipReasons"] == {"filtered": 1, "no_metadata": 1}
        assert not should_exit_nonzero(result)

    def test_tampered_item_strict(self, root, output):
        item = write_item(root, "doc.txt", "original")
        tag_file(item, "human", "Jane Doe")
        item.write_text("tampered", encoding="utf-8")

        result = DatasetPipeline(make_config(root, output, strict_mode=True)).run()

        assert outcome_for(result, "doc.txt").state is ItemState.ERRORED
        assert result.report["summary"]["errorFiles"] == 1
        assert should_exit_nonzero(result)
        assert result.exit_code == 1

    def test_tampered_item_lenient(self, root, output):
        item = write_item(root, "doc.txt", "original")
        tag_file(item, "human", "Jane Doe")
        item.write_text("tampered", encoding="utf-8")

        result = DatasetPipeline(make_config(root, output)).run()

        outcome = outcome_for(result, "doc.txt")
        assert outcome.state is ItemState.ACCEPTED
        assert outcome.integrity_flagged
        assert result.report["integrityFlagged"] == ["doc.txt"]
        assert result.manifest.quality_metrics["integrityVerified"] is False
        assert result.exit_code == 0

    def test_tampered_item_lenient_still_filtered(self, root, output):
        item = write_item(root, "doc.txt", "original")
        tag_file(item, "ai", "gpt-bot")
        item.write_text("tampered", encoding="utf-8")

        result = DatasetPipeline(make_config(root, output)).run()

        outcome = outcome_for(result, "doc.txt")
        assert outcome.state is ItemState.SKIPPED
        assert outcome.integrity_flagged

    def test_sidecar_missing_author_is_error(self, root, output):
        item = write_item(root, "doc.txt")
        tag_file(item, "human", "Jane Doe")
        drop_author(item)

        result = DatasetPipeline(make_config(root, output)).run()

        outcome = outcome_for(result, "doc.txt")
        assert outcome.state is ItemState.ERRORED
        assert "MissingField(author)" in outcome.message
        assert result.report["summary"]["skippedFiles"] == 0
        assert result.manifest.quality_metrics["metadataCompliant"] is False
        assert not should_exit_nonzero(result)

    def test_tampered_item_strict_not_reported_verified(self, root, output):
        item = write_item(root, "doc.txt", "original")
        tag_file(item, "human", "Jane Doe")
        item.write_text("tampered", encoding="utf-8")

        result = DatasetPipeline(make_config(root, output, strict_mode=True)).run()

        assert result.report["integrityFlagged"] == []
        assert result.manifest.quality_metrics["integrityVerified"] is False

    @pytest.mark.parametrize("workers", [1, 2])
    def test_out_of_range_timestamp_errors_one_item(self, root, output, workers):
        tag_file(write_item(root, "a.txt", "first"), "human", "Jane Doe")
        bad = write_item(root, "b.txt", "second")
        tag_file(bad, "human", "Jane Doe")
        set_sidecar_value(bad, "timestamp", "0001-01-01T00:00:00+01:00")

        result = DatasetPipeline(make_config(root, output, workers=workers)).run()

        assert outcome_for(result, "a.txt").state is ItemState.ACCEPTED
        outcome = outcome_for(result, "b.txt")
        assert outcome.state is ItemState.ERRORED
        assert "InvalidTimestampFormat(timestamp)" in outcome.message
        assert result.report["summary"]["errorFiles"] == 1

    def test_non_ascii_content_length_tag_errors_one_item(self, root, output):
        page = "<html><head><title>x</title></head><body>hi</body></html>"
        record = MetadataRecord.create(page.encode("utf-8"), origin="human", author="Jane Doe")
        tagged = EmbeddedTagCodec().embed(page, record).replace(
            "</head>", '<meta name="ai-content-content-length" content="²">\n</head>'
        )
        write_item(root, "page.html", tagged)
        tag_file(write_item(root, "a.txt"), "human", "Jane Doe")

        result = DatasetPipeline(make_config(root, output)).run()

        outcome = outcome_for(result, "page.html")
        assert outcome.state is ItemState.ERRORED
        assert outcome.schema_violation
        assert outcome_for(result, "a.txt").state is ItemState.ACCEPTED

    def test_unexpected_exception_contained_to_item(self, root, output):
        tag_file(write_item(root, "a.txt"), "human", "Jane Doe")
        tag_file(write_item(root, "b.txt"), "human", "Jane Doe")

        def explode_on_b(record, size, name):
            if name == "b.txt":
                raise RuntimeError("predicate failed")
            return True

        result = DatasetPipeline(make_config(root, output), custom_filter=explode_on_b).run()

        outcome = outcome_for(result, "b.txt")
        assert outcome.state is ItemState.ERRORED
        assert "RuntimeError: predicate failed" in outcome.message
        assert outcome_for(result, "a.txt").state is ItemState.ACCEPTED
        assert result.report["summary"]["totalFiles"] == 2


class TestOutput:
    """Tests for what an accepted item leaves in the output root."""

    def test_relative_layout_preserved(self, root, output):
        item = write_item(root, "news/2024/story.md", "# Story")
        record = tag_file(item, "human", "Jane Doe", license="CC-BY-4.0")

        DatasetPipeline(make_config(root, output)).run()

        copied = output / "news" / "2024" / "story.md"
        assert copied.read_text(encoding="utf-8") == "# Story"
        assert read_sidecar(copied) == record

    def test_report_and_manifest_written(self, root, output):
        tag_file(write_item(root, "a.txt"), "human", "Jane Doe")

        result = DatasetPipeline(make_config(root, output)).run()

        report = json.loads((output / REPORT_FILENAME).read_text(encoding="utf-8"))
        manifest = json.loads((output / MANIFEST_FILENAME).read_text(encoding="utf-8"))
        assert report == result.report
        assert manifest["statistics"] == report["summary"]
        assert manifest["originDistribution"] == report["origins"]
        assert manifest["qualityMetrics"]["humanContentPercentage"] == 100.0
        assert manifest["reportHash"].startswith("sha256:")
        assert manifest["cancelled"] is False
        assert manifest["configuration"]["allowed_origins"] == ["human"]

    def test_rejected_items_not_copied(self, root, output):
        tag_file(write_item(root, "machine.txt"), "ai", "gpt-bot")

        DatasetPipeline(make_config(root, output)).run()

        assert not (output / "machine.txt").exists()

    def test_dry_run_writes_nothing(self, root):
        tag_file(write_item(root, "a.txt"), "human", "Jane Doe")

        result = DatasetPipeline(make_config(root)).run()

        assert result.report["summary"]["processedFiles"] == 1
        assert result.report_path is None
        assert result.manifest_path is None
        assert sorted(p.name for p in root.iterdir()) == ["a.txt", "a.txt.meta.xml"]

    def test_embedded_metadata_item(self, root, output):
        page = "<html><head><title>x</title></head><body>hi</body></html>"
        placeholder = MetadataRecord.create(page.encode("utf-8"), origin="human", author="Jane Doe")
        write_item(root, "page.html", EmbeddedTagCodec().embed(page, placeholder))

        result = DatasetPipeline(make_config(root, output)).run()

        outcome = outcome_for(result, "page.html")
        assert outcome.state is ItemState.ACCEPTED
        # Tags change the bytes they describe.
        assert outcome.integrity_flagged
        assert (output / "page.html.meta.xml").exists()

    def test_failed_sidecar_write_leaves_no_item(self, root, output, monkeypatch):
        tag_file(write_item(root, "a.txt"), "human", "Jane Doe")

        def refuse(item_path, record):
            raise IOFailure(str(item_path), "disk full")

        monkeypatch.setattr("content_provenance.pipeline.dataset_pipeline.write_sidecar", refuse)
        result = DatasetPipeline(make_config(root, output)).run()

        assert outcome_for(result, "a.txt").state is ItemState.ERRORED
        assert not (output / "a.txt").exists()


class TestDiscovery:
    """Tests for item discovery."""

    def test_depth_first_lexical_order(self, root):
        for name in ["b.txt", "a/z.txt", "a/b/c.md", "c.html", "a.json"]:
            write_item(root, name)

        items = DatasetPipeline(make_config(root)).discover()

        assert [p.relative_to(root).as_posix() for p in items] == [
            "a/b/c.md", "a/z.txt", "a.json", "b.txt", "c.html",
        ]

    def test_sidecars_and_other_extensions_ignored(self, root):
        tag_file(write_item(root, "a.txt"), "human", "Jane")
        write_item(root, "notes.meta.json")
        write_item(root, "image.png")

        items = DatasetPipeline(make_config(root)).discover()

        assert [p.name for p in items] == ["a.txt"]

    def test_custom_extensions(self, root):
        write_item(root, "a.txt")
        write_item(root, "b.csv")

        items = DatasetPipeline(make_config(root, extensions=(".csv",))).discover()

        assert [p.name for p in items] == ["b.csv"]

    def test_nested_output_root_excluded(self, root):
        tag_file(write_item(root, "a.txt"), "human", "Jane Doe")
        nested = root / "out"

        first = DatasetPipeline(make_config(root, nested)).run()
        second = DatasetPipeline(make_config(root, nested)).run()

        assert first.report == second.report
        assert second.report["summary"]["totalFiles"] == 1


class TestPreReadFilter:
    """Size and name clauses are applied before any metadata is read."""

    def test_oversized_item_skipped_not_errored(self, root, output):
        item = write_item(root, "big.txt", "x" * 500)
        tag_file(item, "human", "Jane Doe")
        drop_author(item)

        result = DatasetPipeline(make_config(root, output, max_file_size=100)).run()

        outcome = outcome_for(result, "big.txt")
        assert outcome.state is ItemState.SKIPPED
        assert outcome.clause == "max_size"

    def test_excluded_name(self, root, output):
        tag_file(write_item(root, "draft-1.txt"), "human", "Jane Doe")

        result = DatasetPipeline(make_config(root, output, exclude_patterns=("draft",))).run()

        assert outcome_for(result, "draft-1.txt").clause == "exclude_pattern"

    def test_custom_filter(self, root, output):
        tag_file(write_item(root, "a.txt"), "human", "Jane Doe")
        tag_file(write_item(root, "b.txt"), "human", "Raj")

        pipeline = DatasetPipeline(
            make_config(root, output),
            custom_filter=lambda record, size, name: record.author != "Raj",
        )
        result = pipeline.run()

        assert outcome_for(result, "a.txt").state is ItemState.ACCEPTED
        assert outcome_for(result, "b.txt").clause == "custom"


class TestFatalConditions:
    """Run-level failures abort before any item is processed."""

    def test_missing_root(self, tmp_path):
        with pytest.raises(IOFailure):
            DatasetPipeline(make_config(tmp_path / "nope")).run()

    def test_root_is_file(self, tmp_path):
        path = write_item(tmp_path, "file.txt")

        with pytest.raises(IOFailure):
            DatasetPipeline(make_config(path)).run()

    def test_invalid_configuration(self, root):
        with pytest.raises(ConfigurationError):
            DatasetPipeline(make_config(root, max_file_size=-1)).run()

    def test_unknown_origin_rejected_at_construction(self, root):
        with pytest.raises(ConfigurationError):
            DatasetPipeline(make_config(root, allowed_origins=("robot",)))

    def test_output_root_same_as_content_root(self, root):
        with pytest.raises(ConfigurationError):
            DatasetPipeline(make_config(root, root)).run()


class TestReproducibility:
    """Reports are identical across runs and across worker counts."""

    def build_tree(self, root):
        for i in range(12):
            origin = ["human", "ai", "hybrid"][i % 3]
            item = write_item(root, f"dir{i % 4}/item{i:02d}.txt", f"content {i}" * (i + 1))
            if i % 5 != 4:
                tag_file(item, origin, f"author-{i % 2}", license="MIT" if i % 2 else None)
        tampered = root / "dir0" / "item00.txt"
        tampered.write_text("changed", encoding="utf-8")
        drop_author(root / "dir1" / "item01.txt")

    def test_identical_report_bytes(self, root, output):
        self.build_tree(root)
        config = make_config(root, output, allowed_origins=("human", "hybrid"))

        DatasetPipeline(config).run()
        first = (output / REPORT_FILENAME).read_bytes()
        shutil.rmtree(output)
        DatasetPipeline(config).run()
        second = (output / REPORT_FILENAME).read_bytes()

        assert first == second

    def test_worker_pool_matches_sequential(self, root, tmp_path):
        self.build_tree(root)

        sequential = DatasetPipeline(make_config(root, tmp_path / "seq")).run()
        pooled = DatasetPipeline(make_config(root, tmp_path / "pool", workers=4)).run()

        assert pooled.report == sequential.report
        assert [o.item for o in pooled.outcomes] == [o.item for o in sequential.outcomes]


class TestCancellation:
    """Cancellation stops scheduling but keeps finished items consistent."""

    def test_cancel_stops_scheduling(self, root, output):
        for name in ["a.txt", "b.txt", "c.txt"]:
            tag_file(write_item(root, name), "human", "Jane Doe")

        holder = {}

        def cancel_after_first(record, size, name):
            holder["pipeline"].cancel()
            return True

        pipeline = DatasetPipeline(make_config(root, output), custom_filter=cancel_after_first)
        holder["pipeline"] = pipeline
        result = pipeline.run()

        assert result.cancelled
        assert result.report["summary"]["totalFiles"] == 1
        assert (output / "a.txt").exists()
        assert not (output / "b.txt").exists()
        assert result.manifest.cancelled is True

    def test_stats_reset_between_runs(self, root, output):
        tag_file(write_item(root, "a.txt"), "human", "Jane Doe")
        pipeline = DatasetPipeline(make_config(root, output))

        pipeline.run()
        result = pipeline.run()

        assert result.report["summary"]["totalFiles"] == 1

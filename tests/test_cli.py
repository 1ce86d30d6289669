"""Tests for the command-line interface."""

import json

import pytest

from content_provenance.cli import main
from content_provenance.codecs.sidecar import read_sidecar, sidecar_path
from content_provenance.config.settings import ENV_VARIABLES
from content_provenance.run_manifest import MANIFEST_FILENAME
from content_provenance.tagging import tag_file


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for variable in ENV_VARIABLES:
        monkeypatch.delenv(variable, raising=False)
    # Keep any .env in the real working directory out of the way.
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def dataset(tmp_path):
    root = tmp_path / "dataset"
    root.mkdir()
    (root / "human.txt").write_text("by a person", encoding="utf-8")
    (root / "machine.txt").write_text("by a model", encoding="utf-8")
    tag_file(root / "human.txt", "human", "Jane Doe")
    tag_file(root / "machine.txt", "ai", "gpt-bot")
    return root


class TestTag:
    """Tests for the tag command."""

    def test_tag_file(self, tmp_path, capsys):
        item = tmp_path / "note.txt"
        item.write_text("hello", encoding="utf-8")

        code = main(["tag", str(item), "--origin", "hybrid", "--author", "Jane Doe", "--license", "MIT"])

        assert code == 0
        assert read_sidecar(item).license == "MIT"
        assert "origin: hybrid" in capsys.readouterr().out

    def test_tag_directory(self, tmp_path, capsys):
        (tmp_path / "a.txt").write_text("a", encoding="utf-8")
        (tmp_path / "b.md").write_text("b", encoding="utf-8")

        code = main(["tag", str(tmp_path), "--origin", "ai", "--author", "bot"])

        assert code == 0
        assert "Tagged 2" in capsys.readouterr().out

    def test_tag_missing_file(self, tmp_path, capsys):
        code = main(["tag", str(tmp_path / "nope.txt"), "--origin", "ai", "--author", "bot"])

        assert code == 1
        assert "Error:" in capsys.readouterr().err


class TestValidate:
    """Tests for the validate command."""

    def test_valid_items(self, dataset, capsys):
        code = main(["validate", str(dataset / "human.txt"), str(dataset / "machine.txt"), "--verify"])

        out = capsys.readouterr().out
        assert code == 0
        assert out.count("VALID    ") == 2
        assert "2/2 valid" in out

    def test_missing_and_tampered_strict(self, dataset, tmp_path, capsys):
        untagged = tmp_path / "untagged.txt"
        untagged.write_text("x", encoding="utf-8")
        (dataset / "human.txt").write_text("changed", encoding="utf-8")

        code = main(["validate", str(untagged), str(dataset / "human.txt"), "--verify", "--strict"])

        out = capsys.readouterr().out
        assert code == 1
        assert "MISSING" in out
        assert "TAMPERED" in out

    def test_invalid_sidecar(self, dataset, capsys):
        path = sidecar_path(dataset / "human.txt")
        path.write_text(path.read_text(encoding="utf-8").replace("<author>Jane Doe</author>", ""),
                        encoding="utf-8")

        code = main(["validate", str(dataset / "human.txt")])

        assert code == 0
        assert "MissingField(author)" in capsys.readouterr().out


class TestRun:
    """Tests for the run command."""

    def test_run(self, dataset, tmp_path, capsys):
        out = tmp_path / "curated"

        code = main(["--log-level", "quiet", "run", "-i", str(dataset), "-o", str(out)])

        assert code == 0
        assert "1 accepted" in capsys.readouterr().out
        manifest = json.loads((out / MANIFEST_FILENAME).read_text(encoding="utf-8"))
        assert manifest["originDistribution"]["human"] == 1
        assert (out / "human.txt").exists()

    def test_run_strict_with_errors(self, dataset, tmp_path):
        (dataset / "human.txt").write_text("changed", encoding="utf-8")

        code = main(["--log-level", "quiet", "run", "-i", str(dataset), "-o", str(tmp_path / "out"), "--strict"])

        assert code == 1

    def test_run_env_and_yaml(self, dataset, tmp_path, monkeypatch):
        config = tmp_path / "pipeline.yaml"
        config.write_text("pipeline:\n  allowed_origins: [human, ai]\n", encoding="utf-8")
        monkeypatch.setenv("DATASET_PATH", str(dataset))
        monkeypatch.setenv("OUTPUT_PATH", str(tmp_path / "env-out"))

        code = main(["--log-level", "quiet", "run", "--config", str(config)])

        assert code == 0
        manifest = json.loads((tmp_path / "env-out" / MANIFEST_FILENAME).read_text(encoding="utf-8"))
        assert manifest["statistics"]["processedFiles"] == 2

    def test_missing_root(self, tmp_path, capsys):
        code = main(["--log-level", "quiet", "run", "-i", str(tmp_path / "nope"), "-o", str(tmp_path / "out")])

        assert code == 1
        assert "does not exist" in capsys.readouterr().err

    def test_invalid_option(self, dataset, capsys):
        code = main(["run", "-i", str(dataset), "--allowed-origins", "robots"])

        assert code == 1
        assert "Unknown origin" in capsys.readouterr().err


class TestSplitAndExport:
    """Tests for the split and export commands."""

    def test_split(self, dataset, tmp_path, capsys):
        code = main(["split", str(dataset), "-o", str(tmp_path / "splits"),
                     "--train", "0.5", "--validation", "0.5", "--test", "0"])

        assert code == 0
        assert json.loads(capsys.readouterr().out) == {"train": 1, "validation": 1, "test": 0}

    def test_split_bad_ratios(self, dataset, tmp_path):
        code = main(["split", str(dataset), "-o", str(tmp_path / "splits"), "--train", "0.9"])

        assert code == 1

    def test_export(self, dataset, tmp_path):
        target = tmp_path / "dataset.jsonl"

        code = main(["export", str(dataset), "-o", str(target), "--format", "jsonl"])

        assert code == 0
        assert len(target.read_text(encoding="utf-8").splitlines()) == 2


def test_no_command(capsys):
    assert main([]) == 0
    assert "usage" in capsys.readouterr().out.lower()

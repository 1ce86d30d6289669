"""
Tests for metadata extraction through the fallback chain.

Order: sidecar document first, then embedded tags for markup items.
"""

from pathlib import Path
from typing import Optional

import pytest

from content_provenance.codecs.embedded import EmbeddedTagCodec
from content_provenance.codecs.sidecar import sidecar_path, write_sidecar
from content_provenance.metadata.record import MetadataRecord
from content_provenance.pipeline.extractor import (
    ExtractedMetadata,
    ExtractionStrategy,
    MetadataExtractor,
)

HTML = "<html><head><title>t</title></head><body><p>Hi</p></body></html>"


def make_record(content: bytes, author: str, origin: str = "human") -> MetadataRecord:
    return MetadataRecord.create(content, origin=origin, author=author)


@pytest.fixture
def extractor():
    return MetadataExtractor()


class TestFallbackOrder:
    """Tests for source ordering."""

    def test_sidecar_preferred_over_embedded(self, tmp_path, extractor):
        item = tmp_path / "page.html"
        page = EmbeddedTagCodec().embed(HTML, make_record(b"x", "Embedded Author"))
        item.write_text(page, encoding="utf-8")
        write_sidecar(item, make_record(item.read_bytes(), "Sidecar Author"))

        extracted = extractor.extract(item)

        assert extracted.source == "sidecar"
        assert extracted.to_record().author == "Sidecar Author"

    def test_embedded_used_without_sidecar(self, tmp_path, extractor):
        item = tmp_path / "page.html"
        item.write_text(EmbeddedTagCodec().embed(HTML, make_record(b"x", "Embedded Author")), encoding="utf-8")

        extracted = extractor.extract(item)

        assert extracted.source == "embedded"
        assert extracted.strict is False
        assert extracted.to_record().author == "Embedded Author"

    def test_malformed_sidecar_falls_back(self, tmp_path, extractor):
        item = tmp_path / "page.html"
        item.write_text(EmbeddedTagCodec().embed(HTML, make_record(b"x", "Embedded Author")), encoding="utf-8")
        sidecar_path(item).write_text("<content_metadata><broken", encoding="utf-8")

        extracted = extractor.extract(item)

        assert extracted.source == "embedded"

    def test_embedded_not_tried_for_plain_text(self, tmp_path, extractor):
        item = tmp_path / "notes.txt"
        item.write_text(EmbeddedTagCodec().encode(make_record(b"x", "Someone")), encoding="utf-8")

        assert extractor.extract(item) is None


class TestOutcomes:
    """Tests for the None / invalid distinction."""

    def test_no_metadata(self, tmp_path, extractor):
        item = tmp_path / "plain.txt"
        item.write_text("no metadata here", encoding="utf-8")

        assert extractor.extract(item) is None

    def test_html_without_tags(self, tmp_path, extractor):
        item = tmp_path / "page.html"
        item.write_text(HTML, encoding="utf-8")

        assert extractor.extract(item) is None

    def test_malformed_sidecar_only(self, tmp_path, extractor):
        item = tmp_path / "doc.txt"
        item.write_text("content", encoding="utf-8")
        sidecar_path(item).write_text("not xml at all", encoding="utf-8")

        assert extractor.extract(item) is None

    def test_invalid_sidecar_is_returned_for_validation(self, tmp_path, extractor):
        item = tmp_path / "doc.txt"
        item.write_bytes(b"content")
        record = make_record(b"content", "Jane Doe")
        write_sidecar(item, record)
        path = sidecar_path(item)
        path.write_text(path.read_text(encoding="utf-8").replace("<author>Jane Doe</author>", ""), encoding="utf-8")

        extracted = extractor.extract(item)

        assert extracted is not None
        assert extracted.strict is True
        assert str(extracted.validate()) == "MissingField(author)"

    def test_oversized_sidecar_refused_before_parsing(self, tmp_path):
        item = tmp_path / "doc.txt"
        item.write_bytes(b"content")
        write_sidecar(item, make_record(b"content", "Jane Doe"))

        assert MetadataExtractor(max_size=10).extract(item) is None
        assert MetadataExtractor(max_size=10_000).extract(item) is not None


class StaticStrategy(ExtractionStrategy):
    name = "static"

    def __init__(self, record: MetadataRecord):
        self.record = record
        self.calls = 0

    def try_extract(self, item_path: Path) -> Optional[ExtractedMetadata]:
        self.calls += 1
        return ExtractedMetadata(self.record.to_dict(), self.name, item_path)


class TestStrategies:
    """Tests for appending strategies."""

    def test_appended_strategy_used_last(self, tmp_path):
        item = tmp_path / "doc.txt"
        item.write_bytes(b"content")
        static = StaticStrategy(make_record(b"content", "Static Author"))
        extractor = MetadataExtractor()
        extractor.add_strategy(static)

        extracted = extractor.extract(item)

        assert extracted.source == "static"
        assert extracted.to_record().author == "Static Author"

    def test_later_strategy_not_called_after_hit(self, tmp_path):
        item = tmp_path / "doc.txt"
        item.write_bytes(b"content")
        write_sidecar(item, make_record(b"content", "Jane Doe"))
        static = StaticStrategy(make_record(b"content", "Static Author"))
        extractor = MetadataExtractor()
        extractor.add_strategy(static)

        assert extractor.extract(item).source == "sidecar"
        assert static.calls == 0

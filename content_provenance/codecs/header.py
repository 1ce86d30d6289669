"""
Compact header codec: one ASCII line for a single transport header value.

    version=1.0;origin=human;author=Jane%20Doe;timestamp=2024-01-15T10:30:00.000Z;...

Values are percent-encoded so that ';', '=', '%', whitespace and non-ASCII
characters never appear literally. The form is lossy: custom_metadata cannot
be carried and is dropped on encode (see LOSSY_FIELDS).

The multi-header transport form (X-Content-Origin, X-Content-Author, ...) is
handled by to_headers() / from_headers().
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from urllib.parse import quote, unquote

from ..errors import ExtractionFailure
from ..metadata.record import MetadataRecord, canonicalize_fields
from .base import MetadataCodec

logger = logging.getLogger(__name__)

PAIR_SEPARATOR = ";"
KEY_SEPARATOR = "="
SAFE_CHARS = ":/,+@!*'()"

# Fields the single-line form structurally cannot represent.
LOSSY_FIELDS = frozenset({"custom_metadata"})

COMPACT_HEADER = "X-Content-Metadata"
HEADER_FIELDS = {
    "X-Content-Origin": "origin",
    "X-Content-Author": "author",
    "X-Content-Timestamp": "timestamp",
    "X-Content-Checksum": "content_hash",
    "X-Content-License": "license",
    "X-Content-Toolchain": "creation_tool",
    "X-Content-Model": "model_identifier",
}
CHECKSUM_PREFIX = "sha256:"


class CompactHeaderCodec(MetadataCodec):
    """Semicolon-delimited key=value encoding."""

    name = "header"
    strict = False

    def encode(self, record: MetadataRecord) -> str:
        parts = []
        for key, value in record.to_dict().items():
            if key in LOSSY_FIELDS:
                logger.debug(f"Compact header form drops {key}")
                continue
            parts.append(f"{key}{KEY_SEPARATOR}{quote(str(value), safe=SAFE_CHARS)}")
        return PAIR_SEPARATOR.join(parts)

    def parse(self, text: str) -> Dict[str, Any]:
        if not isinstance(text, str):
            raise ExtractionFailure(self.name, f"Expected text, got {type(text).__name__}")

        pairs: List[Tuple[str, Any]] = []
        for segment in text.strip().split(PAIR_SEPARATOR):
            segment = segment.strip()
            if not segment:
                continue
            key, sep, value = segment.partition(KEY_SEPARATOR)
            if not sep or not key.strip():
                raise ExtractionFailure(self.name, f"Malformed pair: {segment!r}")
            pairs.append((unquote(key.strip()), unquote(value)))

        return canonicalize_fields(pairs)


def to_headers(record: MetadataRecord) -> Dict[str, str]:
    """
    Render a record as response headers.

    Individual X-Content-* headers carry the common fields; the full compact
    form goes into X-Content-Metadata.
    """
    data = record.to_dict()
    headers: Dict[str, str] = {}
    for header, field_name in HEADER_FIELDS.items():
        value = data.get(field_name)
        if value is None:
            continue
        if field_name == "content_hash":
            value = f"{CHECKSUM_PREFIX}{value}"
        headers[header] = quote(str(value), safe=SAFE_CHARS + " ;=")
    headers[COMPACT_HEADER] = CompactHeaderCodec().encode(record)
    return headers


def from_headers(headers: Mapping[str, str]) -> Optional[MetadataRecord]:
    """
    Recover a record from request or response headers.

    Header names are matched case-insensitively. Individual headers override
    values from the compact header.

    Returns:
        MetadataRecord, or None if no provenance headers are present

    Raises:
        ExtractionFailure: If the compact header is malformed
        SchemaViolation: If the combined fields are invalid
    """
    lowered = {name.lower(): value for name, value in headers.items()}
    codec = CompactHeaderCodec()

    fields: Dict[str, Any] = {}
    found = False

    compact = lowered.get(COMPACT_HEADER.lower())
    if compact:
        fields.update(codec.parse(compact))
        found = True

    for header, field_name in HEADER_FIELDS.items():
        value = lowered.get(header.lower())
        if value is None:
            continue
        value = unquote(value.strip())
        if field_name == "content_hash" and value.lower().startswith(CHECKSUM_PREFIX):
            value = value[len(CHECKSUM_PREFIX):]
            # The prefix names the algorithm.
            fields.setdefault("hash_algorithm", CHECKSUM_PREFIX.rstrip(":"))
        fields[field_name] = value
        found = True

    if not found:
        return None
    return MetadataRecord.from_fields(fields, strict=codec.strict)

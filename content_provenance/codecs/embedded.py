"""
Embedded tag codec: provenance fields as <meta> tags inside a markup document.

One tag per field, named with a fixed prefix and the field in kebab case:

    <meta name="ai-content-origin" content="human">
    <meta name="ai-content-content-hash" content="9f86d08...">

Decoding is lenient: meta tags with unrecognized names are ignored.
"""

import html
import json
import logging
import re
from typing import Any, Dict, List, Tuple

from bs4 import BeautifulSoup

from ..metadata.record import MetadataRecord, canonicalize_fields, normalize_field_name
from .base import MetadataCodec

logger = logging.getLogger(__name__)

TAG_PREFIX = "ai-content-"
MARKUP_EXTENSIONS = frozenset({".html", ".htm", ".xhtml"})

_EXISTING_TAG = re.compile(
    r"""[ \t]*<meta\b[^>]*\bname\s*=\s*["']?""" + re.escape(TAG_PREFIX) + r"""[^>]*>[ \t]*\r?\n?""",
    re.IGNORECASE,
)
_HEAD_CLOSE = re.compile(r"</head\s*>", re.IGNORECASE)
_HTML_OPEN = re.compile(r"<html\b[^>]*>", re.IGNORECASE)


def tag_name(field_name: str) -> str:
    return TAG_PREFIX + field_name.replace("_", "-")


def _attr(value: str) -> str:
    escaped = html.escape(value, quote=True)
    return escaped.replace("\n", "&#10;").replace("\r", "&#13;").replace("\t", "&#9;")


class EmbeddedTagCodec(MetadataCodec):
    """<meta name="ai-content-*"> encoding for HTML documents."""

    name = "embedded"
    strict = False

    def encode(self, record: MetadataRecord) -> str:
        lines = []
        for key, value in record.to_dict().items():
            if key == "custom_metadata":
                value = json.dumps(value, sort_keys=True, ensure_ascii=False)
            lines.append(f'<meta name="{tag_name(key)}" content="{_attr(str(value))}">')
        return "\n".join(lines)

    def parse(self, text: str) -> Dict[str, Any]:
        soup = BeautifulSoup(text, "lxml")

        pairs: List[Tuple[str, Any]] = []
        for meta in soup.find_all("meta"):
            name = (meta.get("name") or "").strip().lower()
            if not name.startswith(TAG_PREFIX):
                continue
            field_name = normalize_field_name(name[len(TAG_PREFIX):])
            if field_name is None:
                logger.debug(f"Ignoring unrecognized provenance tag {name!r}")
                continue
            value = meta.get("content", "")
            if field_name == "custom_metadata":
                value = self._parse_custom(value)
            pairs.append((field_name, value))

        return canonicalize_fields(pairs)

    @staticmethod
    def _parse_custom(value: str) -> Any:
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            # Left as text so validation reports it.
            return value

    def embed(self, document: str, record: MetadataRecord) -> str:
        """
        Insert provenance tags into an HTML document.

        Existing provenance tags are removed first. Tags go before </head>; a
        head element is created when the document has none.
        """
        document = _EXISTING_TAG.sub("", document)
        block = self.encode(record) + "\n"

        head_close = _HEAD_CLOSE.search(document)
        if head_close:
            return document[:head_close.start()] + block + document[head_close.start():]

        html_open = _HTML_OPEN.search(document)
        if html_open:
            insert = f"\n<head>\n{block}</head>"
            return document[:html_open.end()] + insert + document[html_open.end():]

        return f"<head>\n{block}</head>\n" + document

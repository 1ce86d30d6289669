"""
Sidecar document codec: namespaced XML stored next to the content item.

Layout (one element per field, custom_metadata carried as JSON text):

    <?xml version='1.0' encoding='UTF-8'?>
    <content_metadata xmlns="urn:ietf:params:xml:ns:ai-content-tagging:1.0">
      <version>1.0</version>
      <origin>human</origin>
      <author>Jane Doe</author>
      ...
    </content_metadata>

Sidecars are schema-backed, so decoding is strict: rfc_version is required
and unknown elements are rejected.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from lxml import etree

from ..errors import ExtractionFailure, IOFailure
from ..metadata.record import MetadataRecord, canonicalize_fields, normalize_field_name
from .base import MetadataCodec

logger = logging.getLogger(__name__)

NAMESPACE = "urn:ietf:params:xml:ns:ai-content-tagging:1.0"
ROOT_TAG = "content_metadata"
SIDECAR_SUFFIX = ".meta.xml"


def sidecar_path(item_path: Union[str, Path]) -> Path:
    """Reserved sidecar location for an item: ``<item-path>.meta.xml``."""
    return Path(f"{item_path}{SIDECAR_SUFFIX}")


def _safe_parser() -> etree.XMLParser:
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        remove_pis=True,
        huge_tree=False,
    )


class SidecarDocumentCodec(MetadataCodec):
    """Element-per-field XML sidecar format."""

    name = "sidecar"
    strict = True

    def encode(self, record: MetadataRecord) -> str:
        root = etree.Element(f"{{{NAMESPACE}}}{ROOT_TAG}", nsmap={None: NAMESPACE})
        for name, value in record.to_dict().items():
            element = etree.SubElement(root, f"{{{NAMESPACE}}}{name}")
            if name == "custom_metadata":
                element.set("encoding", "json")
                element.text = json.dumps(value, sort_keys=True, ensure_ascii=False)
            else:
                element.text = str(value)
        return etree.tostring(
            root, pretty_print=True, xml_declaration=True, encoding="UTF-8"
        ).decode("utf-8")

    def parse(self, text: Union[str, bytes]) -> Dict[str, Any]:
        data = text.encode("utf-8") if isinstance(text, str) else text
        try:
            root = etree.fromstring(data, _safe_parser())
        except etree.XMLSyntaxError as e:
            raise ExtractionFailure(self.name, f"Malformed sidecar document: {e}", e) from e

        if etree.QName(root).localname != ROOT_TAG:
            raise ExtractionFailure(
                self.name,
                f"Unexpected root element <{etree.QName(root).localname}>, expected <{ROOT_TAG}>"
            )

        pairs: List[Tuple[str, Any]] = []
        for child in root:
            if not isinstance(child.tag, str):
                continue
            name = etree.QName(child).localname
            if normalize_field_name(name) == "custom_metadata":
                pairs.append((name, self._parse_custom(child)))
            else:
                pairs.append((name, child.text or ""))

        return canonicalize_fields(pairs)

    def _parse_custom(self, element: Any) -> Any:
        children = [c for c in element if isinstance(c.tag, str)]
        if children:
            return {etree.QName(c).localname: c.text or "" for c in children}

        text = (element.text or "").strip()
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ExtractionFailure(self.name, f"custom_metadata is not valid JSON: {e}", e) from e


def read_sidecar(item_path: Union[str, Path], codec: Optional[SidecarDocumentCodec] = None) -> MetadataRecord:
    """
    Load and decode the sidecar of an item.

    Raises:
        IOFailure: If the sidecar cannot be read
        ExtractionFailure: If it is malformed
        SchemaViolation: If its fields are invalid
    """
    codec = codec or SidecarDocumentCodec()
    path = sidecar_path(item_path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise IOFailure(str(path), f"Cannot read sidecar: {e}", e) from e
    return codec.decode(data)


def write_sidecar(
    item_path: Union[str, Path],
    record: MetadataRecord,
    codec: Optional[SidecarDocumentCodec] = None
) -> Path:
    """
    Write the sidecar of an item atomically (temp file then rename).

    Returns:
        Path of the written sidecar

    Raises:
        IOFailure: If the sidecar cannot be written
    """
    codec = codec or SidecarDocumentCodec()
    path = sidecar_path(item_path)
    temp_path = Path(f"{path}.tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(codec.encode(record))
        os.replace(temp_path, path)
    except OSError as e:
        if temp_path.exists():
            temp_path.unlink()
        raise IOFailure(str(path), f"Cannot write sidecar: {e}", e) from e

    logger.debug(f"Wrote sidecar {path}")
    return path

"""Abstract base class for metadata serialization formats."""

from abc import ABC, abstractmethod
from typing import Any, Dict

from ..metadata.record import MetadataRecord


class MetadataCodec(ABC):
    """
    Bidirectional mapping between MetadataRecord and one serialized form.

    Subclasses implement structural parsing only; decode() applies the
    format's validation policy (strict for schema-backed documents, lenient
    for transport and markup forms).
    """

    name = "codec"
    strict = False

    @abstractmethod
    def encode(self, record: MetadataRecord) -> str:
        """Serialize a record."""
        pass

    @abstractmethod
    def parse(self, text: str) -> Dict[str, Any]:
        """
        Recover the raw field mapping from serialized text.

        Returns:
            Canonical field name -> raw value, last occurrence winning

        Raises:
            ExtractionFailure: If the text is structurally malformed
        """
        pass

    def decode(self, text: str) -> MetadataRecord:
        """
        Parse and validate.

        Raises:
            ExtractionFailure: If the text is structurally malformed
            SchemaViolation: If the recovered fields are invalid
        """
        fields = self.parse(text)
        return MetadataRecord.from_fields(fields, strict=self.strict)

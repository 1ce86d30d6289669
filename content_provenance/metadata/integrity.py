"""
Integrity verification: recompute a content hash and compare it with the record.

Integrity is about tamper evidence, not secrecy, so a plain string comparison
of hex digests is used.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from ..errors import IOFailure
from .record import HashAlgorithm, MetadataRecord, compute_content_hash, compute_file_hash

logger = logging.getLogger(__name__)


class IntegrityStatus(Enum):
    VALID = "valid"
    TAMPERED = "tampered"
    UNHASHABLE = "unhashable"


@dataclass(frozen=True)
class IntegrityCheck:
    """Result of one integrity verification."""
    status: IntegrityStatus
    expected: str
    actual: Optional[str] = None
    detail: str = ""

    @property
    def is_valid(self) -> bool:
        return self.status is IntegrityStatus.VALID


def verify(record: MetadataRecord, content: Optional[bytes]) -> IntegrityCheck:
    """
    Verify content bytes against a record's content hash.

    Args:
        record: Validated metadata record
        content: Exact content bytes, or None if they could not be read

    Returns:
        IntegrityCheck with VALID, TAMPERED or UNHASHABLE status
    """
    expected = record.content_hash.lower()

    if content is None:
        return IntegrityCheck(IntegrityStatus.UNHASHABLE, expected, detail="content unavailable")
    if record.hash_algorithm is not HashAlgorithm.SHA256:
        return IntegrityCheck(
            IntegrityStatus.UNHASHABLE, expected,
            detail=f"unsupported hash algorithm: {record.hash_algorithm}"
        )

    actual = compute_content_hash(content)
    if actual != expected:
        return IntegrityCheck(IntegrityStatus.TAMPERED, expected, actual)
    return IntegrityCheck(IntegrityStatus.VALID, expected, actual)


def verify_file(record: MetadataRecord, path: Union[str, Path]) -> IntegrityCheck:
    """Chunked variant of verify() for content that should not be loaded whole."""
    expected = record.content_hash.lower()
    try:
        actual = compute_file_hash(path)
    except IOFailure as e:
        logger.warning(f"Cannot hash {path}: {e}")
        return IntegrityCheck(IntegrityStatus.UNHASHABLE, expected, detail=str(e))

    if actual != expected:
        return IntegrityCheck(IntegrityStatus.TAMPERED, expected, actual)
    return IntegrityCheck(IntegrityStatus.VALID, expected, actual)

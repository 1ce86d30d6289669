"""
Provenance metadata model.

Modules:
    record - MetadataRecord, closed enums, validation and hashing
    integrity - Content hash verification against a record
"""

from .record import (
    DEFAULT_RFC_VERSION,
    METADATA_VERSION,
    DerivationMethod,
    HashAlgorithm,
    MetadataRecord,
    Origin,
    ReviewStatus,
    ValidationReason,
    ValidationResult,
    compute_content_hash,
    compute_file_hash,
    validate_fields,
)
from .integrity import IntegrityCheck, IntegrityStatus, verify, verify_file

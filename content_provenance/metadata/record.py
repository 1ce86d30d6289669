"""
Provenance metadata record: data model, validation rules and hashing.

A MetadataRecord is one provenance assertion (origin, author, timestamp,
content hash) for one content item. Records are immutable and always valid:
the constructor runs the lenient rule set and raises SchemaViolation on the
first problem, so nothing downstream ever sees an unchecked record.

Validation order is fixed:
1. Presence of required fields: origin, author, timestamp, content_hash,
   hash_algorithm (+ rfc_version under strict validation)
2. Per-field value rules, in FIELD_ORDER
3. Unknown top-level fields (strict only)
4. JSON Schema conformance against schemas/content_metadata.schema.json (strict only)

The first violation wins and is reported as a typed ValidationResult.
"""

from __future__ import annotations

import copy
import functools
import hashlib
import json
import re
from dataclasses import dataclass, field, fields as dataclass_fields, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import jsonschema

from ..errors import IOFailure, SchemaViolation


METADATA_VERSION = "1.0"
DEFAULT_RFC_VERSION = "draft-williams-ai-content-tagging-00"
SCHEMA_PATH = Path(__file__).resolve().parent.parent / "schemas" / "content_metadata.schema.json"

MAX_AUTHOR_LENGTH = 255
MAX_SCORE_DECIMALS = 3
HASH_CHUNK_SIZE = 8192

HEX64_PATTERN = re.compile(r"^[a-fA-F0-9]{64}$")
DIGITS_PATTERN = re.compile(r"^[0-9]+$")
FRACTION_PATTERN = re.compile(r"(T\d{2}:\d{2}:\d{2})\.(\d+)")
RFC_VERSION_PATTERN = re.compile(r"^draft-[a-z0-9]+(-[a-z0-9]+)*-\d{2}$")
VERSION_PATTERN = re.compile(r"^\d+\.\d+$")
LANGUAGE_PATTERN = re.compile(r"^[a-z]{2}(-[A-Z]{2})?$")
CONTENT_TYPE_PATTERN = re.compile(
    r"^[A-Za-z0-9][A-Za-z0-9!#$&^_.+-]*/[A-Za-z0-9][A-Za-z0-9!#$&^_.+-]*$"
)
FORBIDDEN_AUTHOR_CHARS = ("\n", "\t", "\r")


class Origin(str, Enum):
    """Provenance classification of a content item."""
    HUMAN = "human"
    AI = "ai"
    HYBRID = "hybrid"


class HashAlgorithm(str, Enum):
    SHA256 = "sha256"


class DerivationMethod(str, Enum):
    """How a derived work was produced from its parent."""
    EDITED = "edited"
    TRANSLATED = "translated"
    SUMMARIZED = "summarized"
    PARAPHRASED = "paraphrased"
    REMIXED = "remixed"
    COMPILED = "compiled"
    AUGMENTED = "augmented"


class ReviewStatus(str, Enum):
    UNREVIEWED = "unreviewed"
    REVIEWED = "reviewed"
    VERIFIED = "verified"
    DISPUTED = "disputed"


REQUIRED_FIELDS = ("origin", "author", "timestamp", "content_hash", "hash_algorithm")
STRICT_REQUIRED_FIELDS = REQUIRED_FIELDS + ("rfc_version",)

# Presence/value check order; optionals follow the required block.
FIELD_ORDER = STRICT_REQUIRED_FIELDS + (
    "version",
    "license",
    "creation_tool",
    "model_identifier",
    "description",
    "keywords",
    "content_length",
    "content_type",
    "language",
    "parent_hash",
    "derivation_method",
    "confidence_score",
    "review_status",
    "custom_metadata",
)

# Serialized forms lead with the format version.
SERIALIZATION_ORDER = ("version",) + tuple(f for f in FIELD_ORDER if f != "version")

FIELD_ALIASES = {
    "toolchain": "creation_tool",
    "checksum": "content_hash",
    "model": "model_identifier",
}

_ENUM_FIELDS = {
    "origin": Origin,
    "hash_algorithm": HashAlgorithm,
    "derivation_method": DerivationMethod,
    "review_status": ReviewStatus,
}


def _lookup_key(name: str) -> str:
    return re.sub(r"[\s_-]", "", name).lower()


_FIELD_LOOKUP = {_lookup_key(name): name for name in FIELD_ORDER}
_FIELD_LOOKUP.update({_lookup_key(alias): target for alias, target in FIELD_ALIASES.items()})


def normalize_field_name(name: str) -> Optional[str]:
    """
    Map a serialized field name to its canonical snake_case name.

    Matching ignores case and '-'/'_' separators, so ``contentHash``,
    ``content-hash`` and ``CONTENT_HASH`` all resolve to ``content_hash``.

    Returns:
        Canonical field name, or None for unrecognized names
    """
    return _FIELD_LOOKUP.get(_lookup_key(name))


def canonicalize_fields(pairs: Iterable[Tuple[str, Any]]) -> Dict[str, Any]:
    """
    Build a field mapping from (name, value) pairs in document order.

    Known names are canonicalized; unknown names are kept (lowercased) so
    strict validation can report them. Later duplicates overwrite earlier ones.
    """
    result: Dict[str, Any] = {}
    for name, value in pairs:
        canonical = normalize_field_name(name)
        result[canonical or name.strip().lower()] = value
    return result


# ---------------------------------------------------------------------------
# Validation results
# ---------------------------------------------------------------------------

class ValidationReason(Enum):
    MISSING_FIELD = "MissingField"
    INVALID_ENUM = "InvalidEnum"
    INVALID_HASH_FORMAT = "InvalidHashFormat"
    INVALID_TIMESTAMP_FORMAT = "InvalidTimestampFormat"
    OUT_OF_RANGE_SCORE = "OutOfRangeScore"
    UNKNOWN_FIELD = "UnknownField"
    INVALID_FIELD_VALUE = "InvalidFieldValue"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation pass: success, or the first violation found."""
    reason: Optional[ValidationReason] = None
    field: Optional[str] = None
    message: str = ""

    @property
    def is_valid(self) -> bool:
        return self.reason is None

    @classmethod
    def success(cls) -> "ValidationResult":
        return cls()

    @classmethod
    def failure(cls, reason: ValidationReason, field_name: str, message: str) -> "ValidationResult":
        return cls(reason=reason, field=field_name, message=message)

    def __str__(self) -> str:
        if self.is_valid:
            return "Valid"
        return f"{self.reason.value}({self.field})"


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Fractional seconds of any length are accepted; they are cut to
    microseconds before parsing.

    Raises:
        ValueError: If the value is not ISO-8601 or carries no UTC offset
        OverflowError: If the UTC conversion leaves the datetime range
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip().replace("Z", "+00:00")
        text = FRACTION_PATTERN.sub(lambda m: f"{m.group(1)}.{(m.group(2) + '000000')[:6]}", text)
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"unsupported timestamp type {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise ValueError("timestamp has no UTC offset")

    parsed = parsed.astimezone(timezone.utc)
    # Millisecond precision keeps text round-trips exact.
    return parsed.replace(microsecond=(parsed.microsecond // 1000) * 1000)


def format_timestamp(value: datetime) -> str:
    """Format an aware datetime as ISO-8601 UTC with millisecond precision and Z suffix."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S") + f".{value.microsecond // 1000:03d}Z"


def _check_enum(name: str, value: Any) -> Optional[ValidationResult]:
    enum_cls = _ENUM_FIELDS[name]
    raw = value.value if isinstance(value, Enum) else value
    allowed = [member.value for member in enum_cls]
    if raw not in allowed:
        return ValidationResult.failure(
            ValidationReason.INVALID_ENUM, name,
            f"{name} must be one of {allowed}, got {raw!r}"
        )
    return None


def _check_hash(name: str, value: Any) -> Optional[ValidationResult]:
    if not isinstance(value, str) or not HEX64_PATTERN.match(value):
        return ValidationResult.failure(
            ValidationReason.INVALID_HASH_FORMAT, name,
            f"{name} must be 64 hexadecimal characters"
        )
    return None


def _check_timestamp(name: str, value: Any) -> Optional[ValidationResult]:
    try:
        parse_timestamp(value)
    except (ValueError, TypeError, OverflowError) as e:
        return ValidationResult.failure(
            ValidationReason.INVALID_TIMESTAMP_FORMAT, name,
            f"{name} is not an ISO-8601 UTC timestamp: {e}"
        )
    return None


def _check_author(name: str, value: Any) -> Optional[ValidationResult]:
    if not isinstance(value, str):
        return ValidationResult.failure(
            ValidationReason.INVALID_FIELD_VALUE, name, f"{name} must be a string"
        )
    if len(value) > MAX_AUTHOR_LENGTH:
        return ValidationResult.failure(
            ValidationReason.INVALID_FIELD_VALUE, name,
            f"{name} exceeds {MAX_AUTHOR_LENGTH} characters"
        )
    if any(ch in value for ch in FORBIDDEN_AUTHOR_CHARS):
        return ValidationResult.failure(
            ValidationReason.INVALID_FIELD_VALUE, name,
            f"{name} must not contain newline, tab or carriage return"
        )
    return None


def _pattern_check(pattern: "re.Pattern[str]", description: str):
    def check(name: str, value: Any) -> Optional[ValidationResult]:
        if not isinstance(value, str) or not pattern.match(value):
            return ValidationResult.failure(
                ValidationReason.INVALID_FIELD_VALUE, name,
                f"{name} must be {description}, got {value!r}"
            )
        return None
    return check


def _check_text(name: str, value: Any) -> Optional[ValidationResult]:
    if not isinstance(value, str):
        return ValidationResult.failure(
            ValidationReason.INVALID_FIELD_VALUE, name, f"{name} must be a string"
        )
    return None


def _check_keywords(name: str, value: Any) -> Optional[ValidationResult]:
    if isinstance(value, (list, tuple)):
        segments = list(value)
    elif isinstance(value, str):
        segments = value.split(",")
    else:
        return ValidationResult.failure(
            ValidationReason.INVALID_FIELD_VALUE, name,
            f"{name} must be a comma-separated string"
        )
    if any(not isinstance(s, str) or not s.strip() for s in segments):
        return ValidationResult.failure(
            ValidationReason.INVALID_FIELD_VALUE, name,
            f"{name} must not contain empty segments"
        )
    return None


def _check_content_length(name: str, value: Any) -> Optional[ValidationResult]:
    if isinstance(value, bool):
        valid = False
    elif isinstance(value, int):
        valid = value >= 0
    elif isinstance(value, str):
        valid = bool(DIGITS_PATTERN.match(value.strip()))
    else:
        valid = False
    if not valid:
        return ValidationResult.failure(
            ValidationReason.INVALID_FIELD_VALUE, name,
            f"{name} must be a non-negative integer, got {value!r}"
        )
    return None


def _parse_score(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise InvalidOperation("boolean is not a score")
    return Decimal(str(value).strip())


def _check_score(name: str, value: Any) -> Optional[ValidationResult]:
    try:
        score = _parse_score(value)
    except (InvalidOperation, ValueError):
        return ValidationResult.failure(
            ValidationReason.INVALID_FIELD_VALUE, name, f"{name} must be a decimal number"
        )
    if not score.is_finite():
        return ValidationResult.failure(
            ValidationReason.INVALID_FIELD_VALUE, name, f"{name} must be finite"
        )
    if score < 0 or score > 1:
        return ValidationResult.failure(
            ValidationReason.OUT_OF_RANGE_SCORE, name,
            f"{name} must be within [0.0, 1.0], got {value}"
        )
    if score.normalize().as_tuple().exponent < -MAX_SCORE_DECIMALS:
        return ValidationResult.failure(
            ValidationReason.INVALID_FIELD_VALUE, name,
            f"{name} allows at most {MAX_SCORE_DECIMALS} fraction digits"
        )
    return None


def _check_custom(name: str, value: Any) -> Optional[ValidationResult]:
    if not isinstance(value, Mapping) or not all(isinstance(k, str) for k in value):
        return ValidationResult.failure(
            ValidationReason.INVALID_FIELD_VALUE, name,
            f"{name} must be a mapping with string keys"
        )
    try:
        json.dumps(value)
    except (TypeError, ValueError) as e:
        return ValidationResult.failure(
            ValidationReason.INVALID_FIELD_VALUE, name,
            f"{name} must be JSON serializable: {e}"
        )
    return None


_FIELD_CHECKS = {
    "origin": _check_enum,
    "author": _check_author,
    "timestamp": _check_timestamp,
    "content_hash": _check_hash,
    "hash_algorithm": _check_enum,
    "rfc_version": _pattern_check(RFC_VERSION_PATTERN, "draft-<name>-<NN>"),
    "version": _pattern_check(VERSION_PATTERN, "a fixed-point version like '1.0'"),
    "license": _check_text,
    "creation_tool": _check_text,
    "model_identifier": _check_text,
    "description": _check_text,
    "keywords": _check_keywords,
    "content_length": _check_content_length,
    "content_type": _pattern_check(CONTENT_TYPE_PATTERN, "a MIME type like 'text/plain'"),
    "language": _pattern_check(LANGUAGE_PATTERN, "a language code like 'en' or 'en-US'"),
    "parent_hash": _check_hash,
    "derivation_method": _check_enum,
    "confidence_score": _check_score,
    "review_status": _check_enum,
    "custom_metadata": _check_custom,
}


@functools.lru_cache(maxsize=1)
def load_metadata_schema() -> Dict[str, Any]:
    """Load the bundled strict JSON Schema."""
    with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
        return json.load(f)


def _json_value(name: str, value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_timestamp(value)
    if name == "content_length" and isinstance(value, str):
        return int(value.strip())
    if name == "confidence_score":
        return float(_parse_score(value))
    if name == "keywords" and isinstance(value, (list, tuple)):
        return ",".join(value)
    return value


def _schema_error_to_result(error: "jsonschema.ValidationError") -> ValidationResult:
    """Transform a jsonschema error into a typed validation result."""
    path = list(error.absolute_path)
    name = str(path[0]) if path else ""

    if error.validator == "required":
        prop = error.message.split("'")[1] if "'" in error.message else "unknown"
        return ValidationResult.failure(ValidationReason.MISSING_FIELD, prop, error.message)
    if error.validator == "additionalProperties":
        prop = error.message.split("'")[1] if "'" in error.message else "unknown"
        return ValidationResult.failure(ValidationReason.UNKNOWN_FIELD, prop, error.message)
    if error.validator == "enum":
        return ValidationResult.failure(ValidationReason.INVALID_ENUM, name, error.message)
    if name in ("content_hash", "parent_hash"):
        return ValidationResult.failure(ValidationReason.INVALID_HASH_FORMAT, name, error.message)
    if name == "timestamp":
        return ValidationResult.failure(ValidationReason.INVALID_TIMESTAMP_FORMAT, name, error.message)
    if name == "confidence_score" and error.validator in ("minimum", "maximum"):
        return ValidationResult.failure(ValidationReason.OUT_OF_RANGE_SCORE, name, error.message)
    return ValidationResult.failure(ValidationReason.INVALID_FIELD_VALUE, name, error.message)


def _schema_check(fields: Dict[str, Any]) -> ValidationResult:
    document = {
        name: _json_value(name, value)
        for name, value in fields.items()
        if not _is_blank(value)
    }
    validator = jsonschema.Draft7Validator(load_metadata_schema())
    order = {name: i for i, name in enumerate(FIELD_ORDER)}
    errors = sorted(
        validator.iter_errors(document),
        key=lambda e: (order.get(str(e.absolute_path[0]), len(order)) if e.absolute_path else -1, e.message)
    )
    if errors:
        return _schema_error_to_result(errors[0])
    return ValidationResult.success()


def validate_fields(fields: Mapping[str, Any], strict: bool = False) -> ValidationResult:
    """
    Validate a raw field mapping (as decoded from any serialized form).

    Args:
        fields: Field name -> value; names are canonicalized first
        strict: Require rfc_version, reject unknown fields and enforce the JSON Schema

    Returns:
        ValidationResult with the first violation, or success
    """
    canonical = canonicalize_fields(fields.items())

    required = STRICT_REQUIRED_FIELDS if strict else REQUIRED_FIELDS
    for name in required:
        if _is_blank(canonical.get(name)):
            return ValidationResult.failure(
                ValidationReason.MISSING_FIELD, name, f"Missing required field: {name}"
            )

    for name in FIELD_ORDER:
        value = canonical.get(name)
        if _is_blank(value):
            continue
        problem = _FIELD_CHECKS[name](name, value)
        if problem is not None:
            return problem

    if strict:
        for name in canonical:
            if name not in _FIELD_CHECKS:
                return ValidationResult.failure(
                    ValidationReason.UNKNOWN_FIELD, name, f"Unknown field: {name}"
                )
        return _schema_check(canonical)

    return ValidationResult.success()


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

def compute_content_hash(content: bytes) -> str:
    """SHA-256 hex digest of the exact content bytes (no normalization)."""
    return hashlib.sha256(content).hexdigest()


def compute_file_hash(file_path: Union[str, Path]) -> str:
    """
    Compute SHA256 hash of a file, reading in chunks.

    Raises:
        IOFailure: If the file cannot be read
    """
    sha256_hash = hashlib.sha256()
    try:
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
                sha256_hash.update(chunk)
    except OSError as e:
        raise IOFailure(str(file_path), f"Cannot read content for hashing: {e}", e) from e
    return sha256_hash.hexdigest()


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------

def _coerce(name: str, value: Any) -> Any:
    if _is_blank(value):
        return None
    if name in _ENUM_FIELDS:
        return _ENUM_FIELDS[name](value)
    if name == "timestamp":
        return parse_timestamp(value)
    if name == "content_length":
        return int(value.strip()) if isinstance(value, str) else int(value)
    if name == "confidence_score":
        return float(_parse_score(value))
    if name == "keywords" and isinstance(value, (list, tuple)):
        return ",".join(value)
    if name == "custom_metadata":
        return json.loads(json.dumps(value))
    return value


@dataclass(frozen=True)
class MetadataRecord:
    """One validated provenance assertion for one content item."""
    origin: Origin
    author: str
    timestamp: datetime
    content_hash: str
    hash_algorithm: HashAlgorithm = HashAlgorithm.SHA256
    rfc_version: Optional[str] = None
    version: str = METADATA_VERSION
    license: Optional[str] = None
    creation_tool: Optional[str] = None
    model_identifier: Optional[str] = None
    description: Optional[str] = None
    keywords: Optional[str] = None
    content_length: Optional[int] = None
    content_type: Optional[str] = None
    language: Optional[str] = None
    parent_hash: Optional[str] = None
    derivation_method: Optional[DerivationMethod] = None
    confidence_score: Optional[float] = None
    review_status: Optional[ReviewStatus] = None
    custom_metadata: Optional[Dict[str, Any]] = field(default=None, hash=False)

    def __post_init__(self):
        declared = {f.name: getattr(self, f.name) for f in dataclass_fields(self)}
        result = validate_fields(declared, strict=False)
        if not result.is_valid:
            raise SchemaViolation(result)
        for name, value in declared.items():
            object.__setattr__(self, name, _coerce(name, value))
        if self.version is None:
            object.__setattr__(self, "version", METADATA_VERSION)

    @classmethod
    def from_fields(cls, fields: Mapping[str, Any], strict: bool = False) -> "MetadataRecord":
        """
        Build a record from a decoded field mapping.

        Unknown fields are dropped under lenient validation and rejected
        under strict validation.

        Raises:
            SchemaViolation: If validation fails
        """
        canonical = canonicalize_fields(fields.items())
        result = validate_fields(canonical, strict=strict)
        if not result.is_valid:
            raise SchemaViolation(result)
        return cls(**{k: v for k, v in canonical.items() if k in _FIELD_CHECKS})

    @classmethod
    def create(
        cls,
        content: Union[bytes, str],
        origin: Union[Origin, str],
        author: str,
        timestamp: Optional[datetime] = None,
        rfc_version: Optional[str] = DEFAULT_RFC_VERSION,
        **optional: Any
    ) -> "MetadataRecord":
        """
        Tag content: hash it and build a record for the asserted origin.

        Args:
            content: Exact content bytes (str is UTF-8 encoded)
            origin: Asserted origin (human, ai, hybrid)
            author: Author or system identifier
            timestamp: Creation instant (defaults to now, UTC)
            rfc_version: RFC draft identifier the record conforms to
            **optional: Any optional MetadataRecord field

        Returns:
            Validated MetadataRecord
        """
        if isinstance(content, str):
            content = content.encode("utf-8")
        optional.setdefault("content_length", len(content))
        return cls(
            origin=origin,
            author=author,
            timestamp=timestamp or datetime.now(timezone.utc),
            content_hash=compute_content_hash(content),
            rfc_version=rfc_version,
            **optional
        )

    def derive(
        self,
        content: Union[bytes, str],
        derivation_method: Union[DerivationMethod, str],
        **changes: Any
    ) -> "MetadataRecord":
        """Build the record for a derived work whose parent is this record's content."""
        if isinstance(content, str):
            content = content.encode("utf-8")
        changes.setdefault("timestamp", datetime.now(timezone.utc))
        return replace(
            self,
            content_hash=compute_content_hash(content),
            content_length=len(content),
            parent_hash=self.content_hash,
            derivation_method=derivation_method,
            **changes
        )

    @staticmethod
    def compute_hash(content: bytes) -> str:
        return compute_content_hash(content)

    def verify_integrity(self, content: bytes) -> bool:
        """True iff the SHA-256 of content equals the recorded hash."""
        return compute_content_hash(content) == self.content_hash.lower()

    def validate(self, strict: bool = False) -> ValidationResult:
        return validate_fields(self.to_dict(), strict=strict)

    @property
    def keyword_list(self) -> List[str]:
        if not self.keywords:
            return []
        return [k.strip() for k in self.keywords.split(",")]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization (None values dropped)."""
        result: Dict[str, Any] = {}
        for name in SERIALIZATION_ORDER:
            value = getattr(self, name)
            if value is None:
                continue
            if name == "custom_metadata":
                value = copy.deepcopy(value)
            result[name] = _json_value(name, value)
        return result

"""
Serialized forms of a MetadataRecord.

Modules:
    base - MetadataCodec interface
    sidecar - Namespaced XML sidecar document (strict)
    header - Single-line transport header value (lenient, lossy)
    embedded - <meta> tags inside markup documents (lenient)
"""

from .base import MetadataCodec
from .sidecar import SIDECAR_SUFFIX, SidecarDocumentCodec, read_sidecar, sidecar_path, write_sidecar
from .header import CompactHeaderCodec, from_headers, to_headers
from .embedded import MARKUP_EXTENSIONS, EmbeddedTagCodec

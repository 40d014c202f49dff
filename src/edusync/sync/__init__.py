"""Synchronization: merge policies, peer payloads and network replication.

Provides:
- Merge engine for peer and remote documents (merge)
- Compressed payload codec (payload)
- Camera scan state machine (scanner)
- Payload import with activity side effects (peer)
- Class server replication over HTTP (replicator)
"""

from edusync.sync.merge import (
    ProgressEntry,
    merge_content,
    merge_profile,
    merge_remote_documents,
)
from edusync.sync.payload import (
    ContentPayload,
    ProfilePayload,
    build_content_payload,
    build_profile_payload,
    decode_payload,
    encode_payload,
)
from edusync.sync.peer import ImportResult, import_payload, scan_and_import
from edusync.sync.replicator import Replicator, SyncReport
from edusync.sync.scanner import ScanSession, ScanState

__all__ = [
    "ContentPayload",
    "ImportResult",
    "ProfilePayload",
    "ProgressEntry",
    "Replicator",
    "ScanSession",
    "ScanState",
    "SyncReport",
    "build_content_payload",
    "build_profile_payload",
    "decode_payload",
    "encode_payload",
    "import_payload",
    "merge_content",
    "merge_profile",
    "merge_remote_documents",
    "scan_and_import",
]

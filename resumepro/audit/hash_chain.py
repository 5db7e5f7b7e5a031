"""
ResumeCustomizer Pro - Hash Chain for Audit Integrity

Implements cryptographic hash chaining for the tamper-evident login audit.
Each entry stores a hash of itself + the previous entry's hash.

Verification:
- Any modification to an entry breaks the chain
- Chain integrity can be verified by recomputing hashes
- Detects insertions, deletions, and modifications

Algorithm: SHA-256
"""

import hashlib
from datetime import datetime
from typing import Iterable, Optional

from resumepro.audit.models import ChainVerificationResult, LoginAuditEntry


GENESIS_LABEL = "resumepro-login-audit"


def compute_event_hash(
    event_id: str,
    event_type: str,
    status: str,
    user_id: Optional[str],
    ip_address: Optional[str],
    is_suspicious: bool,
    created_at: datetime,
    prev_hash: str,
) -> str:
    """
    Compute SHA-256 hash for an audit entry.

    Returns:
        Hex-encoded SHA-256 hash
    """
    content = "|".join([
        event_id,
        event_type,
        status,
        user_id or "",
        ip_address or "",
        "1" if is_suspicious else "0",
        created_at.isoformat(),
        prev_hash,
    ])
    return hashlib.sha256(content.encode()).hexdigest()


def compute_genesis_hash() -> str:
    """Hash the first entry of the chain links to."""
    return hashlib.sha256(f"GENESIS|{GENESIS_LABEL}".encode()).hexdigest()


def hash_entry(entry: LoginAuditEntry, prev_hash: str) -> str:
    return compute_event_hash(
        event_id=str(entry.event_id),
        event_type=entry.event_type,
        status=entry.status,
        user_id=str(entry.user_id) if entry.user_id else None,
        ip_address=entry.ip_address,
        is_suspicious=bool(entry.is_suspicious),
        created_at=entry.created_at,
        prev_hash=prev_hash,
    )


def verify_chain(entries: Iterable[LoginAuditEntry]) -> ChainVerificationResult:
    """
    Verify the integrity of the hash chain.

    Args:
        entries: All audit entries, oldest first

    Returns:
        ChainVerificationResult naming the first broken entry, if any
    """
    genesis = compute_genesis_hash()
    prev_hash = genesis
    count = 0

    for entry in entries:
        count += 1
        if entry.prev_hash != prev_hash or entry.hash != hash_entry(entry, prev_hash):
            return ChainVerificationResult(
                is_valid=False,
                event_count=count,
                genesis_hash=genesis,
                final_hash=prev_hash,
                broken_at=entry.id,
            )
        prev_hash = entry.hash

    return ChainVerificationResult(
        is_valid=True,
        event_count=count,
        genesis_hash=genesis,
        final_hash=prev_hash if count else None,
    )
